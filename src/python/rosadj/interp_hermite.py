# interp_hermite.py
import torch


def hermite3(a: float, b: float, t: float,
             ya: torch.Tensor, yb: torch.Tensor,
             ja: torch.Tensor, jb: torch.Tensor) -> torch.Tensor:
    """
    Cubic Hermite interpolant through (a, ya, ja) and (b, yb, jb),
    evaluated at t.  ``j`` are first time derivatives.

        y(t) = c1 + c2*tau + c3*tau^2 + c4*tau^3,   tau = t - a
    """
    amb  = 1.0 / (a - b)
    amb2 = amb * amb
    amb3 = amb2 * amb

    c1 = ya
    c2 = ja
    c3 = 2.0*amb*ja + amb*jb - 3.0*amb2*ya + 3.0*amb2*yb
    c4 = amb2*ja + amb2*jb - 2.0*amb3*ya + 2.0*amb3*yb

    tau = t - a
    return ((c4 * tau + c3) * tau + c2) * tau + c1


def hermite5(a: float, b: float, t: float,
             ya: torch.Tensor, yb: torch.Tensor,
             ja: torch.Tensor, jb: torch.Tensor,
             ha: torch.Tensor, hb: torch.Tensor) -> torch.Tensor:
    """
    Quintic Hermite interpolant matching value, first (j) and second (h)
    derivatives at both ends.  The adjoint drivers reconstruct y(t) with
    :func:`hermite3`.
    """
    amb = [1.0 / (a - b)]
    for _ in range(4):
        amb.append(amb[-1] * amb[0])
    a1, a2, a3, a4, a5 = amb

    c = [
        ya,
        ja,
        0.5 * ha,
        10.0*a3*ya - 10.0*a3*yb - 6.0*a2*ja - 4.0*a2*jb + 1.5*a1*ha - 0.5*a1*hb,
        15.0*a4*ya - 15.0*a4*yb - 8.0*a3*ja - 7.0*a3*jb + 1.5*a2*ha - a2*hb,
        6.0*a5*ya - 6.0*a5*yb - 3.0*a4*ja - 3.0*a4*jb + 0.5*a3*ha - 0.5*a3*hb,
    ]

    tau = t - a
    y = c[5]
    for cj in reversed(c[:5]):
        y = y * tau + cj
    return y
