#!/usr/bin/env python3
# examples/robertson_adjoint.py
"""
Sensitivity of the Robertson kinetics to the initial concentrations.

    A -> B          k1 = 0.04
    B + C -> A + C  k2 = 1e4
    2B -> B + C     k3 = 3e7

lam(T) = dy_C(T)/dy(0) is computed with the discrete, the continuous and the
simplified continuous adjoint and compared.  Use  --plot  to draw the
sensitivities over a sweep of end times (needs matplotlib).
"""

import argparse, logging, time
import numpy as np
import torch

from rosadj import (AdjointType, OdeModel, RosenbrockAdjoint,
                    RosenbrockOptions, RosMethod)

K1, K2, K3 = 0.04, 1.0e4, 3.0e7


# --------------------------------------------------------------------------
def robertson_rhs(t, y):
    r1 = K1 * y[0]
    r2 = K2 * y[1] * y[2]
    r3 = K3 * y[1] * y[1]
    return torch.stack([-r1 + r2, r1 - r2 - r3, r3])


def robertson_jac(t, y):
    return torch.tensor([[-K1,  K2 * y[2],                      K2 * y[1]],
                         [ K1, -K2 * y[2] - 2.0 * K3 * y[1], -K2 * y[1]],
                         [0.0,  2.0 * K3 * y[1],                0.0]],
                        dtype=y.dtype)


def robertson_hess(t, y):
    """H[i, j, k] = d2 f_i / dy_j dy_k (constant)."""
    H = torch.zeros(3, 3, 3, dtype=y.dtype)
    H[0, 1, 2] = H[0, 2, 1] = K2
    H[1, 1, 2] = H[1, 2, 1] = -K2
    H[1, 1, 1] = -2.0 * K3
    H[2, 1, 1] = 2.0 * K3
    return H


MODES = {
    "discrete":   AdjointType.DISCRETE,
    "continuous": AdjointType.CONTINUOUS,
    "simple":     AdjointType.SIMPLE_CONTINUOUS,
}


def sensitivities(model, mode, t_end, args):
    opts = RosenbrockOptions(method=args.method, cadj_method=args.method,
                             adjoint_type=MODES[mode], autonomous=True)
    y   = torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64)
    lam = torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64)
    res = RosenbrockAdjoint(model, opts).integrate(
        y, lam, 0.0, t_end, atol=args.atol, rtol=args.rtol)
    if not res.success:
        raise SystemExit(f"{mode}: {res.message}")
    return res


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--tend", type=float, default=40.0,
                        help="final time")
    parser.add_argument("--method", type=int, default=int(RosMethod.RODAS3),
                        choices=[int(m) for m in RosMethod],
                        help="1=Ros2 2=Ros3 3=Ros4 4=Rodas3 5=Rodas4")
    parser.add_argument("--rtol", type=float, default=1e-6)
    parser.add_argument("--atol", type=float, default=1e-10)
    parser.add_argument("--plot", action="store_true",
                        help="sweep end times and plot lam(T)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(name)s %(levelname)s: %(message)s")

    model = OdeModel(rhs=robertson_rhs, jac=robertson_jac, hess=robertson_hess)

    print(f"d y_C({args.tend:g}) / d y(0)")
    for mode in MODES:
        t0  = time.perf_counter()
        res = sensitivities(model, mode, args.tend, args)
        dt  = time.perf_counter() - t0
        lam = res.lam.numpy().ravel()
        print(f"  {mode:<10s} lam = [{lam[0]: .6e} {lam[1]: .6e} {lam[2]: .6e}]"
              f"   steps = {res.stats.nstp:5d}   {dt:6.2f} s")

    if not args.plot:
        return

    import matplotlib.pyplot as plt

    t_ends = np.logspace(-5, np.log10(args.tend), 12)
    fig, axes = plt.subplots(1, 3, figsize=(12, 3.5), sharex=True)
    for mode in MODES:
        lams = np.array([sensitivities(model, mode, T, args).lam.numpy().ravel()
                         for T in t_ends])
        for i, ax in enumerate(axes):
            ax.semilogx(t_ends, lams[:, i], marker="o", label=mode)
    for i, ax in enumerate(axes):
        ax.set_title(f"d y_C(T) / d y_{'ABC'[i]}(0)")
        ax.set_xlabel("T")
    axes[0].legend()
    fig.tight_layout()
    plt.show()


if __name__ == "__main__":
    main()
