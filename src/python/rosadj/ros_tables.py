# ros_tables.py
"""
Coefficient sets of the five Rosenbrock methods.

Every factory returns an immutable :class:`RosenbrockTableau`; nothing in the
package keeps a "current method" around, so forward and adjoint passes can
use different tableaus side by side.

Coupling coefficients are given as the flattened strictly-lower triangle,
row-major: entry ``(i, j)`` with ``j < i`` (1-based) lives at
``(i-1)*(i-2)/2 + j``.  The dense ``A``/``C`` views are built once in
``__post_init__``.
"""
import enum
import math
from dataclasses import dataclass, field
from typing import Tuple

import torch

from .status import ConfigurationError, Status


class RosMethod(enum.IntEnum):
    ROS2   = 1
    ROS3   = 2
    ROS4   = 3
    RODAS3 = 4
    RODAS4 = 5


@dataclass(frozen=True)
class RosenbrockTableau:
    name:    str
    method:  RosMethod
    stages:  int
    a:       torch.Tensor            # (S(S-1)/2,)  stage-state coupling
    c:       torch.Tensor            # (S(S-1)/2,)  stage-vector coupling
    m:       torch.Tensor            # (S,)  solution weights
    e:       torch.Tensor            # (S,)  error-estimator weights
    alpha:   torch.Tensor            # (S,)  stage time offsets
    gamma:   torch.Tensor            # (S,)  row sums of the gamma matrix
    elo:     float                   # order used in the step controller
    new_f:   Tuple[bool, ...]        # stage needs a fresh f evaluation

    # dense views, filled in __post_init__
    A:       torch.Tensor = field(init=False, repr=False)
    C:       torch.Tensor = field(init=False, repr=False)

    def __post_init__(self):
        s = self.stages
        A = torch.zeros(s, s, dtype=self.a.dtype, device=self.a.device)
        C = torch.zeros_like(A)
        for i in range(1, s):
            for j in range(i):
                A[i, j] = self.a[lower_index(i, j)]
                C[i, j] = self.c[lower_index(i, j)]
        object.__setattr__(self, "A", A)
        object.__setattr__(self, "C", C)

    @property
    def gamma_diag(self) -> float:
        """Diagonal coefficient that shifts the iteration matrix."""
        return float(self.gamma[0])


def lower_index(i: int, j: int) -> int:
    """0-based flat index of strictly-lower entry (i, j), 0-based i, j."""
    return i * (i - 1) // 2 + j


def _tableau(name, method, *, a, c, m, e, alpha, gamma, elo, new_f,
             dtype, device) -> RosenbrockTableau:
    t = lambda v: torch.tensor(v, dtype=dtype, device=device)
    return RosenbrockTableau(
        name=name, method=method, stages=len(m),
        a=t(a), c=t(c), m=t(m), e=t(e),
        alpha=t(alpha), gamma=t(gamma),
        elo=float(elo), new_f=tuple(new_f))


# --------------------------------------------------------------------------- #
def ros2(dtype=torch.float64, device="cpu") -> RosenbrockTableau:
    """
    ROS-2: 2 stages, order 2(1), L-stable.
    """
    g = 1.0 + 1.0 / math.sqrt(2.0)
    return _tableau(
        "ROS-2", RosMethod.ROS2,
        a=[1.0 / g],
        c=[-2.0 / g],
        m=[3.0 / (2.0 * g), 1.0 / (2.0 * g)],
        e=[1.0 / (2.0 * g), 1.0 / (2.0 * g)],
        alpha=[0.0, 1.0],
        gamma=[g, -g],
        elo=2.0,
        new_f=(True, True),
        dtype=dtype, device=device)


def ros3(dtype=torch.float64, device="cpu") -> RosenbrockTableau:
    """
    ROS-3: 3 stages, order 3(2), L-stable, 2 function calls per step.
    """
    gam1 = 0.43586652150845899941601945119356
    return _tableau(
        "ROS-3", RosMethod.ROS3,
        a=[1.0, 1.0, 0.0],
        c=[-0.10156171083877702091975600115545e+01,
            0.40759956452537699824805835358067e+01,
            0.92076794298330791242156818474003e+01],
        m=[0.1e+01,
           0.61697947043828245592553615689730e+01,
           -0.42772256543218573326238373806514e+00],
        e=[0.5e+00,
           -0.29079558716805469821718236208017e+01,
           0.22354069897811569627360909276199e+00],
        alpha=[0.0, gam1, gam1],
        gamma=[gam1,
               0.24291996454816804366592249683314e+00,
               0.21851380027664058511513169485832e+01],
        elo=3.0,
        new_f=(True, True, False),
        dtype=dtype, device=device)


def ros4(dtype=torch.float64, device="cpu") -> RosenbrockTableau:
    """
    ROS-4: 4 stages, order 4(3), L-stable (Hairer & Wanner).
    """
    a2, a3 = 0.1867943637803922e+01, 0.2344449711399156e+00
    alpha3 = 0.6552168638155900e+00
    return _tableau(
        "ROS-4", RosMethod.ROS4,
        a=[0.2000000000000000e+01, a2, a3, a2, a3, 0.0],
        c=[-0.7137615036412310e+01,
           0.2580708087951457e+01,
           0.6515950076447975e+00,
           -0.2137148994382534e+01,
           -0.3214669691237626e+00,
           -0.6949742501781779e+00],
        m=[0.2255570073418735e+01,
           0.2870493262186792e+00,
           0.4353179431840180e+00,
           0.1093502252409163e+01],
        e=[-0.2815431932141155e+00,
           -0.7276199124938920e-01,
           -0.1082196201495311e+00,
           -0.1093502252409163e+01],
        alpha=[0.0, 0.1145640000000000e+01, alpha3, alpha3],
        gamma=[0.5728200000000000e+00,
               -0.1769193891319233e+01,
               0.7592633437920482e+00,
               -0.1049021087100450e+00],
        elo=4.0,
        new_f=(True, True, True, False),
        dtype=dtype, device=device)


def rodas3(dtype=torch.float64, device="cpu") -> RosenbrockTableau:
    """
    RODAS-3: 4 stages, order 3(2), stiffly accurate.
    """
    return _tableau(
        "RODAS-3", RosMethod.RODAS3,
        a=[0.0, 2.0, 0.0, 2.0, 0.0, 1.0],
        c=[4.0, 1.0, -1.0, 1.0, -1.0, -(8.0 / 3.0)],
        m=[2.0, 0.0, 1.0, 1.0],
        e=[0.0, 0.0, 0.0, 1.0],
        alpha=[0.0, 0.0, 1.0, 1.0],
        gamma=[0.5, 1.5, 0.0, 0.0],
        elo=3.0,
        new_f=(True, False, True, True),
        dtype=dtype, device=device)


def rodas4(dtype=torch.float64, device="cpu") -> RosenbrockTableau:
    """
    RODAS-4: 6 stages, order 4(3), stiffly accurate.
    """
    a7, a8 = 0.1221224509226641e+01, 0.6019134481288629e+01
    a9, a10 = 0.1253708332932087e+02, -0.6878860361058950e+00
    return _tableau(
        "RODAS-4", RosMethod.RODAS4,
        a=[0.1544000000000000e+01,
           0.9466785280815826e+00,
           0.2557011698983284e+00,
           0.3314825187068521e+01,
           0.2896124015972201e+01,
           0.9986419139977817e+00,
           a7, a8, a9, a10,
           a7, a8, a9, a10, 1.0],
        c=[-0.5668800000000000e+01,
           -0.2430093356833875e+01,
           -0.2063599157091915e+00,
           -0.1073529058151375e+00,
           -0.9594562251023355e+01,
           -0.2047028614809616e+02,
           0.7496443313967647e+01,
           -0.1024680431464352e+02,
           -0.3399990352819905e+02,
           0.1170890893206160e+02,
           0.8083246795921522e+01,
           -0.7981132988064893e+01,
           -0.3152159432874371e+02,
           0.1631930543123136e+02,
           -0.6058818238834054e+01],
        m=[a7, a8, a9, a10, 1.0, 1.0],
        e=[0.0, 0.0, 0.0, 0.0, 0.0, 1.0],
        alpha=[0.0, 0.386, 0.210, 0.630, 1.0, 1.0],
        gamma=[0.2500000000000000e+00,
               -0.1043000000000000e+00,
               0.1035000000000000e+00,
               -0.3620000000000023e-01,
               0.0, 0.0],
        elo=4.0,
        new_f=(True,) * 6,
        dtype=dtype, device=device)


_FACTORIES = {
    RosMethod.ROS2:   ros2,
    RosMethod.ROS3:   ros3,
    RosMethod.ROS4:   ros4,
    RosMethod.RODAS3: rodas3,
    RosMethod.RODAS4: rodas4,
}

# nominal convergence order of each method
ORDER = {
    RosMethod.ROS2:   2,
    RosMethod.ROS3:   3,
    RosMethod.ROS4:   4,
    RosMethod.RODAS3: 3,
    RosMethod.RODAS4: 4,
}


def resolve_method(code) -> RosMethod:
    """Map an integer method code to a :class:`RosMethod`; ``0`` is RODAS-3."""
    if code == 0:
        return RosMethod.RODAS3
    try:
        return RosMethod(int(code))
    except ValueError:
        raise ConfigurationError(f"unknown Rosenbrock method code {code}",
                                 status=Status.METHOD_NOT_IMPLEMENTED) from None


def method_table(code, dtype=torch.float64, device="cpu") -> RosenbrockTableau:
    return _FACTORIES[resolve_method(code)](dtype=dtype, device=device)
