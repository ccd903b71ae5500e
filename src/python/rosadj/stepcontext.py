# stepcontext.py -----------------------------------------------------------
import math
from dataclasses import dataclass, field
from typing import List

import torch

from .linsolve import LinearAlgebra
from .model import OdeModel
from .options import IntegrationControl

ROUNDOFF = torch.finfo(torch.float64).eps
DELTA_MIN_FD = 1.0e-6        # floor of |t| in the finite-difference step


@dataclass
class IntegratorStats:
    # counters
    nfun: int = 0            # rhs evaluations
    njac: int = 0            # Jacobian evaluations
    nstp: int = 0            # step attempts
    nacc: int = 0            # accepted steps
    nrej: int = 0            # rejected steps (after the first accepted one)
    ndec: int = 0            # LU decompositions
    nsol: int = 0            # forward/backward substitutions
    nsng: int = 0            # singular decompositions

    # scalars
    texit: float = 0.0       # time the integrator stopped at
    hexit: float = 0.0       # last accepted step
    hnew:  float = 0.0       # step proposed for the next call

    def reset(self) -> None:
        for name in ("nfun", "njac", "nstp", "nacc",
                     "nrej", "ndec", "nsol", "nsng"):
            setattr(self, name, 0)
        self.texit = self.hexit = self.hnew = 0.0

    def istatus(self) -> List[int]:
        """Counters in the classic 20-entry ISTATUS layout."""
        out = [0] * 20
        out[:8] = [self.nfun, self.njac, self.nstp, self.nacc,
                   self.nrej, self.ndec, self.nsol, self.nsng]
        return out

    def rstatus(self) -> List[float]:
        out = [0.0] * 20
        out[:3] = [self.texit, self.hexit, self.hnew]
        return out

    def summary(self) -> str:
        return (f"Step={self.nstp} Acc={self.nacc} Rej={self.nrej} "
                f"Singular={self.nsng} Fun={self.nfun} Jac={self.njac} "
                f"Dec={self.ndec} Sol={self.nsol}")


@dataclass
class RunContext:
    """Everything one integration call shares between its passes."""
    model:    OdeModel
    linalg:   LinearAlgebra
    control:  IntegrationControl
    stats:    IntegratorStats = field(default_factory=IntegratorStats)
    roundoff: float = ROUNDOFF

    # ---- model evaluations -------------------------------------------------
    def _update(self, t: float) -> None:
        if self.control.update_forcing and self.model.update_forcing:
            self.model.update_forcing(t)
        if self.control.update_rates and self.model.update_rates:
            self.model.update_rates(t)

    def rhs(self, t: float, y: torch.Tensor) -> torch.Tensor:
        self._update(t)
        self.stats.nfun += 1
        # models may hand back a reused output buffer
        return self.model.eval_rhs(t, y).clone()

    def jac(self, t: float, y: torch.Tensor):
        """Jacobian in the representation of the linear-algebra backend."""
        self._update(t)
        self.stats.njac += 1
        return self.linalg.prepare(self.model.eval_jac(t, y), y)

    def hess_op(self, t: float, y: torch.Tensor):
        self._update(t)
        return self.model.hess_op(t, y)

    # ---- finite-difference time derivatives -------------------------------
    def _delta(self, t: float) -> float:
        return math.sqrt(self.roundoff) * max(DELTA_MIN_FD, abs(t))

    def fun_time_derivative(self, t: float, y: torch.Tensor,
                            f0: torch.Tensor) -> torch.Tensor:
        delta = self._delta(t)
        return (self.rhs(t + delta, y) - f0) / delta

    def jac_time_derivative(self, t: float, y: torch.Tensor, jac0):
        delta = self._delta(t)
        return (self.jac(t + delta, y) - jac0) * (1.0 / delta)

    # ---- counted linear algebra -------------------------------------------
    def factorize(self, mat):
        fact, singular = self.linalg.factorize(mat)
        self.stats.ndec += 1
        if singular:
            self.stats.nsng += 1
        return fact, singular

    def solve(self, fact, rhs: torch.Tensor, transpose: bool = False):
        self.stats.nsol += 1 if rhs.dim() == 1 else rhs.shape[1]
        return self.linalg.solve(fact, rhs, transpose)
