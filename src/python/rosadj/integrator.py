# integrator.py  -----------------------------------------------------------
"""
Driver: forward pass, then at most one adjoint pass.

    >>> solver = RosenbrockAdjoint(OdeModel(rhs=f, jac=J))
    >>> res = solver.integrate(y0, lam_T, 0.0, 1.0, atol=1e-8, rtol=1e-8)
    >>> res.status, res.lam

All fatal conditions come back as a :class:`~rosadj.status.Status` in the
result; the integrators underneath raise, the driver reports and converts.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import torch

from .checkpoint import CheckpointKind, TrajectoryBuffer
from .continuous_adjoint import continuous_adjoint, simple_continuous_adjoint
from .discrete_adjoint import discrete_adjoint
from .forward import forward_integrate
from .linsolve import get_linear_algebra
from .model import OdeModel
from .options import (AdjointType, IntegrationControl, RosenbrockOptions,
                      check_tolerances)
from .ros_tables import method_table
from .status import RosenbrockError, Status, describe
from .stepcontext import IntegratorStats, RunContext

logger = logging.getLogger(__name__)


@dataclass
class AdjointResult:
    status: Status
    y:      torch.Tensor          # state at the end time
    lam:    torch.Tensor          # sensitivities at the start time
    stats:  IntegratorStats

    @property
    def success(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def message(self) -> str:
        return describe(self.status)


# --------------------------------------------------------------------------- #
# ---- argument normalisation ----------------------------------------------- #
def _as_state(y) -> torch.Tensor:
    """Tensor sharing memory with ``y`` whenever that is possible."""
    if isinstance(y, torch.Tensor):
        return y if y.is_floating_point() else y.to(torch.float64)
    if isinstance(y, np.ndarray) and y.dtype == np.float64:
        return torch.from_numpy(y)
    return torch.as_tensor(np.asarray(y, dtype=np.float64))


def _as_tol(tol, like: torch.Tensor) -> torch.Tensor:
    if isinstance(tol, torch.Tensor):
        return tol.to(dtype=like.dtype, device=like.device)
    return torch.as_tensor(np.asarray(tol, dtype=np.float64),
                           dtype=like.dtype, device=like.device)


def _state_tolerances(atol, rtol, y: torch.Tensor,
                      vector_tol: bool) -> Tuple[torch.Tensor, torch.Tensor]:
    """Per-component tolerances, or the first entries in scalar mode."""
    n = y.numel()
    a = _as_tol(atol, y).reshape(-1)
    r = _as_tol(rtol, y).reshape(-1)
    if not vector_tol:
        return a[0], r[0]
    return a.expand(n).clone() if a.numel() == 1 else a, \
        r.expand(n).clone() if r.numel() == 1 else r


def _adjoint_tolerances(tol, default: torch.Tensor, lam: torch.Tensor,
                        vector_tol: bool) -> torch.Tensor:
    n, nadj = lam.shape
    out = default if tol is None else _as_tol(tol, lam)
    if out.dim() == 1:
        out = out.reshape(-1, 1)
    out = out.expand(n, nadj)
    if not vector_tol:
        out = out[0:1, :].expand(n, nadj)
    return out


# --------------------------------------------------------------------------- #
class RosenbrockAdjoint:
    """
    Rosenbrock integrator with discrete or continuous adjoint sensitivities.

    Parameters
    ----------
    model          : :class:`OdeModel`, or a bare ``f(t, y)`` callable
    options        : :class:`RosenbrockOptions`; defaults when omitted
    linear_algebra : "dense", "sparse" or a backend instance
    """

    def __init__(self, model, options: Optional[RosenbrockOptions] = None,
                 linear_algebra="dense"):
        self.model   = model if isinstance(model, OdeModel) else OdeModel(rhs=model)
        self.options = options if options is not None else RosenbrockOptions()
        self.linalg  = get_linear_algebra(linear_algebra)

    # ---- helpers ------------------------------------------------------------
    @staticmethod
    def _allocate(control: IntegrationControl) -> Optional[TrajectoryBuffer]:
        if control.adjoint_type == AdjointType.DISCRETE:
            kind = CheckpointKind.DISCRETE
        elif control.adjoint_type in (AdjointType.CONTINUOUS,
                                      AdjointType.SIMPLE_CONTINUOUS):
            kind = CheckpointKind.CONTINUOUS
        else:
            return None
        return TrajectoryBuffer(kind, capacity=control.buffer_size)

    # ---- main entry ---------------------------------------------------------
    def integrate(self, y, lam, t_start: float, t_end: float, *,
                  atol=1e-3, rtol=1e-4, atol_adj=None, rtol_adj=None,
                  stats: Optional[IntegratorStats] = None) -> AdjointResult:
        """
        Integrate ``y`` from ``t_start`` to ``t_end`` and pull ``lam`` back.

        ``y`` (n,) and ``lam`` ((n,) or (n, K)) are overwritten in place when
        they are float64 tensors or NumPy arrays.  ``atol_adj``/``rtol_adj``
        only matter for the full continuous adjoint and default to the state
        tolerances.
        """
        stats = IntegratorStats() if stats is None else stats
        y_t   = _as_state(y)
        lam_t = _as_state(lam)
        lam2d = lam_t.unsqueeze(1) if lam_t.dim() == 1 else lam_t
        t_start, t_end = float(t_start), float(t_end)
        buffer = None

        try:
            control = self.options.resolve(t_start, t_end)
            ctx = RunContext(model=self.model, linalg=self.linalg,
                             control=control, stats=stats)

            atol_t, rtol_t = _state_tolerances(atol, rtol, y_t,
                                               control.vector_tol)
            check_tolerances(*torch.broadcast_tensors(atol_t, rtol_t),
                             roundoff=ctx.roundoff)

            kw = dict(dtype=y_t.dtype, device=y_t.device)
            fwd_tab = method_table(control.method, **kw)
            adj = control.adjoint_type
            if adj in (AdjointType.CONTINUOUS, AdjointType.SIMPLE_CONTINUOUS):
                cadj_tab = method_table(control.cadj_method, **kw)
            if adj == AdjointType.CONTINUOUS:
                atol_a = _adjoint_tolerances(atol_adj, atol_t, lam2d,
                                             control.vector_tol)
                rtol_a = _adjoint_tolerances(rtol_adj, rtol_t, lam2d,
                                             control.vector_tol)
                check_tolerances(atol_a, rtol_a, roundoff=ctx.roundoff)

            buffer = self._allocate(control)
            logger.debug("forward %s, adjoint %s, t=[%g, %g]",
                         fwd_tab.name, adj.name, t_start, t_end)

            forward_integrate(ctx, fwd_tab, y_t, t_start, t_end,
                              atol_t, rtol_t, buffer)
            logger.info("forward statistics: %s", stats.summary())

            direction = 1 if t_end >= t_start else -1
            if adj == AdjointType.DISCRETE:
                texit = discrete_adjoint(ctx, fwd_tab, lam2d, buffer,
                                         direction)
                stats.texit = t_start if texit is None else texit
            elif adj == AdjointType.CONTINUOUS:
                stats.texit = continuous_adjoint(ctx, cadj_tab, lam2d, buffer,
                                                 t_start, t_end,
                                                 atol_a, rtol_a)
            elif adj == AdjointType.SIMPLE_CONTINUOUS:
                stats.texit = simple_continuous_adjoint(ctx, cadj_tab, lam2d,
                                                        buffer, t_start, t_end)
            if adj != AdjointType.NONE:
                logger.info("adjoint statistics: %s", stats.summary())

        except RosenbrockError as exc:
            exc.report(logger)
            return AdjointResult(exc.status, y_t, lam_t, stats)
        finally:
            if buffer is not None:
                buffer.clear()

        return AdjointResult(Status.SUCCESS, y_t, lam_t, stats)


def integrate_adj(model, y, lam, tin: float, tout: float,
                  atol=1e-3, rtol=1e-4, atol_adj=None, rtol_adj=None,
                  icntrl: Optional[Sequence[int]] = None,
                  rcntrl: Optional[Sequence[float]] = None,
                  linear_algebra="dense",
                  stats: Optional[IntegratorStats] = None) -> AdjointResult:
    """Control-array front end, see :meth:`RosenbrockOptions.from_control`."""
    options = RosenbrockOptions.from_control(icntrl, rcntrl)
    solver  = RosenbrockAdjoint(model, options, linear_algebra)
    res = solver.integrate(y, lam, tin, tout, atol=atol, rtol=rtol,
                           atol_adj=atol_adj, rtol_adj=rtol_adj, stats=stats)
    if not res.success:
        logger.error("RosenbrockADJ: unsuccessful step at T=%g (status=%d)",
                     tin, int(res.status))
    return res
