# forward.py
"""
Forward Rosenbrock integration with embedded error control.

Accepted steps are recorded in a :class:`~rosadj.checkpoint.TrajectoryBuffer`
when one is given: stage data for the discrete adjoint, or (y, f, J f + f_t)
samples for the continuous adjoints.
"""
import logging
from typing import Optional

import torch

from .checkpoint import (CheckpointKind, ContinuousSnapshot, DiscreteSnapshot,
                         TrajectoryBuffer)
from .errnorm import error_norm
from .linsolve import prepare_matrix
from .options import DELTA_MIN
from .ros_tables import RosenbrockTableau
from .status import MaxStepsExceeded, StepSizeTooSmall
from .stepcontext import RunContext

logger = logging.getLogger(__name__)


def not_finished(t: float, t_end: float, direction: int,
                 roundoff: float) -> bool:
    if direction > 0:
        return (t - t_end) + roundoff <= 0.0
    return (t_end - t) + roundoff <= 0.0


def initial_step(ctx: RunContext) -> float:
    ctl = ctx.control
    h = min(max(abs(ctl.hmin), abs(ctl.hstart)), abs(ctl.hmax))
    if abs(h) <= 10.0 * ctx.roundoff:
        h = DELTA_MIN
    return h


def rosenbrock_step(ctx: RunContext, tab: RosenbrockTableau,
                    t: float, y: torch.Tensor, hs: float, fact,
                    f0: torch.Tensor, dfdt: Optional[torch.Tensor] = None):
    """
    One step attempt on a factorized iteration matrix.

    Parameters
    ----------
    hs    : signed step (direction * h)
    fact  : factorization of 1/(hs*gamma) I - J
    f0    : f(t, y)
    dfdt  : df/dt at (t, y); ``None`` for autonomous systems

    Returns
    -------
    ynew, yerr : new solution and embedded error estimate
    ystage, k  : (S, n) stage states and stage vectors
    """
    S = tab.stages
    k      = y.new_zeros(S, y.numel())
    ystage = y.new_zeros(S, y.numel())

    fcn = f0
    for i in range(S):
        if i == 0:
            ystage[0] = y
        else:
            ystage[i] = y + tab.A[i, :i] @ k[:i]
            # stages without new_f reuse the previous evaluation
            if tab.new_f[i]:
                tau = t + tab.alpha[i].item() * hs
                fcn = ctx.rhs(tau, ystage[i])

        rhs = fcn.clone()
        if i > 0:
            rhs += (tab.C[i, :i] / hs) @ k[:i]
        gi = tab.gamma[i].item()
        if dfdt is not None and gi != 0.0:
            rhs += (hs * gi) * dfdt
        k[i] = ctx.solve(fact, rhs)

    ynew = y + tab.m @ k
    yerr = tab.e @ k
    return ynew, yerr, ystage, k


def _record(buffer: TrajectoryBuffer, snapshot, t: float, h: float) -> None:
    """Push a checkpoint; a full buffer ends the run like a step limit."""
    if len(buffer) >= buffer.capacity:
        raise MaxStepsExceeded(
            f"trajectory buffer full ({buffer.capacity} snapshots)", t=t, h=h)
    buffer.push(snapshot)


# --------------------------------------------------------------------------- #
def forward_integrate(ctx: RunContext, tab: RosenbrockTableau,
                      y: torch.Tensor, t_start: float, t_end: float,
                      atol, rtol,
                      buffer: Optional[TrajectoryBuffer] = None) -> float:
    """
    Integrate y from ``t_start`` to ``t_end``, overwriting ``y`` in place.

    Returns the time reached.  Raises :class:`MaxStepsExceeded`,
    :class:`StepSizeTooSmall` or :class:`SingularMatrixError` on fatal exits;
    ``y`` then holds the last accepted state.
    """
    ctl   = ctx.control
    stats = ctx.stats
    kind  = buffer.kind if buffer is not None else None

    direction = 1 if t_end >= t_start else -1
    h = initial_step(ctx)
    t = t_start
    stats.hexit = 0.0
    reject_last = reject_more = False
    nsteps = 0

    while not_finished(t, t_end, direction, ctx.roundoff):
        if nsteps > ctl.max_steps:
            raise MaxStepsExceeded(f"max_steps={ctl.max_steps}", t=t, h=h)
        if t + 0.1 * direction * h == t or h <= ctx.roundoff:
            raise StepSizeTooSmall(t=t, h=h)

        # never step past t_end
        stats.hexit = h
        h = min(h, abs(t_end - t))

        # once per step: f, df/dt and J at the pre-step state
        f0   = ctx.rhs(t, y)
        dfdt = None if ctl.autonomous else ctx.fun_time_derivative(t, y, f0)
        jac0 = ctx.jac(t, y)

        # ---- until accepted ------------------------------------------------
        while True:
            h, fact = prepare_matrix(ctx, h, direction, tab.gamma_diag,
                                     jac0, t=t)
            hs = direction * h
            ynew, yerr, ystage, k = rosenbrock_step(ctx, tab, t, y, hs,
                                                    fact, f0, dfdt)
            err = error_norm(y, ynew, yerr, atol, rtol)

            fac  = min(ctl.fac_max,
                       max(ctl.fac_min, ctl.fac_safe / err ** (1.0 / tab.elo)))
            hnew = h * fac
            nsteps += 1
            stats.nstp += 1

            if err <= 1.0 or h <= ctl.hmin:                  # accept
                stats.nacc += 1
                if kind is CheckpointKind.DISCRETE:
                    _record(buffer, DiscreteSnapshot(
                        t=t, h=h, ystage=ystage, k=k,
                        factorization=fact if ctl.save_lu else None), t, h)
                elif kind is CheckpointKind.CONTINUOUS:
                    d2y = ctx.linalg.matvec(jac0, f0)
                    if dfdt is not None:
                        d2y = d2y + dfdt
                    _record(buffer, ContinuousSnapshot(
                        t=t, h=h, y=y.clone(), dy=f0, d2y=d2y), t, h)

                y.copy_(ynew)
                t += hs
                hnew = max(ctl.hmin, min(hnew, ctl.hmax))
                if reject_last:                  # no growth right after a reject
                    hnew = min(hnew, h)
                stats.hexit, stats.hnew, stats.texit = h, hnew, t
                logger.debug("accepted t=%.6e h=%.3e err=%.3e", t, h, err)
                reject_last = reject_more = False
                h = hnew
                break

            # reject
            if reject_more:
                hnew = h * ctl.fac_rej
            reject_more = reject_last
            reject_last = True
            logger.debug("rejected t=%.6e h=%.3e err=%.3e", t, h, err)
            h = hnew
            if stats.nacc >= 1:
                stats.nrej += 1

    # close the continuous trajectory at t_end
    if kind is CheckpointKind.CONTINUOUS:
        f0   = ctx.rhs(t, y)
        jac0 = ctx.jac(t, y)
        d2y  = ctx.linalg.matvec(jac0, f0)
        if not ctl.autonomous:
            d2y = d2y + ctx.fun_time_derivative(t, y, f0)
        _record(buffer, ContinuousSnapshot(t=t, h=h, y=y.clone(), dy=f0,
                                           d2y=d2y), t, h)

    return t
