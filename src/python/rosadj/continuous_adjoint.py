# continuous_adjoint.py
"""
Continuous adjoints: the linear ODE

    lam' = -J(t, y(t))^T lam

integrated from t_end back to t_start with a Rosenbrock method, y(t) being
rebuilt from the continuous checkpoints by cubic Hermite interpolation.

``continuous_adjoint`` runs its own error-controlled step sequence;
``simple_continuous_adjoint`` steps exactly on the forward grid.
"""
import logging
from typing import Callable, Optional

import torch

from .checkpoint import TrajectoryBuffer
from .errnorm import error_norm
from .forward import initial_step, not_finished
from .interp_hermite import hermite3
from .linsolve import prepare_matrix
from .ros_tables import RosenbrockTableau
from .status import (MaxStepsExceeded, SingularMatrixError, StepSizeTooSmall,
                     TrajectoryLookupError)
from .stepcontext import RunContext

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# ---- forward state reconstruction ----------------------------------------- #
def interpolate_trajectory(buffer: TrajectoryBuffer, t: float,
                           extrapolate: bool = False) -> torch.Tensor:
    """
    y(t) from the continuous checkpoints.

    The bracketing pair is found by a linear scan over the stored times.
    A query outside the stored span raises :class:`TrajectoryLookupError`
    unless ``extrapolate`` is set, in which case the cubic of the nearest
    end interval is evaluated.
    """
    n = len(buffer)
    if n == 0:
        raise TrajectoryLookupError("no trajectory stored")
    first, last = buffer[0], buffer[n - 1]
    if n == 1:
        return first.y.clone()

    lo, hi = min(first.t, last.t), max(first.t, last.t)
    tol = 10.0 * torch.finfo(first.y.dtype).eps * max(1.0, abs(lo), abs(hi))
    outside = t < lo - tol or t > hi + tol
    if outside and not extrapolate:
        raise TrajectoryLookupError(
            f"cannot locate solution at t={t!r}; stored trajectory spans "
            f"[{lo!r}, {hi!r}]")

    if outside:
        # nearest end interval
        i = 0 if abs(t - first.t) < abs(t - last.t) else n - 2
    else:
        for i in range(n - 1):
            ta, tb = buffer[i].t, buffer[i + 1].t
            if min(ta, tb) - tol <= t <= max(ta, tb) + tol:
                break
    a, b = buffer[i], buffer[i + 1]
    return hermite3(a.t, b.t, t, a.y, b.y, a.dy, b.dy)


# --------------------------------------------------------------------------- #
# ---- shared stage loop ---------------------------------------------------- #
def _adjoint_rhs(ctx: RunContext, jac, lam: torch.Tensor) -> torch.Tensor:
    return -ctx.linalg.matvec(jac, lam, transpose=True)


def _adjoint_stages(ctx: RunContext, tab: RosenbrockTableau, t: float,
                    hs: float, lam: torch.Tensor, fact, fcn0: torch.Tensor,
                    dfdt: Optional[torch.Tensor],
                    state_at: Callable[[float], torch.Tensor]) -> torch.Tensor:
    """Stage vectors (S, n, K) of one Rosenbrock step of the adjoint ODE."""
    S = tab.stages
    K = lam.new_zeros(S, *lam.shape)
    fcn = fcn0
    for i in range(S):
        if i > 0 and tab.new_f[i]:
            lam_i = lam + torch.einsum("j,jnk->nk", tab.A[i, :i], K[:i])
            tau = t + tab.alpha[i].item() * hs
            fcn = _adjoint_rhs(ctx, ctx.jac(tau, state_at(tau)), lam_i)

        rhs = fcn.clone()
        if i > 0:
            rhs += torch.einsum("j,jnk->nk", tab.C[i, :i] / hs, K[:i])
        gi = tab.gamma[i].item()
        if dfdt is not None and gi != 0.0:
            rhs += (hs * gi) * dfdt
        # iteration matrix of -J^T is the transpose of (ghinv I + J)
        K[i] = ctx.solve(fact, rhs, transpose=True)
    return K


def _time_derivative(ctx: RunContext, t: float, y0, jac0,
                     lam: torch.Tensor) -> Optional[torch.Tensor]:
    if ctx.control.autonomous:
        return None
    djdt = ctx.jac_time_derivative(t, y0, jac0)
    return _adjoint_rhs(ctx, djdt, lam)


# --------------------------------------------------------------------------- #
def continuous_adjoint(ctx: RunContext, tab: RosenbrockTableau,
                       lam: torch.Tensor, buffer: TrajectoryBuffer,
                       t_start: float, t_end: float,
                       atol_adj: torch.Tensor, rtol_adj: torch.Tensor) -> float:
    """
    Full continuous adjoint with independent step-size control.

    ``lam`` (n, K) holds the sensitivities at ``t_end`` on entry and those
    at ``t_start`` on return.  The error of a step is the largest weighted
    RMS norm over the K columns.  Returns the time reached.
    """
    ctl   = ctx.control
    stats = ctx.stats
    nadj  = lam.shape[1]

    t, target = t_end, t_start
    direction = 1 if target >= t else -1
    h = initial_step(ctx)
    stats.hexit = 0.0
    reject_last = reject_more = False
    nsteps = 0

    def state_at(tau):
        return interpolate_trajectory(buffer, tau, extrapolate=True)

    while not_finished(t, target, direction, ctx.roundoff):
        if nsteps > ctl.max_steps:
            raise MaxStepsExceeded(f"adjoint max_steps={ctl.max_steps}",
                                   t=t, h=h)
        if t + 0.1 * direction * h == t or h <= ctx.roundoff:
            raise StepSizeTooSmall(t=t, h=h)

        stats.hexit = h
        h = min(h, abs(target - t))

        y0   = interpolate_trajectory(buffer, t)
        jac0 = ctx.jac(t, y0)
        dfdt = _time_derivative(ctx, t, y0, jac0, lam)
        fcn0 = _adjoint_rhs(ctx, jac0, lam)
        neg_jac0 = -jac0

        while True:
            h, fact = prepare_matrix(ctx, h, direction, tab.gamma_diag,
                                     neg_jac0, t=t)
            hs = direction * h
            K = _adjoint_stages(ctx, tab, t, hs, lam, fact, fcn0, dfdt,
                                state_at)
            lam_new = lam + torch.einsum("s,snk->nk", tab.m, K)
            lam_err = torch.einsum("s,snk->nk", tab.e, K)

            err = max(error_norm(lam[:, m], lam_new[:, m], lam_err[:, m],
                                 atol_adj[:, m], rtol_adj[:, m])
                      for m in range(nadj))

            fac  = min(ctl.fac_max,
                       max(ctl.fac_min, ctl.fac_safe / err ** (1.0 / tab.elo)))
            hnew = h * fac
            nsteps += 1
            stats.nstp += 1

            if err <= 1.0 or h <= ctl.hmin:                  # accept
                stats.nacc += 1
                lam.copy_(lam_new)
                t += hs
                hnew = max(ctl.hmin, min(hnew, ctl.hmax))
                if reject_last:
                    hnew = min(hnew, h)
                stats.hexit, stats.hnew, stats.texit = h, hnew, t
                logger.debug("adjoint accepted t=%.6e h=%.3e err=%.3e",
                             t, h, err)
                reject_last = reject_more = False
                h = hnew
                break

            if reject_more:
                hnew = h * ctl.fac_rej
            reject_more = reject_last
            reject_last = True
            h = hnew
            if stats.nacc >= 1:
                stats.nrej += 1

    buffer.clear()
    return t


def simple_continuous_adjoint(ctx: RunContext, tab: RosenbrockTableau,
                              lam: torch.Tensor, buffer: TrajectoryBuffer,
                              t_start: float, t_end: float) -> float:
    """
    Continuous adjoint stepped on the forward grid.

    Each pass pops the newest checkpoint (the step start, backward in time)
    and peeks at the next one (the step end).  Stage states come from the
    cubic Hermite between those two points.  No error control is done and a
    singular iteration matrix is fatal.
    """
    stats = ctx.stats
    # backward in time, towards t_start
    direction = -1 if t_end >= t_start else 1
    t = t_end

    while len(buffer) > 1:
        upper = buffer.pop()
        lower = buffer.peek()
        t = upper.t
        h = abs(upper.t - lower.t)
        hs = direction * h

        def state_at(tau, a=lower, b=upper):
            return hermite3(a.t, b.t, tau, a.y, b.y, a.dy, b.dy)

        jac0 = ctx.jac(t, upper.y)
        dfdt = _time_derivative(ctx, t, upper.y, jac0, lam)
        fcn0 = _adjoint_rhs(ctx, jac0, lam)

        fact, singular = ctx.factorize(
            ctx.linalg.shifted(-jac0, 1.0 / (hs * tab.gamma_diag)))
        if singular:
            raise SingularMatrixError("simplified continuous adjoint",
                                      t=t, h=h)

        K = _adjoint_stages(ctx, tab, t, hs, lam, fact, fcn0, dfdt, state_at)
        lam += torch.einsum("s,snk->nk", tab.m, K)

        t = lower.t
        stats.nstp += 1
        stats.nacc += 1
        stats.hexit, stats.texit = h, t

    if len(buffer):
        t = buffer.pop().t
    return t
