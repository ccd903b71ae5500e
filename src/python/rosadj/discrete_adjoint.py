# discrete_adjoint.py
import logging

import torch

from .checkpoint import TrajectoryBuffer
from .ros_tables import RosenbrockTableau
from .status import SingularMatrixError
from .stepcontext import RunContext

logger = logging.getLogger(__name__)


def discrete_adjoint(ctx: RunContext, tab: RosenbrockTableau,
                     lam: torch.Tensor, buffer: TrajectoryBuffer,
                     direction: int) -> float:
    """
    Exact adjoint of the forward Rosenbrock recurrence.

    Pops the discrete checkpoints newest first and, for each step, runs the
    stages in reverse:

        U_i = G^{-T} ( m_i lam + sum_{j>i} ( a_ji V_j + c_ji/hs U_j ) )
        V_i = J(t + alpha_i hs, Y_i)^T U_i

    then  lam += sum_i V_i + sum_i (H(Y_1) x k_i)^T U_i
    (+ hs * (dJ/dt)^T sum_i gamma_i U_i  for non-autonomous systems).

    ``lam`` is (n, K) and is updated in place; the buffer is left empty.
    Returns the time of the last replayed step, i.e. the start time.
    """
    S = tab.stages
    n, nadj = lam.shape
    t = None

    while len(buffer) > 0:
        snap = buffer.pop()
        t, h = snap.t, snap.h
        hs = direction * h
        y1 = snap.ystage[0]

        # iteration matrix of the step, saved or rebuilt
        fact = snap.factorization
        if fact is None:
            jac = ctx.jac(t, y1)
            fact, singular = ctx.factorize(
                ctx.linalg.shifted(jac, 1.0 / (hs * tab.gamma_diag)))
            if singular:
                raise SingularMatrixError("while replaying a discrete step",
                                          t=t, h=h)

        hess = ctx.hess_op(t, y1)

        U = lam.new_zeros(S, n, nadj)
        V = lam.new_zeros(S, n, nadj)
        jac_i = None
        for i in reversed(range(S)):
            u = tab.m[i] * lam
            for j in range(i + 1, S):
                u = u + tab.A[j, i] * V[j] + (tab.C[j, i] / hs) * U[j]
            U[i] = ctx.solve(fact, u, transpose=True)

            tau = t + tab.alpha[i].item() * hs
            jac_i = ctx.jac(tau, snap.ystage[i])
            V[i] = ctx.linalg.matvec(jac_i, U[i], transpose=True)

        lam += V.sum(dim=0)
        for i in range(S):
            lam += hess(U[i], snap.k[i])

        if not ctx.control.autonomous:
            # jac_i now holds J(t, Y_1) from the first stage
            djdt = ctx.jac_time_derivative(t, y1, jac_i)
            ug = torch.einsum("s,snk->nk", tab.gamma, U)
            lam += hs * ctx.linalg.matvec(djdt, ug, transpose=True)

    logger.debug("discrete adjoint finished at t=%s", t)
    return t
