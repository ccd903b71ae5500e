# model.py
"""
The system being integrated, as a bundle of callables.

Only ``rhs`` is mandatory.  A missing Jacobian or Hessian is recovered with
PyTorch autograd, which needs ``rhs`` to be written with torch operations;
supplying them by hand is still the faster option for large mechanisms.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import scipy.sparse as sp
import torch

HessOp = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


def as_tensor(x, like: torch.Tensor) -> torch.Tensor:
    """Array-like → tensor with the dtype/device of ``like``."""
    if isinstance(x, torch.Tensor):
        return x.to(dtype=like.dtype, device=like.device)
    return torch.as_tensor(np.asarray(x), dtype=like.dtype, device=like.device)


@dataclass
class OdeModel:
    """
    Parameters
    ----------
    rhs            : f(t, y) -> dy/dt
    jac            : J(t, y) -> df/dy, dense (torch / numpy) or scipy.sparse
    hess           : H(t, y) -> either the (n, n, n) tensor
                     H[i, j, k] = d2 f_i / dy_j dy_k, or a callable
                     ``op(u, k)`` returning ``(H x k)^T u`` for u of shape (n, K)
    update_forcing : hook(t) refreshing time-dependent external forcing
    update_rates   : hook(t) refreshing rate coefficients
    """
    rhs:            Callable
    jac:            Optional[Callable] = None
    hess:           Optional[Callable] = None
    update_forcing: Optional[Callable[[float], None]] = None
    update_rates:   Optional[Callable[[float], None]] = None

    # ---- evaluations ------------------------------------------------------
    def eval_rhs(self, t: float, y: torch.Tensor) -> torch.Tensor:
        return as_tensor(self.rhs(t, y), y)

    def eval_jac(self, t: float, y: torch.Tensor):
        """Raw Jacobian: a scipy sparse matrix is passed through untouched."""
        if self.jac is None:
            return torch.autograd.functional.jacobian(
                lambda y_: self.rhs(t, y_), y.detach())
        J = self.jac(t, y)
        if sp.issparse(J):
            return J
        return as_tensor(J, y)

    def hess_op(self, t: float, y: torch.Tensor) -> HessOp:
        """Operator ``(u, k) -> (H x k)^T u`` frozen at (t, y)."""
        if self.hess is None:
            return _autograd_hess_op(self.rhs, t, y)
        H = self.hess(t, y)
        if callable(H):
            return H
        H = as_tensor(H, y)

        def op(u, k):
            return torch.einsum("ijk,im,k->jm", H, u, k)
        return op


# --------------------------------------------------------------------------- #
def _autograd_hess_op(rhs: Callable, t: float, y: torch.Tensor) -> HessOp:
    # double backward:  d/dy [ k . (J^T u) ]  =  sum_ij u_i H_ijk k_j
    y_ = y.detach().clone().requires_grad_(True)
    with torch.enable_grad():
        fy = rhs(t, y_)

    def op(u, k):
        out = torch.zeros_like(u)
        if not fy.requires_grad:         # f does not depend on y
            return out
        with torch.enable_grad():
            for m in range(u.shape[1]):
                g, = torch.autograd.grad(fy, y_, grad_outputs=u[:, m],
                                         create_graph=True, retain_graph=True,
                                         allow_unused=True)
                if g is None or not g.requires_grad:
                    continue             # f is linear in y
                hk, = torch.autograd.grad(g, y_, grad_outputs=k,
                                          retain_graph=True, allow_unused=True)
                if hk is not None:
                    out[:, m] = hk
        return out
    return op
