# linsolve.py
import logging
from typing import NamedTuple, Tuple, Union

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
import torch

from .status import SingularMatrixError

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_SINGULAR = 5


# --------------------------------------------------------------------------- #
# ---- helpers -------------------------------------------------------------- #
def _torch_csc(t: torch.Tensor) -> sp.csc_matrix:
    """Torch → SciPy CSC."""
    return sp.csc_matrix(t.detach().cpu().numpy())


class DenseLU(NamedTuple):
    lu:     torch.Tensor
    pivots: torch.Tensor


# --------------------------------------------------------------------------- #
class DenseLinearAlgebra:
    """Full matrices, LU with partial pivoting from ``torch.linalg``."""

    name = "dense"

    def prepare(self, jac, like: torch.Tensor) -> torch.Tensor:
        if sp.issparse(jac):
            jac = jac.toarray()
        if not isinstance(jac, torch.Tensor):
            jac = torch.as_tensor(np.asarray(jac))
        return jac.to(dtype=like.dtype, device=like.device, copy=True)

    def shifted(self, jac: torch.Tensor, ghinv: float) -> torch.Tensor:
        """ghinv * I - jac"""
        a_mat = -jac.clone()
        a_mat.diagonal().add_(ghinv)
        return a_mat

    def factorize(self, mat: torch.Tensor) -> Tuple[DenseLU, bool]:
        lu, piv, info = torch.linalg.lu_factor_ex(mat)
        singular = int(info) != 0 or not bool(torch.isfinite(lu).all())
        return DenseLU(lu, piv), singular

    def solve(self, fact: DenseLU, rhs: torch.Tensor,
              transpose: bool = False) -> torch.Tensor:
        # make RHS at least 2-D
        b = rhs.unsqueeze(-1) if rhs.dim() == 1 else rhs
        x = torch.linalg.lu_solve(fact.lu, fact.pivots, b, adjoint=transpose)
        return x.squeeze(-1) if rhs.dim() == 1 else x

    def matvec(self, jac: torch.Tensor, v: torch.Tensor,
               transpose: bool = False) -> torch.Tensor:
        return (jac.mT if transpose else jac) @ v


class SparseLinearAlgebra:
    """Fixed-sparsity matrices, SuperLU via ``scipy.sparse.linalg.splu``."""

    name = "sparse"

    def prepare(self, jac, like: torch.Tensor) -> sp.csc_matrix:
        if isinstance(jac, torch.Tensor):
            return _torch_csc(jac)
        return sp.csc_matrix(jac)

    def shifted(self, jac: sp.csc_matrix, ghinv: float) -> sp.csc_matrix:
        n = jac.shape[0]
        return (ghinv * sp.identity(n, format="csc") - jac).tocsc()

    def factorize(self, mat: sp.csc_matrix):
        try:
            return spla.splu(mat), False
        except RuntimeError as exc:          # "Factor is exactly singular"
            logger.debug("splu failed: %s", exc)
            return None, True

    def solve(self, fact, rhs: torch.Tensor,
              transpose: bool = False) -> torch.Tensor:
        b = rhs.detach().cpu().numpy()
        x = fact.solve(b, trans="T" if transpose else "N")
        return torch.as_tensor(x, dtype=rhs.dtype, device=rhs.device)

    def matvec(self, jac: sp.csc_matrix, v: torch.Tensor,
               transpose: bool = False) -> torch.Tensor:
        op = jac.T if transpose else jac
        x = op @ v.detach().cpu().numpy()
        return torch.as_tensor(x, dtype=v.dtype, device=v.device)


LinearAlgebra = Union[DenseLinearAlgebra, SparseLinearAlgebra]

_BACKENDS = {
    "dense":  DenseLinearAlgebra,
    "sparse": SparseLinearAlgebra,
}


def get_linear_algebra(kind="dense") -> LinearAlgebra:
    if not isinstance(kind, str):
        return kind
    try:
        return _BACKENDS[kind.lower()]()
    except KeyError:
        raise ValueError(f"unknown linear algebra backend {kind!r}; "
                         f"expected one of {sorted(_BACKENDS)}") from None


# --------------------------------------------------------------------------- #
def prepare_matrix(ctx, h: float, direction: int, gamma: float, jac,
                   t: float = 0.0):
    """
    Assemble and factorize  1/(direction*h*gamma) * I - jac.

    A singular factorization halves ``h`` and tries again; the sixth
    consecutive failure raises :class:`SingularMatrixError`.

    Returns
    -------
    h    : the (possibly reduced) step magnitude
    fact : factorization artifact of the accepted matrix
    """
    nconsecutive = 0
    while True:
        ghinv = 1.0 / (direction * h * gamma)
        fact, singular = ctx.factorize(ctx.linalg.shifted(jac, ghinv))
        if not singular:
            return h, fact
        nconsecutive += 1
        logger.warning("LU decomposition of the iteration matrix is singular "
                       "(t=%.6e, h=%.6e, attempt %d)", t, h, nconsecutive)
        if nconsecutive > MAX_CONSECUTIVE_SINGULAR:
            raise SingularMatrixError(
                f"{nconsecutive} consecutive singular decompositions",
                t=t, h=h)
        h *= 0.5
