# errnorm.py
import torch

ERR_FLOOR = 1e-10


def error_norm(y: torch.Tensor, ynew: torch.Tensor, yerr: torch.Tensor,
               atol, rtol) -> float:
    """
    Weighted RMS norm of the embedded error estimate.

        err = sqrt( mean_i ( yerr_i / (atol_i + rtol_i * max(|y_i|,|ynew_i|)) )^2 )

    ``atol``/``rtol`` may be scalars or per-component tensors.  The result is
    floored at 1e-10 so that ``err**(-1/elo)`` in the step controller stays
    finite.
    """
    sk  = atol + rtol * torch.maximum(y.abs(), ynew.abs())
    err = torch.sqrt(torch.mean((yerr / sk) ** 2)).item()
    return max(err, ERR_FLOOR)
