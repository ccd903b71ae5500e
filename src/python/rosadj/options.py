# options.py ---------------------------------------------------------------
"""
Integrator settings.

:class:`RosenbrockOptions` holds what the user asked for, with ``0`` meaning
"use the default" throughout, exactly like the classic ICNTRL/RCNTRL control
arrays.  :meth:`RosenbrockOptions.resolve` fills in the defaults, validates
every field and returns a frozen :class:`IntegrationControl`; nothing is
integrated until that succeeds.
"""
import enum
from dataclasses import dataclass, fields
from typing import Optional, Sequence

import torch

from .checkpoint import BUFSIZE
from .ros_tables import RosMethod, resolve_method
from .status import ConfigurationError, Status

DELTA_MIN = 1.0e-5          # fallback starting step
N_CONTROL = 20              # length of the ICNTRL / RCNTRL arrays


class AdjointType(enum.IntEnum):
    NONE              = 1
    DISCRETE          = 2
    CONTINUOUS        = 3
    SIMPLE_CONTINUOUS = 4


def resolve_adjoint_type(code) -> AdjointType:
    if code == 0:
        return AdjointType.DISCRETE
    try:
        return AdjointType(int(code))
    except ValueError:
        raise ConfigurationError(f"unknown adjoint type {code}",
                                 status=Status.BAD_ADJOINT_TYPE) from None


def update_flags(code: int):
    """
    Decode the update-hook selector into ``(forcing, rates)``.

    -1 disables both hooks, 0 keeps the default (5).  Otherwise bit 0 and
    bit 1 request the rate hook, bit 2 the forcing hook.
    """
    if code < 0:
        return False, False
    if code == 0:
        code = 5
    return bool(code & 4), bool(code & 3)


@dataclass(frozen=True)
class IntegrationControl:
    method:         RosMethod
    cadj_method:    RosMethod
    adjoint_type:   AdjointType
    max_steps:      int
    hmin:           float
    hmax:           float
    hstart:         float
    fac_min:        float
    fac_max:        float
    fac_rej:        float
    fac_safe:       float
    autonomous:     bool
    vector_tol:     bool
    save_lu:        bool
    update_forcing: bool
    update_rates:   bool
    buffer_size:    int


@dataclass
class RosenbrockOptions:
    autonomous:   bool  = False
    vector_tol:   bool  = True
    method:       int   = 0        # 1..5, see RosMethod; 0 -> RODAS-3
    max_steps:    int   = 0        # 0 -> buffer_size - 1
    cadj_method:  int   = 0        # method for the continuous adjoint
    adjoint_type: int   = 0        # see AdjointType; 0 -> discrete
    save_lu:      bool  = False    # checkpoint forward LU factors
    update_code:  int   = 5        # update-hook selector, see update_flags
    hmin:         float = 0.0
    hmax:         float = 0.0
    hstart:       float = 0.0
    fac_min:      float = 0.0
    fac_max:      float = 0.0
    fac_rej:      float = 0.0
    fac_safe:     float = 0.0
    buffer_size:  int   = BUFSIZE

    # ---- construction from control arrays --------------------------------
    @classmethod
    def from_control(cls, icntrl: Optional[Sequence[int]] = None,
                     rcntrl: Optional[Sequence[float]] = None,
                     **overrides) -> "RosenbrockOptions":
        """
        Build options from the 20-entry integer / real control arrays.

        Indices are 0-based here: ``icntrl[0]`` is ICNTRL(1).

        ======  ===================================================
        icntrl
        ======  ===================================================
        0       0 = time dependent, 1 = autonomous
        1       0 = vector tolerances, else scalar
        2       forward method
        3       maximum number of steps
        5       continuous-adjoint method
        6       adjoint type
        7       save forward LU factorization when non-zero
        14      update-hook selector (0 keeps the default 5)
        ======  ===================================================

        ``rcntrl[0:7]`` are Hmin, Hmax, Hstart, FacMin, FacMax, FacRej,
        FacSafe.
        """
        ic = _padded(icntrl, 0)
        rc = _padded(rcntrl, 0.0)
        opts = cls(
            autonomous=ic[0] != 0,
            vector_tol=ic[1] == 0,
            method=int(ic[2]),
            max_steps=int(ic[3]),
            cadj_method=int(ic[5]),
            adjoint_type=int(ic[6]),
            save_lu=ic[7] != 0,
            update_code=int(ic[14]) if ic[14] != 0 else 5,
            hmin=float(rc[0]), hmax=float(rc[1]), hstart=float(rc[2]),
            fac_min=float(rc[3]), fac_max=float(rc[4]),
            fac_rej=float(rc[5]), fac_safe=float(rc[6]),
        )
        known = {f.name for f in fields(cls)}
        for key, val in overrides.items():
            if key not in known:
                raise TypeError(f"unknown option {key!r}")
            setattr(opts, key, val)
        return opts

    # ---- defaults + validation -------------------------------------------
    def resolve(self, t_start: float, t_end: float) -> IntegrationControl:
        span = abs(t_end - t_start)

        method      = resolve_method(self.method)
        cadj_method = resolve_method(self.cadj_method)

        if self.max_steps == 0:
            max_steps = self.buffer_size - 1
        elif self.max_steps > 0:
            max_steps = int(self.max_steps)
        else:
            raise ConfigurationError(f"max_steps={self.max_steps}",
                                     status=Status.BAD_MAX_STEPS)

        adjoint_type = resolve_adjoint_type(self.adjoint_type)

        hmin   = _positive_or_default(self.hmin, 0.0, "hmin",
                                      Status.BAD_STEP_BOUNDS)
        hmax   = _positive_or_default(self.hmax, span, "hmax",
                                      Status.BAD_STEP_BOUNDS)
        hstart = _positive_or_default(self.hstart, max(hmin, DELTA_MIN),
                                      "hstart", Status.BAD_STEP_BOUNDS)
        if self.hmax > 0:
            hmax = min(abs(self.hmax), span)
        if self.hstart > 0:
            hstart = min(abs(self.hstart), span)

        fac_min  = _positive_or_default(self.fac_min, 0.2, "fac_min",
                                        Status.BAD_STEP_FACTORS)
        fac_max  = _positive_or_default(self.fac_max, 6.0, "fac_max",
                                        Status.BAD_STEP_FACTORS)
        fac_rej  = _positive_or_default(self.fac_rej, 0.1, "fac_rej",
                                        Status.BAD_STEP_FACTORS)
        fac_safe = _positive_or_default(self.fac_safe, 0.9, "fac_safe",
                                        Status.BAD_STEP_FACTORS)

        if self.buffer_size <= 0:
            raise ConfigurationError(f"buffer_size={self.buffer_size}",
                                     status=Status.BAD_MAX_STEPS)

        forcing, rates = update_flags(self.update_code)
        return IntegrationControl(
            method=method, cadj_method=cadj_method,
            adjoint_type=adjoint_type, max_steps=max_steps,
            hmin=hmin, hmax=hmax, hstart=hstart,
            fac_min=fac_min, fac_max=fac_max,
            fac_rej=fac_rej, fac_safe=fac_safe,
            autonomous=bool(self.autonomous),
            vector_tol=bool(self.vector_tol),
            save_lu=bool(self.save_lu),
            update_forcing=forcing, update_rates=rates,
            buffer_size=int(self.buffer_size))


# --------------------------------------------------------------------------- #
def check_tolerances(atol: torch.Tensor, rtol: torch.Tensor,
                     roundoff: float) -> None:
    """Every pair must satisfy atol > 0 and 10*roundoff < rtol < 1."""
    bad = (atol <= 0) | (rtol <= 10.0 * roundoff) | (rtol >= 1.0)
    if bool(bad.any()):
        i = int(torch.nonzero(bad.reshape(-1))[0])
        raise ConfigurationError(
            f"atol[{i}]={atol.reshape(-1)[i].item():g}, "
            f"rtol[{i}]={rtol.reshape(-1)[i].item():g}",
            status=Status.BAD_TOLERANCES)


def _positive_or_default(val, default, name, status):
    if val == 0:
        return default
    if val > 0:
        return float(val)
    raise ConfigurationError(f"{name}={val}", status=status)


def _padded(arr, fill):
    out = [fill] * N_CONTROL
    if arr is not None:
        for i, v in enumerate(list(arr)[:N_CONTROL]):
            out[i] = v
    return out
