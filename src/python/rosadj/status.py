# status.py ----------------------------------------------------------------
"""Return codes and the exception taxonomy of the Rosenbrock driver.

Fatal conditions are raised as :class:`RosenbrockError` subclasses deep in
the integrators and converted back into a :class:`Status` by the driver, so
callers of :func:`rosadj.integrate_adj` only ever see a signed code.
"""
import enum
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class Status(enum.IntEnum):
    SUCCESS                = 1
    BAD_MAX_STEPS          = -1
    METHOD_NOT_IMPLEMENTED = -2
    BAD_STEP_BOUNDS        = -3
    BAD_STEP_FACTORS       = -4
    BAD_TOLERANCES         = -5
    TOO_MANY_STEPS         = -6
    STEP_TOO_SMALL         = -7
    SINGULAR_MATRIX        = -8
    BAD_ADJOINT_TYPE       = -9


MESSAGES = {
    Status.SUCCESS:                "Integration completed successfully",
    Status.BAD_MAX_STEPS:          "Improper value for maximal no of steps",
    Status.METHOD_NOT_IMPLEMENTED: "Selected Rosenbrock method not implemented",
    Status.BAD_STEP_BOUNDS:        "Hmin/Hmax/Hstart must be positive",
    Status.BAD_STEP_FACTORS:       "FacMin/FacMax/FacRej must be positive",
    Status.BAD_TOLERANCES:         "Improper tolerance values",
    Status.TOO_MANY_STEPS:         "No of steps exceeds maximum bound",
    Status.STEP_TOO_SMALL:         "Step size too small: T + 10*H = T or H < Roundoff",
    Status.SINGULAR_MATRIX:        "Matrix is repeatedly singular",
    Status.BAD_ADJOINT_TYPE:       "Improper type of adjoint integration",
}


def describe(code) -> str:
    try:
        return MESSAGES[Status(code)]
    except ValueError:
        return f"Unknown status code {code}"


# ---------------------------------------------------------------------------
# fatal conditions (converted to a Status by the driver)
# ---------------------------------------------------------------------------
class RosenbrockError(Exception):
    """Base class for conditions that abort an integration call.

    Subclasses fix their :class:`Status` as a class attribute; the base class
    has none and must be given one through ``status=``.
    """

    status: Optional[Status] = None

    def __init__(self, detail: str = "", *, status=None,
                 t: float = 0.0, h: float = 0.0):
        if status is not None:
            self.status = Status(status)
        if self.status is None:
            raise TypeError(f"{type(self).__name__} needs a status")
        self.detail = detail
        self.t = t
        self.h = h
        msg = describe(self.status)
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)

    def report(self, log: logging.Logger = logger) -> None:
        """Log the forced exit with the time and step it happened at."""
        log.error("Forced exit from Rosenbrock due to the following error: "
                  "%s; T=%.6e, H=%.6e", self, self.t, self.h)


class ConfigurationError(RosenbrockError):
    """Malformed control parameter, detected before any state is touched.

    Covers several codes (-1 .. -5, -9), so the status is always explicit.
    """

    def __init__(self, detail: str = "", *, status,
                 t: float = 0.0, h: float = 0.0):
        super().__init__(detail, status=status, t=t, h=h)


class MaxStepsExceeded(RosenbrockError):
    status = Status.TOO_MANY_STEPS


class StepSizeTooSmall(RosenbrockError):
    status = Status.STEP_TOO_SMALL


class SingularMatrixError(RosenbrockError):
    status = Status.SINGULAR_MATRIX


# ---------------------------------------------------------------------------
# trajectory-buffer misuse: programming errors, never converted to a status
# ---------------------------------------------------------------------------
class BufferOverflowError(RuntimeError):
    pass


class BufferEmptyError(RuntimeError):
    pass


class TrajectoryLookupError(RuntimeError):
    """Forward state requested outside the stored time span."""
