import logging

import pytest

from rosadj import (ConfigurationError, MaxStepsExceeded, RosenbrockError,
                    SingularMatrixError, Status, StepSizeTooSmall)
from rosadj.status import describe


class TestExceptionStatus:
    @pytest.mark.parametrize("exc_type,status", [
        (MaxStepsExceeded, Status.TOO_MANY_STEPS),
        (StepSizeTooSmall, Status.STEP_TOO_SMALL),
        (SingularMatrixError, Status.SINGULAR_MATRIX),
    ])
    def test_subclass_status(self, exc_type, status):
        exc = exc_type("detail", t=0.5, h=1e-3)
        assert exc.status == status
        assert str(exc) == f"{describe(status)} (detail)"

    def test_configuration_error_needs_explicit_status(self):
        with pytest.raises(TypeError):
            ConfigurationError("hmin=-1")
        exc = ConfigurationError("hmin=-1", status=Status.BAD_STEP_BOUNDS)
        assert exc.status == Status.BAD_STEP_BOUNDS

    def test_base_class_has_no_default(self):
        with pytest.raises(TypeError):
            RosenbrockError("something")
        assert RosenbrockError(status=-6).status == Status.TOO_MANY_STEPS

    def test_report_logs_error(self, caplog):
        exc = StepSizeTooSmall(t=0.25, h=1e-17)
        with caplog.at_level(logging.ERROR):
            exc.report(logging.getLogger("rosadj.test"))
        assert "Step size too small" in caplog.text
        assert "T=2.500000e-01" in caplog.text


def test_describe_unknown_code():
    assert describe(-42) == "Unknown status code -42"
    assert describe(1) == describe(Status.SUCCESS)
