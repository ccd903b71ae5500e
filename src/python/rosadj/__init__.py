"""Rosenbrock integrators with discrete and continuous adjoint sensitivities."""
import logging

from .checkpoint import (BUFSIZE, CheckpointKind, ContinuousSnapshot,
                         DiscreteSnapshot, TrajectoryBuffer)
from .continuous_adjoint import (continuous_adjoint, interpolate_trajectory,
                                 simple_continuous_adjoint)
from .discrete_adjoint import discrete_adjoint
from .errnorm import error_norm
from .forward import forward_integrate, rosenbrock_step
from .integrator import AdjointResult, RosenbrockAdjoint, integrate_adj
from .interp_hermite import hermite3, hermite5
from .linsolve import (DenseLinearAlgebra, SparseLinearAlgebra,
                       get_linear_algebra, prepare_matrix)
from .model import OdeModel
from .options import (AdjointType, IntegrationControl, RosenbrockOptions,
                      check_tolerances)
from .ros_tables import (RosenbrockTableau, RosMethod, method_table, rodas3,
                         rodas4, ros2, ros3, ros4)
from .status import (BufferEmptyError, BufferOverflowError,
                     ConfigurationError, MaxStepsExceeded, RosenbrockError,
                     SingularMatrixError, Status, StepSizeTooSmall,
                     TrajectoryLookupError)
from .stepcontext import IntegratorStats, RunContext

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
