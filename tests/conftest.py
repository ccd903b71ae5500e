import pytest
import torch

from rosadj import DenseLinearAlgebra, OdeModel, RosenbrockOptions, RunContext

# two-species kinetics:  y0 -> y1 (rate A),  2 y1 -> y0 (rate B),  y1 -> (rate C)
A, B, C = 1.0, 2.0, 0.5


def kinetics_rhs(t, y):
    return torch.stack([-A * y[0] + B * y[1] * y[1],
                        A * y[0] - B * y[1] * y[1] - C * y[1]])


def kinetics_jac(t, y):
    return torch.tensor([[-A, 2.0 * B * y[1]],
                         [A, -2.0 * B * y[1] - C]], dtype=torch.float64)


def kinetics_hess(t, y):
    H = torch.zeros(2, 2, 2, dtype=torch.float64)
    H[0, 1, 1] = 2.0 * B
    H[1, 1, 1] = -2.0 * B
    return H


LINEAR = torch.tensor([[-1.0, 0.5],
                       [0.2, -2.0]], dtype=torch.float64)


@pytest.fixture
def decay_model():
    return OdeModel(rhs=lambda t, y: -y,
                    jac=lambda t, y: -torch.eye(y.numel(), dtype=torch.float64))


@pytest.fixture
def kinetics_model():
    return OdeModel(rhs=kinetics_rhs, jac=kinetics_jac, hess=kinetics_hess)


@pytest.fixture
def linear_model():
    return OdeModel(rhs=lambda t, y: LINEAR @ y,
                    jac=lambda t, y: LINEAR.clone())


@pytest.fixture
def make_ctx():
    def _make(model, t_start=0.0, t_end=1.0, linalg=None, **opts):
        control = RosenbrockOptions(**opts).resolve(t_start, t_end)
        return RunContext(model=model,
                          linalg=linalg if linalg is not None
                          else DenseLinearAlgebra(),
                          control=control)
    return _make
