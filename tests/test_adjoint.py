"""Discrete and continuous adjoints against finite differences and expm."""
import math

import numpy as np
import pytest
import scipy.linalg
import scipy.sparse as sp
import torch

from rosadj import (AdjointType, OdeModel, RosenbrockAdjoint,
                    RosenbrockOptions, RosMethod, Status)

from conftest import LINEAR, kinetics_hess, kinetics_jac, kinetics_rhs

H_FIXED = 0.0625      # 1/16: step times stay exact binary fractions


def _fixed(**opts):
    return RosenbrockOptions(hmin=H_FIXED, hmax=H_FIXED, hstart=H_FIXED,
                             **opts)


def _final_state(model, y0, t_start, t_end, **opts):
    y = y0.clone()
    res = RosenbrockAdjoint(model, _fixed(adjoint_type=AdjointType.NONE,
                                          **opts)).integrate(
        y, torch.zeros_like(y), t_start, t_end, atol=1e-6, rtol=1e-6)
    assert res.success
    return y


def _fd_gradient(model, y0, w, t_start, t_end, eps, **opts):
    """Central differences of  w . y(t_end; y0)  with respect to y0."""
    grad = torch.zeros_like(y0)
    for j in range(y0.numel()):
        dy = torch.zeros_like(y0)
        dy[j] = eps
        up = _final_state(model, y0 + dy, t_start, t_end, **opts)
        dn = _final_state(model, y0 - dy, t_start, t_end, **opts)
        grad[j] = (w @ up - w @ dn) / (2.0 * eps)
    return grad


def _discrete_gradient(model, y0, w, t_start, t_end, **opts):
    y, lam = y0.clone(), w.clone()
    res = RosenbrockAdjoint(model, _fixed(adjoint_type=AdjointType.DISCRETE,
                                          **opts)).integrate(
        y, lam, t_start, t_end, atol=1e-6, rtol=1e-6)
    assert res.success
    assert res.stats.texit == t_start
    return lam


def _linear_reference(lam_t, t_start, t_end):
    phi = scipy.linalg.expm(LINEAR.numpy().T * (t_end - t_start))
    return torch.as_tensor(phi @ lam_t.numpy())


Y0 = torch.tensor([1.0, 0.5], dtype=torch.float64)
W  = torch.tensor([0.3, -1.2], dtype=torch.float64)


class TestDiscreteAdjoint:
    def test_decay_in_place_numpy(self, decay_model):
        y = np.ones(2)
        lam = np.ones(2)
        res = RosenbrockAdjoint(decay_model).integrate(
            y, lam, 0.0, 1.0, atol=1e-8, rtol=1e-8)
        assert res.success
        assert y == pytest.approx(math.exp(-1.0), abs=1e-6)
        assert lam == pytest.approx(math.exp(-1.0), abs=1e-6)
        # same stability function forwards and backwards
        assert np.allclose(lam, y, atol=1e-10)

    @pytest.mark.parametrize("method", list(RosMethod))
    def test_matches_finite_differences(self, kinetics_model, method):
        opts = dict(method=method, autonomous=True)
        lam = _discrete_gradient(kinetics_model, Y0, W, 0.0, 1.0, **opts)
        fd  = _fd_gradient(kinetics_model, Y0, W, 0.0, 1.0, 1e-5, **opts)
        assert torch.allclose(lam, fd, atol=1e-7)

    def test_autograd_derivatives(self):
        model = OdeModel(rhs=kinetics_rhs)
        lam = _discrete_gradient(model, Y0, W, 0.0, 1.0)
        fd  = _fd_gradient(model, Y0, W, 0.0, 1.0, 1e-5)
        assert torch.allclose(lam, fd, atol=1e-7)

        reference = OdeModel(rhs=kinetics_rhs, jac=kinetics_jac,
                             hess=kinetics_hess)
        assert torch.allclose(
            lam, _discrete_gradient(reference, Y0, W, 0.0, 1.0), atol=1e-12)

    def test_non_autonomous(self):
        model = OdeModel(
            rhs=lambda t, y: -(1.0 + t) * y,
            jac=lambda t, y: -(1.0 + t) * torch.eye(2, dtype=torch.float64))
        # the step map is linear in y0, any perturbation size will do
        lam = _discrete_gradient(model, Y0, W, 1.0, 2.0, method=RosMethod.RODAS4)
        fd  = _fd_gradient(model, Y0, W, 1.0, 2.0, 0.1, method=RosMethod.RODAS4)
        assert torch.allclose(lam, fd, atol=1e-6)
        assert torch.allclose(lam, math.exp(-2.5) * W, atol=1e-5)

    @pytest.mark.parametrize("method", list(RosMethod))
    def test_non_autonomous_backward_in_time(self, method):
        model = OdeModel(
            rhs=lambda t, y: -(1.0 + t) * y,
            jac=lambda t, y: -(1.0 + t) * torch.eye(2, dtype=torch.float64))
        # negative steps: the dJ/dt term carries the sign of the step
        lam = _discrete_gradient(model, Y0, W, 2.0, 1.0, method=method)
        fd  = _fd_gradient(model, Y0, W, 2.0, 1.0, 0.1, method=method)
        assert torch.allclose(lam, fd, atol=1e-6)
        assert torch.allclose(lam, math.exp(2.5) * W, rtol=1e-2)

    def test_saved_factorization_gives_same_result(self, kinetics_model):
        plain = _discrete_gradient(kinetics_model, Y0, W, 0.0, 1.0)
        saved = _discrete_gradient(kinetics_model, Y0, W, 0.0, 1.0,
                                   save_lu=True)
        assert torch.allclose(plain, saved, atol=1e-12)

    def test_sparse_backend(self):
        model = OdeModel(
            rhs=kinetics_rhs,
            jac=lambda t, y: sp.csr_matrix(kinetics_jac(t, y).numpy()),
            hess=kinetics_hess)
        results = []
        for backend in ("dense", "sparse"):
            y, lam = Y0.clone(), W.clone()
            res = RosenbrockAdjoint(model, linear_algebra=backend).integrate(
                y, lam, 0.0, 1.0, atol=1e-8, rtol=1e-8)
            assert res.success
            results.append((y, lam))
        assert torch.allclose(results[0][0], results[1][0], atol=1e-10)
        assert torch.allclose(results[0][1], results[1][1], atol=1e-10)

    def test_linear_matches_expm(self, linear_model):
        y, lam = Y0.clone(), W.clone()
        RosenbrockAdjoint(linear_model).integrate(
            y, lam, 0.0, 1.0, atol=1e-9, rtol=1e-9)
        assert torch.allclose(lam, _linear_reference(W, 0.0, 1.0), atol=1e-6)


@pytest.mark.parametrize("adjoint_type", [AdjointType.CONTINUOUS,
                                          AdjointType.SIMPLE_CONTINUOUS])
class TestContinuousAdjoints:
    @pytest.mark.parametrize("cadj_method", list(RosMethod))
    def test_linear_matches_expm(self, linear_model, adjoint_type, cadj_method):
        opts = RosenbrockOptions(adjoint_type=adjoint_type,
                                 cadj_method=cadj_method)
        lam = W.clone()
        res = RosenbrockAdjoint(linear_model, opts).integrate(
            Y0.clone(), lam, 0.0, 1.0, atol=1e-8, rtol=1e-8,
            atol_adj=1e-7, rtol_adj=1e-7)
        assert res.success
        assert res.stats.texit == pytest.approx(0.0)
        assert torch.allclose(lam, _linear_reference(W, 0.0, 1.0), atol=1e-4)

    def test_reversed_interval(self, linear_model, adjoint_type):
        opts = RosenbrockOptions(adjoint_type=adjoint_type)
        lam = W.clone()
        res = RosenbrockAdjoint(linear_model, opts).integrate(
            Y0.clone(), lam, 1.0, 0.0, atol=1e-8, rtol=1e-8)
        assert res.success
        assert res.stats.texit == pytest.approx(1.0)
        assert torch.allclose(lam, _linear_reference(W, 1.0, 0.0), atol=1e-4)

    def test_several_columns(self, linear_model, adjoint_type):
        opts = RosenbrockOptions(adjoint_type=adjoint_type)
        lam = torch.eye(2, dtype=torch.float64)
        res = RosenbrockAdjoint(linear_model, opts).integrate(
            Y0.clone(), lam, 0.0, 1.0, atol=1e-8, rtol=1e-8)
        assert res.success
        expected = torch.as_tensor(
            scipy.linalg.expm(LINEAR.numpy().T))
        assert torch.allclose(lam, expected, atol=1e-4)

    def test_non_autonomous(self, adjoint_type):
        model = OdeModel(
            rhs=lambda t, y: -(1.0 + t) * y,
            jac=lambda t, y: -(1.0 + t) * torch.eye(2, dtype=torch.float64))
        opts = RosenbrockOptions(adjoint_type=adjoint_type)
        lam = W.clone()
        res = RosenbrockAdjoint(model, opts).integrate(
            Y0.clone(), lam, 1.0, 2.0, atol=1e-8, rtol=1e-8)
        assert res.success
        assert torch.allclose(lam, math.exp(-2.5) * W, atol=1e-4)

    def test_nonlinear_agrees_with_discrete(self, kinetics_model, adjoint_type):
        lam_d = W.clone()
        RosenbrockAdjoint(kinetics_model).integrate(
            Y0.clone(), lam_d, 0.0, 1.0, atol=1e-7, rtol=1e-7)

        opts = RosenbrockOptions(adjoint_type=adjoint_type)
        lam_c = W.clone()
        res = RosenbrockAdjoint(kinetics_model, opts).integrate(
            Y0.clone(), lam_c, 0.0, 1.0, atol=1e-7, rtol=1e-7)
        assert res.success
        assert torch.allclose(lam_c, lam_d, atol=1e-3)


def test_continuous_adjoint_step_limit(linear_model):
    opts = RosenbrockOptions(adjoint_type=AdjointType.CONTINUOUS, max_steps=40)
    res = RosenbrockAdjoint(linear_model, opts).integrate(
        Y0.clone(), W.clone(), 0.0, 1.0, atol=1e-3, rtol=1e-3,
        atol_adj=1e-12, rtol_adj=1e-12)
    assert res.status == Status.TOO_MANY_STEPS


def test_rhs_reusing_its_output_buffer():
    out = torch.zeros(2, dtype=torch.float64)

    def kinetics_in_place(t, y):
        fresh = kinetics_rhs(t, y)
        out[0] = fresh[0]
        out[1] = fresh[1]
        return out

    opts = RosenbrockOptions(adjoint_type=AdjointType.CONTINUOUS)
    results = []
    for rhs in (kinetics_rhs, kinetics_in_place):
        model = OdeModel(rhs=rhs, jac=kinetics_jac, hess=kinetics_hess)
        y, lam = Y0.clone(), W.clone()
        res = RosenbrockAdjoint(model, opts).integrate(
            y, lam, 0.0, 1.0, atol=1e-7, rtol=1e-7)
        assert res.success
        results.append((y, lam))
    assert torch.allclose(results[0][0], results[1][0], rtol=0.0, atol=1e-14)
    assert torch.allclose(results[0][1], results[1][1], rtol=0.0, atol=1e-14)
