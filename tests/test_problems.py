"""Tests for problem construction."""

import dataclasses
import logging

import numpy as np
import pytest

from FEMDiffEq import ConfigurationError, HeatProblem, Linearity, PoissonProblem
from conftest import sine

X = np.random.default_rng(0).random((5, 2))


class TestPoissonProblem:
    """Test the PoissonProblem builder."""

    def test_linear_defaults(self):
        prob = PoissonProblem.build(lambda x: np.ones(len(x)))
        assert prob.numvars == 1
        assert prob.islinear
        assert not prob.stochastic
        assert not prob.knownanalytic
        assert np.allclose(prob.gD(X), 0.0)
        assert np.allclose(prob.gN(X), 0.0)
        assert prob.gN(X).shape == (5,)
        assert np.allclose(prob.D, [1.0])

    def test_gD_defaults_to_analytic(self):
        prob = PoissonProblem.build(lambda x: 2 * np.pi**2 * sine(x), analytic=sine)
        assert prob.knownanalytic
        assert prob.gD is sine

    def test_numvars_from_analytic(self):
        analytic = lambda x: np.column_stack((sine(x), sine(x)))
        prob = PoissonProblem.build(lambda x: np.zeros((len(x), 2)), analytic=analytic)
        assert prob.numvars == 2
        assert prob.gN(X).shape == (5, 2)
        assert prob.u0(X).shape == (5, 2)

    def test_numvars_from_u0(self):
        prob = PoissonProblem.build(
            lambda x, u: 2.0 - u,
            u0=lambda x: np.ones((len(x), 3)),
            linearity="nonlinear",
        )
        assert prob.numvars == 3
        assert prob.linearity is Linearity.NONLINEAR

    def test_numvars_disagreement(self):
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(
                lambda x: np.zeros(len(x)),
                analytic=sine,
                u0=lambda x: np.ones((len(x), 2)),
            )

    def test_explicit_numvars_disagreement(self):
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(lambda x: np.zeros(len(x)), analytic=sine, numvars=2)

    def test_nonlinear_without_numvars_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            prob = PoissonProblem.build(lambda x, u: 2.0 - u, linearity=Linearity.NONLINEAR)
        assert prob.numvars == 1
        assert "assuming numvars=1" in caplog.text

    def test_arity_mismatch(self):
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(lambda x, u: 2.0 - u)
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(lambda x: np.ones(len(x)), linearity="nonlinear", numvars=1)

    def test_missing_forcing(self):
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(None)

    def test_diffusion_vector(self):
        f = lambda x: np.zeros((len(x), 2))
        prob = PoissonProblem.build(f, numvars=2, D=[1.0, 0.5])
        assert np.allclose(prob.D, [1.0, 0.5])
        assert np.allclose(PoissonProblem.build(f, numvars=2, D=3.0).D, [3.0, 3.0])
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(f, numvars=2, D=[1.0, 2.0, 3.0])

    def test_stochastic(self):
        prob = PoissonProblem.build(lambda x: np.zeros(len(x)), sigma=lambda x: np.ones(len(x)))
        assert prob.stochastic
        assert prob.sigma_linear

    def test_nonlinear_sigma(self):
        prob = PoissonProblem.build(lambda x: np.zeros(len(x)), sigma=lambda x, u: u)
        assert not prob.sigma_linear

    def test_sigma_arity(self):
        with pytest.raises(ConfigurationError):
            PoissonProblem.build(lambda x: np.zeros(len(x)), sigma=lambda t, x, u, v: u)

    def test_frozen(self):
        prob = PoissonProblem.build(lambda x: np.zeros(len(x)))
        with pytest.raises(dataclasses.FrozenInstanceError):
            prob.numvars = 2
        with pytest.raises(ValueError):
            prob.D[0] = 2.0


class TestHeatProblem:
    """Test the HeatProblem builder."""

    def test_u0_defaults_to_analytic(self):
        analytic = lambda t, x: np.exp(-2 * np.pi**2 * t) * sine(x)
        prob = HeatProblem.build(lambda t, x: np.zeros(len(x)), analytic=analytic)
        assert np.allclose(prob.u0(X), sine(X))
        assert np.allclose(prob.exact(0.1)(X), analytic(0.1, X))

    def test_time_arguments(self):
        prob = HeatProblem.build(lambda t, x: t * np.ones(len(x)))
        assert prob.numvars == 1
        assert np.allclose(prob.at_time(prob.f, 2.0)(X), 2.0)
        assert prob.gD(0.0, X).shape == (5,)

    def test_nonlinear_arity(self):
        prob = HeatProblem.build(
            lambda t, x, u: 2.0 - u, u0=lambda x: np.ones(len(x)), linearity="nonlinear"
        )
        assert not prob.islinear
        with pytest.raises(ConfigurationError):
            HeatProblem.build(lambda x, u: 2.0 - u, linearity="nonlinear", numvars=1)
