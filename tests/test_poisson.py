"""Tests for the steady Poisson solver.

Run with: uv run pytest tests/test_poisson.py -v
"""

import numpy as np
import pytest

from FEMDiffEq import (
    ConfigurationError,
    FEMSolution,
    PoissonParameters,
    PoissonProblem,
    assemble_load,
    assemble_matrices,
    notime_squaremesh,
    patch_area,
    solve,
    solve_poisson,
)
from conftest import UNIT_SQUARE, sine, sine_gradient


def sine_problem(**kwargs):
    return PoissonProblem.build(
        lambda x: 2 * np.pi**2 * sine(x), analytic=sine, Du=sine_gradient, **kwargs
    )


def cosine(x):
    return np.cos(np.pi * x[:, 0]) * np.cos(np.pi * x[:, 1])


class TestDirichlet:
    """Test -Δu = f with Dirichlet boundary."""

    def test_manufactured_solution(self, dirichlet_mesh):
        """u = sin(πx)sin(πy) on dx = 1/8."""
        sol = solve_poisson(dirichlet_mesh, sine_problem())
        assert isinstance(sol, FEMSolution)
        assert sol.u.shape == (dirichlet_mesh.nonodes,)
        assert sol.errors["linf"] < 0.05, f"L∞ error too large: {sol.errors['linf']}"
        assert sol.errors["l2"] < 0.05
        assert "h1" in sol.errors

    def test_boundary_values(self, dirichlet_mesh):
        sol = solve_poisson(dirichlet_mesh, sine_problem())
        assert np.allclose(sol.u[dirichlet_mesh.bdnode], sine(dirichlet_mesh.node[dirichlet_mesh.bdnode]))

    def test_residual(self, dirichlet_mesh):
        """A_ff u_f = b_f at the solution."""
        prob = sine_problem()
        sol = solve_poisson(dirichlet_mesh, prob)
        A, _, _ = assemble_matrices(dirichlet_mesh)
        b = assemble_load(prob.f, prob.gD, prob.gN, A, None, dirichlet_mesh, True, 1)
        free = dirichlet_mesh.freenode
        assert np.allclose(A[free][:, free] @ sol.u[free], b[free], atol=1e-10)

    def test_second_order_convergence(self):
        errors = []
        for dx in (1 / 8, 1 / 16):
            mesh = notime_squaremesh(UNIT_SQUARE, dx, "dirichlet")
            errors.append(solve_poisson(mesh, sine_problem()).errors["l2"])
        assert errors[0] / errors[1] > 3.0

    def test_constant_boundary(self, small_mesh):
        """Zero forcing with u = 1 on the boundary gives u ≡ 1."""
        prob = PoissonProblem.build(lambda x: np.zeros(len(x)), gD=lambda x: np.ones(len(x)))
        sol = solve_poisson(small_mesh, prob)
        assert np.allclose(sol.u, 1.0, atol=1e-10)
        assert sol.u_analytic is None
        assert sol.errors == {}

    @pytest.mark.parametrize("solver", ["cg", "gmres"])
    def test_iterative_solvers(self, dirichlet_mesh, solver):
        direct = solve_poisson(dirichlet_mesh, sine_problem())
        iterative = solve_poisson(dirichlet_mesh, sine_problem(), solver=solver, tolerance=1e-12)
        assert np.allclose(iterative.u, direct.u, atol=1e-8)

    def test_params_object(self, dirichlet_mesh):
        params = PoissonParameters(solver="cg", tolerance=1e-12)
        sol = solve_poisson(dirichlet_mesh, sine_problem(), params)
        assert sol.errors["linf"] < 0.05

    def test_diffusion_coefficients(self, dirichlet_mesh):
        """-D_k Δu_k = D_k f gives the same field for every variable."""

        def f(x):
            return np.column_stack((2 * np.pi**2 * sine(x), 4 * np.pi**2 * sine(x)))

        prob = PoissonProblem.build(f, analytic=lambda x: np.column_stack((sine(x), sine(x))), D=[1.0, 2.0])
        sol = solve_poisson(dirichlet_mesh, prob)
        assert sol.u.shape == (dirichlet_mesh.nonodes, 2)
        assert np.allclose(sol.u[:, 0], sol.u[:, 1], atol=1e-12)
        assert "h1" not in sol.errors

    def test_dispatch(self, dirichlet_mesh):
        sol = solve(dirichlet_mesh, sine_problem())
        df = sol.errors_to_dataframe()
        assert {"dx", "l2", "linf", "h1"} <= set(df.columns)


class TestNeumann:
    """Test pure Neumann problems."""

    def neumann_problem(self):
        return PoissonProblem.build(lambda x: 2 * np.pi**2 * cosine(x), analytic=cosine)

    @pytest.mark.parametrize("solver", ["direct", "cg", "gmres"])
    def test_zero_mean(self, neumann_mesh, solver):
        sol = solve_poisson(neumann_mesh, self.neumann_problem(), solver=solver, tolerance=1e-12)
        assert abs(patch_area(neumann_mesh) @ sol.u) < 1e-10

    def test_manufactured_solution(self, neumann_mesh):
        sol = solve_poisson(neumann_mesh, self.neumann_problem())
        assert sol.errors["l2"] < 0.05

    def test_neumann_flux(self, neumann_mesh):
        """u = x + y - 1 from its outward flux alone; P1 reproduces linear fields exactly."""

        def outward_flux(x):
            inflow = np.isclose(x[:, 0], 0.0) | np.isclose(x[:, 1], 0.0)
            return np.where(inflow, -1.0, 1.0)

        prob = PoissonProblem.build(
            lambda x: np.zeros(len(x)),
            gN=outward_flux,
            analytic=lambda x: x[:, 0] + x[:, 1] - 1.0,
        )
        sol = solve_poisson(neumann_mesh, prob)
        assert np.allclose(sol.u, sol.u_analytic, atol=1e-10)

    def test_birth_death(self, neumann_mesh):
        """f(x, u) = 2 - u with zero flux has the steady state u ≡ 2."""
        prob = PoissonProblem.build(
            lambda x, u: 2.0 - u, u0=lambda x: np.ones(len(x)), linearity="nonlinear"
        )
        sol = solve_poisson(neumann_mesh, prob, nonlinear_tolerance=1e-12)
        assert np.allclose(sol.u, 2.0, atol=1e-8)

    def test_birth_death_autodiff(self, neumann_mesh):
        prob = PoissonProblem.build(
            lambda x, u: 2.0 - u, u0=lambda x: np.ones(len(x)), linearity="nonlinear"
        )
        sol = solve_poisson(neumann_mesh, prob, autodiff=True, nonlinear_tolerance=1e-12)
        assert np.allclose(sol.u, 2.0, atol=1e-8)

    def test_birth_death_system(self, neumann_mesh):
        """Two coupled species with steady state [2, 1]."""

        def f(x, u):
            return np.column_stack((2.0 - u[:, 0], u[:, 0] - 2.0 * u[:, 1]))

        prob = PoissonProblem.build(
            f, u0=lambda x: np.ones((len(x), 2)), linearity="nonlinear", D=[1.0, 0.5]
        )
        sol = solve_poisson(neumann_mesh, prob, autodiff=True, nonlinear_tolerance=1e-12)
        assert sol.u.shape == (neumann_mesh.nonodes, 2)
        assert np.allclose(sol.u[:, 0], 2.0, atol=1e-8)
        assert np.allclose(sol.u[:, 1], 1.0, atol=1e-8)


class TestNonlinear:
    """Test nonlinear forcing with Dirichlet boundary."""

    def problem(self):
        return PoissonProblem.build(
            lambda x, u: 2 * np.pi**2 * sine(x) + sine(x) ** 2 - u**2,
            analytic=sine,
            linearity="nonlinear",
        )

    def test_manufactured_solution(self, dirichlet_mesh):
        sol = solve_poisson(dirichlet_mesh, self.problem())
        assert sol.errors["linf"] < 0.05

    def test_autodiff_agrees(self, dirichlet_mesh):
        fd = solve_poisson(dirichlet_mesh, self.problem(), nonlinear_tolerance=1e-12)
        cs = solve_poisson(dirichlet_mesh, self.problem(), autodiff=True, nonlinear_tolerance=1e-12)
        assert np.allclose(fd.u, cs.u, atol=1e-8)


class TestStochastic:
    """Test additive white noise forcing."""

    def problem(self):
        return PoissonProblem.build(
            lambda x: 2 * np.pi**2 * sine(x), sigma=lambda x: 0.5 * np.ones(len(x))
        )

    def test_seed_reproducible(self, dirichlet_mesh):
        a = solve_poisson(dirichlet_mesh, self.problem(), seed=5)
        b = solve_poisson(dirichlet_mesh, self.problem(), seed=5)
        c = solve_poisson(dirichlet_mesh, self.problem(), seed=6)
        assert np.array_equal(a.u, b.u)
        assert not np.allclose(a.u, c.u)

    def test_noise_changes_solution(self, dirichlet_mesh):
        deterministic = solve_poisson(dirichlet_mesh, sine_problem())
        noisy = solve_poisson(dirichlet_mesh, self.problem(), seed=1)
        assert not np.allclose(noisy.u, deterministic.u)
        # Boundary values are unaffected by the noise
        bd = dirichlet_mesh.bdnode
        assert np.allclose(noisy.u[bd], 0.0)


class TestShapes:
    def test_scalar_boundary_data_for_system_rejected(self, small_mesh):
        """gD returning (n,) for a two-variable problem is a configuration error."""
        prob = PoissonProblem.build(
            lambda x: np.zeros((len(x), 2)), gD=lambda x: np.ones(len(x)), numvars=2
        )
        with pytest.raises(ConfigurationError):
            solve_poisson(small_mesh, prob)

    def test_constant_row_boundary_data(self, small_mesh):
        prob = PoissonProblem.build(
            lambda x: np.zeros((len(x), 2)), gD=lambda x: np.array([1.0, 2.0]), numvars=2
        )
        sol = solve_poisson(small_mesh, prob)
        assert np.allclose(sol.u, [1.0, 2.0], atol=1e-10)
