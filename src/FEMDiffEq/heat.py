"""
Time integration of u_t = D Δu + f(t, x[, u]) (+ σ dW) with lumped mass.

Every scheme is written multiplied through by the lumped mass M, so the
implicit operators M + θ dt D A are symmetric positive definite:

    (M + θ dt D A) u' = (M - (1-θ) dt D A) u + dt [(1-θ) b(t) + θ b(t+dt)] + dt s

θ = 0 (explicit Euler), 1 (implicit Euler), 1/2 (Crank-Nicolson). The
semi-implicit variants treat a nonlinear load explicitly, ``dt b(u, t)``,
while its Dirichlet lift is θ-weighted in time like the diffusion it belongs to.
The stochastic term s = σ(u, t) dW / sqrt(dt) is always explicit.

D multiplies the stiffness term only, in every scheme including explicit
Euler: the load b carries f unscaled, and its Dirichlet lift carries D
because it stands in for the boundary columns of D A.
"""
from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from .assembly import assemble_load, assemble_matrices
from .boundary import dirichlet_lift, dirichlet_values
from .datastructures import FEMMesh
from .exceptions import ConfigurationError, ConvergenceError
from .fields import as_columns, squeeze
from .linear_solvers import factorize
from .noise import NoiseGenerator, get_noise
from .nonlinear import jacobian_pattern, nlsolve
from .parameters import HeatParameters, Scheme
from .problems import HeatProblem, Linearity
from .solutions import FEMSolution, TimeSeries

log = logging.getLogger(__name__)

# Explicit Euler is reported unstable from this CFL number mu = dt/dx^2
EULER_STABILITY_LIMIT = 0.5


class FEMHeatIntegrator:
    """
    Fixed-step integrator for a HeatProblem on a parabolic mesh.

    The step function is chosen from one table keyed by (linearity, scheme);
    a combination missing from the table (semi-implicit schemes on linear
    problems) raises ConfigurationError at construction.

    Parameters
    ----------
    fem_mesh : FEMMesh
        Mesh with dt > 0 and T > 0.
    prob : HeatProblem
    params : HeatParameters
    noise : NoiseGenerator, optional
        Defaults to the problem's noise kind seeded with ``params.seed``.
    """

    def __init__(
        self,
        fem_mesh: FEMMesh,
        prob: HeatProblem,
        params: HeatParameters,
        noise: NoiseGenerator | None = None,
    ):
        self.fem_mesh = fem_mesh
        self.prob = prob
        self.params = params
        self.linearity = prob.linearity
        self.scheme = params.scheme
        self.stochastic = prob.stochastic

        key = (self.linearity, self.scheme)
        if key not in _STEPPERS:
            raise ConfigurationError(
                f"{self.scheme.name} requires a nonlinear problem, use "
                f"{Scheme.IMPLICIT_EULER.name} or {Scheme.CRANK_NICOLSON.name} instead"
            )
        self._stepper, self.theta = _STEPPERS[key]

        if fem_mesh.dt <= 0:
            raise ConfigurationError("Transient solve needs a mesh with dt > 0")

        self.dt = fem_mesh.dt
        self.nv = prob.numvars
        self.D = prob.D
        self.free = fem_mesh.freenode
        self.bdnode = fem_mesh.bdnode

        self.A, M, _ = assemble_matrices(fem_mesh, lumpflag=True)
        self.m = M.diagonal()
        self.A_ff = self.A[self.free][:, self.free]
        self.m_f = self.m[self.free][:, None]
        self._solvers: dict[tuple[float, float], Callable] = {}

        if self.stochastic and noise is None:
            noise = get_noise(prob.noisetype, params.seed)
        self.noise = noise

        if self.scheme is Scheme.EULER and fem_mesh.mu >= EULER_STABILITY_LIMIT:
            log.warning(
                "Explicit Euler with mu = dt/dx^2 = %.3g >= %.1f may be unstable",
                fem_mesh.mu,
                EULER_STABILITY_LIMIT,
            )

    # =========================================================================
    # Building blocks
    # =========================================================================
    def load(self, u: NDArray, t: float, dirichlet: bool = True) -> NDArray:
        """Load vector b(u, t) with boundary terms, shape (N, numvars).

        With ``dirichlet=False`` the Dirichlet lift is left out.
        """
        prob = self.prob
        return assemble_load(
            prob.at_time(prob.f, t),
            prob.at_time(prob.gD, t) if dirichlet else None,
            prob.at_time(prob.gN, t),
            self.A,
            u,
            self.fem_mesh,
            prob.islinear,
            self.nv,
            self.D,
        ).reshape(self.fem_mesh.nonodes, self.nv)

    def stochastic_term(self, u: NDArray, t: float) -> NDArray | float:
        """σ-load(u, t) dW / sqrt(dt) with a fresh increment, or 0 if deterministic."""
        if not self.stochastic:
            return 0.0
        prob = self.prob
        sigma = assemble_load(
            prob.at_time(prob.sigma, t),
            None,
            None,
            self.A,
            u,
            self.fem_mesh,
            prob.sigma_linear,
            self.nv,
        ).reshape(self.fem_mesh.nonodes, self.nv)
        dW = self.noise.next_increment(u, self.fem_mesh.node, self.fem_mesh.EToV)
        return sigma * dW / np.sqrt(self.dt)

    def boundary_values(self, t: float) -> NDArray:
        return dirichlet_values(self.prob.at_time(self.prob.gD, t), self.fem_mesh, self.nv)

    def lift(self, t: float) -> NDArray | float:
        """Dirichlet lift -D A_{:,b} gD(t), or 0 without Dirichlet edges."""
        if len(self.fem_mesh.dirichlet) == 0:
            return 0.0
        return dirichlet_lift(
            self.prob.at_time(self.prob.gD, t), self.A, self.fem_mesh, self.nv, self.D
        )

    def solver(self, k: int) -> Callable:
        """Solver for (M + θ dt D_k A)_ff, prepared once per distinct D_k."""
        key = (self.theta, float(self.D[k]))
        if key not in self._solvers:
            K = self.A_ff * (self.theta * self.dt * self.D[k])
            K.setdiag(K.diagonal() + self.m_f[:, 0])
            self._solvers[key] = factorize(
                K.tocsr(), self.params.solver, self.params.tolerance, self.params.max_iterations
            )
        return self._solvers[key]

    def _explicit_part(self, u: NDArray) -> NDArray:
        """(M - (1-θ) dt D A)_ff u_f"""
        uf = u[self.free]
        part = self.m_f * uf
        if self.theta < 1.0:
            part = part - (1.0 - self.theta) * self.dt * (self.A_ff @ uf) * self.D
        return part

    def _solve_columns(self, rhs: NDArray, u: NDArray) -> NDArray:
        u_new = u.copy()
        for k in range(self.nv):
            u_new[self.free, k] = self.solver(k)(rhs[:, k], x0=u[self.free, k])
        return u_new

    # =========================================================================
    # Steps: u at t -> u at t + dt on the free nodes
    # =========================================================================
    def _euler_step(self, u: NDArray, t: float) -> NDArray:
        uf = u[self.free]
        source = (self.load(u, t) + self.stochastic_term(u, t))[self.free]
        rate = -(self.A_ff @ uf) * self.D + source
        u_new = u.copy()
        u_new[self.free] = uf + self.dt * rate / self.m_f
        return u_new

    def _linear_theta_step(self, u: NDArray, t: float) -> NDArray:
        dt, theta = self.dt, self.theta
        b = theta * self.load(u, t + dt)
        if theta < 1.0:
            b = b + (1.0 - theta) * self.load(u, t)
        rhs = self._explicit_part(u) + dt * (b + self.stochastic_term(u, t))[self.free]
        return self._solve_columns(rhs, u)

    def _nonlinear_theta_step(self, u: NDArray, t: float) -> NDArray:
        dt, theta = self.dt, self.theta
        free, nv = self.free, self.nv

        known = dt * self.stochastic_term(u, t)
        if theta < 1.0:
            known = known + (1.0 - theta) * dt * self.load(u, t)
        known = self._explicit_part(u) + np.broadcast_to(known, u.shape)[free]

        u_next = u.copy()
        if len(self.bdnode):
            u_next[self.bdnode] = self.boundary_values(t + dt)

        def residual(x):
            v = x.reshape(len(free), nv)
            v_full = u_next.astype(np.result_type(x, np.float64))
            v_full[free] = v
            implicit = self.m_f * v + theta * dt * (self.A_ff @ v) * self.D
            return (implicit - known - theta * dt * self.load(v_full, t + dt)[free]).ravel()

        pattern = jacobian_pattern(self.A_ff, nv) if self.params.autodiff else None
        x = nlsolve(residual, u[free].ravel(), self.params, pattern)
        u_new = u_next
        u_new[free] = x.reshape(len(free), nv)
        return u_new

    def _semi_implicit_step(self, u: NDArray, t: float) -> NDArray:
        dt, theta = self.dt, self.theta
        # Only f is explicit here
        lift = theta * self.lift(t + dt)
        if theta < 1.0:
            lift = lift + (1.0 - theta) * self.lift(t)
        source = self.load(u, t, dirichlet=False) + self.stochastic_term(u, t) + lift
        rhs = self._explicit_part(u) + dt * np.broadcast_to(source, u.shape)[self.free]
        return self._solve_columns(rhs, u)

    # =========================================================================
    # Time loop
    # =========================================================================
    def initial_state(self) -> NDArray:
        node = self.fem_mesh.node
        u = np.array(as_columns(self.prob.u0(node), len(node), self.nv), dtype=np.float64)
        if len(self.bdnode):
            u[self.bdnode] = self.boundary_values(0.0)
        return u

    def run(self) -> tuple[NDArray, float, TimeSeries | None]:
        """
        Integrate from t = 0 over ``numiters`` steps.

        Returns
        -------
        u : ndarray (N, numvars)
            Field at the final time.
        t : float
            Final time.
        timeseries : TimeSeries or None
            Snapshots every ``timeseries_steps`` steps when enabled.

        Raises
        ------
        ConvergenceError
            With ``step`` and ``t`` set, if a step fails. No partial result
            is kept.
        """
        params = self.params
        numiters = self.fem_mesh.numiters
        u = self.initial_state()

        timeseries = None
        if params.save_timeseries:
            timeseries = TimeSeries()
            timeseries.append(0.0, squeeze(u, self.nv))

        t = 0.0
        for step in range(numiters):
            t = step * self.dt
            try:
                u = self._stepper(self, u, t)
            except ConvergenceError as exc:
                exc.step, exc.t = step, t
                log.error("Step %d at t = %.6g failed: %s", step, t, exc)
                raise
            t = (step + 1) * self.dt
            if len(self.bdnode):
                u[self.bdnode] = self.boundary_values(t)

            if timeseries is not None and (step + 1) % params.timeseries_steps == 0:
                timeseries.append(t, squeeze(u, self.nv))
            if (step + 1) % params.progress_steps == 0:
                log.info("Step %d/%d, t = %.6g", step + 1, numiters, t)

        return u, t, timeseries


# Step function and θ per (linearity, scheme)
_STEPPERS = {
    (Linearity.LINEAR, Scheme.EULER): (FEMHeatIntegrator._euler_step, 0.0),
    (Linearity.NONLINEAR, Scheme.EULER): (FEMHeatIntegrator._euler_step, 0.0),
    (Linearity.LINEAR, Scheme.IMPLICIT_EULER): (FEMHeatIntegrator._linear_theta_step, 1.0),
    (Linearity.LINEAR, Scheme.CRANK_NICOLSON): (FEMHeatIntegrator._linear_theta_step, 0.5),
    (Linearity.NONLINEAR, Scheme.IMPLICIT_EULER): (FEMHeatIntegrator._nonlinear_theta_step, 1.0),
    (Linearity.NONLINEAR, Scheme.CRANK_NICOLSON): (FEMHeatIntegrator._nonlinear_theta_step, 0.5),
    (Linearity.NONLINEAR, Scheme.SEMI_IMPLICIT_EULER): (FEMHeatIntegrator._semi_implicit_step, 1.0),
    (Linearity.NONLINEAR, Scheme.SEMI_IMPLICIT_CRANK_NICOLSON): (
        FEMHeatIntegrator._semi_implicit_step,
        0.5,
    ),
}


def solve_heat(
    fem_mesh: FEMMesh,
    prob: HeatProblem,
    params: HeatParameters | None = None,
    noise: NoiseGenerator | None = None,
    **kwargs,
) -> FEMSolution:
    """
    Integrate the heat problem to ``fem_mesh.T``.

    Parameters
    ----------
    fem_mesh : FEMMesh
        Parabolic mesh (dt, T set).
    prob : HeatProblem
    params : HeatParameters, optional
        Solver settings. Keyword arguments override individual fields
        (``solve_heat(mesh, prob, scheme="crank_nicolson", solver="cg")``).
    noise : NoiseGenerator, optional

    Returns
    -------
    FEMSolution
        Final field at t = numiters * dt, with the time series if saved.
    """
    if params is None:
        params = HeatParameters(**kwargs)
    elif kwargs:
        params = replace(params, **kwargs)

    integrator = FEMHeatIntegrator(fem_mesh, prob, params, noise)
    log.info(
        "Heat: %s, %s, solver=%s, numvars=%d, %d steps of dt=%g%s",
        prob.linearity.name.lower(),
        params.scheme.name,
        params.solver.name,
        prob.numvars,
        fem_mesh.numiters,
        fem_mesh.dt,
        ", stochastic" if prob.stochastic else "",
    )
    start = time.perf_counter()
    u, t, timeseries = integrator.run()
    log.info("Heat solve finished in %.3f s", time.perf_counter() - start)

    return FEMSolution(fem_mesh, squeeze(u, prob.numvars), prob, t=t, timeseries=timeseries)
