"""
Steady solver for -D Δu = f(x[, u]) (+ σ dW) on a triangulation.

Linear problems are solved column by column on the free nodes. Nonlinear
problems are handed to ``scipy.optimize.root`` as one residual over all free
unknowns, ordered node-major.
"""
from __future__ import annotations

import logging
import time
from dataclasses import replace

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import bmat, csr_matrix

from .assembly import assemble_load, assemble_matrices, patch_area
from .boundary import dirichlet_values
from .datastructures import FEMMesh
from .fields import as_columns, squeeze
from .linear_solvers import factorize
from .noise import NoiseGenerator, get_noise
from .nonlinear import jacobian_pattern, nlsolve
from .parameters import LinearSolver, PoissonParameters
from .problems import PoissonProblem
from .solutions import FEMSolution

log = logging.getLogger(__name__)


def _resolve_params(params: PoissonParameters | None, kwargs: dict) -> PoissonParameters:
    if params is None:
        return PoissonParameters(**kwargs)
    return replace(params, **kwargs) if kwargs else params


def _bordered_solver(A: csr_matrix, weights: NDArray[np.float64]):
    """Direct solver for the singular pure-Neumann system with ``weights · u = 0`` appended."""
    w = csr_matrix(weights[None, :])
    K = bmat([[A, w.T], [w, None]], format="csr")
    solve = factorize(K, LinearSolver.DIRECT)
    return lambda rhs: solve(np.append(rhs, 0.0))[:-1]


def solve_poisson(
    fem_mesh: FEMMesh,
    prob: PoissonProblem,
    params: PoissonParameters | None = None,
    noise: NoiseGenerator | None = None,
    **kwargs,
) -> FEMSolution:
    """
    Solve the steady problem on ``fem_mesh``.

    Parameters
    ----------
    fem_mesh : FEMMesh
    prob : PoissonProblem
    params : PoissonParameters, optional
        Solver settings. Keyword arguments override individual fields
        (``solve_poisson(mesh, prob, solver="cg", tolerance=1e-12)``).
    noise : NoiseGenerator, optional
        Source of the noise increment for stochastic problems. Defaults to
        the problem's noise kind seeded with ``params.seed``.

    Returns
    -------
    FEMSolution

    Raises
    ------
    ConfigurationError
        On invalid settings.
    ConvergenceError
        If an iterative or nonlinear solver fails.
    """
    params = _resolve_params(params, kwargs)
    nv = prob.numvars
    D = prob.D
    node = fem_mesh.node
    free = fem_mesh.freenode
    islinear = prob.islinear and prob.sigma_linear

    log.info(
        "Poisson: %s, numvars=%d, %d nodes (%d free), solver=%s%s",
        prob.linearity.name.lower(),
        nv,
        fem_mesh.nonodes,
        len(free),
        params.solver.name if islinear else params.method,
        ", stochastic" if prob.stochastic else "",
    )
    start = time.perf_counter()

    A, _, area = assemble_matrices(fem_mesh)

    u = np.array(as_columns(prob.u0(node), fem_mesh.nonodes, nv), dtype=np.float64)
    if len(fem_mesh.bdnode):
        u[fem_mesh.bdnode] = dirichlet_values(prob.gD, fem_mesh, nv)

    dW = None
    if prob.stochastic:
        if noise is None:
            noise = get_noise(prob.noisetype, params.seed)
        dW = noise.next_increment(u, node, fem_mesh.EToV)

    def rhs(u_full):
        b = assemble_load(
            prob.f, prob.gD, prob.gN, A, u_full, fem_mesh, prob.islinear, nv, D
        ).reshape(fem_mesh.nonodes, nv)
        if dW is not None:
            sigma = assemble_load(
                prob.sigma, None, None, A, u_full, fem_mesh, prob.sigma_linear, nv
            ).reshape(fem_mesh.nonodes, nv)
            b = b + sigma * dW
        return b

    A_ff = A[free][:, free]

    if islinear:
        b = rhs(u)
        pure_neumann = fem_mesh.is_pure_neumann
        if pure_neumann:
            # Project onto range(A) = constants^⊥
            b = b - b.mean(axis=0)

        if pure_neumann and params.solver is LinearSolver.DIRECT:
            solve = _bordered_solver(A_ff, patch_area(fem_mesh)[free])
        else:
            solve = factorize(A_ff, params.solver, params.tolerance, params.max_iterations)
        for k in range(nv):
            u[free, k] = solve(b[free, k] / D[k])

        if pure_neumann:
            weights = patch_area(fem_mesh)
            u -= (weights @ u) / np.sum(area)
    else:
        u_fixed = u.copy()

        def residual(x):
            uf = x.reshape(len(free), nv)
            u_full = u_fixed.astype(np.result_type(x, np.float64))
            u_full[free] = uf
            return ((A_ff @ uf) * D - rhs(u_full)[free]).ravel()

        pattern = jacobian_pattern(A_ff, nv) if params.autodiff else None
        x = nlsolve(residual, u[free].ravel(), params, pattern)
        u[free] = x.reshape(len(free), nv)

    log.info("Poisson solve finished in %.3f s", time.perf_counter() - start)
    return FEMSolution(fem_mesh, squeeze(u, nv), prob)
