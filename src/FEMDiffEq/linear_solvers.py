"""
Solvers for ``K x = b`` with a fixed sparse operator K.

``factorize`` does the one-off work (LU, Cholesky, QR, SVD) and returns a
``solve(rhs, x0=None)`` closure reused for every right-hand side.

CHOLESKY, QR and SVD work on a dense copy of K: O(n^2) memory and O(n^3)
setup. Prefer LU, DIRECT or the iterative solvers on fine meshes.
"""
from __future__ import annotations

import logging
from typing import Callable

import numpy as np
import scipy.linalg
from numpy.typing import NDArray
from scipy.sparse import spmatrix
from scipy.sparse.linalg import cg, gmres, splu, spsolve

from .exceptions import ConfigurationError, ConvergenceError
from .parameters import LinearSolver, coerce_enum

log = logging.getLogger(__name__)

SolveFn = Callable[..., NDArray[np.float64]]


def _direct(K, tolerance, max_iterations) -> SolveFn:
    K = K.tocsc()

    def solve(rhs, x0=None):
        return spsolve(K, rhs)

    return solve


def _lu(K, tolerance, max_iterations) -> SolveFn:
    lu = splu(K.tocsc())

    def solve(rhs, x0=None):
        return lu.solve(np.asarray(rhs, dtype=np.float64))

    return solve


def _cholesky(K, tolerance, max_iterations) -> SolveFn:
    try:
        factor = scipy.linalg.cho_factor(K.toarray())
    except np.linalg.LinAlgError as exc:
        raise ConfigurationError(
            "Cholesky factorisation failed, the operator is not symmetric positive definite"
        ) from exc

    def solve(rhs, x0=None):
        return scipy.linalg.cho_solve(factor, rhs)

    return solve


def _qr(K, tolerance, max_iterations) -> SolveFn:
    Q, R = scipy.linalg.qr(K.toarray())

    def solve(rhs, x0=None):
        return scipy.linalg.solve_triangular(R, Q.T @ rhs)

    return solve


def _svd(K, tolerance, max_iterations) -> SolveFn:
    U, s, Vt = scipy.linalg.svd(K.toarray())
    cutoff = s.max() * max(K.shape) * np.finfo(np.float64).eps
    s_inv = np.where(s > cutoff, 1.0 / s, 0.0)

    def solve(rhs, x0=None):
        return Vt.T @ (s_inv * (U.T @ rhs))

    return solve


def _iterative(method):
    def factory(K, tolerance, max_iterations) -> SolveFn:
        K = K.tocsr()

        def solve(rhs, x0=None):
            x, info = method(K, rhs, x0=x0, rtol=tolerance, maxiter=max_iterations)
            if info != 0:
                raise ConvergenceError(
                    f"{method.__name__} did not converge (info={info})",
                    iterations=info if info > 0 else None,
                )
            return x

        return solve

    return factory


_FACTORIZE = {
    LinearSolver.DIRECT: _direct,
    LinearSolver.LU: _lu,
    LinearSolver.CHOLESKY: _cholesky,
    LinearSolver.QR: _qr,
    LinearSolver.SVD: _svd,
    LinearSolver.CG: _iterative(cg),
    LinearSolver.GMRES: _iterative(gmres),
}


def factorize(
    K: spmatrix,
    solver: LinearSolver | str = LinearSolver.DIRECT,
    tolerance: float = 1e-10,
    max_iterations: int | None = None,
) -> SolveFn:
    """
    Prepare a solver for the fixed operator K.

    Parameters
    ----------
    K : sparse matrix (n, n)
    solver : LinearSolver or str
        CHOLESKY, QR and SVD densify K.
    tolerance : float
        Relative residual tolerance of CG and GMRES.
    max_iterations : int, optional
        Iteration cap of CG and GMRES.

    Returns
    -------
    solve : callable
        ``solve(rhs, x0=None) -> x`` for a 1D right-hand side. Iterative
        solvers warm-start from x0 and raise ConvergenceError on failure.
    """
    solver = coerce_enum(LinearSolver, solver)
    log.debug("Preparing %s solver for %d x %d operator", solver.name, *K.shape)
    return _FACTORIZE[solver](K, tolerance, max_iterations)
