"""
Nonlinear root finding and sparse complex-step Jacobians.

The Jacobian of a residual R: R^n -> R^n with known sparsity is built with
one complex evaluation per column colour:

    J[:, j] = Im R(x + i h e_j) / h,    h = 1e-30

Columns that share no row get the same colour and are perturbed together.
"""
from __future__ import annotations

import logging
from typing import Callable

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.optimize import root
from scipy.sparse import csr_matrix, kron, spmatrix

from .exceptions import ConvergenceError
from .parameters import JACOBIAN_METHODS, Parameters

log = logging.getLogger(__name__)

COMPLEX_STEP = 1e-30


# =============================================================================
# Column colouring
# =============================================================================
@njit
def _greedy_color(col_ptr, col_rows, row_ptr, row_cols, n):
    colors = -np.ones(n, dtype=np.int64)
    mark = -np.ones(n, dtype=np.int64)
    for j in range(n):
        # Forbid the colours of every column sharing a row with column j
        for p in range(col_ptr[j], col_ptr[j + 1]):
            i = col_rows[p]
            for q in range(row_ptr[i], row_ptr[i + 1]):
                k = row_cols[q]
                if colors[k] >= 0:
                    mark[colors[k]] = j
        c = 0
        while mark[c] == j:
            c += 1
        colors[j] = c
    return colors


def _structure(pattern: spmatrix) -> csr_matrix:
    """Pattern with every stored entry set to 1, explicit zeros included."""
    P = csr_matrix(pattern, dtype=np.float64, copy=True)
    P.data[:] = 1.0
    return P


def jacobian_pattern(K: spmatrix, numvars: int) -> csr_matrix:
    """Structure of the Jacobian of a residual coupling all variables at neighbouring nodes.

    Unknowns are ordered node-major (index = node * numvars + variable).
    """
    return kron(_structure(K), np.ones((numvars, numvars)), format="csr")


def color_columns(pattern: spmatrix) -> NDArray[np.int64]:
    """Greedy distance-2 colouring of the columns of a sparsity pattern.

    Two columns get different colours whenever some row has entries in both.
    """
    P = _structure(pattern)
    Pc = P.tocsc()
    return _greedy_color(Pc.indptr, Pc.indices, P.indptr, P.indices, P.shape[1])


def complex_step_jacobian(
    residual: Callable[[NDArray], NDArray],
    x: NDArray[np.float64],
    pattern: spmatrix,
    colors: NDArray[np.int64] | None = None,
) -> csr_matrix:
    """
    Sparse Jacobian of ``residual`` at x by complex-step differentiation.

    Parameters
    ----------
    residual : callable
        Must accept and propagate complex input.
    x : ndarray (n,)
    pattern : sparse matrix (m, n)
        Structural nonzeros of the Jacobian.
    colors : ndarray (n,), optional
        Column colouring of ``pattern``, computed if not given.
    """
    P = _structure(pattern).tocoo()
    rows, cols = P.row, P.col
    if colors is None:
        colors = color_columns(P)

    data = np.zeros(len(rows))
    col_color = colors[cols]
    for c in range(int(colors.max()) + 1 if len(colors) else 0):
        seed = (colors == c).astype(np.float64)
        dR = np.imag(residual(x + 1j * COMPLEX_STEP * seed)) / COMPLEX_STEP
        mask = col_color == c
        data[mask] = dR[rows[mask]]

    return csr_matrix((data, (rows, cols)), shape=P.shape)


# =============================================================================
# Root finding
# =============================================================================
def nlsolve(
    residual: Callable[[NDArray], NDArray],
    x0: NDArray[np.float64],
    params: Parameters,
    jac_pattern: spmatrix | None = None,
) -> NDArray[np.float64]:
    """
    Find x with ``residual(x) = 0`` using ``scipy.optimize.root``.

    Parameters
    ----------
    residual : callable
        R^n -> R^n. Must accept complex input when ``params.autodiff``.
    x0 : ndarray (n,)
        Initial guess.
    params : Parameters
        ``method``, ``iterations``, ``nonlinear_tolerance``,
        ``residual_tolerance``, ``autodiff`` and ``show_trace`` are used.
    jac_pattern : sparse matrix, optional
        Jacobian sparsity, required for ``autodiff``.

    Raises
    ------
    ConvergenceError
        If the root finder reports failure and the residual at its last
        iterate is above the residual tolerance.
    """
    x0 = np.asarray(x0, dtype=np.float64)
    n = len(x0)
    method = params.method
    nfev = 0
    r0 = None

    def fun(x):
        nonlocal nfev, r0
        nfev += 1
        r = residual(x)
        if r0 is None:
            r0 = np.linalg.norm(r)
        if params.show_trace:
            log.info("%s evaluation %d: |R| = %.6e", method, nfev, np.linalg.norm(r))
        return r

    jac = None
    if params.autodiff and jac_pattern is not None and method in JACOBIAN_METHODS:
        colors = color_columns(jac_pattern)
        log.debug("Complex-step Jacobian with %d colours for %d unknowns", colors.max() + 1, n)

        def jac(x):
            return complex_step_jacobian(residual, x, jac_pattern, colors).toarray()

    if method == "hybr":
        options = {"maxfev": params.iterations if jac is not None else params.iterations * (n + 1)}
    else:
        options = {"maxiter": params.iterations}

    sol = root(fun, x0, method=method, jac=jac, tol=params.nonlinear_tolerance, options=options)
    if sol.success:
        return sol.x

    # Stagnation at an exact root is reported as failure by MINPACK
    rnorm = np.linalg.norm(residual(sol.x))
    atol = params.residual_tolerance
    if atol is None:
        eps = np.finfo(np.float64).eps
        atol = max(np.sqrt(eps) * r0, 1e3 * eps)
    if rnorm <= atol:
        log.debug("%s stopped with |R| = %.3e <= %.3e: %s", method, rnorm, atol, sol.message)
        return sol.x
    raise ConvergenceError(
        f"Nonlinear solver '{method}' failed with |R| = {rnorm:.3e}: {sol.message}",
        iterations=getattr(sol, "nfev", nfev),
    )
