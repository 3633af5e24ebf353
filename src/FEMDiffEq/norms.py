"""Error norms of nodal P1 fields against exact solutions."""

from __future__ import annotations

from typing import Callable

import numpy as np
from numpy.typing import NDArray

from .assembly import patch_area
from .datastructures import FEMMesh
from .fields import as_columns


def _nodal_error(fem_mesh: FEMMesh, u_nodal: NDArray, u_exact: Callable) -> NDArray:
    u = np.asarray(u_nodal).reshape(fem_mesh.nonodes, -1)
    return u - as_columns(u_exact(fem_mesh.node), fem_mesh.nonodes, u.shape[1])


def discrete_l2_error(fem_mesh: FEMMesh, u_nodal: NDArray, u_exact: Callable) -> float:
    """
    Discrete L2 error with lumped-mass weights, sqrt(Σ_i |patch_i| |e_i|²).
    """
    e = _nodal_error(fem_mesh, u_nodal, u_exact)
    return float(np.sqrt(np.sum(patch_area(fem_mesh)[:, None] * e**2)))


def h1_seminorm_error(fem_mesh: FEMMesh, u_nodal: NDArray, grad_exact: Callable) -> float:
    """
    H1 seminorm error of a scalar field, ||∇u_h - ∇u||.

    The elementwise constant P1 gradient is compared with ``grad_exact`` at
    element centroids (one-point quadrature).
    """
    u = np.asarray(u_nodal).reshape(fem_mesh.nonodes)
    grad_h = np.einsum("ek,ekd->ed", u[fem_mesh.EToV], fem_mesh.grad_basis)
    centroids = fem_mesh.node[fem_mesh.EToV].mean(axis=1)
    diff = grad_h - np.asarray(grad_exact(centroids)).reshape(fem_mesh.noelms, 2)
    return float(np.sqrt(np.sum(fem_mesh.area * np.sum(diff**2, axis=1))))


def linf_error(fem_mesh: FEMMesh, u_nodal: NDArray, u_exact: Callable) -> float:
    """
    Maximum nodal error ||u_h - u_exact||_inf.
    """
    return float(np.max(np.abs(_nodal_error(fem_mesh, u_nodal, u_exact))))


def compute_errors(
    fem_mesh: FEMMesh,
    u_nodal: NDArray,
    u_exact: Callable,
    grad_exact: Callable | None = None,
) -> dict[str, float]:
    """All available norms; h1 only for scalar fields with a known gradient."""
    errors = {
        "l2": discrete_l2_error(fem_mesh, u_nodal, u_exact),
        "linf": linf_error(fem_mesh, u_nodal, u_exact),
    }
    if grad_exact is not None and np.ndim(u_nodal) == 1:
        errors["h1"] = h1_seminorm_error(fem_mesh, u_nodal, grad_exact)
    return errors
