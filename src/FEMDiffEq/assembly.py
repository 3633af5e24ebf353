"""
Global operator and load vector assembly for P1 triangles.

    A_ij = Σ_T |T| ∇φ_i·∇φ_j            (stiffness)
    M_ij = Σ_T ∫_T φ_i φ_j              (mass, consistent or lumped)
    b_i  = Σ_T ∫_T f φ_i + Neumann - Dirichlet lift

Element matrices are packed row-major per element and summed into a CSR
pattern pre-computed on the mesh.
"""
from __future__ import annotations

from typing import Callable

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.sparse import csr_matrix, diags

from .boundary import dirichlet_lift, neumann_load
from .datastructures import EDGE_VERTICES, N_LOCAL_NODES, FEMMesh
from .fields import as_columns, squeeze


# =============================================================================
# Operators
# =============================================================================
def _assemble_csr(fem_mesh: FEMMesh, element_data: NDArray[np.float64]) -> csr_matrix:
    """Sum packed (noelms * 9) element entries into the mesh CSR pattern."""
    nnz = len(fem_mesh._csr_indices)
    csr_data = np.zeros(nnz, dtype=np.float64)
    np.add.at(csr_data, fem_mesh._csr_data_map, element_data)

    return csr_matrix(
        (csr_data, fem_mesh._csr_indices, fem_mesh._csr_indptr),
        shape=(fem_mesh.nonodes, fem_mesh.nonodes),
    )


def stiffness_matrix_2d(fem_mesh: FEMMesh) -> csr_matrix:
    """
    Assemble the stiffness matrix A where A_ij = ∫ ∇φ_i·∇φ_j dΩ.
    """
    grad = fem_mesh.grad_basis
    Ke = fem_mesh.area[:, None, None] * np.einsum("eid,ejd->eij", grad, grad)
    return _assemble_csr(fem_mesh, Ke.ravel())


def mass_matrix_2d(fem_mesh: FEMMesh) -> csr_matrix:
    """
    Assemble the consistent mass matrix M where M_ij = ∫ φ_i φ_j dΩ.
    """
    area = fem_mesh.area

    # Local mass matrix entries (scaled by |T|/12)
    diag = 2 * area / 12
    off_diag = area / 12

    # Pack entries: [M11, M12, M13, M21, M22, M23, M31, M32, M33]
    n2 = N_LOCAL_NODES * N_LOCAL_NODES
    element_data = np.empty(fem_mesh.noelms * n2)
    for k in range(n2):
        element_data[k::n2] = diag if k % (N_LOCAL_NODES + 1) == 0 else off_diag

    return _assemble_csr(fem_mesh, element_data)


def patch_area(fem_mesh: FEMMesh) -> NDArray[np.float64]:
    """Per-node sum of one third of the area of every incident element."""
    patch = np.zeros(fem_mesh.nonodes)
    np.add.at(patch, fem_mesh.EToV.ravel(), np.repeat(fem_mesh.area / 3.0, N_LOCAL_NODES))
    return patch


def assemble_matrices(
    fem_mesh: FEMMesh, lumpflag: bool = True
) -> tuple[csr_matrix, csr_matrix, NDArray[np.float64]]:
    """
    Assemble the global P1 operators.

    Parameters
    ----------
    fem_mesh : FEMMesh
        The triangulation.
    lumpflag : bool
        Row-lump the mass matrix to ``diag(patch_area)``.

    Returns
    -------
    A : csr_matrix (N, N)
        Stiffness matrix.
    M : csr_matrix (N, N)
        Mass matrix, diagonal when lumped.
    area : ndarray (NT,)
        Element areas.
    """
    A = stiffness_matrix_2d(fem_mesh)
    if lumpflag:
        M = diags(patch_area(fem_mesh), format="csr")
    else:
        M = mass_matrix_2d(fem_mesh)
    return A, M, fem_mesh.area


# =============================================================================
# Load vector
# =============================================================================
@njit
def _scatter_add(b, EToV, bt):
    """Accumulate element contributions bt (NT, 3, nv) into nodal rows of b (N, nv)."""
    n_elem = EToV.shape[0]
    nv = b.shape[1]
    for e in range(n_elem):
        for k in range(3):
            node = EToV[e, k]
            for v in range(nv):
                b[node, v] += bt[e, k, v]
    return b


def _midpoint_values(
    f: Callable,
    u: NDArray | None,
    fem_mesh: FEMMesh,
    islinear: bool,
    numvars: int,
) -> NDArray:
    """f at the three edge midpoints of every element, shape (3, NT, numvars)."""
    noelms = fem_mesh.noelms
    values = []
    for k, (a, b) in enumerate(EDGE_VERTICES):
        if islinear:
            fk = f(fem_mesh.mid[k])
        else:
            ends = fem_mesh.EToV[:, [a, b]]
            um = 0.5 * (u[ends[:, 0]] + u[ends[:, 1]])
            fk = f(fem_mesh.mid[k], squeeze(um, numvars))
        values.append(as_columns(fk, noelms, numvars))
    return np.stack(values)


def assemble_load(
    f: Callable,
    gD: Callable | None,
    gN: Callable | None,
    A: csr_matrix,
    u: NDArray | None,
    fem_mesh: FEMMesh,
    islinear: bool,
    numvars: int,
    D: NDArray[np.float64] | None = None,
) -> NDArray:
    """
    Assemble the load vector with midpoint quadrature and boundary terms.

    Vertex k of an element receives ``|T|/6 (f(m_i) + f(m_j))`` where m_i, m_j
    are the midpoints of the two edges sharing vertex k. Nonlinear forcing
    ``f(x, u)`` sees u averaged over the endpoints of each edge.

    Parameters
    ----------
    f : callable
        ``f(x)`` when ``islinear``, otherwise ``f(x, u)``.
    gD, gN : callable or None
        Dirichlet and Neumann data ``g(x)``. Boundary terms are skipped when None.
    A : csr_matrix
        Stiffness matrix, used for the Dirichlet lift.
    u : ndarray (N,) or (N, numvars), or None for linear forcing
        Current field. A complex u gives a complex load.
    fem_mesh : FEMMesh
    islinear : bool
    numvars : int
    D : ndarray (numvars,), optional
        Diffusion coefficients scaling the Dirichlet lift.

    Returns
    -------
    ndarray (N,) if numvars == 1 else (N, numvars)
    """
    if not islinear:
        u = np.asarray(u).reshape(fem_mesh.nonodes, numvars)

    fmid = _midpoint_values(f, u, fem_mesh, islinear, numvars)
    bt = np.empty(
        (fem_mesh.noelms, N_LOCAL_NODES, numvars), dtype=np.result_type(fmid, np.float64)
    )
    weight = (fem_mesh.area / 6.0)[:, None]
    for k in range(N_LOCAL_NODES):
        bt[:, k] = weight * (fmid[(k + 1) % 3] + fmid[(k + 2) % 3])

    b = np.zeros((fem_mesh.nonodes, numvars), dtype=bt.dtype)
    b = _scatter_add(b, fem_mesh.EToV, bt)

    if gD is not None and len(fem_mesh.dirichlet) > 0:
        b += dirichlet_lift(gD, A, fem_mesh, numvars, D)
    if gN is not None and len(fem_mesh.neumann) > 0:
        b += neumann_load(gN, fem_mesh, numvars)

    return squeeze(b, numvars)
