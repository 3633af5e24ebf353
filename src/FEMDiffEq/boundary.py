from __future__ import annotations

from typing import Callable

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import spmatrix

from .datastructures import FEMMesh
from .fields import as_columns

# Gauss-Legendre points on an edge, as barycentric weights (lambda_1, lambda_2)
_EDGE_QUAD = {
    1: (np.array([[0.5, 0.5]]), np.array([1.0])),
    2: (
        np.array([
            [(1 + 1 / np.sqrt(3)) / 2, (1 - 1 / np.sqrt(3)) / 2],
            [(1 - 1 / np.sqrt(3)) / 2, (1 + 1 / np.sqrt(3)) / 2],
        ]),
        np.array([0.5, 0.5]),
    ),
    3: (
        np.array([
            [(1 + np.sqrt(3 / 5)) / 2, (1 - np.sqrt(3 / 5)) / 2],
            [0.5, 0.5],
            [(1 - np.sqrt(3 / 5)) / 2, (1 + np.sqrt(3 / 5)) / 2],
        ]),
        np.array([5 / 18, 8 / 18, 5 / 18]),
    ),
}


def dirichlet_values(
    gD: Callable,
    fem_mesh: FEMMesh,
    numvars: int,
) -> NDArray[np.float64]:
    """Evaluate gD at the Dirichlet nodes, shape (len(bdnode), numvars)."""
    bdnode = fem_mesh.bdnode
    return as_columns(gD(fem_mesh.node[bdnode]), len(bdnode), numvars)


def dirichlet_lift(
    gD: Callable,
    A: spmatrix,
    fem_mesh: FEMMesh,
    numvars: int,
    D: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """Load correction ``-(A @ uz) * D`` eliminating the known Dirichlet values.

    ``uz`` is zero except at the Dirichlet nodes where it equals gD.
    """
    uz = np.zeros((fem_mesh.nonodes, numvars))
    uz[fem_mesh.bdnode] = dirichlet_values(gD, fem_mesh, numvars)
    lift = -(A @ uz)
    if D is not None:
        lift = lift * D[None, :]
    return lift


def neumann_load(
    gN: Callable,
    fem_mesh: FEMMesh,
    numvars: int,
    order: int = 2,
) -> NDArray[np.float64]:
    """Natural boundary term ``∫ gN φ_i ds`` over the Neumann edges.

    Uses Gauss quadrature of the given order along each edge with the linear
    edge basis, scaled by edge length and accumulated at both endpoints.
    """
    if order not in _EDGE_QUAD:
        raise ValueError(f"Unsupported edge quadrature order={order}. Use 1, 2 or 3.")

    b = np.zeros((fem_mesh.nonodes, numvars))
    edges = fem_mesh.neumann
    if len(edges) == 0:
        return b

    node = fem_mesh.node
    xi, xj = node[edges[:, 0]], node[edges[:, 1]]
    edge_lengths = np.linalg.norm(xj - xi, axis=1)

    lam, weights = _EDGE_QUAD[order]
    ge = np.zeros((len(edges), 2, numvars))
    for (l1, l2), w in zip(lam, weights):
        gNp = as_columns(gN(l1 * xi + l2 * xj), len(edges), numvars)
        ge[:, 0] += w * l1 * gNp
        ge[:, 1] += w * l2 * gNp
    ge *= edge_lengths[:, None, None]

    np.add.at(b, edges[:, 0], ge[:, 0])
    np.add.at(b, edges[:, 1], ge[:, 1])
    return b
