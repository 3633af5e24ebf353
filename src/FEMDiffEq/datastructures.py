from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Union

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    import meshio


class BoundaryType(IntEnum):
    """Boundary condition attached to a boundary edge."""

    INTERIOR = 0
    DIRICHLET = 1
    NEUMANN = 2
    ROBIN = 3


BoundarySpec = Union[
    BoundaryType, str, Callable[[NDArray[np.float64]], NDArray[np.int64]]
]

# Element configuration (P1 triangles)
N_LOCAL_NODES = 3

# Local edge k is opposite local vertex k and connects these vertex positions
EDGE_VERTICES = np.array([[1, 2], [2, 0], [0, 1]])


def CFLmu(dt: float, dx: float) -> float:
    """CFL number mu = dt / dx^2."""
    return dt / (dx * dx)


def CFLnu(dt: float, dx: float) -> float:
    """CFL number nu = dt / dx."""
    return dt / dx


@dataclass
class FEMMesh:
    """2D triangular mesh for P1 finite elements, with boundary classification.

    Parameters
    ----------
    VX, VY : ndarray (N,)
        Node coordinates.
    EToV : ndarray (NT, 3)
        Zero-based element-to-vertex connectivity.
    dx : float
        Spatial step (average edge length for unstructured meshes).
    dt : float
        Time step, 0 for steady problems.
    T : float
        End time, 0 for steady problems.
    bdtype : BoundaryType, str or callable
        Boundary condition applied to every boundary edge, or a callable taking
        the ``(k, 2)`` boundary-edge midpoints and returning one BoundaryType per edge.

    Notes
    -----
    The mesh is immutable once constructed: every array is made read-only.
    Non-degenerate triangles are assumed and not validated.
    """

    VX: NDArray[np.float64]
    VY: NDArray[np.float64]
    EToV: NDArray[np.int64]
    dx: float
    dt: float = 0.0
    T: float = 0.0
    bdtype: BoundarySpec = BoundaryType.DIRICHLET

    # Computed mesh properties
    nonodes: int = field(init=False)
    noelms: int = field(init=False)
    numiters: int = field(init=False)
    mu: float = field(init=False)
    nu: float = field(init=False)
    evolution_eq: bool = field(init=False)

    # Geometry
    area: NDArray[np.float64] = field(init=False)
    delta: NDArray[np.float64] = field(init=False, repr=False)
    abc: NDArray[np.float64] = field(init=False, repr=False)
    mid: NDArray[np.float64] = field(init=False, repr=False)

    # Boundary data
    totaledge: NDArray[np.int64] = field(init=False, repr=False)
    bdflag: NDArray[np.int8] = field(init=False, repr=False)
    bdedge: NDArray[np.int64] = field(init=False, repr=False)
    is_bdnode: NDArray[np.bool_] = field(init=False, repr=False)
    is_bdelem: NDArray[np.bool_] = field(init=False, repr=False)
    dirichlet: NDArray[np.int64] = field(init=False, repr=False)
    neumann: NDArray[np.int64] = field(init=False, repr=False)
    robin: NDArray[np.int64] = field(init=False, repr=False)
    bdnode: NDArray[np.int64] = field(init=False, repr=False)
    freenode: NDArray[np.int64] = field(init=False, repr=False)

    # CSR assembly pattern (pre-computed for direct CSR construction)
    _csr_indptr: NDArray[np.int64] = field(init=False, repr=False)
    _csr_indices: NDArray[np.int64] = field(init=False, repr=False)
    _csr_data_map: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.VX = np.array(self.VX, dtype=np.float64).ravel()
        self.VY = np.array(self.VY, dtype=np.float64).ravel()
        self.EToV = np.array(self.EToV, dtype=np.int64)
        if self.EToV.ndim != 2 or self.EToV.shape[1] != N_LOCAL_NODES:
            raise ConfigurationError(f"EToV must have shape (NT, 3), got {self.EToV.shape}")
        if len(self.VX) != len(self.VY):
            raise ConfigurationError("VX and VY must have the same length")

        self._compute_mesh_properties()
        self._compute_basis()
        self._compute_midpoints()
        self._compute_assembly_indices()
        self._compute_boundary()
        self._freeze()

    def _compute_mesh_properties(self) -> None:
        self.nonodes = len(self.VX)
        self.noelms = len(self.EToV)
        self.numiters = int(round(self.T / self.dt)) if self.dt != 0 else 0
        self.mu = CFLmu(self.dt, self.dx)
        self.nu = CFLnu(self.dt, self.dx)
        self.evolution_eq = self.T != 0

    def _compute_basis(self) -> None:
        """Compute delta, area and basis function coefficients for each element."""
        x1, y1, x2, y2, x3, y3 = self.vertex_coords

        self.delta = 0.5 * (x1 * (y2 - y3) + x2 * (y3 - y1) + x3 * (y1 - y2))
        self.area = np.abs(self.delta)

        # Shape: (noelms, 3 basis functions, 3 coefficients [a, b, c])
        # phi_i = (a_i + b_i x + c_i y) / (2 delta)
        self.abc = np.empty((self.noelms, 3, 3), dtype=np.float64)
        self.abc[:, 0, 0] = x2 * y3 - x3 * y2
        self.abc[:, 0, 1] = y2 - y3
        self.abc[:, 0, 2] = x3 - x2
        self.abc[:, 1, 0] = x3 * y1 - x1 * y3
        self.abc[:, 1, 1] = y3 - y1
        self.abc[:, 1, 2] = x1 - x3
        self.abc[:, 2, 0] = x1 * y2 - x2 * y1
        self.abc[:, 2, 1] = y1 - y2
        self.abc[:, 2, 2] = x2 - x1

    def _compute_midpoints(self) -> None:
        """Edge midpoints; mid[k] is the midpoint of the edge opposite local vertex k."""
        node = self.node
        self.mid = np.empty((N_LOCAL_NODES, self.noelms, 2), dtype=np.float64)
        for k, (a, b) in enumerate(EDGE_VERTICES):
            self.mid[k] = 0.5 * (node[self.EToV[:, a]] + node[self.EToV[:, b]])

    def _compute_assembly_indices(self) -> None:
        """Compute the CSR sparsity pattern for direct assembly."""
        n = N_LOCAL_NODES
        rows = np.repeat(self.EToV, n, axis=1).ravel()
        cols = np.tile(self.EToV, n).ravel()
        n_entries = len(rows)

        # Sort by (row, col) to group duplicates and build CSR structure
        sort_order = np.lexsort((cols, rows))
        sorted_rows = rows[sort_order]
        sorted_cols = cols[sort_order]

        row_diff = np.diff(sorted_rows, prepend=-1)
        col_diff = np.diff(sorted_cols, prepend=-1)
        is_new_pair = (row_diff != 0) | (col_diff != 0)

        unique_rows = sorted_rows[is_new_pair]
        unique_cols = sorted_cols[is_new_pair]

        self._csr_indptr = np.zeros(self.nonodes + 1, dtype=np.int64)
        np.add.at(self._csr_indptr, unique_rows + 1, 1)
        np.cumsum(self._csr_indptr, out=self._csr_indptr)

        self._csr_indices = unique_cols

        # Map each original entry to its position in CSR data array
        pair_indices = np.cumsum(is_new_pair) - 1
        self._csr_data_map = np.empty(n_entries, dtype=np.int64)
        self._csr_data_map[sort_order] = pair_indices

    def _compute_boundary(self) -> None:
        self.totaledge = np.vstack([self.EToV[:, EDGE_VERTICES[k]] for k in range(N_LOCAL_NODES)])
        self.bdedge, self.is_bdnode, self.is_bdelem = find_boundary(self.EToV, self.nonodes)
        self.bdflag = set_boundary(self.node, self.EToV, self.bdtype)

        # bdflag is (NT, 3); totaledge stacks local edge 0 for all elements, then 1, then 2
        flat = self.bdflag.T.ravel()
        self.dirichlet = self.totaledge[flat == BoundaryType.DIRICHLET]
        self.neumann = self.totaledge[flat == BoundaryType.NEUMANN]
        self.robin = self.totaledge[flat == BoundaryType.ROBIN]

        is_dirichlet = np.zeros(self.nonodes, dtype=bool)
        is_dirichlet[self.dirichlet.ravel()] = True
        self.bdnode = np.flatnonzero(is_dirichlet)
        self.freenode = np.flatnonzero(~is_dirichlet)

    def _freeze(self) -> None:
        for value in self.__dict__.values():
            if isinstance(value, np.ndarray):
                value.setflags(write=False)

    @property
    def node(self) -> NDArray[np.float64]:
        """Node coordinates as an (N, 2) array."""
        return np.column_stack((self.VX, self.VY))

    @property
    def is_pure_neumann(self) -> bool:
        """True when no Dirichlet edge constrains the solution."""
        return len(self.dirichlet) == 0

    @property
    def vertex_coords(
        self,
    ) -> tuple[
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
    ]:
        """Return (x1, y1, x2, y2, x3, y3) coordinates for all elements."""
        v1, v2, v3 = self.EToV[:, 0], self.EToV[:, 1], self.EToV[:, 2]
        return (
            self.VX[v1],
            self.VY[v1],
            self.VX[v2],
            self.VY[v2],
            self.VX[v3],
            self.VY[v3],
        )

    @property
    def grad_basis(self) -> NDArray[np.float64]:
        """Constant basis gradients, shape (noelms, 3 basis functions, 2)."""
        return self.abc[:, :, 1:] / (2.0 * self.delta)[:, None, None]

    @classmethod
    def from_triangulation(
        cls,
        node: NDArray[np.float64],
        elem: NDArray[np.int64],
        dx: float,
        dt: float = 0.0,
        T: float = 0.0,
        bdtype: BoundarySpec = BoundaryType.DIRICHLET,
    ) -> FEMMesh:
        """Create a mesh from an (N, 2) node array and an (NT, 3) element array."""
        node = np.asarray(node, dtype=np.float64)
        return cls(node[:, 0], node[:, 1], elem, dx=dx, dt=dt, T=T, bdtype=bdtype)

    @classmethod
    def from_meshio(
        cls,
        mesh: meshio.Mesh | str | Path,
        dx: float | None = None,
        dt: float = 0.0,
        T: float = 0.0,
        bdtype: BoundarySpec = BoundaryType.DIRICHLET,
    ) -> FEMMesh:
        """
        Create FEMMesh from a meshio mesh or mesh file.

        Parameters
        ----------
        mesh : meshio.Mesh or str or Path
            Either a meshio Mesh object or path to a mesh file.
        dx : float, optional
            Spatial step. Defaults to the mean edge length.
        dt, T : float
            Time step and end time.
        bdtype : BoundaryType, str or callable
            Boundary classification, see FEMMesh.

        Returns
        -------
        FEMMesh
            The mesh object with all computed properties.
        """
        import meshio as mio

        if isinstance(mesh, (str, Path)):
            mesh = mio.read(mesh)

        points = mesh.points[:, :2].astype(np.float64)

        EToV = None
        for cell_block in mesh.cells:
            if cell_block.type == "triangle":
                EToV = cell_block.data.astype(np.int64)
                break

        if EToV is None:
            raise ValueError("No triangle cells found in mesh")

        # Drop points not referenced by any triangle (e.g. gmsh geometry points)
        used = np.unique(EToV)
        if len(used) != len(points):
            renumber = np.full(len(points), -1, dtype=np.int64)
            renumber[used] = np.arange(len(used))
            points = points[used]
            EToV = renumber[EToV]

        if dx is None:
            edges = np.vstack([EToV[:, EDGE_VERTICES[k]] for k in range(N_LOCAL_NODES)])
            dx = float(np.mean(np.linalg.norm(points[edges[:, 0]] - points[edges[:, 1]], axis=1)))

        return cls(points[:, 0], points[:, 1], EToV, dx=dx, dt=dt, T=T, bdtype=bdtype)


def _boundary_mask(EToV: NDArray[np.int64]) -> tuple[NDArray[np.int64], NDArray[np.bool_]]:
    """Stacked local edges and a mask of the ones owned by exactly one element."""
    totaledge = np.vstack([EToV[:, EDGE_VERTICES[k]] for k in range(N_LOCAL_NODES)])
    _, inverse, counts = np.unique(
        np.sort(totaledge, axis=1), axis=0, return_inverse=True, return_counts=True
    )
    return totaledge, counts[inverse.ravel()] == 1


def find_boundary(
    EToV: NDArray[np.int64], nonodes: int
) -> tuple[NDArray[np.int64], NDArray[np.bool_], NDArray[np.bool_]]:
    """Find the topological boundary of a triangulation.

    An edge is on the boundary when exactly one element owns it.

    Returns
    -------
    bdedge : ndarray (k, 2)
        Boundary edges as node pairs.
    is_bdnode : ndarray (N,) of bool
    is_bdelem : ndarray (NT,) of bool
    """
    noelms = len(EToV)
    totaledge, on_boundary = _boundary_mask(EToV)

    bdedge = totaledge[on_boundary]
    is_bdnode = np.zeros(nonodes, dtype=bool)
    is_bdnode[bdedge.ravel()] = True
    is_bdelem = on_boundary.reshape(N_LOCAL_NODES, noelms).any(axis=0)
    return bdedge, is_bdnode, is_bdelem


def set_boundary(
    node: NDArray[np.float64],
    EToV: NDArray[np.int64],
    bdtype: BoundarySpec,
) -> NDArray[np.int8]:
    """Classify each local edge of each element.

    Returns an (NT, 3) int8 array: 0 for interior edges, otherwise the
    BoundaryType value of the boundary edge opposite local vertex k.
    """
    noelms = len(EToV)
    totaledge, on_boundary = _boundary_mask(EToV)

    flags = np.zeros(len(totaledge), dtype=np.int8)
    if callable(bdtype):
        edges = totaledge[on_boundary]
        midpoints = 0.5 * (node[edges[:, 0]] + node[edges[:, 1]])
        flags[on_boundary] = np.asarray(bdtype(midpoints), dtype=np.int8)
    else:
        flags[on_boundary] = _boundary_type(bdtype)

    return flags.reshape(N_LOCAL_NODES, noelms).T.copy()


def _boundary_type(bdtype: BoundaryType | str) -> BoundaryType:
    if isinstance(bdtype, BoundaryType):
        return bdtype
    try:
        return BoundaryType[str(bdtype).upper()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown boundary type {bdtype!r}. Use 'dirichlet', 'neumann' or 'robin'"
        ) from None


# =============================================================================
# Square meshes
# =============================================================================
def fem_squaremesh(
    square: tuple[float, float, float, float], h: float
) -> tuple[NDArray[np.float64], NDArray[np.int64]]:
    """Uniform triangulation of the rectangle ``square = (x0, x1, y0, y1)``.

    Nodes are numbered column by column (y fastest). Each grid cell is split
    along its diagonal from (x_i, y_j) to (x_i+1, y_j+1).

    Returns
    -------
    node : ndarray (N, 2)
    elem : ndarray (NT, 3)
        Counter-clockwise, zero-based.
    """
    x0, x1, y0, y1 = (float(v) for v in square)
    nx = int(round((x1 - x0) / h)) + 1
    ny = int(round((y1 - y0) / h)) + 1

    XX, YY = np.meshgrid(np.linspace(x0, x1, nx), np.linspace(y0, y1, ny))
    node = np.column_stack((XX.ravel(order="F"), YY.ravel(order="F")))

    # Lower-left node of every cell
    col, row = np.meshgrid(np.arange(nx - 1), np.arange(ny - 1))
    k = (row + col * ny).ravel(order="F")

    elem = np.empty((2 * len(k), 3), dtype=np.int64)
    elem[: len(k)] = np.column_stack((k + ny, k + ny + 1, k))
    elem[len(k):] = np.column_stack((k + 1, k, k + ny + 1))
    return node, elem


def notime_squaremesh(
    square: tuple[float, float, float, float],
    dx: float,
    bdtype: BoundarySpec = BoundaryType.DIRICHLET,
) -> FEMMesh:
    """Square mesh for a steady problem.

    Example
    -------
    >>> fem_mesh = notime_squaremesh((0, 1, 0, 1), 0.25, "dirichlet")
    """
    node, elem = fem_squaremesh(square, dx)
    return FEMMesh.from_triangulation(node, elem, dx=dx, bdtype=bdtype)


def parabolic_squaremesh(
    square: tuple[float, float, float, float],
    dx: float,
    dt: float,
    T: float,
    bdtype: BoundarySpec = BoundaryType.DIRICHLET,
) -> FEMMesh:
    """Square mesh times [0, T] with constant time step dt."""
    node, elem = fem_squaremesh(square, dx)
    return FEMMesh.from_triangulation(node, elem, dx=dx, dt=dt, T=T, bdtype=bdtype)
