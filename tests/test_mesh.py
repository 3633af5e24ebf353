"""Tests for FEMMesh construction and boundary classification.

Run with: uv run pytest tests/test_mesh.py -v
"""

import numpy as np
import pytest

from FEMDiffEq import (
    BoundaryType,
    CFLmu,
    CFLnu,
    ConfigurationError,
    FEMMesh,
    fem_squaremesh,
    notime_squaremesh,
    parabolic_squaremesh,
)
from conftest import UNIT_SQUARE


class TestSquareMesh:
    """Test the structured square triangulation."""

    def test_counts(self):
        node, elem = fem_squaremesh(UNIT_SQUARE, 0.5)
        assert node.shape == (9, 2)
        assert elem.shape == (8, 3)

    def test_counter_clockwise(self, small_mesh):
        """All elements should have positive signed area."""
        assert np.all(small_mesh.delta > 0)

    def test_total_area(self, small_mesh):
        assert np.isclose(small_mesh.area.sum(), 1.0)

    def test_rectangle(self):
        mesh = notime_squaremesh((0.0, 2.0, -1.0, 1.0), 0.5)
        assert mesh.nonodes == 25
        assert np.isclose(mesh.area.sum(), 4.0)
        assert mesh.VX.min() == 0.0 and mesh.VX.max() == 2.0
        assert mesh.VY.min() == -1.0 and mesh.VY.max() == 1.0

    def test_midpoints_opposite_vertex(self, small_mesh):
        """mid[k] is the midpoint of the edge opposite local vertex k."""
        node, elem = small_mesh.node, small_mesh.EToV
        assert np.allclose(small_mesh.mid[0], 0.5 * (node[elem[:, 1]] + node[elem[:, 2]]))
        assert np.allclose(small_mesh.mid[1], 0.5 * (node[elem[:, 2]] + node[elem[:, 0]]))
        assert np.allclose(small_mesh.mid[2], 0.5 * (node[elem[:, 0]] + node[elem[:, 1]]))

    def test_totaledge_order(self, small_mesh):
        NT = small_mesh.noelms
        assert small_mesh.totaledge.shape == (3 * NT, 2)
        assert np.array_equal(small_mesh.totaledge[:NT], small_mesh.EToV[:, [1, 2]])
        assert np.array_equal(small_mesh.totaledge[2 * NT:], small_mesh.EToV[:, [0, 1]])


class TestBoundary:
    """Test boundary discovery and node partition."""

    def test_dirichlet_partition(self, small_mesh):
        bd, free = small_mesh.bdnode, small_mesh.freenode
        assert len(bd) == 16
        assert len(free) == 9
        assert len(np.intersect1d(bd, free)) == 0
        assert np.array_equal(np.sort(np.concatenate((bd, free))), np.arange(small_mesh.nonodes))

    def test_boundary_nodes_on_boundary(self, small_mesh):
        x = small_mesh.node[small_mesh.bdnode]
        on_edge = np.isclose(x[:, 0], 0) | np.isclose(x[:, 0], 1) | np.isclose(x[:, 1], 0) | np.isclose(x[:, 1], 1)
        assert np.all(on_edge)

    def test_boundary_edges(self, small_mesh):
        assert len(small_mesh.bdedge) == 16
        assert small_mesh.is_bdnode.sum() == 16
        assert len(small_mesh.dirichlet) == 16
        assert len(small_mesh.neumann) == 0

    def test_pure_neumann(self):
        mesh = notime_squaremesh(UNIT_SQUARE, 0.25, "neumann")
        assert mesh.is_pure_neumann
        assert len(mesh.bdnode) == 0
        assert len(mesh.freenode) == mesh.nonodes
        assert len(mesh.neumann) == 16

    def test_bdflag(self, small_mesh):
        assert small_mesh.bdflag.shape == (small_mesh.noelms, 3)
        assert np.count_nonzero(small_mesh.bdflag == BoundaryType.DIRICHLET) == 16
        assert np.count_nonzero(small_mesh.bdflag == BoundaryType.INTERIOR) == 3 * small_mesh.noelms - 16

    def test_callable_bdtype(self):
        """Left side Neumann, the rest Dirichlet."""

        def bdtype(mid):
            return np.where(mid[:, 0] < 1e-12, BoundaryType.NEUMANN, BoundaryType.DIRICHLET)

        mesh = notime_squaremesh(UNIT_SQUARE, 0.25, bdtype)
        assert len(mesh.neumann) == 4
        assert len(mesh.dirichlet) == 12
        # Interior nodes of the left side are free, its corners are not
        assert len(mesh.bdnode) == 13

    def test_unknown_bdtype(self):
        with pytest.raises(ConfigurationError):
            notime_squaremesh(UNIT_SQUARE, 0.25, "periodic")


class TestMeshProperties:
    """Test time stepping numbers and immutability."""

    def test_steady(self, small_mesh):
        assert small_mesh.numiters == 0
        assert not small_mesh.evolution_eq

    def test_parabolic(self):
        mesh = parabolic_squaremesh(UNIT_SQUARE, 0.25, 0.01, 0.1)
        assert mesh.numiters == 10
        assert np.isclose(mesh.mu, 0.16)
        assert np.isclose(mesh.nu, 0.04)
        assert mesh.evolution_eq

    def test_cfl(self):
        assert np.isclose(CFLmu(0.01, 0.1), 1.0)
        assert np.isclose(CFLnu(0.01, 0.1), 0.1)

    def test_read_only(self, small_mesh):
        with pytest.raises(ValueError):
            small_mesh.VX[0] = 1.0
        with pytest.raises(ValueError):
            small_mesh.freenode[0] = 0

    def test_inputs_not_frozen(self):
        node, elem = fem_squaremesh(UNIT_SQUARE, 0.5)
        FEMMesh.from_triangulation(node, elem, dx=0.5)
        assert node.flags.writeable
        assert elem.flags.writeable

    def test_bad_connectivity(self):
        with pytest.raises(ConfigurationError):
            FEMMesh(np.zeros(3), np.zeros(3), np.array([[0, 1]]), dx=1.0)


class TestMeshio:
    """Test loading a triangulation through meshio."""

    def test_from_meshio(self):
        meshio = pytest.importorskip("meshio")
        node, elem = fem_squaremesh(UNIT_SQUARE, 0.5)
        # Extra point not referenced by any triangle
        points = np.vstack((np.column_stack((node, np.zeros(len(node)))), [[5.0, 5.0, 0.0]]))
        m = meshio.Mesh(points, [("triangle", elem)])

        mesh = FEMMesh.from_meshio(m, bdtype="neumann")
        assert mesh.nonodes == 9
        assert mesh.noelms == 8
        assert np.isclose(mesh.area.sum(), 1.0)
        assert mesh.dx > 0.5 and mesh.dx < 0.71
        assert mesh.is_pure_neumann

    def test_no_triangles(self):
        meshio = pytest.importorskip("meshio")
        m = meshio.Mesh(np.zeros((2, 3)), [("line", np.array([[0, 1]]))])
        with pytest.raises(ValueError):
            FEMMesh.from_meshio(m)
