import numpy as np
import pytest

from FEMDiffEq import notime_squaremesh, parabolic_squaremesh

UNIT_SQUARE = (0.0, 1.0, 0.0, 1.0)


def sine(x):
    return np.sin(np.pi * x[:, 0]) * np.sin(np.pi * x[:, 1])


def sine_gradient(x):
    return np.pi * np.column_stack(
        (
            np.cos(np.pi * x[:, 0]) * np.sin(np.pi * x[:, 1]),
            np.sin(np.pi * x[:, 0]) * np.cos(np.pi * x[:, 1]),
        )
    )


def discrete_sine_eigenvalue(h):
    """Eigenvalue of M^-1 A for the sine mode on a uniform square mesh (lumped mass)."""
    return 8.0 / h**2 * np.sin(np.pi * h / 2) ** 2


@pytest.fixture
def dirichlet_mesh():
    return notime_squaremesh(UNIT_SQUARE, 1 / 8, "dirichlet")


@pytest.fixture
def neumann_mesh():
    return notime_squaremesh(UNIT_SQUARE, 1 / 8, "neumann")


@pytest.fixture
def small_mesh():
    return notime_squaremesh(UNIT_SQUARE, 0.25, "dirichlet")


@pytest.fixture
def heat_mesh():
    return parabolic_squaremesh(UNIT_SQUARE, 1 / 8, 0.005, 0.1, "dirichlet")
