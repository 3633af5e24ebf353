"""FEMDiffEq: P1 finite elements for Poisson and heat equations on 2D triangulations.

Scalar and vector-valued problems with Dirichlet/Neumann boundaries,
nonlinear forcing and additive spatial white noise.

Main components:
- FEMMesh, notime_squaremesh, parabolic_squaremesh: meshes and boundary classification
- PoissonProblem, HeatProblem: problem definitions
- assemble_matrices, assemble_load: stiffness, mass and load assembly
- solve_poisson, solve_heat, solve: steady and transient solvers
- FEMSolution: result with error norms and time series
"""

from .datastructures import (
    FEMMesh,
    BoundaryType,
    CFLmu,
    CFLnu,
    fem_squaremesh,
    notime_squaremesh,
    parabolic_squaremesh,
    find_boundary,
    set_boundary,
)
from .exceptions import FEMError, ConfigurationError, ConvergenceError
from .parameters import (
    LinearSolver,
    Scheme,
    NoiseKind,
    Parameters,
    PoissonParameters,
    HeatParameters,
)
from .problems import Linearity, PoissonProblem, HeatProblem
from .assembly import assemble_matrices, assemble_load, patch_area
from .noise import WhiteNoise, get_noise
from .solutions import FEMSolution, TimeSeries
from .norms import discrete_l2_error, h1_seminorm_error, linf_error
from .poisson import solve_poisson
from .heat import FEMHeatIntegrator, solve_heat
from .solvers import solve

__all__ = [
    # Mesh
    "FEMMesh",
    "BoundaryType",
    "CFLmu",
    "CFLnu",
    "fem_squaremesh",
    "notime_squaremesh",
    "parabolic_squaremesh",
    "find_boundary",
    "set_boundary",
    # Errors
    "FEMError",
    "ConfigurationError",
    "ConvergenceError",
    # Configuration
    "LinearSolver",
    "Scheme",
    "NoiseKind",
    "Parameters",
    "PoissonParameters",
    "HeatParameters",
    # Problems
    "Linearity",
    "PoissonProblem",
    "HeatProblem",
    # Assembly
    "assemble_matrices",
    "assemble_load",
    "patch_area",
    # Noise
    "WhiteNoise",
    "get_noise",
    # Solutions
    "FEMSolution",
    "TimeSeries",
    "discrete_l2_error",
    "h1_seminorm_error",
    "linf_error",
    # Solvers
    "solve_poisson",
    "solve_heat",
    "FEMHeatIntegrator",
    "solve",
]
