"""Single entry point dispatching on the problem type."""

from __future__ import annotations

from functools import singledispatch

from .datastructures import FEMMesh
from .exceptions import ConfigurationError
from .heat import solve_heat
from .poisson import solve_poisson
from .problems import HeatProblem, PoissonProblem
from .solutions import FEMSolution


@singledispatch
def _solve(prob, fem_mesh: FEMMesh, **kwargs) -> FEMSolution:
    raise ConfigurationError(f"No solver for problems of type {type(prob).__name__}")


@_solve.register
def _(prob: PoissonProblem, fem_mesh: FEMMesh, **kwargs) -> FEMSolution:
    return solve_poisson(fem_mesh, prob, **kwargs)


@_solve.register
def _(prob: HeatProblem, fem_mesh: FEMMesh, **kwargs) -> FEMSolution:
    return solve_heat(fem_mesh, prob, **kwargs)


def solve(fem_mesh: FEMMesh, prob, **kwargs) -> FEMSolution:
    """
    Solve ``prob`` on ``fem_mesh`` with the matching solver.

    Keyword arguments are forwarded (``params``, ``noise`` or individual
    parameter fields such as ``scheme="crank_nicolson"``).
    """
    return _solve(prob, fem_mesh, **kwargs)
