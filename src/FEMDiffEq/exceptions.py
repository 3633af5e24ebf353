"""Exceptions raised by the finite element solvers."""

from __future__ import annotations


class FEMError(Exception):
    """Base class for all errors raised by FEMDiffEq."""


class ConfigurationError(FEMError, ValueError):
    """Invalid solver, scheme or problem configuration.

    Raised before any numerical work is done.
    """


class ConvergenceError(FEMError, RuntimeError):
    """An iterative linear or nonlinear solve did not converge.

    Parameters
    ----------
    message : str
        Description of the failure.
    iterations : int, optional
        Iteration count reported by the failing solver.
    step : int, optional
        Time step at which a transient run failed.
    t : float, optional
        Simulation time at which a transient run failed.
    """

    def __init__(
        self,
        message: str,
        iterations: int | None = None,
        step: int | None = None,
        t: float | None = None,
    ) -> None:
        super().__init__(message)
        self.iterations = iterations
        self.step = step
        self.t = t
