"""Solver configuration.

Parameters (input/config)
─────────────────────────
Parameters              tolerance, max_iterations, nonlinear solver settings, seed
├── PoissonParameters   solver ∈ {DIRECT, CG, GMRES}
└── HeatParameters      scheme, solver, time series and progress intervals

Enumerations replace symbol dispatch. Strings are accepted wherever an
enumeration is expected and are normalised in ``__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import pandas as pd

from .exceptions import ConfigurationError


class LinearSolver(Enum):
    """Linear solver used for ``Kx = b`` with a fixed implicit operator ``K``."""

    DIRECT = "direct"
    CHOLESKY = "cholesky"
    LU = "lu"
    QR = "qr"
    SVD = "svd"
    CG = "cg"
    GMRES = "gmres"


class Scheme(Enum):
    """Time integration scheme for the heat equation."""

    EULER = "euler"
    IMPLICIT_EULER = "implicit_euler"
    CRANK_NICOLSON = "crank_nicolson"
    SEMI_IMPLICIT_EULER = "semi_implicit_euler"
    SEMI_IMPLICIT_CRANK_NICOLSON = "semi_implicit_crank_nicolson"


class NoiseKind(Enum):
    """Kind of spatial noise drawn for stochastic problems."""

    WHITE = "white"


# Common alternative spellings, keyed by normalised name
_ALIASES = {
    "cranknicholson": "cranknicolson",
    "semiimplicitcranknicholson": "semiimplicitcranknicolson",
    "cn": "cranknicolson",
    "be": "impliciteuler",
    "backwardeuler": "impliciteuler",
    "forwardeuler": "euler",
}

POISSON_SOLVERS = (LinearSolver.DIRECT, LinearSolver.CG, LinearSolver.GMRES)

# Methods of scipy.optimize.root
ROOT_METHODS = (
    "hybr",
    "lm",
    "broyden1",
    "broyden2",
    "anderson",
    "linearmixing",
    "diagbroyden",
    "excitingmixing",
    "krylov",
    "df-sane",
)

# Methods of scipy.optimize.root that take a Jacobian callable
JACOBIAN_METHODS = ("hybr", "lm")


def _normalise(name: str) -> str:
    key = "".join(ch for ch in name.lower() if ch.isalnum())
    return _ALIASES.get(key, key)


def coerce_enum(enum_cls: type[Enum], value) -> Enum:
    """Convert ``value`` to a member of ``enum_cls``.

    Accepts members, member names and values in any case, with or without
    underscores (``"ImplicitEuler"``, ``"implicit_euler"``, ``"IMPLICIT_EULER"``).
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = _normalise(value)
        for member in enum_cls:
            if key in (_normalise(member.name), _normalise(member.value)):
                return member
    choices = ", ".join(m.name for m in enum_cls)
    raise ConfigurationError(f"Unknown {enum_cls.__name__} {value!r}. Use one of: {choices}")


@dataclass
class Parameters:
    """Settings shared by the steady and transient solvers.

    Attributes
    ----------
    tolerance : float
        Relative tolerance of the iterative linear solvers (CG, GMRES).
    max_iterations : int or None
        Iteration cap of the iterative linear solvers (scipy default if None).
    autodiff : bool
        Supply an exact sparse Jacobian (complex-step differentiation) to the
        nonlinear solver instead of letting it difference the residual.
    method : str
        ``scipy.optimize.root`` method. ``"trust_region"`` is accepted as an
        alias of ``"hybr"``.
    show_trace : bool
        Log the residual norm at every nonlinear residual evaluation.
    iterations : int
        Iteration cap of the nonlinear solver.
    nonlinear_tolerance : float or None
        Termination tolerance of the nonlinear solver (scipy default if None).
    residual_tolerance : float or None
        A nonlinear solve that scipy reports as failed is still accepted when
        the residual norm is below this. Defaults to
        max(sqrt(eps) * |R(x0)|, 1e3 * eps).
    seed : int or None
        Seed of the default noise generator for stochastic problems.
    """

    tolerance: float = 1e-10
    max_iterations: int | None = None
    autodiff: bool = False
    method: str = "hybr"
    show_trace: bool = False
    iterations: int = 1000
    nonlinear_tolerance: float | None = None
    residual_tolerance: float | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.method == "trust_region":
            self.method = "hybr"
        if self.method not in ROOT_METHODS:
            raise ConfigurationError(
                f"Unknown nonlinear method {self.method!r}. Use one of: {', '.join(ROOT_METHODS)}"
            )
        if self.autodiff and self.method not in JACOBIAN_METHODS:
            raise ConfigurationError(
                f"autodiff needs a method that takes a Jacobian ({', '.join(JACOBIAN_METHODS)}), "
                f"got {self.method!r}"
            )
        if self.iterations < 1:
            raise ConfigurationError(f"iterations must be positive, got {self.iterations}")
        if self.tolerance <= 0:
            raise ConfigurationError(f"tolerance must be positive, got {self.tolerance}")
        if self.residual_tolerance is not None and self.residual_tolerance <= 0:
            raise ConfigurationError(
                f"residual_tolerance must be positive, got {self.residual_tolerance}"
            )

    def to_dict(self) -> dict:
        """Flat dict of the parameters, enumerations by name."""
        return {k: (v.name if isinstance(v, Enum) else v) for k, v in self.__dict__.items()}

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_dict()])


@dataclass
class PoissonParameters(Parameters):
    """Steady solver settings."""

    solver: LinearSolver | str = LinearSolver.DIRECT

    def __post_init__(self) -> None:
        super().__post_init__()
        self.solver = coerce_enum(LinearSolver, self.solver)
        if self.solver not in POISSON_SOLVERS:
            raise ConfigurationError(
                f"Poisson solver must be one of {[s.name for s in POISSON_SOLVERS]}, got {self.solver.name}"
            )


@dataclass
class HeatParameters(Parameters):
    """Transient solver settings.

    Attributes
    ----------
    scheme : Scheme
        Time integration scheme.
    solver : LinearSolver
        Solver for the implicit operator of the implicit and semi-implicit schemes.
    save_timeseries : bool
        Store a snapshot of the field every ``timeseries_steps`` steps.
    timeseries_steps : int
        Steps between snapshots.
    progress_steps : int
        Steps between progress log messages.
    """

    scheme: Scheme | str = Scheme.EULER
    solver: LinearSolver | str = LinearSolver.LU
    save_timeseries: bool = False
    timeseries_steps: int = 100
    progress_steps: int = 1000

    def __post_init__(self) -> None:
        super().__post_init__()
        self.scheme = coerce_enum(Scheme, self.scheme)
        self.solver = coerce_enum(LinearSolver, self.solver)
        if self.timeseries_steps < 1 or self.progress_steps < 1:
            raise ConfigurationError("timeseries_steps and progress_steps must be positive")
