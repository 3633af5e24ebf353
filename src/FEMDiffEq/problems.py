"""
Problem definitions.

Problem (frozen)
├── PoissonProblem   -D Δu = f(x[, u]) + σ dW
└── HeatProblem      u_t = D Δu + f(t, x[, u]) + σ dW

Problems are built once with ``build`` (which resolves numvars and fills in
defaults) and are immutable afterwards, so a problem can be shared between
solves.
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, ClassVar

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError
from .fields import num_columns
from .parameters import NoiseKind, coerce_enum

log = logging.getLogger(__name__)

# Coordinates used to sample the output shape of user functions
_PROBE = np.zeros((3, 2))


class Linearity(Enum):
    """Whether the forcing depends on the solution u."""

    LINEAR = "linear"
    NONLINEAR = "nonlinear"


def _positional_arity(func: Callable) -> int | None:
    """Number of required positional parameters, None if it takes *args."""
    try:
        params = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return None
    count = 0
    for p in params:
        if p.kind is inspect.Parameter.VAR_POSITIONAL:
            return None
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            if p.default is inspect.Parameter.empty:
                count += 1
    return count


def _zero_function(numvars: int, xpos: int) -> Callable:
    """Function returning zeros shaped like a field at the points in args[xpos]."""

    def zero(*args):
        n = len(args[xpos])
        return np.zeros(n) if numvars == 1 else np.zeros((n, numvars))

    return zero


@dataclass(frozen=True)
class Problem:
    """Resolved PDE problem.

    Attributes
    ----------
    f : callable
        Forcing. Takes u as its last argument when nonlinear.
    gD, gN : callable
        Dirichlet and Neumann boundary data.
    u0 : callable
        Initial condition (heat) or initial guess (Poisson), ``u0(x)``.
    D : ndarray (numvars,)
        Diffusion coefficient per variable.
    numvars : int
        Number of field variables.
    linearity : Linearity
    analytic : callable or None
        Exact solution, used for gD by default and for error norms.
    Du : callable or None
        Exact gradient, ``(n, 2)`` for scalar problems.
    sigma : callable
        Noise amplitude; a zero function when deterministic.
    sigma_linear : bool
        False when sigma takes u as its last argument.
    stochastic : bool
    noisetype : NoiseKind
    """

    # Number of leading time arguments of f, gD, gN, analytic, Du, sigma
    time_args: ClassVar[int] = 0

    f: Callable
    gD: Callable
    gN: Callable
    u0: Callable
    D: NDArray[np.float64]
    numvars: int
    linearity: Linearity = Linearity.LINEAR
    analytic: Callable | None = None
    Du: Callable | None = None
    sigma: Callable | None = None
    sigma_linear: bool = True
    stochastic: bool = False
    noisetype: NoiseKind = NoiseKind.WHITE

    @property
    def islinear(self) -> bool:
        return self.linearity is Linearity.LINEAR

    @property
    def knownanalytic(self) -> bool:
        return self.analytic is not None

    def at_time(self, func: Callable, t: float) -> Callable:
        """Spatial form of ``func``: fixes the time argument of transient problems."""
        return partial(func, t) if self.time_args else func

    def exact(self, t: float = 0.0) -> Callable | None:
        """Analytic solution as a function of x only."""
        return self.at_time(self.analytic, t) if self.analytic is not None else None

    @classmethod
    def build(
        cls,
        f: Callable,
        *,
        gD: Callable | None = None,
        gN: Callable | None = None,
        u0: Callable | None = None,
        analytic: Callable | None = None,
        Du: Callable | None = None,
        D: float | NDArray[np.float64] = 1.0,
        sigma: Callable | None = None,
        numvars: int | None = None,
        linearity: Linearity | str = Linearity.LINEAR,
        noisetype: NoiseKind | str = NoiseKind.WHITE,
    ):
        """
        Validate the problem functions and resolve defaults.

        Parameters
        ----------
        f : callable
            Forcing, ``f(x)`` / ``f(x, u)`` for Poisson and ``f(t, x)`` /
            ``f(t, x, u)`` for heat.
        gD, gN : callable, optional
            Boundary data. gD defaults to the analytic solution when known,
            otherwise both default to zero.
        u0 : callable, optional
            ``u0(x)``. Defaults to ``analytic(0, x)`` for heat, else zero.
        analytic, Du : callable, optional
            Exact solution and its gradient.
        D : float or sequence
            Diffusion coefficient, broadcast to length numvars.
        sigma : callable, optional
            Noise amplitude. Supplying it makes the problem stochastic.
        numvars : int, optional
            Number of variables. Otherwise taken from the output of
            analytic, then u0, then (linear problems) f.
        linearity : Linearity or str
            Declared linearity of f, checked against its signature.
        noisetype : NoiseKind or str

        Raises
        ------
        ConfigurationError
            On an arity mismatch, inconsistent numvars, or a malformed D.
        """
        if f is None:
            raise ConfigurationError("A forcing function f is required")
        linearity = coerce_enum(Linearity, linearity)
        noisetype = coerce_enum(NoiseKind, noisetype)
        nt = cls.time_args
        base = nt + 1

        expected = base if linearity is Linearity.LINEAR else base + 1
        arity = _positional_arity(f)
        if arity is not None and arity != expected:
            raise ConfigurationError(
                f"{linearity.name.lower()} forcing for {cls.__name__} takes {expected} "
                f"positional arguments, got a function of {arity}"
            )

        sigma_linear = True
        if sigma is not None:
            sigma_arity = _positional_arity(sigma)
            if sigma_arity is not None and sigma_arity not in (base, base + 1):
                raise ConfigurationError(
                    f"sigma for {cls.__name__} takes {base} or {base + 1} positional arguments, "
                    f"got a function of {sigma_arity}"
                )
            sigma_linear = sigma_arity != base + 1

        if u0 is None and analytic is not None and nt:
            u0 = partial(analytic, 0.0)

        numvars = cls._resolve_numvars(f, u0, analytic, numvars, linearity)

        D = np.asarray(D, dtype=np.float64).ravel()
        if D.size == 1:
            D = np.full(numvars, D[0])
        elif D.size != numvars:
            raise ConfigurationError(f"D has {D.size} entries but the problem has {numvars} variables")
        D.setflags(write=False)

        if gD is None:
            gD = analytic if analytic is not None else _zero_function(numvars, nt)
        if gN is None:
            gN = _zero_function(numvars, nt)
        if u0 is None:
            u0 = _zero_function(numvars, 0)

        return cls(
            f=f,
            gD=gD,
            gN=gN,
            u0=u0,
            D=D,
            numvars=numvars,
            linearity=linearity,
            analytic=analytic,
            Du=Du,
            sigma=sigma if sigma is not None else _zero_function(numvars, nt),
            sigma_linear=sigma_linear,
            stochastic=sigma is not None,
            noisetype=noisetype,
        )

    @classmethod
    def _resolve_numvars(cls, f, u0, analytic, numvars, linearity) -> int:
        time = (0.0,) * cls.time_args
        found = {}
        if analytic is not None:
            found["analytic"] = num_columns(analytic(*time, _PROBE))
        if u0 is not None:
            found["u0"] = num_columns(u0(_PROBE))

        if len(set(found.values())) > 1:
            raise ConfigurationError(f"Inconsistent numvars between u0 and analytic: {found}")
        if numvars is not None:
            if found and numvars not in found.values():
                raise ConfigurationError(f"numvars={numvars} disagrees with {found}")
            resolved = int(numvars)
        elif found:
            resolved = next(iter(found.values()))
        elif linearity is Linearity.LINEAR:
            resolved = num_columns(f(*time, _PROBE))
        else:
            log.warning("Nonlinear %s without u0 or numvars, assuming numvars=1", cls.__name__)
            resolved = 1

        if resolved < 1:
            raise ConfigurationError(f"numvars must be at least 1, got {resolved}")
        return resolved


@dataclass(frozen=True)
class PoissonProblem(Problem):
    """Steady problem ``-D Δu = f``; functions take x (and u)."""

    time_args: ClassVar[int] = 0


@dataclass(frozen=True)
class HeatProblem(Problem):
    """Transient problem ``u_t = D Δu + f``; functions take t, x (and u), except ``u0(x)``."""

    time_args: ClassVar[int] = 1
