"""Shape helpers for nodal fields.

Internally every field is an ``(n, numvars)`` array. User functions see and
return ``(n,)`` arrays when ``numvars == 1``.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError


def as_columns(values, n: int, numvars: int) -> NDArray:
    """Reshape function output to (n, numvars), broadcasting scalars and constant rows.

    Raises
    ------
    ConfigurationError
        If the output does not fit (n, numvars), e.g. an ``(n,)`` array for a
        field with several variables.
    """
    arr = np.asarray(values)
    if arr.ndim == 0:
        return np.full((n, numvars), arr, dtype=np.result_type(arr, np.float64))
    if arr.ndim == 1:
        if numvars > 1 and arr.shape[0] == numvars:
            arr = arr[None, :]
        elif numvars == 1 and arr.shape[0] in (n, 1):
            arr = arr[:, None]
        else:
            raise ConfigurationError(
                f"Function returned shape {arr.shape} for {n} points and {numvars} variables, "
                f"expected ({n}, {numvars})" + (f" or ({n},)" if numvars == 1 else "")
            )
    try:
        return np.broadcast_to(arr, (n, numvars))
    except ValueError as exc:
        raise ConfigurationError(
            f"Function returned shape {arr.shape}, expected ({n}, {numvars})"
        ) from exc


def squeeze(u: NDArray, numvars: int) -> NDArray:
    """Return u as (n,) when numvars == 1, else (n, numvars)."""
    return u.reshape(-1) if numvars == 1 else u


def num_columns(values) -> int:
    """Number of field variables in a function's output."""
    arr = np.asarray(values)
    return 1 if arr.ndim <= 1 else arr.shape[1]
