"""Spatial noise increments for stochastic problems."""

from __future__ import annotations

from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from .parameters import NoiseKind, coerce_enum


class NoiseGenerator(Protocol):
    """Anything that yields the next noise increment for a field."""

    def next_increment(
        self,
        u: NDArray,
        node: NDArray[np.float64] | None = None,
        elem: NDArray[np.int64] | None = None,
    ) -> NDArray[np.float64]: ...


class WhiteNoise:
    """Independent standard normal sample per node and variable.

    Parameters
    ----------
    seed : int, optional
        Seed of the underlying ``numpy.random.Generator``. A fixed seed
        reproduces the same sequence of increments.
    """

    def __init__(self, seed: int | None = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def next_increment(self, u, node=None, elem=None):
        return self.rng.standard_normal(np.shape(u))

    def reset(self) -> None:
        """Restart the sequence from the seed."""
        self.rng = np.random.default_rng(self.seed)

    def __repr__(self) -> str:
        return f"WhiteNoise(seed={self.seed})"


_NOISE = {
    NoiseKind.WHITE: WhiteNoise,
}


def get_noise(kind: NoiseKind | str = NoiseKind.WHITE, seed: int | None = None) -> NoiseGenerator:
    """Noise generator for ``kind``; unknown kinds raise ConfigurationError."""
    return _NOISE[coerce_enum(NoiseKind, kind)](seed)
