"""
Solver output.

FEMSolution
├── u            final field, (N,) or (N, numvars)
├── u_analytic   exact solution at the nodes, if known
├── timeseries   snapshots of u at ts (transient runs)
└── errors       l2 / linf / h1 against the exact solution
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .datastructures import FEMMesh
from .fields import as_columns, squeeze
from .norms import compute_errors
from .problems import Problem


@dataclass
class TimeSeries:
    """Snapshots of the field (one per saved step)."""

    ts: List[float] = field(default_factory=list)
    snapshots: List[NDArray[np.float64]] = field(default_factory=list)

    def append(self, t: float, u: NDArray[np.float64]) -> None:
        self.ts.append(float(t))
        self.snapshots.append(np.array(u, copy=True))

    def __len__(self) -> int:
        return len(self.ts)

    def as_array(self) -> NDArray[np.float64]:
        """Snapshots stacked along a leading time axis."""
        return np.stack(self.snapshots)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per snapshot: time and min, max, mean of every variable."""
        rows = []
        for t, u in zip(self.ts, self.snapshots):
            cols = u.reshape(len(u), -1)
            row = {"t": t}
            for k in range(cols.shape[1]):
                suffix = "" if cols.shape[1] == 1 else f"_{k}"
                row[f"min{suffix}"] = cols[:, k].min()
                row[f"max{suffix}"] = cols[:, k].max()
                row[f"mean{suffix}"] = cols[:, k].mean()
            rows.append(row)
        return pd.DataFrame(rows)


@dataclass
class FEMSolution:
    """Result of a steady or transient solve."""

    fem_mesh: FEMMesh
    u: NDArray[np.float64]
    prob: Problem
    t: float = 0.0
    timeseries: TimeSeries | None = None
    u_analytic: NDArray[np.float64] | None = field(init=False, default=None)
    errors: dict = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        exact = self.prob.exact(self.t)
        if exact is None:
            return
        node = self.fem_mesh.node
        nv = self.prob.numvars
        values = np.array(as_columns(exact(node), len(node), nv), dtype=np.float64)
        self.u_analytic = squeeze(values, nv)
        grad = self.prob.at_time(self.prob.Du, self.t) if self.prob.Du is not None else None
        self.errors = compute_errors(self.fem_mesh, self.u, exact, grad)

    @property
    def numvars(self) -> int:
        return self.prob.numvars

    def errors_to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([{"dx": self.fem_mesh.dx, "dt": self.fem_mesh.dt, **self.errors}])
