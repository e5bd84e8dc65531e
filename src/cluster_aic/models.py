"""Value objects shared by the scoring, scanning, characteristic and merge steps."""

from __future__ import annotations

from collections.abc import Hashable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import cached_property

import numpy as np
import polars as pl

# -- Input data ---------------------------------------------------------------


@dataclass(frozen=True)
class DataMatrix:
    """Observations x variables, held as a read-only float array.

    Rows align with clustering label vectors by position.
    """

    values: np.ndarray
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=float)
        if values.ndim != 2:
            msg = f"data must be 2-D (observations x variables), got {values.ndim}-D"
            raise ValueError(msg)
        columns = tuple(str(c) for c in self.columns)
        if len(columns) != values.shape[1]:
            msg = f"{len(columns)} column names given for {values.shape[1]} data columns"
            raise ValueError(msg)
        if values.shape[0] == 0 or values.shape[1] == 0:
            msg = f"data must have at least one observation and one variable, got {values.shape}"
            raise ValueError(msg)
        missing = np.isnan(values).any(axis=0)
        if missing.any():
            msg = f"data column {columns[int(np.argmax(missing))]!r} contains missing values"
            raise ValueError(msg)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "columns", columns)

    @classmethod
    def from_frame(cls, frame: pl.DataFrame) -> DataMatrix:
        """Build from a polars frame; Enum columns become their category codes."""
        arrays = []
        for name in frame.columns:
            series = frame[name]
            if isinstance(series.dtype, pl.Enum):
                series = series.to_physical()
            elif not (series.dtype.is_numeric() or series.dtype == pl.Boolean):
                msg = (
                    f"data column {name!r} has non-numeric dtype {series.dtype}; "
                    "use a numeric or pl.Enum column"
                )
                raise ValueError(msg)
            if series.null_count() > 0:
                msg = f"data column {name!r} contains missing values"
                raise ValueError(msg)
            arrays.append(series.cast(pl.Float64).to_numpy())
        values = np.column_stack(arrays) if arrays else np.empty((frame.height, 0))
        return cls(values, tuple(frame.columns))

    @classmethod
    def coerce(cls, data: DataMatrix | pl.DataFrame | np.ndarray) -> DataMatrix:
        if isinstance(data, DataMatrix):
            return data
        if isinstance(data, pl.DataFrame):
            return cls.from_frame(data)
        values = np.asarray(data, dtype=float)
        if values.ndim != 2:
            msg = f"data must be 2-D (observations x variables), got {values.ndim}-D"
            raise ValueError(msg)
        return cls(values, tuple(f"v{j + 1}" for j in range(values.shape[1])))

    @property
    def n_obs(self) -> int:
        return self.values.shape[0]

    @property
    def n_vars(self) -> int:
        return self.values.shape[1]

    def column(self, j: int) -> np.ndarray:
        return self.values[:, j]


# -- Clusterings --------------------------------------------------------------


@dataclass(frozen=True)
class Clustering:
    """One opaque, hashable cluster label per observation."""

    labels: tuple

    def __post_init__(self) -> None:
        labels = self.labels
        if isinstance(labels, np.ndarray):
            if labels.ndim != 1:
                msg = f"clustering labels must be a 1-D array, got {labels.ndim}-D"
                raise ValueError(msg)
            labels = labels.tolist()
        labels = tuple(labels)
        if not labels:
            raise ValueError("clustering must label at least one observation")
        object.__setattr__(self, "labels", labels)

    @classmethod
    def coerce(cls, labels: Clustering | object) -> Clustering:
        if isinstance(labels, Clustering):
            return labels
        return cls(labels)  # type: ignore[arg-type]

    @classmethod
    def null(cls, n_obs: int, label: Hashable = 1) -> Clustering:
        """Single-group baseline clustering."""
        return cls((label,) * n_obs)

    @cached_property
    def levels(self) -> tuple:
        """Distinct labels in order of first appearance."""
        return tuple(dict.fromkeys(self.labels))

    @property
    def n_groups(self) -> int:
        return len(self.levels)

    def __len__(self) -> int:
        return len(self.labels)

    def sizes(self) -> dict:
        counts: dict = dict.fromkeys(self.levels, 0)
        for label in self.labels:
            counts[label] += 1
        return counts

    def relabel(self, mapping: Mapping) -> Clustering:
        """Return a copy with labels found in *mapping* replaced."""
        return Clustering(tuple(mapping.get(label, label) for label in self.labels))


@dataclass(frozen=True)
class Partition:
    """One candidate partition produced by the enumerator."""

    index: int
    clustering: Clustering | None
    n_groups: int
    level: int | None = None  # requested cut level (hierarchy mode)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.clustering is not None and self.error is None


@dataclass(frozen=True)
class ClusteringSet:
    """Candidate partitions in generation order."""

    members: tuple[Partition, ...]
    mode: str  # "hierarchy" or "list"
    levels: tuple[int, ...] | None = None

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[Partition]:
        return iter(self.members)

    def __getitem__(self, i: int) -> Partition:
        return self.members[i]


# -- Per-column fits ----------------------------------------------------------


@dataclass(frozen=True)
class FitResult:
    """One variable's model fitted against one clustering (treatment coding)."""

    variable: str
    family: str
    reference: Hashable
    intercept: float
    coefficients: dict  # non-reference level -> coefficient on the link scale
    standard_errors: dict
    log_likelihood: float
    n_params: int
    method: str = "statsmodels"  # or "closed_form"
    converged: bool = True
    extras: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True

    @property
    def aic(self) -> float:
        return -2.0 * self.log_likelihood + 2.0 * self.n_params


@dataclass(frozen=True)
class FitFailure:
    """A column whose model could not be fitted against a clustering."""

    variable: str
    family: str
    reason: str

    @property
    def ok(self) -> bool:
        return False

    @property
    def aic(self) -> float:
        return float("nan")


FitOutcome = FitResult | FitFailure


# -- Sum-of-AIC tables --------------------------------------------------------


@dataclass(frozen=True)
class AicSumResult:
    """Sum-of-AIC for one partition. NaN when any column failed."""

    index: int
    n_groups: int
    sum_aic: float
    complete: bool
    n_failed: int = 0
    failures: tuple[FitFailure, ...] = ()
    level: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.complete and self.error is None


@dataclass(frozen=True)
class AicSumTable:
    """One row per partition, in the order the partitions were generated."""

    rows: tuple[AicSumResult, ...]
    family: str
    K: int
    mode: str
    levels: tuple[int, ...] | None = None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[AicSumResult]:
        return iter(self.rows)

    def __getitem__(self, i: int) -> AicSumResult:
        return self.rows[i]

    def curve(self) -> tuple[list[int], list[float]]:
        """(group counts, sum-of-AIC) in row order, for plotting."""
        return [r.n_groups for r in self.rows], [r.sum_aic for r in self.rows]

    def best(self) -> AicSumResult | None:
        """Lowest complete sum-of-AIC; first row wins ties."""
        best: AicSumResult | None = None
        for row in self.rows:
            if row.ok and (best is None or row.sum_aic < best.sum_aic):
                best = row
        return best

    def failures(self) -> list[tuple[int, FitFailure]]:
        return [(row.index, f) for row in self.rows for f in row.failures]

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "index": [r.index for r in self.rows],
                "n_groups": [r.n_groups for r in self.rows],
                "level": [r.level for r in self.rows],
                "sum_aic": [r.sum_aic for r in self.rows],
                "complete": [r.complete for r in self.rows],
                "n_failed": [r.n_failed for r in self.rows],
                "error": [r.error for r in self.rows],
            },
            schema={
                "index": pl.Int64,
                "n_groups": pl.Int64,
                "level": pl.Int64,
                "sum_aic": pl.Float64,
                "complete": pl.Boolean,
                "n_failed": pl.Int64,
                "error": pl.String,
            },
        )


# -- Characteristic variables -------------------------------------------------


@dataclass(frozen=True)
class CharacteristicEntry:
    """How strongly one variable discriminates a cluster (or the whole clustering)."""

    variable: str
    coefficient: float
    standard_error: float
    delta_aic: float
    aic_null: float
    aic_model: float


@dataclass(frozen=True)
class CharacteristicTable:
    """Ranked variables, per cluster label or as one global list."""

    characteristic_type: str  # "per_cluster" or "global"
    family: str
    K: int
    clusters: dict = field(default_factory=dict)  # label -> tuple[CharacteristicEntry, ...]
    entries: tuple[CharacteristicEntry, ...] = ()  # global ranking

    def __getitem__(self, label: Hashable) -> tuple[CharacteristicEntry, ...]:
        return self.clusters[label]

    def top(self, label: Hashable | None = None, n: int = 5) -> list[str]:
        """Names of the *n* highest ranked variables."""
        ranked = self.entries if label is None else self.clusters[label]
        return [e.variable for e in ranked[:n]]

    def to_frame(self) -> pl.DataFrame:
        if self.characteristic_type == "global":
            groups = [(None, self.entries)]
        else:
            groups = list(self.clusters.items())
        rows = [
            {
                "cluster": None if label is None else str(label),
                "rank": rank,
                "variable": e.variable,
                "coefficient": e.coefficient,
                "standard_error": e.standard_error,
                "delta_aic": e.delta_aic,
                "aic_null": e.aic_null,
                "aic_model": e.aic_model,
            }
            for label, entries in groups
            for rank, e in enumerate(entries, start=1)
        ]
        return pl.DataFrame(
            rows,
            schema={
                "cluster": pl.String,
                "rank": pl.Int64,
                "variable": pl.String,
                "coefficient": pl.Float64,
                "standard_error": pl.Float64,
                "delta_aic": pl.Float64,
                "aic_null": pl.Float64,
                "aic_model": pl.Float64,
            },
        )


# -- Greedy merges ------------------------------------------------------------


@dataclass(frozen=True)
class MergeStep:
    """One committed merge."""

    iteration: int
    merged: tuple[Hashable, Hashable]
    new_label: int
    n_groups: int  # after the merge
    sum_aic_before: float
    sum_aic_after: float
    n_candidates: int

    @property
    def delta(self) -> float:
        return self.sum_aic_after - self.sum_aic_before


@dataclass(frozen=True)
class MergeSequence:
    """Clustering snapshots: index 0 is the input, index t follows t merges.

    Iterates over the snapshots, so it can be handed back to ``find_optimal``.
    """

    clusterings: tuple[Clustering, ...]
    steps: tuple[MergeStep, ...]
    family: str
    K: int
    stopped_reason: str

    def __len__(self) -> int:
        return len(self.clusterings)

    def __iter__(self) -> Iterator[Clustering]:
        return iter(self.clusterings)

    def __getitem__(self, i: int) -> Clustering:
        return self.clusterings[i]

    @property
    def final(self) -> Clustering:
        return self.clusterings[-1]

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "iteration": [s.iteration for s in self.steps],
                "merged_a": [str(s.merged[0]) for s in self.steps],
                "merged_b": [str(s.merged[1]) for s in self.steps],
                "new_label": [s.new_label for s in self.steps],
                "n_groups": [s.n_groups for s in self.steps],
                "sum_aic_before": [s.sum_aic_before for s in self.steps],
                "sum_aic_after": [s.sum_aic_after for s in self.steps],
                "delta_aic": [s.delta for s in self.steps],
                "n_candidates": [s.n_candidates for s in self.steps],
            },
            schema={
                "iteration": pl.Int64,
                "merged_a": pl.String,
                "merged_b": pl.String,
                "new_label": pl.Int64,
                "n_groups": pl.Int64,
                "sum_aic_before": pl.Float64,
                "sum_aic_after": pl.Float64,
                "delta_aic": pl.Float64,
                "n_candidates": pl.Int64,
            },
        )
