"""Sum-of-AIC scoring: one model per data column, AICs summed per clustering."""

from __future__ import annotations

import math
from collections.abc import Hashable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from tqdm import tqdm

from cluster_aic.config import DEFAULT_FAMILY, DEFAULT_TRIALS, MAX_WORKERS
from cluster_aic.families import (
    ModelFamily,
    TreatmentDesign,
    check_trials,
    fit_prepared,
    quiet_fits,
    resolve_family,
)
from cluster_aic.models import (
    AicSumResult,
    Clustering,
    DataMatrix,
    FitFailure,
    FitOutcome,
)


@dataclass(frozen=True)
class AicSum:
    """Aggregate of one clustering's per-column fits."""

    total: float
    complete: bool
    failures: tuple[FitFailure, ...] = ()

    @property
    def n_failed(self) -> int:
        return len(self.failures)


def aggregate(fits: Iterable[FitOutcome]) -> AicSum:
    """Sum per-column AICs. Any failed column makes the total NaN and incomplete."""
    total = 0.0
    failures: list[FitFailure] = []
    for fit in fits:
        if not fit.ok:
            failures.append(fit)
            continue
        total += fit.aic
    if failures or not math.isfinite(total):
        return AicSum(float("nan"), False, tuple(failures))
    return AicSum(total, True)


def delta_aic(fit: FitOutcome, null_fit: FitOutcome) -> float:
    """AIC of the null model minus AIC under the clustering; positive favours the clustering."""
    if not (fit.ok and null_fit.ok):
        return float("nan")
    return null_fit.aic - fit.aic


class Scorer:
    """Fits every column of a data matrix against clusterings with one family.

    Responses are checked once, up front, so an invalid column fails before
    any model is fitted.
    """

    def __init__(
        self,
        data: DataMatrix | object,
        family: str | ModelFamily = DEFAULT_FAMILY,
        K: int = DEFAULT_TRIALS,
        max_workers: int = MAX_WORKERS,
    ):
        self.data = DataMatrix.coerce(data)
        self.family = resolve_family(family)
        self.K = check_trials(K)
        if max_workers < 1:
            msg = f"max_workers must be at least 1, got {max_workers}"
            raise ValueError(msg)
        self.max_workers = max_workers
        self._responses = [
            self.family.prepare_response(self.data.column(j), self.K, name)
            for j, name in enumerate(self.data.columns)
        ]

    def check_length(self, clustering: Clustering, what: str = "clustering") -> None:
        if len(clustering) != self.data.n_obs:
            msg = (
                f"{what} labels {len(clustering)} observations "
                f"but the data has {self.data.n_obs} rows"
            )
            raise ValueError(msg)

    def fit(
        self, clustering: Clustering | object, reference: Hashable | None = None
    ) -> list[FitOutcome]:
        """One fit per column, in column order."""
        with quiet_fits():
            return self._fit(Clustering.coerce(clustering), reference, self.max_workers)

    def _fit(
        self, clustering: Clustering, reference: Hashable | None, workers: int
    ) -> list[FitOutcome]:
        self.check_length(clustering)
        design = TreatmentDesign.from_clustering(clustering, reference)
        jobs = list(zip(self._responses, self.data.columns))
        if workers == 1 or len(jobs) == 1:
            return [fit_prepared(self.family, design, y, self.K, name) for y, name in jobs]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(
                executor.map(
                    lambda job: fit_prepared(self.family, design, job[0], self.K, job[1]), jobs
                )
            )

    def score(
        self,
        clustering: Clustering | object,
        index: int = 0,
        level: int | None = None,
    ) -> AicSumResult:
        with quiet_fits():
            return self._score(Clustering.coerce(clustering), index, level, self.max_workers)

    def _score(
        self, clustering: Clustering, index: int, level: int | None, workers: int
    ) -> AicSumResult:
        summed = aggregate(self._fit(clustering, None, workers))
        return AicSumResult(
            index=index,
            n_groups=clustering.n_groups,
            sum_aic=summed.total,
            complete=summed.complete,
            n_failed=summed.n_failed,
            failures=summed.failures,
            level=level,
        )

    def score_many(
        self, clusterings: Sequence[Clustering], desc: str = "Scoring"
    ) -> list[AicSumResult]:
        """Score several clusterings; results come back in input order.

        With ``max_workers > 1`` the clusterings (not the columns) are spread
        over the pool, and the progress bar advances as each one finishes.
        """
        if self.max_workers == 1:
            return [
                self.score(c, index=i)
                for i, c in enumerate(tqdm(clusterings, desc=desc, unit="fit", leave=False))
            ]
        results: dict[int, AicSumResult] = {}
        with quiet_fits(), ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_index = {
                executor.submit(self._score, Clustering.coerce(c), i, None, 1): i
                for i, c in enumerate(clusterings)
            }
            for future in tqdm(
                as_completed(future_to_index),
                total=len(future_to_index),
                desc=desc,
                unit="fit",
                leave=False,
            ):
                results[future_to_index[future]] = future.result()
        return [results[i] for i in range(len(clusterings))]


def fit_clustering(
    data: DataMatrix | object,
    clustering: Clustering | object,
    family: str | ModelFamily = DEFAULT_FAMILY,
    K: int = DEFAULT_TRIALS,
    max_workers: int = MAX_WORKERS,
) -> list[FitOutcome]:
    """Fit every data column against *clustering*; one outcome per column."""
    return Scorer(data, family, K, max_workers).fit(clustering)


def score_clustering(
    data: DataMatrix | object,
    clustering: Clustering | object,
    family: str | ModelFamily = DEFAULT_FAMILY,
    K: int = DEFAULT_TRIALS,
    max_workers: int = MAX_WORKERS,
) -> AicSumResult:
    """Sum-of-AIC for a single clustering."""
    return Scorer(data, family, K, max_workers).score(clustering)

