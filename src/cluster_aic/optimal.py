"""Scan a family of partitions and tabulate their sum-of-AIC."""

from __future__ import annotations

import time
from collections.abc import Sequence

from cluster_aic.config import DEFAULT_FAMILY, DEFAULT_TRIALS, MAX_WORKERS
from cluster_aic.families import ModelFamily
from cluster_aic.models import AicSumResult, AicSumTable, DataMatrix
from cluster_aic.output import print_failure_summary, print_header
from cluster_aic.partitions import enumerate_partitions
from cluster_aic.scoring import Scorer


def find_optimal(
    data: DataMatrix | object,
    clustering: object,
    family: str | ModelFamily = DEFAULT_FAMILY,
    K: int = DEFAULT_TRIALS,
    cutree: bool | None = None,
    cutree_levels: Sequence[int] | None = None,
    override: bool = False,
    max_workers: int = MAX_WORKERS,
) -> AicSumTable:
    """Score every candidate partition; one row per partition, in generation order.

    *clustering* is either a SciPy linkage matrix (cut at ``cutree_levels``,
    by default 2..40 groups) or an iterable of label vectors such as a list of
    arrays or a ``MergeSequence``. Lower sum-of-AIC is better. Rows for
    partitions that could not be built or had a failed column carry NaN and
    are left in place; use ``AicSumTable.best()`` for the winner.
    """
    start = time.time()
    scorer = Scorer(data, family, K, max_workers)
    partitions = enumerate_partitions(
        clustering, scorer.data.n_obs, cutree, cutree_levels, override
    )

    print_header(
        f"Sum-of-AIC scan: {len(partitions)} {partitions.mode} partition(s), "
        f"{scorer.data.n_vars} variable(s), family={scorer.family.name}, K={scorer.K}"
    )
    rows: list[AicSumResult] = []
    for part in partitions:
        if not part.ok:
            row = AicSumResult(
                index=part.index,
                n_groups=part.n_groups,
                sum_aic=float("nan"),
                complete=False,
                level=part.level,
                error=part.error,
            )
            print(f"  k={part.n_groups:<4d} skipped: {part.error}")
        else:
            row = scorer.score(part.clustering, index=part.index, level=part.level)
            note = "" if row.complete else f"  (incomplete: {row.n_failed} column(s) failed)"
            print(f"  k={row.n_groups:<4d} sum-of-AIC = {row.sum_aic:12.3f}{note}")
        rows.append(row)

    table = AicSumTable(
        rows=tuple(rows),
        family=scorer.family.name,
        K=scorer.K,
        mode=partitions.mode,
        levels=partitions.levels,
    )
    best = table.best()
    if best is not None:
        print(f"\n  Lowest sum-of-AIC: k={best.n_groups} ({best.sum_aic:.3f})")
    else:
        print("\n  No partition scored completely")
    print(f"  Elapsed: {time.time() - start:.1f}s")
    print_failure_summary(table.failures())
    return table
