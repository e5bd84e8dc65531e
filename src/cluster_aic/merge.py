"""Greedy cluster merging guided by sum-of-AIC."""

from __future__ import annotations

import time
from collections.abc import Hashable, Iterable
from itertools import combinations

from cluster_aic.config import DEFAULT_FAMILY, DEFAULT_TRIALS, MAX_WORKERS, MERGE_LABEL_OFFSET
from cluster_aic.families import ModelFamily
from cluster_aic.models import (
    AicSumResult,
    Clustering,
    DataMatrix,
    FitFailure,
    MergeSequence,
    MergeStep,
)
from cluster_aic.output import print_failure_summary, print_header
from cluster_aic.scoring import Scorer


class MergeLabelAllocator:
    """Hands out labels for merged clusters.

    Labels are integers counting up from *offset*, skipping anything already
    used, so a merged cluster never collides with an original label or an
    earlier merge.
    """

    def __init__(self, used: Iterable[Hashable] = (), offset: int = MERGE_LABEL_OFFSET):
        self._used = set(used)
        self._next = offset

    def peek(self) -> int:
        candidate = self._next
        while candidate in self._used:
            candidate += 1
        return candidate

    def allocate(self) -> int:
        label = self.peek()
        self._used.add(label)
        self._next = label + 1
        return label


def _pick_best(scores: list[AicSumResult]) -> int | None:
    """Index of the lowest complete trial score; the first pair wins ties."""
    best: int | None = None
    for i, row in enumerate(scores):
        if row.complete and (best is None or row.sum_aic < scores[best].sum_aic):
            best = i
    return best


def merge_clusters(
    data: DataMatrix | object,
    clustering: Clustering | object,
    family: str | ModelFamily = DEFAULT_FAMILY,
    K: int = DEFAULT_TRIALS,
    n_iterations: int | None = None,
    max_workers: int = MAX_WORKERS,
) -> MergeSequence:
    """Repeatedly merge the pair of clusters whose union costs the least sum-of-AIC.

    Each iteration scores every unordered pair of current clusters (pairs in
    order of first appearance) and commits the lowest complete score. Runs
    *n_iterations* merges (default: until one cluster is left) and stops
    early when a single cluster remains or no trial merge can be scored. The
    result holds the input clustering followed by one snapshot per merge.
    """
    if n_iterations is not None and (
        isinstance(n_iterations, bool) or int(n_iterations) != n_iterations or n_iterations < 0
    ):
        msg = f"n_iterations must be a non-negative integer, got {n_iterations!r}"
        raise ValueError(msg)
    start = time.time()
    scorer = Scorer(data, family, K, max_workers)
    current = Clustering.coerce(clustering)
    scorer.check_length(current)
    limit = current.n_groups - 1 if n_iterations is None else int(n_iterations)
    allocator = MergeLabelAllocator(current.levels)

    print_header(
        f"Greedy merging: {current.n_groups} cluster(s), up to {limit} iteration(s), "
        f"family={scorer.family.name}"
    )
    snapshots = [current]
    steps: list[MergeStep] = []
    failures: list[tuple[object, FitFailure]] = []
    base = scorer.score(current) if limit > 0 and current.n_groups > 1 else None
    stopped_reason = "iteration limit"

    for iteration in range(1, limit + 1):
        if current.n_groups == 1:
            stopped_reason = "single cluster"
            break
        pairs = list(combinations(current.levels, 2))
        new_label = allocator.peek()
        trials = [current.relabel({a: new_label, b: new_label}) for a, b in pairs]
        scores = scorer.score_many(trials, desc=f"Merge {iteration}")
        best = _pick_best(scores)
        if best is None:
            stopped_reason = "no complete trial merge"
            failures += [(iteration, f) for row in scores for f in row.failures]
            print(f"  [{iteration}] no trial merge scored completely; stopping")
            break
        allocator.allocate()
        after = scores[best]
        step = MergeStep(
            iteration=iteration,
            merged=pairs[best],
            new_label=new_label,
            n_groups=after.n_groups,
            sum_aic_before=base.sum_aic,
            sum_aic_after=after.sum_aic,
            n_candidates=len(pairs),
        )
        a, b = pairs[best]
        print(
            f"  [{iteration}] merged {a!s} + {b!s} -> {new_label}: "
            f"k={step.n_groups}, sum-of-AIC {step.sum_aic_after:.3f} ({step.delta:+.3f})"
        )
        current = trials[best]
        snapshots.append(current)
        steps.append(step)
        base = after
    else:
        if current.n_groups == 1 and limit > 0:
            stopped_reason = "single cluster"

    elapsed = time.time() - start
    print(f"\n  Stopped ({stopped_reason}) after {len(steps)} merge(s) in {elapsed:.1f}s")
    print_failure_summary(failures, what="iteration")
    return MergeSequence(
        clusterings=tuple(snapshots),
        steps=tuple(steps),
        family=scorer.family.name,
        K=scorer.K,
        stopped_reason=stopped_reason,
    )
