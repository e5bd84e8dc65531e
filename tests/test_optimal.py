"""
Tests for the partition scan in optimal.py.

Covers the two-regime scenario, list-mode round trips (including feeding a
merge sequence back in), hierarchy scans with and without override, and
incomplete rows for partitions with failed columns.

Run: uv run pytest tests/test_optimal.py -v
"""

import math

import numpy as np
import polars as pl
import pytest
from scipy.cluster.hierarchy import linkage

from cluster_aic.merge import merge_clusters
from cluster_aic.models import Clustering
from cluster_aic.optimal import find_optimal

# ── Scenarios ────────────────────────────────────────────────────────────────


class TestFindOptimal:
    """Rows in generation order, lower sum-of-AIC is better."""

    def test_two_regimes_beat_null(self, two_regimes):
        data, labels = two_regimes
        table = find_optimal(data, [Clustering.null(10), labels], family="poisson")
        null_row, grouped_row = table
        assert grouped_row.sum_aic < null_row.sum_aic
        assert table.best().index == 1

    def test_list_round_trip(self, two_regimes, rng):
        data, labels = two_regimes
        vectors = [labels, rng.integers(0, 4, 10), [0] * 5 + [1, 1, 2, 2, 2]]
        table = find_optimal(data, vectors)
        assert len(table) == 3
        assert [r.index for r in table] == [0, 1, 2]
        assert table.mode == "list"
        assert [r.n_groups for r in table] == [
            2,
            len(set(vectors[1].tolist())),
            3,
        ]

    def test_provenance(self, two_regimes):
        data, labels = two_regimes
        table = find_optimal(data, [labels], family="negative.binomial")
        assert table.family == "negative_binomial"
        assert table.K == 1

    def test_hierarchy_scan(self, two_regimes):
        data, _ = two_regimes
        Z = linkage(data.to_numpy().astype(float), method="ward")
        table = find_optimal(data, Z, cutree_levels=[2, 3, 4])
        assert table.mode == "hierarchy"
        assert table.levels == (2, 3, 4)
        assert table.curve()[0] == [2, 3, 4]
        assert all(r.ok for r in table)

    def test_hierarchy_finds_the_regimes(self, two_regimes):
        data, _ = two_regimes
        Z = linkage(data.to_numpy().astype(float), method="ward")
        table = find_optimal(data, Z)
        assert len(table) == 9  # levels 2..10
        assert table.best().n_groups == 2

    def test_override_keeps_bad_levels_as_rows(self, two_regimes):
        data, _ = two_regimes
        Z = linkage(data.to_numpy().astype(float), method="ward")
        table = find_optimal(data, Z, cutree_levels=[2, 11], override=True)
        assert len(table) == 2
        assert table[0].ok
        assert not table[1].ok
        assert math.isnan(table[1].sum_aic)
        assert table[1].error is not None

    def test_level_above_rows_fails_fast(self, two_regimes):
        data, _ = two_regimes
        Z = linkage(data.to_numpy().astype(float), method="ward")
        with pytest.raises(ValueError, match="exceed"):
            find_optimal(data, Z, cutree_levels=[2, 11])

    def test_incomplete_rows_kept(self):
        data = pl.DataFrame(
            {
                "flat": [1.0, 1.0, 1.0, 2.0, 2.0, 2.0],
                "noisy": [0.3, 1.1, 0.7, 2.2, 1.9, 2.6],
            }
        )
        table = find_optimal(
            data, [[0, 0, 0, 1, 1, 1], [0, 1, 0, 1, 0, 1]], family="gaussian"
        )
        assert not table[0].complete
        assert table[1].complete
        assert table.best().index == 1
        assert len(table.failures()) == 1

    def test_merge_sequence_scores_in_list_mode(self, split_regime):
        data, labels = split_regime
        seq = merge_clusters(data, labels)
        table = find_optimal(data, seq)
        assert len(table) == len(seq)
        assert [r.n_groups for r in table] == [3, 2, 1]
        assert np.isfinite([r.sum_aic for r in table]).all()
