"""
Tests for the value objects in models.py.

Covers DataMatrix validation and conversion, Clustering levels and relabeling,
and the tabular views of AicSumTable, CharacteristicTable and MergeSequence.

Run: uv run pytest tests/test_models.py -v
"""

import math

import numpy as np
import polars as pl
import pytest

from cluster_aic.models import (
    AicSumResult,
    AicSumTable,
    CharacteristicEntry,
    CharacteristicTable,
    Clustering,
    DataMatrix,
    FitFailure,
    FitResult,
    MergeSequence,
    MergeStep,
)

# ── DataMatrix ───────────────────────────────────────────────────────────────


class TestDataMatrix:
    """Construction, validation and immutability."""

    def test_from_frame_keeps_column_names(self):
        dm = DataMatrix.coerce(pl.DataFrame({"a": [1, 2], "b": [3.5, 4.0]}))
        assert dm.columns == ("a", "b")
        assert dm.n_obs == 2
        assert dm.n_vars == 2
        assert dm.column(1).tolist() == [3.5, 4.0]

    def test_enum_column_becomes_codes(self):
        levels = pl.Enum(["low", "mid", "high"])
        frame = pl.DataFrame({"cover": pl.Series(["high", "low", "mid"], dtype=levels)})
        dm = DataMatrix.from_frame(frame)
        assert dm.column(0).tolist() == [2.0, 0.0, 1.0]

    def test_string_column_rejected(self):
        with pytest.raises(ValueError, match="'name'"):
            DataMatrix.from_frame(pl.DataFrame({"name": ["x", "y"]}))

    def test_missing_values_rejected(self):
        with pytest.raises(ValueError, match="missing"):
            DataMatrix.from_frame(pl.DataFrame({"a": [1, None]}))

    def test_numpy_gets_generated_names(self):
        dm = DataMatrix.coerce(np.zeros((3, 2)))
        assert dm.columns == ("v1", "v2")

    def test_one_dimensional_rejected(self):
        with pytest.raises(ValueError, match="2-D"):
            DataMatrix.coerce(np.zeros(3))

    def test_values_read_only(self):
        source = np.ones((2, 2))
        dm = DataMatrix.coerce(source)
        with pytest.raises(ValueError):
            dm.values[0, 0] = 5.0
        source[0, 0] = 9.0
        assert dm.values[0, 0] == 1.0


# ── Clustering ───────────────────────────────────────────────────────────────


class TestClustering:
    """Labels, levels and relabeling."""

    def test_levels_in_first_appearance_order(self):
        c = Clustering.coerce(["b", "a", "b", "c"])
        assert c.levels == ("b", "a", "c")
        assert c.n_groups == 3
        assert len(c) == 4

    def test_numpy_labels_become_python_scalars(self):
        c = Clustering.coerce(np.array([3, 1, 3]))
        assert c.levels == (3, 1)
        assert all(type(lb) is int for lb in c.labels)

    def test_null(self):
        c = Clustering.null(4)
        assert c.n_groups == 1
        assert len(c) == 4

    def test_sizes(self):
        assert Clustering.coerce([1, 2, 2, 2]).sizes() == {1: 1, 2: 3}

    def test_relabel_returns_new_clustering(self):
        c = Clustering.coerce([1, 2, 3, 3])
        merged = c.relabel({1: 1000, 2: 1000})
        assert merged.labels == (1000, 1000, 3, 3)
        assert c.labels == (1, 2, 3, 3)

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="at least one"):
            Clustering.coerce([])

    def test_tuple_labels_are_opaque(self):
        c = Clustering.coerce([("a", 1), ("a", 1), ("b", 2)])
        assert c.levels == (("a", 1), ("b", 2))
        assert c.sizes() == {("a", 1): 2, ("b", 2): 1}

    def test_numpy_labels_become_python_values(self):
        c = Clustering.coerce(np.array([3, 3, 7]))
        assert c.labels == (3, 3, 7)
        assert type(c.labels[0]) is int

    def test_2d_array_rejected(self):
        with pytest.raises(ValueError, match="1-D"):
            Clustering.coerce(np.zeros((2, 2)))


# ── Fit outcomes ─────────────────────────────────────────────────────────────


class TestFitOutcomes:
    """AIC and the ok flag."""

    def test_result_aic(self):
        fit = FitResult("sp", "poisson", "a", 0.5, {"b": 1.0}, {"b": 0.2}, -10.0, 2)
        assert fit.ok
        assert fit.aic == pytest.approx(24.0)

    def test_failure_has_nan_aic(self):
        fail = FitFailure("sp", "gaussian", "zero residual variance")
        assert not fail.ok
        assert math.isnan(fail.aic)


# ── AicSumTable ──────────────────────────────────────────────────────────────


def _table() -> AicSumTable:
    failure = FitFailure("sp2", "poisson", "boom")
    rows = (
        AicSumResult(0, 2, 120.0, True, level=2),
        AicSumResult(1, 3, 100.0, True, level=3),
        AicSumResult(2, 4, float("nan"), False, 1, (failure,), level=4),
        AicSumResult(3, 5, 100.0, True, level=5),
    )
    return AicSumTable(rows, "poisson", 1, "hierarchy", (2, 3, 4, 5))


class TestAicSumTable:
    """Curve, best row, failures and frame export."""

    def test_curve_in_generation_order(self):
        groups, scores = _table().curve()
        assert groups == [2, 3, 4, 5]
        assert scores[:2] == [120.0, 100.0]

    def test_best_skips_incomplete_and_keeps_first_tie(self):
        assert _table().best().index == 1

    def test_failures_carry_row_index(self):
        failures = _table().failures()
        assert len(failures) == 1
        assert failures[0][0] == 2

    def test_to_frame(self):
        frame = _table().to_frame()
        assert frame.columns == [
            "index",
            "n_groups",
            "level",
            "sum_aic",
            "complete",
            "n_failed",
            "error",
        ]
        assert frame.height == 4
        assert frame["complete"].to_list() == [True, True, False, True]


# ── CharacteristicTable / MergeSequence ──────────────────────────────────────


class TestTables:
    """Frame export for characteristic and merge tables."""

    def test_characteristic_frame_ranks(self):
        e1 = CharacteristicEntry("X", 1.4, 0.1, 30.0, 100.0, 70.0)
        e2 = CharacteristicEntry("Y", 0.1, 0.2, -1.0, 50.0, 51.0)
        table = CharacteristicTable("per_cluster", "poisson", 1, clusters={"A": (e1, e2)})
        frame = table.to_frame()
        assert frame["rank"].to_list() == [1, 2]
        assert frame["cluster"].to_list() == ["A", "A"]
        assert table.top("A", n=1) == ["X"]

    def test_merge_sequence_iterates_clusterings(self):
        c0 = Clustering.coerce([1, 2, 3])
        c1 = c0.relabel({1: 1000, 2: 1000})
        step = MergeStep(1, (1, 2), 1000, 2, 50.0, 48.0, 3)
        seq = MergeSequence((c0, c1), (step,), "poisson", 1, "iteration limit")
        assert list(seq) == [c0, c1]
        assert seq.final == c1
        assert step.delta == pytest.approx(-2.0)
        frame = seq.to_frame()
        assert frame.height == 1
        assert frame["merged_a"].to_list() == ["1"]
