"""Shared synthetic data for the cluster-aic tests."""

import numpy as np
import polars as pl
import pytest


@pytest.fixture
def two_regimes() -> tuple[pl.DataFrame, list[str]]:
    """10 sites x 3 Poisson species; sites 1-5 sit near mean 2, sites 6-10 near mean 20."""
    data = pl.DataFrame(
        {
            "sp1": [2, 3, 1, 2, 2, 20, 19, 22, 18, 21],
            "sp2": [1, 2, 3, 2, 1, 18, 23, 20, 19, 20],
            "sp3": [3, 2, 2, 1, 3, 21, 20, 17, 22, 19],
        }
    )
    labels = ["low"] * 5 + ["high"] * 5
    return data, labels


@pytest.fixture
def elevated_in_a() -> tuple[pl.DataFrame, list[str]]:
    """15 sites in clusters A, B, C; species X is elevated only in A."""
    data = pl.DataFrame(
        {
            "X": [19, 21, 20, 22, 18, 5, 4, 6, 5, 5, 6, 5, 4, 5, 5],
            "Y": [5, 6, 4, 5, 5, 4, 5, 6, 5, 6, 5, 5, 6, 4, 5],
            "Z": [4, 5, 5, 6, 4, 5, 4, 5, 5, 6, 6, 5, 4, 4, 5],
        }
    )
    labels = ["A"] * 5 + ["B"] * 5 + ["C"] * 5
    return data, labels


@pytest.fixture
def absent_in_a(elevated_in_a) -> tuple[pl.DataFrame, list[str]]:
    """The elevated_in_a sites plus species W, absent from A and sparse elsewhere."""
    data, labels = elevated_in_a
    w = [0, 0, 0, 0, 0, 1, 0, 1, 0, 1, 0, 1, 1, 0, 1]
    return data.with_columns(pl.Series("W", w)), labels


@pytest.fixture
def split_regime() -> tuple[pl.DataFrame, list[str]]:
    """12 sites; a1 and a2 share one regime, b has another."""
    data = pl.DataFrame(
        {
            "sp1": [20, 19, 21, 22, 18, 21, 20, 19, 2, 3, 1, 2],
            "sp2": [15, 17, 16, 14, 16, 15, 17, 15, 4, 3, 5, 4],
            "sp3": [3, 2, 4, 3, 3, 4, 2, 3, 12, 11, 13, 12],
        }
    )
    labels = ["a1"] * 4 + ["a2"] * 4 + ["b"] * 4
    return data, labels


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)
