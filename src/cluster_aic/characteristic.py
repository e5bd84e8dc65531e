"""Characteristic variables: the columns that discriminate each cluster or the whole clustering."""

from __future__ import annotations

import math

from cluster_aic.config import CHARACTERISTIC_TYPES, DEFAULT_FAMILY, DEFAULT_TRIALS, MAX_WORKERS
from cluster_aic.families import ModelFamily
from cluster_aic.models import (
    CharacteristicEntry,
    CharacteristicTable,
    Clustering,
    DataMatrix,
    FitFailure,
    FitOutcome,
)
from cluster_aic.output import print_failure_summary, print_header
from cluster_aic.scoring import Scorer, delta_aic


def _normalize_type(characteristic_type: str) -> str:
    key = str(characteristic_type).strip().lower().replace(".", "_").replace("-", "_")
    if key not in CHARACTERISTIC_TYPES:
        msg = (
            f"Unknown characteristic type {characteristic_type!r}. "
            f"Available types: {', '.join(CHARACTERISTIC_TYPES)}"
        )
        raise ValueError(msg)
    return key


def _nan_last(value: float) -> tuple[bool, float]:
    """Sort key for descending order with undefined values at the end."""
    if math.isnan(value):
        return (True, 0.0)
    return (False, -value)


def _entry(fit: FitOutcome, null_fit: FitOutcome, key: object | None) -> CharacteristicEntry:
    coefficient = standard_error = float("nan")
    if fit.ok and key is not None:
        coefficient = fit.coefficients.get(key, float("nan"))
        standard_error = fit.standard_errors.get(key, float("nan"))
    return CharacteristicEntry(
        variable=fit.variable,
        coefficient=coefficient,
        standard_error=standard_error,
        delta_aic=delta_aic(fit, null_fit),
        aic_null=null_fit.aic,
        aic_model=fit.aic,
    )


def _per_cluster_key(entry: CharacteristicEntry) -> tuple:
    coef = entry.coefficient
    if math.isnan(coef):
        tier, value = 4, 0.0
    elif math.isinf(coef):
        tier, value = (1 if coef > 0 else 3), 0.0
    else:
        tier, value = (0 if coef > 0 else 2), -coef
    return (tier, value, _nan_last(entry.delta_aic))


def rank_per_cluster(entries: list[CharacteristicEntry]) -> tuple[CharacteristicEntry, ...]:
    """Elevated variables first, by signed coefficient descending.

    Order: finite positive coefficients, then +inf (present only in the
    cluster), then finite non-positive ones, then -inf (absent from the
    cluster), then undefined. Delta-AIC descending breaks ties and orders
    the infinite tiers.
    """
    return tuple(sorted(entries, key=_per_cluster_key))


def rank_global(entries: list[CharacteristicEntry]) -> tuple[CharacteristicEntry, ...]:
    """Delta-AIC descending; undefined values last."""
    return tuple(sorted(entries, key=lambda e: _nan_last(e.delta_aic)))


def get_characteristic(
    data: DataMatrix | object,
    clustering: Clustering | object,
    family: str | ModelFamily = DEFAULT_FAMILY,
    K: int = DEFAULT_TRIALS,
    type: str = "per_cluster",
    max_workers: int = MAX_WORKERS,
) -> CharacteristicTable:
    """Rank the variables that characterise *clustering*.

    ``type="per_cluster"`` fits each variable against the indicator "in
    cluster c" versus the rest, for every cluster c, and ranks by c's signed
    coefficient so variables elevated in c come first (delta-AIC against the
    single-group model breaks ties).
    ``type="global"`` compares each variable's fit under the full clustering
    with its single-group fit and ranks by delta-AIC.
    """
    characteristic_type = _normalize_type(type)
    scorer = Scorer(data, family, K, max_workers)
    clustering = Clustering.coerce(clustering)
    scorer.check_length(clustering)
    if characteristic_type == "per_cluster" and clustering.n_groups < 2:
        raise ValueError("per_cluster characteristics need a clustering with at least 2 groups")

    print_header(
        f"Characteristic variables ({characteristic_type}): {clustering.n_groups} cluster(s), "
        f"{scorer.data.n_vars} variable(s), family={scorer.family.name}"
    )
    null_fits = scorer.fit(Clustering.null(scorer.data.n_obs))
    failures: list[tuple[object, FitFailure]] = [
        ("null", f) for f in null_fits if not f.ok
    ]

    if characteristic_type == "global":
        fits = scorer.fit(clustering)
        failures += [("all", f) for f in fits if not f.ok]
        entries = rank_global([_entry(f, nf, None) for f, nf in zip(fits, null_fits)])
        if entries:
            print(f"  Top variable: {entries[0].variable} (delta-AIC {entries[0].delta_aic:.3f})")
        print_failure_summary(failures, what="cluster")
        return CharacteristicTable(
            characteristic_type, scorer.family.name, scorer.K, entries=entries
        )

    clusters: dict = {}
    for label in clustering.levels:
        indicator = Clustering(tuple(lb == label for lb in clustering.labels))
        fits = scorer.fit(indicator, reference=False)
        failures += [(label, f) for f in fits if not f.ok]
        ranked = rank_per_cluster([_entry(f, nf, True) for f, nf in zip(fits, null_fits)])
        clusters[label] = ranked
        print(f"  cluster {label!s:>6}: {', '.join(e.variable for e in ranked[:3])}")
    print_failure_summary(failures, what="cluster")
    return CharacteristicTable(
        characteristic_type, scorer.family.name, scorer.K, clusters=clusters
    )
