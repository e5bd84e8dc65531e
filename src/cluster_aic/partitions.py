"""Candidate partitions: cuts of a SciPy linkage tree, or an explicit list of label vectors."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np
from scipy.cluster.hierarchy import cut_tree, is_valid_linkage

from cluster_aic.config import DEFAULT_MAX_CUT_LEVEL, MIN_CUT_LEVEL
from cluster_aic.models import Clustering, ClusteringSet, Partition


def is_linkage(obj: object) -> bool:
    """True for a valid SciPy linkage matrix ((n-1) x 4, float)."""
    if not isinstance(obj, np.ndarray):
        return False
    if obj.ndim != 2 or obj.shape[1] != 4 or not np.issubdtype(obj.dtype, np.floating):
        return False
    return bool(is_valid_linkage(obj, throw=False))


def default_levels(n_obs: int) -> list[int]:
    return list(range(MIN_CUT_LEVEL, min(DEFAULT_MAX_CUT_LEVEL, n_obs) + 1))


def _check_levels(levels: Iterable[int]) -> list[int]:
    checked = []
    for level in levels:
        if isinstance(level, bool) or int(level) != level or level < MIN_CUT_LEVEL:
            msg = f"cutree_levels must be integers >= {MIN_CUT_LEVEL}, got {level!r}"
            raise ValueError(msg)
        checked.append(int(level))
    if not checked:
        raise ValueError("cutree_levels is empty")
    return checked


def cut_hierarchy(
    Z: np.ndarray,
    n_obs: int,
    levels: Sequence[int] | None = None,
    override: bool = False,
) -> ClusteringSet:
    """Cut linkage matrix *Z* at each requested group count.

    A level above the number of leaves is rejected unless *override* is set,
    in which case that member carries an error instead of a clustering.
    """
    n_leaves = Z.shape[0] + 1
    if n_leaves != n_obs:
        msg = f"hierarchy has {n_leaves} leaves but the data has {n_obs} rows"
        raise ValueError(msg)
    levels = default_levels(n_obs) if levels is None else _check_levels(levels)
    too_many = [g for g in levels if g > n_leaves]
    if too_many and not override:
        msg = (
            f"cutree_levels {too_many} exceed the {n_leaves} observations in the hierarchy; "
            "pass override=True to score the remaining levels anyway"
        )
        raise ValueError(msg)

    members = []
    for i, g in enumerate(levels):
        if g > n_leaves:
            error = f"cannot cut {n_leaves} observations into {g} groups"
            members.append(Partition(i, None, g, level=g, error=error))
            continue
        labels = cut_tree(Z, n_clusters=g).ravel()
        clustering = Clustering(tuple(labels.tolist()))
        if clustering.n_groups != g:
            error = f"cut at level {g} produced {clustering.n_groups} groups"
            members.append(Partition(i, None, clustering.n_groups, level=g, error=error))
            continue
        members.append(Partition(i, clustering, g, level=g))
    return ClusteringSet(tuple(members), "hierarchy", tuple(levels))


def from_label_vectors(vectors: Iterable, n_obs: int) -> ClusteringSet:
    """Wrap label vectors (in input order) as candidate partitions."""
    members = []
    for i, labels in enumerate(vectors):
        clustering = Clustering.coerce(labels)
        if len(clustering) != n_obs:
            msg = (
                f"clustering {i} labels {len(clustering)} observations "
                f"but the data has {n_obs} rows"
            )
            raise ValueError(msg)
        members.append(Partition(i, clustering, clustering.n_groups))
    if not members:
        raise ValueError("clustering list is empty")
    return ClusteringSet(tuple(members), "list")


def enumerate_partitions(
    clustering_input: object,
    n_obs: int,
    cutree: bool | None = None,
    cutree_levels: Sequence[int] | None = None,
    override: bool = False,
) -> ClusteringSet:
    """Produce the candidate partitions to score.

    ``cutree=None`` picks hierarchy mode when *clustering_input* is a linkage
    matrix and list mode otherwise. A single label vector or ``Clustering``
    in list mode is treated as a one-member list.
    """
    hierarchy = is_linkage(clustering_input) if cutree is None else bool(cutree)
    if hierarchy:
        if not is_linkage(clustering_input):
            raise ValueError("cutree=True needs a SciPy linkage matrix as the clustering input")
        return cut_hierarchy(clustering_input, n_obs, cutree_levels, override)
    if cutree_levels is not None:
        raise ValueError("cutree_levels only applies to a hierarchy (linkage matrix) input")
    if isinstance(clustering_input, Clustering):
        return from_label_vectors([clustering_input], n_obs)
    if isinstance(clustering_input, np.ndarray):
        if clustering_input.ndim == 1:
            return from_label_vectors([clustering_input], n_obs)
        return from_label_vectors(list(clustering_input), n_obs)
    if isinstance(clustering_input, (str, bytes)) or not isinstance(clustering_input, Iterable):
        msg = f"cannot enumerate partitions from {type(clustering_input).__name__}"
        raise ValueError(msg)
    vectors = list(clustering_input)
    if vectors and not any(
        isinstance(v, (Clustering, np.ndarray, list, tuple)) or hasattr(v, "__array__")
        for v in vectors
    ):
        # a flat sequence of labels
        return from_label_vectors([vectors], n_obs)
    return from_label_vectors(vectors, n_obs)
