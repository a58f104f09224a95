"""Adaptive branch cutting of hierarchical clustering dendrograms."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np
from scipy.cluster.hierarchy import cophenet, leaves_list
from scipy.spatial.distance import squareform

from .exceptions import InvalidInput

logger = logging.getLogger(__name__)


def _joining_heights(linkage_matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Leaf order of the dendrogram and the height at which each pair of
    neighboring leaves is joined.
    """
    order = leaves_list(linkage_matrix)
    distances = squareform(cophenet(linkage_matrix))
    return order, distances[order[:-1], order[1:]]


def _static_segments(heights: np.ndarray, cut_height: float) -> List[Tuple[int, int]]:
    """Split the leaf sequence wherever two neighbors join above ``cut_height``."""
    breaks = np.nonzero(heights > cut_height)[0] + 1
    bounds = np.concatenate([[0], breaks, [len(heights) + 1]])
    return [(int(lo), int(hi)) for lo, hi in zip(bounds[:-1], bounds[1:])]


def _split_branch(heights: np.ndarray, start: int, stop: int, min_size: int,
                  deep_split: bool) -> List[Tuple[int, int]]:
    """
    Recursively split the branch covering leaf positions ``[start, stop)``.

    A branch is split at the joins higher than its reference height (the mean
    join height, or halfway between mean and maximum without ``deep_split``)
    if that leaves at least two pieces of ``min_size`` leaves. Smaller pieces
    of a successful split are discarded.
    """
    clusters = []
    pending = [(start, stop)]
    while pending:
        lo, hi = pending.pop()
        joins = heights[lo:hi - 1]
        if hi - lo < 2 * min_size or len(joins) == 0:
            clusters.append((lo, hi))
            continue

        mean, top = joins.mean(), joins.max()
        reference = mean if deep_split else (mean + top) / 2.0
        breaks = np.nonzero(joins > reference)[0] + lo + 1
        if len(breaks) == 0:
            clusters.append((lo, hi))
            continue

        bounds = np.concatenate([[lo], breaks, [hi]])
        pieces = [(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b - a >= min_size]
        if len(pieces) < 2:
            clusters.append((lo, hi))
        else:
            pending.extend(pieces)
    return clusters


def cutree_dynamic_tree(linkage_matrix: np.ndarray, min_cluster_size: int = 50,
                        cut_height: Optional[float] = None, deep_split: bool = True) -> np.ndarray:
    """
    Cut a dendrogram into clusters with the adaptive 'tree' method.

    The leaves are first separated wherever neighbors join above
    ``cut_height``. Each resulting branch is then split iteratively at its
    unusually high joins until no split produces two branches of at least
    ``min_cluster_size`` leaves.

    Parameters
    ----------
    linkage_matrix : np.ndarray
        Linkage matrix as returned by :func:`scipy.cluster.hierarchy.linkage`
    min_cluster_size : int, optional
        Minimum number of leaves in a cluster. Default: 50
    cut_height : float, optional
        Maximum joining height inside a cluster. Default: 99% of the
        tree height
    deep_split : bool, optional
        Split branches more aggressively. Default: True

    Returns
    -------
    np.ndarray
        Cluster label per observation, in observation order. Labels run from
        1 (largest cluster) upward; 0 marks unassigned observations.

    References
    ----------
    Langfelder P, Zhang B, Horvath S (2008). Defining clusters from a
    hierarchical cluster tree: the Dynamic Tree Cut package for R.
    Bioinformatics 24(5):719-720.
    """
    Z = np.asarray(linkage_matrix, dtype=np.float64)
    if Z.ndim != 2 or Z.shape[1] != 4 or Z.shape[0] < 1:
        raise InvalidInput(f"Expected a linkage matrix of shape (n - 1, 4), got {Z.shape}")
    if isinstance(min_cluster_size, bool) or min_cluster_size < 1:
        raise InvalidInput(f"min_cluster_size must be >= 1, got {min_cluster_size}")

    n_leaves = Z.shape[0] + 1
    if cut_height is None:
        cut_height = 0.99 * Z[:, 2].max()
    elif cut_height < 0:
        raise InvalidInput(f"cut_height must be >= 0, got {cut_height}")

    order, heights = _joining_heights(Z)

    clusters = []
    for lo, hi in _static_segments(heights, cut_height):
        if hi - lo >= min_cluster_size:
            clusters.extend(_split_branch(heights, lo, hi, min_cluster_size, deep_split))

    # Largest cluster first, ties by position in the dendrogram
    clusters.sort(key=lambda c: (-(c[1] - c[0]), c[0]))

    labels = np.zeros(n_leaves, dtype=np.int64)
    for label, (lo, hi) in enumerate(clusters, start=1):
        labels[order[lo:hi]] = label

    logger.debug(
        f"Tree cut: {len(clusters)} clusters, {int((labels == 0).sum())} of {n_leaves} leaves unassigned"
    )
    return labels
