"""Per-species co-occurrence clustering of consensus communities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import leaves_list, linkage
from scipy.spatial.distance import squareform

from .config import per_species
from .consensus import MembershipMatrix
from .exceptions import InvalidInput
from .treecut import cutree_dynamic_tree

if TYPE_CHECKING:
    from .catalog import GeneCatalog

logger = logging.getLogger(__name__)


@dataclass
class SpeciesTree:
    """
    Average-linkage dendrogram of the genes of one species.

    Attributes
    ----------
    species : str
        Species name
    linkage : np.ndarray or None
        scipy linkage matrix; None when the species has a single gene
    ids : np.ndarray
        Global ids of the clustered genes; leaf ``i`` is ``ids[i]``
    """

    species: str
    linkage: Optional[np.ndarray]
    ids: np.ndarray

    @property
    def order(self) -> np.ndarray:
        """Global ids in dendrogram leaf order."""
        if self.linkage is None:
            return self.ids.copy()
        return self.ids[leaves_list(self.linkage)]

    @property
    def heights(self) -> np.ndarray:
        if self.linkage is None:
            return np.empty(0)
        return self.linkage[:, 2]


@dataclass
class MultiSpeciesTrees:
    """Dendrograms of all species, in catalog order."""

    trees: Dict[str, SpeciesTree] = field(default_factory=dict)

    @property
    def order(self) -> np.ndarray:
        """Leaf orders of all species concatenated."""
        if not self.trees:
            return np.empty(0, dtype=np.int64)
        return np.concatenate([tree.order for tree in self.trees.values()])

    def __getitem__(self, species: str) -> SpeciesTree:
        return self.trees[species]

    def __iter__(self):
        return iter(self.trees.values())

    def __len__(self):
        return len(self.trees)


def co_occurrence(membership: MembershipMatrix, ids, n_runs: Optional[int] = None) -> np.ndarray:
    """
    Fraction of runs in which each pair of genes shares a community.

    Parameters
    ----------
    membership : MembershipMatrix
        Filtered community memberships
    ids : array-like
        Global ids of the genes to compare
    n_runs : int, optional
        Normaliser. Default: ``membership.n_runs``

    Returns
    -------
    np.ndarray
        Symmetric matrix with entries in [0, 1]. The diagonal holds the
        fraction of runs in which the gene belongs to a kept community.
    """
    if n_runs is None:
        n_runs = membership.n_runs
    if n_runs < membership.n_runs:
        raise InvalidInput(
            f"n_runs ({n_runs}) is smaller than the {membership.n_runs} runs in the membership matrix"
        )

    rows = membership.rows(ids).astype(np.float64)
    return (rows @ rows.T).toarray() / float(n_runs)


def species_hclust(membership: MembershipMatrix, n_runs: Optional[int],
                   catalog: "GeneCatalog", precision: int = 12) -> MultiSpeciesTrees:
    """
    Cluster the genes of each species by how often they share communities.

    Distances are ``1 - co_occurrence``, joined with average linkage. Heights
    are rounded to ``precision`` decimals so that ties from floating point
    noise do not change the tree shape.

    Parameters
    ----------
    membership : MembershipMatrix
        Filtered community memberships
    n_runs : int
        Number of runs used to normalise co-occurrence counts
    catalog : GeneCatalog
        Catalog defining the species and their genes
    precision : int, optional
        Decimals kept in the joining heights. Default: 12

    Returns
    -------
    MultiSpeciesTrees
    """
    if membership.n_genes < catalog.n_genes:
        raise InvalidInput(
            f"Membership matrix has {membership.n_genes} rows but the catalog has "
            f"{catalog.n_genes} genes"
        )

    trees = {}
    for species in catalog.species:
        ids = catalog.ids_for_species(species)
        if len(ids) < 2:
            logger.warning(f"{species} has a single gene; no tree is built")
            trees[species] = SpeciesTree(species=species, linkage=None, ids=ids)
            continue

        distance = 1.0 - co_occurrence(membership, ids, n_runs)
        np.fill_diagonal(distance, 0.0)
        np.clip(distance, 0.0, 1.0, out=distance)

        Z = linkage(squareform(distance, checks=False), method="average")
        Z[:, 2] = np.round(Z[:, 2], precision)
        trees[species] = SpeciesTree(species=species, linkage=Z, ids=ids)
        logger.info(f"Built co-occurrence tree for {species} ({len(ids)} genes)")

    return MultiSpeciesTrees(trees=trees)


def _check_module_parameters(catalog: "GeneCatalog", min_module_size, cut_height):
    sizes = per_species(min_module_size, catalog.species, "min_module_size")
    heights = per_species(cut_height, catalog.species, "cut_height")

    for species in catalog.species:
        size = sizes[species]
        if isinstance(size, bool) or size is None or size < 1:
            raise InvalidInput(f"min_module_size for {species} must be >= 1, got {size}")
        height = heights[species]
        if height is not None and not 0 <= height <= 1:
            raise InvalidInput(f"cut_height for {species} must lie in [0, 1], got {height}")
    return sizes, heights


def species_modules(trees: MultiSpeciesTrees, catalog: "GeneCatalog", min_module_size,
                    cut_height, deep_split: bool = True) -> pd.Series:
    """
    Cut every species tree into modules.

    Parameters
    ----------
    trees : MultiSpeciesTrees
        Output of :func:`species_hclust`
    catalog : GeneCatalog
        Catalog defining the species
    min_module_size : int, sequence or mapping
        Minimum module size, shared or per species
    cut_height : float, sequence or mapping
        Maximum joining height within a module, shared or per species
    deep_split : bool, optional
        Passed to :func:`fastoc.treecut.cutree_dynamic_tree`. Default: True

    Returns
    -------
    pd.Series
        Module label ``"<species>_<n>"`` per gene, indexed by global id.
        ``"<species>_0"`` marks genes left out of every module.
    """
    sizes, heights = _check_module_parameters(catalog, min_module_size, cut_height)

    assignments = []
    for species in catalog.species:
        if species not in trees.trees:
            raise InvalidInput(f"No tree for species '{species}'")
        tree = trees[species]

        if tree.linkage is None:
            labels = np.zeros(len(tree.ids), dtype=np.int64)
        else:
            labels = cutree_dynamic_tree(
                tree.linkage,
                min_cluster_size=int(sizes[species]),
                cut_height=heights[species],
                deep_split=deep_split,
            )

        n_modules = len(np.unique(labels[labels > 0]))
        logger.info(f"{species}: {n_modules} modules, {int((labels == 0).sum())} unassigned genes")
        assignments.append(
            pd.Series([f"{species}_{label}" for label in labels], index=tree.ids)
        )

    assignment = pd.concat(assignments).sort_index()
    assignment.index.name = "ID"
    assignment.name = "module"
    return assignment


def cluster_modules(membership: MembershipMatrix, n_runs: Optional[int], catalog: "GeneCatalog",
                    min_module_size, cut_height, deep_split: bool = True,
                    precision: int = 12) -> Tuple[pd.Series, MultiSpeciesTrees]:
    """
    Build the species trees and cut them into modules.

    Parameters are checked before any tree is built.

    Returns
    -------
    assignment : pd.Series
        Module label per global id
    trees : MultiSpeciesTrees
        Dendrograms the modules were cut from
    """
    _check_module_parameters(catalog, min_module_size, cut_height)
    trees = species_hclust(membership, n_runs, catalog, precision=precision)
    assignment = species_modules(trees, catalog, min_module_size, cut_height, deep_split=deep_split)
    return assignment, trees
