"""Cross-species edges from ortholog tables."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from .edgelist import empty_edgelist, sort_edges, symmetrize
from .exceptions import InvalidInput

if TYPE_CHECKING:
    from .catalog import GeneCatalog

logger = logging.getLogger(__name__)


def ortholog_weights(pairs: pd.DataFrame, catalog: "GeneCatalog", species_a: str, species_b: str,
                     couple_const: float = 1.0) -> pd.DataFrame:
    """
    Convert one ortholog table into weighted cross-species edges.

    Each pair gets the weight ``couple_const * (1/count_a + 1/count_b) / 2``
    where ``count_a`` is the number of pairs sharing the same gene of
    ``species_a`` and ``count_b`` likewise for ``species_b``. One-to-one
    orthologs therefore weigh ``couple_const`` while many-to-many
    relationships are damped.

    Pairs referring to genes missing from the catalog (for instance removed
    by variance filtering) are skipped.

    Parameters
    ----------
    pairs : pd.DataFrame
        Ortholog table; the first column holds genes of ``species_a`` and the
        second column genes of ``species_b``
    catalog : GeneCatalog
        Catalog used to resolve gene names
    species_a, species_b : str
        Species of the first and second column
    couple_const : float, optional
        Coupling constant scaling all ortholog weights. Default: 1.0

    Returns
    -------
    pd.DataFrame
        Symmetric edge list in global ids, sorted on (source, target)

    References
    ----------
    Yan K-K, Wang D, Rozowsky J, Zheng H, Cheng C, Gerstein M (2014).
    OrthoClust: an orthology-based network framework for clustering data
    across multiple species. Genome Biology 15:R100.
    """
    if couple_const <= 0:
        raise InvalidInput(f"couple_const must be > 0, got {couple_const}")

    pairs = pd.DataFrame(pairs)
    if pairs.shape[1] < 2:
        raise InvalidInput(f"Ortholog table must have at least 2 columns, got {pairs.shape[1]}")

    index_a = catalog.gene_index(species_a)
    index_b = catalog.gene_index(species_b)

    gene_a = pairs.iloc[:, 0].astype(str)
    gene_b = pairs.iloc[:, 1].astype(str)
    present = gene_a.isin(index_a.index) & gene_b.isin(index_b.index)

    n_dropped = int((~present).sum())
    if n_dropped:
        logger.info(
            f"Skipped {n_dropped} of {len(pairs)} {species_a}-{species_b} ortholog pairs "
            "with genes not in the catalog"
        )

    gene_a = gene_a[present]
    gene_b = gene_b[present]
    if len(gene_a) == 0:
        logger.warning(f"No usable ortholog pairs between {species_a} and {species_b}")
        return empty_edgelist()

    # Orthology fan-out of every gene among the retained pairs
    count_a = gene_a.map(gene_a.value_counts()).to_numpy(dtype=np.float64)
    count_b = gene_b.map(gene_b.value_counts()).to_numpy(dtype=np.float64)
    weight = couple_const * (1.0 / count_a + 1.0 / count_b) / 2.0

    edges = pd.DataFrame(
        {
            "source": index_a.loc[gene_a].to_numpy(dtype=np.int64),
            "target": index_b.loc[gene_b].to_numpy(dtype=np.int64),
            "weight": weight,
        }
    )
    logger.info(f"Built {len(edges)} ortholog edges between {species_a} and {species_b}")
    return sort_edges(symmetrize(edges))


def build_orthology_edges(orthologs: Mapping, catalog: "GeneCatalog",
                          couple_const: float = 1.0) -> pd.DataFrame:
    """
    Weight every ortholog table independently and concatenate the edges.

    Parameters
    ----------
    orthologs : Mapping
        ``(species_a, species_b)`` to ortholog table
    catalog : GeneCatalog
        Catalog used to resolve gene names
    couple_const : float, optional
        Coupling constant. Default: 1.0

    Returns
    -------
    pd.DataFrame
        Symmetric edge list in global ids
    """
    if couple_const <= 0:
        raise InvalidInput(f"couple_const must be > 0, got {couple_const}")
    if not isinstance(orthologs, Mapping):
        raise InvalidInput(
            f"Ortholog tables must be a mapping of species pairs to tables, got {type(orthologs).__name__}"
        )

    all_edges = []
    for key, pairs in orthologs.items():
        if not isinstance(key, tuple) or len(key) != 2:
            raise InvalidInput(f"Ortholog table keys must be (species_a, species_b) tuples, got {key!r}")
        species_a, species_b = key
        all_edges.append(ortholog_weights(pairs, catalog, species_a, species_b, couple_const))

    if not all_edges:
        return empty_edgelist()
    return sort_edges(pd.concat(all_edges, ignore_index=True))
