"""Edge list helpers: validation, symmetrization and combination of layers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from .exceptions import InvalidInput, NotFound

if TYPE_CHECKING:
    from .catalog import GeneCatalog

logger = logging.getLogger(__name__)

EDGE_COLUMNS = ["source", "target", "weight"]


def empty_edgelist() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "source": pd.Series(dtype=np.int64),
            "target": pd.Series(dtype=np.int64),
            "weight": pd.Series(dtype=np.float64),
        }
    )


def as_edgelist(edges) -> pd.DataFrame:
    """
    Validate an edge table and coerce it to the standard layout.

    Parameters
    ----------
    edges : pd.DataFrame or np.ndarray
        Table with exactly three columns: source id, target id and weight

    Returns
    -------
    pd.DataFrame
        Copy with columns source (int64), target (int64) and weight (float64)
    """
    if isinstance(edges, pd.DataFrame):
        values = edges
    elif isinstance(edges, np.ndarray):
        if edges.ndim != 2:
            raise InvalidInput(f"Edge array must be 2-dimensional, got {edges.ndim} dimensions")
        values = pd.DataFrame(edges)
    else:
        raise InvalidInput(f"Edges must be a DataFrame or array, got {type(edges).__name__}")

    if values.shape[1] != 3:
        raise InvalidInput(f"Edges must have exactly 3 columns, got {values.shape[1]}")

    if len(values) == 0:
        return empty_edgelist()

    try:
        source = pd.to_numeric(values.iloc[:, 0])
        target = pd.to_numeric(values.iloc[:, 1])
        weight = pd.to_numeric(values.iloc[:, 2]).astype(np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Edges must be numeric: {e}") from e

    if source.isna().any() or target.isna().any() or weight.isna().any():
        raise InvalidInput("Edges contain missing values")
    if not (np.all(np.mod(source, 1) == 0) and np.all(np.mod(target, 1) == 0)):
        raise InvalidInput("Edge endpoints must be integer gene ids")

    return pd.DataFrame(
        {
            "source": source.to_numpy(dtype=np.int64),
            "target": target.to_numpy(dtype=np.int64),
            "weight": weight.to_numpy(),
        }
    )


def sort_edges(edges: pd.DataFrame) -> pd.DataFrame:
    """Stable sort on (source, target)."""
    return edges.sort_values(["source", "target"], kind="mergesort").reset_index(drop=True)


def symmetrize(edges: pd.DataFrame) -> pd.DataFrame:
    """Append every edge in the reverse orientation."""
    reverse = edges.rename(columns={"source": "target", "target": "source"})[EDGE_COLUMNS]
    return pd.concat([edges[EDGE_COLUMNS], reverse], ignore_index=True)


def combine_edges(coexpression_edges, orthology_edges, *more_edges) -> pd.DataFrame:
    """
    Merge the edge layers of a multi-species network.

    Layers are concatenated without deduplication, so the result is a
    multigraph, and sorted stably on (source, target).

    Parameters
    ----------
    coexpression_edges : pd.DataFrame
        Within-species edges
    orthology_edges : pd.DataFrame
        Cross-species ortholog edges
    *more_edges : pd.DataFrame
        Additional layers, e.g. from :func:`edges_from_gene_pairs`

    Returns
    -------
    pd.DataFrame
        Combined edge list
    """
    layers = [as_edgelist(e) for e in (coexpression_edges, orthology_edges) + more_edges]
    combined = pd.concat(layers, ignore_index=True)
    logger.info(
        f"Combined {len(layers)} edge layers into {len(combined)} edges "
        f"({', '.join(str(len(e)) for e in layers)})"
    )
    return sort_edges(combined)


def edges_from_gene_pairs(pairs_by_species: Mapping, catalog: "GeneCatalog",
                          weight: float = 1.0) -> pd.DataFrame:
    """
    Convert known within-species gene pairs into symmetric edges.

    Parameters
    ----------
    pairs_by_species : Mapping
        Species name to a table whose first two columns hold gene names
    catalog : GeneCatalog
        Catalog used to resolve names to global ids
    weight : float, optional
        Weight given to every edge. Default: 1.0

    Returns
    -------
    pd.DataFrame
        Symmetric edge list in global ids
    """
    if not isinstance(pairs_by_species, Mapping) or len(pairs_by_species) == 0:
        raise InvalidInput("Gene pairs must be a non-empty mapping of species to tables")

    edges = []
    for species, pairs in pairs_by_species.items():
        pairs = pd.DataFrame(pairs)
        if pairs.shape[1] < 2:
            raise InvalidInput(f"Gene pairs for '{species}' must have at least 2 columns")

        index = catalog.gene_index(species)
        gene_a = pairs.iloc[:, 0].astype(str)
        gene_b = pairs.iloc[:, 1].astype(str)
        missing = sorted(set(gene_a[~gene_a.isin(index.index)]) | set(gene_b[~gene_b.isin(index.index)]))
        if missing:
            raise NotFound(f"Genes not found in species '{species}': {missing[:5]}")

        edges.append(
            pd.DataFrame(
                {
                    "source": index.loc[gene_a].to_numpy(),
                    "target": index.loc[gene_b].to_numpy(),
                    "weight": float(weight),
                }
            )
        )

    return sort_edges(symmetrize(pd.concat(edges, ignore_index=True)))
