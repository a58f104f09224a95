"""Per-species co-expression graphs from gene-gene Pearson correlation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from functools import partial
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import per_species
from .edgelist import empty_edgelist, sort_edges, symmetrize
from .exceptions import ConfigurationError, InvalidInput, NotFound
from .pool import WorkerPool

if TYPE_CHECKING:
    from .catalog import GeneCatalog

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 512


# ============================================================================
# Low-level helpers
# ============================================================================

def _as_expression_array(expr) -> np.ndarray:
    """Validate a gene x sample matrix and return it as a float array."""
    if isinstance(expr, pd.DataFrame):
        values = expr.to_numpy()
    elif isinstance(expr, np.ndarray):
        values = expr
    else:
        raise InvalidInput(f"Expression must be a DataFrame or array, got {type(expr).__name__}")

    if values.ndim != 2:
        raise InvalidInput(f"Expression must be 2-dimensional, got {values.ndim} dimensions")

    try:
        values = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Expression values must be numeric: {e}") from e

    n_genes, n_samples = values.shape
    if n_genes == 0:
        raise InvalidInput("Expression matrix has no genes")
    if n_samples < 2:
        raise InvalidInput(
            f"Expression matrix needs at least 2 samples to compute correlations, got {n_samples}"
        )
    return values


def _standardize_rows(values: np.ndarray) -> np.ndarray:
    """
    Center each gene and scale it to unit norm.

    The dot product of two standardized rows is their Pearson correlation.
    Constant genes and genes with missing values become rows of NaN.
    """
    centered = values - values.mean(axis=1, keepdims=True)
    norms = np.sqrt(np.einsum("ij,ij->i", centered, centered))

    undefined = ~np.isfinite(norms) | (np.ptp(values, axis=1) == 0)
    norms[undefined] = 1.0
    z = centered / norms[:, None]
    z[undefined] = np.nan

    n_undefined = int(undefined.sum())
    if n_undefined:
        logger.warning(
            f"{n_undefined} genes have zero variance or missing values; "
            "their correlations are undefined and they are excluded as neighbors"
        )
    return z


def _row_blocks(n_rows: int, block_size: int) -> List[Tuple[int, int]]:
    return [(start, min(start + block_size, n_rows)) for start in range(0, n_rows, block_size)]


def _correlation_block(z: np.ndarray, bounds: Tuple[int, int]) -> np.ndarray:
    start, stop = bounds
    block = z[start:stop] @ z.T
    # Rounding can push |r| marginally above 1
    np.clip(block, -1.0, 1.0, out=block)
    return block


def _mask_diagonal(block: np.ndarray, start: int) -> np.ndarray:
    rows = np.arange(block.shape[0])
    block[rows, rows + start] = np.nan
    return block


def _knn_block(z: np.ndarray, top_k: int, bounds: Tuple[int, int]) -> Tuple[np.ndarray, np.ndarray]:
    """Top-k neighbor pairs (0-based) for the genes in one row block."""
    start, stop = bounds
    block = _mask_diagonal(_correlation_block(z, bounds), start)

    k = min(top_k, z.shape[0] - 1)
    if k < 1:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)

    scores = np.where(np.isnan(block), -np.inf, block)
    # Stable sort on the negated scores: descending, ties by ascending index
    order = np.argsort(-scores, axis=1, kind="stable")[:, :k]
    selected = np.take_along_axis(scores, order, axis=1)
    keep = np.isfinite(selected)

    sources = np.broadcast_to(np.arange(start, stop)[:, None], order.shape)[keep]
    targets = order[keep]
    return sources.astype(np.int64), targets.astype(np.int64)


def _weighted_block(z: np.ndarray, power: float, threshold: float,
                    bounds: Tuple[int, int]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Soft-thresholded adjacency entries above ``threshold`` for one row block."""
    start, _ = bounds
    block = _mask_diagonal(_correlation_block(z, bounds), start)
    with np.errstate(invalid="ignore"):
        adjacency = block ** power
        keep = adjacency >= threshold
    rows, cols = np.nonzero(keep)
    return (rows + start).astype(np.int64), cols.astype(np.int64), adjacency[rows, cols]


def _map_blocks(fn, n_rows: int, block_size: int, pool: Optional[WorkerPool]):
    blocks = _row_blocks(n_rows, block_size)
    if pool is None:
        return [fn(bounds) for bounds in blocks]
    return pool.map(fn, blocks)


# ============================================================================
# Public API
# ============================================================================

def correlation_matrix(expr, pool: Optional[WorkerPool] = None,
                       block_size: int = DEFAULT_BLOCK_SIZE) -> np.ndarray:
    """
    Pearson correlation between all pairs of genes.

    Parameters
    ----------
    expr : pd.DataFrame or np.ndarray
        Gene x sample expression matrix
    pool : WorkerPool, optional
        Pool used to compute row blocks in parallel
    block_size : int, optional
        Number of genes per block. Default: 512

    Returns
    -------
    np.ndarray
        Gene x gene correlation matrix. Rows and columns of genes with zero
        variance are NaN.
    """
    z = _standardize_rows(_as_expression_array(expr))
    blocks = _map_blocks(partial(_correlation_block, z), z.shape[0], block_size, pool)
    return np.vstack(blocks)


def knn_edges(expr, top_k: int = 5, weight: float = 1.0, pool: Optional[WorkerPool] = None,
              block_size: int = DEFAULT_BLOCK_SIZE) -> pd.DataFrame:
    """
    Edge list linking every gene to its most correlated neighbors.

    For each gene the ``top_k`` largest off-diagonal correlations are selected
    (ties broken by gene position). Undefined correlations are never selected,
    so genes may get fewer than ``top_k`` neighbors. Selected pairs are
    collapsed to undirected pairs and emitted in both orientations.

    Parameters
    ----------
    expr : pd.DataFrame or np.ndarray
        Gene x sample expression matrix
    top_k : int, optional
        Number of neighbors per gene. Default: 5
    weight : float, optional
        Weight of every edge. Default: 1.0
    pool : WorkerPool, optional
        Pool used to process row blocks in parallel
    block_size : int, optional
        Number of genes per block. Default: 512

    Returns
    -------
    pd.DataFrame
        Symmetric edge list with local 1-based gene ids
    """
    if isinstance(top_k, bool) or not isinstance(top_k, (int, np.integer)) or top_k < 1:
        raise InvalidInput(f"top_k must be a positive integer, got {top_k}")

    z = _standardize_rows(_as_expression_array(expr))
    results = _map_blocks(partial(_knn_block, z, int(top_k)), z.shape[0], block_size, pool)

    sources = np.concatenate([r[0] for r in results])
    targets = np.concatenate([r[1] for r in results])
    if sources.size == 0:
        return empty_edgelist()

    pairs = np.column_stack([np.minimum(sources, targets), np.maximum(sources, targets)])
    pairs = np.unique(pairs, axis=0)

    edges = pd.DataFrame(
        {
            "source": pairs[:, 0] + 1,
            "target": pairs[:, 1] + 1,
            "weight": np.full(len(pairs), float(weight)),
        }
    )
    return sort_edges(symmetrize(edges))


def weighted_edges(expr, power: float = 6, threshold: float = 0.8,
                   pool: Optional[WorkerPool] = None,
                   block_size: int = DEFAULT_BLOCK_SIZE) -> pd.DataFrame:
    """
    Edge list from a soft-thresholded adjacency matrix.

    The adjacency is ``cor ** power``; every off-diagonal entry of at least
    ``threshold`` becomes an edge weighted by its adjacency. The matrix is
    symmetric, so both orientations of each edge are present.

    Parameters
    ----------
    expr : pd.DataFrame or np.ndarray
        Gene x sample expression matrix
    power : float, optional
        Soft-threshold power. Default: 6
    threshold : float, optional
        Lowest adjacency kept. Default: 0.8

    Returns
    -------
    pd.DataFrame
        Edge list with local 1-based gene ids
    """
    if threshold <= 0:
        raise InvalidInput(f"threshold must be > 0, got {threshold}")

    z = _standardize_rows(_as_expression_array(expr))
    results = _map_blocks(partial(_weighted_block, z, power, threshold), z.shape[0], block_size, pool)

    sources = np.concatenate([r[0] for r in results])
    if sources.size == 0:
        return empty_edgelist()

    edges = pd.DataFrame(
        {
            "source": sources + 1,
            "target": np.concatenate([r[1] for r in results]) + 1,
            "weight": np.concatenate([r[2] for r in results]).astype(np.float64),
        }
    )
    return sort_edges(edges)


def build_coexpression_edges(expression_by_species: Mapping, catalog: "GeneCatalog",
                             top_k: int = 5, weight: float = 1.0, method: str = "knn",
                             power: Union[float, Sequence[float]] = 6,
                             threshold: Union[float, Sequence[float]] = 0.8,
                             pool: Optional[WorkerPool] = None,
                             block_size: int = DEFAULT_BLOCK_SIZE) -> pd.DataFrame:
    """
    Build the within-species co-expression edges of all species.

    Species are processed in catalog order and local gene ids are shifted by
    the number of genes in the preceding species, giving global ids.

    Parameters
    ----------
    expression_by_species : Mapping
        Species name to gene x sample DataFrame, rows in catalog order
    catalog : GeneCatalog
        Catalog built from the same expression data
    top_k : int, optional
        Neighbors per gene for the 'knn' method. Default: 5
    weight : float, optional
        Edge weight for the 'knn' method. Default: 1.0
    method : str, optional
        'knn' (default) or 'weighted'
    power, threshold : float or sequence, optional
        Soft-threshold parameters for the 'weighted' method, either one value
        for all species or one per species
    pool : WorkerPool, optional
        Pool used for the correlation blocks

    Returns
    -------
    pd.DataFrame
        Symmetric, sorted edge list in global ids
    """
    if not isinstance(expression_by_species, Mapping) or len(expression_by_species) == 0:
        raise InvalidInput("Expression data must be a non-empty mapping of species to DataFrames")
    if method not in ("knn", "weighted"):
        raise ConfigurationError(f"Unknown edge method '{method}'. Choose 'knn' or 'weighted'")

    species_list = catalog.species
    powers = per_species(power, species_list, "power")
    thresholds = per_species(threshold, species_list, "threshold")

    all_edges = []
    for species in species_list:
        if species not in expression_by_species:
            raise NotFound(f"No expression data for species '{species}'")
        expr = expression_by_species[species]

        genes = [str(g) for g in getattr(expr, "index", [])]
        if genes != list(catalog.gene_index(species).index):
            raise InvalidInput(
                f"Genes of '{species}' do not match the catalog; rebuild the catalog "
                "after filtering the expression data"
            )

        if method == "knn":
            edges = knn_edges(expr, top_k=top_k, weight=weight, pool=pool, block_size=block_size)
        else:
            edges = weighted_edges(expr, power=powers[species], threshold=thresholds[species],
                                   pool=pool, block_size=block_size)

        offset = catalog.offsets[species]
        edges["source"] += offset
        edges["target"] += offset
        all_edges.append(edges)
        logger.info(f"Built {len(edges)} co-expression edges for {species}")

    return sort_edges(pd.concat(all_edges, ignore_index=True))
