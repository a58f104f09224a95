"""Repeated randomized Louvain community detection and membership aggregation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Optional, Tuple

import networkx as nx
import numpy as np
import pandas as pd
from scipy import sparse
from tqdm.auto import tqdm

from .edgelist import as_edgelist
from .exceptions import ConfigurationError, InvalidInput
from .pool import WorkerPool

if TYPE_CHECKING:
    from .catalog import GeneCatalog

logger = logging.getLogger(__name__)


@dataclass
class MembershipMatrix:
    """
    Sparse gene x community indicator matrix pooled over all runs.

    Attributes
    ----------
    matrix : scipy.sparse.csr_matrix
        Row ``i`` is the gene with global id ``i + 1``; a 1 marks membership
    columns : pd.DataFrame
        One row per matrix column with the run index, the community label
        within that run and the community size
    n_runs : int
        Number of Louvain runs the matrix was built from
    """

    matrix: sparse.csr_matrix
    columns: pd.DataFrame
    n_runs: int

    @property
    def n_genes(self) -> int:
        return self.matrix.shape[0]

    @property
    def n_communities(self) -> int:
        return self.matrix.shape[1]

    @property
    def community_sizes(self) -> np.ndarray:
        return np.asarray(self.matrix.sum(axis=0)).ravel()

    def rows(self, ids) -> sparse.csr_matrix:
        """Rows of the genes with the given global ids."""
        return self.matrix[np.asarray(ids, dtype=np.int64) - 1]

    def to_frame(self) -> pd.DataFrame:
        labels = [f"run{r}_c{c}" for r, c in zip(self.columns["run"], self.columns["community"])]
        return pd.DataFrame(
            self.matrix.toarray(),
            index=pd.Index(np.arange(1, self.n_genes + 1), name="ID"),
            columns=labels,
        )

    def __repr__(self):
        return (f"MembershipMatrix(n_genes={self.n_genes}, n_communities={self.n_communities}, "
                f"n_runs={self.n_runs})")


# ============================================================================
# Single run
# ============================================================================

def permute_edges(edges, rng: np.random.Generator):
    """Return the rows of ``edges`` in a uniformly random order."""
    order = rng.permutation(len(edges))
    if isinstance(edges, pd.DataFrame):
        return edges.iloc[order].reset_index(drop=True)
    return edges[order]


def _edges_to_graph(edges: np.ndarray) -> nx.Graph:
    """Undirected weighted graph; parallel edges add up their weights."""
    graph = nx.Graph()
    for source, target, weight in edges:
        u, v = int(source), int(target)
        if graph.has_edge(u, v):
            graph[u][v]["weight"] += weight
        else:
            graph.add_edge(u, v, weight=weight)
    return graph


def _louvain_run(edges: np.ndarray, resolution: float,
                 seed_seq: np.random.SeedSequence) -> Tuple[np.ndarray, np.ndarray]:
    """One Louvain pass on a shuffled edge list; returns (gene ids, labels)."""
    rng = np.random.default_rng(seed_seq)
    graph = _edges_to_graph(permute_edges(edges, rng))
    if graph.number_of_nodes() == 0:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)

    communities = nx.community.louvain_communities(
        graph, weight="weight", resolution=resolution, seed=int(rng.integers(2**31 - 1))
    )

    ids, labels = [], []
    for label, nodes in enumerate(communities, start=1):
        ids.extend(nodes)
        labels.extend([label] * len(nodes))
    return np.asarray(ids, dtype=np.int64), np.asarray(labels, dtype=np.int64)


# ============================================================================
# Ensemble
# ============================================================================

def _check_runs(n_runs) -> int:
    if isinstance(n_runs, bool) or not isinstance(n_runs, (int, np.integer)) or n_runs < 1:
        raise InvalidInput(f"n_runs must be a positive integer, got {n_runs}")
    return int(n_runs)


def _check_edges(edges, n_genes: int) -> pd.DataFrame:
    edges = as_edgelist(edges)
    if len(edges) == 0:
        logger.warning("Edge list is empty; every gene will be unclustered")
        return edges
    lowest = min(edges["source"].min(), edges["target"].min())
    highest = max(edges["source"].max(), edges["target"].max())
    if lowest < 1 or highest > n_genes:
        raise InvalidInput(f"Edge ids must lie in [1, {n_genes}], found [{lowest}, {highest}]")
    return edges


def _check_bounds(min_mem, max_mem):
    if max_mem is not None and max_mem <= min_mem:
        raise ConfigurationError(f"max_mem ({max_mem}) must be greater than min_mem ({min_mem})")
    if min_mem < 0:
        raise InvalidInput(f"min_mem must be >= 0, got {min_mem}")


def run_louvain(catalog: "GeneCatalog", edges, n_runs: int, seed: Optional[int] = None,
                resolution: float = 1.0, pool: Optional[WorkerPool] = None,
                verbose: bool = True) -> pd.DataFrame:
    """
    Run Louvain community detection ``n_runs`` times on shuffled edge lists.

    The Louvain heuristic depends on the order in which nodes are visited,
    so each run shuffles the edge list with its own random stream. Streams
    are derived from ``seed`` and the run index, so results are reproducible
    and do not depend on how runs are spread over workers.

    Parameters
    ----------
    catalog : GeneCatalog
        Catalog of all genes
    edges : pd.DataFrame
        Combined edge list in global ids
    n_runs : int
        Number of runs
    seed : int, optional
        Base seed. If None, fresh entropy is drawn
    resolution : float, optional
        Louvain resolution. Default: 1.0
    pool : WorkerPool, optional
        Pool used to execute runs in parallel
    verbose : bool, optional
        Show a progress bar. Default: True

    Returns
    -------
    pd.DataFrame
        Community labels with one row per gene (index ``ID``) and one column
        per run. Genes absent from the edge list are labelled 0.
    """
    n_runs = _check_runs(n_runs)
    edges = _check_edges(edges, catalog.n_genes)

    edge_array = edges[["source", "target", "weight"]].to_numpy(dtype=np.float64)
    seed_seqs = np.random.SeedSequence(seed).spawn(n_runs)
    run_fn = partial(_louvain_run, edge_array, resolution)

    if pool is None:
        iterator = map(run_fn, seed_seqs)
    else:
        iterator = pool.imap(run_fn, seed_seqs)

    labels = np.zeros((catalog.n_genes, n_runs), dtype=np.int64)
    for run_idx, (ids, run_labels) in enumerate(
        tqdm(iterator, total=n_runs, desc="Louvain runs", disable=not verbose)
    ):
        labels[ids - 1, run_idx] = run_labels
        logger.debug(f"Run {run_idx + 1}: {len(np.unique(run_labels))} communities")

    logger.info(f"Finished {n_runs} Louvain runs on {len(edges)} edges")
    return pd.DataFrame(
        labels,
        index=pd.Index(np.arange(1, catalog.n_genes + 1), name="ID"),
        columns=[f"run_{i + 1}" for i in range(n_runs)],
    )


def filter_community_assign(results: pd.DataFrame, n_runs: Optional[int] = None,
                            min_mem: int = 10, max_mem: Optional[int] = None) -> MembershipMatrix:
    """
    Pool the communities of all runs into a filtered sparse indicator matrix.

    Every (run, community) pair becomes one column; label 0 is ignored.
    Columns with ``min_mem`` members or fewer are dropped, and when
    ``max_mem`` is given so are columns with ``max_mem`` members or more.

    Parameters
    ----------
    results : pd.DataFrame
        Output of :func:`run_louvain`, indexed by global gene id
    n_runs : int, optional
        Number of runs to use. Default: all columns of ``results``
    min_mem : int, optional
        Minimum community size (exclusive). Default: 10
    max_mem : int, optional
        Maximum community size (exclusive). Default: no upper bound

    Returns
    -------
    MembershipMatrix
    """
    _check_bounds(min_mem, max_mem)
    if not isinstance(results, pd.DataFrame) or results.shape[1] == 0:
        raise InvalidInput("results must be a DataFrame with one column per run")
    n_runs = results.shape[1] if n_runs is None else _check_runs(n_runs)
    if n_runs > results.shape[1]:
        raise InvalidInput(f"n_runs ({n_runs}) exceeds the {results.shape[1]} runs in results")

    ids = results.index.to_numpy(dtype=np.int64)
    if len(ids) == 0 or ids.min() < 1:
        raise InvalidInput("results must be indexed by 1-based global gene ids")
    labels = results.iloc[:, :n_runs].to_numpy(dtype=np.int64)

    rows, cols, column_records = [], [], []
    offset = 0
    for run_idx in range(n_runs):
        member = labels[:, run_idx] != 0
        communities, inverse = np.unique(labels[member, run_idx], return_inverse=True)
        rows.append(ids[member] - 1)
        cols.append(offset + inverse)
        column_records.extend((run_idx + 1, int(c)) for c in communities)
        offset += len(communities)

    rows = np.concatenate(rows) if rows else np.empty(0, dtype=np.int64)
    cols = np.concatenate(cols) if cols else np.empty(0, dtype=np.int64)
    matrix = sparse.coo_matrix(
        (np.ones(len(rows), dtype=np.int32), (rows, cols)), shape=(int(ids.max()), offset)
    ).tocsr()

    sizes = np.asarray(matrix.sum(axis=0)).ravel()
    keep = sizes > min_mem
    if max_mem is not None:
        keep &= sizes < max_mem

    columns = pd.DataFrame(column_records, columns=["run", "community"])
    columns["size"] = sizes.astype(np.int64)
    columns = columns[keep].reset_index(drop=True)

    logger.info(f"Kept {int(keep.sum())} of {offset} communities from {n_runs} runs "
                f"(min_mem={min_mem}, max_mem={max_mem})")
    return MembershipMatrix(matrix=matrix[:, keep].tocsr(), columns=columns, n_runs=n_runs)


def detect_communities(catalog: "GeneCatalog", edges, n_runs: int, min_mem: int = 10,
                       max_mem: Optional[int] = None, seed: Optional[int] = None,
                       resolution: float = 1.0, pool: Optional[WorkerPool] = None,
                       verbose: bool = True) -> MembershipMatrix:
    """
    Consensus community detection over ``n_runs`` randomized Louvain runs.

    Parameters are validated before any run starts. See :func:`run_louvain`
    and :func:`filter_community_assign`.

    Returns
    -------
    MembershipMatrix
    """
    _check_bounds(min_mem, max_mem)
    _check_runs(n_runs)
    edges = _check_edges(edges, catalog.n_genes)

    results = run_louvain(catalog, edges, n_runs, seed=seed, resolution=resolution,
                          pool=pool, verbose=verbose)
    return filter_community_assign(results, n_runs=n_runs, min_mem=min_mem, max_mem=max_mem)
