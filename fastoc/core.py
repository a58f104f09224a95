"""Core MultiSpeciesNetwork class for cross-species co-expression module detection."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .catalog import GeneCatalog
from .config import NetworkConfig
from .consensus import MembershipMatrix, detect_communities
from .correlation import build_coexpression_edges
from .edgelist import combine_edges, edges_from_gene_pairs
from .eigengenes import kme, module_eigengenes
from .exceptions import InvalidInput, NotFound, StageNotRun
from .hclust import MultiSpeciesTrees, cluster_modules
from .io import load_expression_folder, load_network, load_ortholog_folder, save_network
from .orthology import build_orthology_edges
from .plotting import plot_coappearance, plot_community_sizes, plot_module_sizes
from .pool import WorkerPool
from .utils import filter_variance

logger = logging.getLogger(__name__)


class MultiSpeciesNetwork:
    """
    Main class for cross-species gene co-expression module detection.

    Per-species co-expression graphs and ortholog edges are merged into one
    network, partitioned many times with randomized Louvain, and the
    resulting community co-occurrences are clustered into modules per
    species.

    Examples
    --------
    >>> network = MultiSpeciesNetwork.from_folder("expression/", "orthologs/")
    >>> modules = network.run(min_module_size=30, cut_height=0.99)
    >>> network.summary()
    """

    def __init__(self, expression: Mapping, orthologs: Optional[Mapping] = None,
                 config: Optional[NetworkConfig] = None,
                 input_folder_path: Optional[Union[str, Path]] = None):
        """
        Initialize MultiSpeciesNetwork object.

        Parameters
        ----------
        expression : Mapping
            Species name to gene x sample expression DataFrame. Species keep
            the order of the mapping.
        orthologs : Mapping, optional
            ``(species_a, species_b)`` to a two-column table of ortholog
            gene names
        config : NetworkConfig, optional
            Pipeline parameters. Default: ``NetworkConfig()``
        input_folder_path : str or Path, optional
            Folder the expression data was read from
        """
        print(f"\nInitializing MultiSpeciesNetwork...")

        if not isinstance(expression, Mapping) or len(expression) == 0:
            raise InvalidInput("Expression data must be a non-empty mapping of species to DataFrames")

        self.config = config if config is not None else NetworkConfig()
        self.input_folder_path = Path(input_folder_path) if input_folder_path else None

        self._expression: Dict[str, pd.DataFrame] = dict(expression)
        self._orthologs: Dict[Tuple[str, str], pd.DataFrame] = dict(orthologs or {})
        self._catalog = GeneCatalog.build(self._expression)

        for sp_a, sp_b in self._orthologs:
            for sp in (sp_a, sp_b):
                if sp not in self._expression:
                    raise NotFound(f"Ortholog table {sp_a}-{sp_b} refers to unknown species '{sp}'")

        # Stage results
        self._edges: Optional[pd.DataFrame] = None
        self._membership: Optional[MembershipMatrix] = None
        self._trees: Optional[MultiSpeciesTrees] = None
        self._modules: Optional[pd.Series] = None

        print(f"Loaded {len(self._expression)} species with {self._catalog.n_genes} genes "
              f"and {len(self._orthologs)} ortholog tables")

    @classmethod
    def from_folder(cls, expression_folder: Union[str, Path],
                    ortholog_folder: Optional[Union[str, Path]] = None,
                    config: Optional[NetworkConfig] = None,
                    variance: Optional[float] = None) -> "MultiSpeciesNetwork":
        """
        Create a network from folders of expression and ortholog files.

        Parameters
        ----------
        expression_folder : str or Path
            One expression file per species, see
            :func:`fastoc.io.load_expression_folder`
        ortholog_folder : str or Path, optional
            Folder of '<A>_<B>_orthologs.txt' files
        config : NetworkConfig, optional
            Pipeline parameters
        variance : float, optional
            If given, drop genes with a sample variance of at most this value

        Returns
        -------
        MultiSpeciesNetwork
        """
        expression = load_expression_folder(expression_folder)
        if variance is not None:
            expression = filter_variance(expression, variance=variance)

        orthologs = None
        if ortholog_folder is not None:
            orthologs = load_ortholog_folder(ortholog_folder, species=list(expression))

        return cls(expression, orthologs=orthologs, config=config,
                   input_folder_path=expression_folder)

    def __getitem__(self, species_name: str) -> pd.DataFrame:
        """
        Get the expression matrix of a species.

        Parameters
        ----------
        species_name : str
            Name of the species

        Returns
        -------
        pd.DataFrame
            Gene x sample expression matrix
        """
        if species_name not in self._expression:
            raise NotFound(f"Species '{species_name}' not found. Available species: {self.species}")
        return self._expression[species_name]

    @property
    def species(self) -> list[str]:
        """Get list of loaded species."""
        return self._catalog.species

    @property
    def catalog(self) -> GeneCatalog:
        return self._catalog

    @property
    def orthologs(self) -> Dict[Tuple[str, str], pd.DataFrame]:
        return self._orthologs

    @property
    def edges(self) -> pd.DataFrame:
        """Combined edge list of the last :meth:`build_edges` call."""
        if self._edges is None:
            raise StageNotRun("Edges not built yet. Run build_edges() first.")
        return self._edges

    @property
    def membership(self) -> MembershipMatrix:
        if self._membership is None:
            raise StageNotRun("Communities not detected yet. Run detect_communities() first.")
        return self._membership

    @property
    def trees(self) -> MultiSpeciesTrees:
        if self._trees is None:
            raise StageNotRun("Modules not clustered yet. Run cluster_modules() first.")
        return self._trees

    @property
    def modules(self) -> pd.Series:
        """Module label per global gene id."""
        if self._modules is None:
            raise StageNotRun("Modules not clustered yet. Run cluster_modules() first.")
        return self._modules

    def _pool(self) -> WorkerPool:
        return WorkerPool(self.config.n_workers, kind=self.config.executor)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def build_edges(self, gene_pairs: Optional[Mapping] = None, gene_pair_weight: float = 1.0,
                    pool: Optional[WorkerPool] = None) -> pd.DataFrame:
        """
        Build and combine the co-expression and ortholog edges.

        Parameters
        ----------
        gene_pairs : Mapping, optional
            Species name to a table of known gene pairs added as an extra
            edge layer
        gene_pair_weight : float, optional
            Weight of the gene pair edges. Default: 1.0
        pool : WorkerPool, optional
            Pool for the correlation blocks. Default: a pool sized from
            :attr:`config`

        Returns
        -------
        pd.DataFrame
            Combined edge list in global ids
        """
        if pool is None:
            with self._pool() as pool:
                return self.build_edges(gene_pairs, gene_pair_weight, pool=pool)

        cfg = self.config
        print(f"\nBuilding network edges ({cfg.edge_method})...")

        coexpression = build_coexpression_edges(
            self._expression, self._catalog,
            top_k=cfg.top_k, weight=cfg.edge_weight, method=cfg.edge_method,
            power=cfg.power, threshold=cfg.threshold,
            pool=pool, block_size=cfg.block_size,
        )
        orthology = build_orthology_edges(self._orthologs, self._catalog, couple_const=cfg.couple_const)

        layers = []
        if gene_pairs is not None:
            layers.append(edges_from_gene_pairs(gene_pairs, self._catalog, weight=gene_pair_weight))

        self._edges = combine_edges(coexpression, orthology, *layers)
        self._membership = None
        self._trees = None
        self._modules = None

        print(f"  Co-expression edges: {len(coexpression)}")
        print(f"  Ortholog edges: {len(orthology)}")
        print(f"  Total edges: {len(self._edges)}")
        return self._edges

    def detect_communities(self, pool: Optional[WorkerPool] = None,
                           verbose: bool = True) -> MembershipMatrix:
        """
        Run the randomized Louvain ensemble on the combined edges.

        Edges are built first if needed. Run count, membership bounds,
        resolution and seed come from :attr:`config`. Without a
        ``pool`` the worker count and executor kind of :attr:`config` are
        used.

        Returns
        -------
        MembershipMatrix
        """
        if pool is None:
            with self._pool() as pool:
                return self.detect_communities(pool=pool, verbose=verbose)

        if self._edges is None:
            self.build_edges(pool=pool)

        cfg = self.config
        print(f"\nRunning {cfg.n_runs} Louvain runs...")
        self._membership = detect_communities(
            self._catalog, self._edges, cfg.n_runs,
            min_mem=cfg.min_mem, max_mem=cfg.max_mem, seed=cfg.seed,
            resolution=cfg.resolution, pool=pool, verbose=verbose,
        )
        self._trees = None
        self._modules = None

        print(f"  Kept {self._membership.n_communities} communities")
        return self._membership

    def cluster_modules(self, min_module_size=30, cut_height=0.99,
                        deep_split: bool = True) -> pd.Series:
        """
        Cluster community co-occurrences into modules per species.

        Parameters
        ----------
        min_module_size : int, sequence or mapping, optional
            Minimum module size, shared or per species. Default: 30
        cut_height : float, sequence or mapping, optional
            Maximum joining height inside a module, shared or per species.
            Default: 0.99
        deep_split : bool, optional
            Split branches aggressively. Default: True

        Returns
        -------
        pd.Series
            Module label per global gene id
        """
        if self._membership is None:
            raise StageNotRun("Communities not detected yet. Run detect_communities() first.")

        print(f"\nClustering modules...")
        self._modules, self._trees = cluster_modules(
            self._membership, self._membership.n_runs, self._catalog,
            min_module_size, cut_height, deep_split=deep_split,
            precision=self.config.precision,
        )
        self._catalog.assign_modules(self._modules)

        n_modules = self._modules[~self._modules.str.endswith("_0")].nunique()
        print(f"  Found {n_modules} modules")
        return self._modules

    def run(self, min_module_size=30, cut_height=0.99, deep_split: bool = True,
            gene_pairs: Optional[Mapping] = None, verbose: bool = True) -> pd.Series:
        """
        Run the full pipeline with one worker pool.

        Parameters
        ----------
        min_module_size, cut_height, deep_split
            See :meth:`cluster_modules`
        gene_pairs : Mapping, optional
            Extra within-species gene pairs, see :meth:`build_edges`
        verbose : bool, optional
            Show a progress bar over Louvain runs. Default: True

        Returns
        -------
        pd.Series
            Module label per global gene id
        """
        with self._pool() as pool:
            self.build_edges(gene_pairs=gene_pairs, pool=pool)
            self.detect_communities(pool=pool, verbose=verbose)
        return self.cluster_modules(min_module_size, cut_height, deep_split=deep_split)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def summary(self):
        """Print summary of loaded data and results."""
        print(f"MultiSpeciesNetwork Summary")
        print(f"===========================")
        print(f"Input folder: {self.input_folder_path}")
        print(f"Number of species: {len(self.species)}")
        print(f"Total genes: {self._catalog.n_genes}")

        for species in self.species:
            expr = self._expression[species]
            print(f"\n  {species}:")
            print(f"    - Genes: {expr.shape[0]}")
            print(f"    - Samples: {expr.shape[1]}")
            if self._modules is not None:
                labels = self._species_modules(species)
                assigned = labels[~labels.str.endswith("_0")]
                print(f"    - Modules: {assigned.nunique()} ({len(assigned)} genes assigned)")

        print(f"\nOrtholog tables: {len(self._orthologs)}")
        if self._edges is not None:
            print(f"Edges: {len(self._edges)}")
        if self._membership is not None:
            print(f"Communities kept: {self._membership.n_communities} "
                  f"from {self._membership.n_runs} runs")

    def _species_modules(self, species: str) -> pd.Series:
        """Module labels of one species indexed by gene name."""
        index = self._catalog.gene_index(species)
        return pd.Series(self.modules.loc[index.to_numpy()].to_numpy(), index=index.index, name="module")

    def module_eigengenes(self, species: str, include_unassigned: bool = False) -> pd.DataFrame:
        """Sample x module eigengenes of one species."""
        return module_eigengenes(self[species], self._species_modules(species),
                                 include_unassigned=include_unassigned)

    def kme(self, species: str) -> pd.DataFrame:
        """
        Correlation of each gene of a species with its module eigengene.

        Returns
        -------
        pd.DataFrame
            Columns species, gene, module, ID and kME
        """
        modules = self._species_modules(species)
        values = kme(self[species], self.module_eigengenes(species), modules)
        index = self._catalog.gene_index(species)
        return pd.DataFrame({
            "species": species,
            "gene": modules.index,
            "module": modules.to_numpy(),
            "ID": index.to_numpy(),
            "kME": values.loc[modules.index].to_numpy(dtype=np.float64),
        })

    def save(self, save_path: str):
        """Save the network and its results to JSON (gzip if '.json.gz')."""
        return save_network(self, save_path)

    @staticmethod
    def load(load_path: str) -> "MultiSpeciesNetwork":
        """Load a network saved with :meth:`save`."""
        return load_network(load_path)

    # Wrapper methods for plotting operations
    def plot_coappearance(self, *args, **kwargs):
        """Plot the co-appearance heatmap."""
        return plot_coappearance(self, *args, **kwargs)

    def plot_community_sizes(self, *args, **kwargs):
        """Plot the histogram of community sizes."""
        return plot_community_sizes(self, *args, **kwargs)

    def plot_module_sizes(self, *args, **kwargs):
        """Plot the number of genes per module."""
        return plot_module_sizes(self, *args, **kwargs)

    def __repr__(self):
        return (f"MultiSpeciesNetwork(species={self.species}, n_genes={self._catalog.n_genes}, "
                f"n_runs={self.config.n_runs})")
