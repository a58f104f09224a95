"""Gene catalog mapping (species, gene) pairs to global integer ids."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict, Iterator, List

import numpy as np
import pandas as pd

from .exceptions import InvalidInput, NotFound

logger = logging.getLogger(__name__)


@dataclass
class GeneRecord:
    """A single gene of one species."""

    species: str
    gene_name: str
    global_id: int
    module_label: str = ""


class GeneCatalog:
    """
    Ordered registry of all genes in a multi-species analysis.

    Global ids are 1-based and contiguous. Species keep the order in which
    they were given and genes keep the row order of their expression matrix.
    Only module labels change after construction.
    """

    def __init__(self, species_genes: Mapping):
        """
        Initialize the catalog.

        Parameters
        ----------
        species_genes : Mapping
            Ordered mapping of species name to its sequence of gene names
        """
        if not isinstance(species_genes, Mapping) or len(species_genes) == 0:
            raise InvalidInput("Expected a non-empty mapping of species to gene names")

        self._records: List[GeneRecord] = []
        self._index: Dict[str, pd.Series] = {}
        self._counts: Dict[str, int] = {}
        self._offsets: Dict[str, int] = {}

        next_id = 1
        for species, genes in species_genes.items():
            genes = [str(g) for g in genes]
            if len(genes) == 0:
                raise InvalidInput(f"Species '{species}' has no genes")

            duplicated = pd.Index(genes)[pd.Index(genes).duplicated()]
            if len(duplicated) > 0:
                raise InvalidInput(
                    f"Duplicate gene names in species '{species}': {list(duplicated[:5])}"
                )

            self._offsets[species] = next_id - 1
            self._counts[species] = len(genes)
            ids = np.arange(next_id, next_id + len(genes), dtype=np.int64)
            self._index[species] = pd.Series(ids, index=pd.Index(genes, name="gene"), name="ID")
            self._records.extend(
                GeneRecord(species=species, gene_name=g, global_id=int(i))
                for g, i in zip(genes, ids)
            )
            next_id += len(genes)

        logger.info(f"Catalog built with {len(self._records)} genes from {len(self._counts)} species")

    @classmethod
    def build(cls, expression_by_species: Mapping) -> "GeneCatalog":
        """
        Build a catalog from per-species expression matrices.

        Parameters
        ----------
        expression_by_species : Mapping
            Ordered mapping of species name to a gene x sample DataFrame

        Returns
        -------
        GeneCatalog
        """
        if not isinstance(expression_by_species, Mapping) or len(expression_by_species) == 0:
            raise InvalidInput("Expression data must be a non-empty mapping of species to DataFrames")

        species_genes = {}
        for species, expr in expression_by_species.items():
            if not isinstance(expr, pd.DataFrame):
                raise InvalidInput(
                    f"Expression data for '{species}' must be a DataFrame, got {type(expr).__name__}"
                )
            species_genes[species] = list(expr.index)

        return cls(species_genes)

    def lookup(self, species: str, gene_name: str) -> int:
        """Return the global id of a gene."""
        index = self.gene_index(species)
        if gene_name not in index.index:
            raise NotFound(f"Gene '{gene_name}' not found in species '{species}'")
        return int(index[gene_name])

    def gene_index(self, species: str) -> pd.Series:
        """Series mapping gene names of ``species`` to global ids."""
        if species not in self._index:
            raise NotFound(f"Species '{species}' not found. Available species: {self.species}")
        return self._index[species]

    def ids_for_species(self, species: str) -> np.ndarray:
        """Sorted global ids of the genes of ``species``."""
        return self.gene_index(species).to_numpy(copy=True)

    def has_gene(self, species: str, gene_name: str) -> bool:
        return species in self._index and gene_name in self._index[species].index

    @property
    def species(self) -> List[str]:
        return list(self._counts.keys())

    @property
    def gene_counts(self) -> Dict[str, int]:
        return dict(self._counts)

    @property
    def offsets(self) -> Dict[str, int]:
        """Number of genes in all species preceding each species."""
        return dict(self._offsets)

    @property
    def n_genes(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[GeneRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[GeneRecord]:
        return iter(self._records)

    def __getitem__(self, global_id: int) -> GeneRecord:
        if not 1 <= global_id <= len(self._records):
            raise NotFound(f"Global id {global_id} outside [1, {len(self._records)}]")
        return self._records[global_id - 1]

    def species_of(self) -> np.ndarray:
        """Species name of every gene, in global id order."""
        return np.array([r.species for r in self._records], dtype=object)

    def assign_modules(self, assignment: pd.Series) -> None:
        """
        Store module labels on the catalog records.

        Parameters
        ----------
        assignment : pd.Series
            Module labels indexed by global id
        """
        for global_id, label in assignment.items():
            self[int(global_id)].module_label = str(label)

    def to_frame(self) -> pd.DataFrame:
        """Catalog as a DataFrame with columns species, gene, modules and ID."""
        return pd.DataFrame(
            {
                "species": [r.species for r in self._records],
                "gene": [r.gene_name for r in self._records],
                "modules": [r.module_label for r in self._records],
                "ID": [r.global_id for r in self._records],
            }
        )

    def summary(self):
        """Print the number of genes per species."""
        print("Gene catalog summary")
        print("====================")
        print(f"Total genes: {self.n_genes}")
        for species, count in self._counts.items():
            first = self._offsets[species] + 1
            print(f"  {species}: {count} genes (IDs {first}-{first + count - 1})")

    def __repr__(self):
        return f"GeneCatalog(species={self.species}, n_genes={self.n_genes})"
