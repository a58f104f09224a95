"""Pipeline configuration for fastoc."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import ConfigurationError, InvalidInput

logger = logging.getLogger(__name__)

THREAD_ENV_VAR = "FASTOC_NTHREADS"
EDGE_METHODS = ("knn", "weighted")
EXECUTOR_KINDS = ("thread", "process")


def use_n_threads(n_threads: Optional[int] = 0) -> int:
    """
    Resolve the number of workers to use.

    Parameters
    ----------
    n_threads : int, optional
        Requested number of workers. A positive value is returned unchanged.
        ``0`` or ``None`` falls back to the ``FASTOC_NTHREADS`` environment
        variable and then to a single worker.

    Returns
    -------
    int
        Number of workers (always >= 1)
    """
    if n_threads is not None and n_threads < 0:
        raise InvalidInput(f"n_threads must be non-negative, got {n_threads}")

    if n_threads:
        return int(n_threads)

    env_value = os.environ.get(THREAD_ENV_VAR)
    if env_value is None or env_value.strip() == "":
        return 1

    if env_value.strip() == "ALL_PROCESSORS":
        return os.cpu_count() or 1

    try:
        n = int(float(env_value))
    except ValueError:
        logger.warning(f"Could not parse {THREAD_ENV_VAR}={env_value!r}; using 2 workers")
        return 2

    return max(n, 1)


def per_species(value, species: List[str], name: str) -> Dict[str, Any]:
    """
    Expand a parameter given once or per species into a dict.

    ``value`` may be a scalar (shared by all species), a sequence with one
    entry per species in catalog order, or a mapping keyed by species.
    """
    if isinstance(value, Mapping):
        missing = [s for s in species if s not in value]
        if missing:
            raise ConfigurationError(f"'{name}' has no value for species: {missing}")
        return {s: value[s] for s in species}
    if isinstance(value, (list, tuple)) or getattr(value, "ndim", 0) >= 1:
        values = list(value)
        if len(values) != len(species):
            raise ConfigurationError(
                f"'{name}' has {len(values)} values but there are {len(species)} species"
            )
        return dict(zip(species, values))
    return {s: value for s in species}


@dataclass
class NetworkConfig:
    """
    Parameters of a multi-species network run.

    Attributes
    ----------
    top_k : int
        Number of most correlated neighbors kept per gene
    edge_weight : float
        Weight of co-expression edges
    edge_method : str
        'knn' (top-k neighbors) or 'weighted' (soft-threshold adjacency)
    power : int
        Soft-threshold power for the 'weighted' method
    threshold : float
        Minimum adjacency kept by the 'weighted' method
    couple_const : float
        Scale of the ortholog edge weights relative to co-expression edges
    n_runs : int
        Number of Louvain runs
    min_mem : int
        Communities with ``min_mem`` members or fewer are dropped
    max_mem : int, optional
        Communities with ``max_mem`` members or more are dropped
    resolution : float
        Louvain resolution parameter
    seed : int, optional
        Base seed of the per-run random streams
    n_workers : int
        Worker count; 0 means single-threaded unless FASTOC_NTHREADS is set
    executor : str
        'thread' or 'process'
    block_size : int
        Rows per correlation block
    precision : int
        Decimals kept in dendrogram heights
    """

    top_k: int = 5
    edge_weight: float = 1.0
    edge_method: str = "knn"
    power: int = 6
    threshold: float = 0.8
    couple_const: float = 1.0
    n_runs: int = 100
    min_mem: int = 10
    max_mem: Optional[int] = None
    resolution: float = 1.0
    seed: Optional[int] = None
    n_workers: int = 0
    executor: str = "thread"
    block_size: int = 512
    precision: int = 12

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise if any parameter is out of range or inconsistent."""
        if self.top_k < 1:
            raise InvalidInput(f"top_k must be >= 1, got {self.top_k}")
        if self.edge_method not in EDGE_METHODS:
            raise ConfigurationError(
                f"Unknown edge_method '{self.edge_method}'. Choose from {EDGE_METHODS}"
            )
        if self.couple_const <= 0:
            raise InvalidInput(f"couple_const must be > 0, got {self.couple_const}")
        if self.n_runs < 1:
            raise InvalidInput(f"n_runs must be >= 1, got {self.n_runs}")
        if self.min_mem < 0:
            raise InvalidInput(f"min_mem must be >= 0, got {self.min_mem}")
        if self.max_mem is not None and self.max_mem <= self.min_mem:
            raise ConfigurationError(
                f"max_mem ({self.max_mem}) must be greater than min_mem ({self.min_mem})"
            )
        if self.n_workers < 0:
            raise InvalidInput(f"n_workers must be >= 0, got {self.n_workers}")
        if self.executor not in EXECUTOR_KINDS:
            raise ConfigurationError(
                f"Unknown executor '{self.executor}'. Choose from {EXECUTOR_KINDS}"
            )
        if self.block_size < 1:
            raise InvalidInput(f"block_size must be >= 1, got {self.block_size}")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)

    def to_json(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "NetworkConfig":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path, "r") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid configuration file {path}: {e}") from e
        return cls.from_dict(data)
