"""Shared synthetic data for fastoc tests."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from fastoc.catalog import GeneCatalog
from fastoc.config import NetworkConfig

N_SAMPLES = 12


def make_species_expression(prefix: str, seed: int) -> pd.DataFrame:
    """Eight genes: the first four follow a sine, the last four a cosine."""
    rng = np.random.default_rng(seed)
    t = np.linspace(0, 2 * np.pi, N_SAMPLES, endpoint=False)
    signals = [np.sin(t)] * 4 + [np.cos(t)] * 4
    values = np.array([5.0 + s + rng.normal(0, 0.05, N_SAMPLES) for s in signals])
    return pd.DataFrame(
        values,
        index=[f"{prefix}{i}" for i in range(1, 9)],
        columns=[f"S{j}" for j in range(1, N_SAMPLES + 1)],
    )


@pytest.fixture
def expression():
    return {
        "spA": make_species_expression("a", seed=1),
        "spB": make_species_expression("b", seed=2),
    }


@pytest.fixture
def orthologs():
    pairs = pd.DataFrame({
        "gene_a": [f"a{i}" for i in range(1, 9)],
        "gene_b": [f"b{i}" for i in range(1, 9)],
    })
    return {("spA", "spB"): pairs}


@pytest.fixture
def catalog(expression):
    return GeneCatalog.build(expression)


@pytest.fixture
def config():
    # Weak ortholog coupling keeps each species' groups in separate communities
    return NetworkConfig(top_k=3, couple_const=0.5, n_runs=10, min_mem=2, seed=7)
