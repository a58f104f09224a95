"""Tests for co-expression edge construction."""

import numpy as np
import pandas as pd
import pytest

from fastoc.correlation import (
    build_coexpression_edges,
    correlation_matrix,
    knn_edges,
    weighted_edges,
)
from fastoc.exceptions import ConfigurationError, InvalidInput, NotFound
from fastoc.pool import WorkerPool


@pytest.fixture
def four_genes():
    return pd.DataFrame(
        [
            [1.0, 2.0, 3.0, 4.0, 5.0],
            [1.1, 2.2, 2.9, 4.1, 5.0],
            [1.0, -1.0, 1.0, -1.0, 0.0],
            [1.1, -0.9, 1.2, -1.1, 0.1],
        ],
        index=["A", "B", "C", "D"],
    )


def edge_pairs(edges):
    return list(zip(edges["source"], edges["target"]))


class TestKnnEdges:
    """Test nearest-neighbor edge lists."""

    def test_four_gene_neighbors(self, four_genes):
        """Each gene links to its most correlated partner."""
        edges = knn_edges(four_genes, top_k=1)
        assert edge_pairs(edges) == [(1, 2), (2, 1), (3, 4), (4, 3)]
        assert (edges["weight"] == 1.0).all()
        assert list(edges.columns) == ["source", "target", "weight"]

    def test_no_self_edges(self, expression):
        """A gene is never its own neighbor."""
        edges = knn_edges(expression["spA"], top_k=7)
        assert not (edges["source"] == edges["target"]).any()

    def test_symmetric(self, expression):
        """Every edge is present in both orientations."""
        edges = knn_edges(expression["spA"], top_k=2)
        forward = set(edge_pairs(edges))
        assert forward == {(t, s) for s, t in forward}

    def test_zero_variance_gene(self, four_genes):
        """Constant genes get no edges and leave the others unchanged."""
        expr = pd.concat([four_genes, pd.DataFrame([[3.0] * 5], index=["E"])])
        edges = knn_edges(expr, top_k=1)
        assert 5 not in set(edges["source"]) | set(edges["target"])
        assert edge_pairs(edges) == [(1, 2), (2, 1), (3, 4), (4, 3)]

    def test_top_k_capped(self, four_genes):
        """top_k larger than the number of other genes selects all of them."""
        edges = knn_edges(four_genes, top_k=10)
        assert len(edges) == 12

    def test_invalid_input(self, four_genes):
        """Bad parameters and shapes are rejected."""
        with pytest.raises(InvalidInput):
            knn_edges(four_genes, top_k=0)
        with pytest.raises(InvalidInput):
            knn_edges(four_genes.iloc[:, :1], top_k=1)
        with pytest.raises(InvalidInput):
            knn_edges([[1, 2], [3, 4]], top_k=1)
        with pytest.raises(InvalidInput):
            knn_edges(pd.DataFrame([["x", "y"], ["z", "w"]]), top_k=1)

    def test_worker_invariance(self, expression):
        """Results do not depend on the block size or worker count."""
        expected = knn_edges(expression["spA"], top_k=3)
        with WorkerPool(3) as pool:
            parallel = knn_edges(expression["spA"], top_k=3, pool=pool, block_size=2)
        pd.testing.assert_frame_equal(expected, parallel)


class TestCorrelation:
    """Test correlation matrices and weighted edges."""

    def test_correlation_matrix(self, four_genes):
        """Matches numpy's Pearson correlation."""
        cor = correlation_matrix(four_genes, block_size=3)
        np.testing.assert_allclose(cor, np.corrcoef(four_genes.to_numpy()), atol=1e-12)

    def test_weighted_edges(self, four_genes):
        """Soft-thresholded adjacency keeps strongly correlated pairs."""
        edges = weighted_edges(four_genes, power=1, threshold=0.9)
        assert edge_pairs(edges) == [(1, 2), (2, 1), (3, 4), (4, 3)]
        cor = np.corrcoef(four_genes.to_numpy())
        assert edges["weight"].iloc[0] == pytest.approx(cor[0, 1])

    def test_weighted_edges_invalid_threshold(self, four_genes):
        with pytest.raises(InvalidInput):
            weighted_edges(four_genes, threshold=0)


class TestBuildCoexpressionEdges:
    """Test multi-species edge construction."""

    def test_global_ids(self, expression, catalog):
        """Edges of the second species are shifted by the first species' size."""
        edges = build_coexpression_edges(expression, catalog, top_k=3)
        species_b = edges[edges["source"] > 8]
        assert species_b["target"].min() > 8
        assert edges["source"].is_monotonic_increasing
        # Sine and cosine groups stay apart
        groups = (edges["source"] - 1) % 8 // 4
        assert (groups == (edges["target"] - 1) % 8 // 4).all()

    def test_gene_order_mismatch(self, expression, catalog):
        """Expression rows must match the catalog."""
        shuffled = dict(expression)
        shuffled["spA"] = expression["spA"].iloc[::-1]
        with pytest.raises(InvalidInput):
            build_coexpression_edges(shuffled, catalog)

    def test_missing_species(self, expression, catalog):
        with pytest.raises(NotFound):
            build_coexpression_edges({"spA": expression["spA"]}, catalog)

    def test_per_species_parameters(self, expression, catalog):
        """Weighted method takes one power per species."""
        edges = build_coexpression_edges(expression, catalog, method="weighted",
                                         power=[1, 2], threshold=0.5)
        assert len(edges) > 0
        with pytest.raises(ConfigurationError):
            build_coexpression_edges(expression, catalog, method="weighted", power=[1, 2, 3])
        with pytest.raises(ConfigurationError):
            build_coexpression_edges(expression, catalog, method="spearman")
