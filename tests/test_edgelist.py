"""Tests for edge list helpers."""

import numpy as np
import pandas as pd
import pytest

from fastoc.edgelist import as_edgelist, combine_edges, edges_from_gene_pairs, sort_edges
from fastoc.exceptions import InvalidInput, NotFound


@pytest.fixture
def layers():
    coexpression = pd.DataFrame({"source": [2, 1, 1, 2], "target": [1, 2, 3, 3], "weight": 1.0})
    orthology = pd.DataFrame({"source": [1, 4], "target": [4, 1], "weight": [0.5, 0.5]})
    return coexpression, orthology


class TestAsEdgelist:
    """Test validation of edge tables."""

    def test_coerces_types(self):
        edges = as_edgelist(np.array([[1.0, 2.0, 0.5], [2.0, 1.0, 0.5]]))
        assert list(edges.columns) == ["source", "target", "weight"]
        assert edges["source"].dtype == np.int64
        assert edges["weight"].dtype == np.float64

    def test_rejects_bad_tables(self):
        with pytest.raises(InvalidInput):
            as_edgelist(pd.DataFrame({"a": [1], "b": [2]}))
        with pytest.raises(InvalidInput):
            as_edgelist(np.array([[1.5, 2.0, 1.0]]))
        with pytest.raises(InvalidInput):
            as_edgelist(pd.DataFrame({"s": [1], "t": [None], "w": [1.0]}))
        with pytest.raises(InvalidInput):
            as_edgelist([[1, 2, 1.0]])


class TestCombineEdges:
    """Test merging of edge layers."""

    def test_concatenates_and_sorts(self, layers):
        """Layers are kept in full and sorted on (source, target)."""
        combined = combine_edges(*layers)
        assert len(combined) == 6
        pairs = list(zip(combined["source"], combined["target"]))
        assert pairs == sorted(pairs)

    def test_duplicates_kept(self, layers):
        """The same edge in two layers is kept twice."""
        coexpression, _ = layers
        combined = combine_edges(coexpression, coexpression)
        assert len(combined) == 8

    def test_idempotent(self, layers):
        """Sorting or re-combining a combined list changes nothing."""
        combined = combine_edges(*layers)
        pd.testing.assert_frame_equal(sort_edges(combined), combined)
        empty = combined.iloc[:0]
        pd.testing.assert_frame_equal(combine_edges(combined, empty), combined)


class TestEdgesFromGenePairs:
    """Test edges from named gene pairs."""

    def test_pairs_to_edges(self, catalog):
        pairs = {"spB": pd.DataFrame({"g1": ["b1"], "g2": ["b5"]})}
        edges = edges_from_gene_pairs(pairs, catalog, weight=2.0)
        assert list(zip(edges["source"], edges["target"])) == [(9, 13), (13, 9)]
        assert (edges["weight"] == 2.0).all()

    def test_unknown_gene(self, catalog):
        with pytest.raises(NotFound):
            edges_from_gene_pairs({"spA": pd.DataFrame({"g1": ["a1"], "g2": ["nope"]})}, catalog)
