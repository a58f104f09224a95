"""Tests for module eigengenes and kME."""

import numpy as np
import pandas as pd
import pytest

from fastoc.eigengenes import kme, module_eigengenes
from fastoc.exceptions import InvalidInput


@pytest.fixture
def modules():
    return pd.Series(["spA_1"] * 4 + ["spA_2"] * 4, index=[f"a{i}" for i in range(1, 9)])


class TestModuleEigengenes:
    """Test eigengene extraction."""

    def test_follows_module_signal(self, expression, modules):
        expr = expression["spA"]
        eigengenes = module_eigengenes(expr, modules)
        assert list(eigengenes.columns) == ["spA_1", "spA_2"]
        assert list(eigengenes.index) == list(expr.columns)

        t = np.linspace(0, 2 * np.pi, expr.shape[1], endpoint=False)
        assert np.corrcoef(eigengenes["spA_1"], np.sin(t))[0, 1] > 0.99
        assert np.corrcoef(eigengenes["spA_2"], np.cos(t))[0, 1] > 0.99

    def test_unassigned(self, expression, modules):
        """The '_0' group only gets an eigengene on request."""
        labels = modules.where(modules == "spA_1", "spA_0")
        assert list(module_eigengenes(expression["spA"], labels).columns) == ["spA_1"]
        both = module_eigengenes(expression["spA"], labels, include_unassigned=True)
        assert sorted(both.columns) == ["spA_0", "spA_1"]

    def test_missing_genes(self, expression, modules):
        with pytest.raises(InvalidInput):
            module_eigengenes(expression["spA"].drop(index="a1"), modules)
        with pytest.raises(InvalidInput):
            module_eigengenes(expression["spA"].iloc[:, :1], modules)


class TestKME:
    """Test module membership."""

    def test_high_for_own_module(self, expression, modules):
        expr = expression["spA"]
        eigengenes = module_eigengenes(expr, modules)
        values = kme(expr, eigengenes, modules)
        assert values.name == "kME"
        assert list(values.index) == list(modules.index)
        assert (values > 0.9).all()

    def test_missing_eigengene_is_nan(self, expression, modules):
        expr = expression["spA"]
        eigengenes = module_eigengenes(expr, modules)[["spA_1"]]
        values = kme(expr, eigengenes, modules)
        assert values.loc["a1":"a4"].notna().all()
        assert values.loc["a5":"a8"].isna().all()
