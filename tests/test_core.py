"""Tests for core MultiSpeciesNetwork functionality."""

import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from fastoc import MultiSpeciesNetwork, NetworkConfig
from fastoc.exceptions import NotFound, StageNotRun


class TestMultiSpeciesNetwork:
    """Test the end-to-end pipeline."""

    def test_initialization(self, expression, orthologs, config, capsys):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        assert network.species == ["spA", "spB"]
        assert network["spA"].shape == (8, 12)
        assert network.catalog.n_genes == 16
        assert "Initializing MultiSpeciesNetwork" in capsys.readouterr().out

    def test_unknown_species(self, expression, orthologs, config):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        with pytest.raises(NotFound):
            network["spC"]
        with pytest.raises(NotFound):
            MultiSpeciesNetwork(expression, {("spA", "spC"): orthologs[("spA", "spB")]})

    def test_stage_order(self, expression, orthologs, config):
        """Results are only available after their stage ran."""
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        with pytest.raises(StageNotRun):
            network.modules
        with pytest.raises(StageNotRun):
            network.cluster_modules(2, 0.99)

    def test_build_edges(self, expression, orthologs, config):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        edges = network.build_edges()
        ortholog_edges = edges[(edges["source"] <= 8) != (edges["target"] <= 8)]
        assert len(ortholog_edges) == 16
        assert (ortholog_edges["weight"] == 0.5).all()
        assert not (edges["source"] == edges["target"]).any()

    def test_run_finds_groups(self, expression, orthologs, config):
        """Sine and cosine genes form separate modules in each species."""
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        modules = network.run(min_module_size=2, cut_height=0.99, verbose=False)

        assert len(modules) == 16
        assert not modules.str.endswith("_0").any()
        for offset, species in [(0, "spA"), (8, "spB")]:
            sine = modules.loc[offset + 1:offset + 4]
            cosine = modules.loc[offset + 5:offset + 8]
            assert sine.nunique() == 1 and cosine.nunique() == 1
            assert sine.iloc[0] != cosine.iloc[0]
            assert sine.iloc[0].startswith(f"{species}_")

        frame = network.catalog.to_frame()
        assert list(frame["modules"]) == list(modules)

    def test_run_reproducible(self, expression, orthologs, config):
        """The same seed gives the same communities and modules."""
        first = MultiSpeciesNetwork(expression, orthologs, config=config)
        second = MultiSpeciesNetwork(expression, orthologs, config=config)
        modules_1 = first.run(2, 0.99, verbose=False)
        modules_2 = second.run(2, 0.99, verbose=False)
        pd.testing.assert_series_equal(modules_1, modules_2)
        assert (first.membership.matrix != second.membership.matrix).nnz == 0

    def test_worker_invariance(self, expression, orthologs, config):
        """A parallel run matches a serial one."""
        serial = MultiSpeciesNetwork(expression, orthologs, config=config)
        parallel_config = NetworkConfig.from_dict({**config.to_dict(), "n_workers": 2})
        parallel = MultiSpeciesNetwork(expression, orthologs, config=parallel_config)
        pd.testing.assert_series_equal(serial.run(2, 0.99, verbose=False),
                                       parallel.run(2, 0.99, verbose=False))

    def test_eigengenes_and_kme(self, expression, orthologs, config):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        network.run(2, 0.99, verbose=False)
        eigengenes = network.module_eigengenes("spA")
        assert eigengenes.shape == (12, 2)

        kme = network.kme("spA")
        assert list(kme.columns) == ["species", "gene", "module", "ID", "kME"]
        assert (kme["kME"] > 0.9).all()

    def test_summary(self, expression, orthologs, config, capsys):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        network.run(2, 0.99, verbose=False)
        network.summary()
        out = capsys.readouterr().out
        assert "MultiSpeciesNetwork Summary" in out
        assert "Modules: 2 (8 genes assigned)" in out

    def test_save_and_load(self, expression, orthologs, config):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        network.run(2, 0.99, verbose=False)

        with tempfile.TemporaryDirectory() as tmpdir:
            for name in ["network.json", "network.json.gz"]:
                path = Path(tmpdir) / name
                network.save(path)
                loaded = MultiSpeciesNetwork.load(path)

                pd.testing.assert_series_equal(loaded.modules, network.modules)
                pd.testing.assert_frame_equal(loaded.edges, network.edges)
                assert loaded.species == network.species
                assert loaded.config == network.config
                assert (loaded.membership.matrix != network.membership.matrix).nnz == 0
                np.testing.assert_allclose(loaded["spA"].to_numpy(), network["spA"].to_numpy())
                np.testing.assert_array_equal(loaded.trees.order, network.trees.order)

    def test_from_folder(self, expression, orthologs):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmpdir = Path(tmpdir)
            expr_dir = tmpdir / "expression"
            ortho_dir = tmpdir / "orthologs"
            expr_dir.mkdir()
            ortho_dir.mkdir()
            for species, expr in expression.items():
                expr.to_csv(expr_dir / f"{species}.csv")
            orthologs[("spA", "spB")].to_csv(ortho_dir / "spA_spB_orthologs.txt",
                                             sep="\t", header=False, index=False)

            network = MultiSpeciesNetwork.from_folder(expr_dir, ortho_dir, variance=0.1)
            assert network.species == ["spA", "spB"]
            assert list(network.orthologs) == [("spA", "spB")]
            assert network.catalog.n_genes == 16

    def test_save_and_load_integer_columns(self, expression, orthologs, config):
        """Sample columns that are not strings survive a save/load cycle."""
        unnamed = {sp: pd.DataFrame(expr.to_numpy(), index=expr.index) for sp, expr in expression.items()}
        network = MultiSpeciesNetwork(unnamed, orthologs, config=config)
        network.run(2, 0.99, verbose=False)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "network.json"
            network.save(path)
            loaded = MultiSpeciesNetwork.load(path)

        for species in network.species:
            pd.testing.assert_frame_equal(loaded[species], network[species])
        assert list(loaded["spA"].columns) == list(range(12))
        pd.testing.assert_series_equal(loaded.modules, network.modules)

    def test_stages_use_configured_workers(self, expression, orthologs, config, monkeypatch):
        """Stage methods called on their own get a pool sized from the config."""
        import fastoc.core as core_module

        pools = {}
        build_edges = core_module.build_coexpression_edges
        detect = core_module.detect_communities

        def spy_edges(*args, **kwargs):
            pools["edges"] = kwargs["pool"]
            return build_edges(*args, **kwargs)

        def spy_detect(*args, **kwargs):
            pools["communities"] = kwargs["pool"]
            return detect(*args, **kwargs)

        monkeypatch.setattr(core_module, "build_coexpression_edges", spy_edges)
        monkeypatch.setattr(core_module, "detect_communities", spy_detect)

        threaded = NetworkConfig.from_dict({**config.to_dict(), "n_workers": 3})
        network = MultiSpeciesNetwork(expression, orthologs, config=threaded)
        network.build_edges()
        network.detect_communities(verbose=False)

        for stage in ["edges", "communities"]:
            assert pools[stage] is not None
            assert pools[stage].n_workers == 3
            assert pools[stage].kind == "thread"

    def test_seeds_change_communities(self, expression, orthologs, config):
        """Different seeds do not all give the same membership matrix."""
        matrices = set()
        for seed in range(6):
            seeded = NetworkConfig.from_dict({**config.to_dict(), "seed": seed})
            network = MultiSpeciesNetwork(expression, orthologs, config=seeded)
            membership = network.detect_communities(verbose=False)
            matrices.add((membership.matrix.shape, membership.matrix.toarray().tobytes()))
        assert len(matrices) > 1
