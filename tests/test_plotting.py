"""Tests for plotting functions."""

import tempfile
from pathlib import Path

import pytest

from fastoc import MultiSpeciesNetwork
from fastoc.exceptions import InvalidInput, StageNotRun
from fastoc.plotting import generate_species_colors


@pytest.fixture
def network(expression, orthologs, config):
    network = MultiSpeciesNetwork(expression, orthologs, config=config)
    network.run(min_module_size=2, cut_height=0.99, verbose=False)
    return network


class TestPlots:
    """Test that plots are written to files and directories."""

    def test_coappearance(self, network):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "heatmap.png"
            network.plot_coappearance(step=1, save_path=path)
            assert path.exists()

            network.plot_coappearance(step=1, save_path=Path(tmpdir) / "plots")
            assert (Path(tmpdir) / "plots" / "coappearance.png").exists()

    def test_size_plots(self, network):
        with tempfile.TemporaryDirectory() as tmpdir:
            network.plot_community_sizes(save_path=tmpdir)
            network.plot_module_sizes(save_path=tmpdir)
            assert (Path(tmpdir) / "community_sizes.png").exists()
            assert (Path(tmpdir) / "module_sizes.png").exists()

    def test_requires_results(self, expression, orthologs, config):
        network = MultiSpeciesNetwork(expression, orthologs, config=config)
        with pytest.raises(StageNotRun):
            network.plot_coappearance()
        with pytest.raises(StageNotRun):
            network.plot_community_sizes()

    def test_bad_step(self, network):
        with pytest.raises(InvalidInput):
            network.plot_coappearance(step=0)


class TestSpeciesColors:
    def test_distinct_hex_codes(self):
        colors = generate_species_colors(["spB", "spA", "spC"])
        assert set(colors) == {"spA", "spB", "spC"}
        assert len(set(colors.values())) == 3
        assert all(c.startswith("#") and len(c) == 7 for c in colors.values())
