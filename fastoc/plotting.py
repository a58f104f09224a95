"""Plotting functions for MultiSpeciesNetwork results."""

from __future__ import annotations

import colorsys
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib.font_manager as fm
import matplotlib.patches as patches
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import LinearSegmentedColormap
from matplotlib.patches import Patch

from .exceptions import InvalidInput, StageNotRun

logger = logging.getLogger(__name__)

COAPPEARANCE_CMAP = LinearSegmentedColormap.from_list(
    "coappearance", ["white", "lightyellow", "red", "black"], N=100
)
FIGURE_SUFFIXES = ['.svg', '.png', '.pdf', '.jpg']


def generate_species_colors(species_list: List[str]) -> Dict[str, str]:
    """
    Generate visually distinct colors for a list of species.

    Hues are spread with the golden ratio at low saturation (40%) and
    moderate lightness (50%).

    Returns
    -------
    dict
        Species name to hex color code
    """
    golden_ratio = 0.618033988749895
    hue = 0.0
    colors = {}
    for species in sorted(species_list):
        r, g, b = colorsys.hls_to_rgb(hue, 0.5, 0.4)
        colors[species] = '#{:02X}{:02X}{:02X}'.format(int(r * 255), int(g * 255), int(b * 255))
        hue = (hue + golden_ratio) % 1.0
    return colors


def _font(font_path: Optional[str]):
    if font_path and os.path.exists(font_path):
        return fm.FontProperties(fname=font_path)
    return None


def _apply_font(ax, font_prop):
    if font_prop is None:
        return
    for label in ax.get_xticklabels() + ax.get_yticklabels():
        label.set_fontproperties(font_prop)
    ax.xaxis.label.set_fontproperties(font_prop)
    ax.yaxis.label.set_fontproperties(font_prop)
    ax.title.set_fontproperties(font_prop)
    for text in ax.texts:
        text.set_fontproperties(font_prop)


def _save_or_show(fig, save_path: Optional[str], default_name: str):
    if save_path:
        save_path = Path(save_path)
        if save_path.suffix in FIGURE_SUFFIXES:
            save_file = save_path
        else:
            save_path.mkdir(parents=True, exist_ok=True)
            save_file = save_path / default_name

        fig.savefig(save_file, dpi=300, bbox_inches='tight')
        logger.info(f"Plot saved to {save_file}")
        plt.close(fig)
    else:
        plt.show()


def _require(network, *attributes):
    hints = {
        '_membership': "detect_communities()",
        '_trees': "cluster_modules()",
        '_modules': "cluster_modules()",
    }
    for attr in attributes:
        if getattr(network, attr, None) is None:
            raise StageNotRun(f"No results available. Run {hints[attr]} first.")


def plot_coappearance(network, step: int = 12, remove_unassigned: bool = True,
                      save_path: Optional[str] = None, fig_size: Tuple[float, float] = (8, 8),
                      font_path: Optional[str] = None, label_size: float = 4, line_width: float = 0.5):
    """
    Heatmap of how often genes share a community, in dendrogram order.

    Genes are ordered species by species along the clustering trees, and
    every ``step``-th gene is shown. For each species only its own block and
    the blocks of the species before it are drawn. Modules are outlined.

    Parameters
    ----------
    network : MultiSpeciesNetwork
        Network with communities detected and modules clustered
    step : int, optional
        Show every ``step``-th gene. Default: 12
    remove_unassigned : bool, optional
        Leave out genes in no module ('<species>_0'). Default: True
    save_path : str, optional
        File or directory to save the plot. If directory, saves as
        'coappearance.png'. If None, displays the plot
    fig_size : tuple, optional
        Figure size as (width, height). Default: (8, 8)
    font_path : str, optional
        Path to a font file used for all text
    label_size : float, optional
        Font size of the module labels. Default: 4
    line_width : float, optional
        Width of module outlines and species separators. Default: 0.5
    """
    _require(network, '_membership', '_trees', '_modules')
    if step < 1:
        raise InvalidInput(f"step must be >= 1, got {step}")

    catalog = network.catalog
    order = network._trees.order
    labels = network._modules.loc[order].to_numpy()
    species = catalog.species_of()[order - 1]

    keep = np.ones(len(order), dtype=bool)
    if remove_unassigned:
        keep = ~pd.Series(labels).str.endswith("_0").to_numpy()
    positions = np.nonzero(keep)[0][::step]
    if len(positions) == 0:
        raise InvalidInput("No genes left to plot; try remove_unassigned=False or a smaller step")

    ids = order[positions]
    labels = labels[positions]
    species = species[positions]

    rows = network._membership.rows(ids).astype(np.float64)
    matrix = (rows @ rows.T).toarray() / network._membership.n_runs

    # Species boundaries along the ordered axis
    species_names = list(pd.unique(species))
    bounds = np.concatenate([[0], np.cumsum([np.sum(species == s) for s in species_names])])
    n = len(ids)
    for start, stop in zip(bounds[:-1], bounds[1:]):
        matrix[start:stop, stop:n] = np.nan

    fig, ax = plt.subplots(figsize=fig_size)
    font_prop = _font(font_path)

    image = ax.imshow(matrix, cmap=COAPPEARANCE_CMAP, vmin=0, vmax=1, interpolation='nearest')
    fig.colorbar(image, ax=ax, fraction=0.046, pad=0.04, label='Co-appearance')

    for module in pd.unique(labels):
        if str(module).endswith("_0"):
            continue
        where = np.nonzero(labels == module)[0]
        lo, hi = where.min(), where.max()
        ax.add_patch(patches.Rectangle((lo - 0.5, lo - 0.5), hi - lo + 1, hi - lo + 1,
                                       fill=False, edgecolor='black', linewidth=line_width))
        ax.text(-1, (lo + hi) / 2, module, ha='right', va='center', fontsize=label_size)

    for boundary in bounds[1:-1]:
        ax.axhline(boundary - 0.5, color='black', linewidth=line_width)
        ax.axvline(boundary - 0.5, color='black', linewidth=line_width)

    ax.set_xticks([(a + b - 1) / 2 for a, b in zip(bounds[:-1], bounds[1:])])
    ax.set_xticklabels(species_names)
    ax.set_yticks([])
    ax.set_title('Co-appearance of genes across Louvain runs', fontsize=12)

    _apply_font(ax, font_prop)
    plt.tight_layout()
    _save_or_show(fig, save_path, "coappearance.png")


def plot_community_sizes(network, bins: int = 50, log_scale: bool = True,
                         save_path: Optional[str] = None, fig_size: Tuple[float, float] = (6, 4),
                         font_path: Optional[str] = None):
    """
    Histogram of the sizes of all communities kept in the membership matrix.

    Parameters
    ----------
    network : MultiSpeciesNetwork
        Network with communities detected
    bins : int, optional
        Number of histogram bins. Default: 50
    log_scale : bool, optional
        Use a logarithmic count axis. Default: True
    save_path : str, optional
        File or directory to save the plot. If directory, saves as
        'community_sizes.png'. If None, displays the plot
    fig_size : tuple, optional
        Figure size as (width, height). Default: (6, 4)
    font_path : str, optional
        Path to a font file used for all text
    """
    _require(network, '_membership')
    sizes = network._membership.community_sizes

    fig, ax = plt.subplots(figsize=fig_size)
    font_prop = _font(font_path)

    ax.hist(sizes, bins=bins, color='steelblue', edgecolor='white')
    ax.axvline(network.config.min_mem, color='red', linestyle='--', linewidth=1, label='min_mem')
    if network.config.max_mem is not None:
        ax.axvline(network.config.max_mem, color='red', linestyle=':', linewidth=1, label='max_mem')
    if log_scale:
        ax.set_yscale('log')

    ax.set_xlabel('Community size (genes)', fontsize=12)
    ax.set_ylabel('Number of communities', fontsize=12)
    ax.set_title(f'{len(sizes)} communities from {network._membership.n_runs} runs', fontsize=12)
    ax.legend(frameon=False, fontsize=9)

    _apply_font(ax, font_prop)
    plt.tight_layout()
    _save_or_show(fig, save_path, "community_sizes.png")


def plot_module_sizes(network, save_path: Optional[str] = None,
                      fig_size: Tuple[float, float] = (10, 4), font_path: Optional[str] = None):
    """
    Bar chart of the number of genes per module, coloured by species.

    Parameters
    ----------
    network : MultiSpeciesNetwork
        Network with modules clustered
    save_path : str, optional
        File or directory to save the plot. If directory, saves as
        'module_sizes.png'. If None, displays the plot
    fig_size : tuple, optional
        Figure size as (width, height). Default: (10, 4)
    font_path : str, optional
        Path to a font file used for all text
    """
    _require(network, '_modules')
    catalog = network.catalog
    colors = generate_species_colors(catalog.species)

    frame = catalog.to_frame()
    frame = frame[~frame["modules"].str.endswith("_0")]
    counts = (frame.groupby(["species", "modules"], sort=False).size()
              .rename("n_genes").reset_index())
    counts["species"] = pd.Categorical(counts["species"], categories=catalog.species, ordered=True)
    counts = counts.sort_values(["species", "n_genes"], ascending=[True, False]).reset_index(drop=True)

    fig, ax = plt.subplots(figsize=fig_size)
    font_prop = _font(font_path)

    ax.bar(np.arange(len(counts)), counts["n_genes"],
           color=[colors[s] for s in counts["species"]], width=0.8)
    ax.set_xticks(np.arange(len(counts)))
    ax.set_xticklabels(counts["modules"], rotation=90, fontsize=6)
    ax.set_ylabel('Genes', fontsize=12)
    ax.set_title('Module sizes', fontsize=12)

    handles = [Patch(facecolor=colors[s], label=s) for s in catalog.species]
    ax.legend(handles=handles, frameon=False, fontsize=9)

    _apply_font(ax, font_prop)
    plt.tight_layout()
    _save_or_show(fig, save_path, "module_sizes.png")
