"""Module eigengenes and module membership (kME)."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from .exceptions import InvalidInput

logger = logging.getLogger(__name__)


def _standardize(expr: pd.DataFrame) -> pd.DataFrame:
    """Z-score every gene across samples; constant genes are dropped."""
    std = expr.std(axis=1, ddof=1)
    keep = std > 0
    if not keep.all():
        logger.debug(f"Dropping {int((~keep).sum())} constant genes before PCA")
    expr = expr.loc[keep]
    return expr.sub(expr.mean(axis=1), axis=0).div(std[keep], axis=0)


def _align_modules(expr: pd.DataFrame, modules: pd.Series) -> pd.Series:
    if not isinstance(expr, pd.DataFrame):
        raise InvalidInput(f"Expression must be a DataFrame, got {type(expr).__name__}")
    if expr.shape[1] < 2:
        raise InvalidInput("At least 2 samples are needed to compute eigengenes")
    modules = pd.Series(modules).astype(str)
    missing = modules.index.difference(expr.index)
    if len(missing) > 0:
        raise InvalidInput(f"{len(missing)} genes with a module have no expression, e.g. {list(missing[:3])}")
    return modules


def module_eigengenes(expr: pd.DataFrame, modules: pd.Series,
                      include_unassigned: bool = False) -> pd.DataFrame:
    """
    Summarise each module by the first principal component of its genes.

    Parameters
    ----------
    expr : pd.DataFrame
        Gene x sample expression of one species
    modules : pd.Series
        Module label per gene name
    include_unassigned : bool, optional
        Also compute an eigengene for the '<species>_0' group. Default: False

    Returns
    -------
    pd.DataFrame
        Sample x module eigengene matrix. Each eigengene is oriented to
        correlate positively with the average standardized expression of
        its module.
    """
    modules = _align_modules(expr, modules)
    z = _standardize(expr.loc[modules.index])

    eigengenes = {}
    for label in pd.unique(modules):
        if not include_unassigned and label.endswith("_0"):
            continue
        genes = modules.index[modules == label].intersection(z.index)
        if len(genes) == 0:
            logger.warning(f"Module {label} has no variable genes; skipped")
            continue

        module_expr = z.loc[genes].T.to_numpy()
        pca = PCA(n_components=1)
        eigengene = pca.fit_transform(module_expr)[:, 0]

        average = module_expr.mean(axis=1)
        if np.corrcoef(eigengene, average)[0, 1] < 0:
            eigengene = -eigengene
        eigengenes[label] = eigengene

    return pd.DataFrame(eigengenes, index=expr.columns)


def kme(expr: pd.DataFrame, eigengenes: pd.DataFrame, modules: pd.Series) -> pd.Series:
    """
    Pearson correlation of every gene with the eigengene of its module.

    Genes whose module has no eigengene get NaN.

    Returns
    -------
    pd.Series
        kME per gene name
    """
    modules = _align_modules(expr, modules)

    values = pd.Series(np.nan, index=modules.index, name="kME")
    for label in eigengenes.columns:
        genes = modules.index[modules == label]
        if len(genes) == 0:
            continue
        gene_expr = expr.loc[genes].to_numpy(dtype=np.float64)
        eigengene = eigengenes[label].to_numpy(dtype=np.float64)

        gene_centered = gene_expr - gene_expr.mean(axis=1, keepdims=True)
        eig_centered = eigengene - eigengene.mean()
        denom = np.linalg.norm(gene_centered, axis=1) * np.linalg.norm(eig_centered)
        with np.errstate(invalid="ignore", divide="ignore"):
            values.loc[genes] = gene_centered @ eig_centered / denom
    return values
