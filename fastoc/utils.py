"""Expression preprocessing and count-file merging utilities."""

from __future__ import annotations

# Standard library imports
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Dict, List, Union

# Third-party imports
import pandas as pd

from .exceptions import InvalidInput

# Set up logging
logger = logging.getLogger(__name__)


# ================================================================================
# EXPRESSION FILTERING
# ================================================================================

def filter_variance(expression_by_species: Mapping, variance: float = 0.1) -> Dict[str, pd.DataFrame]:
    """
    Drop genes whose expression barely varies across samples.

    Parameters
    ----------
    expression_by_species : Mapping
        Species name to gene x sample DataFrame
    variance : float, optional
        Genes with a sample variance (ddof=1) of at most this value are
        removed. Default: 0.1

    Returns
    -------
    dict
        Filtered expression per species, in the input order
    """
    if not isinstance(expression_by_species, Mapping) or len(expression_by_species) == 0:
        raise InvalidInput("Expression data must be a non-empty mapping of species to DataFrames")

    filtered = {}
    for species, expr in expression_by_species.items():
        if not isinstance(expr, pd.DataFrame):
            raise InvalidInput(f"Expression data for '{species}' must be a DataFrame")
        keep = expr.var(axis=1, ddof=1) > variance
        filtered[species] = expr.loc[keep]
        logger.info(f"{species}: kept {int(keep.sum())} of {len(expr)} genes with variance > {variance}")
    return filtered


# ================================================================================
# COUNT FILE MERGING
# ================================================================================

def _list_files(folder: Union[str, Path], pattern: str) -> List[Path]:
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Folder not found: {folder}")
    files = sorted(p for p in folder.glob(pattern) if p.is_file())
    if not files:
        raise FileNotFoundError(f"No files matching '{pattern}' in {folder}")
    return files


def merge_count_files(folder: Union[str, Path], pattern: str = "*.out", sep: str = " ",
                      header: bool = False) -> pd.DataFrame:
    """
    Column-bind per-library result files that list the same genes in the
    same order.

    The first file contributes all of its columns; every further file
    contributes its second column. Empty files are skipped.

    Parameters
    ----------
    folder : str or Path
        Folder containing the files
    pattern : str, optional
        Glob pattern selecting the files. Default: '*.out'
    sep : str, optional
        Field separator. Default: ' '
    header : bool, optional
        Whether the files have a header line. Default: False

    Returns
    -------
    pd.DataFrame
        Merged table; further columns are named after their file stem
    """
    files = [f for f in _list_files(folder, pattern) if f.stat().st_size > 0]
    if not files:
        raise InvalidInput(f"All files matching '{pattern}' in {folder} are empty")

    tables = [pd.read_csv(f, sep=sep, header=0 if header else None) for f in files]
    merged = tables[0].copy()
    for path, table in zip(files[1:], tables[1:]):
        if len(table) != len(merged):
            raise InvalidInput(
                f"{path.name} has {len(table)} rows but {files[0].name} has {len(merged)}"
            )
        merged[path.stem] = table.iloc[:, 1].to_numpy()

    logger.info(f"Merged {len(files)} files from {folder}")
    return merged


def merge_htseq_files(folder: Union[str, Path], pattern: str = "*.htseq*",
                      name_regex: str = r"(\w+)\.htseq\.txt", gene_column: str = "gene",
                      sep: str = "\t") -> pd.DataFrame:
    """
    Outer-join HTSeq count tables on the gene id.

    Parameters
    ----------
    folder : str or Path
        Folder containing the HTSeq output files
    pattern : str, optional
        Glob pattern selecting the files. Default: '*.htseq*'
    name_regex : str, optional
        Regular expression applied to each file name; its first group is
        the sample name. Files that do not match keep their full name.
    gene_column : str, optional
        Name of the gene id column. Default: 'gene'
    sep : str, optional
        Field separator. Default: tab

    Returns
    -------
    pd.DataFrame
        Gene id column followed by one count column per file
    """
    files = _list_files(folder, pattern)
    regex = re.compile(name_regex)

    merged = None
    for path in files:
        match = regex.search(path.name)
        sample = match.group(1) if match and match.groups() else path.name
        counts = pd.read_csv(path, sep=sep, header=None, usecols=[0, 1], names=[gene_column, sample])
        if merged is None:
            merged = counts
        else:
            merged = merged.merge(counts, on=gene_column, how="outer")

    logger.info(f"Merged {len(files)} HTSeq files from {folder} ({len(merged)} genes)")
    return merged
