"""IO functions: expression and ortholog loaders, InParanoid parsing and
persistence of MultiSpeciesNetwork results."""

from __future__ import annotations

import gzip
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy import sparse

from .exceptions import InvalidInput

if TYPE_CHECKING:
    from .consensus import MembershipMatrix
    from .core import MultiSpeciesNetwork

logger = logging.getLogger(__name__)

ORTHOLOG_SUFFIX = "_orthologs.txt"
EXPRESSION_SUFFIXES = (".csv", ".tsv", ".txt")

# Gene followed by its InParanoid inparalog score, e.g. "AT1G01010 1.000"
_INPARANOID_MEMBER = re.compile(r"(\S+)\s+\d\.\d+")


def _separator(path: Path) -> str:
    return "," if path.suffix == ".csv" else "\t"


# ================================================================================
# EXPRESSION AND ORTHOLOG LOADERS
# ================================================================================

def load_expression(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a gene x sample expression matrix.

    The first column holds gene names. Files ending in '.csv' are comma
    separated, all others tab separated.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expression file not found: {path}")

    expr = pd.read_csv(path, sep=_separator(path), index_col=0)
    expr.index = expr.index.astype(str)
    logger.info(f"Loaded expression from {path.name}: {expr.shape}")
    return expr


def load_expression_folder(folder: Union[str, Path]) -> Dict[str, pd.DataFrame]:
    """
    Load one expression matrix per species from a folder.

    Every '.csv', '.tsv' or '.txt' file is one species, named after the
    file stem. Species are ordered by file name.

    Returns
    -------
    dict
        Species name to expression DataFrame
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Expression folder not found: {folder}")

    files = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix in EXPRESSION_SUFFIXES)
    if not files:
        raise FileNotFoundError(f"No expression files in {folder}")

    expression = {}
    for path in files:
        if path.stem in expression:
            raise InvalidInput(f"Two expression files for species '{path.stem}' in {folder}")
        expression[path.stem] = load_expression(path)
    return expression


def read_ortholog_table(path: Union[str, Path], sep: str = "\t", header: bool = False) -> pd.DataFrame:
    """
    Read a two-column ortholog table.

    Returns
    -------
    pd.DataFrame
        Columns 'gene_a' and 'gene_b'
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Ortholog file not found: {path}")

    table = pd.read_csv(path, sep=sep, header=0 if header else None, dtype=str)
    if table.shape[1] < 2:
        raise InvalidInput(f"Ortholog file {path} must have at least 2 columns")
    table = table.iloc[:, :2]
    table.columns = ["gene_a", "gene_b"]
    return table


def _split_pair_name(name: str, species: Optional[Iterable[str]]) -> Tuple[str, str]:
    if species is not None:
        species = list(species)
        for sp_a in species:
            for sp_b in species:
                if name == f"{sp_a}_{sp_b}":
                    return sp_a, sp_b
        raise InvalidInput(f"Cannot match '{name}' to a pair of species in {species}")
    if "_" not in name:
        raise InvalidInput(f"Ortholog file name '{name}' is not of the form <A>_<B>")
    sp_a, sp_b = name.split("_", 1)
    return sp_a, sp_b


def load_ortholog_folder(folder: Union[str, Path],
                         species: Optional[Iterable[str]] = None) -> Dict[Tuple[str, str], pd.DataFrame]:
    """
    Load all '<A>_<B>_orthologs.txt' files from a folder.

    Parameters
    ----------
    folder : str or Path
        Folder containing the ortholog tables
    species : iterable of str, optional
        Known species names, used to split file names of species that
        contain underscores

    Returns
    -------
    dict
        ``(species_a, species_b)`` to ortholog table
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Ortholog folder not found: {folder}")

    orthologs = {}
    for path in sorted(folder.glob(f"*{ORTHOLOG_SUFFIX}")):
        key = _split_pair_name(path.name[: -len(ORTHOLOG_SUFFIX)], species)
        orthologs[key] = read_ortholog_table(path)
        logger.info(f"Loaded {len(orthologs[key])} ortholog pairs for {key[0]}-{key[1]}")

    if not orthologs:
        logger.warning(f"No ortholog files found in {folder}")
    return orthologs


# ================================================================================
# INPARANOID
# ================================================================================

def _inparanoid_members(field: str) -> List[str]:
    members = _INPARANOID_MEMBER.findall(str(field))
    return members if members else str(field).split()


def parse_inparanoid(table_path: Union[str, Path]) -> pd.DataFrame:
    """
    Expand an InParanoid cluster table into pairwise orthologs.

    Every gene of ``OrtoA`` is paired with every gene of ``OrtoB`` in the
    same cluster.

    Parameters
    ----------
    table_path : str or Path
        Tab separated InParanoid table with 'OrtoA' and 'OrtoB' columns

    Returns
    -------
    pd.DataFrame
        Columns 'gene_a' and 'gene_b'
    """
    table_path = Path(table_path)
    if not table_path.exists():
        raise FileNotFoundError(f"{table_path} does not exist")

    table = pd.read_csv(table_path, sep="\t")
    missing = {"OrtoA", "OrtoB"} - set(table.columns)
    if missing:
        raise InvalidInput(f"InParanoid table {table_path} lacks columns {sorted(missing)}")

    pairs = [
        (gene_a, gene_b)
        for orto_a, orto_b in zip(table["OrtoA"], table["OrtoB"])
        for gene_a in _inparanoid_members(orto_a)
        for gene_b in _inparanoid_members(orto_b)
    ]
    return pd.DataFrame(pairs, columns=["gene_a", "gene_b"])


def write_inparanoid_orthologs(metadata: pd.DataFrame, out_dir: Union[str, Path] = ".") -> List[Path]:
    """
    Convert InParanoid tables into '<A>_<B>_orthologs.txt' files.

    Parameters
    ----------
    metadata : pd.DataFrame
        Three columns: table path, species A, species B
    out_dir : str or Path, optional
        Output folder. Default: current directory

    Returns
    -------
    list of Path
        Written files
    """
    if metadata.shape[1] != 3:
        raise InvalidInput(f"InParanoid metadata must have 3 columns, got {metadata.shape[1]}")

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for table_path, species_a, species_b in metadata.itertuples(index=False):
        pairs = parse_inparanoid(table_path)
        out_path = out_dir / f"{species_a}_{species_b}{ORTHOLOG_SUFFIX}"
        pairs.to_csv(out_path, sep="\t", header=False, index=False)
        written.append(out_path)
        logger.info(f"Wrote {len(pairs)} ortholog pairs to {out_path}")
    return written


# ================================================================================
# MEMBERSHIP MATRIX
# ================================================================================

def _membership_paths(path: Union[str, Path]) -> Tuple[Path, Path]:
    path = Path(path)
    if path.suffix == ".npz":
        path = path.with_suffix("")
    return path.with_name(path.name + ".npz"), path.with_name(path.name + "_columns.csv")


def save_membership(membership: "MembershipMatrix", path: Union[str, Path]) -> None:
    """
    Save a membership matrix as '<path>.npz' plus '<path>_columns.csv'.
    """
    matrix_path, columns_path = _membership_paths(path)
    sparse.save_npz(matrix_path, membership.matrix)
    with open(columns_path, "w") as f:
        f.write(f"# n_runs={membership.n_runs}\n")
        membership.columns.to_csv(f, index=False)
    logger.info(f"Membership matrix saved to {matrix_path}")


def load_membership(path: Union[str, Path]) -> "MembershipMatrix":
    """Load a membership matrix written by :func:`save_membership`."""
    from .consensus import MembershipMatrix

    matrix_path, columns_path = _membership_paths(path)
    for p in (matrix_path, columns_path):
        if not p.exists():
            raise FileNotFoundError(f"Membership file not found: {p}")

    with open(columns_path, "r") as f:
        match = re.match(r"# n_runs=(\d+)", f.readline())
    if match is None:
        raise InvalidInput(f"{columns_path} does not record the number of runs")

    columns = pd.read_csv(columns_path, comment="#")
    matrix = sparse.load_npz(matrix_path).tocsr()
    if matrix.shape[1] != len(columns):
        raise InvalidInput(
            f"Membership matrix has {matrix.shape[1]} columns but {len(columns)} are described"
        )
    return MembershipMatrix(matrix=matrix, columns=columns, n_runs=int(match.group(1)))


# ================================================================================
# WHOLE NETWORK
# ================================================================================

def _frame_to_dict(df: Optional[pd.DataFrame]) -> Optional[dict]:
    if df is None:
        return None
    # Rows as lists keep non-string column labels intact through JSON
    split = df.to_dict('split')
    return {
        'data': split['data'],
        'index': split['index'],
        'columns': split['columns'],
    }


def _frame_from_dict(df_data: Optional[dict]) -> Optional[pd.DataFrame]:
    if df_data is None:
        return None
    return pd.DataFrame(df_data['data'], index=df_data['index'], columns=df_data['columns'])


def save_network(network: "MultiSpeciesNetwork", save_path: Union[str, Path]) -> None:
    """
    Save a MultiSpeciesNetwork with all computed results to a JSON file.

    Parameters
    ----------
    network : MultiSpeciesNetwork
        Network to save
    save_path : str or Path
        Target file. If the path ends with '.json.gz', the file will be
        gzip compressed.

    Examples
    --------
    >>> save_network(network, "network.json")
    >>> save_network(network, "network.json.gz")  # Compressed
    """
    save_path = Path(save_path)

    data = {
        'input_folder_path': str(network.input_folder_path) if network.input_folder_path else None,
        'config': network.config.to_dict(),
        'expression': {sp: _frame_to_dict(expr) for sp, expr in network._expression.items()},
        'orthologs': {
            f"{sp_a}___{sp_b}": table.astype(str).values.tolist()
            for (sp_a, sp_b), table in network._orthologs.items()
        },
        'catalog': network.catalog.to_frame().to_dict('list'),
        'edges': None,
        'membership': None,
        'trees': None,
    }

    if network._edges is not None:
        data['edges'] = network._edges.to_dict('list')

    if network._membership is not None:
        coo = network._membership.matrix.tocoo()
        data['membership'] = {
            'row': coo.row.tolist(),
            'col': coo.col.tolist(),
            'shape': list(coo.shape),
            'columns': network._membership.columns.to_dict('list'),
            'n_runs': network._membership.n_runs,
        }

    if network._trees is not None:
        data['trees'] = {
            sp: {
                'linkage': tree.linkage.tolist() if tree.linkage is not None else None,
                'ids': tree.ids.tolist(),
            }
            for sp, tree in network._trees.trees.items()
        }

    if str(save_path).endswith('.json.gz'):
        with gzip.open(save_path, 'wt', encoding='utf-8') as f:
            json.dump(data, f)
        logger.info(f"Network saved to {save_path} (compressed)")
    else:
        with open(save_path, 'w') as f:
            json.dump(data, f, indent=2)
        logger.info(f"Network saved to {save_path}")


def load_network(load_path: Union[str, Path]) -> "MultiSpeciesNetwork":
    """
    Load a MultiSpeciesNetwork written by :func:`save_network`.

    Parameters
    ----------
    load_path : str or Path
        JSON file, gzip compressed if the path ends with '.json.gz'

    Returns
    -------
    MultiSpeciesNetwork
    """
    from .catalog import GeneCatalog
    from .config import NetworkConfig
    from .consensus import MembershipMatrix
    from .core import MultiSpeciesNetwork
    from .hclust import MultiSpeciesTrees, SpeciesTree

    load_path = Path(load_path)
    if not load_path.exists():
        raise FileNotFoundError(f"Network file not found: {load_path}")

    if str(load_path).endswith('.json.gz'):
        with gzip.open(load_path, 'rt', encoding='utf-8') as f:
            data = json.load(f)
    else:
        with open(load_path, 'r') as f:
            data = json.load(f)

    network = MultiSpeciesNetwork.__new__(MultiSpeciesNetwork)
    folder = data.get('input_folder_path')
    network.input_folder_path = Path(folder) if folder else None
    network.config = NetworkConfig.from_dict(data['config'])
    network._expression = {sp: _frame_from_dict(d) for sp, d in data['expression'].items()}
    network._orthologs = {
        tuple(key.split('___')): pd.DataFrame(rows, columns=["gene_a", "gene_b"])
        for key, rows in data['orthologs'].items()
    }

    catalog_frame = pd.DataFrame(data['catalog'])
    species_genes = {
        sp: list(catalog_frame.loc[catalog_frame["species"] == sp, "gene"])
        for sp in pd.unique(catalog_frame["species"])
    }
    network._catalog = GeneCatalog(species_genes)

    network._edges = None
    if data.get('edges') is not None:
        network._edges = pd.DataFrame(data['edges']).astype(
            {"source": np.int64, "target": np.int64, "weight": np.float64}
        )

    network._membership = None
    if data.get('membership') is not None:
        m = data['membership']
        matrix = sparse.coo_matrix(
            (np.ones(len(m['row']), dtype=np.int32), (m['row'], m['col'])), shape=tuple(m['shape'])
        ).tocsr()
        network._membership = MembershipMatrix(
            matrix=matrix, columns=pd.DataFrame(m['columns']), n_runs=m['n_runs']
        )

    network._trees = None
    if data.get('trees') is not None:
        network._trees = MultiSpeciesTrees(trees={
            sp: SpeciesTree(
                species=sp,
                linkage=np.asarray(t['linkage'], dtype=np.float64) if t['linkage'] is not None else None,
                ids=np.asarray(t['ids'], dtype=np.int64),
            )
            for sp, t in data['trees'].items()
        })

    network._modules = None
    modules = catalog_frame["modules"].fillna("")
    if (modules != "").all():
        network._modules = pd.Series(
            modules.to_numpy(), index=pd.Index(catalog_frame["ID"].astype(np.int64), name="ID"),
            name="module",
        )
        network._catalog.assign_modules(network._modules)

    logger.info(f"Network loaded from {load_path}")
    logger.info(f"Loaded {len(network._expression)} species")
    return network
