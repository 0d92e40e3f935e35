"""Input readers and table writers for scrna-walkthrough.

Loads the single serialized input the walkthrough starts from (h5ad or
10x Genomics output), joins per-sample metadata onto the cells, and
writes result tables next to the figures.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SUPPORTED_FORMATS = ("h5ad", "10x_mtx", "10x_h5")


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def detect_format(path: PathLike) -> str:
    """Infer the input format from a path.

    Parameters
    ----------
    path : PathLike
        File or directory path

    Returns
    -------
    str
        One of ``SUPPORTED_FORMATS``

    Raises
    ------
    ValueError
        If the path does not look like any supported format
    """
    path = Path(path)
    if path.is_dir():
        names = {p.name for p in path.iterdir()}
        if any(n.startswith("matrix.mtx") for n in names):
            return "10x_mtx"
        raise ValueError(
            f"Directory {path} does not contain a 10x matrix.mtx(.gz) file"
        )

    suffixes = "".join(path.suffixes).lower()
    if suffixes.endswith(".h5ad"):
        return "h5ad"
    if suffixes.endswith(".h5"):
        return "10x_h5"
    raise ValueError(
        f"Cannot infer input format from '{path.name}'; "
        f"expected one of {', '.join(SUPPORTED_FORMATS)}"
    )


def read_dataset(
    path: PathLike,
    fmt: str = "auto",
    sample_id: Optional[str] = None,
    sample_key: str = "sample_id",
) -> Any:
    """Read the walkthrough input into an AnnData object.

    Parameters
    ----------
    path : PathLike
        Path to an ``.h5ad`` file, a 10x ``.h5`` file or a 10x matrix
        directory
    fmt : str
        Input format, or "auto" to infer from the path
    sample_id : str, optional
        Sample label assigned to every cell when the input carries no
        sample column (typical for a single 10x run)
    sample_key : str
        obs column holding the sample label

    Returns
    -------
    AnnData
        Loaded data with unique gene names

    Raises
    ------
    FileNotFoundError
        If the path does not exist
    ValueError
        If the format is unknown
    """
    import anndata as ad
    import scanpy as sc

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input dataset not found: {path}")

    if fmt == "auto":
        fmt = detect_format(path)

    logger.info("Reading %s input from %s", fmt, path)
    if fmt == "h5ad":
        adata = ad.read_h5ad(path)
    elif fmt == "10x_mtx":
        adata = sc.read_10x_mtx(path, var_names="gene_symbols", cache=False)
    elif fmt == "10x_h5":
        adata = sc.read_10x_h5(path)
    else:
        raise ValueError(
            f"Unknown input format '{fmt}'; expected one of {', '.join(SUPPORTED_FORMATS)}"
        )

    adata.var_names_make_unique()
    adata.obs_names_make_unique()

    if sample_id is not None:
        adata.obs[sample_key] = pd.Categorical([sample_id] * adata.n_obs)
    logger.info("Loaded %d cells x %d genes", adata.n_obs, adata.n_vars)
    return adata


def load_sample_table(path: PathLike, sample_col: str = "sample_id") -> pd.DataFrame:
    """Load a per-sample metadata table (CSV or TSV).

    Raises
    ------
    FileNotFoundError
        If the table does not exist
    ValueError
        If ``sample_col`` is missing or duplicated
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample metadata table not found: {path}")
    sep = "\t" if path.suffix.lower() in (".tsv", ".txt") else ","
    table = pd.read_csv(path, sep=sep)
    if sample_col not in table.columns:
        raise ValueError(f"Sample metadata table missing column '{sample_col}'")
    table[sample_col] = table[sample_col].astype(str)
    duplicated = table[sample_col][table[sample_col].duplicated()].unique().tolist()
    if duplicated:
        raise ValueError(f"Duplicate samples in metadata table: {duplicated}")
    return table


def attach_sample_metadata(
    adata: Any,  # AnnData
    table: Union[pd.DataFrame, PathLike],
    sample_col: str = "sample_id",
) -> List[str]:
    """Join per-sample metadata (patient, tissue, ...) onto ``adata.obs``.

    Columns already present in ``obs`` are overwritten. Every joined
    column is stored as categorical.

    Parameters
    ----------
    adata : AnnData
        Data with a ``sample_col`` obs column (modified in place)
    table : pd.DataFrame or PathLike
        Sample table, or a path to one
    sample_col : str
        Column shared by obs and the table

    Returns
    -------
    List[str]
        Names of the columns added to obs

    Raises
    ------
    ValueError
        If obs lacks ``sample_col`` or samples are missing from the table
    """
    if not isinstance(table, pd.DataFrame):
        table = load_sample_table(table, sample_col)
    if sample_col not in adata.obs.columns:
        raise ValueError(f"adata.obs has no '{sample_col}' column to join on")

    table = table.copy()
    table[sample_col] = table[sample_col].astype(str)
    samples = adata.obs[sample_col].astype(str)
    missing = sorted(set(samples) - set(table[sample_col]))
    if missing:
        raise ValueError(f"Samples missing from metadata table: {missing}")

    indexed = table.set_index(sample_col)
    added = []
    for column in indexed.columns:
        adata.obs[column] = pd.Categorical(samples.map(indexed[column]).astype(str).values)
        added.append(column)

    logger.info("Attached sample metadata columns: %s", ", ".join(added))
    return added


def validate_obs_columns(adata: Any, required: Iterable[str]) -> None:
    """Raise ``ValueError`` listing any required obs columns that are missing."""
    missing = [col for col in required if col not in adata.obs.columns]
    if missing:
        raise ValueError(f"adata.obs missing required columns: {missing}")


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path
