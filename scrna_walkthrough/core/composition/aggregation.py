"""Aggregation functions for cell-type composition.

This module aggregates cell-type counts and proportions per sample and
per condition. Every (group, cell type) pair is present in the output,
with zero counts where a cell type is absent from a group.
"""

from typing import List, Optional

import pandas as pd


def compute_composition_by_group(
    df: pd.DataFrame,
    group_col: str,
    cell_type_col: str = "cell_type",
    normalize: bool = True,
) -> pd.DataFrame:
    """Compute cell-type composition for each group.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with cell data
    group_col : str
        Column to group by (e.g., "sample_id", "tissue")
    cell_type_col : str
        Column with cell type labels
    normalize : bool
        If True, add a proportion column

    Returns
    -------
    pd.DataFrame
        Composition table with columns:
        - group_col: Group identifier
        - cell_type: Cell type label
        - count: Number of cells (0 when absent)
        - proportion: Proportion of cells (if normalize=True)
    """
    counts = pd.crosstab(df[group_col].astype(str), df[cell_type_col].astype(str))
    long = counts.stack().reset_index()
    long.columns = [group_col, "cell_type", "count"]
    long["count"] = long["count"].astype(int)

    if normalize:
        totals = long.groupby(group_col)["count"].transform("sum")
        long["proportion"] = long["count"] / totals

    return long


def compute_composition_by_sample(
    adata,
    cell_type_col: str = "cell_type",
    sample_col: str = "sample_id",
    condition_col: Optional[str] = "tissue",
    patient_col: Optional[str] = "patient",
) -> pd.DataFrame:
    """Compute cell-type composition per sample.

    Parameters
    ----------
    adata : AnnData
        AnnData object with cell annotations
    cell_type_col : str
        Column with cell type labels
    sample_col : str
        Column with sample IDs
    condition_col : str, optional
        Column with condition labels (carried as sample metadata)
    patient_col : str, optional
        Column with patient IDs (carried as sample metadata)

    Returns
    -------
    pd.DataFrame
        Per-sample composition with count and proportion columns
    """
    for col in (cell_type_col, sample_col):
        if col not in adata.obs.columns:
            raise ValueError(f"Column '{col}' not found in adata.obs")

    df = adata.obs[[sample_col, cell_type_col]].copy()
    composition = compute_composition_by_group(df, sample_col, cell_type_col)

    for meta_col in (condition_col, patient_col):
        if meta_col and meta_col in adata.obs.columns:
            sample_meta = (
                adata.obs[[sample_col, meta_col]]
                .astype(str)
                .groupby(sample_col)[meta_col]
                .first()
            )
            composition[meta_col] = composition[sample_col].map(sample_meta)

    return composition


def aggregate_by_condition(
    composition_df: pd.DataFrame,
    condition_col: str = "tissue",
    condition_order: Optional[List[str]] = None,
) -> pd.DataFrame:
    """Aggregate per-sample proportions by condition.

    Parameters
    ----------
    composition_df : pd.DataFrame
        Per-sample composition from compute_composition_by_sample
    condition_col : str
        Column with condition labels
    condition_order : List[str], optional
        Ordered list of conditions for consistent output

    Returns
    -------
    pd.DataFrame
        Per-condition composition with mean, std, median, n_samples
    """
    if condition_col not in composition_df.columns:
        raise ValueError(f"Column '{condition_col}' not found in composition DataFrame")

    agg = composition_df.groupby([condition_col, "cell_type"])["proportion"].agg([
        ("mean", "mean"),
        ("std", "std"),
        ("median", "median"),
        ("n_samples", "count"),
    ]).reset_index()

    if condition_order:
        agg[condition_col] = pd.Categorical(
            agg[condition_col],
            categories=condition_order,
            ordered=True,
        )
        agg = agg.sort_values([condition_col, "cell_type"]).reset_index(drop=True)

    return agg


def create_composition_wide(
    composition_df: pd.DataFrame,
    index_col: str = "sample_id",
    value_col: str = "proportion",
    fill_value: float = 0.0,
) -> pd.DataFrame:
    """Create wide-format composition matrix (samples x cell types).

    Parameters
    ----------
    composition_df : pd.DataFrame
        Long-format composition from compute_composition_by_sample
    index_col : str
        Column to use as index (rows)
    value_col : str
        Column to use as values (proportion or count)
    fill_value : float
        Value for missing cell types

    Returns
    -------
    pd.DataFrame
        Wide-format matrix
    """
    return composition_df.pivot_table(
        index=index_col,
        columns="cell_type",
        values=value_col,
        fill_value=fill_value,
        aggfunc="first",
    )
