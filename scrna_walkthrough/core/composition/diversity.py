"""Diversity metrics for cell-type composition.

- Shannon entropy: overall diversity (nats)
- Simpson index: probability that two random cells are different types
- Pielou's evenness: how evenly cells are spread over the observed types
"""

import numpy as np
import pandas as pd

from ...utils.stats import shannon_entropy, simpson_index


def compute_shannon_entropy(counts: np.ndarray) -> float:
    """Shannon entropy H = -sum(p_i * log(p_i)) in nats."""
    return shannon_entropy(counts)


def compute_simpson_index(counts: np.ndarray) -> float:
    """Simpson diversity index D = 1 - sum(p_i^2)."""
    return simpson_index(counts)


def compute_evenness(counts: np.ndarray) -> float:
    """Pielou's evenness J = H / log(S), S = number of non-zero types."""
    counts = np.asarray(counts, dtype=float)
    n_types = int((counts > 0).sum())
    if n_types < 2:
        return 0.0
    return compute_shannon_entropy(counts) / np.log(n_types)


def compute_diversity_by_group(
    df: pd.DataFrame,
    group_col: str,
    cell_type_col: str = "cell_type",
    min_cells: int = 20,
) -> pd.DataFrame:
    """Compute diversity metrics for each group.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with cell data
    group_col : str
        Column to group by (e.g., "sample_id")
    cell_type_col : str
        Column with cell type labels
    min_cells : int
        Groups with fewer cells get NaN metrics

    Returns
    -------
    pd.DataFrame
        Columns: group_col, n_cells, n_types, shannon_entropy,
        simpson_index, evenness
    """
    results = []
    for group, group_df in df.groupby(df[group_col].astype(str)):
        n_cells = len(group_df)
        if n_cells < min_cells:
            results.append({
                group_col: group,
                "n_cells": n_cells,
                "n_types": np.nan,
                "shannon_entropy": np.nan,
                "simpson_index": np.nan,
                "evenness": np.nan,
            })
            continue

        counts = group_df[cell_type_col].astype(str).value_counts().to_numpy()
        results.append({
            group_col: group,
            "n_cells": n_cells,
            "n_types": len(counts),
            "shannon_entropy": compute_shannon_entropy(counts),
            "simpson_index": compute_simpson_index(counts),
            "evenness": compute_evenness(counts),
        })

    return pd.DataFrame(results)
