"""Statistical helpers shared across walkthrough stages.

Provides multiple-testing correction and entropy helpers used by the
composition comparison and the batch-mixing diagnostic.
"""

from __future__ import annotations

from typing import Iterable, Union

import numpy as np
from statsmodels.stats.multitest import multipletests

ArrayLike = Union[Iterable[float], np.ndarray]

CORRECTION_METHODS = ("fdr_bh", "bonferroni", "holm", "none")


def adjust_pvalues(p_values: ArrayLike, method: str = "fdr_bh") -> np.ndarray:
    """Apply multiple testing correction, preserving NaN positions.

    Parameters
    ----------
    p_values : ArrayLike
        Raw p-values
    method : str
        One of "fdr_bh", "bonferroni", "holm" or "none"

    Returns
    -------
    np.ndarray
        Adjusted p-values (NaN where the input was NaN)

    Raises
    ------
    ValueError
        If the method is unknown
    """
    if method not in CORRECTION_METHODS:
        raise ValueError(
            f"Unknown correction method: {method} (expected one of {CORRECTION_METHODS})"
        )

    p_values = np.asarray(list(p_values), dtype=float)
    if p_values.size == 0 or method == "none":
        return p_values

    valid = ~np.isnan(p_values)
    adjusted = np.full(p_values.shape, np.nan)
    if valid.any():
        _, corrected, _, _ = multipletests(p_values[valid], method=method)
        adjusted[valid] = corrected
    return adjusted


def shannon_entropy(counts: ArrayLike, normalize: bool = False) -> float:
    """Shannon entropy (natural log) of a count or proportion vector.

    Parameters
    ----------
    counts : ArrayLike
        Non-negative counts or proportions
    normalize : bool
        Divide by log(k) where k is the number of categories, giving a
        value in [0, 1] (Pielou's evenness)

    Returns
    -------
    float
        Entropy; 0.0 for empty or single-category input
    """
    arr = np.asarray(list(counts), dtype=float)
    k = arr.size
    arr = arr[np.isfinite(arr) & (arr > 0)]
    if arr.size == 0:
        return 0.0
    p = arr / arr.sum()
    h = float(-(p * np.log(p)).sum())
    if normalize:
        return h / np.log(k) if k > 1 else 0.0
    return h


def simpson_index(counts: ArrayLike) -> float:
    """Gini-Simpson diversity index (1 - sum p^2)."""
    arr = np.asarray(list(counts), dtype=float)
    arr = arr[np.isfinite(arr) & (arr > 0)]
    if arr.size == 0:
        return 0.0
    p = arr / arr.sum()
    return float(1.0 - (p ** 2).sum())
