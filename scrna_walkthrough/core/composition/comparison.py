"""Condition comparison of cell-type proportions.

For every cell type, per-sample proportions in each condition are
compared against a reference condition with a two-sided Mann-Whitney U
test, then corrected for multiple testing across all tests.
"""

from typing import List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from ...utils.stats import adjust_pvalues


COMPARISON_COLUMNS = [
    "condition",
    "reference",
    "cell_type",
    "mean_condition",
    "mean_reference",
    "fold_change",
    "log2_fold_change",
    "statistic",
    "p_value",
    "n_samples_condition",
    "n_samples_reference",
    "p_adjusted",
    "significant",
    "direction",
]


def _fold_change(mean_case: float, mean_ref: float) -> float:
    if mean_ref > 0:
        return mean_case / mean_ref
    if mean_case > 0:
        return np.inf
    return 1.0


def compare_proportions(
    composition_df: pd.DataFrame,
    condition_col: str = "tissue",
    reference: Optional[str] = None,
    sample_col: str = "sample_id",
    value_col: str = "proportion",
    min_samples_per_condition: int = 2,
    correction_method: str = "fdr_bh",
    alpha: float = 0.05,
) -> pd.DataFrame:
    """Test each cell type's proportion in every condition against a reference.

    Parameters
    ----------
    composition_df : pd.DataFrame
        Per-sample composition (one row per sample and cell type) with
        the condition column attached
    condition_col : str
        Column with condition labels
    reference : str, optional
        Reference condition; the first sorted condition if None
    sample_col : str
        Column with sample IDs
    value_col : str
        Column with values to test
    min_samples_per_condition : int
        Conditions with fewer samples are skipped
    correction_method : str
        "fdr_bh", "bonferroni", "holm" or "none"
    alpha : float
        Significance threshold on the adjusted p-value

    Returns
    -------
    pd.DataFrame
        Columns of ``COMPARISON_COLUMNS``, sorted by condition then
        adjusted p-value

    Raises
    ------
    ValueError
        If the condition column or reference is missing
    """
    if condition_col not in composition_df.columns:
        raise ValueError(f"Column '{condition_col}' not found in composition DataFrame")

    conditions: List[str] = sorted(composition_df[condition_col].astype(str).unique())
    if reference is None:
        if not conditions:
            return pd.DataFrame(columns=COMPARISON_COLUMNS)
        reference = conditions[0]
    reference = str(reference)
    if reference not in conditions:
        raise ValueError(
            f"Reference condition '{reference}' not found (available: {conditions})"
        )

    data = composition_df.assign(**{condition_col: composition_df[condition_col].astype(str)})
    ref_df = data[data[condition_col] == reference]
    n_ref = ref_df[sample_col].nunique()

    results = []
    if n_ref >= min_samples_per_condition:
        cell_types = sorted(data["cell_type"].astype(str).unique())
        for condition in conditions:
            if condition == reference:
                continue
            case_df = data[data[condition_col] == condition]
            n_case = case_df[sample_col].nunique()
            if n_case < min_samples_per_condition:
                continue

            for cell_type in cell_types:
                values_case = case_df.loc[case_df["cell_type"] == cell_type, value_col].to_numpy(float)
                values_ref = ref_df.loc[ref_df["cell_type"] == cell_type, value_col].to_numpy(float)

                # Pad with zeros for samples lacking this cell type
                values_case = np.concatenate([values_case, np.zeros(n_case - len(values_case))])
                values_ref = np.concatenate([values_ref, np.zeros(n_ref - len(values_ref))])

                mean_case = float(np.mean(values_case))
                mean_ref = float(np.mean(values_ref))
                fold_change = _fold_change(mean_case, mean_ref)
                # -inf when absent in the condition, inf when absent in the reference
                with np.errstate(divide="ignore"):
                    log2_fc = float(np.log2(fold_change))

                try:
                    stat, p_value = stats.mannwhitneyu(
                        values_case, values_ref, alternative="two-sided"
                    )
                except ValueError:
                    stat, p_value = np.nan, 1.0

                results.append({
                    "condition": condition,
                    "reference": reference,
                    "cell_type": cell_type,
                    "mean_condition": mean_case,
                    "mean_reference": mean_ref,
                    "fold_change": fold_change,
                    "log2_fold_change": log2_fc,
                    "statistic": float(stat),
                    "p_value": float(p_value),
                    "n_samples_condition": n_case,
                    "n_samples_reference": n_ref,
                })

    if not results:
        return pd.DataFrame(columns=COMPARISON_COLUMNS)

    df = pd.DataFrame(results)
    df["p_adjusted"] = adjust_pvalues(df["p_value"].to_numpy(), method=correction_method)
    df["significant"] = df["p_adjusted"] < alpha
    df["direction"] = np.where(
        df["fold_change"] > 1,
        "enriched",
        np.where(df["fold_change"] < 1, "depleted", "neutral"),
    )
    return df.sort_values(["condition", "p_adjusted"]).reset_index(drop=True)[COMPARISON_COLUMNS]
