"""Composition analysis engine.

This module provides the CompositionEngine class that bundles the
per-sample composition, the per-condition aggregation, the proportion
comparison and the diversity metrics into one result.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import pandas as pd

from .aggregation import (
    aggregate_by_condition,
    compute_composition_by_sample,
    create_composition_wide,
)
from .comparison import compare_proportions
from .config import CompositionConfig
from .diversity import compute_diversity_by_group


@dataclass
class CompositionResult:
    """Result of composition analysis.

    Attributes
    ----------
    composition_by_sample : pd.DataFrame
        Per-sample composition (long format)
    composition_by_condition : pd.DataFrame
        Per-condition aggregation
    composition_wide : pd.DataFrame
        Wide-format matrix (samples x cell types)
    comparison : pd.DataFrame
        Proportion tests against the reference condition
    diversity_by_sample : pd.DataFrame
        Diversity metrics per sample
    reference : str, optional
        Reference condition used for the tests
    cell_type_column : str
        Cell type column analyzed
    provenance : Dict[str, Any]
        Execution provenance
    """

    composition_by_sample: pd.DataFrame
    composition_by_condition: pd.DataFrame
    composition_wide: pd.DataFrame
    comparison: pd.DataFrame
    diversity_by_sample: pd.DataFrame
    reference: Optional[str] = None
    cell_type_column: str = "cell_type"
    provenance: Dict[str, Any] = field(default_factory=dict)

    def export(self, output_dir: Path) -> Dict[str, Path]:
        """Write every table as CSV; returns name -> path."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        tables = {
            "composition_by_sample": self.composition_by_sample,
            "composition_by_condition": self.composition_by_condition,
            "composition_comparison": self.comparison,
            "diversity_by_sample": self.diversity_by_sample,
        }
        written = {}
        for name, df in tables.items():
            path = output_dir / f"{name}.csv"
            df.to_csv(path, index=False)
            written[name] = path
        wide_path = output_dir / "composition_wide.csv"
        self.composition_wide.to_csv(wide_path)
        written["composition_wide"] = wide_path
        return written


class CompositionEngine:
    """Engine for cell-type composition analysis.

    Parameters
    ----------
    config : CompositionConfig, optional
        Configuration. Uses defaults if not provided.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_walkthrough.core.composition import CompositionEngine
    >>> engine = CompositionEngine(CompositionConfig(reference="normal"))
    >>> result = engine.execute(adata, cell_type_col="cell_type")
    >>> result.comparison.query("significant")
    """

    def __init__(
        self,
        config: Optional[CompositionConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CompositionConfig.default()
        self.logger = logger or logging.getLogger(__name__)

    def execute(
        self,
        adata: Any,  # AnnData
        cell_type_col: str = "cell_type",
    ) -> CompositionResult:
        """Execute composition analysis.

        Parameters
        ----------
        adata : AnnData
            AnnData object with cell annotations
        cell_type_col : str
            Column with cell type labels

        Returns
        -------
        CompositionResult
            Composition analysis results

        Raises
        ------
        ValueError
            If the cell type or sample column is missing
        """
        start_time = datetime.now()
        config = self.config
        sample_col = config.sample_column
        condition_col = config.condition_column
        has_condition = condition_col in adata.obs.columns

        if cell_type_col not in adata.obs.columns:
            raise ValueError(
                f"obs['{cell_type_col}'] missing; run the annotate stage before composition"
            )

        composition_by_sample = compute_composition_by_sample(
            adata,
            cell_type_col=cell_type_col,
            sample_col=sample_col,
            condition_col=condition_col,
            patient_col=config.patient_column,
        )

        if has_condition:
            composition_by_condition = aggregate_by_condition(
                composition_by_sample, condition_col=condition_col
            )
            conditions = sorted(composition_by_sample[condition_col].unique())
            reference = config.reference if config.reference is not None else conditions[0]
            comparison = compare_proportions(
                composition_by_sample,
                condition_col=condition_col,
                reference=reference,
                sample_col=sample_col,
                min_samples_per_condition=config.min_samples_per_condition,
                correction_method=config.correction_method,
                alpha=config.alpha,
            )
        else:
            self.logger.warning(
                "Condition column '%s' not in obs; skipping condition comparison",
                condition_col,
            )
            composition_by_condition = pd.DataFrame()
            comparison = pd.DataFrame()
            reference = None

        composition_wide = create_composition_wide(composition_by_sample, index_col=sample_col)

        diversity_by_sample = compute_diversity_by_group(
            adata.obs[[sample_col, cell_type_col]],
            group_col=sample_col,
            cell_type_col=cell_type_col,
            min_cells=config.min_cells_per_sample,
        )
        if has_condition:
            sample_meta = (
                adata.obs[[sample_col, condition_col]]
                .astype(str)
                .drop_duplicates(subset=sample_col)
                .set_index(sample_col)
            )
            diversity_by_sample = diversity_by_sample.merge(
                sample_meta, left_on=sample_col, right_index=True, how="left"
            )

        n_significant = int(comparison["significant"].sum()) if len(comparison) else 0
        self.logger.info(
            "Composition: %d samples, %d cell types, %d tests (%d significant, reference=%s)",
            composition_wide.shape[0],
            composition_wide.shape[1],
            len(comparison),
            n_significant,
            reference,
        )

        provenance = {
            "timestamp": start_time.isoformat(),
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
            "n_cells": adata.n_obs,
            "n_samples": int(adata.obs[sample_col].nunique()),
            "cell_type_column": cell_type_col,
            "reference": reference,
            "config": config.to_dict(),
        }

        return CompositionResult(
            composition_by_sample=composition_by_sample,
            composition_by_condition=composition_by_condition,
            composition_wide=composition_wide,
            comparison=comparison,
            diversity_by_sample=diversity_by_sample,
            reference=reference,
            cell_type_column=cell_type_col,
            provenance=provenance,
        )
