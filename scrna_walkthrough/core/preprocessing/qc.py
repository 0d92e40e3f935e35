"""Cell- and gene-level quality control.

Flags mitochondrial, ribosomal and hemoglobin genes, computes the
standard per-cell QC metrics with scanpy, and filters cells on fixed
thresholds while recording why each cell was removed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from .config import QCConfig


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "low_genes",
    "high_genes",
    "low_counts",
    "high_counts",
    "high_mito",
]

METRIC_COLUMNS = [
    "n_genes_by_counts",
    "total_counts",
    "pct_counts_mt",
]


@dataclass
class QCResult:
    """Result from filtering cells.

    Attributes
    ----------
    cells_total : int
        Total cells before filtering
    cells_removed : int
        Number of cells removed
    removal_fraction : float
        Fraction of cells removed
    capped_by_max : bool
        Whether removal was capped by max_removal_fraction
    reason_counts : Dict[str, int]
        Counts per removal reason (a cell can count for several reasons)
    genes_removed : int
        Genes dropped by the min_cells filter
    by_sample : pd.DataFrame
        Per-sample removal summary
    """

    cells_total: int = 0
    cells_removed: int = 0
    removal_fraction: float = 0.0
    capped_by_max: bool = False
    reason_counts: Dict[str, int] = field(default_factory=dict)
    genes_removed: int = 0
    by_sample: Optional[pd.DataFrame] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
            "capped_by_max": self.capped_by_max,
            "genes_removed": self.genes_removed,
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result


class CellQC:
    """Cell-level quality control filter.

    Parameters
    ----------
    config : QCConfig, optional
        QC configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_walkthrough.core.preprocessing import CellQC, QCConfig
    >>> qc = CellQC(QCConfig(max_pct_mt=15))
    >>> qc.compute_metrics(adata)
    >>> adata, result = qc.filter_cells(adata, sample_key="sample_id")
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)

    def annotate_gene_classes(self, adata: Any) -> Dict[str, int]:
        """Flag mitochondrial, ribosomal and hemoglobin genes in ``adata.var``.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object (modified in place)

        Returns
        -------
        Dict[str, int]
            Number of genes flagged per class
        """
        names = pd.Series(adata.var_names, index=adata.var_names).astype(str)
        adata.var["mt"] = names.str.startswith(self.config.mito_prefix).values
        adata.var["ribo"] = names.str.startswith(tuple(self.config.ribo_prefixes)).values
        adata.var["hb"] = names.str.contains(self.config.hb_pattern, regex=True).values

        counts = {key: int(adata.var[key].sum()) for key in ("mt", "ribo", "hb")}
        if counts["mt"] == 0:
            self.logger.warning(
                "No genes match mitochondrial prefix '%s'; pct_counts_mt will be 0",
                self.config.mito_prefix,
            )
        self.logger.info(
            "Flagged gene classes: %d mito, %d ribo, %d hb",
            counts["mt"],
            counts["ribo"],
            counts["hb"],
        )
        return counts

    def compute_metrics(self, adata: Any) -> None:
        """Compute per-cell QC metrics with ``scanpy.pp.calculate_qc_metrics``.

        Adds ``n_genes_by_counts``, ``total_counts`` and
        ``pct_counts_{mt,ribo,hb}`` to ``adata.obs``.
        """
        import scanpy as sc

        if "mt" not in adata.var.columns:
            self.annotate_gene_classes(adata)

        sc.pp.calculate_qc_metrics(
            adata,
            qc_vars=["mt", "ribo", "hb"],
            percent_top=None,
            log1p=False,
            inplace=True,
        )
        self.logger.info(
            "QC metrics: median genes/cell=%.0f, median UMIs/cell=%.0f, median %%mito=%.2f",
            float(np.median(adata.obs["n_genes_by_counts"])),
            float(np.median(adata.obs["total_counts"])),
            float(np.median(adata.obs["pct_counts_mt"])),
        )

    def flag_cells(self, obs: pd.DataFrame) -> pd.DataFrame:
        """Build the per-cell reason table from QC metric columns.

        Parameters
        ----------
        obs : pd.DataFrame
            Cell metadata containing ``METRIC_COLUMNS``

        Returns
        -------
        pd.DataFrame
            Boolean column per entry of ``REASON_COLUMNS``
        """
        missing = [c for c in METRIC_COLUMNS if c not in obs.columns]
        if missing:
            raise ValueError(
                f"QC metrics missing from obs: {missing}; run compute_metrics first"
            )

        cfg = self.config
        n_genes = obs["n_genes_by_counts"].astype(float)
        total = obs["total_counts"].astype(float)

        reasons = pd.DataFrame(index=obs.index)
        reasons["low_genes"] = n_genes < cfg.min_genes
        reasons["high_genes"] = (n_genes > cfg.max_genes) if cfg.max_genes else False
        reasons["low_counts"] = total < cfg.min_counts
        reasons["high_counts"] = (total > cfg.max_counts) if cfg.max_counts else False
        reasons["high_mito"] = obs["pct_counts_mt"].astype(float) > cfg.max_pct_mt
        return reasons.astype(bool)

    def filter_cells(
        self,
        adata: Any,
        sample_key: Optional[str] = "sample_id",
    ) -> Tuple[Any, QCResult]:
        """Remove cells failing QC thresholds.

        Parameters
        ----------
        adata : AnnData
            AnnData with QC metrics (not modified)
        sample_key : str, optional
            obs column used for the per-sample summary

        Returns
        -------
        Tuple[AnnData, QCResult]
            Filtered copy and filtering summary

        Raises
        ------
        ValueError
            If every cell fails QC
        """
        if "n_genes_by_counts" not in adata.obs.columns:
            adata = adata.copy()
            self.compute_metrics(adata)

        reasons = self.flag_cells(adata.obs)
        flagged = reasons.any(axis=1)

        result = QCResult(cells_total=int(adata.n_obs))
        flagged_count = int(flagged.sum())

        remove_count = flagged_count
        if self.config.max_removal_fraction is not None:
            max_remove = int(result.cells_total * self.config.max_removal_fraction)
            remove_count = min(flagged_count, max_remove)
        result.capped_by_max = flagged_count > remove_count

        # Select cells to remove (worst first), by position since barcodes may repeat
        removed_mask = np.zeros(adata.n_obs, dtype=bool)
        if remove_count > 0:
            ranking = pd.DataFrame({
                "severity": reasons.sum(axis=1).to_numpy(),
                "total_counts": adata.obs["total_counts"].astype(float).to_numpy(),
            })
            removal_pos = (
                ranking.loc[flagged.to_numpy()]
                .sort_values(by=["severity", "total_counts"], ascending=[False, True], kind="stable")
                .head(remove_count)
                .index.to_numpy()
            )
            removed_mask[removal_pos] = True
        for reason in REASON_COLUMNS:
            result.reason_counts[reason] = int(reasons.loc[removed_mask, reason].sum())

        result.cells_removed = int(removed_mask.sum())
        result.removal_fraction = (
            result.cells_removed / result.cells_total if result.cells_total > 0 else 0.0
        )

        if result.cells_removed == result.cells_total:
            raise ValueError(
                "QC thresholds removed all cells; relax min_genes/min_counts/max_pct_mt."
            )

        if sample_key and sample_key in adata.obs.columns:
            per_sample = pd.DataFrame({
                sample_key: adata.obs[sample_key].astype(str).values,
                "removed": removed_mask,
            })
            result.by_sample = (
                per_sample.groupby(sample_key)["removed"]
                .agg(cells_total="size", cells_removed="sum")
                .reset_index()
            )
            result.by_sample["removal_fraction"] = (
                result.by_sample["cells_removed"] / result.by_sample["cells_total"]
            ).round(4)

        self.logger.info(
            "Cell QC removed %d / %d cells (%.1f%%)%s",
            result.cells_removed,
            result.cells_total,
            100 * result.removal_fraction,
            " [capped]" if result.capped_by_max else "",
        )
        for reason in REASON_COLUMNS:
            if result.reason_counts[reason]:
                self.logger.info("  %s: %d", reason, result.reason_counts[reason])

        return adata[~removed_mask].copy(), result

    def filter_genes(self, adata: Any) -> int:
        """Drop genes detected in fewer than ``min_cells`` cells (in place).

        Returns
        -------
        int
            Number of genes removed
        """
        import scanpy as sc

        n_before = adata.n_vars
        sc.pp.filter_genes(adata, min_cells=self.config.min_cells)
        removed = n_before - adata.n_vars
        self.logger.info(
            "Gene filter removed %d genes detected in < %d cells (%d remain)",
            removed,
            self.config.min_cells,
            adata.n_vars,
        )
        return removed

    def run(
        self,
        adata: Any,
        sample_key: Optional[str] = "sample_id",
    ) -> Tuple[Any, QCResult]:
        """Annotate, compute metrics, filter cells then genes."""
        self.annotate_gene_classes(adata)
        self.compute_metrics(adata)
        filtered, result = self.filter_cells(adata, sample_key=sample_key)
        result.genes_removed = self.filter_genes(filtered)
        return filtered, result

    @staticmethod
    def summarize_by_sample(adata: Any, sample_key: str = "sample_id") -> pd.DataFrame:
        """Per-sample cell counts and median QC metrics.

        Parameters
        ----------
        adata : AnnData
            AnnData with QC metrics
        sample_key : str
            obs column holding the sample label

        Returns
        -------
        pd.DataFrame
            One row per sample
        """
        missing = [c for c in METRIC_COLUMNS + [sample_key] if c not in adata.obs.columns]
        if missing:
            raise ValueError(f"Cannot summarize QC; obs missing {missing}")

        obs = adata.obs[[sample_key] + METRIC_COLUMNS].copy()
        obs[sample_key] = obs[sample_key].astype(str)
        summary = obs.groupby(sample_key).agg(
            n_cells=("total_counts", "size"),
            median_genes=("n_genes_by_counts", "median"),
            median_counts=("total_counts", "median"),
            median_pct_mt=("pct_counts_mt", "median"),
        )
        return summary.reset_index()
