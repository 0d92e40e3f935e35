"""Annotation engine for cell-type classification.

Scores every cell against each marker set with ``scanpy.tl.score_genes``,
averages the scores per cluster and assigns each cluster the best
scoring cell type when it clears the configured thresholds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import AnnotationConfig
from .markers import MarkerSet, load_marker_sets


CLUSTER_TABLE_COLUMNS = [
    "cluster_id",
    "n_cells",
    "assigned_label",
    "assigned_score",
    "runner_up",
    "gap",
    "source",
]


@dataclass
class AnnotationResult:
    """Result from cluster annotation.

    Attributes:
        cluster_annotations: One row per cluster (CLUSTER_TABLE_COLUMNS)
        cluster_scores: Mean score per cluster (rows) and cell type (columns)
        label_key: obs column holding the labels
        skipped_sets: Marker sets that had no genes in the panel
    """

    cluster_annotations: pd.DataFrame
    cluster_scores: pd.DataFrame
    label_key: str = "cell_type"
    skipped_sets: List[str] = field(default_factory=list)

    @property
    def n_unassigned(self) -> int:
        return int((self.cluster_annotations["source"] == "unassigned").sum())

    def label_map(self) -> Dict[str, str]:
        """Cluster ID -> assigned label."""
        return dict(
            zip(
                self.cluster_annotations["cluster_id"].astype(str),
                self.cluster_annotations["assigned_label"],
            )
        )


class AnnotationEngine:
    """Marker-score annotation of pre-clustered AnnData.

    Example:
        >>> sets = load_marker_sets("markers.yaml", adata.var_names)
        >>> engine = AnnotationEngine(AnnotationConfig(min_score=0.1))
        >>> result = engine.annotate_clusters(adata, sets)
        >>> adata.obs["cell_type"].value_counts()
    """

    def __init__(
        self,
        config: Optional[AnnotationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or AnnotationConfig()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def panel_genes(adata: Any) -> Sequence[str]:
        """Genes available for scoring (``.raw`` when present)."""
        if adata.raw is not None:
            return list(adata.raw.var_names)
        return list(adata.var_names)

    def load(self, marker_map: Union[Dict, Path, str], adata: Any) -> List[MarkerSet]:
        """Load marker sets resolved against this dataset's genes."""
        return load_marker_sets(marker_map, self.panel_genes(adata), logger=self.logger)

    def score(self, adata: Any, marker_sets: Sequence[MarkerSet]) -> List[str]:
        """Write ``obs["score_<type>"]`` for every non-empty marker set.

        Scores use the log-normalized values in ``.raw`` when available.

        Args:
            adata: AnnData (modified in place)
            marker_sets: Resolved marker sets

        Returns:
            obs columns written, in marker-set order
        """
        import scanpy as sc

        use_raw = adata.raw is not None
        n_genes = len(self.panel_genes(adata))
        written: List[str] = []
        for ms in marker_sets:
            if ms.is_empty:
                self.logger.info("Skipping marker set '%s' (no resolved genes)", ms.label)
                continue
            sc.tl.score_genes(
                adata,
                gene_list=list(ms.resolved_markers),
                ctrl_size=min(self.config.ctrl_size, max(n_genes - len(ms.resolved_markers), 1)),
                score_name=ms.score_key,
                random_state=self.config.random_seed,
                use_raw=use_raw,
            )
            written.append(ms.score_key)
            self.logger.debug(
                "Scored '%s' with %d genes (%d missing)",
                ms.label,
                len(ms.resolved_markers),
                len(ms.missing_markers),
            )
        self.logger.info("Scored %d marker sets on %d cells", len(written), adata.n_obs)
        return written

    def _assign(self, row: pd.Series) -> Dict[str, Any]:
        cfg = self.config
        ranked = row.dropna().sort_values(ascending=False)
        if ranked.empty:
            return {
                "assigned_label": cfg.unassigned_label,
                "assigned_score": np.nan,
                "runner_up": None,
                "gap": np.nan,
                "source": "unassigned",
            }

        best_label, best_score = ranked.index[0], float(ranked.iloc[0])
        if len(ranked) > 1:
            runner_up = ranked.index[1]
            gap = best_score - float(ranked.iloc[1])
            gap_ok = gap >= cfg.min_gap
        else:
            runner_up, gap, gap_ok = None, np.nan, True

        passed = best_score >= cfg.min_score and gap_ok
        return {
            "assigned_label": best_label if passed else cfg.unassigned_label,
            "assigned_score": best_score,
            "runner_up": runner_up,
            "gap": gap,
            "source": "auto" if passed else "unassigned",
        }

    def annotate_clusters(
        self,
        adata: Any,
        marker_sets: Sequence[MarkerSet],
    ) -> AnnotationResult:
        """Assign one cell type per cluster and label every cell.

        Args:
            adata: Clustered AnnData (modified in place)
            marker_sets: Resolved marker sets

        Returns:
            AnnotationResult with the per-cluster decision table

        Raises:
            ValueError: If the cluster column is missing
        """
        cfg = self.config
        if cfg.cluster_key not in adata.obs.columns:
            raise ValueError(
                f"obs['{cfg.cluster_key}'] missing; run the cluster stage before annotating"
            )

        scorable = [ms for ms in marker_sets if not ms.is_empty]
        skipped = [ms.label for ms in marker_sets if ms.is_empty]
        missing_scores = [ms for ms in scorable if ms.score_key not in adata.obs.columns]
        if missing_scores:
            self.score(adata, missing_scores)
        if not scorable:
            self.logger.warning(
                "No marker set has genes in the panel; every cluster is '%s'",
                cfg.unassigned_label,
            )

        clusters = adata.obs[cfg.cluster_key].astype(str)
        score_frame = pd.DataFrame(
            {ms.label: adata.obs[ms.score_key].to_numpy() for ms in scorable},
            index=adata.obs_names,
        )
        means = score_frame.groupby(clusters.to_numpy()).mean()
        sizes = clusters.value_counts()

        rows = []
        for cluster_id in sorted(sizes.index, key=_cluster_sort_key):
            row = means.loc[cluster_id] if cluster_id in means.index else pd.Series(dtype=float)
            decision = self._assign(row)
            if cluster_id in cfg.manual_labels:
                decision["assigned_label"] = cfg.manual_labels[cluster_id]
                decision["source"] = "manual"
            rows.append({"cluster_id": cluster_id, "n_cells": int(sizes[cluster_id]), **decision})

        unknown = set(cfg.manual_labels) - set(sizes.index)
        if unknown:
            self.logger.warning(
                "Manual labels given for unknown clusters: %s", sorted(unknown)
            )

        table = pd.DataFrame(rows, columns=CLUSTER_TABLE_COLUMNS)
        mapping = dict(zip(table["cluster_id"], table["assigned_label"]))
        adata.obs[cfg.label_key] = pd.Categorical(clusters.map(mapping).to_numpy())

        result = AnnotationResult(
            cluster_annotations=table,
            cluster_scores=means,
            label_key=cfg.label_key,
            skipped_sets=skipped,
        )
        self.logger.info(
            "Annotated %d clusters into %d labels (%d unassigned, %d manual)",
            len(table),
            table["assigned_label"].nunique(),
            result.n_unassigned,
            int((table["source"] == "manual").sum()),
        )
        return result


def _cluster_sort_key(cluster_id: str):
    """Sort numeric cluster IDs numerically, others lexically after them."""
    try:
        return (0, int(cluster_id), "")
    except ValueError:
        return (1, 0, cluster_id)
