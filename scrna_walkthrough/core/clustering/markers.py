"""Cluster marker discovery.

One-vs-rest ``rank_genes_groups`` over the selected clusters, used to
inspect clusters before assigning cell-type labels.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import time

import pandas as pd

from .config import MarkerConfig


MARKER_TABLE_COLUMNS = [
    "cluster",
    "rank",
    "gene",
    "score",
    "logfoldchange",
    "pval_adj",
    "pct_in",
    "pct_out",
]


@dataclass
class MarkerResult:
    """Result from cluster marker testing.

    Attributes
    ----------
    cluster_markers : Dict[str, List[str]]
        Map of cluster ID to list of top marker genes
    key_added : str
        Key in adata.uns containing full rank_genes_groups results
    elapsed_seconds : float
        Time taken for the test
    """

    cluster_markers: Dict[str, List[str]] = field(default_factory=dict)
    key_added: str = ""
    elapsed_seconds: float = 0.0


class MarkerFinder:
    """Find marker genes for every cluster against all other cells.

    Parameters
    ----------
    config : MarkerConfig, optional
        Marker configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> finder = MarkerFinder()
    >>> result = finder.find_cluster_markers(adata, cluster_key="cluster")
    >>> table = finder.extract_marker_table(adata, result)
    """

    def __init__(
        self,
        config: Optional[MarkerConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MarkerConfig()
        self.logger = logger or logging.getLogger(__name__)

    def find_cluster_markers(
        self,
        adata: Any,  # AnnData
        cluster_key: str = "cluster",
        key_added: Optional[str] = None,
    ) -> MarkerResult:
        """Run one-vs-rest differential expression for every cluster.

        Parameters
        ----------
        adata : AnnData
            AnnData object with expression data and cluster assignments
        cluster_key : str
            Column name in adata.obs with cluster labels
        key_added : str, optional
            Key to store results in adata.uns

        Returns
        -------
        MarkerResult
            Per-cluster top marker genes

        Raises
        ------
        ValueError
            If the cluster column is missing or has a single cluster
        """
        import scanpy as sc

        cfg = self.config
        if cluster_key not in adata.obs.columns:
            raise ValueError(
                f"obs['{cluster_key}'] missing; run the cluster stage first"
            )
        n_clusters = adata.obs[cluster_key].nunique()
        if n_clusters < 2:
            raise ValueError(
                f"Marker discovery needs at least 2 clusters in '{cluster_key}'"
            )

        layer = cfg.layer
        if layer and layer not in adata.layers:
            self.logger.warning(
                "Layer '%s' not found in adata.layers (available: %s). "
                "Falling back to adata.X",
                layer,
                list(adata.layers.keys()),
            )
            layer = None

        if key_added is None:
            key_added = f"markers_{cluster_key}"

        # rank_genes_groups requires a categorical groupby column
        if not isinstance(adata.obs[cluster_key].dtype, pd.CategoricalDtype):
            adata.obs[cluster_key] = adata.obs[cluster_key].astype(str).astype("category")

        self.logger.info(
            "Finding markers for %d clusters (method=%s, layer=%s, top_n=%d)",
            n_clusters,
            cfg.method,
            layer if layer else "X",
            cfg.n_genes,
        )
        start = time.time()
        sc.tl.rank_genes_groups(
            adata,
            groupby=cluster_key,
            method=cfg.method,
            layer=layer,
            use_raw=False,
            tie_correct=cfg.tie_correct,
            key_added=key_added,
            pts=True,
        )
        elapsed = time.time() - start
        self.logger.info("Marker test completed in %.1f seconds", elapsed)

        result = MarkerResult(key_added=key_added, elapsed_seconds=elapsed)
        for cluster in adata.obs[cluster_key].cat.categories.astype(str):
            df = sc.get.rank_genes_groups_df(adata, group=cluster, key=key_added)
            df = df.dropna(subset=["names"])
            result.cluster_markers[cluster] = df.head(cfg.n_genes)["names"].astype(str).tolist()
        return result

    def extract_marker_table(
        self,
        adata: Any,  # AnnData
        result: MarkerResult,
        output_path: Optional[Path] = None,
    ) -> pd.DataFrame:
        """Flatten the top markers of every cluster into one table.

        Parameters
        ----------
        adata : AnnData
            AnnData holding ``uns[result.key_added]``
        result : MarkerResult
            Result of :meth:`find_cluster_markers`
        output_path : Path, optional
            If set, the table is also written as CSV

        Returns
        -------
        pd.DataFrame
            Columns of ``MARKER_TABLE_COLUMNS``
        """
        import scanpy as sc

        frames = []
        for cluster in result.cluster_markers:
            df = sc.get.rank_genes_groups_df(adata, group=cluster, key=result.key_added)
            df = df.dropna(subset=["names"]).head(self.config.n_genes).reset_index(drop=True)
            frames.append(pd.DataFrame({
                "cluster": cluster,
                "rank": range(1, len(df) + 1),
                "gene": df["names"].astype(str),
                "score": df["scores"],
                "logfoldchange": df.get("logfoldchanges"),
                "pval_adj": df["pvals_adj"],
                "pct_in": df.get("pct_nz_group"),
                "pct_out": df.get("pct_nz_reference"),
            }))

        table = (
            pd.concat(frames, ignore_index=True)
            if frames
            else pd.DataFrame(columns=MARKER_TABLE_COLUMNS)
        )
        if output_path is not None:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            table.to_csv(output_path, index=False)
            self.logger.info("Saved marker table (%d rows) to %s", len(table), output_path)
        return table
