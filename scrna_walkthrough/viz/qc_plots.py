"""Quality control plots.

Provides:
- Violin plots of QC metrics per sample
- Counts vs genes scatter colored by mitochondrial percentage
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple
import logging

import matplotlib.pyplot as plt
import seaborn as sns

from .style import save_figure, set_publication_style

logger = logging.getLogger(__name__)

DEFAULT_QC_METRICS = ("n_genes_by_counts", "total_counts", "pct_counts_mt")


def plot_qc_violins(
    adata,
    output_path: Path,
    sample_key: str = "sample_id",
    metrics: Sequence[str] = DEFAULT_QC_METRICS,
    dpi: int = 200,
    figsize: Optional[Tuple[float, float]] = None,
) -> Optional[Path]:
    """Plot one violin panel per QC metric, split by sample.

    Parameters
    ----------
    adata : AnnData
        AnnData with QC metrics in obs
    output_path : Path
        Output file path
    sample_key : str
        obs column on the x axis; all cells in one violin if missing
    metrics : Sequence[str]
        obs columns to plot
    dpi : int
        Figure resolution
    figsize : Tuple[float, float], optional
        Figure size; scaled to the number of metrics if None

    Returns
    -------
    Optional[Path]
        Path to saved figure, None if no metric is present
    """
    set_publication_style()

    present = [m for m in metrics if m in adata.obs.columns]
    if not present:
        logger.warning("No QC metrics in obs; skipping violin plot")
        return None

    obs = adata.obs.copy()
    x = sample_key if sample_key in obs.columns else None
    if x is not None:
        obs[x] = obs[x].astype(str)

    figsize = figsize or (4.5 * len(present), 4)
    fig, axes = plt.subplots(1, len(present), figsize=figsize, squeeze=False)
    for ax, metric in zip(axes[0], present):
        sns.violinplot(data=obs, x=x, y=metric, ax=ax, inner=None, cut=0, color="#9ecae1")
        sns.stripplot(data=obs, x=x, y=metric, ax=ax, size=1, color="black", alpha=0.3)
        ax.set_title(metric)
        ax.set_ylabel("")
        if x is not None:
            ax.tick_params(axis="x", rotation=45)

    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_counts_vs_genes(
    adata,
    output_path: Path,
    dpi: int = 200,
    figsize: Tuple[float, float] = (6, 5),
) -> Optional[Path]:
    """Scatter of total counts vs detected genes colored by % mitochondrial."""
    set_publication_style()

    needed = ("total_counts", "n_genes_by_counts", "pct_counts_mt")
    if any(col not in adata.obs.columns for col in needed):
        logger.warning("QC metrics missing; skipping counts-vs-genes scatter")
        return None

    fig, ax = plt.subplots(figsize=figsize)
    points = ax.scatter(
        adata.obs["total_counts"],
        adata.obs["n_genes_by_counts"],
        c=adata.obs["pct_counts_mt"],
        cmap="viridis",
        s=4,
        alpha=0.7,
    )
    fig.colorbar(points, ax=ax, label="% mitochondrial counts")
    ax.set_xlabel("Total UMI counts")
    ax.set_ylabel("Detected genes")
    ax.set_title("Counts vs genes")

    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)
