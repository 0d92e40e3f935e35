"""Differential expression plots.

Provides:
- Volcano plot of one DE table
- Marker dotplot through scanpy
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .style import SIGNIFICANCE_COLORS, draw_empty_panel, save_figure, set_publication_style

logger = logging.getLogger(__name__)


def draw_volcano(
    ax: plt.Axes,
    table: Optional[pd.DataFrame],
    padj_threshold: float = 0.05,
    logfc_threshold: float = 0.25,
    n_labels: int = 8,
    title: str = "Volcano",
) -> None:
    """Volcano plot of a DE table on ``ax``.

    Parameters
    ----------
    ax : plt.Axes
        Target axes
    table : pd.DataFrame
        DE table with ``gene``, ``logfoldchange`` and ``pval_adj``
    padj_threshold : float
        Adjusted p-value threshold line
    logfc_threshold : float
        Log fold change threshold lines
    n_labels : int
        Number of top significant genes to label
    title : str
        Axes title
    """
    if table is None or table.empty:
        draw_empty_panel(ax, "No DE results", title=title)
        return

    df = table.dropna(subset=["logfoldchange", "pval_adj"]).copy()
    padj = df["pval_adj"].astype(float).clip(lower=1e-300)
    df["neg_log10_padj"] = -np.log10(padj)

    sig = df["pval_adj"] < padj_threshold
    up = sig & (df["logfoldchange"] >= logfc_threshold)
    down = sig & (df["logfoldchange"] <= -logfc_threshold)
    ns = ~(up | down)

    ax.scatter(df.loc[ns, "logfoldchange"], df.loc[ns, "neg_log10_padj"],
               s=6, color=SIGNIFICANCE_COLORS["ns"], alpha=0.6, linewidths=0)
    ax.scatter(df.loc[up, "logfoldchange"], df.loc[up, "neg_log10_padj"],
               s=8, color=SIGNIFICANCE_COLORS["up"], label=f"up ({int(up.sum())})", linewidths=0)
    ax.scatter(df.loc[down, "logfoldchange"], df.loc[down, "neg_log10_padj"],
               s=8, color=SIGNIFICANCE_COLORS["down"], label=f"down ({int(down.sum())})", linewidths=0)

    ax.axhline(-np.log10(padj_threshold), color="gray", linestyle="--", linewidth=0.8)
    for x in (-logfc_threshold, logfc_threshold):
        ax.axvline(x, color="gray", linestyle=":", linewidth=0.8)

    labelled = df[up | down].sort_values("neg_log10_padj", ascending=False).head(n_labels)
    for _, row in labelled.iterrows():
        ax.annotate(
            str(row["gene"]),
            (row["logfoldchange"], row["neg_log10_padj"]),
            fontsize=6,
            xytext=(2, 2),
            textcoords="offset points",
        )

    ax.set_xlabel("log2 fold change")
    ax.set_ylabel("-log10 adjusted p-value")
    ax.set_title(title)
    if up.any() or down.any():
        ax.legend(loc="upper left", fontsize=7)


def plot_volcano(
    table: pd.DataFrame,
    output_path: Path,
    padj_threshold: float = 0.05,
    logfc_threshold: float = 0.25,
    title: str = "Volcano",
    dpi: int = 200,
    figsize: Tuple[float, float] = (6, 5),
) -> Path:
    """Save a volcano plot of one DE table."""
    set_publication_style()
    fig, ax = plt.subplots(figsize=figsize)
    draw_volcano(ax, table, padj_threshold=padj_threshold,
                 logfc_threshold=logfc_threshold, title=title)
    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_marker_dotplot(
    adata,
    markers: Union[Sequence[str], Dict[str, Sequence[str]]],
    groupby: str,
    output_path: Path,
    dpi: int = 200,
) -> Optional[Path]:
    """Dotplot of marker genes per group via ``scanpy.pl.dotplot``.

    Genes absent from the matrix used for plotting are dropped; groups left
    without genes are dropped too.
    """
    import scanpy as sc

    use_raw = adata.raw is not None
    available = set(adata.raw.var_names if use_raw else adata.var_names)

    if isinstance(markers, dict):
        var_names: Union[List[str], Dict[str, List[str]]] = {
            str(label): [g for g in genes if g in available]
            for label, genes in markers.items()
        }
        var_names = {k: v for k, v in var_names.items() if v}
        n_genes = sum(len(v) for v in var_names.values())
    else:
        var_names = [g for g in markers if g in available]
        n_genes = len(var_names)

    if n_genes == 0 or groupby not in adata.obs.columns:
        logger.warning("No plottable markers for dotplot (groupby=%s); skipping", groupby)
        return None

    set_publication_style()
    dp = sc.pl.dotplot(
        adata,
        var_names,
        groupby=groupby,
        use_raw=use_raw,
        standard_scale="var",
        return_fig=True,
        show=False,
    )
    dp.make_figure()
    fig = dp.get_axes()["mainplot_ax"].figure
    return save_figure(fig, output_path, dpi=dpi)
