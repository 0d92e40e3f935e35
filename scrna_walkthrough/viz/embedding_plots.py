"""Dimensionality reduction and clustering plots.

Provides:
- PCA elbow plot with the suggested number of PCs
- Highly variable gene scatter
- UMAP colored by a categorical or numeric obs column
- Grid of UMAPs, one per clustering resolution
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .style import draw_empty_panel, get_color_palette, save_figure, set_publication_style

logger = logging.getLogger(__name__)


def draw_embedding(
    ax: plt.Axes,
    adata,
    color: str,
    basis: str = "X_umap",
    palette: Optional[Dict[str, str]] = None,
    title: Optional[str] = None,
    point_size: Optional[float] = None,
    legend: bool = True,
) -> None:
    """Scatter a 2D embedding on ``ax`` colored by an obs column.

    Categorical columns get one color per category and a legend; numeric
    columns use a continuous colormap with a colorbar.
    """
    if basis not in adata.obsm:
        draw_empty_panel(ax, f"{basis} not computed", title=title)
        return
    if color not in adata.obs.columns:
        draw_empty_panel(ax, f"'{color}' not in obs", title=title)
        return

    coords = np.asarray(adata.obsm[basis])[:, :2]
    values = adata.obs[color]
    size = point_size if point_size is not None else max(0.5, min(20.0, 12000 / adata.n_obs))

    if pd.api.types.is_numeric_dtype(values) and not isinstance(values.dtype, pd.CategoricalDtype):
        points = ax.scatter(
            coords[:, 0], coords[:, 1], c=values.values, cmap="viridis", s=size, linewidths=0
        )
        ax.figure.colorbar(points, ax=ax, fraction=0.046, pad=0.02)
    else:
        labels = values.astype(str)
        palette = palette or get_color_palette(labels.unique())
        for label in sorted(labels.unique()):
            mask = (labels == label).values
            ax.scatter(
                coords[mask, 0],
                coords[mask, 1],
                s=size,
                color=palette.get(label, "#cccccc"),
                label=label,
                linewidths=0,
            )
        if legend:
            ax.legend(
                loc="center left",
                bbox_to_anchor=(1.0, 0.5),
                markerscale=max(1.0, 20 / size),
                fontsize=7,
            )

    name = basis.replace("X_", "").upper()
    ax.set_xlabel(f"{name}1")
    ax.set_ylabel(f"{name}2")
    ax.set_xticks([])
    ax.set_yticks([])
    ax.set_title(title if title is not None else color)


def plot_embedding(
    adata,
    color: str,
    output_path: Path,
    basis: str = "X_umap",
    dpi: int = 200,
    figsize: Tuple[float, float] = (6, 5),
) -> Path:
    """Save a single embedding scatter colored by ``color``."""
    set_publication_style()
    fig, ax = plt.subplots(figsize=figsize)
    draw_embedding(ax, adata, color, basis=basis)
    return save_figure(fig, output_path, dpi=dpi)


def plot_elbow(
    adata,
    output_path: Path,
    n_pcs: Optional[int] = None,
    dpi: int = 200,
    figsize: Tuple[float, float] = (6, 4),
) -> Optional[Path]:
    """Plot variance ratio per principal component.

    Parameters
    ----------
    adata : AnnData
        AnnData with ``uns['pca']['variance_ratio']``
    output_path : Path
        Output file path
    n_pcs : int, optional
        Number of PCs used downstream; drawn as a vertical line
    dpi : int
        Figure resolution
    figsize : Tuple[float, float]
        Figure size

    Returns
    -------
    Optional[Path]
        Path to saved figure, None if PCA has not been run
    """
    pca = adata.uns.get("pca", {})
    if "variance_ratio" not in pca:
        logger.warning("No PCA variance ratio in uns; skipping elbow plot")
        return None

    set_publication_style()
    ratio = np.asarray(pca["variance_ratio"])
    pcs = np.arange(1, len(ratio) + 1)

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(pcs, ratio, "o-", color="#4c72b0", markersize=3)
    ax2 = ax.twinx()
    ax2.plot(pcs, np.cumsum(ratio), color="#999999", linestyle="--", linewidth=1)
    ax2.set_ylabel("Cumulative variance ratio")
    ax2.set_ylim(0, 1.05)
    if n_pcs is not None:
        ax.axvline(n_pcs, color="#c0392b", linestyle=":", linewidth=1)
        ax.text(n_pcs, ratio.max(), f" n_pcs={n_pcs}", color="#c0392b", fontsize=8, va="top")
    ax.set_xlabel("Principal component")
    ax.set_ylabel("Variance ratio")
    ax.set_title("PCA elbow")

    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_highly_variable_genes(
    adata,
    output_path: Path,
    dpi: int = 200,
    figsize: Tuple[float, float] = (6, 4),
) -> Optional[Path]:
    """Mean expression vs normalized dispersion, HVGs highlighted."""
    var = adata.var
    y_col = next((c for c in ("dispersions_norm", "variances_norm") if c in var.columns), None)
    if "highly_variable" not in var.columns or "means" not in var.columns or y_col is None:
        logger.warning("No HVG statistics in var; skipping HVG plot")
        return None

    set_publication_style()
    hvg = var["highly_variable"].astype(bool).values
    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(var["means"][~hvg], var[y_col][~hvg], s=3, color="#bdc3c7", label="other")
    ax.scatter(var["means"][hvg], var[y_col][hvg], s=3, color="#c0392b", label=f"HVG (n={hvg.sum()})")
    ax.set_xscale("log")
    ax.set_xlabel("Mean expression")
    ax.set_ylabel(y_col.replace("_", " "))
    ax.set_title("Highly variable genes")
    ax.legend(markerscale=3)

    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_resolution_grid(
    adata,
    cluster_keys: Sequence[str],
    output_path: Path,
    basis: str = "X_umap",
    ncols: int = 3,
    dpi: int = 200,
    panel_size: float = 4.0,
) -> Optional[Path]:
    """One embedding panel per clustering key (e.g. per resolution)."""
    keys: List[str] = [k for k in cluster_keys if k in adata.obs.columns]
    if not keys:
        logger.warning("No clustering columns found; skipping resolution grid")
        return None

    set_publication_style()
    ncols = max(1, min(ncols, len(keys)))
    nrows = int(np.ceil(len(keys) / ncols))
    fig, axes = plt.subplots(
        nrows, ncols, figsize=(panel_size * ncols, panel_size * nrows), squeeze=False
    )
    for ax, key in zip(axes.flat, keys):
        n_clusters = adata.obs[key].nunique()
        draw_embedding(
            ax, adata, key, basis=basis, title=f"{key} ({n_clusters} clusters)", legend=False
        )
    for ax in list(axes.flat)[len(keys):]:
        ax.axis("off")

    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)
