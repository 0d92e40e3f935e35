"""Cell-type composition plots."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Tuple
import logging

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .style import draw_empty_panel, get_color_palette, save_figure, set_publication_style

logger = logging.getLogger(__name__)


def draw_proportion_bars(
    ax: plt.Axes,
    composition_wide: pd.DataFrame,
    palette: Optional[Dict[str, str]] = None,
    sample_order: Optional[list] = None,
    title: str = "Cell type proportions",
    legend: bool = True,
) -> None:
    """Stacked bars of cell-type proportions, one bar per sample.

    Parameters
    ----------
    ax : plt.Axes
        Target axes
    composition_wide : pd.DataFrame
        Samples x cell types proportion matrix
    palette : Dict[str, str], optional
        Cell type -> color
    sample_order : list, optional
        Bar order; index order if None
    title : str
        Axes title
    legend : bool
        Draw a legend to the right of the axes
    """
    if composition_wide is None or composition_wide.empty:
        draw_empty_panel(ax, "No composition data", title=title)
        return

    wide = composition_wide.copy()
    wide.columns = [str(c) for c in wide.columns]
    if sample_order is not None:
        wide = wide.reindex([s for s in sample_order if s in wide.index])
    palette = palette or get_color_palette(wide.columns)

    bottom = pd.Series(0.0, index=wide.index)
    positions = range(len(wide))
    for cell_type in wide.columns:
        ax.bar(
            positions,
            wide[cell_type].values,
            bottom=bottom.values,
            color=palette.get(cell_type, "#cccccc"),
            label=cell_type,
            width=0.8,
            edgecolor="white",
            linewidth=0.3,
        )
        bottom += wide[cell_type]

    ax.set_xticks(list(positions))
    ax.set_xticklabels([str(s) for s in wide.index], rotation=45, ha="right")
    ax.set_ylim(0, 1.0)
    ax.set_ylabel("Proportion")
    ax.set_title(title)
    if legend:
        ax.legend(loc="center left", bbox_to_anchor=(1.0, 0.5), fontsize=7)


def plot_proportion_bars(
    composition_wide: pd.DataFrame,
    output_path: Path,
    sample_order: Optional[list] = None,
    dpi: int = 200,
    figsize: Optional[Tuple[float, float]] = None,
) -> Path:
    """Save stacked proportion bars per sample."""
    set_publication_style()
    n_samples = 0 if composition_wide is None else len(composition_wide)
    figsize = figsize or (max(5.0, 0.6 * n_samples + 3), 5)
    fig, ax = plt.subplots(figsize=figsize)
    draw_proportion_bars(ax, composition_wide, sample_order=sample_order)
    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_proportion_boxes(
    composition_by_sample: pd.DataFrame,
    condition_col: str,
    output_path: Path,
    dpi: int = 200,
    figsize: Optional[Tuple[float, float]] = None,
) -> Optional[Path]:
    """Boxplot of per-sample proportions per cell type, split by condition.

    Parameters
    ----------
    composition_by_sample : pd.DataFrame
        Long table with ``cell_type``, ``proportion`` and the condition column
    condition_col : str
        Condition column used as hue
    output_path : Path
        Output file path
    dpi : int
        Figure resolution
    figsize : Tuple[float, float], optional
        Figure size; scaled to the number of cell types if None

    Returns
    -------
    Optional[Path]
        Path to saved figure, None if the condition column is missing
    """
    if composition_by_sample is None or condition_col not in composition_by_sample.columns:
        logger.warning("No '%s' column in composition table; skipping boxplot", condition_col)
        return None

    set_publication_style()
    df = composition_by_sample.copy()
    df["cell_type"] = df["cell_type"].astype(str)
    df[condition_col] = df[condition_col].astype(str)
    n_types = df["cell_type"].nunique()
    figsize = figsize or (max(6.0, 0.8 * n_types + 2), 5)

    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(
        data=df,
        x="cell_type",
        y="proportion",
        hue=condition_col,
        ax=ax,
        fliersize=0,
    )
    sns.stripplot(
        data=df,
        x="cell_type",
        y="proportion",
        hue=condition_col,
        ax=ax,
        dodge=True,
        size=3,
        color="black",
        alpha=0.6,
        legend=False,
    )
    ax.set_xlabel("")
    ax.set_ylabel("Proportion per sample")
    ax.tick_params(axis="x", rotation=45)
    ax.set_title(f"Cell type proportions by {condition_col}")

    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)
