"""GO enrichment bar charts."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .style import draw_empty_panel, save_figure, set_publication_style


def _shorten(term: str, width: int = 45) -> str:
    term = str(term)
    return term if len(term) <= width else term[: width - 3] + "..."


def draw_enrichment_bars(
    ax: plt.Axes,
    table: Optional[pd.DataFrame],
    top_n: int = 10,
    title: str = "GO enrichment",
    color: str = "#c0392b",
) -> None:
    """Horizontal bars of -log10 adjusted p-value for the top terms.

    ``table`` uses the enrichment columns; a ``cell_type`` column, when
    present, is prefixed to each term label.
    """
    if table is None or table.empty:
        draw_empty_panel(ax, "No enriched terms", title=title)
        return

    df = table.copy()
    df["pval_adj"] = df["pval_adj"].astype(float).clip(lower=1e-300)
    df = df.sort_values("pval_adj").head(top_n).iloc[::-1]
    labels = df["term"].map(_shorten)
    if "cell_type" in df.columns:
        labels = df["cell_type"].astype(str) + ": " + labels

    ax.barh(range(len(df)), -np.log10(df["pval_adj"]), color=color, alpha=0.85)
    ax.set_yticks(range(len(df)))
    ax.set_yticklabels(labels, fontsize=7)
    ax.set_xlabel("-log10 adjusted p-value")
    ax.set_title(title)


def plot_enrichment_bars(
    table: pd.DataFrame,
    output_path: Path,
    top_n: int = 10,
    title: str = "GO enrichment",
    dpi: int = 200,
    figsize: Tuple[float, float] = (7, 5),
) -> Path:
    """Save a bar chart of the top enriched terms."""
    set_publication_style()
    fig, ax = plt.subplots(figsize=figsize)
    draw_enrichment_bars(ax, table, top_n=top_n, title=title)
    fig.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)
