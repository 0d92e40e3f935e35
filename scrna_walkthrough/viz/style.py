"""Shared styling for walkthrough figures.

This module provides:
- The matplotlib rcParams used by every plot
- Stable label -> color palettes so a cell type keeps its color across panels
- A figure saver that creates parent directories and closes the figure
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import matplotlib.pyplot as plt
import seaborn as sns

PathLike = Union[str, Path]


CONDITION_COLORS = [
    "#4c72b0",
    "#dd8452",
    "#55a868",
    "#c44e52",
    "#8172b3",
]

SIGNIFICANCE_COLORS = {
    "up": "#c0392b",
    "down": "#2471a3",
    "ns": "#bdc3c7",
}

_PUBLICATION_STYLE = {
    "figure.facecolor": "white",
    "axes.facecolor": "white",
    "axes.grid": False,
    "axes.spines.top": False,
    "axes.spines.right": False,
    "font.size": 10,
    "axes.labelsize": 11,
    "axes.titlesize": 12,
    "xtick.labelsize": 9,
    "ytick.labelsize": 9,
    "legend.fontsize": 8,
    "legend.frameon": False,
}


def set_publication_style() -> None:
    """Apply a lightweight matplotlib style suitable for reports."""
    plt.rcParams.update(_PUBLICATION_STYLE)


def get_color_palette(
    labels: Iterable,
    palette: Optional[str] = None,
) -> Dict[str, str]:
    """Map each label to a hex color.

    Labels are sorted before colors are assigned so the same label set
    always gets the same colors.

    Parameters
    ----------
    labels : Iterable
        Category labels
    palette : str, optional
        seaborn palette name; "tab10" up to 10 labels, "tab20" up to 20,
        "husl" beyond

    Returns
    -------
    Dict[str, str]
        Map of label to hex color
    """
    unique = sorted({str(label) for label in labels})
    if palette is None:
        if len(unique) <= 10:
            palette = "tab10"
        elif len(unique) <= 20:
            palette = "tab20"
        else:
            palette = "husl"
    colors = sns.color_palette(palette, n_colors=max(len(unique), 1)).as_hex()
    return {label: colors[i % len(colors)] for i, label in enumerate(unique)}


def ensure_parent(path: PathLike) -> Path:
    """Ensure parent directory exists and return Path object."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def save_figure(fig: plt.Figure, path: PathLike, *, dpi: int = 200) -> Path:
    """Save figure to disk and close it."""
    path = ensure_parent(path)
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return path


def draw_empty_panel(ax: plt.Axes, note: str, title: Optional[str] = None) -> None:
    """Blank axes with a centered note, used when a panel has no data."""
    ax.set_xticks([])
    ax.set_yticks([])
    for spine in ax.spines.values():
        spine.set_visible(False)
    ax.text(
        0.5,
        0.5,
        note,
        ha="center",
        va="center",
        fontsize=9,
        color="gray",
        transform=ax.transAxes,
        wrap=True,
    )
    if title:
        ax.set_title(title)
