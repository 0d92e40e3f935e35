"""Plots and the composite summary figure.

Example Usage
-------------
>>> from scrna_walkthrough.viz import build_composite_figure
>>> build_composite_figure(
...     adata, composition, de_result, enrichment_result, "figures/summary.png"
... )
"""

from .composition_plots import draw_proportion_bars, plot_proportion_bars, plot_proportion_boxes
from .de_plots import draw_volcano, plot_marker_dotplot, plot_volcano
from .embedding_plots import (
    draw_embedding,
    plot_elbow,
    plot_embedding,
    plot_highly_variable_genes,
    plot_resolution_grid,
)
from .enrichment_plots import draw_enrichment_bars, plot_enrichment_bars
from .figure import FigureConfig, build_composite_figure, pick_volcano_category, write_stage_plots
from .qc_plots import plot_counts_vs_genes, plot_qc_violins
from .style import (
    draw_empty_panel,
    ensure_parent,
    get_color_palette,
    save_figure,
    set_publication_style,
)

__all__ = [
    # Style
    "set_publication_style",
    "get_color_palette",
    "save_figure",
    "ensure_parent",
    "draw_empty_panel",
    # QC
    "plot_qc_violins",
    "plot_counts_vs_genes",
    # Embeddings
    "draw_embedding",
    "plot_embedding",
    "plot_elbow",
    "plot_highly_variable_genes",
    "plot_resolution_grid",
    # Composition
    "draw_proportion_bars",
    "plot_proportion_bars",
    "plot_proportion_boxes",
    # DE
    "draw_volcano",
    "plot_volcano",
    "plot_marker_dotplot",
    # Enrichment
    "draw_enrichment_bars",
    "plot_enrichment_bars",
    # Composite
    "FigureConfig",
    "build_composite_figure",
    "pick_volcano_category",
    "write_stage_plots",
]
