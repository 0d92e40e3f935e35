"""Composite summary figure and the per-stage plot set.

``build_composite_figure`` lays out five panels on a GridSpec:

    A  UMAP by cell type     B  UMAP by condition    C  proportion bars
    D  volcano (one category)          E  top GO terms

Any input that is missing (no UMAP, no DE result, no enrichment) is
drawn as an empty panel with a note instead of failing the figure.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import matplotlib.pyplot as plt
from matplotlib.gridspec import GridSpec

from .composition_plots import draw_proportion_bars, plot_proportion_bars, plot_proportion_boxes
from .de_plots import draw_volcano, plot_volcano
from .embedding_plots import (
    draw_embedding,
    plot_elbow,
    plot_embedding,
    plot_highly_variable_genes,
    plot_resolution_grid,
)
from .enrichment_plots import draw_enrichment_bars, plot_enrichment_bars
from .qc_plots import plot_counts_vs_genes, plot_qc_violins
from .style import draw_empty_panel, get_color_palette, save_figure, set_publication_style

logger = logging.getLogger(__name__)


@dataclass
class FigureConfig:
    """Figure output settings.

    Attributes
    ----------
    dpi : int
        Resolution of saved figures
    fmt : str
        File extension (png, pdf, svg)
    volcano_category : str, optional
        Category shown in the composite volcano; the one with the most
        significant genes if None
    top_terms : int
        GO terms shown in the composite figure
    stage_plots : bool
        Also write the per-stage diagnostic plots
    """

    dpi: int = 200
    fmt: str = "png"
    volcano_category: Optional[str] = None
    top_terms: int = 10
    stage_plots: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def pick_volcano_category(de_result: Any) -> Optional[str]:
    """Category with the most significant genes in either direction."""
    if de_result is None or not de_result.tables:
        return None
    counts = {
        category: len(genes)
        for category, genes in de_result.significant("both").items()
    }
    # Ties resolve alphabetically
    return sorted(counts, key=lambda c: (-counts[c], c))[0]


def build_composite_figure(
    adata,
    composition: Any = None,  # CompositionResult
    de_result: Any = None,  # ConditionDEResult
    enrichment_result: Any = None,  # EnrichmentResult
    path: Optional[Path] = None,
    cell_type_key: str = "cell_type",
    condition_key: str = "tissue",
    volcano_category: Optional[str] = None,
    top_terms: int = 10,
    dpi: int = 200,
) -> plt.Figure:
    """Assemble the five-panel summary figure.

    Parameters
    ----------
    adata : AnnData
        Annotated AnnData with ``obsm['X_umap']``
    composition : CompositionResult, optional
        Output of the composition stage
    de_result : ConditionDEResult, optional
        Output of the DE stage
    enrichment_result : EnrichmentResult, optional
        Output of the enrichment stage
    path : Path, optional
        If given, the figure is saved there and closed
    cell_type_key : str
        obs column with cell type labels
    condition_key : str
        obs column with condition labels
    volcano_category : str, optional
        Category for the volcano panel
    top_terms : int
        Number of GO terms in panel E
    dpi : int
        Resolution when saving

    Returns
    -------
    plt.Figure
        The figure (already closed when ``path`` was given)
    """
    set_publication_style()
    fig = plt.figure(figsize=(18, 11))
    grid = GridSpec(2, 6, figure=fig, wspace=1.2, hspace=0.35)
    ax_types = fig.add_subplot(grid[0, 0:2])
    ax_condition = fig.add_subplot(grid[0, 2:4])
    ax_bars = fig.add_subplot(grid[0, 4:6])
    ax_volcano = fig.add_subplot(grid[1, 0:2])
    ax_terms = fig.add_subplot(grid[1, 3:6])

    palette = None
    if cell_type_key in adata.obs.columns:
        palette = get_color_palette(adata.obs[cell_type_key].astype(str).unique())

    draw_embedding(ax_types, adata, cell_type_key, palette=palette, title="Cell types")
    draw_embedding(ax_condition, adata, condition_key, title=f"UMAP by {condition_key}")

    if composition is not None:
        draw_proportion_bars(ax_bars, composition.composition_wide, palette=palette)
    else:
        draw_empty_panel(ax_bars, "Composition not computed", title="Cell type proportions")

    if de_result is not None and de_result.tables:
        category = volcano_category or pick_volcano_category(de_result)
        table = de_result.tables.get(category)
        if table is None:
            draw_empty_panel(ax_volcano, f"No DE table for '{category}'", title="Volcano")
        else:
            draw_volcano(
                ax_volcano,
                table,
                padj_threshold=de_result.padj_threshold,
                logfc_threshold=de_result.logfc_threshold,
                title=f"{category}: {de_result.case} vs {de_result.reference}",
            )
    else:
        draw_empty_panel(ax_volcano, "No DE results", title="Volcano")

    if enrichment_result is not None:
        terms = enrichment_result.significant_terms(top_n=top_terms)
        draw_enrichment_bars(
            ax_terms,
            terms,
            top_n=top_terms,
            title=f"GO terms ({enrichment_result.direction}-regulated)",
        )
    else:
        draw_empty_panel(ax_terms, "Enrichment not run", title="GO enrichment")

    for ax, letter in zip((ax_types, ax_condition, ax_bars, ax_volcano, ax_terms), "ABCDE"):
        ax.text(-0.12, 1.06, letter, transform=ax.transAxes, fontsize=14, fontweight="bold")

    if path is not None:
        save_figure(fig, path, dpi=dpi)
        logger.info("Saved composite figure to %s", path)
    return fig


def write_stage_plots(
    adata,
    output_dir: Path,
    config: Optional[FigureConfig] = None,
    composition: Any = None,
    de_result: Any = None,
    enrichment_result: Any = None,
    sample_key: str = "sample_id",
    condition_key: str = "tissue",
    cell_type_key: str = "cell_type",
    cluster_keys: Optional[list] = None,
    n_pcs: Optional[int] = None,
) -> Dict[str, Path]:
    """Write the diagnostic plot of every stage whose outputs exist.

    Returns a map of plot name to path; plots whose inputs are missing
    are left out.
    """
    config = config or FigureConfig()
    output_dir = Path(output_dir)
    ext = config.fmt
    written: Dict[str, Optional[Path]] = {}

    written["qc_violins"] = plot_qc_violins(
        adata, output_dir / f"qc_violins.{ext}", sample_key=sample_key, dpi=config.dpi
    )
    written["qc_scatter"] = plot_counts_vs_genes(
        adata, output_dir / f"qc_counts_vs_genes.{ext}", dpi=config.dpi
    )
    written["hvg"] = plot_highly_variable_genes(adata, output_dir / f"hvg.{ext}", dpi=config.dpi)
    written["elbow"] = plot_elbow(
        adata, output_dir / f"pca_elbow.{ext}", n_pcs=n_pcs, dpi=config.dpi
    )
    if cluster_keys:
        written["resolution_grid"] = plot_resolution_grid(
            adata, cluster_keys, output_dir / f"umap_resolutions.{ext}", dpi=config.dpi
        )
    if "X_umap" in adata.obsm and cell_type_key in adata.obs.columns:
        written["umap_cell_type"] = plot_embedding(
            adata, cell_type_key, output_dir / f"umap_{cell_type_key}.{ext}", dpi=config.dpi
        )

    if composition is not None:
        written["composition_bars"] = plot_proportion_bars(
            composition.composition_wide, output_dir / f"composition_bars.{ext}", dpi=config.dpi
        )
        written["composition_boxes"] = plot_proportion_boxes(
            composition.composition_by_sample,
            condition_key,
            output_dir / f"composition_boxes.{ext}",
            dpi=config.dpi,
        )

    if de_result is not None:
        for category, table in sorted(de_result.tables.items()):
            safe = "".join(ch if ch.isalnum() else "_" for ch in category)
            written[f"volcano_{safe}"] = plot_volcano(
                table,
                output_dir / "volcano" / f"volcano_{safe}.{ext}",
                padj_threshold=de_result.padj_threshold,
                logfc_threshold=de_result.logfc_threshold,
                title=f"{category}: {de_result.case} vs {de_result.reference}",
                dpi=config.dpi,
            )

    if enrichment_result is not None:
        terms = enrichment_result.significant_terms(top_n=config.top_terms)
        written["enrichment"] = plot_enrichment_bars(
            terms, output_dir / f"go_enrichment.{ext}", top_n=config.top_terms, dpi=config.dpi
        )

    return {name: path for name, path in written.items() if path is not None}
