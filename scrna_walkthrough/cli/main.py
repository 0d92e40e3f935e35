"""Command-line interface for scrna-walkthrough.

Provides the full walkthrough run plus single-step commands that work
on an ``.h5ad`` file.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from .. import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("scrna_walkthrough")


def _read_h5ad(path: str, logger: logging.Logger):
    import anndata as ad

    logger.info("Loading AnnData from %s", path)
    adata = ad.read_h5ad(path)
    logger.info("Loaded %d cells x %d genes", adata.n_obs, adata.n_vars)
    return adata


def _load_config(config: Optional[str]):
    from scrna_walkthrough.config import WalkthroughConfig

    if config:
        return WalkthroughConfig.from_yaml(Path(config))
    return WalkthroughConfig.default()


@click.group()
@click.version_option(version=__version__, prog_name="scrna-walkthrough")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """scrna-walkthrough: a guided single-cell RNA-seq analysis.

    Runs QC, normalization, integration, clustering, annotation,
    composition, differential expression and GO enrichment in a fixed
    order and writes tables and figures.

    Examples:

        # Write a starter configuration
        scrna-walkthrough init-config walkthrough.yaml

        # Run everything
        scrna-walkthrough run --config walkthrough.yaml

        # Re-run from clustering onwards using checkpoints
        scrna-walkthrough run --config walkthrough.yaml --start-stage cluster
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Walkthrough configuration file (YAML)")
@click.option("--start-stage", help="Stage to start from")
@click.option("--end-stage", help="Stage to end at")
@click.option("--dry-run", is_flag=True, help="Show execution plan without running")
@click.option("--resume", is_flag=True, help="Resume after the last completed stage")
@click.option("--force", is_flag=True, help="Ignore checkpoint state and re-run all stages")
@click.pass_context
def run(
    ctx: click.Context,
    config: str,
    start_stage: Optional[str],
    end_stage: Optional[str],
    dry_run: bool,
    resume: bool,
    force: bool,
) -> None:
    """Run the walkthrough from a configuration file."""
    from scrna_walkthrough.pipeline import STAGE_ORDER, run_walkthrough

    for name, value in (("start", start_stage), ("end", end_stage)):
        if value is not None and value not in STAGE_ORDER:
            raise click.BadParameter(
                f"unknown stage '{value}' (choose from {', '.join(STAGE_ORDER)})",
                param_hint=f"--{name}-stage",
            )

    cfg = _load_config(config)
    if ctx.obj["debug"]:
        cfg.log_level = "DEBUG"

    try:
        context = run_walkthrough(
            cfg,
            start_stage=start_stage,
            end_stage=end_stage,
            dry_run=dry_run,
            resume=resume,
            force=force,
        )
    except (ValueError, KeyError, FileNotFoundError, RuntimeError) as e:
        click.echo(f"Walkthrough failed: {e}", err=True)
        sys.exit(1)

    if dry_run:
        click.echo("Dry run - no stages were executed")
        return
    click.echo(f"Walkthrough complete: {len(context.outputs)} outputs in {cfg.output_dir}")


@cli.command()
def stages() -> None:
    """List the walkthrough stages in execution order."""
    from scrna_walkthrough.pipeline import WALKTHROUGH_STAGES

    for i, stage in enumerate(WALKTHROUGH_STAGES, start=1):
        optional = " (optional)" if stage.optional else ""
        click.echo(f"{i:2d}. {stage.stage_id:<12} {stage.description}{optional}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input dataset (.h5ad, 10x .h5 or 10x matrix directory)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Walkthrough configuration file (YAML); only the qc section is used")
@click.option("--sample-key", default="sample_id", help="obs column with sample IDs")
@click.pass_context
def qc(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    sample_key: str,
) -> None:
    """Compute QC metrics and filter cells and genes."""
    logger = ctx.obj["logger"]

    from scrna_walkthrough.core.preprocessing import CellQC
    from scrna_walkthrough.io.readers import read_dataset, write_dataframe

    cfg = _load_config(config)
    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)

    adata = read_dataset(input_path)
    filtered, result = CellQC(cfg.qc, logger).run(
        adata, sample_key=sample_key if sample_key in adata.obs.columns else None
    )
    if result.by_sample is not None:
        write_dataframe(result.by_sample, out_dir / "qc_by_sample.csv")

    output_file = out_dir / "qc_filtered.h5ad"
    filtered.write_h5ad(output_file)
    click.echo(
        f"QC complete: removed {result.cells_removed}/{result.cells_total} cells "
        f"and {result.genes_removed} genes"
    )
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Normalized and scaled AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--resolution", type=float, multiple=True,
              help="Resolution(s) to cluster at (repeatable)")
@click.option("--select", "selected", type=float, default=None,
              help="Resolution copied to obs['cluster']")
@click.option("--n-pcs", type=int, default=30, help="Number of principal components")
@click.option("--use-rep", default=None, help="obsm key for the graph (default: X_pca_harmony if present)")
@click.option("--use-gpu/--no-gpu", default=False, help="Use GPU acceleration")
@click.option("--sample", "samples", multiple=True, help="Keep only these sample IDs (repeatable)")
@click.option("--tissue", "tissues", multiple=True, help="Keep only these tissues (repeatable)")
@click.option("--focus-cluster", "focus_clusters", multiple=True,
              help="Keep only these clusters of obs['cluster'] (re-clustering)")
@click.pass_context
def cluster(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    resolution: tuple,
    selected: Optional[float],
    n_pcs: int,
    use_rep: Optional[str],
    use_gpu: bool,
    samples: tuple,
    tissues: tuple,
    focus_clusters: tuple,
) -> None:
    """Build the neighbour graph, cluster and compute UMAP."""
    logger = ctx.obj["logger"]

    from scrna_walkthrough.core.clustering import ClusteringConfig, ClusteringEngine

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    adata = _read_h5ad(input_path, logger)

    kwargs = {"n_pcs": n_pcs, "use_gpu": use_gpu}
    if resolution:
        kwargs["resolutions"] = list(resolution)
        kwargs["resolution"] = selected if selected is not None else resolution[0]
    elif selected is not None:
        kwargs["resolution"] = selected
    engine = ClusteringEngine(ClusteringConfig(**kwargs), logger)
    try:
        adata = engine.subset_adata(
            adata,
            sample_ids=list(samples),
            tissues=list(tissues),
            focus_clusters=list(focus_clusters),
        )
    except ValueError as e:
        click.echo(f"Clustering failed: {e}", err=True)
        sys.exit(1)

    if use_rep is None:
        use_rep = "X_pca_harmony" if "X_pca_harmony" in adata.obsm else "X_pca"
    try:
        summary = engine.run(adata, use_rep=use_rep)
    except (ValueError, KeyError) as e:
        click.echo(f"Clustering failed: {e}", err=True)
        sys.exit(1)

    summary.to_frame().to_csv(out_dir / "clustering_resolutions.csv", index=False)
    output_file = out_dir / "clustered.h5ad"
    adata.write_h5ad(output_file)

    n_clusters = summary.results[summary.selected_resolution].n_clusters
    click.echo(f"Clustering complete: {n_clusters} clusters at resolution {summary.selected_resolution}")
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Clustered AnnData file (.h5ad)")
@click.option("--marker-map", "-m", required=True, type=click.Path(exists=True),
              help="Marker sets (YAML or JSON)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--cluster-key", default="cluster", help="Cluster column name")
@click.option("--min-score", type=float, default=0.0, help="Minimum mean score to assign")
@click.pass_context
def annotate(
    ctx: click.Context,
    input_path: str,
    marker_map: str,
    output_path: str,
    cluster_key: str,
    min_score: float,
) -> None:
    """Score marker sets and assign one cell type per cluster."""
    logger = ctx.obj["logger"]

    from scrna_walkthrough.core.annotation import AnnotationConfig, AnnotationEngine

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    adata = _read_h5ad(input_path, logger)

    engine = AnnotationEngine(
        AnnotationConfig(cluster_key=cluster_key, min_score=min_score), logger
    )
    marker_sets = engine.load(Path(marker_map), adata)
    logger.info("Loaded %d marker sets", len(marker_sets))
    try:
        result = engine.annotate_clusters(adata, marker_sets)
    except ValueError as e:
        click.echo(f"Annotation failed: {e}", err=True)
        sys.exit(1)

    result.cluster_annotations.to_csv(out_dir / "cluster_annotations.csv", index=False)
    output_file = out_dir / "annotated.h5ad"
    adata.write_h5ad(output_file)

    click.echo(
        f"Annotation complete: {len(result.cluster_annotations)} clusters, "
        f"{result.n_unassigned} unassigned"
    )
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Annotated AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--groupby", default="cell_type", help="Categories looped over")
@click.option("--condition-key", default="tissue", help="obs column with conditions")
@click.option("--case", default=None, help="Condition tested")
@click.option("--reference", default=None, help="Baseline condition")
@click.option("--method", type=click.Choice(["wilcoxon", "t-test", "t-test_overestim_var", "logreg"]),
              default="wilcoxon", help="rank_genes_groups method")
@click.pass_context
def de(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    groupby: str,
    condition_key: str,
    case: Optional[str],
    reference: Optional[str],
    method: str,
) -> None:
    """Compare two conditions within each cell type."""
    logger = ctx.obj["logger"]

    from scrna_walkthrough.core.de import ConditionDERunner, DEConfig, export_de_tables

    adata = _read_h5ad(input_path, logger)
    runner = ConditionDERunner(
        DEConfig(
            groupby=groupby,
            condition_key=condition_key,
            case=case,
            reference=reference,
            method=method,
        ),
        logger,
    )
    try:
        result = runner.run(adata)
    except ValueError as e:
        click.echo(f"DE failed: {e}", err=True)
        sys.exit(1)

    written = export_de_tables(result, Path(output_path))
    click.echo(
        f"DE complete ({result.case} vs {result.reference}): {len(result.tables)} tested, "
        f"{len(result.skipped)} skipped, {len(result.failed)} failed"
    )
    click.echo(f"Output saved to: {written['combined']}")


@cli.command("init-config")
@click.argument("path", type=click.Path(), default="walkthrough.yaml")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(path: str, force: bool) -> None:
    """Write a default configuration file to PATH."""
    from scrna_walkthrough.config import WalkthroughConfig

    target = Path(path)
    if target.exists() and not force:
        click.echo(f"{target} exists; use --force to overwrite", err=True)
        sys.exit(1)
    WalkthroughConfig.default().to_yaml(target)
    click.echo(f"Wrote default configuration to {target}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
