"""The walkthrough: a fixed, linear sequence of analysis stages.

    load -> qc -> normalize -> features -> scale -> pca -> integrate
         -> cluster -> annotate -> composition -> de -> enrichment -> figures

Each stage reads and writes the shared :class:`WalkthroughContext`,
records the parameters it used in ``adata.uns["walkthrough"]`` and
writes its tables under ``<output_dir>/tables``.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from ..config import WalkthroughConfig
from ..core.annotation import AnnotationEngine
from ..core.clustering import ClusteringEngine, MarkerFinder
from ..core.composition import CompositionEngine
from ..core.de import ConditionDERunner, export_de_tables, load_de_tables
from ..core.enrichment import EnrichmentResult, GOEnricher
from ..core.preprocessing import BatchIntegrator, CellQC, Normalizer
from ..io.logging import get_stage_logger, read_provenance, record_provenance
from ..io.readers import attach_sample_metadata, read_dataset, validate_obs_columns, write_dataframe
from ..viz import build_composite_figure, plot_marker_dotplot, plot_qc_violins, write_stage_plots
from .executor import PipelineExecutor
from .logger import PipelineLogger
from .stage import Stage, StageSkipped


ENRICHMENT_TABLE_NAME = "go_enrichment.csv"


@dataclass
class WalkthroughContext:
    """Shared state passed from stage to stage.

    Attributes
    ----------
    config : WalkthroughConfig
        Run configuration
    adata : AnnData, optional
        The dataset; replaced by the qc and scale stages
    use_rep : str
        obsm key the neighbour graph is built on
    outputs : Dict[str, Path]
        Every table and figure written, by name
    """

    config: WalkthroughConfig
    adata: Any = None
    qc_result: Any = None
    hvg_genes: List[str] = field(default_factory=list)
    n_pcs: int = 0
    integration: Any = None
    use_rep: Optional[str] = None
    clustering: Any = None
    cluster_markers: Any = None
    marker_sets: List[Any] = field(default_factory=list)
    annotation: Any = None
    composition: Any = None
    de_result: Any = None
    enrichment: Any = None
    outputs: Dict[str, Path] = field(default_factory=dict)
    _loggers: Dict[str, logging.Logger] = field(default_factory=dict, repr=False)

    @property
    def provenance_log(self) -> Path:
        return self.config.logs_dir / "provenance.jsonl"

    def stage_logger(self, stage_id: str) -> logging.Logger:
        """Per-stage logger writing ``logs/<stage_id>.log``."""
        if stage_id not in self._loggers:
            level = getattr(logging, self.config.log_level.upper())
            logger, _ = get_stage_logger(
                stage_id, self.config.logs_dir, level=level, timestamped=False
            )
            self._loggers[stage_id] = logger
        return self._loggers[stage_id]

    def close_loggers(self) -> None:
        for logger in self._loggers.values():
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        self._loggers = {}

    def record(self, stage_id: str, params: Dict[str, Any]) -> None:
        record_provenance(self.adata, stage_id, params, log_path=self.provenance_log)

    def write_table(self, name: str, df: pd.DataFrame, *, index: bool = False) -> Path:
        path = write_dataframe(df, self.config.tables_dir / f"{name}.csv", index=index)
        self.outputs[name] = path
        return path

    def require_adata(self, stage_id: str) -> Any:
        if self.adata is None:
            raise ValueError(f"No AnnData loaded; run the load stage before {stage_id}")
        return self.adata


# ----------------------------------------------------------------------
# Stages
# ----------------------------------------------------------------------


def run_load(ctx: WalkthroughContext) -> None:
    """Read the input and join per-sample metadata."""
    cfg = ctx.config
    logger = ctx.stage_logger("load")
    if ctx.adata is None:
        if not cfg.input:
            raise ValueError("No input dataset configured (set 'input' in the config)")
        ctx.adata = read_dataset(
            cfg.input, fmt=cfg.input_format, sample_id=cfg.sample_id, sample_key=cfg.sample_key
        )
    else:
        logger.info("Using in-memory AnnData (%d cells x %d genes)", ctx.adata.n_obs, ctx.adata.n_vars)

    added: List[str] = []
    if cfg.sample_metadata:
        added = attach_sample_metadata(ctx.adata, cfg.sample_metadata, sample_col=cfg.sample_key)
    validate_obs_columns(ctx.adata, [cfg.sample_key])

    for key in (cfg.patient_key, cfg.condition_key):
        if key not in ctx.adata.obs.columns:
            logger.warning("obs['%s'] not present; stages using it will be limited", key)

    logger.info(
        "Loaded %d cells x %d genes from %d samples",
        ctx.adata.n_obs,
        ctx.adata.n_vars,
        ctx.adata.obs[cfg.sample_key].nunique(),
    )
    ctx.record("load", {
        "input": cfg.input,
        "format": cfg.input_format,
        "sample_metadata": cfg.sample_metadata,
        "metadata_columns": added,
        "n_obs": int(ctx.adata.n_obs),
        "n_vars": int(ctx.adata.n_vars),
    })


def run_qc(ctx: WalkthroughContext) -> None:
    """Compute QC metrics and filter cells and genes."""
    cfg = ctx.config
    logger = ctx.stage_logger("qc")
    adata = ctx.require_adata("qc")

    qc = CellQC(cfg.qc, logger)
    if cfg.figures.stage_plots:
        qc.annotate_gene_classes(adata)
        qc.compute_metrics(adata)
        path = plot_qc_violins(
            adata,
            cfg.figures_dir / f"qc_violins_prefilter.{cfg.figures.fmt}",
            sample_key=cfg.sample_key,
            dpi=cfg.figures.dpi,
        )
        if path is not None:
            ctx.outputs["qc_violins_prefilter"] = path

    ctx.adata, ctx.qc_result = qc.run(adata, sample_key=cfg.sample_key)
    if ctx.qc_result.by_sample is not None:
        ctx.write_table("qc_by_sample", ctx.qc_result.by_sample)
    ctx.write_table("qc_summary", CellQC.summarize_by_sample(ctx.adata, cfg.sample_key))
    ctx.record("qc", {"config": asdict(cfg.qc), "result": ctx.qc_result.to_dict()})


def run_normalize(ctx: WalkthroughContext) -> None:
    """Library-size normalize and log-transform."""
    cfg = ctx.config
    normalizer = Normalizer(cfg.normalization, ctx.stage_logger("normalize"))
    normalizer.normalize(ctx.require_adata("normalize"))
    ctx.record("normalize", {"target_sum": cfg.normalization.target_sum})


def run_features(ctx: WalkthroughContext) -> None:
    """Select highly variable genes."""
    cfg = ctx.config
    normalizer = Normalizer(cfg.normalization, ctx.stage_logger("features"))
    ctx.hvg_genes = normalizer.select_variable_features(ctx.require_adata("features"))
    ctx.write_table("highly_variable_genes", pd.DataFrame({"gene": ctx.hvg_genes}))
    ctx.record("features", {
        "flavor": cfg.normalization.hvg_flavor,
        "n_top_genes": cfg.normalization.n_top_genes,
        "batch_key": cfg.normalization.hvg_batch_key,
        "n_selected": len(ctx.hvg_genes),
    })


def run_scale(ctx: WalkthroughContext) -> None:
    """Regress out covariates and scale."""
    cfg = ctx.config
    normalizer = Normalizer(cfg.normalization, ctx.stage_logger("scale"))
    ctx.adata = normalizer.scale(ctx.require_adata("scale"))
    ctx.record("scale", {
        "regress_out": list(cfg.normalization.regress_out),
        "max_value": cfg.normalization.scale_max_value,
        "subset_hvg": cfg.normalization.subset_hvg,
    })


def run_pca(ctx: WalkthroughContext) -> None:
    """Principal component analysis on the scaled matrix."""
    cfg = ctx.config
    engine = ClusteringEngine(cfg.clustering, ctx.stage_logger("pca"))
    adata = ctx.require_adata("pca")
    ctx.n_pcs = engine.run_pca(adata)
    suggested = engine.suggest_n_pcs(adata)
    ctx.record("pca", {"n_pcs": ctx.n_pcs, "suggested_n_pcs": suggested})


def run_integrate(ctx: WalkthroughContext) -> None:
    """Batch-correct the embedding (or pass it through)."""
    cfg = ctx.config
    integrator = BatchIntegrator(cfg.integration, ctx.stage_logger("integrate"))
    ctx.integration = integrator.integrate(ctx.require_adata("integrate"))
    ctx.use_rep = ctx.integration.use_rep
    ctx.record("integrate", ctx.integration.to_dict())


def _current_use_rep(ctx: WalkthroughContext) -> str:
    if ctx.use_rep:
        return ctx.use_rep
    try:
        return read_provenance(ctx.adata, "integrate")["params"]["use_rep"]
    except KeyError:
        return "X_pca"


def run_cluster(ctx: WalkthroughContext) -> None:
    """Neighbour graph, clustering at every resolution, UMAP and markers."""
    cfg = ctx.config
    logger = ctx.stage_logger("cluster")
    adata = ctx.require_adata("cluster")

    use_rep = _current_use_rep(ctx)
    ctx.clustering = ClusteringEngine(cfg.clustering, logger).run(adata, use_rep=use_rep)
    ctx.write_table("clustering_resolutions", ctx.clustering.to_frame())

    finder = MarkerFinder(cfg.markers, logger)
    if adata.obs["cluster"].nunique() >= 2:
        ctx.cluster_markers = finder.find_cluster_markers(adata, cluster_key="cluster")
        table = finder.extract_marker_table(adata, ctx.cluster_markers)
        ctx.write_table("cluster_markers", table)
    else:
        logger.warning("Single cluster at resolution %.2f; no marker table", cfg.clustering.resolution)

    ctx.record("cluster", {
        "use_rep": use_rep,
        "config": cfg.clustering.to_dict(),
        "resolutions": ctx.clustering.to_frame().to_dict(orient="records"),
    })


def run_annotate(ctx: WalkthroughContext) -> None:
    """Score marker sets and label clusters."""
    cfg = ctx.config
    if cfg.marker_sets is None:
        raise ValueError("No marker sets configured (set 'marker_sets' in the config)")
    adata = ctx.require_adata("annotate")
    engine = AnnotationEngine(cfg.annotation, ctx.stage_logger("annotate"))
    ctx.marker_sets = engine.load(cfg.marker_sets, adata)
    ctx.annotation = engine.annotate_clusters(adata, ctx.marker_sets)
    ctx.write_table("cluster_annotations", ctx.annotation.cluster_annotations)
    ctx.record("annotate", {
        "marker_sets": cfg.marker_sets if isinstance(cfg.marker_sets, str) else "inline",
        "label_map": ctx.annotation.label_map(),
        "skipped_sets": list(ctx.annotation.skipped_sets),
        "min_score": cfg.annotation.min_score,
        "min_gap": cfg.annotation.min_gap,
    })


def run_composition(ctx: WalkthroughContext) -> None:
    """Cell-type proportions per sample and condition tests."""
    cfg = ctx.config
    engine = CompositionEngine(cfg.composition, ctx.stage_logger("composition"))
    ctx.composition = engine.execute(
        ctx.require_adata("composition"), cell_type_col=cfg.annotation.label_key
    )
    written = ctx.composition.export(cfg.tables_dir / "composition")
    ctx.outputs.update({f"composition/{k}": v for k, v in written.items()})
    ctx.record("composition", {
        "config": cfg.composition.to_dict(),
        "reference": ctx.composition.reference,
    })


def run_de(ctx: WalkthroughContext) -> None:
    """Case vs reference DE within every cell type."""
    cfg = ctx.config
    adata = ctx.require_adata("de")
    condition_key = cfg.de.condition_key
    if condition_key not in adata.obs.columns:
        raise StageSkipped(f"obs['{condition_key}'] not present")
    if adata.obs[condition_key].nunique() < 2:
        raise StageSkipped(f"only one condition in obs['{condition_key}']")

    runner = ConditionDERunner(cfg.de, ctx.stage_logger("de"))
    ctx.de_result = runner.run(adata)
    written = export_de_tables(ctx.de_result, cfg.tables_dir / "de")
    ctx.outputs["de/combined"] = written["combined"]
    ctx.outputs["de/summary"] = written["summary"]
    ctx.record("de", {
        "config": cfg.de.to_dict(),
        "case": ctx.de_result.case,
        "reference": ctx.de_result.reference,
        "tested": sorted(ctx.de_result.tables),
        "skipped": ctx.de_result.skipped,
        "failed": ctx.de_result.failed,
    })


def _de_result(ctx: WalkthroughContext) -> Any:
    """In-memory DE result, or the one exported by an earlier run."""
    if ctx.de_result is not None:
        return ctx.de_result
    de_dir = ctx.config.tables_dir / "de"
    try:
        result = load_de_tables(
            de_dir,
            padj_threshold=ctx.config.de.padj_threshold,
            logfc_threshold=ctx.config.de.logfc_threshold,
        )
    except FileNotFoundError:
        return None
    try:
        params = read_provenance(ctx.adata, "de")["params"]
        result.case = params.get("case", "")
        result.reference = params.get("reference", "")
    except KeyError:
        pass
    ctx.de_result = result
    return result


def run_enrichment(ctx: WalkthroughContext) -> None:
    """GO enrichment of each cell type's significant genes."""
    cfg = ctx.config
    adata = ctx.require_adata("enrichment")
    de_result = _de_result(ctx)
    if de_result is None or not de_result.tables:
        raise StageSkipped("no DE results to enrich")

    enricher = GOEnricher(cfg.enrichment, ctx.stage_logger("enrichment"))
    background = AnnotationEngine.panel_genes(adata)
    ctx.enrichment = enricher.enrich_de_result(de_result, background=background)
    path = write_dataframe(
        ctx.enrichment.combined(), cfg.tables_dir / "enrichment" / ENRICHMENT_TABLE_NAME
    )
    ctx.outputs["enrichment"] = path
    ctx.record("enrichment", {
        "config": cfg.enrichment.to_dict() if not isinstance(cfg.enrichment.gene_sets, dict)
        else {**cfg.enrichment.to_dict(), "gene_sets": "inline"},
        "enriched": sorted(ctx.enrichment.tables),
        "skipped": ctx.enrichment.skipped,
        "failed": ctx.enrichment.failed,
    })


def _enrichment_result(ctx: WalkthroughContext) -> Any:
    if ctx.enrichment is not None:
        return ctx.enrichment
    path = ctx.config.tables_dir / "enrichment" / ENRICHMENT_TABLE_NAME
    if not path.exists():
        return None
    combined = pd.read_csv(path)
    if combined.empty:
        return EnrichmentResult(direction=ctx.config.enrichment.direction,
                                cutoff=ctx.config.enrichment.cutoff)
    return EnrichmentResult.from_combined(
        combined,
        direction=ctx.config.enrichment.direction,
        cutoff=ctx.config.enrichment.cutoff,
    )


def run_figures(ctx: WalkthroughContext) -> None:
    """Per-stage plots and the composite summary figure."""
    cfg = ctx.config
    logger = ctx.stage_logger("figures")
    adata = ctx.require_adata("figures")
    label_key = cfg.annotation.label_key

    composition = ctx.composition
    if composition is None and label_key in adata.obs.columns:
        composition = CompositionEngine(cfg.composition, logger).execute(
            adata, cell_type_col=label_key
        )
    de_result = _de_result(ctx)
    enrichment = _enrichment_result(ctx)

    cluster_keys = None
    if ctx.clustering is not None:
        cluster_keys = [r.cluster_key for r in ctx.clustering.results.values()]
    else:
        cluster_keys = [c for c in adata.obs.columns if f"{cfg.clustering.method}_res_" in c]

    if cfg.figures.stage_plots:
        written = write_stage_plots(
            adata,
            cfg.figures_dir,
            config=cfg.figures,
            composition=composition,
            de_result=de_result,
            enrichment_result=enrichment,
            sample_key=cfg.sample_key,
            condition_key=cfg.condition_key,
            cell_type_key=label_key,
            cluster_keys=cluster_keys,
            n_pcs=ctx.n_pcs or None,
        )
        ctx.outputs.update({f"figures/{k}": v for k, v in written.items()})

        if ctx.marker_sets and "cluster" in adata.obs.columns:
            markers = {ms.label: list(ms.resolved_markers) for ms in ctx.marker_sets if not ms.is_empty}
            path = plot_marker_dotplot(
                adata,
                markers,
                groupby="cluster",
                output_path=cfg.figures_dir / f"marker_dotplot.{cfg.figures.fmt}",
                dpi=cfg.figures.dpi,
            )
            if path is not None:
                ctx.outputs["figures/marker_dotplot"] = path

    summary_path = cfg.figures_dir / f"summary_figure.{cfg.figures.fmt}"
    build_composite_figure(
        adata,
        composition=composition,
        de_result=de_result,
        enrichment_result=enrichment,
        path=summary_path,
        cell_type_key=label_key,
        condition_key=cfg.condition_key,
        volcano_category=cfg.figures.volcano_category,
        top_terms=cfg.figures.top_terms,
        dpi=cfg.figures.dpi,
    )
    ctx.outputs["figures/summary"] = summary_path
    ctx.record("figures", {"config": cfg.figures.to_dict(), "summary": str(summary_path)})


# ----------------------------------------------------------------------
# Assembly
# ----------------------------------------------------------------------

WALKTHROUGH_STAGES = [
    Stage("load", "Load data", run_load, [], False,
          "Read the dataset and join sample metadata"),
    Stage("qc", "Quality control", run_qc, ["load"], False,
          "QC metrics; filter cells and genes"),
    Stage("normalize", "Normalization", run_normalize, ["qc"], False,
          "Library-size normalization and log1p"),
    Stage("features", "Feature selection", run_features, ["normalize"], False,
          "Highly variable genes"),
    Stage("scale", "Scaling", run_scale, ["features"], False,
          "Regress out covariates and z-score"),
    Stage("pca", "PCA", run_pca, ["scale"], False,
          "Principal components and elbow suggestion"),
    Stage("integrate", "Batch integration", run_integrate, ["pca"], False,
          "Harmony or ComBat across batches"),
    Stage("cluster", "Clustering", run_cluster, ["integrate"], False,
          "Neighbour graph, clustering per resolution, UMAP, markers"),
    Stage("annotate", "Annotation", run_annotate, ["cluster"], False,
          "Marker scores and cluster labels"),
    Stage("composition", "Composition", run_composition, ["annotate"], False,
          "Cell-type proportions and condition tests"),
    Stage("de", "Differential expression", run_de, ["composition"], True,
          "Case vs reference within each cell type"),
    Stage("enrichment", "GO enrichment", run_enrichment, ["de"], True,
          "GO terms for significant genes"),
    Stage("figures", "Figures", run_figures, ["enrichment"], False,
          "Diagnostic plots and composite figure"),
]

STAGE_ORDER = [stage.stage_id for stage in WALKTHROUGH_STAGES]


def build_walkthrough(
    config: WalkthroughConfig,
    logger: Optional[PipelineLogger] = None,
) -> PipelineExecutor:
    """Register the walkthrough stages on a new executor.

    The state file lives in ``<output_dir>/checkpoints``; h5ad checkpoints
    are written there only when ``config.checkpoint_h5ad`` is set.
    """
    executor = PipelineExecutor(
        logger=logger,
        state_file=config.checkpoint_dir / "state.json",
        checkpoint_dir=config.checkpoint_dir if config.checkpoint_h5ad else None,
    )
    for stage in WALKTHROUGH_STAGES:
        executor.register(stage)
    return executor


def run_walkthrough(
    config: WalkthroughConfig,
    adata: Any = None,
    start_stage: Optional[str] = None,
    end_stage: Optional[str] = None,
    dry_run: bool = False,
    resume: bool = False,
    force: bool = False,
    console: bool = True,
) -> WalkthroughContext:
    """Run the walkthrough and return the final context.

    Parameters
    ----------
    config : WalkthroughConfig
        Run configuration
    adata : AnnData, optional
        In-memory dataset used instead of ``config.input``
    start_stage, end_stage : str, optional
        Limit the run to a slice of the stage order
    dry_run : bool
        Log the plan only
    resume : bool
        Skip completed stages and reload the last h5ad checkpoint
    force : bool
        Discard the checkpoint state
    console : bool
        Log to stdout as well as to the run log file

    Returns
    -------
    WalkthroughContext
        Context holding the AnnData and every stage result
    """
    run_logger = PipelineLogger(config.logs_dir, log_level=config.log_level, console=console)
    run_logger.setup()
    executor = build_walkthrough(config, run_logger)
    context = WalkthroughContext(config=config, adata=adata)

    try:
        executed = executor.run(
            context,
            start_stage=start_stage,
            end_stage=end_stage,
            dry_run=dry_run,
            force=force,
            resume=resume,
        )
        if executed and context.adata is not None:
            final_path = config.output_path / "walkthrough.h5ad"
            context.adata.write_h5ad(final_path)
            context.outputs["adata"] = final_path
            run_logger.log_info(f"Wrote {final_path}")
    finally:
        context.close_loggers()
        run_logger.close()
    return context
