"""GO over-representation analysis of DE gene lists with gseapy.

Local gene sets (a dict or a GMT file) go through ``gseapy.enrich``;
Enrichr library names go through ``gseapy.enrichr``. Result columns are
renamed to snake_case so downstream tables and plots do not depend on
which backend produced them.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import logging

import pandas as pd

from .config import EnrichmentConfig


ENRICHMENT_COLUMNS = [
    "gene_set",
    "term",
    "overlap",
    "pval",
    "pval_adj",
    "odds_ratio",
    "combined_score",
    "genes",
]

_RENAME = {
    "Gene_set": "gene_set",
    "Term": "term",
    "Overlap": "overlap",
    "P-value": "pval",
    "Adjusted P-value": "pval_adj",
    "Odds Ratio": "odds_ratio",
    "Combined Score": "combined_score",
    "Genes": "genes",
}


def normalize_enrichment_table(results: pd.DataFrame) -> pd.DataFrame:
    """Rename gseapy result columns and sort by adjusted p-value."""
    df = results.rename(columns=_RENAME)
    for col in ENRICHMENT_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA
    return df[ENRICHMENT_COLUMNS].sort_values("pval_adj").reset_index(drop=True)


@dataclass
class EnrichmentResult:
    """Per-category enrichment tables.

    Attributes
    ----------
    tables : Dict[str, pd.DataFrame]
        Map of category to enrichment table (``ENRICHMENT_COLUMNS``)
    skipped : Dict[str, str]
        Categories not tested, with the reason
    failed : Dict[str, str]
        Categories whose enrichment raised, with the error message
    direction : str
        DE direction the gene lists came from
    cutoff : float
        Adjusted p-value cutoff for ``significant_terms``
    """

    tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    direction: str = "up"
    cutoff: float = 0.05

    def combined(self) -> pd.DataFrame:
        """All categories stacked with a ``cell_type`` column."""
        frames = [
            df.assign(cell_type=category)
            for category, df in sorted(self.tables.items())
        ]
        if not frames:
            return pd.DataFrame(columns=ENRICHMENT_COLUMNS + ["cell_type"])
        return pd.concat(frames, ignore_index=True)

    @classmethod
    def from_combined(
        cls,
        combined: pd.DataFrame,
        direction: str = "up",
        cutoff: float = 0.05,
    ) -> "EnrichmentResult":
        """Rebuild a result from the table written by :meth:`combined`."""
        if "cell_type" not in combined.columns:
            raise ValueError("Enrichment table has no 'cell_type' column")
        tables = {
            str(category): normalize_enrichment_table(df.drop(columns="cell_type"))
            for category, df in combined.groupby(combined["cell_type"].astype(str))
        }
        return cls(tables=tables, direction=direction, cutoff=cutoff)

    def significant_terms(self, top_n: Optional[int] = None) -> pd.DataFrame:
        """Terms passing the cutoff, best ``top_n`` per category."""
        combined = self.combined()
        passed = combined[combined["pval_adj"].astype(float) <= self.cutoff]
        if top_n is not None:
            passed = passed.groupby("cell_type", sort=True).head(top_n)
        return passed.reset_index(drop=True)


class GOEnricher:
    """Over-representation analysis of gene lists.

    Parameters
    ----------
    config : EnrichmentConfig, optional
        Enrichment configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> enricher = GOEnricher(EnrichmentConfig(gene_sets="GO_Biological_Process_2023"))
    >>> table = enricher.enrich_gene_list(["CD3D", "CD3E", "LCK", "ZAP70", "CD247"])
    >>> result = enricher.enrich_de_result(de_result, background=adata.var_names)
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EnrichmentConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import gseapy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "GO enrichment requires gseapy. Install with: pip install gseapy"
            )

    def _gene_sets(self) -> Any:
        gene_sets = self.config.gene_sets
        if isinstance(gene_sets, str) and gene_sets.lower().endswith(".gmt"):
            if not Path(gene_sets).exists():
                raise FileNotFoundError(f"Gene set file not found: {gene_sets}")
        return gene_sets

    def enrich_gene_list(
        self,
        genes: Sequence[str],
        background: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """Run over-representation analysis on one gene list.

        Parameters
        ----------
        genes : Sequence[str]
            Query genes
        background : Sequence[str], optional
            Background genes (e.g. every gene measured)

        Returns
        -------
        pd.DataFrame
            Columns of ``ENRICHMENT_COLUMNS``, sorted by adjusted p-value
        """
        import gseapy as gp

        cfg = self.config
        gene_list = [str(g) for g in genes]
        bg = [str(g) for g in background] if background is not None else None

        if cfg.is_local:
            enr = gp.enrich(
                gene_list=gene_list,
                gene_sets=self._gene_sets(),
                background=bg,
                outdir=None,
                cutoff=cfg.cutoff,
                verbose=False,
            )
        else:
            enr = gp.enrichr(
                gene_list=gene_list,
                gene_sets=cfg.gene_sets,
                organism=cfg.organism,
                background=bg,
                outdir=None,
                cutoff=cfg.cutoff,
            )

        results = getattr(enr, "results", None)
        if results is None or len(results) == 0:
            return pd.DataFrame(columns=ENRICHMENT_COLUMNS)
        return normalize_enrichment_table(results)

    def enrich_de_result(
        self,
        de_result: Any,  # ConditionDEResult
        direction: Optional[str] = None,
        background: Optional[Sequence[str]] = None,
    ) -> EnrichmentResult:
        """Enrich the significant genes of every DE category.

        A failure for one category is logged and that category is left
        out; the remaining categories continue.

        Parameters
        ----------
        de_result : ConditionDEResult
            Result of the DE stage
        direction : str, optional
            "up", "down" or "both"; config default if None
        background : Sequence[str], optional
            Background genes, used when ``config.background == "panel"``

        Returns
        -------
        EnrichmentResult
            Tables for enriched categories plus skipped and failed ones
        """
        cfg = self.config
        direction = direction if direction is not None else cfg.direction
        if cfg.background != "panel":
            background = None

        result = EnrichmentResult(direction=direction, cutoff=cfg.cutoff)
        gene_lists: Dict[str, List[str]] = de_result.significant(direction)

        self.logger.info(
            "GO enrichment of %s-regulated genes for %d categories (gene_sets=%s)",
            direction,
            len(gene_lists),
            cfg.gene_sets if not isinstance(cfg.gene_sets, dict) else "inline",
        )
        for category in sorted(gene_lists):
            genes = gene_lists[category]
            if len(genes) < cfg.min_genes:
                reason = f"{len(genes)} significant genes (< {cfg.min_genes})"
                result.skipped[category] = reason
                self.logger.info("Skipping enrichment for %s: %s", category, reason)
                continue
            try:
                table = self.enrich_gene_list(genes, background=background)
            except Exception as e:
                self.logger.warning("Enrichment failed for %s: %s", category, str(e))
                result.failed[category] = str(e)
                continue

            result.tables[category] = table
            n_sig = int((table["pval_adj"].astype(float) <= cfg.cutoff).sum())
            self.logger.info(
                "Enrichment for %s: %d genes, %d terms (%d at padj <= %.2f)",
                category,
                len(genes),
                len(table),
                n_sig,
                cfg.cutoff,
            )
        return result
