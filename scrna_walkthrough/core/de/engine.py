"""Differential expression between conditions within each cell type.

For every category of ``groupby`` (by default the annotated cell type)
the cells are subset and ``case`` is compared against ``reference`` with
``scanpy.tl.rank_genes_groups``. A failure of the statistical call for
one category is logged and that category is left out; the loop carries
on with the remaining categories.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging
import re
import time

import pandas as pd

from .config import DEConfig


DE_TABLE_COLUMNS = [
    "gene",
    "score",
    "logfoldchange",
    "pval",
    "pval_adj",
    "pct_case",
    "pct_reference",
    "cell_type",
]

COMBINED_TABLE_NAME = "de_by_cell_type.csv"
SUMMARY_TABLE_NAME = "de_summary.csv"

_RENAME = {
    "names": "gene",
    "scores": "score",
    "logfoldchanges": "logfoldchange",
    "pvals": "pval",
    "pvals_adj": "pval_adj",
    "pct_nz_group": "pct_case",
    "pct_nz_reference": "pct_reference",
}


@dataclass
class ConditionDEResult:
    """Result from per-category condition DE.

    Attributes
    ----------
    tables : Dict[str, pd.DataFrame]
        Map of category to DE table (``DE_TABLE_COLUMNS``)
    skipped : Dict[str, str]
        Categories not tested, with the reason
    failed : Dict[str, str]
        Categories whose test raised, with the error message
    case : str
        Tested condition
    reference : str
        Baseline condition
    padj_threshold : float
        Adjusted p-value cutoff used by ``significant``
    logfc_threshold : float
        Log fold change cutoff used by ``significant``
    elapsed_seconds : float
        Time taken for the loop
    """

    tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    case: str = ""
    reference: str = ""
    padj_threshold: float = 0.05
    logfc_threshold: float = 0.25
    elapsed_seconds: float = 0.0

    def combined(self) -> pd.DataFrame:
        """All categories stacked into one long table."""
        if not self.tables:
            return pd.DataFrame(columns=DE_TABLE_COLUMNS)
        return pd.concat(
            [self.tables[k] for k in sorted(self.tables)], ignore_index=True
        )

    def significant(self, direction: str = "up") -> Dict[str, List[str]]:
        """Significant genes per category, ordered by score.

        Parameters
        ----------
        direction : str
            "up" (higher in case), "down" (higher in reference) or "both"

        Returns
        -------
        Dict[str, List[str]]
            Map of category to gene names; every tested category is present
        """
        if direction not in ("up", "down", "both"):
            raise ValueError(f"direction must be 'up', 'down' or 'both', got {direction!r}")

        genes: Dict[str, List[str]] = {}
        for category, df in self.tables.items():
            passed = df[df["pval_adj"] < self.padj_threshold]
            if direction == "up":
                passed = passed[passed["logfoldchange"] >= self.logfc_threshold]
                passed = passed.sort_values("score", ascending=False)
            elif direction == "down":
                passed = passed[passed["logfoldchange"] <= -self.logfc_threshold]
                passed = passed.sort_values("score", ascending=True)
            else:
                passed = passed[passed["logfoldchange"].abs() >= self.logfc_threshold]
                passed = passed.reindex(passed["score"].abs().sort_values(ascending=False).index)
            genes[category] = passed["gene"].astype(str).tolist()
        return genes

    def summary(self) -> pd.DataFrame:
        """One row per category: status, genes tested and significant counts."""
        up = self.significant("up")
        down = self.significant("down")
        rows = []
        for category in sorted(self.tables):
            rows.append({
                "cell_type": category,
                "status": "tested",
                "n_genes": len(self.tables[category]),
                "n_up": len(up[category]),
                "n_down": len(down[category]),
                "reason": "",
            })
        for status, entries in (("skipped", self.skipped), ("failed", self.failed)):
            for category in sorted(entries):
                rows.append({
                    "cell_type": category,
                    "status": status,
                    "n_genes": 0,
                    "n_up": 0,
                    "n_down": 0,
                    "reason": entries[category],
                })
        return pd.DataFrame(rows, columns=["cell_type", "status", "n_genes", "n_up", "n_down", "reason"])

    @classmethod
    def from_combined(
        cls,
        combined: pd.DataFrame,
        case: str = "",
        reference: str = "",
        padj_threshold: float = 0.05,
        logfc_threshold: float = 0.25,
    ) -> "ConditionDEResult":
        """Rebuild a result from a combined long table (e.g. a saved CSV)."""
        missing = [c for c in DE_TABLE_COLUMNS if c not in combined.columns]
        if missing:
            raise ValueError(f"DE table missing columns: {missing}")
        tables = {
            str(category): df.reset_index(drop=True)
            for category, df in combined.groupby(combined["cell_type"].astype(str))
        }
        return cls(
            tables=tables,
            case=case,
            reference=reference,
            padj_threshold=padj_threshold,
            logfc_threshold=logfc_threshold,
        )


class ConditionDERunner:
    """Per-category DE runner comparing two conditions.

    Parameters
    ----------
    config : DEConfig, optional
        DE configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> runner = ConditionDERunner(DEConfig(case="tumor", reference="normal"))
    >>> result = runner.run(adata)
    >>> result.significant("up")["T cell"][:10]
    """

    def __init__(
        self,
        config: Optional[DEConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DEConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Differential expression requires scanpy. "
                "Install with: pip install scanpy"
            )

    def resolve_conditions(self, adata: Any) -> Tuple[str, str]:
        """Return (case, reference), filling in defaults from the data.

        Raises
        ------
        ValueError
            If a condition is unknown, the two are equal, or ``case`` is
            ambiguous
        """
        cfg = self.config
        conditions = sorted(adata.obs[cfg.condition_key].astype(str).unique())
        reference = str(cfg.reference) if cfg.reference is not None else conditions[0]
        if cfg.case is not None:
            case = str(cfg.case)
        else:
            others = [c for c in conditions if c != reference]
            if len(others) != 1:
                raise ValueError(
                    f"Cannot infer the case condition from {conditions}; set de.case"
                )
            case = others[0]

        for label in (case, reference):
            if label not in conditions:
                raise ValueError(
                    f"Condition '{label}' not found in obs['{cfg.condition_key}'] "
                    f"(available: {conditions})"
                )
        if case == reference:
            raise ValueError(f"Case and reference are both '{case}'")
        return case, reference

    def _test_category(self, subset: Any, case: str, reference: str) -> pd.DataFrame:
        import scanpy as sc

        cfg = self.config
        subset.obs[cfg.condition_key] = subset.obs[cfg.condition_key].astype(str).astype("category")
        sc.tl.rank_genes_groups(
            subset,
            groupby=cfg.condition_key,
            groups=[case],
            reference=reference,
            method=cfg.method,
            layer=cfg.layer,
            use_raw=False,
            tie_correct=cfg.tie_correct,
            key_added="condition_de",
            pts=True,
        )
        df = sc.get.rank_genes_groups_df(subset, group=case, key="condition_de")
        df = df.dropna(subset=["names"]).rename(columns=_RENAME)
        # logreg reports coefficients only
        for col in ("pct_case", "pct_reference", "logfoldchange", "pval", "pval_adj"):
            if col not in df.columns:
                df[col] = float("nan")
        return df

    def run(self, adata: Any) -> ConditionDEResult:
        """Compare ``case`` against ``reference`` within every category.

        Parameters
        ----------
        adata : AnnData
            Annotated AnnData with the DE layer

        Returns
        -------
        ConditionDEResult
            Tables for tested categories plus skipped and failed ones

        Raises
        ------
        ValueError
            If the grouping column, condition column or layer is missing
        """
        cfg = self.config
        for col, stage in ((cfg.groupby, "annotate"), (cfg.condition_key, "load")):
            if col not in adata.obs.columns:
                raise ValueError(f"obs['{col}'] missing; run the {stage} stage before DE")
        if cfg.layer not in adata.layers:
            raise ValueError(
                f"layers['{cfg.layer}'] missing; run the normalize stage before DE"
            )

        case, reference = self.resolve_conditions(adata)
        result = ConditionDEResult(
            case=case,
            reference=reference,
            padj_threshold=cfg.padj_threshold,
            logfc_threshold=cfg.logfc_threshold,
        )

        groups = adata.obs[cfg.groupby].astype(str)
        conditions = adata.obs[cfg.condition_key].astype(str)
        categories = sorted(groups.unique())
        self.logger.info(
            "Condition DE (%s vs %s, method=%s, layer=%s) across %d categories of '%s'",
            case,
            reference,
            cfg.method,
            cfg.layer,
            len(categories),
            cfg.groupby,
        )

        start = time.time()
        for category in categories:
            in_category = (groups == category).to_numpy()
            n_case = int((in_category & (conditions == case).to_numpy()).sum())
            n_ref = int((in_category & (conditions == reference).to_numpy()).sum())
            if n_case < cfg.min_cells_per_group or n_ref < cfg.min_cells_per_group:
                reason = (
                    f"too few cells (case={n_case}, reference={n_ref}, "
                    f"min={cfg.min_cells_per_group})"
                )
                result.skipped[category] = reason
                self.logger.info("Skipping %s: %s", category, reason)
                continue

            mask = in_category & conditions.isin([case, reference]).to_numpy()
            try:
                df = self._test_category(adata[mask].copy(), case, reference)
                df["cell_type"] = category
                table = df[DE_TABLE_COLUMNS].reset_index(drop=True)
            except Exception as e:
                self.logger.warning("DE failed for %s: %s", category, str(e))
                result.failed[category] = str(e)
                continue

            result.tables[category] = table
            self.logger.debug(
                "DE for %s: %d genes (case=%d, reference=%d cells)",
                category,
                len(df),
                n_case,
                n_ref,
            )

        result.elapsed_seconds = time.time() - start
        self.logger.info(
            "Condition DE completed in %.1f seconds: %d tested, %d skipped, %d failed",
            result.elapsed_seconds,
            len(result.tables),
            len(result.skipped),
            len(result.failed),
        )
        return result


def _safe_name(label: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", str(label)).strip("_") or "category"


def export_de_tables(result: ConditionDEResult, output_dir: Path) -> Dict[str, Path]:
    """Write the combined table, the summary and one CSV per category.

    Parameters
    ----------
    result : ConditionDEResult
        DE result
    output_dir : Path
        Destination directory (created if needed)

    Returns
    -------
    Dict[str, Path]
        Map of "combined", "summary" and each category to its file
    """
    output_dir = Path(output_dir)
    per_category_dir = output_dir / "de_per_cell_type"
    per_category_dir.mkdir(parents=True, exist_ok=True)

    written: Dict[str, Path] = {}
    combined_path = output_dir / COMBINED_TABLE_NAME
    result.combined().to_csv(combined_path, index=False)
    written["combined"] = combined_path

    summary_path = output_dir / SUMMARY_TABLE_NAME
    result.summary().to_csv(summary_path, index=False)
    written["summary"] = summary_path

    for category, df in result.tables.items():
        path = per_category_dir / f"de_{_safe_name(category)}.csv"
        df.to_csv(path, index=False)
        written[category] = path
    return written


def load_de_tables(
    output_dir: Path,
    padj_threshold: float = 0.05,
    logfc_threshold: float = 0.25,
) -> ConditionDEResult:
    """Reload a result written by :func:`export_de_tables`.

    Raises
    ------
    FileNotFoundError
        If the combined table does not exist
    """
    path = Path(output_dir) / COMBINED_TABLE_NAME
    if not path.exists():
        raise FileNotFoundError(f"DE table not found: {path}")
    combined = pd.read_csv(path)
    return ConditionDEResult.from_combined(
        combined,
        padj_threshold=padj_threshold,
        logfc_threshold=logfc_threshold,
    )
