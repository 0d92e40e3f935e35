"""Normalization, variable feature selection and scaling.

The three steps share one ``Normalizer`` because each depends on the
layers written by the previous one:

    counts  -> normalize_total + log1p -> layers["lognorm"], .raw
    lognorm -> highly_variable_genes   -> var["highly_variable"]
    lognorm -> regress_out + scale     -> layers["scaled"], .X
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import numpy as np
from scipy import sparse

from .config import NormalizationConfig


COUNTS_LAYER = "counts"
LOGNORM_LAYER = "lognorm"
SCALED_LAYER = "scaled"

HVG_FLAVORS = ("seurat", "cell_ranger", "seurat_v3")


@dataclass
class NormalizationResult:
    """Summary of the normalization stages.

    Attributes
    ----------
    target_sum : float
        Library size used by normalize_total
    n_hvg : int
        Number of highly variable genes selected
    hvg_genes : List[str]
        Names of the selected genes
    regressed : List[str]
        Covariates regressed out before scaling
    """

    target_sum: float = 1e4
    n_hvg: int = 0
    hvg_genes: List[str] = field(default_factory=list)
    regressed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "target_sum": self.target_sum,
            "n_hvg": self.n_hvg,
            "regressed": list(self.regressed),
        }


def _looks_like_counts(matrix: Any) -> bool:
    """True if the matrix holds non-negative integers."""
    values = matrix.data if sparse.issparse(matrix) else np.asarray(matrix).ravel()
    if values.size == 0:
        return True
    sample = values[: min(values.size, 10000)]
    return bool(np.all(sample >= 0) and np.allclose(sample, np.round(sample)))


class Normalizer:
    """Library-size normalization, HVG selection and scaling.

    Parameters
    ----------
    config : NormalizationConfig, optional
        Normalization configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> normalizer = Normalizer(NormalizationConfig(n_top_genes=3000))
    >>> normalizer.normalize(adata)
    >>> hvgs = normalizer.select_variable_features(adata)
    >>> normalizer.scale(adata)
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.result = NormalizationResult(target_sum=self.config.target_sum)

    def normalize(self, adata: Any) -> None:
        """Normalize counts to ``target_sum`` per cell and log1p transform.

        Raw counts are preserved in ``layers["counts"]``; the log values are
        written to ``.X``, ``layers["lognorm"]`` and frozen in ``.raw``.

        Raises
        ------
        ValueError
            If ``.X`` does not hold raw counts and no counts layer exists
        """
        import scanpy as sc

        if COUNTS_LAYER in adata.layers:
            adata.X = adata.layers[COUNTS_LAYER].copy()
        elif not _looks_like_counts(adata.X):
            raise ValueError(
                "adata.X does not look like raw counts and layers['counts'] is "
                "missing; normalize expects unnormalized UMI counts"
            )
        else:
            adata.layers[COUNTS_LAYER] = adata.X.copy()

        sc.pp.normalize_total(adata, target_sum=self.config.target_sum)
        sc.pp.log1p(adata)
        adata.layers[LOGNORM_LAYER] = adata.X.copy()
        adata.raw = adata

        self.logger.info(
            "Normalized %d cells to %.0f counts/cell and applied log1p",
            adata.n_obs,
            self.config.target_sum,
        )

    def select_variable_features(self, adata: Any) -> List[str]:
        """Flag highly variable genes in ``var["highly_variable"]``.

        Returns
        -------
        List[str]
            Names of the selected genes

        Raises
        ------
        ValueError
            If ``normalize`` has not run or the flavor is unknown
        """
        import scanpy as sc

        if LOGNORM_LAYER not in adata.layers:
            raise ValueError(
                "layers['lognorm'] missing; run the normalize stage before "
                "selecting variable features"
            )
        cfg = self.config
        if cfg.hvg_flavor not in HVG_FLAVORS:
            raise ValueError(
                f"Unknown HVG flavor: {cfg.hvg_flavor} (expected one of {HVG_FLAVORS})"
            )

        n_top = min(cfg.n_top_genes, adata.n_vars)
        if n_top < cfg.n_top_genes:
            self.logger.warning(
                "Requested %d HVGs but only %d genes available; using %d",
                cfg.n_top_genes,
                adata.n_vars,
                n_top,
            )

        batch_key = cfg.hvg_batch_key
        if batch_key and batch_key not in adata.obs.columns:
            self.logger.warning(
                "HVG batch key '%s' not in obs; selecting without batches", batch_key
            )
            batch_key = None

        kwargs: Dict[str, Any] = {
            "n_top_genes": n_top,
            "flavor": cfg.hvg_flavor,
            "batch_key": batch_key,
        }
        if cfg.hvg_flavor == "seurat_v3":
            kwargs["layer"] = COUNTS_LAYER
        else:
            kwargs["layer"] = LOGNORM_LAYER

        sc.pp.highly_variable_genes(adata, **kwargs)
        hvgs = adata.var_names[adata.var["highly_variable"].to_numpy()].tolist()

        self.result.n_hvg = len(hvgs)
        self.result.hvg_genes = hvgs
        self.logger.info(
            "Selected %d highly variable genes (flavor=%s, batch_key=%s)",
            len(hvgs),
            cfg.hvg_flavor,
            batch_key,
        )

        return hvgs

    def scale(self, adata: Any) -> Any:
        """Regress out covariates and z-score each gene.

        Returns
        -------
        AnnData
            The scaled object; a new HVG-only object when ``subset_hvg``
            is set, otherwise ``adata`` itself

        Raises
        ------
        ValueError
            If ``normalize`` has not run or a covariate is missing
        """
        import scanpy as sc

        if LOGNORM_LAYER not in adata.layers:
            raise ValueError(
                "layers['lognorm'] missing; run the normalize stage before scaling"
            )

        cfg = self.config
        if cfg.subset_hvg:
            if "highly_variable" not in adata.var.columns:
                raise ValueError(
                    "var['highly_variable'] missing; run the features stage "
                    "before scaling with subset_hvg"
                )
            adata = adata[:, adata.var["highly_variable"].to_numpy()].copy()

        adata.X = adata.layers[LOGNORM_LAYER].copy()

        missing = [key for key in cfg.regress_out if key not in adata.obs.columns]
        if missing:
            raise ValueError(f"Covariates to regress out not in obs: {missing}")
        if cfg.regress_out:
            self.logger.info("Regressing out %s", ", ".join(cfg.regress_out))
            sc.pp.regress_out(adata, keys=list(cfg.regress_out))
        self.result.regressed = list(cfg.regress_out)

        sc.pp.scale(adata, zero_center=True, max_value=cfg.scale_max_value)
        scaled = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X)
        adata.X = scaled
        adata.layers[SCALED_LAYER] = scaled.copy()

        self.logger.info(
            "Scaled %d genes (max_value=%.1f)", adata.n_vars, cfg.scale_max_value
        )
        return adata
