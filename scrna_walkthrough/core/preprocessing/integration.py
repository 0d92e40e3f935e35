"""Batch integration of the PCA embedding.

Harmony (harmonypy) corrects the embedding directly and writes ``X_pca_harmony``;
ComBat corrects expression values, after which PCA is recomputed in
place. Downstream stages read the representation named in
:class:`IntegrationResult`.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import numpy as np
import pandas as pd

from ...utils.stats import shannon_entropy
from .config import IntegrationConfig


INTEGRATION_METHODS = ("harmony", "combat", "none")


@dataclass
class IntegrationResult:
    """Result from batch integration.

    Attributes
    ----------
    method : str
        Method that was applied ("none" when skipped)
    batch_key : str
        obs column holding batch labels
    n_batches : int
        Number of distinct batches
    use_rep : str
        obsm key downstream stages should use
    mixing_before : float, optional
        Batch-mixing entropy on the uncorrected embedding
    mixing_after : float, optional
        Batch-mixing entropy on the corrected embedding
    skipped : bool
        True when integration was not needed
    """

    method: str = "none"
    batch_key: str = "sample_id"
    n_batches: int = 0
    use_rep: str = "X_pca"
    mixing_before: Optional[float] = None
    mixing_after: Optional[float] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "method": self.method,
            "batch_key": self.batch_key,
            "n_batches": self.n_batches,
            "use_rep": self.use_rep,
            "mixing_before": self.mixing_before,
            "mixing_after": self.mixing_after,
            "skipped": self.skipped,
        }


def compute_batch_mixing(
    adata: Any,  # AnnData
    batch_key: str,
    use_rep: str = "X_pca",
    k: int = 30,
) -> float:
    """Mean normalized entropy of batch labels among each cell's neighbours.

    For every cell the batch labels of its ``k`` nearest neighbours in
    ``obsm[use_rep]`` are counted and their Shannon entropy is divided by
    log(n_batches). A value of 1.0 means neighbourhoods are as mixed as
    possible; 0.0 means every neighbourhood is a single batch.

    Parameters
    ----------
    adata : AnnData
        AnnData with an embedding in ``obsm``
    batch_key : str
        obs column holding batch labels
    use_rep : str
        obsm key of the embedding
    k : int
        Number of neighbours (excluding the cell itself)

    Returns
    -------
    float
        Mean normalized entropy; 0.0 for a single batch

    Raises
    ------
    KeyError
        If ``batch_key`` or ``use_rep`` is missing
    """
    from sklearn.neighbors import NearestNeighbors

    if batch_key not in adata.obs.columns:
        raise KeyError(f"Batch key '{batch_key}' not found in adata.obs")
    if use_rep not in adata.obsm:
        raise KeyError(f"Representation '{use_rep}' not found in adata.obsm")

    codes, uniques = pd.factorize(adata.obs[batch_key].astype(str))
    n_batches = len(uniques)
    if n_batches < 2 or adata.n_obs < 3:
        return 0.0

    n_neighbors = min(k + 1, adata.n_obs)
    embedding = np.asarray(adata.obsm[use_rep])
    nn = NearestNeighbors(n_neighbors=n_neighbors).fit(embedding)
    _, indices = nn.kneighbors(embedding)

    entropies = np.empty(adata.n_obs)
    for i, row in enumerate(indices):
        neighbours = row[row != i][: n_neighbors - 1]
        counts = np.bincount(codes[neighbours], minlength=n_batches)
        entropies[i] = shannon_entropy(counts, normalize=True)
    return float(entropies.mean())


class BatchIntegrator:
    """Batch integration with Harmony or ComBat.

    Parameters
    ----------
    config : IntegrationConfig, optional
        Integration configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> integrator = BatchIntegrator(IntegrationConfig(method="harmony"))
    >>> result = integrator.integrate(adata)
    >>> sc.pp.neighbors(adata, use_rep=result.use_rep)
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or IntegrationConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.method not in INTEGRATION_METHODS:
            raise ValueError(
                f"Unknown integration method: {self.config.method} "
                f"(expected one of {INTEGRATION_METHODS})"
            )

    def _check_dependencies(self) -> None:
        """Check for the Harmony backend."""
        try:
            import harmonypy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Harmony integration requires harmonypy. "
                "Install with: pip install harmonypy"
            )

    def integrate(self, adata: Any) -> IntegrationResult:
        """Correct batch effects in place.

        Parameters
        ----------
        adata : AnnData
            AnnData with ``obsm[basis]`` and the batch column

        Returns
        -------
        IntegrationResult
            Which representation to use downstream and mixing diagnostics

        Raises
        ------
        ValueError
            If the PCA embedding or batch column is missing
        """
        cfg = self.config
        if cfg.basis not in adata.obsm:
            raise ValueError(
                f"obsm['{cfg.basis}'] missing; run the pca stage before integrating"
            )
        if cfg.batch_key not in adata.obs.columns:
            raise ValueError(
                f"Batch key '{cfg.batch_key}' not found in adata.obs"
            )

        n_batches = int(adata.obs[cfg.batch_key].nunique())
        result = IntegrationResult(
            method=cfg.method,
            batch_key=cfg.batch_key,
            n_batches=n_batches,
            use_rep=cfg.basis,
        )

        if cfg.method == "none" or n_batches < 2:
            if n_batches < 2 and cfg.method != "none":
                self.logger.info(
                    "Only %d batch in '%s'; skipping %s integration",
                    n_batches,
                    cfg.batch_key,
                    cfg.method,
                )
            result.method = "none"
            result.skipped = True
            return result

        result.mixing_before = compute_batch_mixing(
            adata, cfg.batch_key, use_rep=cfg.basis, k=cfg.mixing_k
        )

        if cfg.method == "harmony":
            result.use_rep = self._run_harmony(adata)
        else:
            result.use_rep = self._run_combat(adata)

        result.mixing_after = compute_batch_mixing(
            adata, cfg.batch_key, use_rep=result.use_rep, k=cfg.mixing_k
        )
        self.logger.info(
            "Batch mixing (%s, %d batches): %.3f -> %.3f",
            cfg.method,
            n_batches,
            result.mixing_before,
            result.mixing_after,
        )
        return result

    def _run_harmony(self, adata: Any) -> str:
        self._check_dependencies()
        import harmonypy

        cfg = self.config
        adjusted = f"{cfg.basis}_harmony"
        self.logger.info(
            "Running Harmony on %s (batch_key=%s, max_iter=%d)",
            cfg.basis,
            cfg.batch_key,
            cfg.max_iter_harmony,
        )
        embedding = np.asarray(adata.obsm[cfg.basis], dtype=np.float64)
        meta = pd.DataFrame({cfg.batch_key: adata.obs[cfg.batch_key].astype(str).to_numpy()})
        ho = harmonypy.run_harmony(
            embedding,
            meta,
            cfg.batch_key,
            max_iter_harmony=cfg.max_iter_harmony,
            random_state=cfg.random_seed,
        )
        # Z_corr is cells x PCs in harmonypy >= 0.2, PCs x cells before
        corrected = np.asarray(ho.Z_corr)
        if corrected.shape[0] != adata.n_obs:
            corrected = corrected.T
        adata.obsm[adjusted] = corrected
        return adjusted

    def _run_combat(self, adata: Any) -> str:
        import scanpy as sc

        cfg = self.config
        n_comps = int(np.asarray(adata.obsm[cfg.basis]).shape[1])
        self.logger.info("Running ComBat on expression values (batch_key=%s)", cfg.batch_key)
        sc.pp.combat(adata, key=cfg.batch_key)

        use_pcs = min(n_comps, max(adata.n_vars - 1, 1), max(adata.n_obs - 1, 1))
        sc.tl.pca(
            adata,
            n_comps=use_pcs,
            svd_solver="arpack",
            random_state=cfg.random_seed,
        )
        self.logger.info("Recomputed PCA on ComBat-corrected values (%d PCs)", use_pcs)
        return "X_pca"
