"""Clustering engine for cell population identification.

Provides PCA, the neighbour graph, Leiden (or Louvain) clustering over a
grid of resolutions and UMAP, with optional GPU acceleration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from .config import ClusteringConfig


# GPU acceleration support (optional)
try:
    import rapids_singlecell as rsc
    import cupy as cp
    GPU_AVAILABLE = cp.cuda.is_available()
except ImportError:
    GPU_AVAILABLE = False
    rsc = None
    cp = None


SELECTED_CLUSTER_KEY = "cluster"


def resolution_key(resolution: float, method: str = "leiden") -> str:
    """obs column holding the labels for one resolution (e.g. leiden_res_0.60)."""
    return f"{method}_res_{float(resolution):.2f}"


@dataclass
class ClusteringResult:
    """Result from clustering at one resolution.

    Attributes
    ----------
    resolution : float
        Resolution parameter
    cluster_key : str
        Key in adata.obs containing cluster assignments
    n_clusters : int
        Number of clusters found
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    silhouette : float, optional
        Silhouette score on the clustering representation
    """

    resolution: float = 0.6
    cluster_key: str = "leiden_res_0.60"
    n_clusters: int = 0
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    silhouette: Optional[float] = None


@dataclass
class ClusteringSummary:
    """Summary of a full clustering run.

    Attributes
    ----------
    use_rep : str
        obsm key the graph was built on
    n_pcs : int
        Number of principal components used
    suggested_n_pcs : int
        Elbow suggestion from the variance ratio
    results : Dict[float, ClusteringResult]
        Per-resolution results
    selected_resolution : float
        Resolution copied to ``obs["cluster"]``
    """

    use_rep: str = "X_pca"
    n_pcs: int = 0
    suggested_n_pcs: int = 0
    results: Dict[float, ClusteringResult] = field(default_factory=dict)
    selected_resolution: float = 0.6

    def to_frame(self) -> pd.DataFrame:
        """One row per resolution: clusters, silhouette and selection flag."""
        rows = []
        for res in sorted(self.results):
            r = self.results[res]
            rows.append({
                "resolution": res,
                "cluster_key": r.cluster_key,
                "n_clusters": r.n_clusters,
                "silhouette": r.silhouette,
                "selected": res == self.selected_resolution,
            })
        return pd.DataFrame(rows)


class ClusteringEngine:
    """Clustering engine with Leiden algorithm and GPU support.

    Provides the core clustering pipeline: PCA → neighbors → clustering
    at each resolution → UMAP, with optional GPU acceleration via
    rapids-singlecell.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_walkthrough.core.clustering import ClusteringEngine, ClusteringConfig
    >>> engine = ClusteringEngine(ClusteringConfig(resolution=0.4))
    >>> summary = engine.run(adata, use_rep="X_pca_harmony")
    >>> adata.obs["cluster"].value_counts()
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy. Install with: pip install scanpy"
            )
        if self.config.method == "louvain":
            try:
                import louvain  # noqa: F401
            except ImportError:
                raise RuntimeError(
                    "Louvain clustering requires the louvain package. "
                    "Install with: pip install 'scrna-walkthrough[louvain]'"
                )

    @property
    def gpu_available(self) -> bool:
        """Check if GPU acceleration is available."""
        return GPU_AVAILABLE

    @property
    def _use_gpu(self) -> bool:
        return bool(GPU_AVAILABLE and self.config.use_gpu and self.config.method == "leiden")

    def subset_adata(
        self,
        adata: Any,  # AnnData
        sample_ids: Optional[Sequence[str]] = None,
        patients: Optional[Sequence[str]] = None,
        tissues: Optional[Sequence[str]] = None,
        focus_clusters: Optional[Sequence[str]] = None,
        focus_column: str = SELECTED_CLUSTER_KEY,
        sample_key: str = "sample_id",
        patient_key: str = "patient",
        tissue_key: str = "tissue",
    ) -> Any:
        """Subset AnnData by sample, patient, tissue, or cluster filters.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object
        sample_ids : Sequence[str], optional
            Sample IDs to keep
        patients : Sequence[str], optional
            Patient IDs to keep
        tissues : Sequence[str], optional
            Tissue / condition labels to keep
        focus_clusters : Sequence[str], optional
            Cluster IDs to keep
        focus_column : str
            Column to use for cluster filtering

        Returns
        -------
        AnnData
            Subset AnnData (copy if filtered, original if no filters)

        Raises
        ------
        ValueError
            If filters remove all cells
        """
        mask = np.ones(adata.n_obs, dtype=bool)

        filters = [
            (sample_ids, sample_key),
            (patients, patient_key),
            (tissues, tissue_key),
            (focus_clusters, focus_column),
        ]
        for values, column in filters:
            if not values:
                continue
            if column not in adata.obs:
                self.logger.warning(
                    "Column %s not present in obs; ignoring its filter", column
                )
                continue
            self.logger.info("Applying %s filter (%d values)", column, len(values))
            mask &= adata.obs[column].astype(str).isin({str(v) for v in values}).to_numpy()

        if mask.sum() == 0:
            raise ValueError("Subset filters removed all cells; relax filter arguments.")

        if mask.all():
            return adata

        self.logger.info(
            "Subsetting AnnData: %d -> %d cells after filters",
            adata.n_obs,
            int(mask.sum()),
        )
        return adata[mask].copy()

    def run_pca(self, adata: Any, n_pcs: Optional[int] = None) -> int:
        """Run PCA on the scaled highly variable genes.

        Returns
        -------
        int
            Number of components actually computed

        Raises
        ------
        ValueError
            If the scale stage has not run
        """
        import scanpy as sc

        if "scaled" not in adata.layers:
            raise ValueError(
                "layers['scaled'] missing; run the scale stage before PCA"
            )

        n_pcs = n_pcs if n_pcs is not None else self.config.n_pcs
        use_pcs = min(n_pcs, max(adata.n_vars - 1, 1), max(adata.n_obs - 1, 1))
        if use_pcs < n_pcs:
            self.logger.info("Reducing n_pcs from %d to %d for data shape", n_pcs, use_pcs)

        sc.tl.pca(
            adata,
            n_comps=use_pcs,
            svd_solver="arpack",
            random_state=self.config.random_seed,
        )
        ratio = adata.uns["pca"]["variance_ratio"]
        self.logger.info(
            "Computed %d PCs (%.1f%% variance explained)", use_pcs, 100 * float(np.sum(ratio))
        )
        return use_pcs

    def suggest_n_pcs(
        self,
        adata: Any,
        variance_threshold: Optional[float] = None,
    ) -> int:
        """Elbow suggestion: PCs needed to reach a share of the captured variance.

        The threshold applies to the variance captured by the computed
        components, not the total variance of the data.

        Raises
        ------
        ValueError
            If PCA has not been run
        """
        if "pca" not in adata.uns or "variance_ratio" not in adata.uns["pca"]:
            raise ValueError("uns['pca'] missing; run the pca stage first")

        threshold = (
            variance_threshold
            if variance_threshold is not None
            else self.config.variance_threshold
        )
        ratio = np.asarray(adata.uns["pca"]["variance_ratio"], dtype=float)
        if ratio.size == 0 or ratio.sum() <= 0:
            return 0
        cumulative = np.cumsum(ratio) / ratio.sum()
        return int(np.searchsorted(cumulative, threshold) + 1)

    def build_graph(self, adata: Any, use_rep: str = "X_pca") -> None:
        """Build the kNN graph on ``obsm[use_rep]``.

        Raises
        ------
        ValueError
            If the representation is missing
        """
        import scanpy as sc

        if use_rep not in adata.obsm:
            raise ValueError(
                f"obsm['{use_rep}'] missing; run the pca/integrate stages first"
            )

        n_dims = int(np.asarray(adata.obsm[use_rep]).shape[1])
        n_pcs = min(self.config.n_pcs, n_dims)
        k = min(self.config.neighbors_k, max(adata.n_obs - 1, 2))

        self.logger.info(
            "Building neighbour graph: use_rep=%s, n_pcs=%d, k=%d", use_rep, n_pcs, k
        )
        if self._use_gpu:
            rsc.pp.neighbors(adata, n_neighbors=k, n_pcs=n_pcs, use_rep=use_rep)
        else:
            sc.pp.neighbors(
                adata,
                n_neighbors=k,
                n_pcs=n_pcs,
                use_rep=use_rep,
                random_state=self.config.random_seed,
            )

    def _cluster_once(self, adata: Any, resolution: float, key: str) -> None:
        import scanpy as sc

        cfg = self.config
        if self._use_gpu:
            rsc.tl.leiden(
                adata, resolution=resolution, random_state=cfg.random_seed, key_added=key
            )
        elif cfg.method == "leiden":
            sc.tl.leiden(
                adata,
                resolution=resolution,
                random_state=cfg.random_seed,
                key_added=key,
                flavor="igraph",
                n_iterations=2,
                directed=False,
            )
        else:
            sc.tl.louvain(
                adata,
                resolution=resolution,
                random_state=cfg.random_seed,
                key_added=key,
            )

    def _silhouette(self, adata: Any, key: str, use_rep: str) -> Optional[float]:
        from sklearn.metrics import silhouette_score

        labels = adata.obs[key].astype(str).to_numpy()
        n_labels = len(np.unique(labels))
        if n_labels < 2 or n_labels >= adata.n_obs:
            return None
        sample_size = min(self.config.silhouette_max_cells, adata.n_obs)
        return float(
            silhouette_score(
                np.asarray(adata.obsm[use_rep]),
                labels,
                sample_size=sample_size,
                random_state=self.config.random_seed,
            )
        )

    def cluster_resolutions(
        self,
        adata: Any,
        resolutions: Optional[Sequence[float]] = None,
    ) -> Dict[float, ClusteringResult]:
        """Cluster once per resolution, writing ``<method>_res_<r>`` columns.

        Raises
        ------
        ValueError
            If the neighbour graph has not been built
        """
        if "neighbors" not in adata.uns:
            raise ValueError("Neighbour graph missing; call build_graph first")

        cfg = self.config
        resolutions = list(resolutions) if resolutions is not None else cfg.resolutions
        use_rep = adata.uns["neighbors"].get("params", {}).get("use_rep", "X_pca")

        results: Dict[float, ClusteringResult] = {}
        for res in resolutions:
            res = float(res)
            key = resolution_key(res, cfg.method)
            self._cluster_once(adata, res, key)

            result = ClusteringResult(resolution=res, cluster_key=key)
            result.n_clusters = int(adata.obs[key].nunique())
            result.cluster_sizes = adata.obs[key].astype(str).value_counts().to_dict()
            if cfg.compute_silhouette:
                result.silhouette = self._silhouette(adata, key, use_rep)

            self.logger.info(
                "%s resolution %.2f: %d clusters%s",
                cfg.method.capitalize(),
                res,
                result.n_clusters,
                f", silhouette={result.silhouette:.3f}" if result.silhouette is not None else "",
            )
            results[res] = result
        return results

    def select_resolution(
        self,
        adata: Any,
        resolution: Optional[float] = None,
    ) -> str:
        """Copy the labels of one resolution to ``obs["cluster"]``.

        Returns
        -------
        str
            Source column name

        Raises
        ------
        KeyError
            If that resolution has not been clustered
        """
        resolution = resolution if resolution is not None else self.config.resolution
        key = resolution_key(resolution, self.config.method)
        if key not in adata.obs.columns:
            raise KeyError(
                f"Resolution {resolution} not clustered (no obs['{key}'])"
            )
        adata.obs[SELECTED_CLUSTER_KEY] = adata.obs[key].astype("category")
        self.logger.info(
            "Selected resolution %.2f -> obs['%s'] (%d clusters)",
            resolution,
            SELECTED_CLUSTER_KEY,
            adata.obs[key].nunique(),
        )
        return key

    def run_umap(self, adata: Any) -> None:
        """Compute the 2-D UMAP embedding from the neighbour graph."""
        import scanpy as sc

        if "neighbors" not in adata.uns:
            raise ValueError("Neighbour graph missing; call build_graph first")

        if self._use_gpu:
            rsc.tl.umap(adata, min_dist=self.config.umap_min_dist, random_state=self.config.random_seed)
        else:
            sc.tl.umap(adata, min_dist=self.config.umap_min_dist, random_state=self.config.random_seed)
        self.logger.info("Computed UMAP (min_dist=%.2f)", self.config.umap_min_dist)

    def run(self, adata: Any, use_rep: str = "X_pca") -> ClusteringSummary:
        """Run the full clustering pipeline.

        Pipeline: PCA (if missing) → neighbors → clustering at every
        resolution → select resolution → UMAP

        Parameters
        ----------
        adata : AnnData
            Input AnnData object (modified in place)
        use_rep : str
            obsm key to build the graph on

        Returns
        -------
        ClusteringSummary
            Per-resolution results and the selected resolution
        """
        cfg = self.config
        self.logger.info(
            "Running clustering pipeline: method=%s, use_rep=%s, k=%d, resolutions=%s, GPU=%s",
            cfg.method,
            use_rep,
            cfg.neighbors_k,
            cfg.resolutions,
            self._use_gpu,
        )
        if cfg.use_gpu and not GPU_AVAILABLE:
            self.logger.info("GPU requested but rapids-singlecell is unavailable; using CPU")

        summary = ClusteringSummary(use_rep=use_rep, selected_resolution=cfg.resolution)
        if "X_pca" not in adata.obsm:
            summary.n_pcs = self.run_pca(adata)
        else:
            summary.n_pcs = int(adata.obsm["X_pca"].shape[1])
        if "pca" in adata.uns:
            summary.suggested_n_pcs = self.suggest_n_pcs(adata)
            self.logger.info(
                "Elbow suggestion: %d PCs reach %.0f%% of captured variance",
                summary.suggested_n_pcs,
                100 * cfg.variance_threshold,
            )

        self.build_graph(adata, use_rep=use_rep)
        summary.results = self.cluster_resolutions(adata)
        self.select_resolution(adata, cfg.resolution)
        self.run_umap(adata)
        return summary
