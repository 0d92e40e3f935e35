"""Clustering module for cell population identification.

Provides PCA, the neighbour graph, Leiden clustering over a grid of
resolutions, UMAP, and one-vs-rest cluster marker discovery.

Example Usage
-------------
>>> from scrna_walkthrough.core.clustering import (
...     ClusteringEngine, ClusteringConfig, MarkerFinder,
... )
>>> engine = ClusteringEngine(ClusteringConfig(resolutions=[0.2, 0.6]))
>>> summary = engine.run(adata, use_rep="X_pca_harmony")
>>> markers = MarkerFinder().find_cluster_markers(adata, cluster_key="cluster")
"""

# Configuration classes
from .config import (
    CLUSTER_METHODS,
    ClusteringConfig,
    MarkerConfig,
)

# Clustering engine
from .engine import (
    ClusteringEngine,
    ClusteringResult,
    ClusteringSummary,
    GPU_AVAILABLE,
    SELECTED_CLUSTER_KEY,
    resolution_key,
)

# Cluster markers
from .markers import (
    MARKER_TABLE_COLUMNS,
    MarkerFinder,
    MarkerResult,
)

__all__ = [
    # Config
    "CLUSTER_METHODS",
    "ClusteringConfig",
    "MarkerConfig",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
    "ClusteringSummary",
    "GPU_AVAILABLE",
    "SELECTED_CLUSTER_KEY",
    "resolution_key",
    # Markers
    "MARKER_TABLE_COLUMNS",
    "MarkerFinder",
    "MarkerResult",
]
