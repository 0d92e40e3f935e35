"""Configuration classes for the clustering module."""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml


CLUSTER_METHODS = ("leiden", "louvain")


@dataclass
class ClusteringConfig:
    """Configuration for PCA, neighbour graph, clustering and UMAP.

    Attributes
    ----------
    n_pcs : int
        Number of principal components
    neighbors_k : int
        k for the neighbourhood graph
    resolutions : List[float]
        Resolutions clustered and stored as ``<method>_res_<r>``
    resolution : float
        Resolution copied to ``obs["cluster"]``
    method : str
        Community detection algorithm ("leiden" or "louvain")
    umap_min_dist : float
        UMAP min_dist
    random_seed : int
        Random seed for reproducibility
    compute_silhouette : bool
        Compute a silhouette score per resolution
    silhouette_max_cells : int
        Cells subsampled for the silhouette score
    variance_threshold : float
        Cumulative variance used for the suggested number of PCs
    use_gpu : bool
        Use rapids-singlecell when it is installed
    """

    n_pcs: int = 30
    neighbors_k: int = 20
    resolutions: List[float] = field(
        default_factory=lambda: [0.1, 0.2, 0.4, 0.6, 0.8, 1.0]
    )
    resolution: float = 0.6
    method: str = "leiden"
    umap_min_dist: float = 0.3
    random_seed: int = 0
    compute_silhouette: bool = True
    silhouette_max_cells: int = 5000
    variance_threshold: float = 0.9
    use_gpu: bool = False

    def __post_init__(self) -> None:
        if self.method not in CLUSTER_METHODS:
            raise ValueError(
                f"Unknown clustering method: {self.method} "
                f"(expected one of {CLUSTER_METHODS})"
            )
        self.resolutions = sorted({float(r) for r in self.resolutions} | {float(self.resolution)})
        labels = [f"{r:.2f}" for r in self.resolutions]
        if len(set(labels)) != len(labels):
            raise ValueError(
                f"Resolutions {self.resolutions} must differ at two decimals; "
                "each is stored in its own obs column"
            )

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusteringConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested clustering section
        if "clustering" in data:
            data = data["clustering"]

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class MarkerConfig:
    """Configuration for cluster marker discovery.

    Attributes
    ----------
    method : str
        rank_genes_groups method
    n_genes : int
        Top genes kept per cluster
    layer : str
        Expression layer tested
    tie_correct : bool
        Apply tie correction for the Wilcoxon test
    """

    method: str = "wilcoxon"
    n_genes: int = 25
    layer: str = "lognorm"
    tie_correct: bool = False
