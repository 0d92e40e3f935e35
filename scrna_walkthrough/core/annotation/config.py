"""Configuration for marker-based cell-type annotation."""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class AnnotationConfig:
    """Configuration for cluster-level cell-type assignment.

    Attributes
    ----------
    min_score : float
        Minimum mean cluster score for the best cell type
    min_gap : float
        Minimum margin of the best cell type over the runner-up
    unassigned_label : str
        Label for clusters failing either threshold
    cluster_key : str
        obs column with cluster labels
    label_key : str
        obs column receiving cell-type labels
    manual_labels : Dict[str, str]
        Cluster ID -> label overrides applied after automatic assignment
    ctrl_size : int
        Reference genes sampled per expression bin by score_genes
    random_seed : int
        Random seed for score_genes
    """

    min_score: float = 0.0
    min_gap: float = 0.0
    unassigned_label: str = "Unassigned"
    cluster_key: str = "cluster"
    label_key: str = "cell_type"
    manual_labels: Dict[str, str] = field(default_factory=dict)
    ctrl_size: int = 50
    random_seed: int = 0

    def __post_init__(self) -> None:
        self.manual_labels = {str(k): str(v) for k, v in self.manual_labels.items()}
