"""Configuration for per-cell-type differential expression."""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DE_METHODS = ("wilcoxon", "t-test", "t-test_overestim_var", "logreg")


@dataclass
class DEConfig:
    """Configuration for condition DE within each cell type.

    Attributes
    ----------
    groupby : str
        obs column defining the categories looped over
    condition_key : str
        obs column holding the compared conditions
    case : str, optional
        Condition tested; the non-reference condition when there are two
    reference : str, optional
        Baseline condition; the first in sorted order if None
    method : str
        rank_genes_groups method
    layer : str
        Expression layer tested
    min_cells_per_group : int
        Minimum cells in each condition for a category to be tested
    tie_correct : bool
        Apply tie correction for the Wilcoxon test
    padj_threshold : float
        Adjusted p-value cutoff for significant genes
    logfc_threshold : float
        Absolute log fold change cutoff for significant genes
    """

    groupby: str = "cell_type"
    condition_key: str = "tissue"
    case: Optional[str] = None
    reference: Optional[str] = None
    method: str = "wilcoxon"
    layer: str = "lognorm"
    min_cells_per_group: int = 10
    tie_correct: bool = False
    padj_threshold: float = 0.05
    logfc_threshold: float = 0.25

    def __post_init__(self) -> None:
        if self.method not in DE_METHODS:
            raise ValueError(
                f"Unknown DE method: {self.method} (expected one of {DE_METHODS})"
            )

    @classmethod
    def from_yaml(cls, path: Path) -> "DEConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "de" in data:
            data = data["de"]
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
