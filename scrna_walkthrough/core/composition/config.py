"""Configuration for cell-type composition analysis."""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class CompositionConfig:
    """Configuration for composition statistics and proportion tests.

    Attributes
    ----------
    sample_column : str
        Column name for sample in adata.obs
    condition_column : str
        Column name for the condition compared (e.g. tissue)
    patient_column : str
        Column name for patient in adata.obs
    reference : str, optional
        Reference condition; the first condition in sorted order if None
    min_samples_per_condition : int
        Minimum samples per condition for a valid test
    correction_method : str
        Multiple testing correction method (fdr_bh, bonferroni, holm, none)
    alpha : float
        Significance threshold
    min_cells_per_sample : int
        Minimum cells per sample for diversity metrics
    """

    sample_column: str = "sample_id"
    condition_column: str = "tissue"
    patient_column: str = "patient"
    reference: Optional[str] = None
    min_samples_per_condition: int = 2
    correction_method: str = "fdr_bh"
    alpha: float = 0.05
    min_cells_per_sample: int = 20

    @classmethod
    def from_yaml(cls, path: Path) -> "CompositionConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "composition" in data:
            data = data["composition"]
        return cls(**data)

    @classmethod
    def default(cls) -> "CompositionConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
