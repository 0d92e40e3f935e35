"""Configuration classes for preprocessing stages.

All thresholds are plain dataclass fields so they can be set from the
walkthrough YAML file.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class QCConfig:
    """Configuration for cell and gene quality control.

    Attributes
    ----------
    mito_prefix : str
        Gene-name prefix of mitochondrial genes ("mt-" for mouse)
    ribo_prefixes : List[str]
        Gene-name prefixes of ribosomal protein genes
    hb_pattern : str
        Regular expression matching hemoglobin genes
    min_genes : int
        Minimum detected genes per cell
    max_genes : int
        Maximum detected genes per cell (doublet guard); 0 disables
    min_counts : int
        Minimum total UMI counts per cell
    max_counts : int
        Maximum total UMI counts per cell; 0 disables
    max_pct_mt : float
        Maximum percentage of counts from mitochondrial genes
    min_cells : int
        Minimum cells a gene must be detected in to be kept
    max_removal_fraction : float, optional
        Cap on the fraction of cells removed; worst cells go first
    """

    mito_prefix: str = "MT-"
    ribo_prefixes: List[str] = field(default_factory=lambda: ["RPS", "RPL"])
    hb_pattern: str = r"^HB[^(P)]"
    min_genes: int = 200
    max_genes: int = 6000
    min_counts: int = 500
    max_counts: int = 0
    max_pct_mt: float = 20.0
    min_cells: int = 3
    max_removal_fraction: Optional[float] = None


@dataclass
class NormalizationConfig:
    """Configuration for normalization, feature selection and scaling.

    Attributes
    ----------
    target_sum : float
        Library size each cell is scaled to before log1p
    hvg_flavor : str
        Flavor passed to ``scanpy.pp.highly_variable_genes``
        ("seurat", "cell_ranger" or "seurat_v3")
    n_top_genes : int
        Number of highly variable genes to keep
    hvg_batch_key : str, optional
        obs column for batch-aware HVG selection
    regress_out : List[str]
        obs covariates regressed out before scaling
    scale_max_value : float
        Clip value after z-scoring
    subset_hvg : bool
        Drop non-variable genes from the working matrix after selection
    """

    target_sum: float = 1e4
    hvg_flavor: str = "seurat"
    n_top_genes: int = 2000
    hvg_batch_key: Optional[str] = None
    regress_out: List[str] = field(default_factory=list)
    scale_max_value: float = 10.0
    subset_hvg: bool = False


@dataclass
class IntegrationConfig:
    """Configuration for batch integration.

    Attributes
    ----------
    method : str
        "harmony", "combat" or "none"
    batch_key : str
        obs column holding the batch label
    basis : str
        Embedding corrected by Harmony
    max_iter_harmony : int
        Maximum Harmony iterations
    mixing_k : int
        Neighbours used by the batch-mixing diagnostic
    random_seed : int
        Random seed for reproducibility
    """

    method: str = "harmony"
    batch_key: str = "sample_id"
    basis: str = "X_pca"
    max_iter_harmony: int = 20
    mixing_k: int = 30
    random_seed: int = 0


@dataclass
class PreprocessingConfig:
    """Master configuration for the preprocessing stages.

    Attributes
    ----------
    qc : QCConfig
        Quality control configuration
    normalization : NormalizationConfig
        Normalization / HVG / scaling configuration
    integration : IntegrationConfig
        Batch integration configuration
    """

    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested preprocessing section
        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingConfig":
        """Create from a dictionary with optional qc/normalization/integration keys."""
        return cls(
            qc=QCConfig(**data.get("qc", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
            integration=IntegrationConfig(**data.get("integration", {})),
        )

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "qc": asdict(self.qc),
            "normalization": asdict(self.normalization),
            "integration": asdict(self.integration),
        }
