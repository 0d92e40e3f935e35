"""Preprocessing module: QC, normalization and batch integration.

Stages
------
- qc: gene-class flags, per-cell QC metrics, cell and gene filtering
- normalize / features / scale: library-size normalization, HVG
  selection and z-scoring
- integrate: Harmony or ComBat correction of the PCA embedding

Example Usage
-------------
>>> from scrna_walkthrough.core.preprocessing import (
...     CellQC, Normalizer, BatchIntegrator, PreprocessingConfig,
... )
>>> config = PreprocessingConfig.default()
>>> adata, qc_result = CellQC(config.qc).run(adata)
>>> normalizer = Normalizer(config.normalization)
>>> normalizer.normalize(adata)
>>> normalizer.select_variable_features(adata)
>>> adata = normalizer.scale(adata)
"""

# Configuration classes
from .config import (
    QCConfig,
    NormalizationConfig,
    IntegrationConfig,
    PreprocessingConfig,
)

# Quality control
from .qc import (
    CellQC,
    QCResult,
    REASON_COLUMNS,
    METRIC_COLUMNS,
)

# Normalization
from .normalization import (
    Normalizer,
    NormalizationResult,
    COUNTS_LAYER,
    LOGNORM_LAYER,
    SCALED_LAYER,
    HVG_FLAVORS,
)

# Integration
from .integration import (
    BatchIntegrator,
    IntegrationResult,
    INTEGRATION_METHODS,
    compute_batch_mixing,
)

__all__ = [
    # Config
    "QCConfig",
    "NormalizationConfig",
    "IntegrationConfig",
    "PreprocessingConfig",
    # QC
    "CellQC",
    "QCResult",
    "REASON_COLUMNS",
    "METRIC_COLUMNS",
    # Normalization
    "Normalizer",
    "NormalizationResult",
    "COUNTS_LAYER",
    "LOGNORM_LAYER",
    "SCALED_LAYER",
    "HVG_FLAVORS",
    # Integration
    "BatchIntegrator",
    "IntegrationResult",
    "INTEGRATION_METHODS",
    "compute_batch_mixing",
]
