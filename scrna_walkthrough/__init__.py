"""scrna-walkthrough: a guided single-cell RNA-seq analysis pipeline.

This package walks an annotated count matrix through the standard
scRNA-seq analysis steps:
- Quality control on per-cell UMI, gene and mitochondrial metrics
- Library-size normalization, variable feature selection and scaling
- PCA, batch integration (Harmony or ComBat) and graph clustering
  at several resolutions
- Marker-based cell-type annotation
- Cell-type proportion comparison across conditions
- Per-cell-type differential expression and GO enrichment
- A composite summary figure

Every numerical step is delegated to scanpy and friends; the package
supplies the stage order, parameters and plots.

Example usage:
    >>> from scrna_walkthrough.config import WalkthroughConfig
    >>> from scrna_walkthrough.pipeline import run_walkthrough
    >>>
    >>> config = WalkthroughConfig.from_yaml("walkthrough.yaml")
    >>> context = run_walkthrough(config)
    >>> context.adata.obs["cell_type"].value_counts()
"""

__version__ = "0.1.0"
