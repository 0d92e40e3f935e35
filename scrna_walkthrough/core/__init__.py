"""Core analysis modules for scrna-walkthrough.

This package contains the analysis engines, one per walkthrough step:
- preprocessing: QC, normalization, HVG selection, scaling, batch integration
- clustering: PCA, neighbour graph, multi-resolution Leiden, UMAP, markers
- annotation: Marker-set scoring and cluster-level cell-type labels
- composition: Cell-type proportions and condition comparison
- de: Per-cell-type differential expression between conditions
- enrichment: GO enrichment of DE gene lists
"""
