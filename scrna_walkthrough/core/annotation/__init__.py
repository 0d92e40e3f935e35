"""Marker-based cell-type annotation.

Example Usage
-------------
>>> from scrna_walkthrough.core.annotation import (
...     AnnotationEngine, AnnotationConfig, load_marker_sets,
... )
>>> engine = AnnotationEngine(AnnotationConfig(manual_labels={"7": "Doublets"}))
>>> sets = engine.load("markers.yaml", adata)
>>> result = engine.annotate_clusters(adata, sets)
>>> result.cluster_annotations
"""

from .config import AnnotationConfig
from .engine import (
    CLUSTER_TABLE_COLUMNS,
    AnnotationEngine,
    AnnotationResult,
)
from .markers import (
    MarkerSet,
    canonicalize_marker,
    load_marker_sets,
    score_column,
)

__all__ = [
    "AnnotationConfig",
    "CLUSTER_TABLE_COLUMNS",
    "AnnotationEngine",
    "AnnotationResult",
    "MarkerSet",
    "canonicalize_marker",
    "load_marker_sets",
    "score_column",
]
