"""Test fixtures for scrna-walkthrough.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    CELL_TYPE_MARKERS,
    RESPONSE_GENES,
    SAMPLE_TABLE,
    create_annotated_adata,
    create_clustered_adata,
    create_count_adata,
    create_de_table,
    create_normalized_adata,
)

__all__ = [
    "CELL_TYPE_MARKERS",
    "RESPONSE_GENES",
    "SAMPLE_TABLE",
    "create_annotated_adata",
    "create_clustered_adata",
    "create_count_adata",
    "create_de_table",
    "create_normalized_adata",
]
