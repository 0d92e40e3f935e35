"""GO enrichment of differential expression results.

Example Usage
-------------
>>> from scrna_walkthrough.core.enrichment import GOEnricher, EnrichmentConfig
>>> enricher = GOEnricher(EnrichmentConfig(gene_sets="GO_Biological_Process_2023"))
>>> result = enricher.enrich_de_result(de_result, background=adata.var_names)
>>> result.significant_terms(top_n=10)
"""

from .config import EnrichmentConfig
from .go import (
    ENRICHMENT_COLUMNS,
    EnrichmentResult,
    GOEnricher,
    normalize_enrichment_table,
)

__all__ = [
    "EnrichmentConfig",
    "ENRICHMENT_COLUMNS",
    "EnrichmentResult",
    "GOEnricher",
    "normalize_enrichment_table",
]
