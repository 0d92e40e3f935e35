"""Cell-type composition analysis.

Computes per-sample counts and proportions, aggregates them by
condition, compares proportions against a reference condition with a
Mann-Whitney U test, and reports diversity per sample.

Example Usage
-------------
>>> from scrna_walkthrough.core.composition import CompositionEngine, CompositionConfig
>>> engine = CompositionEngine(CompositionConfig(condition_column="tissue", reference="normal"))
>>> result = engine.execute(adata, cell_type_col="cell_type")
>>> result.comparison.head()
"""

from .aggregation import (
    aggregate_by_condition,
    compute_composition_by_group,
    compute_composition_by_sample,
    create_composition_wide,
)
from .comparison import COMPARISON_COLUMNS, compare_proportions
from .config import CompositionConfig
from .diversity import (
    compute_diversity_by_group,
    compute_evenness,
    compute_shannon_entropy,
    compute_simpson_index,
)
from .engine import CompositionEngine, CompositionResult

__all__ = [
    # Aggregation
    "aggregate_by_condition",
    "compute_composition_by_group",
    "compute_composition_by_sample",
    "create_composition_wide",
    # Comparison
    "COMPARISON_COLUMNS",
    "compare_proportions",
    # Config
    "CompositionConfig",
    # Diversity
    "compute_diversity_by_group",
    "compute_evenness",
    "compute_shannon_entropy",
    "compute_simpson_index",
    # Engine
    "CompositionEngine",
    "CompositionResult",
]
