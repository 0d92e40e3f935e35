"""Utility functions for scrna-walkthrough."""

from .stats import (
    CORRECTION_METHODS,
    adjust_pvalues,
    shannon_entropy,
    simpson_index,
)

__all__ = [
    "CORRECTION_METHODS",
    "adjust_pvalues",
    "shannon_entropy",
    "simpson_index",
]
