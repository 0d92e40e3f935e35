"""Per-cell-type differential expression between two conditions.

Example Usage
-------------
>>> from scrna_walkthrough.core.de import ConditionDERunner, DEConfig, export_de_tables
>>> runner = ConditionDERunner(DEConfig(condition_key="tissue", case="tumor", reference="normal"))
>>> result = runner.run(adata)
>>> result.failed          # categories whose test raised
>>> export_de_tables(result, "out/tables")
"""

from .config import DE_METHODS, DEConfig
from .engine import (
    COMBINED_TABLE_NAME,
    DE_TABLE_COLUMNS,
    SUMMARY_TABLE_NAME,
    ConditionDEResult,
    ConditionDERunner,
    export_de_tables,
    load_de_tables,
)

__all__ = [
    "DE_METHODS",
    "DEConfig",
    "COMBINED_TABLE_NAME",
    "DE_TABLE_COLUMNS",
    "SUMMARY_TABLE_NAME",
    "ConditionDEResult",
    "ConditionDERunner",
    "export_de_tables",
    "load_de_tables",
]
