"""I/O utilities for scrna-walkthrough.

Provides dataset readers, table writers and provenance logging.
"""

from .logging import (
    get_stage_logger,
    get_timestamped_log_path,
    log_json,
    read_provenance,
    record_provenance,
)
from .readers import (
    SUPPORTED_FORMATS,
    attach_sample_metadata,
    detect_format,
    ensure_output_dir,
    load_sample_table,
    read_dataset,
    validate_obs_columns,
    write_dataframe,
)

__all__ = [
    # Logging
    "get_stage_logger",
    "get_timestamped_log_path",
    "log_json",
    "read_provenance",
    "record_provenance",
    # Readers / writers
    "SUPPORTED_FORMATS",
    "attach_sample_metadata",
    "detect_format",
    "ensure_output_dir",
    "load_sample_table",
    "read_dataset",
    "validate_obs_columns",
    "write_dataframe",
]
