"""Logging utilities for scrna-walkthrough.

Provides per-stage file logging and a provenance trail: every stage
records the parameters it ran with both in ``adata.uns["walkthrough"]``
and as JSON lines next to the outputs.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml

PathLike = Union[str, Path]

PROVENANCE_KEY = "walkthrough"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Generate a timestamped log path from the base log path.

    Example: qc.log -> qc_20261018_080530.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def get_stage_logger(
    stage_id: str,
    log_dir: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Return a file logger for one walkthrough stage.

    The logger is a child of ``scrna_walkthrough`` so records still reach
    the console handlers installed by :class:`PipelineLogger`.

    Parameters
    ----------
    stage_id : str
        Stage identifier (e.g. "qc", "cluster")
    log_dir : PathLike
        Directory receiving the stage log file
    level : int
        Logging level (default: INFO)
    timestamped : bool
        If True, add timestamp to filename to preserve previous logs.
        If False, overwrite an existing log file.

    Returns
    -------
    Tuple[logging.Logger, Path]
        Tuple of (logger, actual_log_path)
    """
    base_path = Path(log_dir) / f"{stage_id}.log"
    if timestamped:
        actual_log_path = get_timestamped_log_path(base_path)
    else:
        actual_log_path = base_path
        actual_log_path.unlink(missing_ok=True)

    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f"scrna_walkthrough.stage.{stage_id}")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    return logger, actual_log_path


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append a JSON line to log_path."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def record_provenance(
    adata: Any,  # AnnData
    stage_id: str,
    params: Dict[str, Any],
    log_path: PathLike | None = None,
) -> Dict[str, Any]:
    """Record the parameters a stage ran with.

    Parameters are stored under ``adata.uns["walkthrough"][stage_id]``
    as YAML text, which survives an h5ad round trip regardless of the
    nesting of ``params``. When ``log_path`` is given the same record is
    appended there as a JSON line.

    Returns
    -------
    Dict[str, Any]
        The record that was written
    """
    record = {
        "stage": stage_id,
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "params": params,
    }
    store = adata.uns.setdefault(PROVENANCE_KEY, {})
    store[stage_id] = yaml.safe_dump(
        json.loads(json.dumps(record, default=str)), sort_keys=False
    )
    if log_path is not None:
        log_json(log_path, record)
    return record


def read_provenance(adata: Any, stage_id: str) -> Dict[str, Any]:
    """Return the parameters recorded for ``stage_id``.

    Raises
    ------
    KeyError
        If the stage has not recorded provenance on this AnnData
    """
    store = adata.uns.get(PROVENANCE_KEY, {})
    if stage_id not in store:
        raise KeyError(f"No provenance recorded for stage '{stage_id}'")
    return yaml.safe_load(store[stage_id])
