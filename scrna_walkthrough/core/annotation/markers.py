"""Marker set loading and resolution for cell-type annotation.

This module loads marker gene sets from YAML or JSON files and resolves
gene names against the genes measured in the dataset.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml


@dataclass(frozen=True)
class MarkerSet:
    """A set of marker genes defining a cell type.

    Attributes:
        label: Cell type name (e.g., "T cell")
        markers: Original gene names from the marker file
        resolved_markers: Genes found in the panel, spelled as in var_names
        missing_markers: Genes defined but not measured
    """
    label: str
    markers: Tuple[str, ...]
    resolved_markers: Tuple[str, ...]
    missing_markers: Tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        """True when no marker resolved; such sets are never scored."""
        return len(self.resolved_markers) == 0

    @property
    def score_key(self) -> str:
        """obs column holding this cell type's score."""
        return score_column(self.label)


def score_column(label: str) -> str:
    """obs column name for a cell type score (e.g. "T cell" -> "score_T_cell")."""
    return "score_" + "_".join(str(label).split())


def canonicalize_marker(marker: str) -> str:
    """Normalize a gene name for consistent lookup.

    Uppercases and strips whitespace for case-insensitive matching.
    """
    return str(marker).strip().upper()


def _read_marker_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Marker file not found: {path}")
    with open(path, "r") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Marker file {path} must map cell types to gene lists")
    return data


def _extract_genes(label: str, node: Any) -> List[str]:
    if isinstance(node, Mapping):
        node = node.get("markers", [])
    if isinstance(node, str):
        node = [node]
    if not isinstance(node, (list, tuple)):
        raise ValueError(
            f"Markers for '{label}' must be a list or a mapping with 'markers'"
        )
    return [str(g) for g in node]


def load_marker_sets(
    marker_map: Union[Dict, Path, str],
    var_names: Sequence[str],
    logger: Optional[logging.Logger] = None,
) -> List[MarkerSet]:
    """Load and resolve marker sets from a marker map.

    Two layouts are accepted for each cell type::

        T cell: [CD3D, CD3E]
        B cell:
          markers: [MS4A1, CD79A]

    Keys starting with "_" are treated as metadata and skipped. Gene
    names are matched case-insensitively; duplicates keep their first
    occurrence.

    Args:
        marker_map: Either a dict, or a Path / string path to a YAML or
            JSON file
        var_names: Gene names measured in the dataset
        logger: Optional logger instance

    Returns:
        List of MarkerSet objects in file order, including empty sets

    Raises:
        FileNotFoundError: If marker_map path doesn't exist
        ValueError: If the file does not map cell types to gene lists
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if isinstance(marker_map, (str, Path)):
        marker_map = _read_marker_file(Path(marker_map))

    lookup: Dict[str, str] = {}
    for name in var_names:
        lookup.setdefault(canonicalize_marker(name), str(name))

    result: List[MarkerSet] = []
    for label, node in marker_map.items():
        if str(label).startswith("_"):
            continue

        markers_raw = _extract_genes(label, node)
        resolved: List[str] = []
        missing: List[str] = []
        for marker in markers_raw:
            matched = lookup.get(canonicalize_marker(marker))
            if matched is None:
                missing.append(marker)
            elif matched not in resolved:
                resolved.append(matched)

        if missing:
            logger.debug(
                "'%s': missing %d/%d markers: %s",
                label,
                len(missing),
                len(markers_raw),
                missing,
            )
        if not resolved:
            logger.warning(
                "Marker set '%s' has no genes in the panel; it will not be scored",
                label,
            )

        result.append(
            MarkerSet(
                label=str(label),
                markers=tuple(markers_raw),
                resolved_markers=tuple(resolved),
                missing_markers=tuple(missing),
            )
        )

    logger.info(
        "Loaded %d marker sets (%d with resolved markers)",
        len(result),
        sum(1 for ms in result if not ms.is_empty),
    )
    return result
