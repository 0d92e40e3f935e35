"""Configuration for GO enrichment of DE gene lists."""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


GeneSetSpec = Union[str, List[str], Dict[str, List[str]]]


@dataclass
class EnrichmentConfig:
    """Configuration for over-representation analysis with gseapy.

    Attributes
    ----------
    gene_sets : str, List[str] or Dict[str, List[str]]
        Enrichr library name(s), a local ``.gmt`` path, or an inline
        term -> genes mapping
    organism : str
        Organism passed to Enrichr
    cutoff : float
        Adjusted p-value cutoff for reported terms
    background : str, optional
        "panel" uses the measured genes as background; None uses the
        gene-set universe
    min_genes : int
        Gene lists shorter than this are not tested
    top_terms : int
        Terms kept per category for plots
    direction : str
        DE direction enriched ("up", "down" or "both")
    """

    gene_sets: GeneSetSpec = "GO_Biological_Process_2023"
    organism: str = "human"
    cutoff: float = 0.05
    background: Optional[str] = "panel"
    min_genes: int = 5
    top_terms: int = 10
    direction: str = "up"

    @property
    def is_local(self) -> bool:
        """True when gene sets are a dict or a GMT file rather than Enrichr libraries."""
        if isinstance(self.gene_sets, dict):
            return True
        return isinstance(self.gene_sets, str) and self.gene_sets.lower().endswith(".gmt")

    @classmethod
    def from_yaml(cls, path: Path) -> "EnrichmentConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "enrichment" in data:
            data = data["enrichment"]
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
