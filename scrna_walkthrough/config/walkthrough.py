"""Walkthrough configuration: one YAML file for every stage.

Example YAML
------------
walkthrough:
  input: data/pbmc.h5ad
  sample_metadata: data/samples.csv
  output_dir: results/
  marker_sets: markers.yaml
  condition_key: tissue
  qc:
    min_genes: 200
    max_pct_mt: 15
  clustering:
    resolutions: [0.2, 0.4, 0.8]
    resolution: 0.4
  de:
    case: tumor
    reference: normal
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import re

import yaml

from ..core.annotation import AnnotationConfig
from ..core.clustering import ClusteringConfig, MarkerConfig
from ..core.composition import CompositionConfig
from ..core.de import DEConfig
from ..core.enrichment import EnrichmentConfig
from ..core.preprocessing import IntegrationConfig, NormalizationConfig, QCConfig
from ..viz.figure import FigureConfig


_SECTIONS = {
    "qc": QCConfig,
    "normalization": NormalizationConfig,
    "integration": IntegrationConfig,
    "clustering": ClusteringConfig,
    "markers": MarkerConfig,
    "annotation": AnnotationConfig,
    "composition": CompositionConfig,
    "de": DEConfig,
    "enrichment": EnrichmentConfig,
    "figures": FigureConfig,
}

_PATH_FIELDS = ("input", "sample_metadata", "output_dir")


@dataclass
class WalkthroughConfig:
    """Master configuration for the walkthrough.

    Attributes
    ----------
    input : str, optional
        Input dataset (.h5ad, 10x .h5 or 10x matrix directory)
    input_format : str
        Input format or "auto"
    sample_id : str, optional
        Sample label for inputs without a sample column
    sample_metadata : str, optional
        CSV/TSV with one row per sample (patient, tissue, ...)
    output_dir : str
        Root of every output (tables/, figures/, logs/, checkpoints/)
    marker_sets : str or Dict, optional
        Marker file path or inline cell type -> genes mapping
    sample_key : str
        obs column with sample IDs
    patient_key : str
        obs column with patient IDs
    condition_key : str
        obs column with the compared condition
    checkpoint_h5ad : bool
        Write an .h5ad checkpoint after every stage
    log_level : str
        Console and file log level
    """

    input: Optional[str] = None
    input_format: str = "auto"
    sample_id: Optional[str] = None
    sample_metadata: Optional[str] = None
    output_dir: str = "walkthrough_output"
    marker_sets: Optional[Union[str, Dict[str, Any]]] = None
    sample_key: str = "sample_id"
    patient_key: str = "patient"
    condition_key: str = "tissue"
    checkpoint_h5ad: bool = False
    log_level: str = "INFO"
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    composition: CompositionConfig = field(default_factory=CompositionConfig)
    de: DEConfig = field(default_factory=DEConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    figures: FigureConfig = field(default_factory=FigureConfig)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    @property
    def tables_dir(self) -> Path:
        return self.output_path / "tables"

    @property
    def figures_dir(self) -> Path:
        return self.output_path / "figures"

    @property
    def logs_dir(self) -> Path:
        return self.output_path / "logs"

    @property
    def checkpoint_dir(self) -> Path:
        return self.output_path / "checkpoints"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalkthroughConfig":
        """Build from a plain dict.

        Section dicts become their stage configs. Obs column names given
        at the top level are copied into the sections that use them
        unless the section sets its own.

        Raises
        ------
        TypeError
            If a section or the top level has an unknown key
        """
        data = dict(data)
        sample_key = data.get("sample_key", "sample_id")
        patient_key = data.get("patient_key", "patient")
        condition_key = data.get("condition_key", "tissue")

        sections = {name: dict(data.pop(name, None) or {}) for name in _SECTIONS}
        sections["integration"].setdefault("batch_key", sample_key)
        sections["composition"].setdefault("sample_column", sample_key)
        sections["composition"].setdefault("patient_column", patient_key)
        sections["composition"].setdefault("condition_column", condition_key)
        sections["de"].setdefault("condition_key", condition_key)
        label_key = sections["annotation"].get("label_key", "cell_type")
        sections["de"].setdefault("groupby", label_key)

        built = {name: _SECTIONS[name](**values) for name, values in sections.items()}
        return cls(**data, **built)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "WalkthroughConfig":
        """Load configuration from YAML file.

        Relative paths and ``{config_dir}`` templates in ``input``,
        ``sample_metadata``, ``output_dir`` and a marker file path are
        resolved against the directory holding the YAML file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested walkthrough section
        if "walkthrough" in data:
            data = data["walkthrough"] or {}

        config = cls.from_dict(data)
        config.resolve_paths(path.parent)
        return config

    @classmethod
    def default(cls) -> "WalkthroughConfig":
        """Create default configuration."""
        return cls()

    def resolve_paths(self, base_dir: Union[str, Path]) -> None:
        """Expand ``{config_dir}`` and anchor relative paths at ``base_dir``."""
        base_dir = Path(base_dir)

        def resolve(value: str) -> str:
            value = re.sub(r"\{config_dir\}", str(base_dir), value)
            candidate = Path(value).expanduser()
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            return str(candidate)

        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, resolve(value))
        if isinstance(self.marker_sets, str):
            self.marker_sets = resolve(self.marker_sets)
        gene_sets = self.enrichment.gene_sets
        if isinstance(gene_sets, str) and gene_sets.lower().endswith(".gmt"):
            self.enrichment.gene_sets = resolve(gene_sets)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = asdict(value) if f.name in _SECTIONS else value
        return result

    def to_yaml(self, path: Union[str, Path]) -> Path:
        """Write the configuration under a ``walkthrough:`` section."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump({"walkthrough": self.to_dict()}, f, sort_keys=False)
        return path
