"""Pytest configuration and shared fixtures for scrna-walkthrough tests."""

import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pytest
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    CELL_TYPE_MARKERS,
    RESPONSE_GENES,
    SAMPLE_TABLE,
    create_annotated_adata,
    create_clustered_adata,
    create_count_adata,
    create_de_table,
    create_normalized_adata,
)


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def count_adata():
    """Raw counts: 400 cells, 4 samples, 10 low-quality cells."""
    return create_count_adata()


@pytest.fixture
def normalized_adata():
    """QC-clean, log-normalized AnnData with counts/lognorm layers and raw."""
    return create_normalized_adata()


@pytest.fixture
def clustered_adata():
    """Normalized AnnData with obs['cluster'], X_pca and X_umap."""
    return create_clustered_adata()


@pytest.fixture
def annotated_adata():
    """Clustered AnnData with obs['cell_type']."""
    return create_annotated_adata()


# ============================================================================
# Marker and Table Fixtures
# ============================================================================


@pytest.fixture
def marker_map() -> dict:
    """Marker map matching the simulated cell types."""
    return {name: list(genes) for name, genes in CELL_TYPE_MARKERS.items()}


@pytest.fixture
def response_genes() -> list:
    """Genes induced in tumor samples."""
    return list(RESPONSE_GENES)


@pytest.fixture
def sample_table() -> pd.DataFrame:
    """Per-sample metadata (patient, tissue)."""
    return SAMPLE_TABLE.copy()


@pytest.fixture
def de_tables() -> dict:
    """Two DE tables: T cell with 6 up genes, B cell with 2 up and 3 down."""
    return {
        "T cell": create_de_table("T cell", ["ISG15", "IFI6", "MX1", "IFIT1", "IFIT3", "OAS1"]),
        "B cell": create_de_table("B cell", ["ISG15", "MX1"], ["CD19", "BANK1", "CD79B"]),
    }


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def walkthrough_config_file(tmp_path) -> Path:
    """Create a walkthrough configuration file with relative paths."""
    import yaml

    config = {
        "walkthrough": {
            "input": "data/input.h5ad",
            "sample_metadata": "{config_dir}/data/samples.csv",
            "output_dir": "results",
            "marker_sets": "markers.yaml",
            "condition_key": "tissue",
            "qc": {"min_genes": 50, "min_counts": 100, "max_genes": 0},
            "clustering": {"resolutions": [0.2, 0.5], "resolution": 0.5},
            "de": {"case": "tumor", "reference": "normal"},
        }
    }

    path = tmp_path / "walkthrough.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
