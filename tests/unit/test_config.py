"""Unit tests for the walkthrough configuration."""

from pathlib import Path

import pytest

from scrna_walkthrough.config import WalkthroughConfig


class TestWalkthroughConfig:
    """Tests for WalkthroughConfig."""

    def test_defaults(self):
        """Test default configuration values."""
        config = WalkthroughConfig.default()
        assert config.input is None
        assert config.sample_key == "sample_id"
        assert config.integration.method == "harmony"
        assert config.de.groupby == "cell_type"
        assert config.tables_dir == Path("walkthrough_output") / "tables"
        assert config.checkpoint_dir == Path("walkthrough_output") / "checkpoints"

    def test_from_yaml_nested(self, walkthrough_config_file):
        """Test the nested walkthrough section and stage sections."""
        config = WalkthroughConfig.from_yaml(walkthrough_config_file)

        assert config.qc.min_genes == 50
        assert config.qc.max_genes == 0
        assert config.clustering.resolutions == [0.2, 0.5]
        assert config.clustering.resolution == 0.5
        assert config.de.case == "tumor"
        assert config.de.reference == "normal"

    def test_paths_resolved(self, walkthrough_config_file):
        """Test relative paths and {config_dir} resolve next to the YAML."""
        base = walkthrough_config_file.parent
        config = WalkthroughConfig.from_yaml(walkthrough_config_file)

        assert Path(config.input) == base / "data" / "input.h5ad"
        assert Path(config.sample_metadata) == base / "data" / "samples.csv"
        assert Path(config.output_dir) == base / "results"
        assert Path(config.marker_sets) == base / "markers.yaml"
        assert config.figures_dir == base / "results" / "figures"

    def test_obs_keys_propagate(self):
        """Test top-level obs keys reach the stage sections."""
        config = WalkthroughConfig.from_dict({
            "sample_key": "library",
            "patient_key": "donor",
            "condition_key": "status",
            "annotation": {"label_key": "label"},
        })

        assert config.integration.batch_key == "library"
        assert config.composition.sample_column == "library"
        assert config.composition.patient_column == "donor"
        assert config.composition.condition_column == "status"
        assert config.de.condition_key == "status"
        assert config.de.groupby == "label"

    def test_section_overrides_propagation(self):
        """Test a section's own value wins over the top-level key."""
        config = WalkthroughConfig.from_dict({
            "sample_key": "library",
            "integration": {"batch_key": "chemistry"},
        })
        assert config.integration.batch_key == "chemistry"

    def test_inline_marker_sets_untouched(self, tmp_path):
        """Test inline marker maps are not treated as paths."""
        config = WalkthroughConfig.from_dict({"marker_sets": {"T cell": ["CD3D"]}})
        config.resolve_paths(tmp_path)
        assert config.marker_sets == {"T cell": ["CD3D"]}

    def test_gmt_gene_sets_resolved(self, tmp_path):
        """Test a relative GMT file anchors at the config directory; library names do not."""
        config = WalkthroughConfig.from_dict({"enrichment": {"gene_sets": "sets/go.gmt"}})
        config.resolve_paths(tmp_path)
        assert config.enrichment.gene_sets == str(tmp_path / "sets" / "go.gmt")

        config = WalkthroughConfig.from_dict({"enrichment": {"gene_sets": "GO_Biological_Process_2023"}})
        config.resolve_paths(tmp_path)
        assert config.enrichment.gene_sets == "GO_Biological_Process_2023"

    def test_unknown_key(self):
        """Test unknown keys raise TypeError."""
        with pytest.raises(TypeError):
            WalkthroughConfig.from_dict({"inptu": "data.h5ad"})
        with pytest.raises(TypeError):
            WalkthroughConfig.from_dict({"qc": {"min_gene": 10}})

    def test_invalid_section_value(self):
        """Test section validation errors surface."""
        with pytest.raises(ValueError, match="Unknown clustering method"):
            WalkthroughConfig.from_dict({"clustering": {"method": "kmeans"}})

    def test_missing_file(self, tmp_path):
        """Test missing config file raises."""
        with pytest.raises(FileNotFoundError):
            WalkthroughConfig.from_yaml(tmp_path / "missing.yaml")

    def test_yaml_round_trip(self, tmp_path):
        """Test to_yaml output loads back to the same settings."""
        config = WalkthroughConfig.from_dict({
            "output_dir": str(tmp_path / "out"),
            "condition_key": "status",
            "clustering": {"resolutions": [0.3], "resolution": 0.7},
            "annotation": {"manual_labels": {"3": "Doublets"}},
        })
        path = config.to_yaml(tmp_path / "saved" / "walkthrough.yaml")
        reloaded = WalkthroughConfig.from_yaml(path)

        assert reloaded.to_dict() == config.to_dict()
        assert reloaded.clustering.resolutions == [0.3, 0.7]
        assert reloaded.annotation.manual_labels == {"3": "Doublets"}
