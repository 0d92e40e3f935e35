"""Unit tests for the command-line interface."""

import pytest
import yaml
from click.testing import CliRunner

from scrna_walkthrough import __version__
from scrna_walkthrough.cli.main import cli


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


class TestCli:
    """Tests for CLI commands."""

    def test_version(self, runner):
        """Test --version."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_stages(self, runner):
        """Test stages are listed in order with optional markers."""
        result = runner.invoke(cli, ["stages"])
        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert len(lines) == 13
        assert "load" in lines[0]
        assert "figures" in lines[-1]
        assert "(optional)" in lines[10]

    def test_init_config(self, runner, tmp_path):
        """Test writing and refusing to overwrite a config."""
        path = tmp_path / "walkthrough.yaml"

        result = runner.invoke(cli, ["init-config", str(path)])
        assert result.exit_code == 0
        data = yaml.safe_load(path.read_text())
        assert "walkthrough" in data
        assert data["walkthrough"]["clustering"]["resolution"] == 0.6

        result = runner.invoke(cli, ["init-config", str(path)])
        assert result.exit_code == 1

        result = runner.invoke(cli, ["init-config", str(path), "--force"])
        assert result.exit_code == 0

    def test_run_unknown_stage(self, runner, walkthrough_config_file):
        """Test an unknown stage name is rejected."""
        result = runner.invoke(
            cli, ["run", "--config", str(walkthrough_config_file), "--start-stage", "cluster2"]
        )
        assert result.exit_code == 2
        assert "unknown stage" in result.output

    def test_run_dry_run(self, runner, walkthrough_config_file):
        """Test a dry run reports no execution."""
        result = runner.invoke(
            cli, ["run", "--config", str(walkthrough_config_file), "--dry-run"]
        )
        assert result.exit_code == 0
        assert "Dry run" in result.output

    def test_run_missing_input(self, runner, walkthrough_config_file):
        """Test a missing input file fails with exit code 1."""
        result = runner.invoke(
            cli, ["run", "--config", str(walkthrough_config_file), "--end-stage", "load"]
        )
        assert result.exit_code == 1

    def test_qc_command(self, runner, tmp_path, count_adata):
        """Test the single-step QC command."""
        input_path = tmp_path / "input.h5ad"
        count_adata.write_h5ad(input_path)
        config_path = tmp_path / "qc.yaml"
        config_path.write_text(yaml.safe_dump(
            {"walkthrough": {"qc": {"min_genes": 50, "min_counts": 100, "max_genes": 0}}}
        ))

        result = runner.invoke(cli, [
            "qc", "--input", str(input_path), "--out", str(tmp_path / "qc"),
            "--config", str(config_path),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "qc" / "qc_filtered.h5ad").exists()
        assert (tmp_path / "qc" / "qc_by_sample.csv").exists()

    def test_annotate_command(self, runner, tmp_path, clustered_adata, marker_map):
        """Test the single-step annotate command."""
        input_path = tmp_path / "clustered.h5ad"
        clustered_adata.write_h5ad(input_path)
        marker_path = tmp_path / "markers.yaml"
        marker_path.write_text(yaml.safe_dump(marker_map))

        result = runner.invoke(cli, [
            "annotate", "--input", str(input_path), "--marker-map", str(marker_path),
            "--out", str(tmp_path / "annot"),
        ])
        assert result.exit_code == 0, result.output
        assert "0 unassigned" in result.output
        assert (tmp_path / "annot" / "cluster_annotations.csv").exists()
