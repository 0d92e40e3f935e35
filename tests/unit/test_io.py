"""Unit tests for io module (readers and provenance logging)."""

import json
import logging

import pytest
import pandas as pd

from scrna_walkthrough.io.logging import (
    PROVENANCE_KEY,
    get_stage_logger,
    log_json,
    read_provenance,
    record_provenance,
)
from scrna_walkthrough.io.readers import (
    attach_sample_metadata,
    detect_format,
    load_sample_table,
    read_dataset,
    validate_obs_columns,
    write_dataframe,
)


class TestDetectFormat:
    """Tests for input format detection."""

    def test_h5ad(self, tmp_path):
        """Test .h5ad suffix."""
        assert detect_format(tmp_path / "data.h5ad") == "h5ad"

    def test_10x_h5(self, tmp_path):
        """Test 10x .h5 suffix."""
        assert detect_format(tmp_path / "filtered_feature_bc_matrix.h5") == "10x_h5"

    def test_10x_directory(self, tmp_path):
        """Test 10x matrix directory."""
        (tmp_path / "matrix.mtx.gz").touch()
        assert detect_format(tmp_path) == "10x_mtx"

    def test_directory_without_matrix(self, tmp_path):
        """Test directory without matrix file raises."""
        with pytest.raises(ValueError, match="matrix.mtx"):
            detect_format(tmp_path)

    def test_unknown_suffix(self, tmp_path):
        """Test unknown suffix raises."""
        with pytest.raises(ValueError, match="Cannot infer"):
            detect_format(tmp_path / "data.csv")


class TestReadDataset:
    """Tests for read_dataset."""

    def test_missing_file(self, tmp_path):
        """Test missing input raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            read_dataset(tmp_path / "missing.h5ad")

    def test_read_h5ad(self, tmp_path, count_adata):
        """Test reading an h5ad file keeps cells and genes."""
        path = tmp_path / "input.h5ad"
        count_adata.write_h5ad(path)

        adata = read_dataset(path)
        assert adata.shape == count_adata.shape
        assert "sample_id" in adata.obs.columns

    def test_sample_id_assigned(self, tmp_path, count_adata):
        """Test sample_id labels every cell."""
        path = tmp_path / "input.h5ad"
        count_adata.write_h5ad(path)

        adata = read_dataset(path, sample_id="run1", sample_key="batch")
        assert set(adata.obs["batch"]) == {"run1"}

    def test_repeated_barcodes_made_unique(self, tmp_path, count_adata):
        """Test barcodes repeated across merged samples get unique names."""
        count_adata.obs_names = [f"BC{i % 200}" for i in range(count_adata.n_obs)]
        path = tmp_path / "merged.h5ad"
        count_adata.write_h5ad(path)

        adata = read_dataset(path)
        assert adata.n_obs == 400
        assert adata.obs_names.is_unique

    def test_unknown_format(self, tmp_path, count_adata):
        """Test explicit unknown format raises."""
        path = tmp_path / "input.h5ad"
        count_adata.write_h5ad(path)
        with pytest.raises(ValueError, match="Unknown input format"):
            read_dataset(path, fmt="loom")


class TestSampleMetadata:
    """Tests for sample table loading and joining."""

    def test_load_csv(self, tmp_path, sample_table):
        """Test loading a CSV sample table."""
        path = tmp_path / "samples.csv"
        sample_table.to_csv(path, index=False)

        table = load_sample_table(path)
        assert list(table["sample_id"]) == ["S1", "S2", "S3", "S4"]

    def test_load_tsv(self, tmp_path, sample_table):
        """Test loading a TSV sample table."""
        path = tmp_path / "samples.tsv"
        sample_table.to_csv(path, sep="\t", index=False)

        table = load_sample_table(path)
        assert "tissue" in table.columns

    def test_duplicate_samples(self, tmp_path):
        """Test duplicate sample IDs raise."""
        path = tmp_path / "samples.csv"
        pd.DataFrame({"sample_id": ["S1", "S1"], "tissue": ["a", "b"]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="Duplicate"):
            load_sample_table(path)

    def test_missing_sample_column(self, tmp_path):
        """Test table without the sample column raises."""
        path = tmp_path / "samples.csv"
        pd.DataFrame({"donor": ["S1"]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="missing column"):
            load_sample_table(path)

    def test_attach_overwrites_columns(self, count_adata, sample_table):
        """Test metadata columns are joined per cell."""
        count_adata.obs = count_adata.obs.drop(columns=["patient", "tissue"])
        sample_table["site"] = ["a", "b", "c", "d"]

        added = attach_sample_metadata(count_adata, sample_table)

        assert added == ["patient", "tissue", "site"]
        s2 = count_adata.obs["sample_id"] == "S2"
        assert set(count_adata.obs.loc[s2, "tissue"]) == {"tumor"}
        assert set(count_adata.obs.loc[s2, "site"]) == {"b"}

    def test_attach_missing_sample(self, count_adata, sample_table):
        """Test samples absent from the table raise."""
        with pytest.raises(ValueError, match="S4"):
            attach_sample_metadata(count_adata, sample_table.iloc[:3])

    def test_validate_obs_columns(self, count_adata):
        """Test missing obs columns are reported."""
        validate_obs_columns(count_adata, ["sample_id", "tissue"])
        with pytest.raises(ValueError, match="donor"):
            validate_obs_columns(count_adata, ["sample_id", "donor"])

    def test_write_dataframe_creates_parent(self, tmp_path):
        """Test write_dataframe creates missing directories."""
        path = write_dataframe(pd.DataFrame({"a": [1]}), tmp_path / "x" / "y" / "t.csv")
        assert path.exists()


class TestStageLogger:
    """Tests for per-stage file loggers."""

    def test_writes_to_stage_file(self, tmp_path):
        """Test messages land in <stage>.log."""
        logger, path = get_stage_logger("qc", tmp_path, timestamped=False)
        logger.info("filtered cells")
        for handler in logger.handlers:
            handler.flush()

        assert path == tmp_path / "qc.log"
        assert "filtered cells" in path.read_text()
        assert logger.name == "scrna_walkthrough.stage.qc"

    def test_timestamped_name(self, tmp_path):
        """Test timestamped log file name."""
        _, path = get_stage_logger("cluster", tmp_path, timestamped=True)
        assert path.name.startswith("cluster_")
        assert path.suffix == ".log"

    def test_handlers_replaced(self, tmp_path):
        """Test repeated calls keep a single handler."""
        get_stage_logger("de", tmp_path, timestamped=False)
        logger, _ = get_stage_logger("de", tmp_path, level=logging.DEBUG, timestamped=False)
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_log_json(self, tmp_path):
        """Test JSON lines are appended."""
        path = tmp_path / "records.jsonl"
        log_json(path, {"stage": "qc"})
        log_json(path, {"stage": "normalize"})
        lines = path.read_text().splitlines()
        assert [json.loads(line)["stage"] for line in lines] == ["qc", "normalize"]


class TestProvenance:
    """Tests for provenance records on AnnData."""

    def test_record_and_read(self, count_adata, tmp_path):
        """Test parameters survive a record/read cycle."""
        params = {"min_genes": 200, "nested": {"a": [1, 2]}}
        record_provenance(count_adata, "qc", params, log_path=tmp_path / "prov.jsonl")

        assert "qc" in count_adata.uns[PROVENANCE_KEY]
        assert read_provenance(count_adata, "qc")["params"] == params
        assert (tmp_path / "prov.jsonl").exists()

    def test_survives_h5ad(self, count_adata, tmp_path):
        """Test provenance is readable after writing h5ad."""
        import anndata as ad

        record_provenance(count_adata, "integrate", {"use_rep": "X_pca_harmony"})
        path = tmp_path / "a.h5ad"
        count_adata.write_h5ad(path)

        reloaded = ad.read_h5ad(path)
        assert read_provenance(reloaded, "integrate")["params"]["use_rep"] == "X_pca_harmony"

    def test_missing_stage(self, count_adata):
        """Test reading an unrecorded stage raises KeyError."""
        with pytest.raises(KeyError):
            read_provenance(count_adata, "cluster")
