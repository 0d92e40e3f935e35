"""Unit tests for per-cell-type condition DE."""

import pytest
import pandas as pd

from scrna_walkthrough.core.de import (
    COMBINED_TABLE_NAME,
    DE_TABLE_COLUMNS,
    SUMMARY_TABLE_NAME,
    ConditionDEResult,
    ConditionDERunner,
    DEConfig,
    export_de_tables,
    load_de_tables,
)


class TestDEConfig:
    """Tests for DEConfig."""

    def test_defaults(self):
        """Test default configuration values."""
        config = DEConfig()
        assert config.groupby == "cell_type"
        assert config.method == "wilcoxon"
        assert config.layer == "lognorm"

    def test_unknown_method(self):
        """Test unknown method raises."""
        with pytest.raises(ValueError, match="Unknown DE method"):
            DEConfig(method="deseq2")


class TestResolveConditions:
    """Tests for case / reference resolution."""

    def test_defaults_from_data(self, annotated_adata):
        """Test reference is the first sorted condition and case the other."""
        runner = ConditionDERunner(DEConfig())
        assert runner.resolve_conditions(annotated_adata) == ("tumor", "normal")

    def test_explicit(self, annotated_adata):
        """Test explicit case and reference."""
        runner = ConditionDERunner(DEConfig(case="normal", reference="tumor"))
        assert runner.resolve_conditions(annotated_adata) == ("normal", "tumor")

    def test_unknown_condition(self, annotated_adata):
        """Test unknown condition raises."""
        with pytest.raises(ValueError, match="blood"):
            ConditionDERunner(DEConfig(case="blood")).resolve_conditions(annotated_adata)

    def test_same_condition(self, annotated_adata):
        """Test identical case and reference raise."""
        with pytest.raises(ValueError, match="both"):
            ConditionDERunner(
                DEConfig(case="tumor", reference="tumor")
            ).resolve_conditions(annotated_adata)

    def test_ambiguous_case(self, annotated_adata):
        """Test three conditions without a case raise."""
        tissue = annotated_adata.obs["tissue"].astype(str).to_numpy()
        tissue[:20] = "blood"
        annotated_adata.obs["tissue"] = tissue
        with pytest.raises(ValueError, match="set de.case"):
            ConditionDERunner(DEConfig(reference="normal")).resolve_conditions(annotated_adata)


class TestConditionDERunner:
    """Tests for the per-category DE loop."""

    def test_run(self, annotated_adata, response_genes):
        """Test response genes are up in tumor for every cell type."""
        result = ConditionDERunner(DEConfig(case="tumor", reference="normal")).run(annotated_adata)

        assert set(result.tables) == {"T cell", "B cell", "Monocyte"}
        assert not result.failed
        assert not result.skipped
        for category, df in result.tables.items():
            assert list(df.columns) == DE_TABLE_COLUMNS
            assert set(df["cell_type"]) == {category}

        up = result.significant("up")
        assert "ISG15" in up["T cell"]
        assert len(set(response_genes) & set(up["T cell"])) >= 5
        assert result.case == "tumor"
        assert result.reference == "normal"

    def test_skipped_small_groups(self, annotated_adata):
        """Test categories below min cells are skipped."""
        result = ConditionDERunner(DEConfig(min_cells_per_group=10000)).run(annotated_adata)

        assert result.tables == {}
        assert set(result.skipped) == {"T cell", "B cell", "Monocyte"}
        assert "too few cells" in result.skipped["B cell"]

    def test_failure_recorded(self, annotated_adata, monkeypatch):
        """Test a failing category is recorded and the loop continues."""
        import scanpy as sc

        original = sc.tl.rank_genes_groups

        def flaky(adata, *args, **kwargs):
            if set(adata.obs["cell_type"].astype(str)) == {"B cell"}:
                raise RuntimeError("singular matrix")
            return original(adata, *args, **kwargs)

        monkeypatch.setattr(sc.tl, "rank_genes_groups", flaky)
        result = ConditionDERunner(DEConfig()).run(annotated_adata)

        assert result.failed == {"B cell": "singular matrix"}
        assert set(result.tables) == {"T cell", "Monocyte"}
        summary = result.summary().set_index("cell_type")
        assert summary.loc["B cell", "status"] == "failed"

    def test_logreg_without_pvalues(self, annotated_adata):
        """Test logreg tables keep the columns with NaN p-values."""
        result = ConditionDERunner(
            DEConfig(case="tumor", reference="normal", method="logreg")
        ).run(annotated_adata)

        assert not result.failed
        assert set(result.tables) == {"T cell", "B cell", "Monocyte"}
        df = result.tables["T cell"]
        assert list(df.columns) == DE_TABLE_COLUMNS
        assert df["pval"].isna().all()
        assert df["pval_adj"].isna().all()
        assert df["score"].notna().all()
        assert result.significant("up")["T cell"] == []

    def test_missing_label_column(self, clustered_adata):
        """Test DE before annotation raises."""
        with pytest.raises(ValueError, match="annotate"):
            ConditionDERunner(DEConfig()).run(clustered_adata)

    def test_missing_layer(self, annotated_adata):
        """Test missing layer raises."""
        with pytest.raises(ValueError, match="normalize"):
            ConditionDERunner(DEConfig(layer="scaled")).run(annotated_adata)


class TestConditionDEResult:
    """Tests for ConditionDEResult."""

    def test_significant(self, de_tables):
        """Test thresholds and ordering per direction."""
        result = ConditionDEResult(tables=de_tables)

        assert result.significant("up")["B cell"] == ["ISG15", "MX1"]
        assert result.significant("down")["B cell"] == ["CD19", "BANK1", "CD79B"]
        assert result.significant("down")["T cell"] == []
        assert set(result.significant("both")["B cell"]) == {"ISG15", "MX1", "CD19", "BANK1", "CD79B"}

    def test_invalid_direction(self, de_tables):
        """Test invalid direction raises."""
        with pytest.raises(ValueError, match="direction"):
            ConditionDEResult(tables=de_tables).significant("sideways")

    def test_summary(self, de_tables):
        """Test the summary counts per category."""
        result = ConditionDEResult(tables=de_tables, skipped={"Monocyte": "too few cells"})
        summary = result.summary()

        assert list(summary.columns) == ["cell_type", "status", "n_genes", "n_up", "n_down", "reason"]
        rows = summary.set_index("cell_type")
        assert rows.loc["T cell", "n_up"] == 6
        assert rows.loc["B cell", "n_down"] == 3
        assert rows.loc["Monocyte", "status"] == "skipped"

    def test_combined(self, de_tables):
        """Test stacked table and empty case."""
        combined = ConditionDEResult(tables=de_tables).combined()
        assert len(combined) == len(de_tables["T cell"]) + len(de_tables["B cell"])
        assert list(ConditionDEResult().combined().columns) == DE_TABLE_COLUMNS

    def test_from_combined_missing_columns(self):
        """Test rebuilding from an incomplete table raises."""
        with pytest.raises(ValueError, match="missing columns"):
            ConditionDEResult.from_combined(pd.DataFrame({"gene": ["A"]}))


class TestExport:
    """Tests for DE table export and reload."""

    def test_export_and_load(self, de_tables, tmp_output_dir):
        """Test written files and reloaded significant genes."""
        result = ConditionDEResult(tables=de_tables)
        written = export_de_tables(result, tmp_output_dir)

        assert written["combined"] == tmp_output_dir / COMBINED_TABLE_NAME
        assert written["summary"] == tmp_output_dir / SUMMARY_TABLE_NAME
        assert written["T cell"] == tmp_output_dir / "de_per_cell_type" / "de_T_cell.csv"
        assert all(path.exists() for path in written.values())

        reloaded = load_de_tables(tmp_output_dir)
        assert reloaded.significant("up") == result.significant("up")

    def test_load_missing(self, tmp_path):
        """Test loading from an empty directory raises."""
        with pytest.raises(FileNotFoundError):
            load_de_tables(tmp_path)
