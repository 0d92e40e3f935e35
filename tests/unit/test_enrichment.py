"""Unit tests for GO enrichment with gseapy."""

from types import SimpleNamespace

import pytest
import pandas as pd

from scrna_walkthrough.core.de import ConditionDEResult
from scrna_walkthrough.core.enrichment import (
    ENRICHMENT_COLUMNS,
    EnrichmentConfig,
    EnrichmentResult,
    GOEnricher,
    normalize_enrichment_table,
)


INLINE_SETS = {
    "response to virus": ["ISG15", "IFI6", "MX1", "IFIT1", "IFIT3", "OAS1"],
    "T cell activation": ["CD3D", "CD3E", "LCK", "CD2"],
}


def gseapy_results() -> pd.DataFrame:
    """A results frame in the layout gseapy returns."""
    return pd.DataFrame({
        "Gene_set": ["gs_ind_0"] * 3,
        "Term": ["term B", "term A", "term C"],
        "Overlap": ["1/10", "5/6", "2/8"],
        "P-value": [0.1, 1e-5, 0.002],
        "Adjusted P-value": [0.2, 1e-4, 0.01],
        "Odds Ratio": [1.5, 40.0, 6.0],
        "Combined Score": [3.0, 400.0, 40.0],
        "Genes": ["MX1", "ISG15;IFI6;MX1;IFIT1;OAS1", "ISG15;MX1"],
    })


@pytest.fixture
def fake_enrich(monkeypatch):
    """Replace gseapy.enrich and record the calls."""
    import gseapy

    calls = []

    def enrich(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(results=gseapy_results())

    monkeypatch.setattr(gseapy, "enrich", enrich)
    return calls


class TestEnrichmentConfig:
    """Tests for EnrichmentConfig."""

    def test_is_local(self, tmp_path):
        """Test local gene set detection."""
        assert EnrichmentConfig(gene_sets=INLINE_SETS).is_local
        assert EnrichmentConfig(gene_sets=str(tmp_path / "sets.gmt")).is_local
        assert not EnrichmentConfig().is_local
        assert not EnrichmentConfig(gene_sets=["KEGG_2021_Human"]).is_local


class TestNormalizeTable:
    """Tests for result column normalization."""

    def test_rename_and_sort(self):
        """Test snake_case columns sorted by adjusted p-value."""
        df = normalize_enrichment_table(gseapy_results())
        assert list(df.columns) == ENRICHMENT_COLUMNS
        assert list(df["term"]) == ["term A", "term C", "term B"]

    def test_missing_columns_filled(self):
        """Test absent columns are added."""
        df = normalize_enrichment_table(
            pd.DataFrame({"Term": ["t"], "Adjusted P-value": [0.01]})
        )
        assert list(df.columns) == ENRICHMENT_COLUMNS
        assert df["odds_ratio"].isna().all()


class TestGOEnricher:
    """Tests for GOEnricher."""

    def test_enrich_gene_list_local(self, fake_enrich):
        """Test inline gene sets go through gseapy.enrich."""
        enricher = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS, cutoff=0.1))
        table = enricher.enrich_gene_list(["ISG15", "MX1"], background=["ISG15", "MX1", "CD3D"])

        assert list(table.columns) == ENRICHMENT_COLUMNS
        assert table["term"].iloc[0] == "term A"
        call = fake_enrich[0]
        assert call["gene_sets"] == INLINE_SETS
        assert call["background"] == ["ISG15", "MX1", "CD3D"]
        assert call["outdir"] is None
        assert call["cutoff"] == 0.1

    def test_enrich_inline_sets_offline(self):
        """Test a real gseapy.enrich call on inline sets with a panel background."""
        panel = [g for genes in INLINE_SETS.values() for g in genes]
        panel += [f"GENE{i}" for i in range(200)]
        enricher = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS))
        table = enricher.enrich_gene_list(
            ["ISG15", "IFI6", "MX1", "IFIT1", "IFIT3"], background=panel
        )

        assert list(table.columns) == ENRICHMENT_COLUMNS
        top = table.iloc[0]
        assert top["term"] == "response to virus"
        assert top["pval_adj"] < 0.05
        assert "ISG15" in top["genes"]

    def test_enrich_gene_list_enrichr(self, monkeypatch):
        """Test library names go through gseapy.enrichr."""
        import gseapy

        calls = []

        def enrichr(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(results=gseapy_results())

        monkeypatch.setattr(gseapy, "enrichr", enrichr)
        enricher = GOEnricher(EnrichmentConfig(organism="mouse"))
        table = enricher.enrich_gene_list(["Isg15"])

        assert len(table) == 3
        assert calls[0]["gene_sets"] == "GO_Biological_Process_2023"
        assert calls[0]["organism"] == "mouse"

    def test_empty_results(self, monkeypatch):
        """Test no hits give an empty table."""
        import gseapy

        monkeypatch.setattr(
            gseapy, "enrich", lambda **kwargs: SimpleNamespace(results=pd.DataFrame())
        )
        table = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS)).enrich_gene_list(["MX1"])
        assert table.empty
        assert list(table.columns) == ENRICHMENT_COLUMNS

    def test_missing_gmt(self, tmp_path):
        """Test missing GMT file raises."""
        enricher = GOEnricher(EnrichmentConfig(gene_sets=str(tmp_path / "missing.gmt")))
        with pytest.raises(FileNotFoundError):
            enricher.enrich_gene_list(["MX1"])

    def test_enrich_de_result(self, fake_enrich, de_tables):
        """Test short gene lists are skipped and the panel is the background."""
        de_result = ConditionDEResult(tables=de_tables)
        enricher = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS, min_genes=5))
        result = enricher.enrich_de_result(de_result, background=["ISG15", "MX1"])

        assert set(result.tables) == {"T cell"}
        assert "B cell" in result.skipped
        assert result.direction == "up"
        assert len(fake_enrich) == 1
        assert fake_enrich[0]["gene_list"][0] == "ISG15"
        assert fake_enrich[0]["background"] == ["ISG15", "MX1"]

    def test_background_disabled(self, fake_enrich, de_tables):
        """Test background=None ignores the passed panel."""
        enricher = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS, background=None))
        enricher.enrich_de_result(ConditionDEResult(tables=de_tables), background=["ISG15"])
        assert fake_enrich[0]["background"] is None

    def test_down_direction(self, fake_enrich, de_tables):
        """Test down-regulated lists are used when requested."""
        enricher = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS, min_genes=3))
        result = enricher.enrich_de_result(ConditionDEResult(tables=de_tables), direction="down")

        assert set(result.tables) == {"B cell"}
        assert fake_enrich[0]["gene_list"] == ["CD19", "BANK1", "CD79B"]

    def test_failure_recorded(self, monkeypatch, de_tables):
        """Test a failing category is recorded and the loop continues."""
        import gseapy

        def enrich(**kwargs):
            if len(kwargs["gene_list"]) == 2:
                raise ConnectionError("service unavailable")
            return SimpleNamespace(results=gseapy_results())

        monkeypatch.setattr(gseapy, "enrich", enrich)
        enricher = GOEnricher(EnrichmentConfig(gene_sets=INLINE_SETS, min_genes=2))
        result = enricher.enrich_de_result(ConditionDEResult(tables=de_tables))

        assert result.failed == {"B cell": "service unavailable"}
        assert set(result.tables) == {"T cell"}


class TestEnrichmentResult:
    """Tests for EnrichmentResult."""

    def _result(self) -> EnrichmentResult:
        table = normalize_enrichment_table(gseapy_results())
        return EnrichmentResult(tables={"T cell": table, "B cell": table.copy()}, cutoff=0.05)

    def test_significant_terms(self):
        """Test cutoff and top_n per category."""
        result = self._result()

        sig = result.significant_terms()
        assert len(sig) == 4
        assert set(sig["term"]) == {"term A", "term C"}

        top = result.significant_terms(top_n=1)
        assert len(top) == 2
        assert set(top["term"]) == {"term A"}

    def test_combined_round_trip(self):
        """Test rebuilding from the combined table."""
        result = self._result()
        rebuilt = EnrichmentResult.from_combined(result.combined(), cutoff=0.05)

        assert set(rebuilt.tables) == {"T cell", "B cell"}
        assert list(rebuilt.tables["T cell"]["term"]) == ["term A", "term C", "term B"]

    def test_empty_combined(self):
        """Test an empty result has the expected columns."""
        assert "cell_type" in EnrichmentResult().combined().columns

    def test_from_combined_requires_cell_type(self):
        """Test a table without cell_type raises."""
        with pytest.raises(ValueError, match="cell_type"):
            EnrichmentResult.from_combined(normalize_enrichment_table(gseapy_results()))
