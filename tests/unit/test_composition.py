"""Unit tests for composition module."""

import pytest
import numpy as np
import pandas as pd

from scrna_walkthrough.core.composition import (
    COMPARISON_COLUMNS,
    CompositionConfig,
    CompositionEngine,
    aggregate_by_condition,
    compare_proportions,
    compute_composition_by_group,
    compute_composition_by_sample,
    compute_diversity_by_group,
    compute_evenness,
    create_composition_wide,
)


@pytest.fixture
def two_condition_composition() -> pd.DataFrame:
    """Per-sample proportions where 'x' is higher in the case samples."""
    rows = []
    for sample, tissue, x in [
        ("a1", "normal", 0.20), ("a2", "normal", 0.25), ("a3", "normal", 0.30),
        ("b1", "tumor", 0.60), ("b2", "tumor", 0.65), ("b3", "tumor", 0.70),
    ]:
        rows.append({"sample_id": sample, "tissue": tissue, "cell_type": "x", "proportion": x})
        rows.append({"sample_id": sample, "tissue": tissue, "cell_type": "y", "proportion": 1 - x})
    return pd.DataFrame(rows)


class TestAggregation:
    """Tests for composition aggregation."""

    def test_group_zero_fill(self):
        """Test absent cell types get zero counts."""
        df = pd.DataFrame({"sample_id": ["A", "A", "A", "B"], "cell_type": ["x", "x", "y", "x"]})
        comp = compute_composition_by_group(df, "sample_id")

        assert len(comp) == 4
        row = comp[(comp["sample_id"] == "B") & (comp["cell_type"] == "y")].iloc[0]
        assert row["count"] == 0
        assert row["proportion"] == 0.0
        a_x = comp[(comp["sample_id"] == "A") & (comp["cell_type"] == "x")].iloc[0]
        assert a_x["proportion"] == pytest.approx(2 / 3)

    def test_group_counts_only(self):
        """Test normalize=False omits proportions."""
        df = pd.DataFrame({"g": ["A", "B"], "cell_type": ["x", "y"]})
        assert "proportion" not in compute_composition_by_group(df, "g", normalize=False).columns

    def test_by_sample(self, annotated_adata):
        """Test per-sample proportions sum to one and carry metadata."""
        comp = compute_composition_by_sample(annotated_adata)

        sums = comp.groupby("sample_id")["proportion"].sum()
        np.testing.assert_allclose(sums.to_numpy(), 1.0)
        assert comp["count"].sum() == annotated_adata.n_obs
        assert set(comp.loc[comp["sample_id"] == "S2", "tissue"]) == {"tumor"}
        assert set(comp.loc[comp["sample_id"] == "S3", "patient"]) == {"P2"}

    def test_by_sample_missing_column(self, annotated_adata):
        """Test missing cell type column raises."""
        with pytest.raises(ValueError, match="label"):
            compute_composition_by_sample(annotated_adata, cell_type_col="label")

    def test_aggregate_by_condition(self, annotated_adata):
        """Test per-condition mean and sample count."""
        comp = compute_composition_by_sample(annotated_adata)
        agg = aggregate_by_condition(comp, condition_order=["normal", "tumor"])

        assert set(agg.columns) >= {"tissue", "cell_type", "mean", "std", "median", "n_samples"}
        assert (agg["n_samples"] == 2).all()
        assert list(agg["tissue"].astype(str).unique()) == ["normal", "tumor"]

    def test_aggregate_missing_condition(self):
        """Test aggregation without the condition column raises."""
        with pytest.raises(ValueError, match="tissue"):
            aggregate_by_condition(pd.DataFrame({"cell_type": ["x"], "proportion": [1.0]}))

    def test_wide(self, annotated_adata):
        """Test samples x cell types matrix."""
        wide = create_composition_wide(compute_composition_by_sample(annotated_adata))

        assert wide.shape == (4, 3)
        np.testing.assert_allclose(wide.sum(axis=1).to_numpy(), 1.0)


class TestCompareProportions:
    """Tests for proportion comparison against a reference."""

    def test_columns_and_direction(self, two_condition_composition):
        """Test direction and fold change per cell type."""
        result = compare_proportions(two_condition_composition, reference="normal")

        assert list(result.columns) == COMPARISON_COLUMNS
        assert len(result) == 2
        by_type = result.set_index("cell_type")
        assert by_type.loc["x", "direction"] == "enriched"
        assert by_type.loc["y", "direction"] == "depleted"
        assert by_type.loc["x", "fold_change"] == pytest.approx(0.65 / 0.25)
        assert by_type.loc["x", "n_samples_condition"] == 3
        assert by_type.loc["x", "p_value"] == pytest.approx(0.1)

    def test_log2_fold_change_for_absent_types(self, two_condition_composition):
        """Test types absent from one condition get infinite log2 fold changes."""
        extra = []
        for sample, tissue in zip(
            ["a1", "a2", "a3", "b1", "b2", "b3"], ["normal"] * 3 + ["tumor"] * 3
        ):
            tumor = tissue == "tumor"
            extra.append({"sample_id": sample, "tissue": tissue, "cell_type": "gained",
                          "proportion": 0.1 if tumor else 0.0})
            extra.append({"sample_id": sample, "tissue": tissue, "cell_type": "lost",
                          "proportion": 0.0 if tumor else 0.1})
        df = pd.concat([two_condition_composition, pd.DataFrame(extra)], ignore_index=True)

        by_type = compare_proportions(df, reference="normal").set_index("cell_type")

        assert by_type.loc["gained", "direction"] == "enriched"
        assert by_type.loc["gained", "log2_fold_change"] == np.inf
        assert by_type.loc["lost", "direction"] == "depleted"
        assert by_type.loc["lost", "log2_fold_change"] == -np.inf
        assert by_type.loc["x", "log2_fold_change"] == pytest.approx(np.log2(0.65 / 0.25))

    def test_default_reference(self, two_condition_composition):
        """Test the first sorted condition is the default reference."""
        result = compare_proportions(two_condition_composition)
        assert set(result["reference"]) == {"normal"}
        assert set(result["condition"]) == {"tumor"}

    def test_adjusted_not_below_raw(self, two_condition_composition):
        """Test adjusted p-values are never below raw ones."""
        result = compare_proportions(two_condition_composition, correction_method="bonferroni")
        assert (result["p_adjusted"] >= result["p_value"]).all()

    def test_unknown_reference(self, two_condition_composition):
        """Test unknown reference raises."""
        with pytest.raises(ValueError, match="blood"):
            compare_proportions(two_condition_composition, reference="blood")

    def test_too_few_samples(self, two_condition_composition):
        """Test conditions below the sample minimum are skipped."""
        result = compare_proportions(two_condition_composition, min_samples_per_condition=4)
        assert result.empty
        assert list(result.columns) == COMPARISON_COLUMNS


class TestDiversity:
    """Tests for per-group diversity."""

    def test_small_groups_nan(self):
        """Test groups under min_cells get NaN metrics."""
        df = pd.DataFrame({
            "sample_id": ["A"] * 30 + ["B"] * 5,
            "cell_type": ["x", "y", "z"] * 10 + ["x"] * 5,
        })
        div = compute_diversity_by_group(df, "sample_id", min_cells=20).set_index("sample_id")

        assert div.loc["A", "n_types"] == 3
        assert div.loc["A", "shannon_entropy"] == pytest.approx(np.log(3))
        assert div.loc["A", "evenness"] == pytest.approx(1.0)
        assert np.isnan(div.loc["B", "shannon_entropy"])
        assert div.loc["B", "n_cells"] == 5

    def test_evenness_single_type(self):
        """Test evenness of one type is zero."""
        assert compute_evenness(np.array([10, 0])) == 0.0


class TestCompositionEngine:
    """Tests for CompositionEngine."""

    def test_execute(self, annotated_adata):
        """Test the full composition analysis."""
        engine = CompositionEngine(CompositionConfig(reference="normal"))
        result = engine.execute(annotated_adata)

        assert result.reference == "normal"
        assert len(result.comparison) == 3
        assert set(result.comparison["condition"]) == {"tumor"}
        assert result.composition_wide.shape == (4, 3)
        assert len(result.diversity_by_sample) == 4
        assert "tissue" in result.diversity_by_sample.columns
        assert result.provenance["n_samples"] == 4

    def test_execute_without_condition(self, annotated_adata):
        """Test a missing condition column skips the comparison."""
        engine = CompositionEngine(CompositionConfig(condition_column="site"))
        result = engine.execute(annotated_adata)

        assert result.reference is None
        assert result.comparison.empty
        assert result.composition_by_condition.empty
        assert len(result.composition_by_sample) == 12

    def test_execute_requires_labels(self, clustered_adata):
        """Test missing cell type labels raise."""
        with pytest.raises(ValueError, match="annotate"):
            CompositionEngine().execute(clustered_adata)

    def test_export(self, annotated_adata, tmp_output_dir):
        """Test every table is written."""
        result = CompositionEngine().execute(annotated_adata)
        written = result.export(tmp_output_dir / "composition")

        assert set(written) == {
            "composition_by_sample",
            "composition_by_condition",
            "composition_comparison",
            "diversity_by_sample",
            "composition_wide",
        }
        for path in written.values():
            assert path.exists()
        wide = pd.read_csv(written["composition_wide"], index_col=0)
        assert wide.shape == (4, 3)

    def test_config_from_yaml(self, tmp_path):
        """Test nested YAML section."""
        import yaml

        path = tmp_path / "composition.yaml"
        path.write_text(yaml.safe_dump({"composition": {"reference": "normal", "alpha": 0.1}}))
        config = CompositionConfig.from_yaml(path)
        assert config.reference == "normal"
        assert config.to_dict()["alpha"] == 0.1
