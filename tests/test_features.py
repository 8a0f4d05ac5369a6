"""
Tests for core/features.py module.

Feature tables are synthetic: two conditions in two replicates with a
known shift of the "Area" feature in the treated condition.
"""

import pytest
import pandas as pd
import numpy as np
from ics_figures.core.features import (
    ANNOTATION_COLUMNS,
    parse_sample_name,
    annotate_events,
    concat_samples,
    select_features,
    filter_events,
    transform_features,
    normalize_features,
    to_long,
    summarize_features,
    feature_correlation,
    compare_conditions,
)


@pytest.fixture
def events():
    """Annotated event table with a shifted treated condition."""
    rng = np.random.default_rng(0)
    frames = []
    for condition, shift in [("DMSO", 0.0), ("treated", 40.0)]:
        for replicate in ["Rep1", "Rep2"]:
            n = 200
            frames.append(
                pd.DataFrame(
                    {
                        "sample": f"{condition}_{replicate}",
                        "condition": condition,
                        "replicate": replicate,
                        "Area": rng.normal(150 + shift, 20, n),
                        "Intensity": rng.lognormal(7, 0.3, n),
                        "Eccentricity": rng.uniform(0.2, 0.9, n),
                    }
                )
            )
    return pd.concat(frames, ignore_index=True)


FEATURES = ["Area", "Intensity", "Eccentricity"]


class TestSampleNames:
    """Test parsing of condition and replicate from sample names."""

    def test_parse_simple(self):
        assert parse_sample_name("DMSO_Rep1") == ("DMSO", "Rep1")

    def test_parse_splits_on_last_delimiter(self):
        """Conditions may contain the delimiter themselves."""
        assert parse_sample_name("Nocodazole_2h_Rep2") == ("Nocodazole_2h", "Rep2")

    def test_parse_without_delimiter(self):
        assert parse_sample_name("DMSO") == ("DMSO", "Rep1")

    def test_parse_custom_delimiter(self):
        assert parse_sample_name("DMSO-R3", delimiter="-") == ("DMSO", "R3")

    def test_annotate_events(self):
        events = pd.DataFrame({"Area": [1.0, 2.0]})
        annotated = annotate_events(events, "treated_Rep2")
        assert (annotated["sample"] == "treated_Rep2").all()
        assert (annotated["condition"] == "treated").all()
        assert (annotated["replicate"] == "Rep2").all()
        assert "sample" not in events.columns

    def test_concat_samples(self):
        samples = {
            "DMSO_Rep1": pd.DataFrame({"Area": [1.0, 2.0]}),
            "treated_Rep1": pd.DataFrame({"Area": [3.0]}),
        }
        combined = concat_samples(samples)
        assert len(combined) == 3
        assert set(combined["condition"]) == {"DMSO", "treated"}

    def test_concat_samples_empty(self):
        with pytest.raises(ValueError):
            concat_samples({})


class TestSelectAndFilter:
    """Test column selection and event filtering."""

    def test_select_keeps_annotation(self, events):
        selected = select_features(events, ["Area"])
        assert list(selected.columns) == ANNOTATION_COLUMNS + ["Area"]

    def test_select_with_rename(self, events):
        selected = select_features(events, ["Area"], rename={"Area": "area"})
        assert "area" in selected.columns
        assert "Area" not in selected.columns

    def test_select_missing_feature(self, events):
        with pytest.raises(KeyError, match="Missing"):
            select_features(events, ["Missing"])

    def test_filter_ranges(self, events):
        filtered = filter_events(events, {"Area": (150, None)})
        assert (filtered["Area"] >= 150).all()
        assert len(filtered) < len(events)

    def test_filter_drops_non_finite(self):
        df = pd.DataFrame({"Area": [1.0, np.nan, np.inf, 4.0]})
        filtered = filter_events(df)
        assert filtered["Area"].tolist() == [1.0, 4.0]

    def test_filter_keeps_nan_without_dropna(self):
        df = pd.DataFrame({"Area": [1.0, np.nan]})
        assert len(filter_events(df, dropna=False)) == 2


class TestTransform:
    """Test variance-stabilizing transforms."""

    def test_arcsinh(self, events):
        out = transform_features(events, ["Intensity"], cofactor=150)
        expected = np.arcsinh(events["Intensity"] / 150)
        np.testing.assert_allclose(out["Intensity"], expected)

    def test_log10_clips_floor(self):
        df = pd.DataFrame({"x": [0.0, 10.0, 100.0]})
        out = transform_features(df, ["x"], method="log10", floor=1e-3)
        np.testing.assert_allclose(out["x"], [-3.0, 1.0, 2.0])

    def test_none_leaves_values(self, events):
        out = transform_features(events, FEATURES, method="none")
        pd.testing.assert_frame_equal(out[FEATURES], events[FEATURES])

    def test_unknown_method(self, events):
        with pytest.raises(ValueError):
            transform_features(events, FEATURES, method="sqrt")


class TestNormalize:
    """Test feature normalization."""

    def test_zscore(self, events):
        out = normalize_features(events, FEATURES, method="zscore")
        np.testing.assert_allclose(out[FEATURES].mean(), 0, atol=1e-10)
        np.testing.assert_allclose(out[FEATURES].std(), 1, atol=1e-10)

    def test_minmax_per_replicate(self, events):
        out = normalize_features(events, FEATURES, method="minmax", by="replicate")
        for _, block in out.groupby("replicate"):
            np.testing.assert_allclose(block[FEATURES].min(), 0, atol=1e-12)
            np.testing.assert_allclose(block[FEATURES].max(), 1, atol=1e-12)

    def test_robust(self, events):
        out = normalize_features(events, ["Area"], method="robust")
        assert abs(out["Area"].median()) < 1e-10

    def test_constant_feature_is_zero(self):
        df = pd.DataFrame({"x": [5.0, 5.0, 5.0]})
        out = normalize_features(df, ["x"], method="zscore")
        assert (out["x"] == 0).all()

    def test_control_median(self, events):
        out = normalize_features(
            events,
            ["Area"],
            method="control_median",
            by="replicate",
            control_condition="DMSO",
        )
        control = out[out["condition"] == "DMSO"]
        for _, block in control.groupby("replicate"):
            assert block["Area"].median() == pytest.approx(1.0)
        treated = out[out["condition"] == "treated"]
        assert treated["Area"].median() > 1.1

    def test_control_median_missing_control(self, events):
        with pytest.raises(ValueError, match="Control condition"):
            normalize_features(
                events, ["Area"], method="control_median", control_condition="PBS"
            )

    def test_control_median_requires_condition(self, events):
        with pytest.raises(ValueError):
            normalize_features(events, ["Area"], method="control_median")

    def test_unknown_method(self, events):
        with pytest.raises(ValueError):
            normalize_features(events, ["Area"], method="quantile")


class TestSummaries:
    """Test reshaping, summaries and correlation."""

    def test_to_long(self, events):
        long_df = to_long(events, FEATURES)
        assert len(long_df) == len(events) * len(FEATURES)
        assert set(long_df["feature"]) == set(FEATURES)
        assert "condition" in long_df.columns

    def test_summarize_by_condition(self, events):
        summary = summarize_features(events, FEATURES)
        assert len(summary) == 2 * len(FEATURES)
        area = summary[summary["feature"] == "Area"].set_index("condition")
        assert area.loc["treated", "median"] > area.loc["DMSO", "median"]
        assert (area["n"] == 400).all()
        np.testing.assert_allclose(area["iqr"], area["q75"] - area["q25"])

    def test_summarize_by_condition_and_replicate(self, events):
        summary = summarize_features(events, ["Area"], by=["condition", "replicate"])
        assert len(summary) == 4

    def test_correlation_matrix(self, events):
        corr = feature_correlation(events, FEATURES, method="spearman")
        assert corr.shape == (3, 3)
        np.testing.assert_allclose(np.diag(corr), 1.0)

    def test_correlation_unknown_method(self, events):
        with pytest.raises(ValueError):
            feature_correlation(events, FEATURES, method="distance")


class TestCompareConditions:
    """Test condition comparisons against a reference."""

    def test_detects_shift(self, events):
        result = compare_conditions(events, "Area", reference="DMSO")
        assert len(result) == 1
        row = result.iloc[0]
        assert row["condition"] == "treated"
        assert row["median_diff"] > 20
        assert row["pvalue"] < 1e-6
        assert row["padj"] >= row["pvalue"]

    def test_no_shift(self, events):
        result = compare_conditions(events, "Eccentricity", "DMSO", test="ttest")
        assert result.iloc[0]["pvalue"] > 0.001

    def test_missing_reference(self, events):
        with pytest.raises(ValueError, match="Reference condition"):
            compare_conditions(events, "Area", reference="PBS")

    def test_unknown_test(self, events):
        with pytest.raises(ValueError):
            compare_conditions(events, "Area", "DMSO", test="ks")

    def test_small_group_warns(self, events):
        small = pd.concat(
            [
                events,
                pd.DataFrame(
                    {"condition": ["single"], "Area": [100.0]}
                ),
            ],
            ignore_index=True,
        )
        with pytest.warns(UserWarning):
            result = compare_conditions(small, "Area", "DMSO")
        assert "single" not in result["condition"].tolist()
