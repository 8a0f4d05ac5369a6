"""
Tests for the file-writing services (features_io, mitosis_io, screen_io).

The services wrap the core analyses, write their tables and figures into an
output folder and return the written paths.
"""

import json
import pytest
import pandas as pd
import numpy as np
import matplotlib

matplotlib.use("Agg")
from ics_figures.datasets import dataset_path, load_dataset
from ics_figures.services.features_io import (
    write_feature_figures,
    write_gating_summary,
)
from ics_figures.services.mitosis_io import write_mitosis_classification
from ics_figures.services.screen_io import (
    read_bin_bounds,
    write_resampling_analysis,
    write_screen_analysis,
)

FORMATS = ["png"]


@pytest.fixture(scope="module")
def screen_counts():
    return load_dataset("screen_counts")


class TestFeatureServices:
    """Test write_feature_figures and write_gating_summary."""

    def test_feature_figures(self, tmp_path):
        files = write_feature_figures(
            dataset_path("imaging_features"),
            ["Area", "Intensity", "DAPI-A"],
            tmp_path,
            transform="arcsinh",
            reference_condition="control",
            formats=FORMATS,
        )
        for name in ["summary", "correlation_table", "comparison", "density",
                     "boxplot", "correlation"]:
            assert all(p.exists() for p in files[name])
        assert (tmp_path / "features_density.png").exists()
        comparison = pd.read_csv(tmp_path / "features_comparison.tsv", sep="\t")
        assert set(comparison["feature"]) == {"Area", "Intensity", "DAPI-A"}

    def test_feature_figures_normalized(self, tmp_path):
        df = load_dataset("imaging_features")
        files = write_feature_figures(
            df, ["Area"], tmp_path, prefix="norm", normalization="zscore",
            formats=FORMATS,
        )
        assert "comparison" not in files
        assert (tmp_path / "norm_summary.tsv").exists()

    def test_feature_figures_bad_input(self, tmp_path):
        with pytest.raises(TypeError):
            write_feature_figures(42, ["Area"], tmp_path)

    def test_gating_summary(self, tmp_path):
        files = write_gating_summary(
            dataset_path("imaging_features"),
            dataset_path("gating_strategy"),
            tmp_path,
            formats=FORMATS,
        )
        stats = pd.read_csv(files["population_stats"][0], sep="\t")
        assert {"cells", "singlets", "G1", "G2M"} <= set(stats["population"])
        for gate in ["cells", "singlets", "G1", "G2M"]:
            assert (tmp_path / f"gating_{gate}.png").exists()

    def test_gating_summary_without_plots(self, tmp_path):
        files = write_gating_summary(
            load_dataset("imaging_features"),
            load_dataset("gating_strategy"),
            tmp_path,
            by="condition",
            plot=False,
        )
        assert list(files) == ["population_stats"]
        stats = pd.read_csv(files["population_stats"][0], sep="\t")
        assert set(stats["condition"]) == {"control", "treated"}


class TestMitosisService:
    """Test write_mitosis_classification."""

    def test_outputs(self, tmp_path):
        df = load_dataset("mitosis_features")
        features = ["Area", "Eccentricity", "DAPI Intensity", "Perimeter"]
        out = write_mitosis_classification(
            df, features, tmp_path, formats=FORMATS, with_umap=False,
            random_state=0,
        )
        files = out["files"]
        assert "umap" not in files
        for name in ["confusion_matrix", "class_report", "variable_importance",
                     "cv_scores", "tree_rules", "metrics"]:
            assert files[name][0].exists()
        metrics = json.loads((tmp_path / "mitosis_metrics.json").read_text())
        assert metrics["features"] == features
        assert metrics["test_accuracy"] > 0.8
        cm = pd.read_csv(tmp_path / "mitosis_confusion_matrix.tsv", sep="\t",
                         index_col=0)
        assert cm.to_numpy().sum() == 180

    def test_with_umap(self, tmp_path):
        df = load_dataset("mitosis_features")
        out = write_mitosis_classification(
            df, ["Area", "DAPI Intensity"], tmp_path, prefix="m",
            formats=FORMATS, random_state=0, umap_neighbors=10,
        )
        embedding = pd.read_csv(tmp_path / "m_umap.tsv", sep="\t")
        assert list(embedding.columns) == ["UMAP1", "UMAP2", "phase"]
        assert (tmp_path / "m_umap.png").exists()
        assert out["result"].umap is not None


class TestScreenServices:
    """Test the screen writers."""

    def test_read_bin_bounds_file(self):
        bounds = read_bin_bounds(dataset_path("screen_bin_bounds"))
        assert bounds["bin"].tolist() == ["A", "B", "C", "D", "E", "F"]
        assert bounds["fraction"].sum() == pytest.approx(1.0)
        assert read_bin_bounds(bounds) is bounds

    def test_screen_analysis(self, screen_counts, tmp_path):
        out = write_screen_analysis(
            screen_counts,
            dataset_path("screen_bin_bounds"),
            tmp_path,
            method="ratio",
            formats=FORMATS,
        )
        for name in ["guide_scores", "gene_stats", "hits", "summary",
                     "volcano", "guide_zscores", "bin_distribution",
                     "replicate_correlation", "replicates_rep1_vs_rep2"]:
            assert out["files"][name][0].exists()
        summary = json.loads((tmp_path / "screen_summary.json").read_text())
        assert summary["n_screens"] == 2
        assert summary["method"] == "ratio"
        assert summary["n_hits"] == len(out["hits"])
        assert "AURKA" in set(out["hits"]["Gene"])

    def test_screen_analysis_single_screen(self, screen_counts, tmp_path):
        rep1 = screen_counts[
            ["sgRNA", "Gene"] + [c for c in screen_counts if c.startswith("rep1_")]
        ]
        out = write_screen_analysis(
            rep1, load_dataset("screen_bin_bounds"), tmp_path,
            method="ratio", formats=FORMATS,
        )
        assert "replicate_correlation" not in out["files"]
        assert out["summary"]["n_screens"] == 1

    def test_resampling(self, screen_counts, tmp_path):
        out = write_resampling_analysis(
            screen_counts,
            dataset_path("screen_bin_bounds"),
            tmp_path,
            fractions=[0.5, 1.0],
            n_iterations=2,
            method="ratio",
            seed=0,
            formats=FORMATS,
        )
        assert len(out["iterations"]) == 3
        assert out["summary"]["fraction"].tolist() == [0.5, 1.0]
        assert (tmp_path / "resampling_curve.png").exists()
        assert (tmp_path / "resampling_summary.tsv").exists()
