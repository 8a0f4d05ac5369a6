"""
Tests for the pypipegraph2 job wrappers in jobs/.

Job creation is checked for every factory; one small pipeline per analysis is
run end to end inside a temporary working directory.
"""

import pytest
import pypipegraph2 as ppg
import matplotlib

matplotlib.use("Agg")
from pathlib import Path
from ics_figures import (
    feature_figures_job,
    gating_summary_job,
    feature_report_job,
    mitosis_classification_job,
    mitosis_report_job,
    screen_analysis_job,
    resampling_job,
    screen_report_job,
)
from ics_figures.datasets import dataset_path
from ics_figures.models import (
    FeatureReportConfig,
    MitosisReportConfig,
    ScreenReportConfig,
)

FORMATS = ["png"]


@pytest.fixture
def graph(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    ppg.new(cores=1)
    yield tmp_path


class TestJobCreation:
    """Test that the factories declare the expected outputs."""

    def test_feature_figures_job(self, graph):
        job = feature_figures_job(
            dataset_path("imaging_features"),
            ["Area", "DAPI-A"],
            Path("out"),
            reference_condition="control",
            save_formats=FORMATS,
        )
        assert isinstance(job, ppg.MultiFileGeneratingJob)
        names = {Path(f).name for f in job.files}
        assert names == {
            "features_summary.tsv",
            "features_correlation.tsv",
            "features_comparison.tsv",
            "features_density.png",
            "features_boxplot.png",
            "features_correlation.png",
        }

    def test_gating_summary_job(self, graph):
        job = gating_summary_job(
            dataset_path("imaging_features"),
            dataset_path("gating_strategy"),
            Path("gating"),
            save_formats=FORMATS,
        )
        names = {Path(f).name for f in job.files}
        assert "gating_population_stats.tsv" in names
        assert "gating_singlets.png" in names

    def test_gating_summary_job_without_plots(self, graph):
        job = gating_summary_job(
            dataset_path("imaging_features"),
            dataset_path("gating_strategy"),
            Path("gating"),
            plot=False,
        )
        assert len(job.files) == 1

    def test_mitosis_classification_job(self, graph):
        job = mitosis_classification_job(
            dataset_path("mitosis_features"),
            ["Area", "DAPI Intensity"],
            Path("mitosis"),
            with_umap=False,
            save_formats=FORMATS,
        )
        names = {Path(f).name for f in job.files}
        assert "mitosis_metrics.json" in names
        assert "mitosis_umap.tsv" not in names

    def test_resampling_job(self, graph):
        job = resampling_job(
            dataset_path("screen_counts"),
            dataset_path("screen_bin_bounds"),
            Path("resampling"),
            save_formats=["png", "pdf"],
        )
        names = {Path(f).name for f in job.files}
        assert {"resampling_curve.png", "resampling_curve.pdf"} <= names

    def test_report_jobs(self, graph):
        jobs = [
            feature_report_job(
                FeatureReportConfig("feat", out_dir="feature_report"),
                dataset_path("imaging_features"),
            ),
            mitosis_report_job(
                MitosisReportConfig("mit", out_dir="mitosis_report"),
                dataset_path("mitosis_features"),
            ),
            screen_report_job(
                ScreenReportConfig("scr", out_dir="screen_report"),
                dataset_path("screen_counts"),
                dataset_path("screen_bin_bounds"),
            ),
        ]
        for job in jobs:
            assert {Path(f).name for f in job.files} == {
                "report.md",
                "report.html",
                "summary.json",
            }


class TestJobRuns:
    """Run small pipelines."""

    def test_screen_pipeline(self, graph):
        analysis = screen_analysis_job(
            dataset_path("screen_counts"),
            dataset_path("screen_bin_bounds"),
            Path("screen"),
            method="ratio",
            save_formats=FORMATS,
        )
        ppg.run()
        for f in analysis.files:
            assert Path(f).exists()
        assert (graph / "screen" / "screen_volcano.png").exists()

    def test_feature_pipeline(self, graph):
        figures = feature_figures_job(
            dataset_path("imaging_features"),
            ["Area", "Intensity"],
            Path("features"),
            save_formats=FORMATS,
        )
        gating = gating_summary_job(
            dataset_path("imaging_features"),
            dataset_path("gating_strategy"),
            Path("features"),
            save_formats=FORMATS,
            dependencies=[figures],
        )
        ppg.run()
        for job in [figures, gating]:
            for f in job.files:
                assert Path(f).exists()
