"""
Tests for core/plots.py module.

Plotting functions create figures, so these tests check that they accept the
tables produced by the analysis modules, return Figure objects and reject
empty input.
"""
import pytest
import pandas as pd
import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend for tests
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from ics_figures.core.gating import PolygonGate, RectangleGate, ThresholdGate
from ics_figures.core.plots import (
    plot_feature_density,
    plot_feature_boxplot,
    plot_correlation_heatmap,
    plot_gate,
    plot_umap,
    plot_confusion_matrix,
    plot_variable_importance,
    plot_bin_distribution,
    plot_guide_zscores,
    plot_gene_volcano,
    plot_replicate_scatter,
    plot_resampling_curve,
    close_all,
)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def events():
    rng = np.random.default_rng(0)
    n = 120
    return pd.DataFrame({
        "condition": np.repeat(["control", "treated"], n // 2),
        "replicate": np.tile(["Rep1", "Rep2"], n // 2),
        "FSC-A": rng.uniform(1e4, 2e5, n),
        "FSC-H": rng.uniform(1e4, 2e5, n),
        "DAPI-A": rng.uniform(0.5, 2.5, n),
        "Area": rng.normal(100, 10, n),
    })


@pytest.fixture
def guide_z():
    rng = np.random.default_rng(1)
    rows = []
    for screen in ["rep1", "rep2"]:
        for gene in ["G1", "G2", "NT"]:
            for i in range(4):
                rows.append({
                    "sgRNA": f"{gene}_{i}",
                    "Gene": gene,
                    "screen": screen,
                    "Z": rng.normal(),
                    "is_nt": gene == "NT",
                })
    return pd.DataFrame(rows)


class TestFeaturePlots:
    """Test feature distribution plots."""

    def test_density(self, events):
        fig = plot_feature_density(events, ["Area", "DAPI-A"])
        assert isinstance(fig, Figure)
        visible = [ax for ax in fig.axes if ax.get_visible()]
        assert visible[0].get_title() == "Area"

    def test_density_hides_unused_panels(self, events):
        fig = plot_feature_density(events, ["Area", "DAPI-A"], ncols=3)
        assert isinstance(fig, Figure)

    def test_boxplot(self, events):
        fig = plot_feature_boxplot(events, ["Area", "DAPI-A", "FSC-A", "FSC-H"])
        assert isinstance(fig, Figure)

    def test_boxplot_without_hue(self, events):
        fig = plot_feature_boxplot(events, ["Area"], hue=None)
        assert isinstance(fig, Figure)

    def test_empty(self, events):
        with pytest.raises(ValueError, match="No data"):
            plot_feature_density(events.iloc[:0], ["Area"])

    def test_correlation_heatmap(self, events):
        corr = events[["Area", "DAPI-A", "FSC-A"]].corr()
        fig = plot_correlation_heatmap(corr, title="corr")
        assert isinstance(fig, Figure)


class TestGatePlot:
    """Test gate outlines on scatter plots."""

    def test_rectangle(self, events):
        gate = RectangleGate("cells", None, ["FSC-A", "FSC-H"], [(3e4, 1.5e5), (None, None)])
        fig = plot_gate(events, gate, in_gate=gate.contains(events))
        assert fig.axes[0].get_xlabel() == "FSC-A"
        assert len(fig.axes[0].patches) == 1

    def test_polygon(self, events):
        gate = PolygonGate(
            "singlets", None, ["FSC-A", "FSC-H"],
            [[0, 0], [2e5, 1.5e5], [2e5, 2e5], [0, 5e4]],
        )
        fig = plot_gate(events, gate)
        assert len(fig.axes[0].patches) == 1

    def test_threshold(self, events):
        gate = ThresholdGate("G2M", None, "DAPI-A", 1.7, above=True)
        fig = plot_gate(events, gate, y="Area", in_gate=gate.contains(events))
        assert fig.axes[0].get_ylabel() == "Area"

    def test_threshold_default_y(self, events):
        gate = ThresholdGate("G2M", None, "DAPI-A", 1.7, above=True)
        fig = plot_gate(events, gate)
        assert fig.axes[0].get_ylabel() == "FSC-A"

    def test_subsampling(self, events):
        gate = ThresholdGate("G1", None, "DAPI-A", 1.2)
        fig = plot_gate(events, gate, max_points=10, in_gate=gate.contains(events))
        assert isinstance(fig, Figure)


class TestClassificationPlots:
    """Test UMAP, confusion matrix and importance plots."""

    def test_umap_with_labels(self):
        rng = np.random.default_rng(2)
        embedding = pd.DataFrame(rng.normal(size=(30, 2)), columns=["UMAP1", "UMAP2"])
        labels = pd.Series(np.repeat(["a", "b", "c"], 10))
        fig = plot_umap(embedding, labels=labels, order=["c", "b", "a"])
        assert isinstance(fig, Figure)

    def test_umap_without_labels(self):
        embedding = pd.DataFrame({"UMAP1": [0.0, 1.0], "UMAP2": [1.0, 0.0]})
        assert isinstance(plot_umap(embedding), Figure)

    def test_confusion_matrix(self):
        cm = pd.DataFrame([[5, 1], [0, 6]], index=["a", "b"], columns=["a", "b"])
        assert isinstance(plot_confusion_matrix(cm), Figure)
        norm = cm.div(cm.sum(axis=1), axis=0)
        assert isinstance(plot_confusion_matrix(norm, normalized=True), Figure)

    def test_variable_importance(self):
        importance = pd.DataFrame({
            "feature": ["a", "b", "c"],
            "importance": [0.6, 0.3, 0.1],
            "permutation_mean": [0.2, 0.1, 0.0],
            "permutation_std": [0.01, 0.02, 0.0],
        })
        assert isinstance(plot_variable_importance(importance, top_n=2), Figure)
        fig = plot_variable_importance(
            importance, value_col="permutation_mean", error_col="permutation_std"
        )
        assert isinstance(fig, Figure)


class TestScreenPlots:
    """Test screen figures."""

    def test_bin_distribution(self):
        counts = pd.DataFrame({
            "sgRNA": ["a", "b", "c"],
            "Gene": ["G1", "G1", "NT"],
            "s_A": [10, 20, 30],
            "s_B": [30, 20, 10],
        })
        fig = plot_bin_distribution(counts, "s", ["A", "B"], ["G1", "NT"])
        lines = fig.axes[0].get_lines()
        assert len(lines) == 2

    def test_guide_zscores(self, guide_z):
        fig = plot_guide_zscores(guide_z, ["G1", "G2"])
        assert isinstance(fig, Figure)

    def test_volcano(self):
        genes = pd.DataFrame({
            "Gene": ["A", "B", "C"],
            "Z": [5.0, -4.0, 0.1],
            "fdr": [0.0, 1e-4, 0.9],
        })
        fig = plot_gene_volcano(genes, top_n_labels=2)
        assert isinstance(fig, Figure)

    def test_volcano_empty(self):
        with pytest.raises(ValueError):
            plot_gene_volcano(pd.DataFrame(columns=["Gene", "Z", "fdr"]))

    def test_replicate_scatter(self, guide_z):
        fig = plot_replicate_scatter(guide_z, "rep1", "rep2")
        assert fig.axes[0].get_xlabel().startswith("rep1")

    def test_resampling_curve(self):
        summary = pd.DataFrame({
            "fraction": [0.1, 0.5, 1.0],
            "recall_mean": [0.3, 0.8, 1.0],
            "recall_sd": [0.1, 0.05, np.nan],
            "precision_mean": [0.9, 0.95, 1.0],
            "precision_sd": [0.05, 0.02, np.nan],
        })
        assert isinstance(plot_resampling_curve(summary), Figure)

    def test_close_all(self):
        figures = {"a": plt.figure(), "b": plt.figure()}
        close_all(figures)
        assert plt.get_fignums() == []
