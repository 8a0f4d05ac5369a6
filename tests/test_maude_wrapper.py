"""
Tests for r_integration/maude_wrapper.py.

R is not needed: the table builders are pure pandas and the MAUDE calls are
mocked.
"""

import sys
import pytest
import pandas as pd
from unittest.mock import MagicMock, patch
from ics_figures.datasets import load_dataset
from ics_figures.services.screen_io import read_bin_bounds
from ics_figures.r_integration import maude_wrapper
from ics_figures.r_integration.maude_wrapper import (
    NT_COLUMN,
    maude_bin_stats,
    maude_count_table,
    run_maude,
)

BINS = ["A", "B", "C", "D", "E", "F"]


@pytest.fixture(scope="module")
def counts():
    return load_dataset("screen_counts")


@pytest.fixture(scope="module")
def bounds():
    return read_bin_bounds(load_dataset("screen_bin_bounds"))


class TestTables:
    """Test the MAUDE input tables."""

    def test_count_table(self, counts):
        table = maude_count_table(counts, BINS)
        assert list(table.columns) == ["screen", "sgRNA", "Gene"] + BINS + ["NS", NT_COLUMN]
        assert len(table) == 2 * len(counts)
        assert table["screen"].unique().tolist() == ["rep1", "rep2"]
        assert table[NT_COLUMN].sum() == 80
        first = table.iloc[0]
        assert first["A"] == counts.loc[0, "rep1_A"]

    def test_count_table_nt_ids(self, counts):
        table = maude_count_table(counts, BINS, nt_label=None, nt_ids={"NT_01"})
        assert table[NT_COLUMN].sum() == 2

    def test_count_table_missing_bin(self, counts):
        with pytest.raises(KeyError, match="G"):
            maude_count_table(counts, BINS + ["G"])

    def test_bin_stats(self, bounds):
        stats = maude_bin_stats(bounds, ["rep1", "rep2"])
        assert len(stats) == 12
        assert list(stats.columns) == [
            "screen", "Bin", "binStartQ", "binEndQ", "fraction", "binStartZ",
            "binEndZ",
        ]
        assert stats["binEndQ"].iloc[-1] == pytest.approx(1.0)


class TestRunMaude:
    """Test the R bridge with mocked rpy2 calls."""

    def test_missing_rpy2(self):
        with patch.dict(sys.modules, {"rpy2": None, "rpy2.robjects": None,
                                      "rpy2.robjects.packages": None}):
            with pytest.raises(RuntimeError, match="rpy2"):
                maude_wrapper._import_maude()

    def test_run_maude(self, counts, bounds):
        maude = MagicMock()
        guide_df = pd.DataFrame({"sgRNA": ["a", "b"], NT_COLUMN: [True, False]})
        gene_df = pd.DataFrame(
            {"Gene": ["X"], "meanZ": [3.0], "numGuides": [4], "FDR": [0.01]}
        )
        with patch.object(maude_wrapper, "_import_maude", return_value=maude), \
                patch.object(maude_wrapper, "_py2rpy", side_effect=lambda x: x), \
                patch.object(maude_wrapper, "_rpy2py", side_effect=[guide_df, gene_df]):
            guides, genes = run_maude(counts, bounds)

        kwargs = maude.findGuideHitsAllScreens.call_args.kwargs
        assert kwargs["unsortedBin"] == "NS"
        assert kwargs["negativeControl"] == NT_COLUMN
        assert kwargs["sortBins"].tolist() == BINS
        assert kwargs["experiments"]["screen"].tolist() == ["rep1", "rep2"]
        assert len(kwargs["countDataFrame"]) == 2 * len(counts)
        element_kwargs = maude.getElementwiseStats.call_args.kwargs
        assert element_kwargs["elementIDs"] == "Gene"
        assert element_kwargs["negCTRL"].tolist() == [True, False]
        assert guides is guide_df
        assert list(genes.columns) == ["Gene", "Z", "n_guides", "fdr"]
