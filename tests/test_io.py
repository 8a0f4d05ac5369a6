"""
Tests for services/io.py module.

This module tests the file helpers: figure saving, table writing, tabular
readers and the FCS readers (fcsparser is mocked).
"""

import pytest
import pandas as pd
import numpy as np
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path
from unittest.mock import patch
from ics_figures.services.io import (
    save_figure,
    write_table,
    read_dataframe,
    read_fcs,
    read_fcs_samples,
)


@pytest.fixture
def figure():
    fig, ax = plt.subplots()
    ax.plot([1, 2, 3], [1, 2, 3])
    yield fig
    plt.close(fig)


@pytest.fixture
def events():
    return pd.DataFrame({"FSC-A": [1.0, 2.0, 3.0], "DAPI-A": [0.9, 1.1, 2.0]})


class TestSaveFigure:
    """Test save_figure function."""

    def test_save_figure_formats(self, figure, tmp_path):
        written = save_figure(figure, tmp_path, "plot", formats=["png", "svg"])
        assert written == [tmp_path / "plot.png", tmp_path / "plot.svg"]
        assert all(p.exists() for p in written)

    def test_save_figure_suffix(self, figure, tmp_path):
        written = save_figure(figure, tmp_path, "plot.pdf", formats=["png"])
        assert written == [tmp_path / "plot.pdf"]
        assert not (tmp_path / "plot.png").exists()

    def test_save_figure_default_formats(self, figure, tmp_path):
        with patch("ics_figures.services.io.settings") as settings:
            settings.save_formats = ["png"]
            settings.dpi = 50
            written = save_figure(figure, tmp_path, "plot")
        assert written == [tmp_path / "plot.png"]

    def test_save_figure_creates_folder(self, figure, tmp_path):
        folder = tmp_path / "a" / "b"
        save_figure(figure, folder, "plot", formats=["png"])
        assert (folder / "plot.png").exists()


class TestTables:
    """Test write_table and read_dataframe."""

    def test_write_table(self, events, tmp_path):
        path = write_table(events, tmp_path / "sub" / "events.tsv")
        assert path.exists()
        assert path.read_text().splitlines()[0] == "FSC-A\tDAPI-A"

    def test_roundtrip_tsv(self, events, tmp_path):
        path = write_table(events, tmp_path / "events.tsv")
        pd.testing.assert_frame_equal(read_dataframe(path), events)

    def test_read_csv(self, events, tmp_path):
        path = tmp_path / "events.csv"
        events.to_csv(path, index=False)
        assert read_dataframe(path).shape == (3, 2)

    def test_read_txt_as_tsv(self, events, tmp_path):
        path = tmp_path / "events.txt"
        events.to_csv(path, sep="\t", index=False)
        assert list(read_dataframe(path).columns) == ["FSC-A", "DAPI-A"]

    def test_read_excel(self, events, tmp_path):
        path = tmp_path / "events.xlsx"
        events.to_excel(path, index=False)
        pd.testing.assert_frame_equal(read_dataframe(path), events)

    def test_unknown_extension_falls_back_to_tsv(self, events, tmp_path):
        path = tmp_path / "events.dat"
        events.to_csv(path, sep="\t", index=False)
        assert read_dataframe(path).shape == (3, 2)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_dataframe(tmp_path / "missing.tsv")

    def test_broken_file(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_text("not an excel file")
        with pytest.raises(RuntimeError, match="Failed to read"):
            read_dataframe(path)


class TestFcs:
    """Test the FCS readers with a mocked parser."""

    def test_read_fcs(self, events, tmp_path):
        path = tmp_path / "DMSO_Rep1.fcs"
        path.write_bytes(b"FCS3.1")
        with patch("ics_figures.services.io.fcsparser.parse") as parse:
            parse.return_value = ({"$TOT": "3"}, events)
            data, meta = read_fcs(path)
        parse.assert_called_once_with(
            str(path), reformat_meta=True, channel_naming="$PnS"
        )
        assert meta["$TOT"] == "3"
        assert data.equals(events)

    def test_read_fcs_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_fcs(tmp_path / "missing.fcs")

    def test_read_fcs_samples(self, events, tmp_path):
        paths = []
        for name in ["DMSO_Rep1", "Nocodazole_2h_Rep2"]:
            path = tmp_path / f"{name}.fcs"
            path.write_bytes(b"FCS3.1")
            paths.append(path)
        with patch("ics_figures.services.io.fcsparser.parse") as parse:
            parse.return_value = ({}, events)
            table = read_fcs_samples(paths)
        assert len(table) == 6
        assert table["condition"].unique().tolist() == ["DMSO", "Nocodazole_2h"]
        assert table["replicate"].unique().tolist() == ["Rep1", "Rep2"]
        assert table["sample"].iloc[-1] == "Nocodazole_2h_Rep2"

    def test_read_fcs_samples_empty(self):
        with pytest.raises(ValueError, match="No FCS files"):
            read_fcs_samples([])
