"""
Tests for the bundled datasets and the settings.
"""

import pytest
import pandas as pd
from ics_figures.config import Settings, PACKAGE_DATA_DIR
from ics_figures.datasets import DATASETS, dataset_path, load_dataset, list_datasets
from ics_figures.core.gating import load_gating_strategy


class TestDatasets:
    """Test the dataset registry."""

    def test_all_files_exist(self):
        for name in DATASETS:
            assert dataset_path(name).exists()

    def test_unknown_dataset(self):
        with pytest.raises(KeyError, match="Available"):
            dataset_path("nope")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            dataset_path("screen_counts", data_dir=tmp_path)

    def test_list_datasets(self):
        listing = list_datasets()
        assert list(listing.columns) == ["name", "file", "description"]
        assert set(listing["name"]) == set(DATASETS)

    def test_imaging_features(self):
        df = load_dataset("imaging_features")
        assert {"sample", "condition", "replicate", "FSC-A", "DAPI-A"} <= set(df.columns)
        assert set(df["condition"]) == {"control", "treated"}
        assert len(df) == 1000

    def test_mitosis_features(self):
        df = load_dataset("mitosis_features")
        assert df["phase"].value_counts().tolist() == [120] * 5

    def test_screen_counts(self):
        df = load_dataset("screen_counts")
        assert df["sgRNA"].is_unique
        assert (df["Gene"] == "NT").sum() == 40
        assert "rep2_NS" in df.columns

    def test_gating_strategy(self):
        spec = load_dataset("gating_strategy")
        assert isinstance(spec, dict)
        strategy = load_gating_strategy(spec)
        assert strategy.populations[0] == "cells"


class TestSettings:
    """Test environment based configuration."""

    def test_defaults(self):
        settings = Settings()
        assert settings.data_dir == PACKAGE_DATA_DIR
        assert "png" in settings.save_formats
        assert settings.delimiter == "_"

    def test_environment_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ICS_RANDOM_SEED", "7")
        monkeypatch.setenv("ICS_OUTPUT_DIR", str(tmp_path))
        settings = Settings()
        assert settings.random_seed == 7
        assert settings.output_dir == tmp_path
