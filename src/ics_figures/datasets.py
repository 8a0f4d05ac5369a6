"""
Registry of the datasets shipped with the package.

The bundled tables are small synthetic stand-ins with the layout of the
sorter exports, so that every analysis can be run without external files.
"""

import json
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
from pandas import DataFrame

from .config import settings
from .services.io import read_dataframe


DATASETS: Dict[str, Tuple[str, str]] = {
    "imaging_features": (
        "imaging_features.tsv",
        "Per-cell image features of two conditions in two replicates",
    ),
    "mitosis_features": (
        "mitosis_features.tsv",
        "Per-cell image features with annotated mitotic phase",
    ),
    "screen_counts": (
        "screen_counts.tsv",
        "sgRNA counts of a two-replicate screen sorted into bins A-F and NS",
    ),
    "screen_bin_bounds": (
        "screen_bin_bounds.tsv",
        "Expression quantiles captured by the sorting bins A-F",
    ),
    "gating_strategy": (
        "gating_strategy.json",
        "Gating strategy for the imaging feature events",
    ),
}


def dataset_path(name: str, data_dir: Optional[Union[Path, str]] = None) -> Path:
    if name not in DATASETS:
        raise KeyError(
            f"Unknown dataset '{name}'. Available: {sorted(DATASETS)}"
        )
    data_dir = Path(settings.data_dir if data_dir is None else data_dir)
    path = data_dir / DATASETS[name][0]
    if not path.exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")
    return path


def load_dataset(
    name: str, data_dir: Optional[Union[Path, str]] = None
) -> Union[DataFrame, Dict]:
    """
    Load a bundled dataset.

    Returns
    -------
    DataFrame or dict
        Tables are returned as DataFrame, JSON files as parsed objects.
    """
    path = dataset_path(name, data_dir)
    if path.suffix == ".json":
        return json.loads(path.read_text())
    return read_dataframe(path)


def list_datasets() -> DataFrame:
    return pd.DataFrame(
        [
            {"name": name, "file": filename, "description": description}
            for name, (filename, description) in DATASETS.items()
        ]
    )
