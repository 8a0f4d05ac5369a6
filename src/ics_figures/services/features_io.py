import pandas as pd
import matplotlib.pyplot as plt
from pathlib import Path
from typing import Dict, List, Optional, Union
from pandas import DataFrame

from ics_figures.core.features import (
    compare_conditions,
    feature_correlation,
    normalize_features,
    summarize_features,
    transform_features,
)
from ics_figures.core.gating import GatingStrategy, load_gating_strategy
from ics_figures.core.plots import (
    plot_correlation_heatmap,
    plot_feature_boxplot,
    plot_feature_density,
    plot_gate,
)
from .io import read_dataframe, save_figure, write_table


def _load(df: Union[Path, str, DataFrame]) -> DataFrame:
    if isinstance(df, (str, Path)):
        return read_dataframe(df)
    if isinstance(df, DataFrame):
        return df
    raise TypeError("df must be a DataFrame or a path to a file")


def write_feature_figures(
    df: Union[Path, str, DataFrame],
    features: List[str],
    output_dir: Union[Path, str],
    prefix: str = "features",
    transform: str = "none",
    cofactor: float = 150.0,
    normalization: Optional[str] = None,
    normalize_by: Optional[Union[str, List[str]]] = "replicate",
    control_condition: Optional[str] = None,
    reference_condition: Optional[str] = None,
    correlation_method: str = "pearson",
    condition_col: str = "condition",
    formats: Optional[List[str]] = None,
) -> Dict[str, List[Path]]:
    """
    Density plots, box plots and correlation heatmap of image features.

    Writes
    ------
    <prefix>_summary.tsv, <prefix>_correlation.tsv,
    <prefix>_comparison.tsv (if reference_condition is given) and the
    figures <prefix>_density, <prefix>_boxplot, <prefix>_correlation.

    Returns
    -------
    dict
        Output name -> list of written paths.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    data = _load(df)
    data = transform_features(data, features, method=transform, cofactor=cofactor)
    if normalization is not None:
        data = normalize_features(
            data,
            features,
            method=normalization,
            by=normalize_by,
            control_condition=control_condition,
            condition_col=condition_col,
        )

    written: Dict[str, List[Path]] = {}
    group_cols = [c for c in [condition_col, "replicate"] if c in data.columns]
    summary = summarize_features(data, features, by=group_cols)
    written["summary"] = [
        write_table(summary, output_dir / f"{prefix}_summary.tsv")
    ]
    corr = feature_correlation(data, features, method=correlation_method)
    written["correlation_table"] = [
        write_table(corr, output_dir / f"{prefix}_correlation.tsv", index=True)
    ]
    if reference_condition is not None:
        comparisons = [
            compare_conditions(
                data, feature, reference_condition, condition_col
            ).assign(feature=feature)
            for feature in features
        ]
        comparison = pd.concat(comparisons, ignore_index=True)
        written["comparison"] = [
            write_table(comparison, output_dir / f"{prefix}_comparison.tsv")
        ]

    hue = condition_col if condition_col in data.columns else None
    replicate = "replicate" if "replicate" in data.columns else None
    figures = {
        "density": plot_feature_density(data, features, hue=hue),
        "boxplot": plot_feature_boxplot(
            data, features, x=condition_col, hue=replicate
        ),
        "correlation": plot_correlation_heatmap(corr),
    }
    for name, fig in figures.items():
        written[name] = save_figure(
            fig, output_dir, f"{prefix}_{name}", formats=formats
        )
        plt.close(fig)
    print(f"Feature figures written to {output_dir}")
    return written


def write_gating_summary(
    events: Union[Path, str, DataFrame],
    gating: Union[Path, str, GatingStrategy, List[Dict], Dict],
    output_dir: Union[Path, str],
    prefix: str = "gating",
    by: Optional[Union[str, List[str]]] = "sample",
    plot: bool = True,
    formats: Optional[List[str]] = None,
) -> Dict[str, List[Path]]:
    """
    Apply a gating strategy, write population statistics and gate plots.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    data = _load(events)
    strategy = (
        gating
        if isinstance(gating, GatingStrategy)
        else load_gating_strategy(gating)
    )
    if by is not None and isinstance(by, str) and by not in data.columns:
        by = None
    stats_df = strategy.population_stats(data, by=by)
    written = {
        "population_stats": [
            write_table(stats_df, output_dir / f"{prefix}_population_stats.tsv")
        ]
    }
    if plot:
        membership = strategy.apply(data)
        for gate in strategy.gates:
            parent = strategy.parent_of(gate)
            parent_events = (
                data if parent == "root" else data[membership[parent]]
            )
            if len(parent_events) == 0:
                continue
            fig = plot_gate(
                parent_events,
                gate,
                in_gate=membership.loc[parent_events.index, gate.name],
            )
            written[f"gate_{gate.name}"] = save_figure(
                fig, output_dir, f"{prefix}_{gate.name}", formats=formats
            )
            plt.close(fig)
    print(f"Gating summary written to {output_dir}")
    return written
