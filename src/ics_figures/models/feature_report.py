"""
Imaging feature report.

Distributions of per-cell image features (density and box plots), their
correlation and, if a gating strategy is given, population statistics of the
gated events.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from ..core.features import (
    ANNOTATION_COLUMNS,
    compare_conditions,
    feature_correlation,
    normalize_features,
    summarize_features,
    transform_features,
)
from ..core.gating import ROOT, GatingStrategy, load_gating_strategy
from ..core.plots import (
    plot_correlation_heatmap,
    plot_feature_boxplot,
    plot_feature_density,
    plot_gate,
)
from ..services.io import read_dataframe
from .base_report import BaseReport, BaseReportConfig, markdown_table


@dataclass
class FeatureReportConfig(BaseReportConfig):
    out_dir: Union[str, Path] = "feature_report"
    features: Optional[List[str]] = None
    condition_col: str = "condition"
    transform: str = "none"  # "arcsinh", "log10", "log2", "none"
    cofactor: float = 150.0
    normalization: Optional[str] = None  # "zscore", "minmax", "robust", "control_median"
    normalize_by: Optional[Union[str, List[str]]] = "replicate"
    control_condition: Optional[str] = None
    reference_condition: Optional[str] = None
    correlation_method: str = "pearson"
    # restrict the feature plots to one gated population
    population: Optional[str] = None
    stats_by: Optional[str] = "sample"


class FeatureReport(BaseReport):
    """
    Feature distributions and correlations of an event table.

    Inputs:
      - event/feature table (TSV, CSV or Excel) with annotation columns
      - optional: gating strategy (JSON path or parsed)

    Outputs:
      - plots: feature_density, feature_boxplot, feature_correlation and one
        gate_<name> plot per gate
      - tables: feature_summary, feature_correlation, condition_comparison,
        population_stats
      - report.md / report.html
    """

    title = "Imaging Feature Report"

    def __init__(
        self,
        config: FeatureReportConfig,
        features_path: Union[str, Path, pd.DataFrame],
        gating: Optional[Union[str, Path, GatingStrategy, Dict, List]] = None,
    ):
        super().__init__(config)
        self.events = (
            features_path.copy()
            if isinstance(features_path, pd.DataFrame)
            else read_dataframe(features_path)
        )
        if gating is None or isinstance(gating, GatingStrategy):
            self.gating = gating
        else:
            self.gating = load_gating_strategy(gating)
        self.features = self._detect_features()
        self.data: Optional[pd.DataFrame] = None
        self.membership: Optional[pd.DataFrame] = None
        self.population_stats: Optional[pd.DataFrame] = None
        self.correlation: Optional[pd.DataFrame] = None
        self.comparison: Optional[pd.DataFrame] = None

    def _detect_features(self) -> List[str]:
        if self.cfg.features is not None:
            return list(self.cfg.features)
        return [
            c
            for c in self.events.columns
            if c not in ANNOTATION_COLUMNS
            and pd.api.types.is_numeric_dtype(self.events[c])
        ]

    def _prepare(self) -> pd.DataFrame:
        data = self.events
        if self.gating is not None:
            self.membership = self.gating.apply(data)
            if self.cfg.population not in (None, ROOT):
                data = data[self.membership[self.cfg.population]]
                print(
                    f"Using {len(data)} events in population "
                    f"'{self.cfg.population}'"
                )
        data = transform_features(
            data, self.features, method=self.cfg.transform,
            cofactor=self.cfg.cofactor,
        )
        if self.cfg.normalization is not None:
            by = self.cfg.normalize_by
            if isinstance(by, str) and by not in data.columns:
                by = None
            data = normalize_features(
                data,
                self.features,
                method=self.cfg.normalization,
                by=by,
                control_condition=self.cfg.control_condition,
                condition_col=self.cfg.condition_col,
            )
        return data

    def _make_summary(self) -> Dict:
        self.data = self._prepare()
        summary = {
            "n_events": int(len(self.events)),
            "n_events_analysed": int(len(self.data)),
            "features": self.features,
            "transform": self.cfg.transform,
            "normalization": self.cfg.normalization or "none",
        }
        for col in ANNOTATION_COLUMNS:
            if col in self.events.columns:
                summary[f"n_{col}s"] = int(self.events[col].nunique())
        if self.cfg.condition_col in self.events.columns:
            summary["conditions"] = sorted(
                self.events[self.cfg.condition_col].astype(str).unique()
            )
        if self.gating is not None:
            summary["populations"] = {
                name: int(self.membership[name].sum())
                for name in self.gating.populations
            }
        return summary

    def _group_cols(self) -> List[str]:
        return [
            c
            for c in [self.cfg.condition_col, "replicate"]
            if c in self.data.columns
        ]

    def _make_tables(self) -> None:
        self._save_table(
            summarize_features(self.data, self.features, by=self._group_cols()),
            "feature_summary",
        )
        self.correlation = feature_correlation(
            self.data, self.features, method=self.cfg.correlation_method
        )
        self._save_table(self.correlation, "feature_correlation", index=True)
        if self.cfg.reference_condition is not None:
            self.comparison = pd.concat(
                [
                    compare_conditions(
                        self.data,
                        feature,
                        self.cfg.reference_condition,
                        self.cfg.condition_col,
                    ).assign(feature=feature)
                    for feature in self.features
                ],
                ignore_index=True,
            )
            self._save_table(self.comparison, "condition_comparison")
        if self.gating is not None:
            by = self.cfg.stats_by
            if by is not None and by not in self.events.columns:
                by = None
            self.population_stats = self.gating.population_stats(
                self.events, by=by
            )
            self._save_table(self.population_stats, "population_stats")

    def _make_plots(self) -> None:
        hue = (
            self.cfg.condition_col
            if self.cfg.condition_col in self.data.columns
            else None
        )
        self._save_plot(
            plot_feature_density(self.data, self.features, hue=hue),
            "feature_density",
        )
        self._save_plot(
            plot_feature_boxplot(
                self.data,
                self.features,
                x=self.cfg.condition_col,
                hue="replicate" if "replicate" in self.data.columns else None,
            ),
            "feature_boxplot",
        )
        self._save_plot(
            plot_correlation_heatmap(
                self.correlation,
                title=f"Feature correlation ({self.cfg.correlation_method})",
            ),
            "feature_correlation",
        )
        if self.gating is None:
            return
        for gate in self.gating.gates:
            parent = self.gating.parent_of(gate)
            parent_events = (
                self.events
                if parent == ROOT
                else self.events[self.membership[parent]]
            )
            if len(parent_events) == 0:
                continue
            self._save_plot(
                plot_gate(
                    parent_events,
                    gate,
                    in_gate=self.membership.loc[parent_events.index, gate.name],
                ),
                f"gate_{gate.name}",
            )

    def _extra_sections(self) -> str:
        text = ""
        if self.population_stats is not None:
            text += "\n\n## Populations\n\n"
            text += markdown_table(self.population_stats, max_rows=40)
        if self.comparison is not None:
            text += "\n\n## Condition comparison\n\n"
            text += markdown_table(self.comparison, max_rows=40)
        return text
