"""
Mitotic-phase classification report.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from ..core.mitosis import MitosisClassification, run_mitosis_classification
from ..core.plots import (
    plot_confusion_matrix,
    plot_umap,
    plot_variable_importance,
)
from ..services.io import read_dataframe
from .base_report import BaseReport, BaseReportConfig, markdown_table


@dataclass
class MitosisReportConfig(BaseReportConfig):
    out_dir: Union[str, Path] = "mitosis_report"
    features: Optional[List[str]] = None
    label_col: str = "phase"
    classes: Optional[List[str]] = None
    scaling: str = "standard"  # "standard", "robust", "minmax"
    test_size: float = 0.3
    max_depth: Optional[int] = 4
    min_samples_leaf: int = 5
    criterion: str = "gini"
    class_weight: Optional[str] = None
    cv: int = 5
    permutation_repeats: int = 0
    with_umap: bool = True
    umap_neighbors: int = 15
    umap_min_dist: float = 0.1
    random_state: Optional[int] = None


class MitosisReport(BaseReport):
    """
    Decision-tree classification of mitotic phases from image features.

    Outputs:
      - plots: umap, confusion_matrix, confusion_matrix_normalized,
        variable_importance
      - tables: confusion_matrix, confusion_matrix_normalized, class_report,
        variable_importance, cv_scores, umap_embedding
      - tree_rules.txt, report.md / report.html
    """

    title = "Mitotic Phase Classification Report"

    def __init__(
        self,
        config: MitosisReportConfig,
        features_path: Union[str, Path, pd.DataFrame],
    ):
        super().__init__(config)
        self.df = (
            features_path.copy()
            if isinstance(features_path, pd.DataFrame)
            else read_dataframe(features_path)
        )
        if self.cfg.label_col not in self.df.columns:
            raise KeyError(
                f"Label column '{self.cfg.label_col}' not found in table"
            )
        self.features = (
            list(self.cfg.features)
            if self.cfg.features is not None
            else [
                c
                for c in self.df.columns
                if c != self.cfg.label_col
                and pd.api.types.is_numeric_dtype(self.df[c])
            ]
        )
        self.result: Optional[MitosisClassification] = None

    def _make_summary(self) -> Dict:
        cfg = self.cfg
        self.result = run_mitosis_classification(
            self.df,
            self.features,
            label_col=cfg.label_col,
            classes=cfg.classes,
            scaling=cfg.scaling,
            test_size=cfg.test_size,
            max_depth=cfg.max_depth,
            min_samples_leaf=cfg.min_samples_leaf,
            criterion=cfg.criterion,
            class_weight=cfg.class_weight,
            cv=cfg.cv,
            permutation_repeats=cfg.permutation_repeats,
            with_umap=cfg.with_umap,
            umap_neighbors=cfg.umap_neighbors,
            umap_min_dist=cfg.umap_min_dist,
            random_state=cfg.random_state,
        )
        result = self.result
        top = result.importance.iloc[0]
        return {
            "n_events": int(len(result.labels)),
            "n_classes": len(result.classes),
            "classes": result.classes,
            "features": result.features,
            "train_accuracy": round(float(result.train["accuracy"]), 4),
            "test_accuracy": round(float(result.test["accuracy"]), 4),
            "test_balanced_accuracy": round(
                float(result.test["balanced_accuracy"]), 4
            ),
            "cv_accuracy_mean": round(
                float(result.cv_scores["accuracy"].mean()), 4
            ),
            "tree_depth": int(result.model.get_depth()),
            "n_leaves": int(result.model.get_n_leaves()),
            "top_feature": str(top["feature"]),
            "params": result.params,
        }

    def _make_tables(self) -> None:
        test = self.result.test
        self._save_table(test["confusion_matrix"], "confusion_matrix", index=True)
        self._save_table(
            test["confusion_matrix_normalized"],
            "confusion_matrix_normalized",
            index=True,
        )
        self._save_table(test["report"], "class_report", index=True)
        self._save_table(self.result.importance, "variable_importance")
        self._save_table(self.result.cv_scores, "cv_scores")
        if self.result.umap is not None:
            self._save_table(
                self.result.umap.assign(
                    **{self.cfg.label_col: self.result.labels}
                ),
                "umap_embedding",
            )
        rules = self.out_dir / "tree_rules.txt"
        rules.write_text(self.result.rules, encoding="utf-8")
        self.outputs["tree_rules"] = [rules]

    def _make_plots(self) -> None:
        result = self.result
        if result.umap is not None:
            self._save_plot(
                plot_umap(result.umap, labels=result.labels, order=result.classes),
                "umap",
            )
        self._save_plot(
            plot_confusion_matrix(
                result.test["confusion_matrix"],
                title="Confusion matrix (test set)",
            ),
            "confusion_matrix",
        )
        self._save_plot(
            plot_confusion_matrix(
                result.test["confusion_matrix_normalized"],
                normalized=True,
                title="Confusion matrix (test set, row normalized)",
            ),
            "confusion_matrix_normalized",
        )
        error_col = (
            "permutation_std"
            if "permutation_std" in result.importance.columns
            else None
        )
        self._save_plot(
            plot_variable_importance(
                result.importance,
                value_col=(
                    "permutation_mean" if error_col else "importance"
                ),
                error_col=error_col,
            ),
            "variable_importance",
        )

    def _extra_sections(self) -> str:
        text = "\n\n## Per-class metrics (test set)\n\n"
        text += markdown_table(self.result.test["report"].reset_index())
        text += "\n\n## Decision tree\n\n```\n" + self.result.rules + "\n```\n"
        return text
