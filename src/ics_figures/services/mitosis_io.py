import json
import matplotlib.pyplot as plt
from pathlib import Path
from typing import Dict, List, Optional, Union
from pandas import DataFrame

from ics_figures.core.mitosis import (
    MitosisClassification,
    run_mitosis_classification,
)
from ics_figures.core.plots import (
    plot_confusion_matrix,
    plot_umap,
    plot_variable_importance,
)
from .features_io import _load
from .io import save_figure, write_table


def write_mitosis_classification(
    df: Union[Path, str, DataFrame],
    features: List[str],
    output_dir: Union[Path, str],
    label_col: str = "phase",
    prefix: str = "mitosis",
    classes: Optional[List[str]] = None,
    formats: Optional[List[str]] = None,
    **classification_kwargs,
) -> Dict:
    """
    Run the mitotic-phase classification and write its tables and figures.

    Writes
    ------
    <prefix>_confusion_matrix.tsv, <prefix>_confusion_matrix_normalized.tsv,
    <prefix>_class_report.tsv, <prefix>_variable_importance.tsv,
    <prefix>_cv_scores.tsv, <prefix>_umap.tsv, <prefix>_tree_rules.txt,
    <prefix>_metrics.json and the figures <prefix>_umap,
    <prefix>_confusion_matrix, <prefix>_variable_importance.

    Returns
    -------
    dict
        {"result": MitosisClassification, "files": name -> list of paths}
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    data = _load(df)
    result: MitosisClassification = run_mitosis_classification(
        data,
        features,
        label_col=label_col,
        classes=classes,
        **classification_kwargs,
    )
    test = result.test
    files: Dict[str, List[Path]] = {
        "confusion_matrix": [
            write_table(
                test["confusion_matrix"],
                output_dir / f"{prefix}_confusion_matrix.tsv",
                index=True,
            )
        ],
        "confusion_matrix_normalized": [
            write_table(
                test["confusion_matrix_normalized"],
                output_dir / f"{prefix}_confusion_matrix_normalized.tsv",
                index=True,
            )
        ],
        "class_report": [
            write_table(
                test["report"],
                output_dir / f"{prefix}_class_report.tsv",
                index=True,
            )
        ],
        "variable_importance": [
            write_table(
                result.importance,
                output_dir / f"{prefix}_variable_importance.tsv",
            )
        ],
        "cv_scores": [
            write_table(result.cv_scores, output_dir / f"{prefix}_cv_scores.tsv")
        ],
    }

    rules_file = output_dir / f"{prefix}_tree_rules.txt"
    rules_file.write_text(result.rules)
    files["tree_rules"] = [rules_file]

    metrics = {
        "n_events": int(len(result.labels)),
        "classes": result.classes,
        "features": result.features,
        "train_accuracy": result.train["accuracy"],
        "test_accuracy": test["accuracy"],
        "test_balanced_accuracy": test["balanced_accuracy"],
        "cv_accuracy_mean": float(result.cv_scores["accuracy"].mean()),
        "tree_depth": int(result.model.get_depth()),
        "n_leaves": int(result.model.get_n_leaves()),
        "params": result.params,
    }
    metrics_file = output_dir / f"{prefix}_metrics.json"
    metrics_file.write_text(json.dumps(metrics, indent=2))
    files["metrics"] = [metrics_file]

    figures = {
        "confusion_matrix": plot_confusion_matrix(
            test["confusion_matrix_normalized"],
            normalized=True,
            title="Confusion matrix (test set)",
        ),
        "variable_importance": plot_variable_importance(result.importance),
    }
    if result.umap is not None:
        files["umap_table"] = [
            write_table(
                result.umap.assign(**{label_col: result.labels}),
                output_dir / f"{prefix}_umap.tsv",
            )
        ]
        figures["umap"] = plot_umap(
            result.umap, labels=result.labels, order=result.classes
        )
    for name, fig in figures.items():
        files[name] = save_figure(
            fig, output_dir, f"{prefix}_{name}", formats=formats
        )
        plt.close(fig)
    print(f"Mitosis classification written to {output_dir}")
    return {"result": result, "files": files, "metrics": metrics}
