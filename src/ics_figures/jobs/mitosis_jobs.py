"""
PyPipeGraph2 job wrappers for the mitotic-phase classification.
"""

from dataclasses import asdict
from pypipegraph2 import (
    Job,
    MultiFileGeneratingJob,
    FunctionInvariant,
    ParameterInvariant,
)
from pathlib import Path
from typing import List, Optional, Union
from ics_figures.config import settings
from ics_figures.core.mitosis import run_mitosis_classification
from ics_figures.models.mitosis_report import MitosisReport, MitosisReportConfig
from ics_figures.services.mitosis_io import write_mitosis_classification


def mitosis_classification_job(
    feature_table: Union[Path, str],
    features: List[str],
    output_dir: Union[Path, str],
    label_col: str = "phase",
    prefix: str = "mitosis",
    classes: Optional[List[str]] = None,
    with_umap: bool = True,
    random_state: Optional[int] = None,
    save_formats: Optional[List[str]] = None,
    dependencies: List[Job] = [],
    **classification_kwargs,
) -> MultiFileGeneratingJob:
    """
    Train and evaluate the phase decision tree, write tables and figures.

    Parameters
    ----------
    feature_table : Path or str
        Labelled event table.
    features : list
        Feature columns used for classification.
    output_dir : Path or str
        Output directory.
    label_col : str
        Phase label column.
    classes : list, optional
        Classes to keep, in display order.
    with_umap : bool
        Also compute and plot the UMAP embedding.
    random_state : int, optional
        Seed, defaults to settings.random_seed.
    **classification_kwargs
        Forwarded to run_mitosis_classification (scaling, max_depth, ...).

    Returns
    -------
    MultiFileGeneratingJob
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    save_formats = list(settings.save_formats if save_formats is None else save_formats)
    seed = settings.random_seed if random_state is None else random_state

    outfiles = [
        output_dir / f"{prefix}_confusion_matrix.tsv",
        output_dir / f"{prefix}_confusion_matrix_normalized.tsv",
        output_dir / f"{prefix}_class_report.tsv",
        output_dir / f"{prefix}_variable_importance.tsv",
        output_dir / f"{prefix}_cv_scores.tsv",
        output_dir / f"{prefix}_tree_rules.txt",
        output_dir / f"{prefix}_metrics.json",
    ]
    plot_names = ["confusion_matrix", "variable_importance"]
    if with_umap:
        outfiles.append(output_dir / f"{prefix}_umap.tsv")
        plot_names.append("umap")
    for plot_name in plot_names:
        for fmt in save_formats:
            outfiles.append(output_dir / f"{prefix}_{plot_name}.{fmt}")

    def __dump(
        outfiles,
        feature_table=feature_table,
        features=features,
        output_dir=output_dir,
        label_col=label_col,
        prefix=prefix,
        classes=classes,
        with_umap=with_umap,
        seed=seed,
        save_formats=save_formats,
        classification_kwargs=classification_kwargs,
    ):
        write_mitosis_classification(
            feature_table,
            features,
            output_dir,
            label_col=label_col,
            prefix=prefix,
            classes=classes,
            formats=save_formats,
            with_umap=with_umap,
            random_state=seed,
            **classification_kwargs,
        )

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(
            f"{prefix}_run_mitosis_classification_func",
            run_mitosis_classification,
        )
    )
    job.depends_on(
        FunctionInvariant(
            f"{prefix}_write_mitosis_classification_func",
            write_mitosis_classification,
        )
    )
    job.depends_on(
        ParameterInvariant(
            f"{prefix}_mitosis_params",
            (
                str(feature_table),
                tuple(features),
                label_col,
                tuple(classes) if classes else None,
                with_umap,
                seed,
                tuple(save_formats),
                tuple(sorted((k, str(v)) for k, v in classification_kwargs.items())),
            ),
        )
    )
    return job


def mitosis_report_job(
    config: MitosisReportConfig,
    feature_table: Union[Path, str],
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    out_dir = Path(config.out_dir)
    outfiles = [
        out_dir / "report.md",
        out_dir / "report.html",
        out_dir / "summary.json",
        out_dir / "tree_rules.txt",
    ]

    def __dump(outfiles, config=config, feature_table=feature_table):
        MitosisReport(config, feature_table).build()

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(
            f"{config.project_name}_mitosis_report_classification",
            run_mitosis_classification,
        )
    )
    job.depends_on(
        ParameterInvariant(
            f"{config.project_name}_mitosis_report_params",
            (
                str(feature_table),
                tuple(sorted((k, str(v)) for k, v in asdict(config).items())),
            ),
        )
    )
    return job
