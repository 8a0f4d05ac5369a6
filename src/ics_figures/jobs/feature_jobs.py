"""
PyPipeGraph2 job wrappers for the imaging feature figures.
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
from ics_figures.core.features import summarize_features, transform_features
from ics_figures.core.gating import GatingStrategy, load_gating_strategy
from ics_figures.models.feature_report import FeatureReport, FeatureReportConfig
from ics_figures.services.features_io import (
    write_feature_figures,
    write_gating_summary,
)


def feature_figures_job(
    feature_table: Union[Path, str],
    features: List[str],
    output_dir: Union[Path, str],
    prefix: str = "features",
    transform: str = "none",
    cofactor: float = 150.0,
    normalization: Optional[str] = None,
    normalize_by: Optional[str] = "replicate",
    control_condition: Optional[str] = None,
    reference_condition: Optional[str] = None,
    correlation_method: str = "pearson",
    condition_col: str = "condition",
    save_formats: Optional[List[str]] = None,
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Density plots, box plots and correlation heatmap of image features.

    Parameters are those of services.features_io.write_feature_figures.

    Returns
    -------
    MultiFileGeneratingJob
        Job that writes the summary tables and feature figures.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    save_formats = list(settings.save_formats if save_formats is None else save_formats)

    outfiles = [
        output_dir / f"{prefix}_summary.tsv",
        output_dir / f"{prefix}_correlation.tsv",
    ]
    if reference_condition is not None:
        outfiles.append(output_dir / f"{prefix}_comparison.tsv")
    for plot_name in ["density", "boxplot", "correlation"]:
        for fmt in save_formats:
            outfiles.append(output_dir / f"{prefix}_{plot_name}.{fmt}")

    def __dump(
        outfiles,
        feature_table=feature_table,
        features=features,
        output_dir=output_dir,
        prefix=prefix,
        transform=transform,
        cofactor=cofactor,
        normalization=normalization,
        normalize_by=normalize_by,
        control_condition=control_condition,
        reference_condition=reference_condition,
        correlation_method=correlation_method,
        condition_col=condition_col,
        save_formats=save_formats,
    ):
        write_feature_figures(
            feature_table,
            features,
            output_dir,
            prefix=prefix,
            transform=transform,
            cofactor=cofactor,
            normalization=normalization,
            normalize_by=normalize_by,
            control_condition=control_condition,
            reference_condition=reference_condition,
            correlation_method=correlation_method,
            condition_col=condition_col,
            formats=save_formats,
        )

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(
            f"{prefix}_write_feature_figures_func", write_feature_figures
        )
    )
    job.depends_on(
        FunctionInvariant(f"{prefix}_transform_features_func", transform_features)
    )
    job.depends_on(
        FunctionInvariant(f"{prefix}_summarize_features_func", summarize_features)
    )
    job.depends_on(
        ParameterInvariant(
            f"{prefix}_feature_figures_params",
            (
                str(feature_table),
                tuple(features),
                transform,
                cofactor,
                normalization,
                normalize_by,
                control_condition,
                reference_condition,
                correlation_method,
                condition_col,
                tuple(save_formats),
            ),
        )
    )
    return job


def gating_summary_job(
    event_table: Union[Path, str],
    gating: Union[Path, str],
    output_dir: Union[Path, str],
    prefix: str = "gating",
    by: Optional[str] = "sample",
    plot: bool = True,
    save_formats: Optional[List[str]] = None,
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Population statistics and gate plots for a gating strategy (JSON).
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    save_formats = list(settings.save_formats if save_formats is None else save_formats)
    strategy: GatingStrategy = load_gating_strategy(gating)

    outfiles = [output_dir / f"{prefix}_population_stats.tsv"]
    if plot:
        for gate in strategy.gates:
            for fmt in save_formats:
                outfiles.append(output_dir / f"{prefix}_{gate.name}.{fmt}")

    def __dump(
        outfiles,
        event_table=event_table,
        strategy=strategy,
        output_dir=output_dir,
        prefix=prefix,
        by=by,
        plot=plot,
        save_formats=save_formats,
    ):
        write_gating_summary(
            event_table,
            strategy,
            output_dir,
            prefix=prefix,
            by=by,
            plot=plot,
            formats=save_formats,
        )

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(f"{prefix}_write_gating_summary_func", write_gating_summary)
    )
    job.depends_on(
        ParameterInvariant(
            f"{prefix}_gating_params",
            (
                str(event_table),
                str(strategy.to_dict()),
                by,
                plot,
                tuple(save_formats),
            ),
        )
    )
    return job


def feature_report_job(
    config: FeatureReportConfig,
    feature_table: Union[Path, str],
    gating: Optional[Union[Path, str]] = None,
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Build a FeatureReport (report.md, report.html, summary.json and assets).
    """
    out_dir = Path(config.out_dir)
    outfiles = [
        out_dir / "report.md",
        out_dir / "report.html",
        out_dir / "summary.json",
    ]

    def __dump(
        outfiles, config=config, feature_table=feature_table, gating=gating
    ):
        FeatureReport(config, feature_table, gating).build()

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(
            f"{config.project_name}_feature_report_tables",
            FeatureReport._make_tables,
        )
    )
    job.depends_on(
        ParameterInvariant(
            f"{config.project_name}_feature_report_params",
            (
                str(feature_table),
                str(gating),
                tuple(sorted((k, str(v)) for k, v in asdict(config).items())),
            ),
        )
    )
    return job
