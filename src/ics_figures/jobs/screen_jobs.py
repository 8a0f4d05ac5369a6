"""
PyPipeGraph2 job wrappers for the bin-sort screen analysis.
"""

from dataclasses import asdict
from pypipegraph2 import (
    Job,
    MultiFileGeneratingJob,
    FunctionInvariant,
    ParameterInvariant,
)
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union
from ics_figures.config import settings
from ics_figures.core.screen import (
    estimate_guide_means,
    gene_level_stats,
    resampling_analysis,
)
from ics_figures.models.screen_report import ScreenReport, ScreenReportConfig
from ics_figures.services.screen_io import (
    write_resampling_analysis,
    write_screen_analysis,
)


def screen_analysis_job(
    count_table: Union[Path, str],
    bin_bounds: Union[Path, str],
    output_dir: Union[Path, str],
    prefix: str = "screen",
    method: str = "maude",
    fdr_threshold: float = 0.05,
    z_threshold: float = 0.0,
    direction: str = "both",
    min_guides: int = 1,
    unsorted_bin: str = "NS",
    nt_label: Optional[str] = "NT",
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
    save_formats: Optional[List[str]] = None,
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Guide scores, gene statistics and hits of a bin-sorted screen.

    Parameters
    ----------
    count_table : Path or str
        Wide count table (sgRNA, Gene, <screen>_<bin> columns).
    bin_bounds : Path or str
        Bin bounds table (bin, low, high).
    output_dir : Path or str
        Output directory.
    method : str
        "maude" or "ratio".
    fdr_threshold, z_threshold, direction
        Hit calling thresholds.

    Returns
    -------
    MultiFileGeneratingJob
        Job writing the guide, gene and hit tables and the summary json.
        Figures are written next to them.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    save_formats = list(settings.save_formats if save_formats is None else save_formats)

    outfiles = [
        output_dir / f"{prefix}_guide_scores.tsv",
        output_dir / f"{prefix}_gene_stats.tsv",
        output_dir / f"{prefix}_hits.tsv",
        output_dir / f"{prefix}_summary.json",
    ]

    def __dump(
        outfiles,
        count_table=count_table,
        bin_bounds=bin_bounds,
        output_dir=output_dir,
        prefix=prefix,
        method=method,
        fdr_threshold=fdr_threshold,
        z_threshold=z_threshold,
        direction=direction,
        min_guides=min_guides,
        unsorted_bin=unsorted_bin,
        nt_label=nt_label,
        sgrna_col=sgrna_col,
        gene_col=gene_col,
        save_formats=save_formats,
    ):
        write_screen_analysis(
            count_table,
            bin_bounds,
            output_dir,
            prefix=prefix,
            method=method,
            fdr_threshold=fdr_threshold,
            z_threshold=z_threshold,
            direction=direction,
            min_guides=min_guides,
            unsorted_bin=unsorted_bin,
            nt_label=nt_label,
            sgrna_col=sgrna_col,
            gene_col=gene_col,
            formats=save_formats,
        )

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(f"{prefix}_estimate_guide_means_func", estimate_guide_means)
    )
    job.depends_on(
        FunctionInvariant(f"{prefix}_gene_level_stats_func", gene_level_stats)
    )
    job.depends_on(
        FunctionInvariant(f"{prefix}_write_screen_analysis_func", write_screen_analysis)
    )
    job.depends_on(
        ParameterInvariant(
            f"{prefix}_screen_params",
            (
                str(count_table),
                str(bin_bounds),
                method,
                fdr_threshold,
                z_threshold,
                direction,
                min_guides,
                unsorted_bin,
                nt_label,
                sgrna_col,
                gene_col,
                tuple(save_formats),
            ),
        )
    )
    return job


def resampling_job(
    count_table: Union[Path, str],
    bin_bounds: Union[Path, str],
    output_dir: Union[Path, str],
    prefix: str = "resampling",
    fractions: Sequence[float] = (0.1, 0.25, 0.5, 1.0),
    n_iterations: int = 10,
    reference_hits: Optional[Iterable[str]] = None,
    fdr_threshold: float = 0.05,
    method: str = "maude",
    seed: Optional[int] = None,
    min_guides: int = 1,
    by_screen: bool = False,
    save_formats: Optional[List[str]] = None,
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Down-sampling analysis of hit recovery.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    save_formats = list(settings.save_formats if save_formats is None else save_formats)
    seed = settings.random_seed if seed is None else seed
    reference_hits = (
        sorted(str(g) for g in reference_hits)
        if reference_hits is not None
        else None
    )

    outfiles = [
        output_dir / f"{prefix}_iterations.tsv",
        output_dir / f"{prefix}_summary.tsv",
    ]
    for fmt in save_formats:
        outfiles.append(output_dir / f"{prefix}_curve.{fmt}")

    def __dump(
        outfiles,
        count_table=count_table,
        bin_bounds=bin_bounds,
        output_dir=output_dir,
        prefix=prefix,
        fractions=fractions,
        n_iterations=n_iterations,
        reference_hits=reference_hits,
        fdr_threshold=fdr_threshold,
        method=method,
        seed=seed,
        min_guides=min_guides,
        by_screen=by_screen,
        save_formats=save_formats,
    ):
        write_resampling_analysis(
            count_table,
            bin_bounds,
            output_dir,
            prefix=prefix,
            fractions=fractions,
            n_iterations=n_iterations,
            reference_hits=reference_hits,
            fdr_threshold=fdr_threshold,
            method=method,
            seed=seed,
            min_guides=min_guides,
            by_screen=by_screen,
            formats=save_formats,
        )

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(f"{prefix}_resampling_analysis_func", resampling_analysis)
    )
    job.depends_on(
        ParameterInvariant(
            f"{prefix}_resampling_params",
            (
                str(count_table),
                str(bin_bounds),
                tuple(fractions),
                n_iterations,
                tuple(reference_hits) if reference_hits is not None else None,
                fdr_threshold,
                method,
                seed,
                min_guides,
                by_screen,
                tuple(save_formats),
            ),
        )
    )
    return job


def screen_report_job(
    config: ScreenReportConfig,
    count_table: Union[Path, str],
    bin_bounds: Union[Path, str],
    nt_file: Optional[Union[Path, str]] = None,
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    out_dir = Path(config.out_dir)
    outfiles = [
        out_dir / "report.md",
        out_dir / "report.html",
        out_dir / "summary.json",
    ]

    def __dump(
        outfiles,
        config=config,
        count_table=count_table,
        bin_bounds=bin_bounds,
        nt_file=nt_file,
    ):
        ScreenReport(config, count_table, bin_bounds, nt_file).build()

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)
    job.depends_on(
        FunctionInvariant(
            f"{config.project_name}_screen_report_guide_means",
            estimate_guide_means,
        )
    )
    job.depends_on(
        ParameterInvariant(
            f"{config.project_name}_screen_report_params",
            (
                str(count_table),
                str(bin_bounds),
                str(nt_file),
                tuple(sorted((k, str(v)) for k, v in asdict(config).items())),
            ),
        )
    )
    return job
