from pathlib import Path
from typing import List, Optional

import typer

from . import __version__
from .config import settings
from .datasets import dataset_path, list_datasets
from .models import (
    FeatureReport,
    FeatureReportConfig,
    MitosisReport,
    MitosisReportConfig,
    ScreenReport,
    ScreenReportConfig,
)
from .services.features_io import write_gating_summary
from .services.screen_io import write_resampling_analysis

app = typer.Typer(
    help="Figure analyses for the image-enabled cell sorter: imaging "
    "features, mitotic-phase classification and bin-sort CRISPR screens"
)


def _out(out_dir: Optional[Path], name: str) -> Path:
    return Path(out_dir) if out_dir is not None else settings.output_dir / name


def _split(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


@app.command()
def info() -> None:
    """Show basic environment info."""
    typer.echo(f"ics-figures {__version__}")
    typer.echo(f"Environment: {settings.environment}")
    typer.echo(f"Data dir: {settings.data_dir}")
    typer.echo(f"Output dir: {settings.output_dir}")
    typer.echo(f"Random seed: {settings.random_seed}")
    typer.echo(f"Figure formats: {', '.join(settings.save_formats)}")


@app.command()
def datasets() -> None:
    """List the bundled datasets."""
    for row in list_datasets().itertuples(index=False):
        typer.echo(f"{row.name:<20} {row.file:<24} {row.description}")


@app.command()
def features(
    table: Optional[Path] = typer.Option(
        None, "--input", "-i", help="Event/feature table"
    ),
    gating: Optional[Path] = typer.Option(None, help="Gating strategy JSON"),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o"),
    feature: Optional[str] = typer.Option(
        None, help="Comma separated feature columns (default: all numeric)"
    ),
    transform: str = typer.Option("none", help="arcsinh, log10, log2 or none"),
    normalization: Optional[str] = typer.Option(None),
    reference: Optional[str] = typer.Option(
        None, help="Reference condition for condition comparisons"
    ),
    population: Optional[str] = typer.Option(
        None, help="Restrict the feature plots to this gated population"
    ),
    project: str = typer.Option("imaging_features"),
) -> None:
    """Imaging feature density, box plots, correlation and gating."""
    if table is None:
        table = dataset_path("imaging_features")
        if gating is None:
            gating = dataset_path("gating_strategy")
    config = FeatureReportConfig(
        project_name=project,
        out_dir=_out(out_dir, "features"),
        features=_split(feature),
        transform=transform,
        normalization=normalization,
        reference_condition=reference,
        population=population,
    )
    report_md = FeatureReport(config, table, gating).build()
    typer.echo(f"Report written to {report_md}")


@app.command()
def gating(
    table: Optional[Path] = typer.Option(
        None, "--input", "-i", help="Event table"
    ),
    strategy: Optional[Path] = typer.Option(None, help="Gating strategy JSON"),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o"),
    by: Optional[str] = typer.Option("sample", help="Grouping column"),
    plot: bool = typer.Option(True, help="Write gate plots"),
) -> None:
    """Population statistics of a gating strategy."""
    table = dataset_path("imaging_features") if table is None else table
    strategy = dataset_path("gating_strategy") if strategy is None else strategy
    out = _out(out_dir, "gating")
    write_gating_summary(table, strategy, out, by=by, plot=plot)
    typer.echo(f"Gating summary written to {out}")


@app.command()
def mitosis(
    table: Optional[Path] = typer.Option(
        None, "--input", "-i", help="Labelled feature table"
    ),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o"),
    label_col: str = typer.Option("phase"),
    feature: Optional[str] = typer.Option(
        None, help="Comma separated feature columns (default: all numeric)"
    ),
    max_depth: int = typer.Option(4),
    umap: bool = typer.Option(True, help="Compute the UMAP embedding"),
    seed: Optional[int] = typer.Option(None),
    project: str = typer.Option("mitosis"),
) -> None:
    """Mitotic-phase decision-tree classification."""
    table = dataset_path("mitosis_features") if table is None else table
    config = MitosisReportConfig(
        project_name=project,
        out_dir=_out(out_dir, "mitosis"),
        features=_split(feature),
        label_col=label_col,
        max_depth=max_depth,
        with_umap=umap,
        random_state=seed,
    )
    report_md = MitosisReport(config, table).build()
    typer.echo(f"Report written to {report_md}")


@app.command()
def screen(
    counts: Optional[Path] = typer.Option(None, help="Wide guide count table"),
    bin_bounds: Optional[Path] = typer.Option(None, help="Bin bounds table"),
    nt_file: Optional[Path] = typer.Option(
        None, help="Non-targeting sgRNA ids, one per line"
    ),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o"),
    method: str = typer.Option("maude", help="maude or ratio"),
    fdr: float = typer.Option(0.05),
    resample: bool = typer.Option(False, help="Add the down-sampling analysis"),
    iterations: int = typer.Option(10),
    project: str = typer.Option("screen"),
) -> None:
    """Bin-sort CRISPR screen hit calling."""
    counts = dataset_path("screen_counts") if counts is None else counts
    if bin_bounds is None:
        bin_bounds = dataset_path("screen_bin_bounds")
    config = ScreenReportConfig(
        project_name=project,
        out_dir=_out(out_dir, "screen"),
        method=method,
        fdr_threshold=fdr,
        resampling=resample,
        n_iterations=iterations,
    )
    report = ScreenReport(config, counts, bin_bounds, nt_file)
    report_md = report.build()
    typer.echo(f"{report.summary['n_hits']} hits, report written to {report_md}")


@app.command()
def resample(
    counts: Optional[Path] = typer.Option(None, help="Wide guide count table"),
    bin_bounds: Optional[Path] = typer.Option(None, help="Bin bounds table"),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o"),
    fractions: str = typer.Option("0.1,0.25,0.5,1.0"),
    iterations: int = typer.Option(10),
    method: str = typer.Option("maude", help="maude or ratio"),
    fdr: float = typer.Option(0.05),
    seed: Optional[int] = typer.Option(None),
) -> None:
    """Hit recovery under down-sampling of the sequenced reads."""
    counts = dataset_path("screen_counts") if counts is None else counts
    if bin_bounds is None:
        bin_bounds = dataset_path("screen_bin_bounds")
    out = _out(out_dir, "resampling")
    result = write_resampling_analysis(
        counts,
        bin_bounds,
        out,
        fractions=[float(f) for f in _split(fractions)],
        n_iterations=iterations,
        fdr_threshold=fdr,
        method=method,
        seed=seed,
    )
    typer.echo(result["summary"].to_string(index=False))
    typer.echo(f"Resampling written to {out}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
