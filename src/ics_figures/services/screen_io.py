import json
import matplotlib.pyplot as plt
from itertools import combinations
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union
from pandas import DataFrame

from ics_figures.core.plots import (
    plot_bin_distribution,
    plot_correlation_heatmap,
    plot_gene_volcano,
    plot_guide_zscores,
    plot_replicate_scatter,
    plot_resampling_curve,
)
from ics_figures.core.screen import (
    call_hits,
    gene_level_stats,
    make_bin_bounds,
    replicate_correlation,
    resampling_analysis,
    score_guides,
    screen_summary,
    summarize_resampling,
)
from .features_io import _load
from .io import save_figure, write_table


def read_bin_bounds(bin_bounds: Union[Path, str, DataFrame]) -> DataFrame:
    """
    Bin bounds from a table with columns bin, low, high (quantiles).
    """
    table = _load(bin_bounds)
    if {"z_low", "z_high", "fraction"}.issubset(table.columns):
        return table
    missing = [c for c in ["bin", "low", "high"] if c not in table.columns]
    if missing:
        raise ValueError(f"Bin bounds table misses columns: {missing}")
    return make_bin_bounds(
        table["bin"].astype(str).tolist(),
        low=table["low"].tolist(),
        high=table["high"].tolist(),
    )


def write_screen_analysis(
    counts: Union[Path, str, DataFrame],
    bin_bounds: Union[Path, str, DataFrame],
    output_dir: Union[Path, str],
    prefix: str = "screen",
    method: str = "maude",
    fdr_threshold: float = 0.05,
    z_threshold: float = 0.0,
    direction: str = "both",
    min_guides: int = 1,
    top_n: int = 10,
    unsorted_bin: str = "NS",
    nt_label: Optional[str] = "NT",
    nt_ids: Optional[Iterable[str]] = None,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
    formats: Optional[List[str]] = None,
) -> Dict:
    """
    Guide- and gene-level hit calling for a bin-sorted screen.

    Writes
    ------
    <prefix>_guide_scores.tsv, <prefix>_gene_stats.tsv, <prefix>_hits.tsv,
    <prefix>_replicate_correlation.tsv, <prefix>_summary.json and the
    figures <prefix>_volcano, <prefix>_guide_zscores,
    <prefix>_bin_distribution, <prefix>_replicate_correlation and one
    <prefix>_replicates_<x>_vs_<y> scatter per screen pair.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    count_df = _load(counts)
    bounds = read_bin_bounds(bin_bounds)

    guide_z = score_guides(
        count_df,
        bounds,
        method=method,
        unsorted_bin=unsorted_bin,
        nt_label=nt_label,
        nt_ids=nt_ids,
        sgrna_col=sgrna_col,
        gene_col=gene_col,
    )
    gene_stats = gene_level_stats(
        guide_z, gene_col=gene_col, min_guides=min_guides
    )
    hits = call_hits(gene_stats, fdr_threshold, z_threshold, direction)
    summary = screen_summary(guide_z, gene_stats, hits, sgrna_col=sgrna_col)
    summary.update({"method": method, "fdr_threshold": fdr_threshold})
    print(f"Called {len(hits)} hits at FDR <= {fdr_threshold}")

    files: Dict[str, List[Path]] = {
        "guide_scores": [
            write_table(guide_z, output_dir / f"{prefix}_guide_scores.tsv")
        ],
        "gene_stats": [
            write_table(gene_stats, output_dir / f"{prefix}_gene_stats.tsv")
        ],
        "hits": [write_table(hits, output_dir / f"{prefix}_hits.tsv")],
    }
    summary_file = output_dir / f"{prefix}_summary.json"
    summary_file.write_text(json.dumps(summary, indent=2))
    files["summary"] = [summary_file]

    figures = {}
    if len(gene_stats) > 0:
        figures["volcano"] = plot_gene_volcano(
            gene_stats,
            gene_col=gene_col,
            fdr_threshold=fdr_threshold,
            top_n_labels=top_n,
        )
        top_genes = gene_stats[gene_col].astype(str).head(top_n).tolist()
        figures["guide_zscores"] = plot_guide_zscores(
            guide_z, top_genes, gene_col=gene_col
        )
        screens = list(dict.fromkeys(guide_z["screen"]))
        figures["bin_distribution"] = plot_bin_distribution(
            count_df,
            screens[0],
            bounds.sort_values("low")["bin"].tolist(),
            top_genes[: min(5, len(top_genes))],
            gene_col=gene_col,
        )
        if len(screens) > 1:
            corr = replicate_correlation(guide_z, sgrna_col=sgrna_col)
            files["replicate_correlation_table"] = [
                write_table(
                    corr,
                    output_dir / f"{prefix}_replicate_correlation.tsv",
                    index=True,
                )
            ]
            figures["replicate_correlation"] = plot_correlation_heatmap(
                corr, title="Replicate correlation (guide Z)"
            )
            for screen_x, screen_y in combinations(screens, 2):
                figures[f"replicates_{screen_x}_vs_{screen_y}"] = (
                    plot_replicate_scatter(
                        guide_z, screen_x, screen_y, sgrna_col=sgrna_col
                    )
                )
    for name, fig in figures.items():
        files[name] = save_figure(
            fig, output_dir, f"{prefix}_{name}", formats=formats
        )
        plt.close(fig)
    print(f"Screen analysis written to {output_dir}")
    return {
        "guide_scores": guide_z,
        "gene_stats": gene_stats,
        "hits": hits,
        "summary": summary,
        "files": files,
    }


def write_resampling_analysis(
    counts: Union[Path, str, DataFrame],
    bin_bounds: Union[Path, str, DataFrame],
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
    formats: Optional[List[str]] = None,
    **score_kwargs,
) -> Dict:
    """
    Down-sampling analysis of hit recovery; writes the per-iteration table,
    the summary table and the recovery curve.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    count_df = _load(counts)
    bounds = read_bin_bounds(bin_bounds)
    resampled = resampling_analysis(
        count_df,
        bounds,
        fractions=fractions,
        n_iterations=n_iterations,
        reference_hits=reference_hits,
        fdr_threshold=fdr_threshold,
        method=method,
        seed=seed,
        min_guides=min_guides,
        by_screen=by_screen,
        **score_kwargs,
    )
    summary = summarize_resampling(resampled)
    files = {
        "iterations": [
            write_table(resampled, output_dir / f"{prefix}_iterations.tsv")
        ],
        "summary": [write_table(summary, output_dir / f"{prefix}_summary.tsv")],
    }
    fig = plot_resampling_curve(summary)
    files["curve"] = save_figure(
        fig, output_dir, f"{prefix}_curve", formats=formats
    )
    plt.close(fig)
    return {"iterations": resampled, "summary": summary, "files": files}
