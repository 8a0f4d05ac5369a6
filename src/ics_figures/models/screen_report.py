"""
Bin-sort CRISPR screen report: guide scores, gene-level hits and optional
down-sampling analysis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd

from ..core.plots import (
    plot_bin_distribution,
    plot_correlation_heatmap,
    plot_gene_volcano,
    plot_guide_zscores,
    plot_replicate_scatter,
    plot_resampling_curve,
)
from ..core.screen import (
    call_hits,
    gene_level_stats,
    load_non_targeting,
    read_guide_counts,
    replicate_correlation,
    resampling_analysis,
    score_guides,
    screen_summary,
    summarize_resampling,
)
from ..services.screen_io import read_bin_bounds
from .base_report import BaseReport, BaseReportConfig, markdown_table


@dataclass
class ScreenReportConfig(BaseReportConfig):
    out_dir: Union[str, Path] = "screen_report"
    method: str = "maude"  # "maude", "ratio"
    unsorted_bin: str = "NS"
    nt_label: Optional[str] = "NT"
    sgrna_col: str = "sgRNA"
    gene_col: str = "Gene"
    delimiter: str = "_"
    pseudocount: float = 0.5
    min_reads: int = 1
    min_guides: int = 1

    fdr_threshold: float = 0.05
    z_threshold: float = 0.0
    direction: str = "both"  # "both", "pos", "neg"

    top_n_labels: int = 10
    top_n_hits_table: int = 25

    # down-sampling
    resampling: bool = False
    fractions: Sequence[float] = field(
        default_factory=lambda: [0.1, 0.25, 0.5, 1.0]
    )
    n_iterations: int = 10
    seed: Optional[int] = None


class ScreenReport(BaseReport):
    """
    Hit calling for a screen sorted into expression bins.

    Inputs:
      - wide count table (sgRNA, Gene, <screen>_<bin> columns)
      - bin bounds table (bin, low, high)
      - optional: non-targeting sgRNA ids (one per line)
    """

    title = "CRISPR Bin-Sort Screen Report"

    def __init__(
        self,
        config: ScreenReportConfig,
        count_path: Union[str, Path, pd.DataFrame],
        bin_bounds_path: Union[str, Path, pd.DataFrame],
        nt_path: Optional[Union[str, Path]] = None,
    ):
        super().__init__(config)
        self.count_df, self.count_cols = read_guide_counts(
            count_path, self.cfg.sgrna_col, self.cfg.gene_col
        )
        self.bin_bounds = read_bin_bounds(bin_bounds_path)
        self.nt_ids = load_non_targeting(nt_path) if nt_path else None
        self.guide_z: Optional[pd.DataFrame] = None
        self.gene_stats: Optional[pd.DataFrame] = None
        self.hits: Optional[pd.DataFrame] = None
        self.resampled: Optional[pd.DataFrame] = None

    def _score_kwargs(self) -> Dict:
        cfg = self.cfg
        return {
            "unsorted_bin": cfg.unsorted_bin,
            "nt_label": cfg.nt_label,
            "nt_ids": self.nt_ids,
            "pseudocount": cfg.pseudocount,
            "min_reads": cfg.min_reads,
            "delimiter": cfg.delimiter,
        }

    def _make_summary(self) -> Dict:
        cfg = self.cfg
        self.guide_z = score_guides(
            self.count_df,
            self.bin_bounds,
            method=cfg.method,
            sgrna_col=cfg.sgrna_col,
            gene_col=cfg.gene_col,
            **self._score_kwargs(),
        )
        self.gene_stats = gene_level_stats(
            self.guide_z, gene_col=cfg.gene_col, min_guides=cfg.min_guides
        )
        self.hits = call_hits(
            self.gene_stats, cfg.fdr_threshold, cfg.z_threshold, cfg.direction
        )
        summary = screen_summary(
            self.guide_z, self.gene_stats, self.hits, sgrna_col=cfg.sgrna_col
        )
        summary.update(
            {
                "method": cfg.method,
                "fdr_threshold": cfg.fdr_threshold,
                "n_hits_pos": int((self.hits["Z"] > 0).sum()),
                "n_hits_neg": int((self.hits["Z"] < 0).sum()),
                "screens": list(dict.fromkeys(self.guide_z["screen"])),
                "bins": self.bin_bounds["bin"].tolist(),
            }
        )
        if cfg.resampling:
            self.resampled = resampling_analysis(
                self.count_df,
                self.bin_bounds,
                fractions=cfg.fractions,
                n_iterations=cfg.n_iterations,
                reference_hits=self.hits[cfg.gene_col].astype(str).tolist(),
                fdr_threshold=cfg.fdr_threshold,
                z_threshold=cfg.z_threshold,
                direction=cfg.direction,
                method=cfg.method,
                seed=cfg.seed,
                min_guides=cfg.min_guides,
                sgrna_col=cfg.sgrna_col,
                gene_col=cfg.gene_col,
                **self._score_kwargs(),
            )
        return summary

    def _make_tables(self) -> None:
        self._save_table(self.guide_z, "guide_scores")
        self._save_table(self.gene_stats, "gene_stats")
        self._save_table(self.hits, "hits")
        self._save_table(self.bin_bounds, "bin_bounds")
        if self.guide_z["screen"].nunique() > 1:
            self._save_table(
                replicate_correlation(
                    self.guide_z, sgrna_col=self.cfg.sgrna_col
                ),
                "replicate_correlation",
                index=True,
            )
        if self.resampled is not None:
            self._save_table(self.resampled, "resampling_iterations")
            self._save_table(
                summarize_resampling(self.resampled), "resampling_summary"
            )

    def _top_genes(self, n: int) -> List[str]:
        return self.gene_stats[self.cfg.gene_col].astype(str).head(n).tolist()

    def _make_plots(self) -> None:
        cfg = self.cfg
        if len(self.gene_stats) == 0:
            print("No gene statistics, skipping screen plots")
            return
        self._save_plot(
            plot_gene_volcano(
                self.gene_stats,
                gene_col=cfg.gene_col,
                fdr_threshold=cfg.fdr_threshold,
                top_n_labels=cfg.top_n_labels,
            ),
            "gene_volcano",
        )
        self._save_plot(
            plot_guide_zscores(
                self.guide_z,
                self._top_genes(cfg.top_n_labels),
                gene_col=cfg.gene_col,
            ),
            "guide_zscores",
        )
        screens = list(dict.fromkeys(self.guide_z["screen"]))
        bins = self.bin_bounds.sort_values("low")["bin"].tolist()
        for screen in screens:
            self._save_plot(
                plot_bin_distribution(
                    self.count_df,
                    screen,
                    bins,
                    self._top_genes(5),
                    gene_col=cfg.gene_col,
                    delimiter=cfg.delimiter,
                    pseudocount=cfg.pseudocount,
                ),
                f"bin_distribution_{screen}",
            )
        if len(screens) > 1:
            self._save_plot(
                plot_correlation_heatmap(
                    replicate_correlation(
                        self.guide_z, sgrna_col=cfg.sgrna_col
                    ),
                    title="Replicate correlation (guide Z)",
                ),
                "replicate_correlation",
            )
            for screen_x, screen_y in combinations(screens, 2):
                self._save_plot(
                    plot_replicate_scatter(
                        self.guide_z, screen_x, screen_y,
                        sgrna_col=cfg.sgrna_col,
                    ),
                    f"replicates_{screen_x}_vs_{screen_y}",
                )
        if self.resampled is not None:
            self._save_plot(
                plot_resampling_curve(summarize_resampling(self.resampled)),
                "resampling_curve",
            )

    def _extra_sections(self) -> str:
        text = f"\n\n## Top hits (FDR <= {self.cfg.fdr_threshold})\n\n"
        if len(self.hits) == 0:
            text += "No genes pass the thresholds.\n"
        else:
            text += markdown_table(
                self.hits, max_rows=self.cfg.top_n_hits_table
            )
        if self.resampled is not None:
            text += "\n\n## Down-sampling\n\n"
            text += markdown_table(summarize_resampling(self.resampled))
        return text
