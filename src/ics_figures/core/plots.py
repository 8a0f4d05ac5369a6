"""
Plotting functions for the figure documents.

Every function returns a matplotlib Figure; saving is left to
services.io.save_figure.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Dict, List, Optional, Sequence, Tuple
from pandas import DataFrame
from matplotlib.figure import Figure
from matplotlib.patches import Polygon, Rectangle

from .features import to_long
from .gating import PolygonGate, RectangleGate, ThresholdGate


def _grid(n: int, ncols: int) -> Tuple[int, int]:
    ncols = max(1, min(ncols, n))
    nrows = int(np.ceil(n / ncols))
    return nrows, ncols


def _require_rows(df: DataFrame, what: str) -> None:
    if df is None or len(df) == 0:
        raise ValueError(f"No data to plot for {what}")


def plot_feature_density(
    df: DataFrame,
    features: List[str],
    hue: str = "condition",
    ncols: int = 3,
    figsize_per_panel: Tuple[float, float] = (4, 3),
    common_norm: bool = False,
    fill: bool = True,
    title: Optional[str] = None,
) -> Figure:
    """
    Kernel density estimate of each feature, one panel per feature, one curve
    per hue level.
    """
    _require_rows(df, "feature density")
    nrows, ncols = _grid(len(features), ncols)
    fig, axes = plt.subplots(
        nrows,
        ncols,
        figsize=(figsize_per_panel[0] * ncols, figsize_per_panel[1] * nrows),
        squeeze=False,
    )
    for ax, feature in zip(axes.flat, features):
        sns.kdeplot(
            data=df,
            x=feature,
            hue=hue,
            common_norm=common_norm,
            fill=fill,
            alpha=0.3,
            ax=ax,
            warn_singular=False,
        )
        ax.set_title(feature)
        ax.set_xlabel("")
    for ax in axes.flat[len(features):]:
        ax.set_visible(False)
    if title is not None:
        fig.suptitle(title)
    fig.tight_layout()
    return fig


def plot_feature_boxplot(
    df: DataFrame,
    features: List[str],
    x: str = "condition",
    hue: Optional[str] = "replicate",
    ncols: int = 3,
    figsize_per_panel: Tuple[float, float] = (4, 3.5),
    showfliers: bool = False,
    title: Optional[str] = None,
) -> Figure:
    """
    Box plots of each feature per condition (and replicate).
    """
    _require_rows(df, "feature boxplot")
    id_vars = [c for c in [x, hue] if c is not None]
    long_df = to_long(df, features, id_vars=id_vars)
    nrows, ncols = _grid(len(features), ncols)
    fig, axes = plt.subplots(
        nrows,
        ncols,
        figsize=(figsize_per_panel[0] * ncols, figsize_per_panel[1] * nrows),
        squeeze=False,
    )
    for ax, feature in zip(axes.flat, features):
        sns.boxplot(
            data=long_df[long_df["feature"] == feature],
            x=x,
            y="value",
            hue=hue,
            showfliers=showfliers,
            ax=ax,
        )
        ax.set_title(feature)
        ax.set_ylabel("")
        ax.tick_params(axis="x", rotation=45)
    for ax in axes.flat[len(features):]:
        ax.set_visible(False)
    if title is not None:
        fig.suptitle(title)
    fig.tight_layout()
    return fig


def plot_correlation_heatmap(
    corr: DataFrame,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (8, 7),
    cmap: str = "RdBu_r",
    annot: bool = True,
    fmt: str = ".2f",
) -> Figure:
    _require_rows(corr, "correlation heatmap")
    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        corr,
        ax=ax,
        cmap=cmap,
        vmin=-1,
        vmax=1,
        center=0,
        annot=annot,
        fmt=fmt,
        square=True,
        linewidths=0.5,
        cbar_kws={"label": "Correlation"},
    )
    ax.set_title(title or "Feature correlation", fontsize=14, pad=10)
    fig.tight_layout()
    return fig


def plot_gate(
    events: DataFrame,
    gate,
    x: Optional[str] = None,
    y: Optional[str] = None,
    in_gate: Optional[pd.Series] = None,
    max_points: int = 20000,
    figsize: Tuple[float, float] = (5, 5),
    random_state: int = 0,
) -> Figure:
    """
    Scatter of events with the gate outline.

    For threshold gates the threshold is drawn as a line; y defaults to the
    first other numeric channel.
    """
    _require_rows(events, "gate")
    channels = list(gate.channels)
    x = x or channels[0]
    if y is None:
        if len(channels) > 1:
            y = channels[1]
        else:
            others = [
                c
                for c in events.select_dtypes("number").columns
                if c != x
            ]
            if not others:
                raise ValueError("Need a second numeric channel for the y axis")
            y = others[0]
    data = events
    if len(data) > max_points:
        data = data.sample(max_points, random_state=random_state)
    fig, ax = plt.subplots(figsize=figsize)
    if in_gate is not None:
        inside = in_gate.loc[data.index].to_numpy(dtype=bool)
        ax.scatter(
            data.loc[~inside, x], data.loc[~inside, y],
            s=2, c="lightgrey", alpha=0.5, edgecolors="none",
        )
        ax.scatter(
            data.loc[inside, x], data.loc[inside, y],
            s=2, c="tab:red", alpha=0.6, edgecolors="none",
        )
        pct = 100.0 * in_gate.mean() if len(in_gate) else 0.0
        ax.text(
            0.02, 0.98, f"{gate.name}: {pct:.1f}%",
            transform=ax.transAxes, va="top",
        )
    else:
        ax.scatter(data[x], data[y], s=2, c="grey", alpha=0.5, edgecolors="none")

    if isinstance(gate, RectangleGate) and len(channels) == 2:
        (x0, x1), (y0, y1) = gate.bounds
        xlim, ylim = ax.get_xlim(), ax.get_ylim()
        x0 = xlim[0] if x0 is None else x0
        x1 = xlim[1] if x1 is None else x1
        y0 = ylim[0] if y0 is None else y0
        y1 = ylim[1] if y1 is None else y1
        ax.add_patch(
            Rectangle((x0, y0), x1 - x0, y1 - y0, fill=False, color="black")
        )
    elif isinstance(gate, PolygonGate):
        ax.add_patch(
            Polygon(np.asarray(gate.vertices), closed=True, fill=False,
                    color="black")
        )
    elif isinstance(gate, ThresholdGate):
        ax.axvline(gate.threshold, color="black", linestyle="--")
    ax.set_xlabel(x)
    ax.set_ylabel(y)
    ax.set_title(gate.name)
    fig.tight_layout()
    return fig


def plot_umap(
    embedding: DataFrame,
    labels: Optional[pd.Series] = None,
    order: Optional[List[str]] = None,
    point_size: float = 4,
    alpha: float = 0.7,
    figsize: Tuple[float, float] = (7, 6),
    title: Optional[str] = None,
) -> Figure:
    _require_rows(embedding, "UMAP")
    fig, ax = plt.subplots(figsize=figsize)
    if labels is None:
        ax.scatter(
            embedding["UMAP1"], embedding["UMAP2"],
            s=point_size, alpha=alpha, c="grey", edgecolors="none",
        )
    else:
        labels = labels.loc[embedding.index].astype(str)
        order = order or sorted(labels.unique())
        palette = sns.color_palette("tab10", n_colors=max(len(order), 1))
        for color, label in zip(palette, order):
            mask = (labels == label).to_numpy()
            ax.scatter(
                embedding.loc[mask, "UMAP1"],
                embedding.loc[mask, "UMAP2"],
                s=point_size,
                alpha=alpha,
                color=color,
                label=label,
                edgecolors="none",
            )
        ax.legend(markerscale=3, frameon=False, loc="best")
    ax.set_xlabel("UMAP1")
    ax.set_ylabel("UMAP2")
    ax.set_xticks([])
    ax.set_yticks([])
    ax.set_title(title or "UMAP")
    fig.tight_layout()
    return fig


def plot_confusion_matrix(
    cm: DataFrame,
    normalized: bool = False,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (6, 5),
    cmap: str = "Blues",
) -> Figure:
    _require_rows(cm, "confusion matrix")
    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        cm,
        ax=ax,
        cmap=cmap,
        annot=True,
        fmt=".2f" if normalized else "d",
        vmin=0,
        vmax=1 if normalized else None,
        square=True,
        linewidths=0.5,
        cbar_kws={"label": "Fraction" if normalized else "Cells"},
    )
    ax.set_xlabel("Predicted")
    ax.set_ylabel("True")
    ax.set_title(title or "Confusion matrix")
    fig.tight_layout()
    return fig


def plot_variable_importance(
    importance: DataFrame,
    value_col: str = "importance",
    error_col: Optional[str] = None,
    top_n: Optional[int] = None,
    figsize: Optional[Tuple[float, float]] = None,
    title: Optional[str] = None,
) -> Figure:
    _require_rows(importance, "variable importance")
    data = importance.sort_values(value_col, ascending=False)
    if top_n is not None:
        data = data.head(top_n)
    data = data.iloc[::-1]
    if figsize is None:
        figsize = (6, max(2.5, 0.35 * len(data) + 1))
    fig, ax = plt.subplots(figsize=figsize)
    xerr = data[error_col] if error_col is not None else None
    ax.barh(data["feature"], data[value_col], xerr=xerr, color="tab:blue")
    ax.set_xlabel(value_col.replace("_", " "))
    ax.set_title(title or "Variable importance")
    fig.tight_layout()
    return fig


def plot_bin_distribution(
    counts: DataFrame,
    screen: str,
    bins: Sequence[str],
    genes: Sequence[str],
    gene_col: str = "Gene",
    delimiter: str = "_",
    pseudocount: float = 0.5,
    figsize: Tuple[float, float] = (7, 4),
) -> Figure:
    """
    Mean fraction of reads per bin for selected genes, relative to the bin
    totals.
    """
    _require_rows(counts, "bin distribution")
    cols = [f"{screen}{delimiter}{b}" for b in bins]
    norm = counts[cols].astype(float) + pseudocount
    norm = norm / norm.sum(axis=0)
    norm = norm.div(norm.sum(axis=1), axis=0)
    norm[gene_col] = counts[gene_col].astype(str).to_numpy()
    fig, ax = plt.subplots(figsize=figsize)
    for gene in genes:
        profile = norm.loc[norm[gene_col] == str(gene), cols].mean(axis=0)
        ax.plot(list(bins), profile.to_numpy(), marker="o", label=str(gene))
    ax.set_xlabel("Bin")
    ax.set_ylabel("Read fraction")
    ax.set_title(f"Bin distribution ({screen})")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def plot_guide_zscores(
    guide_z: DataFrame,
    genes: Sequence[str],
    gene_col: str = "Gene",
    z_col: str = "Z",
    nt_col: str = "is_nt",
    figsize: Optional[Tuple[float, float]] = None,
    title: Optional[str] = None,
) -> Figure:
    """
    Guide Z-scores of selected genes against the non-targeting distribution.
    """
    _require_rows(guide_z, "guide Z-scores")
    genes = [str(g) for g in genes]
    data = guide_z.dropna(subset=[z_col]).copy()
    data[gene_col] = data[gene_col].astype(str)
    selected = data[data[gene_col].isin(genes)]
    nt = data[data[nt_col].astype(bool)]
    if figsize is None:
        figsize = (max(4, 0.6 * len(genes) + 2), 4)
    fig, ax = plt.subplots(figsize=figsize)
    if len(nt) > 0:
        lo, hi = nt[z_col].quantile([0.025, 0.975])
        ax.axhspan(lo, hi, color="lightgrey", alpha=0.5, label="NT 95%")
    sns.stripplot(
        data=selected,
        x=gene_col,
        y=z_col,
        hue="screen" if "screen" in selected.columns else None,
        order=genes,
        ax=ax,
        size=5,
    )
    ax.axhline(0, color="black", linewidth=0.5)
    ax.set_xlabel("")
    ax.set_ylabel("Guide Z")
    ax.tick_params(axis="x", rotation=45)
    ax.set_title(title or "Guide Z-scores")
    fig.tight_layout()
    return fig


def plot_gene_volcano(
    gene_stats: DataFrame,
    gene_col: str = "Gene",
    fdr_threshold: float = 0.05,
    top_n_labels: int = 10,
    point_size: float = 12,
    alpha: float = 0.75,
    y_clip_min: float = 1e-300,  # avoids -log10(0)
    figsize: Tuple[float, float] = (7, 6),
    title: Optional[str] = None,
) -> Figure:
    _require_rows(gene_stats, "gene volcano")
    x = gene_stats["Z"].to_numpy(dtype=float)
    fdr = np.clip(gene_stats["fdr"].to_numpy(dtype=float), y_clip_min, 1.0)
    y = -np.log10(fdr)
    sig = fdr <= fdr_threshold
    up = sig & (x > 0)
    down = sig & (x < 0)
    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(x[~sig], y[~sig], s=point_size, alpha=alpha, c="grey",
               edgecolors="none")
    ax.scatter(x[up], y[up], s=point_size, alpha=alpha, c="tab:red",
               edgecolors="none", label="up")
    ax.scatter(x[down], y[down], s=point_size, alpha=alpha, c="tab:blue",
               edgecolors="none", label="down")
    ax.axhline(-np.log10(fdr_threshold), linestyle="--", linewidth=1,
               color="grey")
    if top_n_labels > 0:
        top = gene_stats.assign(_y=y).nlargest(top_n_labels, "_y")
        for _, row in top.iterrows():
            ax.annotate(str(row[gene_col]), (row["Z"], row["_y"]), fontsize=8)
    ax.set_xlabel("Gene Z (Stouffer)")
    ax.set_ylabel(r"$-\log_{10}(\mathrm{FDR})$")
    ax.set_title(title or "Gene-level hits")
    if up.any() or down.any():
        ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def plot_replicate_scatter(
    guide_z: DataFrame,
    screen_x: str,
    screen_y: str,
    value_col: str = "Z",
    sgrna_col: str = "sgRNA",
    nt_col: str = "is_nt",
    figsize: Tuple[float, float] = (5, 5),
) -> Figure:
    _require_rows(guide_z, "replicate scatter")
    wide = guide_z.pivot_table(
        index=sgrna_col, columns="screen", values=value_col
    ).dropna(subset=[screen_x, screen_y])
    nt_ids = set(guide_z.loc[guide_z[nt_col].astype(bool), sgrna_col])
    is_nt = wide.index.isin(nt_ids)
    r = wide[screen_x].corr(wide[screen_y])
    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(wide.loc[~is_nt, screen_x], wide.loc[~is_nt, screen_y], s=6,
               alpha=0.6, c="tab:blue", edgecolors="none", label="targeting")
    ax.scatter(wide.loc[is_nt, screen_x], wide.loc[is_nt, screen_y], s=6,
               alpha=0.6, c="grey", edgecolors="none", label="NT")
    ax.set_xlabel(f"{screen_x} {value_col}")
    ax.set_ylabel(f"{screen_y} {value_col}")
    ax.set_title(f"r = {r:.2f}")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def plot_resampling_curve(
    summary: DataFrame,
    metrics: Sequence[str] = ("recall", "precision"),
    figsize: Tuple[float, float] = (6, 4),
    title: Optional[str] = None,
) -> Figure:
    """
    Mean +- sd of resampling metrics against the down-sampling fraction.
    """
    _require_rows(summary, "resampling curve")
    fig, ax = plt.subplots(figsize=figsize)
    for metric in metrics:
        ax.errorbar(
            summary["fraction"],
            summary[f"{metric}_mean"],
            yerr=summary[f"{metric}_sd"].fillna(0),
            marker="o",
            capsize=3,
            label=metric,
        )
    ax.set_xscale("log")
    ax.set_xlabel("Fraction of reads")
    ax.set_ylim(0, 1.05)
    ax.set_title(title or "Hit recovery under down-sampling")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def close_all(figures: Dict[str, Figure]) -> None:
    for fig in figures.values():
        plt.close(fig)
