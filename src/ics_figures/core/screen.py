"""
Hit calling for pooled CRISPR screens sorted into expression bins.

Guides are read from bin-sorted populations (e.g. bins A-F) and the unsorted
input (NS). For every guide the mean of its expression distribution is
estimated by maximum likelihood from the bin counts (the MAUDE model:
expression ~ N(mu, 1) on the scale of the non-targeting distribution, bins
cover known quantiles of that distribution). Guide means are turned into
Z-scores against the non-targeting guides and combined per gene with
Stouffer's method.

Count tables are wide: sgRNA, Gene and one column per screen and bin named
"<screen><delimiter><bin>", e.g. "rep1_A", "rep1_NS".
"""

import warnings
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
from pandas import DataFrame
from scipy import stats
from scipy.optimize import minimize_scalar
from statsmodels.stats.multitest import multipletests

from ..config import settings


def read_guide_counts(
    count_table: Union[Path, str, DataFrame],
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
) -> Tuple[DataFrame, List[str]]:
    """
    Load a guide count table and identify count columns.

    Parameters
    ----------
    count_table : Path, str or DataFrame
        TSV count table or an already loaded DataFrame.
    sgrna_col : str
        Name of the sgRNA ID column.
    gene_col : str
        Name of the gene column.

    Returns
    -------
    tuple
        (count_df, count_cols)
    """
    if isinstance(count_table, DataFrame):
        count_df = count_table.copy()
    else:
        count_table = Path(count_table)
        if not count_table.exists():
            raise FileNotFoundError(f"Count file not found: {count_table}")
        count_df = pd.read_csv(count_table, sep="\t")

    if sgrna_col not in count_df.columns:
        raise ValueError(f"sgRNA column '{sgrna_col}' not found in count table")
    if gene_col not in count_df.columns:
        raise ValueError(f"Gene column '{gene_col}' not found in count table")

    count_cols = [
        col for col in count_df.columns if col not in [sgrna_col, gene_col]
    ]
    if len(count_cols) == 0:
        raise ValueError("No count columns found in count table")

    for col in count_cols:
        if not pd.api.types.is_numeric_dtype(count_df[col]):
            raise ValueError(f"Count column '{col}' contains non-numeric values")
        if (count_df[col] < 0).any():
            raise ValueError(f"Count column '{col}' contains negative counts")

    return count_df, count_cols


def parse_bin_columns(
    count_cols: Sequence[str], delimiter: Optional[str] = None
) -> DataFrame:
    """
    Split count column names into screen and bin.

    Returns
    -------
    DataFrame
        Columns: column, screen, bin. Names without delimiter belong to the
        screen "screen".
    """
    delimiter = settings.delimiter if delimiter is None else delimiter
    records = []
    for col in count_cols:
        parts = col.rsplit(delimiter, 1)
        if len(parts) == 2:
            screen, bin_name = parts
        else:
            screen, bin_name = "screen", col
        records.append({"column": col, "screen": screen, "bin": bin_name})
    return pd.DataFrame(records, columns=["column", "screen", "bin"])


def load_non_targeting(nt_file: Union[Path, str]) -> set:
    """
    Load non-targeting sgRNA IDs from a text file (one ID per line).
    """
    nt_file = Path(nt_file)
    with open(nt_file) as f:
        return {line.strip() for line in f if line.strip()}


def non_targeting_mask(
    df: DataFrame,
    gene_col: str = "Gene",
    nt_label: Optional[str] = "NT",
    nt_ids: Optional[Iterable[str]] = None,
    sgrna_col: str = "sgRNA",
) -> pd.Series:
    mask = pd.Series(False, index=df.index)
    if nt_label is not None:
        mask |= df[gene_col].astype(str) == nt_label
    if nt_ids is not None:
        mask |= df[sgrna_col].isin(set(nt_ids))
    return mask


def normalize_counts(
    df: DataFrame, count_cols: List[str], pseudocount: float = 0.5
) -> DataFrame:
    """
    Counts per million per column, after adding a pseudocount.
    """
    norm_df = df.copy()
    for col in count_cols:
        counts = df[col].astype(float) + pseudocount
        norm_df[col] = counts / counts.sum() * 1e6
    return norm_df


def make_bin_bounds(
    bins: Sequence[str],
    fractions: Optional[Sequence[float]] = None,
    low: Optional[Sequence[float]] = None,
    high: Optional[Sequence[float]] = None,
) -> DataFrame:
    """
    Describe sorting bins by the quantiles of the expression distribution
    they capture.

    Parameters
    ----------
    bins : list
        Bin names ordered from low to high expression.
    fractions : list, optional
        Fraction of cells per bin for contiguous bins starting at quantile 0.
    low, high : list, optional
        Explicit lower and upper quantiles per bin (gaps allowed).

    Returns
    -------
    DataFrame
        Columns: bin, low, high, fraction, z_low, z_high.
    """
    bins = list(bins)
    if fractions is not None:
        fractions = np.asarray(fractions, dtype=float)
        if len(fractions) != len(bins):
            raise ValueError("Need one fraction per bin")
        high = np.cumsum(fractions)
        low = high - fractions
    elif low is None or high is None:
        raise ValueError("Give either fractions or low and high quantiles")
    low = np.asarray(low, dtype=float)
    high = np.asarray(high, dtype=float)
    if not (len(low) == len(high) == len(bins)):
        raise ValueError("Need one low and one high quantile per bin")
    if (low < 0).any() or (high > 1 + 1e-9).any() or (low >= high).any():
        raise ValueError(
            "Bin quantiles must satisfy 0 <= low < high <= 1 for every bin"
        )
    order = np.argsort(low)
    if (low[order][1:] < high[order][:-1] - 1e-9).any():
        raise ValueError("Bins must not overlap")
    high = np.minimum(high, 1.0)
    return pd.DataFrame(
        {
            "bin": bins,
            "low": low,
            "high": high,
            "fraction": high - low,
            "z_low": stats.norm.ppf(low),
            "z_high": stats.norm.ppf(high),
        }
    )


def bin_probabilities(
    mu: Union[float, np.ndarray], bin_bounds: DataFrame, sigma: float = 1.0
) -> np.ndarray:
    """
    Probability mass of N(mu, sigma) inside each bin.

    Returns an array of shape (n_bins,) for scalar mu and (len(mu), n_bins)
    otherwise.
    """
    z_low = bin_bounds["z_low"].to_numpy(dtype=float)
    z_high = bin_bounds["z_high"].to_numpy(dtype=float)
    mu_arr = np.atleast_1d(np.asarray(mu, dtype=float))[:, None]
    probs = stats.norm.cdf(z_high, loc=mu_arr, scale=sigma) - stats.norm.cdf(
        z_low, loc=mu_arr, scale=sigma
    )
    if np.ndim(mu) == 0:
        return probs[0]
    return probs


def _screen_column(screen: str, bin_name: str, delimiter: str) -> str:
    return f"{screen}{delimiter}{bin_name}"


def _neg_log_likelihood(
    mu: float,
    counts: np.ndarray,
    scale: np.ndarray,
    z_low: np.ndarray,
    z_high: np.ndarray,
) -> float:
    probs = stats.norm.cdf(z_high - mu) - stats.norm.cdf(z_low - mu)
    expected = np.clip(scale * probs, 1e-12, None)
    return float(np.sum(expected - counts * np.log(expected)))


def estimate_guide_means(
    df: DataFrame,
    screen: str,
    bin_bounds: DataFrame,
    unsorted_bin: str = "NS",
    delimiter: Optional[str] = None,
    pseudocount: float = 0.5,
    min_reads: int = 1,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
    mu_bounds: Tuple[float, float] = (-5.0, 5.0),
) -> DataFrame:
    """
    Maximum-likelihood mean expression per guide for one screen.

    Expected reads of guide g in bin b are
    abundance_g * reads_b * P(b | mu_g) / fraction_b, where abundance_g is
    the guide's share of the unsorted reads. Observed sorted-bin reads are
    modelled as Poisson.

    Parameters
    ----------
    df : DataFrame
        Wide count table.
    screen : str
        Screen (replicate) prefix of the count columns.
    bin_bounds : DataFrame
        Output of make_bin_bounds for the sorted bins.
    unsorted_bin : str
        Bin name of the unsorted input.
    pseudocount : float
        Added to unsorted counts before computing abundances.
    min_reads : int
        Guides with fewer sorted reads get NaN means.

    Returns
    -------
    DataFrame
        sgRNA, Gene, screen, mean, abundance, n_reads.
    """
    delimiter = settings.delimiter if delimiter is None else delimiter
    bin_cols = [
        _screen_column(screen, b, delimiter) for b in bin_bounds["bin"]
    ]
    unsorted_col = _screen_column(screen, unsorted_bin, delimiter)
    missing = [c for c in bin_cols + [unsorted_col] if c not in df.columns]
    if missing:
        raise KeyError(f"Count columns not found for screen '{screen}': {missing}")

    counts = df[bin_cols].to_numpy(dtype=float)
    unsorted = df[unsorted_col].to_numpy(dtype=float) + pseudocount
    abundance = unsorted / unsorted.sum()
    reads_per_bin = counts.sum(axis=0)
    fractions = bin_bounds["fraction"].to_numpy(dtype=float)
    n_reads = counts.sum(axis=1)
    z_low = bin_bounds["z_low"].to_numpy(dtype=float)
    z_high = bin_bounds["z_high"].to_numpy(dtype=float)

    means = np.full(len(df), np.nan)
    for i in range(len(df)):
        if n_reads[i] < min_reads:
            continue
        scale = abundance[i] * reads_per_bin / fractions
        res = minimize_scalar(
            _neg_log_likelihood,
            bounds=mu_bounds,
            method="bounded",
            args=(counts[i], scale, z_low, z_high),
        )
        means[i] = res.x

    n_low = int((n_reads < min_reads).sum())
    if n_low > 0:
        warnings.warn(
            f"Screen '{screen}': {n_low} guides with fewer than {min_reads} "
            "sorted reads have no mean estimate"
        )

    return pd.DataFrame(
        {
            sgrna_col: df[sgrna_col].to_numpy(),
            gene_col: df[gene_col].to_numpy(),
            "screen": screen,
            "mean": means,
            "abundance": abundance,
            "n_reads": n_reads,
        }
    )


def ratio_guide_scores(
    df: DataFrame,
    screen: str,
    high_bins: Sequence[str],
    low_bins: Sequence[str],
    pseudocount: float = 0.5,
    delimiter: Optional[str] = None,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
) -> DataFrame:
    """
    log2 ratio of normalized reads in high versus low bins for one screen.

    The ratio is stored in the "mean" column so that it can be scored like
    the maximum-likelihood means.
    """
    delimiter = settings.delimiter if delimiter is None else delimiter
    high_cols = [_screen_column(screen, b, delimiter) for b in high_bins]
    low_cols = [_screen_column(screen, b, delimiter) for b in low_bins]
    missing = [c for c in high_cols + low_cols if c not in df.columns]
    if missing:
        raise KeyError(f"Count columns not found for screen '{screen}': {missing}")
    cpm = normalize_counts(df, high_cols + low_cols, pseudocount)
    ratio = np.log2(cpm[high_cols].sum(axis=1)) - np.log2(
        cpm[low_cols].sum(axis=1)
    )
    n_reads = df[high_cols + low_cols].sum(axis=1)
    return pd.DataFrame(
        {
            sgrna_col: df[sgrna_col].to_numpy(),
            gene_col: df[gene_col].to_numpy(),
            "screen": screen,
            "mean": ratio.to_numpy(),
            "n_reads": n_reads.to_numpy(),
        }
    )


def calculate_guide_zscores(
    guide_df: DataFrame,
    nt_col: str = "is_nt",
    value_col: str = "mean",
    screen_col: str = "screen",
) -> DataFrame:
    """
    Z-score guide values against the non-targeting guides of each screen.

    Z = (value - mean(NT)) / sd(NT)
    """
    out = guide_df.copy()
    out["Z"] = np.nan
    for screen, index in out.groupby(screen_col).groups.items():
        block = out.loc[index]
        nt_values = block.loc[block[nt_col], value_col].dropna()
        if len(nt_values) < 2:
            raise ValueError(
                f"Screen '{screen}': need at least two non-targeting guides "
                f"with estimates, found {len(nt_values)}"
            )
        nt_mean = nt_values.mean()
        nt_sd = nt_values.std(ddof=1)
        if not nt_sd > 0:
            raise ValueError(
                f"Screen '{screen}': non-targeting guides have no spread"
            )
        out.loc[index, "Z"] = (block[value_col] - nt_mean) / nt_sd
        print(
            f"  {screen}: NT mean = {nt_mean:.3f}, NT sd = {nt_sd:.3f}, "
            f"n NT = {len(nt_values)}"
        )
    return out


def score_guides(
    df: DataFrame,
    bin_bounds: Optional[DataFrame] = None,
    method: str = "maude",
    screens: Optional[List[str]] = None,
    unsorted_bin: str = "NS",
    high_bins: Optional[Sequence[str]] = None,
    low_bins: Optional[Sequence[str]] = None,
    nt_label: Optional[str] = "NT",
    nt_ids: Optional[Iterable[str]] = None,
    pseudocount: float = 0.5,
    min_reads: int = 1,
    delimiter: Optional[str] = None,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
) -> DataFrame:
    """
    Guide-level Z-scores for all screens of a count table.

    Parameters
    ----------
    df : DataFrame
        Wide count table.
    bin_bounds : DataFrame, optional
        Bin description (make_bin_bounds). Required for method "maude" and
        used to pick the outermost bins for "ratio" when high_bins/low_bins
        are not given.
    method : str
        "maude" (maximum-likelihood mean) or "ratio" (log2 high/low).
    screens : list, optional
        Screens to score, default all screens found in the column names.
    nt_label, nt_ids
        Non-targeting guides by gene label and/or sgRNA IDs.

    Returns
    -------
    DataFrame
        Long table: sgRNA, Gene, screen, mean, n_reads, is_nt, Z (plus
        abundance for "maude").
    """
    delimiter = settings.delimiter if delimiter is None else delimiter
    count_df, count_cols = read_guide_counts(df, sgrna_col, gene_col)
    bin_info = parse_bin_columns(count_cols, delimiter)
    if screens is None:
        screens = list(dict.fromkeys(bin_info["screen"]))

    if method == "ratio" and (high_bins is None or low_bins is None):
        if bin_bounds is None:
            raise ValueError(
                "Ratio scoring needs high_bins and low_bins or bin_bounds"
            )
        ordered = bin_bounds.sort_values("low")["bin"].tolist()
        low_bins = [ordered[0]] if low_bins is None else low_bins
        high_bins = [ordered[-1]] if high_bins is None else high_bins

    frames = []
    for screen in screens:
        if method == "maude":
            if bin_bounds is None:
                raise ValueError("MAUDE scoring needs bin_bounds")
            guides = estimate_guide_means(
                count_df,
                screen,
                bin_bounds,
                unsorted_bin=unsorted_bin,
                delimiter=delimiter,
                pseudocount=pseudocount,
                min_reads=min_reads,
                sgrna_col=sgrna_col,
                gene_col=gene_col,
            )
        elif method == "ratio":
            guides = ratio_guide_scores(
                count_df,
                screen,
                high_bins=high_bins,
                low_bins=low_bins,
                pseudocount=pseudocount,
                delimiter=delimiter,
                sgrna_col=sgrna_col,
                gene_col=gene_col,
            )
        else:
            raise ValueError(f"Unknown scoring method: {method}")
        guides["is_nt"] = non_targeting_mask(
            guides, gene_col, nt_label, nt_ids, sgrna_col
        ).to_numpy()
        frames.append(guides)

    guide_df = pd.concat(frames, ignore_index=True)
    print(f"Scoring {len(count_df)} guides in {len(screens)} screen(s) ({method})")
    return calculate_guide_zscores(guide_df)


def gene_level_stats(
    guide_z: DataFrame,
    gene_col: str = "Gene",
    z_col: str = "Z",
    min_guides: int = 1,
    by_screen: bool = False,
    exclude_nt: bool = True,
    nt_col: str = "is_nt",
) -> DataFrame:
    """
    Combine guide Z-scores per gene (Stouffer's method).

    Z_gene = sum(Z_guide) / sqrt(n_guides), two-sided p-value from the
    standard normal and Benjamini-Hochberg FDR.

    Parameters
    ----------
    guide_z : DataFrame
        Output of score_guides.
    min_guides : int
        Genes with fewer scored guides are dropped.
    by_screen : bool
        Combine per screen instead of across all screens.
    exclude_nt : bool
        Leave non-targeting guides out.

    Returns
    -------
    DataFrame
        gene_col, [screen], n_guides, mean_z, Z, p_value, fdr; sorted by
        p-value.
    """
    data = guide_z.dropna(subset=[z_col])
    if exclude_nt and nt_col in data.columns:
        data = data[~data[nt_col].astype(bool)]
    group_cols = [gene_col, "screen"] if by_screen else [gene_col]
    grouped = data.groupby(group_cols)[z_col]
    genes = grouped.agg(n_guides="count", mean_z="mean", sum_z="sum")
    genes = genes.reset_index()
    genes = genes[genes["n_guides"] >= min_guides].copy()
    columns = group_cols + ["n_guides", "mean_z", "Z", "p_value", "fdr"]
    if len(genes) == 0:
        warnings.warn("No genes with enough scored guides")
        return pd.DataFrame(columns=columns)
    genes["Z"] = genes["sum_z"] / np.sqrt(genes["n_guides"])
    genes["p_value"] = 2 * stats.norm.sf(genes["Z"].abs())
    if by_screen:
        genes["fdr"] = np.nan
        for _, index in genes.groupby("screen").groups.items():
            genes.loc[index, "fdr"] = multipletests(
                genes.loc[index, "p_value"], method="fdr_bh"
            )[1]
    else:
        genes["fdr"] = multipletests(genes["p_value"], method="fdr_bh")[1]
    return (
        genes[columns].sort_values("p_value").reset_index(drop=True)
    )


def call_hits(
    gene_stats: DataFrame,
    fdr_threshold: float = 0.05,
    z_threshold: float = 0.0,
    direction: str = "both",  # "both", "pos", "neg"
) -> DataFrame:
    mask = gene_stats["fdr"] <= fdr_threshold
    if direction == "both":
        mask &= gene_stats["Z"].abs() >= z_threshold
    elif direction == "pos":
        mask &= gene_stats["Z"] >= z_threshold
    elif direction == "neg":
        mask &= gene_stats["Z"] <= -z_threshold
    else:
        raise ValueError("direction must be one of: 'both', 'pos', or 'neg'")
    return gene_stats[mask].copy()


def replicate_correlation(
    guide_z: DataFrame,
    method: str = "pearson",
    value_col: str = "Z",
    sgrna_col: str = "sgRNA",
) -> DataFrame:
    wide = guide_z.pivot_table(
        index=sgrna_col, columns="screen", values=value_col
    )
    return wide.corr(method=method)


def downsample_counts(
    df: DataFrame,
    count_cols: List[str],
    fraction: float,
    rng: Optional[np.random.Generator] = None,
) -> DataFrame:
    """
    Binomial thinning of counts, keeping each read with probability fraction.
    """
    if not 0 < fraction <= 1:
        raise ValueError(f"fraction must be in (0, 1], got {fraction}")
    rng = np.random.default_rng(settings.random_seed) if rng is None else rng
    out = df.copy()
    if fraction == 1:
        return out
    for col in count_cols:
        out[col] = rng.binomial(df[col].to_numpy(dtype=np.int64), fraction)
    return out


def resampling_analysis(
    df: DataFrame,
    bin_bounds: Optional[DataFrame] = None,
    fractions: Sequence[float] = (0.1, 0.25, 0.5, 1.0),
    n_iterations: int = 10,
    reference_hits: Optional[Iterable[str]] = None,
    fdr_threshold: float = 0.05,
    z_threshold: float = 0.0,
    direction: str = "both",
    method: str = "maude",
    seed: Optional[int] = None,
    min_guides: int = 1,
    by_screen: bool = False,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
    **score_kwargs,
) -> DataFrame:
    """
    Hit recovery under down-sampling of the sequenced reads.

    For every fraction and iteration the counts are thinned, guides are
    re-scored, genes combined and hits called.

    Parameters
    ----------
    reference_hits : iterable, optional
        Reference hit genes; defaults to the hits of the full data.
    min_guides, by_screen
        Passed to gene_level_stats for the reference and every iteration.
    **score_kwargs
        Forwarded to score_guides.

    Returns
    -------
    DataFrame
        fraction, iteration, n_hits, n_true_hits, recall, precision.
    """
    count_df, count_cols = read_guide_counts(df, sgrna_col, gene_col)
    rng = np.random.default_rng(settings.random_seed if seed is None else seed)

    def _hits(counts: DataFrame) -> set:
        guide_z = score_guides(
            counts,
            bin_bounds,
            method=method,
            sgrna_col=sgrna_col,
            gene_col=gene_col,
            **score_kwargs,
        )
        genes = gene_level_stats(
            guide_z,
            gene_col=gene_col,
            min_guides=min_guides,
            by_screen=by_screen,
        )
        hits = call_hits(genes, fdr_threshold, z_threshold, direction)
        return set(hits[gene_col].astype(str))

    if reference_hits is None:
        reference = _hits(count_df)
    else:
        reference = {str(g) for g in reference_hits}
    print(f"Reference hits: {len(reference)}")

    records = []
    for fraction in fractions:
        iterations = 1 if fraction == 1 else n_iterations
        for iteration in range(1, iterations + 1):
            sampled = downsample_counts(count_df, count_cols, fraction, rng)
            hits = _hits(sampled)
            n_true = len(hits & reference)
            records.append(
                {
                    "fraction": fraction,
                    "iteration": iteration,
                    "n_hits": len(hits),
                    "n_true_hits": n_true,
                    "recall": n_true / len(reference) if reference else np.nan,
                    "precision": n_true / len(hits) if hits else np.nan,
                }
            )
        print(f"  fraction {fraction}: {iterations} iteration(s) done")
    return pd.DataFrame(records)


def summarize_resampling(resampled: DataFrame) -> DataFrame:
    summary = resampled.groupby("fraction").agg(
        n_iterations=("iteration", "count"),
        n_hits_mean=("n_hits", "mean"),
        n_hits_sd=("n_hits", "std"),
        recall_mean=("recall", "mean"),
        recall_sd=("recall", "std"),
        precision_mean=("precision", "mean"),
        precision_sd=("precision", "std"),
    )
    return summary.reset_index()


def screen_summary(
    guide_z: DataFrame,
    gene_stats: DataFrame,
    hits: DataFrame,
    sgrna_col: str = "sgRNA",
) -> Dict:
    return {
        "n_guides": int(guide_z[sgrna_col].nunique()),
        "n_screens": int(guide_z["screen"].nunique()),
        "n_nt_guides": int(guide_z.loc[guide_z["is_nt"], sgrna_col].nunique()),
        "n_genes": int(len(gene_stats)),
        "n_hits": int(len(hits)),
    }
