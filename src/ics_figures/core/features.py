"""
Tidy reshaping, transformation and normalization of per-cell image features.

Tables handled here have one row per imaged cell, numeric feature columns
(intensity, size and shape measurements exported by the sorter) and the
annotation columns "sample", "condition" and "replicate".
"""

import warnings
import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Tuple, Union
from pandas import DataFrame
from scipy import stats
from statsmodels.stats.multitest import multipletests

ANNOTATION_COLUMNS = ["sample", "condition", "replicate"]


def parse_sample_name(name: str, delimiter: str = "_") -> Tuple[str, str]:
    """
    Parse condition and replicate from a sample name.

    Parameters
    ----------
    name : str
        Sample name like "DMSO_Rep1" or "Nocodazole_2h_Rep2".
    delimiter : str
        Delimiter between condition and replicate. The name is split on the
        last occurrence.

    Returns
    -------
    tuple
        (condition, replicate) e.g. ("DMSO", "Rep1")
    """
    parts = name.rsplit(delimiter, 1)
    if len(parts) == 2 and parts[0] and parts[1]:
        return parts[0], parts[1]
    return name, "Rep1"


def annotate_events(
    events: DataFrame, sample: str, delimiter: str = "_"
) -> DataFrame:
    condition, replicate = parse_sample_name(sample, delimiter)
    annotated = events.copy()
    annotated["sample"] = sample
    annotated["condition"] = condition
    annotated["replicate"] = replicate
    return annotated


def concat_samples(
    samples: Dict[str, DataFrame], delimiter: str = "_"
) -> DataFrame:
    """
    Concatenate per-sample event tables into one annotated table.

    Parameters
    ----------
    samples : dict
        Mapping sample name -> event DataFrame.
    delimiter : str
        Delimiter used to parse condition and replicate from the names.

    Returns
    -------
    DataFrame
        All events with sample, condition and replicate columns.
    """
    if len(samples) == 0:
        raise ValueError("No samples given")
    frames = [
        annotate_events(events, name, delimiter)
        for name, events in samples.items()
    ]
    return pd.concat(frames, ignore_index=True)


def _check_columns(df: DataFrame, columns: List[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KeyError(
            f"Columns not found: {missing}. Available columns: "
            f"{list(df.columns)}"
        )


def select_features(
    df: DataFrame,
    features: List[str],
    rename: Optional[Dict[str, str]] = None,
    keep: Optional[List[str]] = None,
) -> DataFrame:
    """
    Select feature columns (plus annotation columns) and optionally rename.

    Parameters
    ----------
    df : DataFrame
        Event table.
    features : list
        Feature columns to keep.
    rename : dict, optional
        Mapping old name -> new name applied after selection.
    keep : list, optional
        Additional columns to keep, defaults to the annotation columns that
        are present.

    Returns
    -------
    DataFrame
        Selected (and renamed) columns.
    """
    _check_columns(df, features)
    if keep is None:
        keep = [c for c in ANNOTATION_COLUMNS if c in df.columns]
    else:
        _check_columns(df, keep)
    selected = df[list(keep) + [f for f in features if f not in keep]].copy()
    if rename:
        selected = selected.rename(columns=rename)
    return selected


def filter_events(
    df: DataFrame,
    ranges: Optional[Dict[str, Tuple[Optional[float], Optional[float]]]] = None,
    dropna: bool = True,
) -> DataFrame:
    """
    Keep events within inclusive value ranges.

    Parameters
    ----------
    df : DataFrame
        Event table.
    ranges : dict, optional
        Mapping column -> (low, high). None leaves a bound open.
    dropna : bool
        Drop events with non-finite values in the filtered columns (all
        numeric columns if no ranges are given).

    Returns
    -------
    DataFrame
        Filtered copy.
    """
    ranges = ranges or {}
    _check_columns(df, list(ranges.keys()))
    mask = pd.Series(True, index=df.index)
    for col, (low, high) in ranges.items():
        if low is not None:
            mask &= df[col] >= low
        if high is not None:
            mask &= df[col] <= high
    if dropna:
        cols = list(ranges.keys()) or df.select_dtypes("number").columns
        values = df[cols].to_numpy(dtype=float)
        mask &= np.isfinite(values).all(axis=1)
    n_removed = int((~mask).sum())
    if n_removed > 0:
        print(f"Removed {n_removed} of {len(df)} events")
    return df[mask].copy()


def transform_features(
    df: DataFrame,
    features: List[str],
    method: str = "arcsinh",
    cofactor: float = 150.0,
    floor: float = 1e-3,
) -> DataFrame:
    """
    Apply a variance-stabilizing transform to feature columns.

    Parameters
    ----------
    method : str
        "arcsinh" (arcsinh(x / cofactor)), "log10", "log2" or "none".
        Log transforms clip values below floor.
    """
    _check_columns(df, features)
    out = df.copy()
    values = out[features].astype(float)
    if method == "arcsinh":
        out[features] = np.arcsinh(values / cofactor)
    elif method == "log10":
        out[features] = np.log10(values.clip(lower=floor))
    elif method == "log2":
        out[features] = np.log2(values.clip(lower=floor))
    elif method == "none":
        out[features] = values
    else:
        raise ValueError(f"Unknown transform method: {method}")
    return out


def _normalize_block(block: DataFrame, method: str) -> DataFrame:
    if method == "zscore":
        center = block.mean()
        scale = block.std(ddof=1)
    elif method == "minmax":
        center = block.min()
        scale = block.max() - block.min()
    elif method == "robust":
        center = block.median()
        scale = block.quantile(0.75) - block.quantile(0.25)
    else:
        raise ValueError(f"Unknown normalization method: {method}")
    scale = scale.replace(0, np.nan)
    return ((block - center) / scale).fillna(0.0)


def normalize_features(
    df: DataFrame,
    features: List[str],
    method: str = "zscore",
    by: Optional[Union[str, List[str]]] = None,
    control_condition: Optional[str] = None,
    condition_col: str = "condition",
) -> DataFrame:
    """
    Normalize feature columns, optionally within groups (e.g. per replicate).

    Parameters
    ----------
    df : DataFrame
        Event table.
    features : list
        Feature columns to normalize.
    method : str
        "zscore", "minmax", "robust" (median/IQR) or "control_median"
        (divide by the median of the control condition).
    by : str or list, optional
        Grouping column(s); normalization is done per group.
    control_condition : str, optional
        Control condition name, required for "control_median".
    condition_col : str
        Column holding the condition label.

    Returns
    -------
    DataFrame
        Copy with normalized feature values.
    """
    _check_columns(df, features)
    out = df.copy()
    out[features] = out[features].astype(float)
    if by is None:
        groups = [(None, out.index)]
    else:
        by_cols = [by] if isinstance(by, str) else list(by)
        _check_columns(df, by_cols)
        groups = list(out.groupby(by_cols).groups.items())

    for key, index in groups:
        block = out.loc[index, features]
        if method == "control_median":
            if control_condition is None:
                raise ValueError(
                    "control_median normalization needs a control_condition"
                )
            _check_columns(df, [condition_col])
            control = block[out.loc[index, condition_col] == control_condition]
            if len(control) == 0:
                raise ValueError(
                    f"Control condition '{control_condition}' not found in "
                    f"group {key}"
                )
            medians = control.median().replace(0, np.nan)
            out.loc[index, features] = (block / medians).fillna(0.0)
        else:
            out.loc[index, features] = _normalize_block(block, method)
    return out


def to_long(
    df: DataFrame,
    features: List[str],
    id_vars: Optional[List[str]] = None,
    var_name: str = "feature",
    value_name: str = "value",
) -> DataFrame:
    _check_columns(df, features)
    if id_vars is None:
        id_vars = [c for c in ANNOTATION_COLUMNS if c in df.columns]
    return df.melt(
        id_vars=id_vars,
        value_vars=features,
        var_name=var_name,
        value_name=value_name,
    )


def summarize_features(
    df: DataFrame,
    features: List[str],
    by: Union[str, List[str]] = "condition",
) -> DataFrame:
    """
    Per-group summary statistics for each feature.

    Returns
    -------
    DataFrame
        Columns: group column(s), feature, n, mean, median, sd, q25, q75, iqr.
    """
    by_cols = [by] if isinstance(by, str) else list(by)
    long_df = to_long(df, features, id_vars=by_cols)
    grouped = long_df.groupby(by_cols + ["feature"])["value"]
    summary = grouped.agg(
        n="count",
        mean="mean",
        median="median",
        sd="std",
        q25=lambda x: x.quantile(0.25),
        q75=lambda x: x.quantile(0.75),
    ).reset_index()
    summary["iqr"] = summary["q75"] - summary["q25"]
    return summary


def feature_correlation(
    df: DataFrame, features: List[str], method: str = "pearson"
) -> DataFrame:
    if method not in ("pearson", "spearman", "kendall"):
        raise ValueError(f"Unknown correlation method: {method}")
    _check_columns(df, features)
    return df[features].corr(method=method)


def compare_conditions(
    df: DataFrame,
    feature: str,
    reference: str,
    condition_col: str = "condition",
    test: str = "mannwhitney",
) -> DataFrame:
    """
    Compare a feature between every condition and a reference condition.

    Parameters
    ----------
    df : DataFrame
        Event table.
    feature : str
        Feature column to compare.
    reference : str
        Reference condition (e.g. "DMSO").
    condition_col : str
        Column holding the condition label.
    test : str
        "mannwhitney" (two-sided Mann-Whitney U) or "ttest" (Welch).

    Returns
    -------
    DataFrame
        One row per non-reference condition: condition, n, n_reference,
        median_diff, statistic, pvalue, padj (Benjamini-Hochberg).
    """
    _check_columns(df, [feature, condition_col])
    conditions = df[condition_col].unique().tolist()
    if reference not in conditions:
        raise ValueError(
            f"Reference condition '{reference}' not found. "
            f"Available: {conditions}"
        )
    ref_values = df.loc[df[condition_col] == reference, feature].dropna()
    records = []
    for condition in conditions:
        if condition == reference:
            continue
        values = df.loc[df[condition_col] == condition, feature].dropna()
        if len(values) < 2 or len(ref_values) < 2:
            warnings.warn(
                f"Skipping '{condition}': fewer than two values to compare"
            )
            continue
        if test == "mannwhitney":
            res = stats.mannwhitneyu(
                values, ref_values, alternative="two-sided"
            )
        elif test == "ttest":
            res = stats.ttest_ind(values, ref_values, equal_var=False)
        else:
            raise ValueError(f"Unknown test: {test}")
        records.append(
            {
                "condition": condition,
                "n": len(values),
                "n_reference": len(ref_values),
                "median_diff": float(values.median() - ref_values.median()),
                "statistic": float(res.statistic),
                "pvalue": float(res.pvalue),
            }
        )
    result = pd.DataFrame(
        records,
        columns=[
            "condition",
            "n",
            "n_reference",
            "median_diff",
            "statistic",
            "pvalue",
        ],
    )
    if len(result) > 0:
        result["padj"] = multipletests(result["pvalue"], method="fdr_bh")[1]
    else:
        result["padj"] = pd.Series(dtype=float)
    return result
