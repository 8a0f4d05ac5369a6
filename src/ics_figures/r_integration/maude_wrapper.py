"""
Bridge to the R package MAUDE for bin-sort screen hit calling.

rpy2 and MAUDE are optional (extra "r"); both are imported on first use so
that the package imports without R.
"""

import pandas as pd
from pandas import DataFrame
from typing import Iterable, List, Optional, Tuple, Union
from pathlib import Path

from ics_figures.config import settings
from ics_figures.core.screen import (
    non_targeting_mask,
    parse_bin_columns,
    read_guide_counts,
)
from ics_figures.services.screen_io import read_bin_bounds

NT_COLUMN = "isNT"

# MAUDE element-wise output columns -> names used by core.screen
ELEMENT_COLUMNS = {
    "meanZ": "Z",
    "numGuides": "n_guides",
    "p.value": "p_value",
    "FDR": "fdr",
}


def _import_maude():
    """
    Load the MAUDE package through rpy2.
    """
    try:
        from rpy2.robjects.packages import importr, PackageNotInstalledError
    except ImportError as exc:
        raise RuntimeError(
            "rpy2 is required for the MAUDE backend. "
            "Install with: pip install ics-figures[r]"
        ) from exc
    try:
        return importr("MAUDE")
    except PackageNotInstalledError as exc:
        raise RuntimeError(
            "R package MAUDE is not installed. In R run: "
            "devtools::install_github('de-Boer-Lab/MAUDE')"
        ) from exc


def _py2rpy(df: DataFrame):
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.conversion import localconverter

    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.py2rpy(df)


def _rpy2py(obj) -> DataFrame:
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.conversion import localconverter

    with localconverter(ro.default_converter + pandas2ri.converter):
        return ro.conversion.rpy2py(obj)


def maude_count_table(
    df: DataFrame,
    bins: List[str],
    unsorted_bin: str = "NS",
    delimiter: Optional[str] = None,
    nt_label: Optional[str] = "NT",
    nt_ids: Optional[Iterable[str]] = None,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
) -> DataFrame:
    """
    Long count table as MAUDE expects it: one row per guide and screen,
    one column per bin and a logical non-targeting column.
    """
    delimiter = settings.delimiter if delimiter is None else delimiter
    count_df, count_cols = read_guide_counts(df, sgrna_col, gene_col)
    bin_info = parse_bin_columns(count_cols, delimiter)
    is_nt = non_targeting_mask(count_df, gene_col, nt_label, nt_ids, sgrna_col)
    frames = []
    for screen, block in bin_info.groupby("screen", sort=False):
        columns = dict(zip(block["bin"], block["column"]))
        missing = [b for b in bins + [unsorted_bin] if b not in columns]
        if missing:
            raise KeyError(f"Screen '{screen}' has no columns for bins {missing}")
        long_df = count_df[[sgrna_col, gene_col]].copy()
        long_df.insert(0, "screen", screen)
        for bin_name in bins + [unsorted_bin]:
            long_df[bin_name] = count_df[columns[bin_name]].to_numpy()
        long_df[NT_COLUMN] = is_nt.to_numpy()
        frames.append(long_df)
    return pd.concat(frames, ignore_index=True)


def maude_bin_stats(bin_bounds: DataFrame, screens: List[str]) -> DataFrame:
    """
    Bin statistics per screen with the column names used by MAUDE.
    """
    frames = []
    for screen in screens:
        frames.append(
            pd.DataFrame(
                {
                    "screen": screen,
                    "Bin": bin_bounds["bin"].to_numpy(),
                    "binStartQ": bin_bounds["low"].to_numpy(),
                    "binEndQ": bin_bounds["high"].to_numpy(),
                    "fraction": bin_bounds["fraction"].to_numpy(),
                    "binStartZ": bin_bounds["z_low"].to_numpy(),
                    "binEndZ": bin_bounds["z_high"].to_numpy(),
                }
            )
        )
    return pd.concat(frames, ignore_index=True)


def run_maude(
    counts: Union[Path, str, DataFrame],
    bin_bounds: Union[Path, str, DataFrame],
    unsorted_bin: str = "NS",
    delimiter: Optional[str] = None,
    nt_label: Optional[str] = "NT",
    nt_ids: Optional[Iterable[str]] = None,
    sgrna_col: str = "sgRNA",
    gene_col: str = "Gene",
) -> Tuple[DataFrame, DataFrame]:
    """
    Guide- and gene-level statistics computed by the R package MAUDE.

    Parameters
    ----------
    counts : Path, str or DataFrame
        Wide count table.
    bin_bounds : Path, str or DataFrame
        Bin bounds table (bin, low, high).

    Returns
    -------
    tuple
        (guide_df, gene_df); MAUDE columns are renamed to the names used by
        core.screen where a counterpart exists (Z, n_guides, p_value, fdr).
    """
    maude = _import_maude()
    bounds = read_bin_bounds(bin_bounds)
    bins = bounds.sort_values("low")["bin"].astype(str).tolist()
    count_table = maude_count_table(
        counts,
        bins,
        unsorted_bin=unsorted_bin,
        delimiter=delimiter,
        nt_label=nt_label,
        nt_ids=nt_ids,
        sgrna_col=sgrna_col,
        gene_col=gene_col,
    )
    screens = list(dict.fromkeys(count_table["screen"]))
    experiments = pd.DataFrame({"screen": screens})
    bin_stats = maude_bin_stats(bounds, screens)
    print(f"Running MAUDE on {len(count_table)} guide/screen rows")

    r_experiments = _py2rpy(experiments)
    guide_res = maude.findGuideHitsAllScreens(
        experiments=r_experiments,
        countDataFrame=_py2rpy(count_table),
        binStats=_py2rpy(bin_stats),
        sortBins=_py2rpy(pd.Series(bins)),
        unsortedBin=unsorted_bin,
        negativeControl=NT_COLUMN,
    )
    guide_df = _rpy2py(guide_res)
    element_res = maude.getElementwiseStats(
        experiments=r_experiments,
        normNBSummaries=guide_res,
        negCTRL=_py2rpy(guide_df[NT_COLUMN].astype(bool)),
        elementIDs=gene_col,
    )
    gene_df = _rpy2py(element_res)
    gene_df = gene_df.rename(
        columns={k: v for k, v in ELEMENT_COLUMNS.items() if k in gene_df.columns}
    )
    return guide_df, gene_df
