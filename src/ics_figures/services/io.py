import pandas as pd
import fcsparser
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union, Iterable
from pandas import DataFrame

from ics_figures.config import settings
from ics_figures.core.features import annotate_events


def save_figure(
    f,
    folder: Union[Path, str],
    name: str,
    formats: Optional[List[str]] = None,
    dpi: Optional[int] = None,
    bbox_inches: str = "tight",
) -> List[Path]:
    """
    Save a matplotlib figure in one or more formats.

    If name already carries a suffix (e.g. "umap.png"), only that format is
    written. Otherwise one file per entry in formats (default:
    settings.save_formats) is written.

    Returns
    -------
    list of Path
        The written files.
    """
    folder = Path(folder)
    folder.mkdir(exist_ok=True, parents=True)
    dpi = settings.dpi if dpi is None else dpi
    suffix = Path(name).suffix
    if suffix:
        formats = [suffix.lstrip(".")]
        name = Path(name).stem
    elif formats is None:
        formats = settings.save_formats
    written = []
    for fmt in formats:
        outfile = folder / f"{name}.{fmt.lstrip('.')}"
        f.savefig(outfile, dpi=dpi, bbox_inches=bbox_inches)
        written.append(outfile)
    return written


def write_table(
    df: DataFrame, path: Union[Path, str], index: bool = False
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=index)
    return path


def read_dataframe(path: Union[str, Path], **kwargs) -> DataFrame:
    """
    Read a tabular file into a pandas DataFrame based on file extension.

    Rules:
    - .csv        -> read as CSV
    - .tsv        -> read as TSV
    - .txt        -> treated as TSV
    - .xls/.xlsx  -> read as Excel
    - other       -> try TSV, raise error if that fails

    Additional keyword arguments are forwarded to the pandas reader.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File does not exist: {path}")

    suffix = path.suffix.lower()

    try:
        if suffix == ".csv":
            return pd.read_csv(path, **kwargs)

        if suffix in {".tsv", ".txt"}:
            return pd.read_csv(path, sep="\t", **kwargs)

        if suffix in {".xls", ".xlsx"}:
            return pd.read_excel(path, **kwargs)

        # Fallback: try TSV for unknown extensions
        try:
            return pd.read_csv(path, sep="\t", **kwargs)
        except Exception as exc:
            raise ValueError(
                f"Unsupported file extension '{suffix}'. "
                "Tried to read as TSV but failed."
            ) from exc

    except Exception as exc:
        raise RuntimeError(f"Failed to read file '{path}': {exc}") from exc


def read_fcs(
    path: Union[str, Path], channel_naming: str = "$PnS"
) -> Tuple[DataFrame, Dict]:
    """
    Read an FCS file exported by the sorter.

    Parameters
    ----------
    path : str or Path
        FCS file.
    channel_naming : str
        "$PnS" (stain names) or "$PnN" (detector names), passed to fcsparser.

    Returns
    -------
    tuple
        (events, metadata) where events has one row per event and one column
        per channel.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"FCS file not found: {path}")
    meta, data = fcsparser.parse(
        str(path), reformat_meta=True, channel_naming=channel_naming
    )
    return data, meta


def read_fcs_samples(
    paths: Iterable[Union[str, Path]],
    delimiter: Optional[str] = None,
    channel_naming: str = "$PnS",
) -> DataFrame:
    """
    Read several FCS files into one annotated event table.

    The file stem is used as sample name and parsed into condition and
    replicate.
    """
    delimiter = settings.delimiter if delimiter is None else delimiter
    frames = []
    for path in paths:
        events, _ = read_fcs(path, channel_naming=channel_naming)
        frames.append(annotate_events(events, Path(path).stem, delimiter))
        print(f"Read {len(events)} events from {path}")
    if not frames:
        raise ValueError("No FCS files given")
    return pd.concat(frames, ignore_index=True)
