"""
ics-figures: figure analyses for an image-enabled cell sorter.

This package provides:
- core: feature, gating, mitosis classification and screen statistics
- services: file-level wrappers writing tables and figures
- models: markdown/HTML reports
- jobs: pypipegraph2 job factories
- datasets: bundled example data
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("ics-figures")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.1.0"


from .jobs.feature_jobs import (
    feature_figures_job,
    gating_summary_job,
    feature_report_job,
)
from .jobs.mitosis_jobs import mitosis_classification_job, mitosis_report_job
from .jobs.screen_jobs import screen_analysis_job, resampling_job, screen_report_job

__all__ = [
    "feature_figures_job",
    "gating_summary_job",
    "feature_report_job",
    "mitosis_classification_job",
    "mitosis_report_job",
    "screen_analysis_job",
    "resampling_job",
    "screen_report_job",
]
