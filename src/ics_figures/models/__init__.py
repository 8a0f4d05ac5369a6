"""
Report generators for the three figure analyses.

This includes:
- FeatureReport: Imaging feature distributions, correlation and gating
- MitosisReport: Mitotic-phase decision-tree classification
- ScreenReport: Bin-sort CRISPR screen hit calling and down-sampling
- *ReportConfig: Configuration for the reports
"""

from .base_report import BaseReport, BaseReportConfig
from .feature_report import FeatureReport, FeatureReportConfig
from .mitosis_report import MitosisReport, MitosisReportConfig
from .screen_report import ScreenReport, ScreenReportConfig

__all__ = [
    "BaseReport",
    "BaseReportConfig",
    "FeatureReport",
    "FeatureReportConfig",
    "MitosisReport",
    "MitosisReportConfig",
    "ScreenReport",
    "ScreenReportConfig",
]
