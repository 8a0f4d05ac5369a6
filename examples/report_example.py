"""
Example: the three figure reports without a pipeline.

Every report writes report.md, report.html and summary.json plus its
figures and tables under report_assets/.
"""

from pathlib import Path
from ics_figures.datasets import dataset_path
from ics_figures.models import (
    FeatureReport,
    FeatureReportConfig,
    MitosisReport,
    MitosisReportConfig,
    ScreenReport,
    ScreenReportConfig,
)

out = Path("results/reports")

feature_report = FeatureReport(
    FeatureReportConfig(
        project_name="imaging_features",
        out_dir=out / "features",
        transform="arcsinh",
        reference_condition="control",
        population="singlets",
    ),
    dataset_path("imaging_features"),
    gating=dataset_path("gating_strategy"),
)
feature_report.build()

mitosis_report = MitosisReport(
    MitosisReportConfig(
        project_name="mitosis",
        out_dir=out / "mitosis",
        max_depth=4,
        permutation_repeats=10,
    ),
    dataset_path("mitosis_features"),
)
mitosis_report.build()
print(
    f"Mitosis: test accuracy {mitosis_report.summary['test_accuracy']}, "
    f"top feature {mitosis_report.summary['top_feature']}"
)

screen_report = ScreenReport(
    ScreenReportConfig(
        project_name="screen",
        out_dir=out / "screen",
        method="maude",
        resampling=True,
        fractions=[0.1, 0.25, 0.5, 1.0],
        n_iterations=5,
    ),
    dataset_path("screen_counts"),
    dataset_path("screen_bin_bounds"),
)
screen_report.build()
print(f"Screen: {screen_report.summary['n_hits']} hits")
