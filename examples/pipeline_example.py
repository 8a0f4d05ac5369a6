"""
Example: all three figure analyses as one pypipegraph2 pipeline.

The bundled datasets are used as inputs; replace the paths with your own
sorter exports and count tables.
"""

import pypipegraph2 as ppg
from pathlib import Path
from ics_figures import (
    feature_figures_job,
    gating_summary_job,
    mitosis_classification_job,
    screen_analysis_job,
    resampling_job,
)
from ics_figures.datasets import dataset_path

ppg.new()

###############################################################################
# Inputs
###############################################################################

feature_table = dataset_path("imaging_features")
gating_strategy = dataset_path("gating_strategy")
mitosis_table = dataset_path("mitosis_features")
count_table = dataset_path("screen_counts")
bin_bounds = dataset_path("screen_bin_bounds")

results = Path("results")

###############################################################################
# Imaging features and gating
###############################################################################

features_job = feature_figures_job(
    feature_table,
    features=["FSC-A", "SSC-A", "DAPI-A", "Area", "Eccentricity", "Intensity"],
    output_dir=results / "features",
    transform="arcsinh",
    reference_condition="control",
)

gating_job = gating_summary_job(
    feature_table,
    gating_strategy,
    output_dir=results / "gating",
    by="sample",
)

###############################################################################
# Mitotic phases
###############################################################################

mitosis_job = mitosis_classification_job(
    mitosis_table,
    features=[
        "Area",
        "Eccentricity",
        "Radial Moment",
        "DAPI Intensity",
        "Max Intensity",
        "Perimeter",
    ],
    output_dir=results / "mitosis",
    classes=["interphase", "prophase", "metaphase", "anaphase", "telophase"],
    max_depth=4,
    permutation_repeats=10,
)

###############################################################################
# Bin-sort screen
###############################################################################

screen_job = screen_analysis_job(
    count_table,
    bin_bounds,
    output_dir=results / "screen",
    method="maude",
    fdr_threshold=0.05,
)

# down-sampling runs after the main analysis so both share the output folder
resample_job = resampling_job(
    count_table,
    bin_bounds,
    output_dir=results / "screen",
    fractions=[0.05, 0.1, 0.25, 0.5, 1.0],
    n_iterations=10,
    dependencies=[screen_job],
)

ppg.run()
