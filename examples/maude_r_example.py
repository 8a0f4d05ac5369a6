"""
Example: compare the built-in guide model with the R package MAUDE.

Needs R with MAUDE installed and the "r" extra (pip install ics-figures[r]).
"""

from ics_figures.core.screen import call_hits, gene_level_stats, score_guides
from ics_figures.datasets import load_dataset
from ics_figures.r_integration.maude_wrapper import run_maude
from ics_figures.services.screen_io import read_bin_bounds

counts = load_dataset("screen_counts")
bounds = read_bin_bounds(load_dataset("screen_bin_bounds"))

genes = gene_level_stats(score_guides(counts, bounds, method="maude"))
hits = set(call_hits(genes)["Gene"])

_, r_genes = run_maude(counts, bounds)
r_hits = set(r_genes.loc[r_genes["fdr"] <= 0.05, "Gene"])

print(f"built-in: {len(hits)} hits, MAUDE (R): {len(r_hits)} hits")
print(f"shared: {sorted(hits & r_hits)}")
