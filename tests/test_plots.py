"""
Smoke tests for plots.py: every figure builds and saves without error.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from igaseq_diffbind.aggregation import compare_methods, finalize_results, results_table
from igaseq_diffbind.comparison import ComparisonResult
from igaseq_diffbind.plots import (
    make_all_plots,
    plot_method_agreement,
    plot_pvalue_histogram,
    plot_threshold_sweep,
    plot_volcano,
)


def _table(shift=0.0):
    rng = np.random.default_rng(0)
    results = []
    for i in range(20):
        p = float(rng.uniform(0.001, 1))
        results.append(ComparisonResult(
            taxon=f"tax{i:02d}", strategy="permutation", n_obs=8, testable=True,
            p_values={"group": p}, effect_sizes={"all": float(rng.normal()) + shift},
        ))
    results.append(ComparisonResult(
        taxon="untestable", strategy="permutation", n_obs=2, testable=False,
        reason="fewer than 3 scores per group",
        p_values={"group": np.nan}, effect_sizes={"all": np.nan},
    ))
    return results_table(finalize_results(results, alpha=0.2))


def _sweep():
    return pd.DataFrame(
        {"n_taxa": [40, 25, 12], "mean_retained": [0.99, 0.95, 0.8],
         "contaminant_ratio": [0.2, 0.05, 0.0]},
        index=pd.Index([1e-4, 1e-3, 1e-2], name="threshold"),
    )


class TestPlots:

    def test_individual_figures(self):
        table = _table()
        for fig in (
            plot_threshold_sweep(_sweep()),
            plot_pvalue_histogram(table, "p_group"),
            plot_volcano(table, "p_group", "ssmd_all"),
        ):
            assert isinstance(fig, plt.Figure)
            plt.close(fig)

    def test_method_agreement(self):
        merged = compare_methods({"kau": _table(), "palm": _table(shift=0.5)})
        fig = plot_method_agreement(merged, "kau", "palm")
        assert isinstance(fig, plt.Figure)
        plt.close(fig)

    def test_make_all_plots(self, tmp_path):
        make_all_plots(_table(), output_dir=str(tmp_path), name="palm", sweep=_sweep())
        assert (tmp_path / "pvalues_palm_p_group.pdf").exists()
        assert (tmp_path / "volcano_palm_p_group_ssmd_all.pdf").exists()
        assert (tmp_path / "threshold_sweep.pdf").exists()
