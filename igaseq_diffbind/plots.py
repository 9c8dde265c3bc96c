"""
Diagnostic plots for filtering and differential binding results.
"""

from __future__ import annotations

import os
from typing import Optional

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns


def plot_threshold_sweep(sweep: pd.DataFrame, axes=None) -> plt.Figure:
    """
    Three-panel view of ``filtering.threshold_sweep`` output.

    Panels: taxa retained, mean abundance retained per subject, and the ratio
    of unexpected to expected abundance, each against the threshold on a log
    axis.

    Parameters
    ----------
    sweep : DataFrame returned by threshold_sweep.
    axes : sequence of three matplotlib Axes or None
    """
    if axes is None:
        fig, axes = plt.subplots(1, 3, figsize=(12, 3.5))
    else:
        fig = axes[0].get_figure()

    x = sweep.index.to_numpy(dtype=float)
    panels = [
        ("n_taxa", "Taxa retained"),
        ("mean_retained", "Mean abundance retained"),
        ("contaminant_ratio", "Unexpected / expected"),
    ]
    for ax, (col, label) in zip(axes, panels):
        ax.plot(x, sweep[col].to_numpy(dtype=float), marker="o", markersize=4, lw=1.5)
        ax.set_xscale("log")
        ax.set_xlabel("Abundance threshold")
        ax.set_ylabel(label)
    axes[2].set_yscale("symlog", linthresh=1e-3)
    plt.tight_layout()
    return fig


def plot_pvalue_histogram(
    table: pd.DataFrame,
    p_col: str,
    alpha: float = 0.05,
    ax=None,
) -> plt.Figure:
    """
    Histogram of one p-value column of a result table, untestable taxa
    excluded, with the significance threshold marked.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(5, 4))
    else:
        fig = ax.get_figure()

    p = table[p_col].dropna()
    ax.hist(p, bins=np.linspace(0, 1, 21), color="steelblue", alpha=0.75)
    ax.axvline(alpha, linestyle="--", color="k", linewidth=1)
    n_untestable = int((~table["testable"].astype(bool)).sum())
    ax.set_xlabel(p_col)
    ax.set_ylabel("Number of taxa")
    ax.set_title(f"{len(p)} tested, {n_untestable} untestable")
    plt.tight_layout()
    return fig


def plot_volcano(
    table: pd.DataFrame,
    p_col: str,
    effect_col: str,
    alpha: float = 0.05,
    label_top: int = 10,
    ax=None,
) -> plt.Figure:
    """
    SSMD against -log10 p for every testable taxon; significant taxa are
    coloured and the ``label_top`` smallest p-values are labelled.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(6, 5))
    else:
        fig = ax.get_figure()

    data = table[[p_col, effect_col, "significant"]].dropna(subset=[p_col]).copy()
    data["neg_log10_p"] = -np.log10(data[p_col].clip(lower=1e-300))
    data["significant"] = data["significant"].astype(bool)

    if not data.empty:
        sns.scatterplot(
            data=data, x=effect_col, y="neg_log10_p", hue="significant",
            palette={True: "#c0392b", False: "grey"}, s=20, alpha=0.8,
            edgecolor="none", ax=ax,
        )
    ax.axhline(-np.log10(alpha), linestyle="--", color="k", linewidth=1)
    ax.axvline(0, color="k", linewidth=0.8)

    for taxon, row in data.nsmallest(label_top, p_col).iterrows():
        ax.text(row[effect_col], row["neg_log10_p"], str(taxon), fontsize=6,
                ha="left", va="bottom")

    ax.set_xlabel(effect_col)
    ax.set_ylabel(f"-log10 {p_col}")
    plt.tight_layout()
    return fig


def plot_method_agreement(
    merged: pd.DataFrame,
    method_a: str,
    method_b: str,
    column: str = "ssmd_all",
    ax=None,
) -> plt.Figure:
    """
    Scatter of one statistic under two score methods, from
    ``aggregation.compare_methods`` output.

    ``column`` is the unsuffixed column name, e.g. 'ssmd_all' or 'p_group'.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(5, 5))
    else:
        fig = ax.get_figure()

    x = merged[f"{column}_{method_a}"].astype(float)
    y = merged[f"{column}_{method_b}"].astype(float)
    both = x.notna() & y.notna()

    ax.scatter(x[both], y[both], s=15, alpha=0.7, color="#1a5fa8")
    if both.any():
        lim = [min(x[both].min(), y[both].min()), max(x[both].max(), y[both].max())]
        ax.plot(lim, lim, "k--", linewidth=1)
    ax.set_xlabel(f"{column} ({method_a})")
    ax.set_ylabel(f"{column} ({method_b})")
    ax.set_title(f"{method_a} vs {method_b} (n = {int(both.sum())})")
    plt.tight_layout()
    return fig


def make_all_plots(
    table: pd.DataFrame,
    output_dir: str,
    name: str = "results",
    alpha: float = 0.05,
    sweep: Optional[pd.DataFrame] = None,
) -> None:
    """
    Save the standard plots for one result table as PDFs into ``output_dir``.

    Files created:
    - pvalues_{name}_{p_col}.pdf for each 'p_*' column
    - volcano_{name}_{p_col}_{ssmd_col}.pdf for each p-value / effect-size pair
    - threshold_sweep.pdf when ``sweep`` is given
    """
    os.makedirs(output_dir, exist_ok=True)

    p_cols = [c for c in table.columns if c.startswith("p_")]
    effect_cols = [c for c in table.columns if c.startswith("ssmd_")]

    for p_col in p_cols:
        fig = plot_pvalue_histogram(table, p_col, alpha=alpha)
        fig.savefig(os.path.join(output_dir, f"pvalues_{name}_{p_col}.pdf"), transparent=True)
        plt.close(fig)

        for effect_col in effect_cols:
            fig = plot_volcano(table, p_col, effect_col, alpha=alpha)
            fig.savefig(
                os.path.join(output_dir, f"volcano_{name}_{p_col}_{effect_col}.pdf"),
                transparent=True,
            )
            plt.close(fig)

    if sweep is not None:
        fig = plot_threshold_sweep(sweep)
        fig.savefig(os.path.join(output_dir, "threshold_sweep.pdf"), transparent=True)
        plt.close(fig)
