"""
Assembling per-taxon comparison results into report tables.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from .comparison import ComparisonResult

logger = logging.getLogger(__name__)


def benjamini_hochberg(pvalues) -> np.ndarray:
    """
    Benjamini-Hochberg adjusted p-values.

    Missing p-values are left out of the correction and stay missing in the
    output, which has the same length and order as the input.
    """
    p = np.asarray(pvalues, dtype=float)
    adjusted = np.full(p.shape, np.nan)
    tested = ~np.isnan(p)
    if tested.any():
        adjusted[tested] = multipletests(p[tested], method="fdr_bh")[1]
    return adjusted


def finalize_results(
    results: Sequence[ComparisonResult],
    alpha: float = 0.05,
    correction: Optional[str] = None,
) -> List[ComparisonResult]:
    """
    Apply multiple-testing correction and the significance threshold.

    Each comparison (e.g. 'condition', 'interaction') is corrected separately
    across all taxa. A taxon is significant when any of its p-values
    (adjusted ones, if ``correction`` is set) is below ``alpha``.

    Parameters
    ----------
    results : sequence of ComparisonResult
    alpha : float
    correction : 'fdr_bh' or None

    Returns
    -------
    New list of ComparisonResult, same order as ``results``.
    """
    if correction not in (None, "fdr_bh"):
        raise ValueError(f"unknown correction {correction!r}")

    names = _ordered_keys(r.p_values for r in results)
    adjusted: Dict[str, np.ndarray] = {}
    if correction is not None:
        for name in names:
            raw = [r.p_values.get(name, np.nan) for r in results]
            adjusted[name] = benjamini_hochberg(raw)

    finalized = []
    for i, result in enumerate(results):
        adj = {name: float(adjusted[name][i]) for name in adjusted}
        used = adj if correction is not None else result.p_values
        significant = any(p < alpha for p in used.values() if not np.isnan(p))
        finalized.append(replace(result, adjusted_p_values=adj, significant=significant))

    logger.info(
        "%d of %d taxa significant at alpha=%g (correction=%s)",
        sum(r.significant for r in finalized), len(finalized), alpha, correction,
    )
    return finalized


def _ordered_keys(mappings: Iterable[Mapping]) -> List[str]:
    keys: List[str] = []
    for mapping in mappings:
        for key in mapping:
            if key not in keys:
                keys.append(key)
    return keys


def results_table(results: Sequence[ComparisonResult]) -> pd.DataFrame:
    """
    One row per taxon, sorted by taxon identifier.

    Columns:
    - 'strategy', 'n_obs', 'testable', 'reason'
    - 'p_{name}' per comparison and 'q_{name}' where adjusted values exist
    - 'ssmd_{stratum}' per effect-size stratum
    - 'significant'
    """
    p_names = _ordered_keys(r.p_values for r in results)
    q_names = _ordered_keys(r.adjusted_p_values for r in results)
    strata = _ordered_keys(r.effect_sizes for r in results)

    rows = []
    for r in results:
        row = {
            "taxon": r.taxon,
            "strategy": r.strategy,
            "n_obs": r.n_obs,
            "testable": r.testable,
            "reason": r.reason,
        }
        for name in p_names:
            row[f"p_{name}"] = r.p_values.get(name, np.nan)
        for name in q_names:
            row[f"q_{name}"] = r.adjusted_p_values.get(name, np.nan)
        for key in strata:
            row[f"ssmd_{key}"] = r.effect_sizes.get(key, np.nan)
        row["significant"] = r.significant
        rows.append(row)

    columns = (
        ["taxon", "strategy", "n_obs", "testable", "reason"]
        + [f"p_{n}" for n in p_names]
        + [f"q_{n}" for n in q_names]
        + [f"ssmd_{k}" for k in strata]
        + ["significant"]
    )
    table = pd.DataFrame(rows, columns=columns).set_index("taxon")
    return table.sort_index(kind="mergesort")


def significant_taxa(table: pd.DataFrame) -> pd.DataFrame:
    """Rows of ``results_table`` output flagged significant, by taxon name."""
    return table.loc[table["significant"].astype(bool)].sort_index(kind="mergesort")


def compare_methods(tables: Mapping[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Put the results of several score methods side by side.

    Parameters
    ----------
    tables : mapping of method name -> ``results_table`` output
        All tables must come from the same comparison strategy.

    Returns
    -------
    DataFrame indexed by taxon, restricted to taxa significant under at least
    one method, with the p-value ('p_*', 'q_*'), effect-size ('ssmd_*') and
    'significant' columns of each method suffixed with ``_{method}``.
    Taxa a method did not report are NaN for that method.
    """
    if len(tables) < 2:
        raise ValueError("need results from at least two methods")

    parts = []
    for method, table in tables.items():
        cols = [c for c in table.columns if c.startswith(("p_", "q_", "ssmd_"))]
        cols.append("significant")
        part = table[cols].rename(columns=lambda c, m=method: f"{c}_{m}")
        parts.append(part)

    merged = pd.concat(parts, axis=1, join="outer")
    flags = merged[[f"significant_{m}" for m in tables]]
    any_significant = flags.eq(True).any(axis=1)
    return merged.loc[any_significant].sort_index(kind="mergesort")
