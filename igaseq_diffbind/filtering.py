"""
Contamination-aware filtering of relative-abundance tables.

Sorted fractions carry far less biomass than the pre-sort sample, so reagent
contaminants and index hopping make up a visible share of their reads. Each
function here is pure: it returns a new table and never touches its input.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .exceptions import ShapeMismatchError
from .fractions import FractionSet, check_abundance

logger = logging.getLogger(__name__)


def remove_contaminants(
    table: pd.DataFrame,
    control_col: str,
    expected_taxa: Iterable = (),
) -> pd.DataFrame:
    """
    Drop taxa seen in a negative-control column, then drop the column.

    Taxa listed in ``expected_taxa`` (e.g. the members of a defined
    community) are kept even when they show up in the control.

    Parameters
    ----------
    table : DataFrame, taxa x subjects, including ``control_col``.
    control_col : str
        Name of the negative-control (blank) column.
    expected_taxa : iterable
        Allow-list of taxon identifiers that are never treated as contaminants.

    Returns
    -------
    Copy of ``table`` without the contaminant rows and without ``control_col``.
    """
    if control_col not in table.columns:
        raise ShapeMismatchError(f"control column {control_col!r} not in table")

    expected = set(expected_taxa)
    in_control = table[control_col] > 0
    allowed = table.index.isin(expected)
    contaminant = in_control & ~allowed

    if contaminant.any():
        logger.info(
            "Removing %d taxa present in control %r", int(contaminant.sum()), control_col
        )
    return table.loc[~contaminant].drop(columns=control_col)


def drop_rare_taxa(
    table: pd.DataFrame,
    min_subjects: int,
    min_value: float = 0.0,
) -> pd.DataFrame:
    """
    Keep taxa observed above ``min_value`` in at least ``min_subjects`` subjects.

    Parameters
    ----------
    table : DataFrame, taxa x subjects.
    min_subjects : int
        Minimum number of subjects (columns) the taxon must be observed in.
    min_value : float
        A subject counts as observed when its value is strictly greater.
    """
    n_observed = (table > min_value).sum(axis=1)
    return table.loc[n_observed >= min_subjects].copy()


def apply_threshold(table: pd.DataFrame, tau: float) -> pd.DataFrame:
    """Zero every entry below ``tau``. Missing values stay missing."""
    return table.mask(table < tau, 0.0)


def gate_on_presort(fraction: pd.DataFrame, presort: pd.DataFrame) -> pd.DataFrame:
    """
    Zero a sorted-fraction entry wherever the same subject's pre-sort sample
    has no abundance for that taxon.

    Taxa missing from ``presort`` altogether count as zero at baseline.
    """
    if list(fraction.columns) != list(presort.columns):
        raise ShapeMismatchError("fraction and presort subjects are not aligned")
    baseline = presort.reindex(fraction.index).fillna(0.0)
    return fraction.where(baseline > 0, 0.0)


def filter_abundance(
    table: pd.DataFrame,
    tau: float,
    min_subjects: int,
    control_col: Optional[str] = None,
    expected_taxa: Iterable = (),
    min_value: float = 0.0,
) -> pd.DataFrame:
    """
    Filter a single abundance table.

    1. Remove taxa found in ``control_col`` unless expected (skipped when
       ``control_col`` is None).
    2. Drop taxa observed above ``min_value`` in fewer than ``min_subjects``
       subjects.
    3. Zero entries below ``tau``.
    4. Drop taxa left nonzero in fewer than ``min_subjects`` subjects.

    An empty result is valid and only logged.
    """
    check_abundance(table)
    out = table
    if control_col is not None:
        out = remove_contaminants(out, control_col, expected_taxa)
    out = drop_rare_taxa(out, min_subjects, min_value=min_value)
    out = apply_threshold(out, tau)
    out = drop_rare_taxa(out, min_subjects)

    if out.empty:
        logger.warning(
            "No taxa left after filtering (tau=%g, min_subjects=%d)", tau, min_subjects
        )
    return out


def filter_fractions(
    fractions: FractionSet,
    tau: float,
    min_subjects: int,
    expected_taxa: Iterable = (),
    min_value: float = 0.0,
) -> FractionSet:
    """
    Run the full filter across the three fractions of a FractionSet.

    Each fraction is filtered on its own (using the set's ``control_col``
    when it has one), the sorted fractions are gated on the filtered
    pre-sort table, and taxa nonzero in fewer than ``min_subjects`` subjects
    are pruned again. The positive and negative tables are then re-aligned on
    the union of their surviving taxa so that they can be scored together.

    Returns a new FractionSet without a control column.
    """
    kwargs = dict(
        tau=tau,
        min_subjects=min_subjects,
        control_col=fractions.control_col,
        expected_taxa=tuple(expected_taxa),
        min_value=min_value,
    )
    presort = filter_abundance(fractions.presort, **kwargs)
    positive = filter_abundance(fractions.positive, **kwargs)
    negative = filter_abundance(fractions.negative, **kwargs)

    positive = drop_rare_taxa(gate_on_presort(positive, presort), min_subjects)
    negative = drop_rare_taxa(gate_on_presort(negative, presort), min_subjects)

    sorted_taxa = positive.index.union(negative.index, sort=False)
    positive = positive.reindex(sorted_taxa, fill_value=0.0)
    negative = negative.reindex(sorted_taxa, fill_value=0.0)

    logger.info(
        "Retained %d presort taxa, %d sorted-fraction taxa",
        len(presort), len(sorted_taxa),
    )
    return FractionSet(
        presort=presort,
        positive=positive,
        negative=negative,
        positive_size=fractions.positive_size,
        negative_size=fractions.negative_size,
    )


def threshold_sweep(
    table: pd.DataFrame,
    thresholds: Iterable[float],
    expected_taxa: Iterable = (),
    min_subjects: int = 1,
) -> pd.DataFrame:
    """
    Summarize what each candidate threshold would retain.

    Used to choose ``tau`` by eye; nothing here decides a cut-off.

    Parameters
    ----------
    table : DataFrame, taxa x subjects (control column already removed).
    thresholds : iterable of float
        Candidate values of ``tau``.
    expected_taxa : iterable
        Taxa that are known to be in the samples. Everything else counts as
        unexpected.
    min_subjects : int
        Prevalence filter applied at every candidate.

    Returns
    -------
    DataFrame indexed by threshold with columns:
    - 'n_taxa': taxa retained
    - 'mean_retained': mean total abundance retained per subject
    - 'contaminant_ratio': unexpected / expected abundance (NaN when no
      expected abundance is retained)
    """
    expected = set(expected_taxa)
    rows = []
    for tau in thresholds:
        filtered = filter_abundance(table, tau=tau, min_subjects=min_subjects)
        is_expected = filtered.index.isin(expected)
        expected_total = float(np.nansum(filtered.loc[is_expected].to_numpy()))
        unexpected_total = float(np.nansum(filtered.loc[~is_expected].to_numpy()))
        ratio = unexpected_total / expected_total if expected_total > 0 else np.nan
        per_subject = filtered.sum(axis=0).reindex(table.columns, fill_value=0.0)
        rows.append({
            "threshold": float(tau),
            "n_taxa": len(filtered),
            "mean_retained": float(per_subject.mean()) if len(per_subject) else np.nan,
            "contaminant_ratio": ratio,
        })
    return pd.DataFrame(rows, columns=[
        "threshold", "n_taxa", "mean_retained", "contaminant_ratio",
    ]).set_index("threshold")
