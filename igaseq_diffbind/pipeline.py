"""
End-to-end differential binding analysis.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import pandas as pd

from .aggregation import finalize_results, results_table
from .comparison import Strategy, check_metadata_subjects, compare_taxa
from .config import AnalysisConfig
from .filtering import filter_fractions
from .fractions import FractionSet
from .scoring import score_fractions

logger = logging.getLogger(__name__)


def analyze_scores(
    scores: pd.DataFrame,
    metadata: pd.DataFrame,
    strategy="permutation",
    config: Optional[AnalysisConfig] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Compare a ready-made score matrix across groups and build the result table.

    Parameters
    ----------
    scores : DataFrame, taxa x subjects, NaN for missing scores.
    metadata : DataFrame indexed by subject.
    strategy : 'anova' or 'permutation'
    config : AnalysisConfig or None
    n_jobs : int
        Worker processes used for the per-taxon comparisons.

    Returns
    -------
    DataFrame from ``aggregation.results_table``: one row per taxon in
    ``scores``, sorted by taxon.
    """
    config = config or AnalysisConfig()
    strategy = Strategy(strategy)
    results = compare_taxa(scores, metadata, strategy, config=config, n_jobs=n_jobs)
    results = finalize_results(
        results,
        alpha=config.alpha,
        correction=config.resolve_correction(strategy.value),
    )
    return results_table(results)


def run_analysis(
    fractions: FractionSet,
    metadata: pd.DataFrame,
    oracle,
    method: str,
    strategy="permutation",
    config: Optional[AnalysisConfig] = None,
    expected_taxa: Iterable = (),
    pseudo: Optional[float] = None,
    n_jobs: int = 1,
) -> Tuple[pd.DataFrame, pd.DataFrame, FractionSet]:
    """
    Filter, score and compare an IgA-Seq experiment.

    Parameters
    ----------
    fractions : FractionSet
        Raw relative abundances per fraction, optionally with a control column.
    metadata : DataFrame
        One row per subject, indexed by subject identifier.
    oracle : object
        Score oracle, see ``scoring.score``.
    method : str
        Score method: 'palm', 'kau', 'positive_probability' or
        'probability_ratio'.
    strategy : 'anova' or 'permutation'
    config : AnalysisConfig or None
    expected_taxa : iterable
        Taxa never treated as contaminants.
    pseudo : float or None
        Pseudocount for methods that need one; derived from the data if None.
    n_jobs : int

    Returns
    -------
    table : DataFrame
        Terminal result table, one row per scored taxon.
    scores : DataFrame
        Score matrix the table was computed from.
    filtered : FractionSet
        Filtered abundance tables.
    """
    config = config or AnalysisConfig()

    # --- 1. Every subject must be described by exactly one metadata row ---
    check_metadata_subjects(fractions.subjects, metadata)

    # --- 2. Filter ---
    filtered = filter_fractions(
        fractions,
        tau=config.tau,
        min_subjects=config.min_subjects,
        expected_taxa=expected_taxa,
        min_value=config.min_value,
    )

    # --- 3. Score ---
    if filtered.positive.empty:
        logger.warning("Nothing left to score after filtering")
        scores = pd.DataFrame(index=filtered.positive.index,
                              columns=filtered.positive.columns, dtype=float)
    else:
        scores = score_fractions(method, oracle, filtered, pseudo=pseudo)

    # --- 4. Compare and aggregate ---
    table = analyze_scores(scores, metadata, strategy, config=config, n_jobs=n_jobs)
    logger.info(
        "%s/%s: %d taxa, %d testable, %d significant",
        method, Strategy(strategy).value, len(table),
        int(table["testable"].sum()), int(table["significant"].sum()),
    )
    return table, scores, filtered
