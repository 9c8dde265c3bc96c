"""
Adapter around the external binding-score oracle.

The score formulas (Kau index, Palm index, positive probability,
probability ratio) are provided by an oracle object exposing one method per
score. This module only checks that the inputs it hands over are complete and
aligned, and that what comes back is aligned to them. Missing values returned
by the oracle are passed through untouched.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import ShapeMismatchError
from .fractions import FractionSet, check_columns_aligned

logger = logging.getLogger(__name__)


# Arguments each oracle method takes, in call order.
METHODS: Dict[str, Tuple[str, ...]] = {
    "palm": ("pos", "neg"),
    "kau": ("pos", "neg", "pseudo"),
    "positive_probability": ("pos", "pos_size", "presort"),
    "probability_ratio": ("pos", "neg", "pos_size", "neg_size", "pseudo"),
}

_TABLE_ARGS = ("pos", "neg", "presort")
_SIZE_ARGS = ("pos_size", "neg_size")


def min_nonzero(*tables: pd.DataFrame) -> float:
    """Smallest strictly positive value across ``tables`` (NaN if none)."""
    values = np.concatenate([t.to_numpy(dtype=float).ravel() for t in tables])
    values = values[values > 0]
    return float(values.min()) if values.size else np.nan


def default_pseudocount(*tables: pd.DataFrame) -> float:
    """Half the smallest nonzero abundance in ``tables``."""
    smallest = min_nonzero(*tables)
    if np.isnan(smallest):
        raise ValueError("cannot derive a pseudocount from all-zero tables")
    return smallest / 2


def score(
    method: str,
    oracle,
    pos: pd.DataFrame,
    neg: Optional[pd.DataFrame] = None,
    pos_size: Optional[pd.Series] = None,
    neg_size: Optional[pd.Series] = None,
    presort: Optional[pd.DataFrame] = None,
    pseudo: Optional[float] = None,
) -> pd.DataFrame:
    """
    Compute a taxon x subject score matrix through ``oracle``.

    Parameters
    ----------
    method : str
        One of ``METHODS``.
    oracle : object
        Exposes ``palm(pos, neg)``, ``kau(pos, neg, pseudo)``,
        ``positive_probability(pos, pos_size, presort)`` and
        ``probability_ratio(pos, neg, pos_size, neg_size, pseudo)``.
    pos, neg, presort : DataFrame
        Relative abundances, taxa x subjects, sharing subject order.
    pos_size, neg_size : Series
        Gate sizes indexed by subject.
    pseudo : float
        Pseudocount; must be positive and below the smallest nonzero
        abundance of the sorted fractions.

    Returns
    -------
    DataFrame with the taxa and subjects of ``pos``.

    Raises
    ------
    ValueError
        Unknown method, a required argument is missing, or a bad pseudocount.
    ShapeMismatchError
        Inputs or the oracle output are not aligned.
    """
    if method not in METHODS:
        raise ValueError(f"unknown score method {method!r}; expected one of {sorted(METHODS)}")

    supplied = dict(pos=pos, neg=neg, pos_size=pos_size, neg_size=neg_size,
                    presort=presort, pseudo=pseudo)
    required = METHODS[method]
    missing = [name for name in required if supplied[name] is None]
    if missing:
        raise ValueError(f"{method} requires {', '.join(missing)}")

    for name in _TABLE_ARGS:
        if supplied[name] is not None and name != "pos":
            check_columns_aligned(pos, supplied[name], name)
    for name in _SIZE_ARGS:
        if supplied[name] is not None:
            check_columns_aligned(pos, supplied[name], name)
    for name in ("neg", "presort"):
        if name in required and list(supplied[name].index) != list(pos.index):
            raise ShapeMismatchError(f"pos and {name} taxa are not aligned")

    if "pseudo" in required:
        _check_pseudocount(pseudo, [supplied[n] for n in ("pos", "neg") if n in required])

    args = [supplied[name] for name in required]
    scores = getattr(oracle, method)(*args)

    if not isinstance(scores, pd.DataFrame):
        raise ShapeMismatchError(f"{method} returned {type(scores).__name__}, not a DataFrame")
    if list(scores.columns) != list(pos.columns) or list(scores.index) != list(pos.index):
        raise ShapeMismatchError(f"{method} scores are not aligned to the input tables")

    n_missing = int(scores.isna().to_numpy().sum())
    if n_missing:
        logger.debug("%s returned %d missing scores", method, n_missing)
    return scores


def _check_pseudocount(pseudo: float, tables) -> None:
    if pseudo <= 0:
        raise ValueError("pseudocount must be positive")
    smallest = min_nonzero(*tables)
    if not np.isnan(smallest) and pseudo >= smallest:
        raise ValueError(
            f"pseudocount {pseudo:g} is not below the smallest nonzero abundance {smallest:g}"
        )
    if not np.isnan(smallest) and pseudo < smallest / 100:
        logger.warning(
            "pseudocount %g is much smaller than the smallest nonzero abundance %g",
            pseudo, smallest,
        )


def score_fractions(
    method: str,
    oracle,
    fractions: FractionSet,
    pseudo: Optional[float] = None,
) -> pd.DataFrame:
    """
    Score a filtered FractionSet.

    When the method needs a pseudocount and none is given,
    ``default_pseudocount`` of the sorted fractions is used.
    """
    if fractions.control_col is not None:
        raise ShapeMismatchError("filter the fractions before scoring them")
    if "pseudo" in METHODS.get(method, ()) and pseudo is None:
        pseudo = default_pseudocount(fractions.positive, fractions.negative)
        logger.info("Using pseudocount %g for %s", pseudo, method)

    presort = None
    if "presort" in METHODS.get(method, ()):
        presort = fractions.presort.reindex(fractions.positive.index, fill_value=0.0)

    return score(
        method,
        oracle,
        pos=fractions.positive,
        neg=fractions.negative,
        pos_size=fractions.positive_size,
        neg_size=fractions.negative_size,
        presort=presort,
        pseudo=pseudo,
    )
