"""
Checking the comparison engine against simulated IgA-Seq experiments.

The simulator itself is an external function; this module calls it through
its contract, validates what it returns, and measures how well scores and
significance calls recover the simulated ground truth. Nothing here is used
when analysing real data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

import numpy as np
import pandas as pd
from scipy import stats

from .exceptions import ShapeMismatchError
from .fractions import FractionSet

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = (
    "presort", "positive", "negative",
    "positive_size", "negative_size",
    "species_binding",
)


@dataclass(frozen=True)
class SimulationResult:
    """
    Output of one simulated experiment.

    ``species_binding`` holds the ground-truth mean binding value per species
    (indexed like the abundance tables). ``bacterium_binding`` holds the
    binding values sampled for individual bacteria, in whatever shape the
    simulator produced them, or None.
    """

    fractions: FractionSet
    species_binding: pd.Series
    bacterium_binding: Any = None

    @classmethod
    def from_oracle(cls, output: Mapping[str, Any]) -> "SimulationResult":
        missing = [key for key in _REQUIRED_KEYS if key not in output]
        if missing:
            raise ShapeMismatchError(f"simulation output lacks {missing}")

        fractions = FractionSet(
            presort=pd.DataFrame(output["presort"]),
            positive=pd.DataFrame(output["positive"]),
            negative=pd.DataFrame(output["negative"]),
            positive_size=pd.Series(output["positive_size"], dtype=float),
            negative_size=pd.Series(output["negative_size"], dtype=float),
        )
        truth = pd.Series(output["species_binding"], dtype=float)
        if set(truth.index) != set(fractions.positive.index):
            raise ShapeMismatchError("ground truth species do not match the abundance tables")
        return cls(
            fractions=fractions,
            species_binding=truth.reindex(fractions.positive.index),
            bacterium_binding=output.get("bacterium_binding"),
        )

    def as_fractions(self) -> FractionSet:
        return self.fractions


def run_simulation(
    simulate,
    num_samples: int,
    high_threshold: float,
    low_threshold: float,
    species_mean_binding_values: Optional[Iterable[float]] = None,
    between_group_options: Optional[Mapping[str, Any]] = None,
) -> SimulationResult:
    """
    Call the external simulator and validate its output.

    Optional arguments are only forwarded when given, so the simulator's own
    defaults apply otherwise.
    """
    kwargs = dict(
        num_samples=num_samples,
        high_threshold=high_threshold,
        low_threshold=low_threshold,
    )
    if species_mean_binding_values is not None:
        kwargs["species_mean_binding_values"] = list(species_mean_binding_values)
    if between_group_options is not None:
        kwargs["between_group_options"] = dict(between_group_options)

    logger.info("Simulating %d samples", num_samples)
    return SimulationResult.from_oracle(simulate(**kwargs))


def score_recovery(scores: pd.DataFrame, truth: pd.Series) -> float:
    """
    Spearman correlation between each taxon's mean score and its true mean
    binding value. Taxa with no finite score are ignored.
    """
    mean_scores = scores.mean(axis=1, skipna=True)
    paired = pd.concat([mean_scores, truth], axis=1, join="inner").dropna()
    if len(paired) < 3:
        return np.nan
    rho, _ = stats.spearmanr(paired.iloc[:, 0], paired.iloc[:, 1])
    return float(rho)


def call_recovery(table: pd.DataFrame, truly_different: Iterable) -> pd.Series:
    """
    Compare significance calls with the taxa known to differ between groups.

    Parameters
    ----------
    table : DataFrame from ``aggregation.results_table``.
    truly_different : iterable of taxon identifiers simulated with a group
        difference.

    Returns
    -------
    Series with 'sensitivity', 'false_positive_rate', 'precision' and the
    counts they were computed from.
    """
    truth = table.index.isin(set(truly_different))
    called = table["significant"].astype(bool).to_numpy()

    tp = int(np.sum(called & truth))
    fp = int(np.sum(called & ~truth))
    fn = int(np.sum(~called & truth))
    tn = int(np.sum(~called & ~truth))

    def _ratio(num, den):
        return num / den if den else np.nan

    return pd.Series({
        "true_positives": tp,
        "false_positives": fp,
        "false_negatives": fn,
        "true_negatives": tn,
        "sensitivity": _ratio(tp, tp + fn),
        "false_positive_rate": _ratio(fp, fp + tn),
        "precision": _ratio(tp, tp + fp),
    })
