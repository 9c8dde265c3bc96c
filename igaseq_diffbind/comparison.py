"""
Per-taxon comparison of binding scores between experimental groups.

Two strategies are available:

- ``"anova"``: two-way ANOVA of score on an ordinal covariate (e.g. age),
  the condition, and their interaction. Meant for the 3 x 2 designs of the
  ageing experiments.
- ``"permutation"``: exact two-sided permutation test on the absolute
  difference of group means, enumerating every split of the pooled scores.
  Meant for two groups of three to eight animals.

Both report SSMD effect sizes. A taxon that cannot be tested gets NA
p-values and NA effect sizes together with a reason; it is never dropped.
"""

from __future__ import annotations

import itertools
import logging
import math
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.stats.anova import anova_lm

from .config import AnalysisConfig
from .exceptions import EnumerationLimitError, ShapeMismatchError

logger = logging.getLogger(__name__)

# Number of group assignments evaluated per vectorised step.
_CHUNK_SIZE = 65536


class Strategy(str, Enum):
    ANOVA = "anova"
    PERMUTATION = "permutation"


@dataclass(frozen=True)
class ComparisonResult:
    """
    Outcome of comparing one taxon's scores across groups.

    ``p_values`` and ``effect_sizes`` are keyed by comparison name
    (``"condition"``, ``"interaction"`` or ``"group"``) and by stratum
    (covariate level, or ``"all"``) respectively. ``adjusted_p_values`` and
    ``significant`` are filled in by ``aggregation.finalize_results``.
    The three mappings are read-only.
    """

    taxon: Any
    strategy: str
    n_obs: int
    testable: bool
    reason: str = ""
    p_values: Mapping[str, float] = field(default_factory=dict)
    effect_sizes: Mapping[str, float] = field(default_factory=dict)
    adjusted_p_values: Mapping[str, float] = field(default_factory=dict)
    significant: bool = False

    def __post_init__(self):
        for name in _MAPPING_FIELDS:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    # mappingproxy does not pickle; results cross process boundaries in compare_taxa.
    def __getstate__(self):
        state = dict(self.__dict__)
        for name in _MAPPING_FIELDS:
            state[name] = dict(state[name])
        return state

    def __setstate__(self, state):
        for key, value in state.items():
            object.__setattr__(self, key, value)
        self.__post_init__()


_MAPPING_FIELDS = ("p_values", "effect_sizes", "adjusted_p_values")


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def _as_clean_array(values) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    return arr[~np.isnan(arr)]


def ssmd(a, b) -> float:
    """
    Strictly standardized mean difference of ``a`` relative to ``b``.

    ``(mean(a) - mean(b)) / sqrt(var(a) + var(b))`` with sample variances, so
    the value is positive when ``a`` has the larger mean. Missing values are
    ignored.

    Returns NaN when either side has fewer than two observations, when every
    pooled value is zero, or when neither side has any spread.
    """
    a = _as_clean_array(a)
    b = _as_clean_array(b)
    if a.size < 2 or b.size < 2:
        return np.nan
    if not np.any(np.concatenate([a, b])):
        return np.nan
    spread = np.sqrt(a.var(ddof=1) + b.var(ddof=1))
    if spread == 0:
        return np.nan
    return float((a.mean() - b.mean()) / spread)


def permutation_pvalue(a, b, max_enumerations: int = 1_000_000) -> float:
    """
    Exact two-sided permutation p-value for a difference in means.

    Every way of splitting the pooled observations into groups of
    ``len(a)`` and ``len(b)`` is enumerated; the p-value is the fraction of
    splits whose absolute mean difference is at least the observed one. The
    observed split is one of them, so the p-value is never zero.

    Parameters
    ----------
    a, b : array-like
        Observations for each group. Missing values are ignored.
    max_enumerations : int
        Upper bound on ``C(len(a) + len(b), len(a))``.

    Raises
    ------
    EnumerationLimitError
        When the number of splits exceeds ``max_enumerations``.
    """
    a = _as_clean_array(a)
    b = _as_clean_array(b)
    n1, n2 = a.size, b.size
    if n1 == 0 or n2 == 0:
        raise ValueError("both groups need at least one observation")

    total = math.comb(n1 + n2, n1)
    if total > max_enumerations:
        raise EnumerationLimitError(total, max_enumerations)

    pooled = np.concatenate([a, b])
    pooled_sum = pooled.sum()
    observed = abs(a.mean() - b.mean())
    # Splits equal to the observed one up to rounding must count as extreme.
    cutoff = observed - 1e-9 * max(1.0, observed)

    n_extreme = 0
    splits = itertools.combinations(range(n1 + n2), n1)
    while True:
        chunk = np.array(list(itertools.islice(splits, _CHUNK_SIZE)), dtype=np.intp)
        if chunk.size == 0:
            break
        sum1 = pooled[chunk].sum(axis=1)
        stats = np.abs(sum1 / n1 - (pooled_sum - sum1) / n2)
        n_extreme += int(np.count_nonzero(stats >= cutoff))

    return n_extreme / total


def anova_pvalues(frame: pd.DataFrame) -> Dict[str, float]:
    """
    Two-way ANOVA of ``score`` on ``covariate``, ``condition`` and their
    interaction.

    Both factors are treated as categorical. Sums of squares are sequential
    with the covariate entered first.

    Parameters
    ----------
    frame : DataFrame with columns 'score', 'covariate', 'condition'.

    Returns
    -------
    dict with keys 'condition' and 'interaction'.
    """
    model = smf.ols("score ~ C(covariate) * C(condition)", data=frame).fit()
    table = anova_lm(model, typ=1)
    return {
        "condition": float(table.loc["C(condition)", "PR(>F)"]),
        "interaction": float(table.loc["C(covariate):C(condition)", "PR(>F)"]),
    }


# ---------------------------------------------------------------------------
# Per-taxon dispatch
# ---------------------------------------------------------------------------

def group_labels(metadata: pd.DataFrame, config: AnalysisConfig) -> Tuple[Any, Any]:
    """The two condition labels ``(a, b)``; effect sizes are a relative to b."""
    if config.group_order is not None:
        return tuple(config.group_order)
    labels = sorted(metadata[config.group_col].dropna().unique())
    if len(labels) != 2:
        raise ValueError(
            f"{config.group_col!r} has {len(labels)} groups {labels}; "
            "set group_order to choose two"
        )
    return labels[0], labels[1]


def _stratum_keys(metadata: pd.DataFrame, config: AnalysisConfig) -> List[str]:
    return [str(level) for level in sorted(metadata[config.covariate_col].dropna().unique())]


def _untestable(taxon, strategy, n_obs, reason, p_names, strata) -> ComparisonResult:
    return ComparisonResult(
        taxon=taxon,
        strategy=strategy.value,
        n_obs=n_obs,
        testable=False,
        reason=reason,
        p_values={name: np.nan for name in p_names},
        effect_sizes={key: np.nan for key in strata},
    )


def _compare_permutation(taxon, values, metadata, config) -> ComparisonResult:
    strategy = Strategy.PERMUTATION
    label_a, label_b = group_labels(metadata, config)
    groups = metadata[config.group_col]
    a = values[(groups == label_a).to_numpy()]
    b = values[(groups == label_b).to_numpy()]
    a = a[~np.isnan(a)]
    b = b[~np.isnan(b)]
    n_obs = a.size + b.size

    if a.size < config.min_per_group or b.size < config.min_per_group:
        reason = (
            f"fewer than {config.min_per_group} scores per group "
            f"({a.size} {label_a}, {b.size} {label_b})"
        )
        return _untestable(taxon, strategy, n_obs, reason, ["group"], ["all"])

    try:
        p = permutation_pvalue(a, b, max_enumerations=config.max_enumerations)
    except EnumerationLimitError as exc:
        return _untestable(taxon, strategy, n_obs, str(exc), ["group"], ["all"])

    return ComparisonResult(
        taxon=taxon,
        strategy=strategy.value,
        n_obs=n_obs,
        testable=True,
        p_values={"group": p},
        effect_sizes={"all": ssmd(a, b)},
    )


def _compare_anova(taxon, values, metadata, config) -> ComparisonResult:
    strategy = Strategy.ANOVA
    p_names = ["condition", "interaction"]
    strata = _stratum_keys(metadata, config)

    frame = pd.DataFrame({
        "score": values,
        "covariate": metadata[config.covariate_col].to_numpy(),
        "condition": metadata[config.group_col].to_numpy(),
    }).dropna()
    n_obs = len(frame)

    if n_obs < config.anova_min_subjects:
        reason = f"{n_obs} scores, fewer than {config.anova_min_subjects}"
        return _untestable(taxon, strategy, n_obs, reason, p_names, strata)

    cells = pd.crosstab(frame["covariate"], frame["condition"])
    expected_shape = (config.anova_levels, config.anova_groups)
    if cells.shape != expected_shape or (cells.to_numpy() == 0).any():
        reason = (
            f"design cells not fully populated ({cells.shape[0]} levels x "
            f"{cells.shape[1]} groups, {int((cells.to_numpy() > 0).sum())} non-empty)"
        )
        return _untestable(taxon, strategy, n_obs, reason, p_names, strata)

    if frame["score"].nunique() < 2:
        return _untestable(taxon, strategy, n_obs, "scores are constant", p_names, strata)

    p_values = anova_pvalues(frame)
    if any(np.isnan(p) for p in p_values.values()):
        return _untestable(taxon, strategy, n_obs, "ANOVA undefined (no residual variance)",
                           p_names, strata)

    label_a, label_b = group_labels(metadata, config)
    effect_sizes = {}
    for key in strata:
        level = frame.loc[frame["covariate"].astype(str) == key]
        effect_sizes[key] = ssmd(
            level.loc[level["condition"] == label_a, "score"],
            level.loc[level["condition"] == label_b, "score"],
        )

    return ComparisonResult(
        taxon=taxon,
        strategy=strategy.value,
        n_obs=n_obs,
        testable=True,
        p_values=p_values,
        effect_sizes=effect_sizes,
    )


def check_metadata_subjects(subjects, metadata: pd.DataFrame) -> None:
    """Raise ShapeMismatchError unless ``metadata`` has exactly one row per subject."""
    if metadata.index.has_duplicates:
        dup = metadata.index[metadata.index.duplicated()].unique()
        raise ShapeMismatchError(f"duplicated subjects in metadata: {list(dup)}")
    missing = pd.Index(subjects).difference(metadata.index)
    if len(missing):
        raise ShapeMismatchError(f"subjects missing from metadata: {list(missing)}")


_DISPATCH = {
    Strategy.ANOVA: _compare_anova,
    Strategy.PERMUTATION: _compare_permutation,
}


def compare_taxon(
    taxon,
    scores: pd.Series,
    metadata: pd.DataFrame,
    strategy,
    config: Optional[AnalysisConfig] = None,
) -> ComparisonResult:
    """
    Compare one taxon's scores across the groups in ``metadata``.

    Parameters
    ----------
    taxon : hashable
        Taxon identifier, copied into the result.
    scores : Series
        Scores indexed by subject; NaN marks a missing score.
    metadata : DataFrame
        One row per subject, indexed by subject identifier, with the
        ``config.group_col`` column (and ``config.covariate_col`` for ANOVA).
    strategy : str or Strategy
        ``"anova"`` or ``"permutation"``.
    config : AnalysisConfig or None

    Returns
    -------
    ComparisonResult. Designs that fail the eligibility checks give an
    untestable result, not an exception.

    Raises
    ------
    ShapeMismatchError
        When a subject in ``scores`` is missing from ``metadata``.
    """
    config = config or AnalysisConfig()
    strategy = Strategy(strategy)
    check_metadata_subjects(scores.index, metadata)

    meta = metadata.loc[scores.index]
    values = scores.to_numpy(dtype=float)
    return _DISPATCH[strategy](taxon, values, meta, config)


def compare_taxa(
    scores: pd.DataFrame,
    metadata: pd.DataFrame,
    strategy,
    config: Optional[AnalysisConfig] = None,
    n_jobs: int = 1,
) -> List[ComparisonResult]:
    """
    Run ``compare_taxon`` for every row of a taxon x subject score matrix.

    Taxa are independent, so with ``n_jobs > 1`` they are spread over a
    process pool. The returned list follows the row order of ``scores``
    either way.
    """
    config = config or AnalysisConfig()
    strategy = Strategy(strategy)

    check_metadata_subjects(scores.columns, metadata)
    required = [config.group_col]
    if strategy is Strategy.ANOVA:
        required.append(config.covariate_col)
    for col in required:
        if col not in metadata.columns:
            raise ShapeMismatchError(f"metadata has no column {col!r}")

    meta = metadata.loc[scores.columns]
    # Fail on an ambiguous grouping before any taxon is processed.
    labels = group_labels(meta, config)
    present = set(meta[config.group_col].dropna().unique())
    absent = [label for label in labels if label not in present]
    if absent:
        logger.warning(
            "group labels %s not found in %r (values: %s); affected taxa will be untestable",
            absent, config.group_col, sorted(present, key=str),
        )

    worker = partial(compare_taxon, metadata=meta, strategy=strategy, config=config)
    rows = [scores.iloc[i] for i in range(len(scores))]
    if n_jobs == 1:
        results = [worker(taxon, row) for taxon, row in zip(scores.index, rows)]
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as pool:
            results = list(pool.map(worker, scores.index, rows))

    n_untestable = sum(not r.testable for r in results)
    logger.info(
        "Compared %d taxa with %s strategy (%d untestable)",
        len(results), strategy.value, n_untestable,
    )
    return results
