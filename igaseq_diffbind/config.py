"""
Analysis settings.

All sample-size and abundance cut-offs used in the published reanalysis were
chosen for particular mouse experiments, so they live here with those values
as defaults rather than as constants inside the algorithms.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional, Tuple


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Thresholds for filtering, testing and reporting.

    Parameters
    ----------
    tau : float
        Abundance threshold; entries below it are zeroed.
    min_subjects : int
        Minimum number of subjects a taxon must be observed in (kappa).
    min_value : float
        Value a taxon must exceed to count as observed in the low-prevalence
        step.
    min_per_group : int
        Minimum non-missing scores per group for the permutation test.
    anova_min_subjects : int
        Minimum non-missing scores overall for the two-way ANOVA.
    anova_levels, anova_groups : int
        Expected number of covariate levels and conditions; every cell of
        the cross-tabulation must be populated. Effect sizes compare two
        conditions, so ``anova_groups`` must be 2.
    max_enumerations : int
        Largest number of group assignments the permutation test may
        enumerate before the taxon is declared untestable.
    alpha : float
        Significance threshold applied to (adjusted) p-values.
    correction : str or None
        ``"fdr_bh"`` or None. ``"auto"`` means BH for the permutation
        strategy and no correction for the ANOVA strategy. In TOML files,
        ``"none"`` stands for None.
    group_col, covariate_col : str
        Metadata columns holding the condition and the ordinal covariate.
    group_order : tuple or None
        Two condition labels ``(a, b)``; effect sizes are ``a - b``. Sorted
        labels are used when None.
    """

    tau: float = 1e-3
    min_subjects: int = 4
    min_value: float = 0.0
    min_per_group: int = 3
    anova_min_subjects: int = 7
    anova_levels: int = 3
    anova_groups: int = 2
    max_enumerations: int = 1_000_000
    alpha: float = 0.05
    correction: Optional[str] = "auto"
    group_col: str = "group"
    covariate_col: str = "covariate"
    group_order: Optional[Tuple[Any, Any]] = None

    def __post_init__(self):
        if self.tau < 0:
            raise ValueError("tau must be non-negative")
        if self.min_subjects < 1:
            raise ValueError("min_subjects must be at least 1")
        if self.min_per_group < 2:
            raise ValueError("min_per_group must be at least 2")
        if self.anova_levels < 2:
            raise ValueError("anova_levels must be at least 2")
        if self.anova_groups != 2:
            raise ValueError("anova_groups must be 2: conditions are compared pairwise")
        if self.max_enumerations < 1:
            raise ValueError("max_enumerations must be positive")
        if not 0 < self.alpha < 1:
            raise ValueError("alpha must lie in (0, 1)")
        if self.correction not in (None, "auto", "fdr_bh"):
            raise ValueError(f"unknown correction {self.correction!r}")
        if self.group_order is not None and len(self.group_order) != 2:
            raise ValueError("group_order must name exactly two groups")

    def resolve_correction(self, strategy: str) -> Optional[str]:
        """Correction actually applied for ``strategy``."""
        if self.correction != "auto":
            return self.correction
        return "fdr_bh" if strategy == "permutation" else None

    def updated(self, **overrides) -> "AnalysisConfig":
        """Copy with the non-None ``overrides`` applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AnalysisConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"unknown config keys: {sorted(unknown)}")
        values = dict(values)
        if values.get("group_order") is not None:
            values["group_order"] = tuple(values["group_order"])
        # TOML has no null
        if values.get("correction") == "none":
            values["correction"] = None
        return cls(**values)

    @classmethod
    def from_toml(cls, path: str) -> "AnalysisConfig":
        """
        Read settings from a TOML file.

        Keys may sit at the top level or under an ``[analysis]`` table.
        """
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
        return cls.from_mapping(data.get("analysis", data))
