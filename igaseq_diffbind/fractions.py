"""
Containers and alignment checks for sorted-fraction abundance tables.

Abundance tables are DataFrames indexed by taxon with one column per subject.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .exceptions import ShapeMismatchError


FRACTION_ROLES = ("presort", "positive", "negative")


def check_columns_aligned(reference, other, name: str) -> None:
    """
    Raise ShapeMismatchError unless ``other`` lists the subjects of
    ``reference`` in the same order.

    Either argument may be a DataFrame (subjects are its columns), a Series
    (subjects are its index) or a plain list of subject identifiers.
    """
    if list(_subjects_of(other)) != list(_subjects_of(reference)):
        raise ShapeMismatchError(
            f"{name} subjects {list(_subjects_of(other))} do not match "
            f"{list(_subjects_of(reference))}"
        )


def _subjects_of(obj):
    if isinstance(obj, pd.DataFrame):
        return obj.columns
    if isinstance(obj, pd.Series):
        return obj.index
    return obj


def check_abundance(table: pd.DataFrame, name: str = "table") -> None:
    """Raise on negative abundances or duplicated labels."""
    if table.index.has_duplicates:
        raise ShapeMismatchError(f"{name} has duplicated taxon identifiers")
    if table.columns.has_duplicates:
        raise ShapeMismatchError(f"{name} has duplicated subject identifiers")
    if (table.to_numpy(dtype=float) < 0).any():
        raise ValueError(f"{name} contains negative abundances")


@dataclass(frozen=True)
class FractionSet:
    """
    Pre-sort, IgA-positive and IgA-negative tables for one set of subjects.

    ``positive_size`` and ``negative_size`` are the per-subject proportions of
    sorted cells that landed in each gate. Either may be omitted when the
    score method in use does not need it.

    ``control_col`` names a negative-control column carried by all three
    tables before filtering. It is not a subject, so the gate sizes do not
    list it.
    """

    presort: pd.DataFrame
    positive: pd.DataFrame
    negative: pd.DataFrame
    positive_size: Optional[pd.Series] = None
    negative_size: Optional[pd.Series] = None
    control_col: Optional[str] = None

    def __post_init__(self):
        for role in FRACTION_ROLES:
            table = getattr(self, role)
            check_abundance(table, role)
            if self.control_col is not None and self.control_col not in table.columns:
                raise ShapeMismatchError(
                    f"control column {self.control_col!r} missing from {role}"
                )
        check_columns_aligned(self.positive, self.negative, "negative")
        check_columns_aligned(self.positive, self.presort, "presort")
        for name in ("positive_size", "negative_size"):
            sizes = getattr(self, name)
            if sizes is None:
                continue
            check_columns_aligned(self.subjects, sizes, name)
            values = sizes.to_numpy(dtype=float)
            if np.isnan(values).any() or (values < 0).any() or (values > 1).any():
                raise ValueError(f"{name} must lie in [0, 1]")

    @property
    def subjects(self) -> list:
        return [c for c in self.positive.columns if c != self.control_col]
