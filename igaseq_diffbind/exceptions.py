"""
Exception types for igaseq_diffbind.

Only contract violations on the shape of the inputs are fatal. Everything
that concerns a single taxon (too few samples, unbalanced cells, too many
permutations) is reported as an untestable result instead.
"""


class DiffBindError(Exception):
    """Base class for errors raised by this package."""


class ShapeMismatchError(DiffBindError, ValueError):
    """Tables, size vectors or metadata are not aligned on subjects/taxa."""


class EnumerationLimitError(DiffBindError):
    """Exact permutation enumeration would exceed the configured limit."""

    def __init__(self, n_assignments: int, limit: int):
        self.n_assignments = n_assignments
        self.limit = limit
        super().__init__(
            f"{n_assignments} assignments exceed the enumeration limit of {limit}"
        )
