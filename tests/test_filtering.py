"""
Unit tests for filtering.py.
"""

import numpy as np
import pandas as pd
import pytest

from igaseq_diffbind import FractionSet, ShapeMismatchError
from igaseq_diffbind.filtering import (
    remove_contaminants,
    drop_rare_taxa,
    apply_threshold,
    gate_on_presort,
    filter_abundance,
    filter_fractions,
    threshold_sweep,
)


SUBJECTS = ["m1", "m2", "m3", "m4", "m5"]


def _make_table(rows, columns=SUBJECTS):
    """Build a taxa x subjects table from {taxon: [values]}."""
    return pd.DataFrame.from_dict(rows, orient="index", columns=columns, dtype=float)


def _random_table(n_taxa=30, n_subjects=6, seed=0):
    rng = np.random.default_rng(seed)
    values = rng.dirichlet(np.full(n_taxa, 0.3), size=n_subjects).T
    return pd.DataFrame(
        values,
        index=[f"tax{i}" for i in range(n_taxa)],
        columns=[f"m{j}" for j in range(n_subjects)],
    )


class TestRemoveContaminants:

    def _table(self):
        cols = SUBJECTS + ["blank"]
        return _make_table({
            "Bacteroides":   [0.3, 0.3, 0.3, 0.3, 0.3, 0.0],
            "Ralstonia":     [0.1, 0.1, 0.1, 0.1, 0.1, 0.5],
            "Akkermansia":   [0.2, 0.2, 0.2, 0.2, 0.2, 0.2],
        }, columns=cols)

    def test_drops_taxa_seen_in_control(self):
        out = remove_contaminants(self._table(), "blank")
        assert "Ralstonia" not in out.index
        assert "Akkermansia" not in out.index
        assert "Bacteroides" in out.index

    def test_expected_taxa_survive(self):
        out = remove_contaminants(self._table(), "blank", expected_taxa=["Akkermansia"])
        assert "Akkermansia" in out.index
        assert "Ralstonia" not in out.index

    def test_control_column_dropped(self):
        out = remove_contaminants(self._table(), "blank")
        assert "blank" not in out.columns
        assert list(out.columns) == SUBJECTS

    def test_missing_control_column(self):
        with pytest.raises(ShapeMismatchError):
            remove_contaminants(self._table(), "no_such_column")


class TestDropRareTaxa:

    def test_keeps_taxon_at_minimum(self):
        table = _make_table({"t": [0.1, 0.1, 0.1, 0.1, 0.0]})
        assert "t" in drop_rare_taxa(table, min_subjects=4).index

    def test_drops_taxon_below_minimum(self):
        table = _make_table({"t": [0.1, 0.1, 0.1, 0.0, 0.0]})
        assert drop_rare_taxa(table, min_subjects=4).empty

    def test_min_value_is_strict(self):
        table = _make_table({"t": [0.01, 0.01, 0.01, 0.01, 0.0]})
        assert drop_rare_taxa(table, min_subjects=4, min_value=0.01).empty


class TestApplyThreshold:

    def test_zeroes_entries_below_tau(self):
        table = _make_table({"t": [1e-4, 1e-3, 5e-3, 0.0, 0.5]})
        out = apply_threshold(table, 1e-3)
        assert list(out.loc["t"]) == [0.0, 1e-3, 5e-3, 0.0, 0.5]

    def test_per_entry_not_per_taxon(self):
        table = _make_table({"t": [1e-4, 0.2, 0.2, 0.2, 0.2]})
        out = apply_threshold(table, 1e-3)
        assert "t" in out.index
        assert out.loc["t", "m1"] == 0.0

    def test_does_not_modify_input(self):
        table = _make_table({"t": [1e-4, 0.2, 0.2, 0.2, 0.2]})
        apply_threshold(table, 1e-3)
        assert table.loc["t", "m1"] == 1e-4


class TestGateOnPresort:

    def test_zero_at_baseline_forces_zero(self):
        presort = _make_table({"t": [0.1, 0.0, 0.1, 0.1, 0.1]})
        fraction = _make_table({"t": [0.2, 0.3, 0.2, 0.2, 0.2]})
        out = gate_on_presort(fraction, presort)
        assert out.loc["t", "m2"] == 0.0
        assert out.loc["t", "m1"] == 0.2

    def test_taxon_absent_from_presort(self):
        presort = _make_table({"a": [0.1] * 5})
        fraction = _make_table({"a": [0.1] * 5, "b": [0.2] * 5})
        out = gate_on_presort(fraction, presort)
        assert (out.loc["b"] == 0).all()
        assert (out.loc["a"] == 0.1).all()

    def test_misaligned_subjects(self):
        presort = _make_table({"a": [0.1] * 5})
        fraction = _make_table({"a": [0.1] * 5}, columns=SUBJECTS[::-1])
        with pytest.raises(ShapeMismatchError):
            gate_on_presort(fraction, presort)


class TestFilterAbundance:

    def test_rejects_negative_values(self):
        table = _make_table({"t": [-0.1, 0.1, 0.1, 0.1, 0.1]})
        with pytest.raises(ValueError):
            filter_abundance(table, tau=1e-3, min_subjects=1)

    def test_empty_result_is_not_an_error(self):
        table = _make_table({"t": [1e-5] * 5})
        out = filter_abundance(table, tau=1e-3, min_subjects=1)
        assert out.empty

    def test_prune_after_threshold(self):
        """A taxon left nonzero in too few subjects after thresholding is dropped."""
        table = _make_table({
            "keep": [0.2, 0.2, 0.2, 0.2, 0.2],
            "thin": [0.2, 0.2, 1e-4, 1e-4, 1e-4],
        })
        out = filter_abundance(table, tau=1e-3, min_subjects=3)
        assert list(out.index) == ["keep"]

    def test_idempotent(self):
        table = _random_table()
        once = filter_abundance(table, tau=1e-2, min_subjects=3)
        twice = filter_abundance(once, tau=1e-2, min_subjects=3)
        pd.testing.assert_frame_equal(once, twice)

    def test_prevalence_monotone_in_tau(self):
        table = _random_table(seed=3)
        taus = [0.0, 1e-4, 1e-3, 1e-2, 5e-2, 0.1, 0.2]
        prevalence = []
        for tau in taus:
            out = filter_abundance(table, tau=tau, min_subjects=2)
            prevalence.append((out > 0).sum(axis=1).reindex(table.index, fill_value=0))
        for lower, higher in zip(prevalence, prevalence[1:]):
            assert (higher <= lower).all()


def _make_fractions(control=False):
    cols = SUBJECTS + (["blank"] if control else [])
    extra = [0.0] if control else []
    presort = _make_table({
        "a": [0.4, 0.4, 0.4, 0.4, 0.4] + extra,
        "b": [0.3, 0.0, 0.3, 0.3, 0.3] + extra,
        "c": [0.3, 0.3, 0.3, 0.3, 0.3] + ([0.1] if control else []),
    }, columns=cols)
    positive = _make_table({
        "a": [0.5, 0.5, 0.5, 0.5, 0.5] + extra,
        "b": [0.2, 0.4, 0.2, 0.2, 0.2] + extra,
        "c": [0.3, 0.1, 0.3, 0.3, 0.3] + extra,
    }, columns=cols)
    negative = _make_table({
        "a": [0.3, 0.3, 0.3, 0.3, 0.3] + extra,
        "b": [0.0, 0.0, 0.0, 0.3, 0.3] + extra,
        "c": [0.7, 0.7, 0.7, 0.4, 0.4] + extra,
    }, columns=cols)
    sizes = pd.Series([0.1, 0.12, 0.08, 0.1, 0.11], index=SUBJECTS)
    return FractionSet(presort, positive, negative,
                       positive_size=sizes, negative_size=1 - sizes,
                       control_col="blank" if control else None)


class TestFilterFractions:

    def test_presort_gating(self):
        out = filter_fractions(_make_fractions(), tau=1e-3, min_subjects=2)
        # b is absent from m2's presort, so its positive value is not trusted
        assert out.positive.loc["b", "m2"] == 0.0
        assert out.positive.loc["b", "m1"] == 0.2

    def test_sorted_fractions_share_taxa(self):
        out = filter_fractions(_make_fractions(), tau=1e-3, min_subjects=3)
        # b is in only 2 negative samples but stays as a zero row for scoring
        assert list(out.positive.index) == list(out.negative.index)
        assert (out.negative.loc["b"] == 0).all()

    def test_control_removed_everywhere(self):
        out = filter_fractions(_make_fractions(control=True), tau=1e-3, min_subjects=2)
        assert "c" not in out.presort.index
        assert "c" not in out.positive.index
        assert "blank" not in out.positive.columns
        assert out.control_col is None

    def test_expected_taxa_kept_despite_control(self):
        out = filter_fractions(_make_fractions(control=True), tau=1e-3, min_subjects=2,
                               expected_taxa=["c"])
        assert "c" in out.positive.index

    def test_sizes_carried(self):
        fractions = _make_fractions()
        out = filter_fractions(fractions, tau=1e-3, min_subjects=2)
        pd.testing.assert_series_equal(out.positive_size, fractions.positive_size)

    def test_idempotent(self):
        once = filter_fractions(_make_fractions(), tau=1e-3, min_subjects=3)
        twice = filter_fractions(once, tau=1e-3, min_subjects=3)
        for role in ("presort", "positive", "negative"):
            pd.testing.assert_frame_equal(getattr(once, role), getattr(twice, role))

    def test_does_not_modify_input(self):
        fractions = _make_fractions()
        before = fractions.positive.copy()
        filter_fractions(fractions, tau=1e-3, min_subjects=2)
        pd.testing.assert_frame_equal(fractions.positive, before)


class TestThresholdSweep:

    def _table(self):
        return _make_table({
            "Bacteroides": [0.5, 0.5, 0.5, 0.5, 0.5],
            "Blautia":     [0.4, 0.4, 0.4, 0.4, 0.4],
            "Ralstonia":   [0.05, 0.05, 0.05, 0.05, 0.05],
            "Delftia":     [0.005, 0.005, 0.005, 0.005, 0.005],
        })

    def test_columns_and_index(self):
        sweep = threshold_sweep(self._table(), [1e-3, 1e-2, 1e-1],
                                expected_taxa=["Bacteroides", "Blautia"])
        assert list(sweep.columns) == ["n_taxa", "mean_retained", "contaminant_ratio"]
        assert list(sweep.index) == [1e-3, 1e-2, 1e-1]

    def test_values(self):
        sweep = threshold_sweep(self._table(), [1e-3, 1e-2, 1e-1],
                                expected_taxa=["Bacteroides", "Blautia"])
        assert list(sweep["n_taxa"]) == [4, 3, 2]
        assert sweep.loc[1e-3, "mean_retained"] == pytest.approx(0.955)
        assert sweep.loc[1e-3, "contaminant_ratio"] == pytest.approx(0.055 / 0.9)
        assert sweep.loc[1e-1, "contaminant_ratio"] == pytest.approx(0.0)

    def test_ratio_nan_without_expected_taxa(self):
        sweep = threshold_sweep(self._table(), [1e-3])
        assert np.isnan(sweep.loc[1e-3, "contaminant_ratio"])

    def test_does_not_modify_input(self):
        table = self._table()
        before = table.copy()
        threshold_sweep(table, [0.01, 0.1], expected_taxa=["Blautia"])
        pd.testing.assert_frame_equal(table, before)
