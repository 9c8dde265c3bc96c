"""
Unit tests for config.py.
"""

import pytest

from igaseq_diffbind import AnalysisConfig


class TestAnalysisConfig:

    def test_defaults(self):
        config = AnalysisConfig()
        assert config.tau == 1e-3
        assert config.min_subjects == 4
        assert config.min_per_group == 3
        assert config.anova_min_subjects == 7
        assert (config.anova_levels, config.anova_groups) == (3, 2)

    def test_auto_correction(self):
        config = AnalysisConfig()
        assert config.resolve_correction("permutation") == "fdr_bh"
        assert config.resolve_correction("anova") is None

    def test_explicit_correction(self):
        config = AnalysisConfig(correction="fdr_bh")
        assert config.resolve_correction("anova") == "fdr_bh"
        assert AnalysisConfig(correction=None).resolve_correction("permutation") is None

    @pytest.mark.parametrize("kwargs", [
        {"alpha": 0.0},
        {"alpha": 1.5},
        {"tau": -1.0},
        {"min_subjects": 0},
        {"min_per_group": 1},
        {"max_enumerations": 0},
        {"correction": "bonferroni"},
        {"group_order": ("a", "b", "c")},
        {"anova_groups": 3},
        {"anova_levels": 1},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            AnalysisConfig(**kwargs)

    def test_updated_ignores_none(self):
        config = AnalysisConfig().updated(tau=0.01, alpha=None)
        assert config.tau == 0.01
        assert config.alpha == 0.05

    def test_from_toml(self, tmp_path):
        path = tmp_path / "analysis.toml"
        path.write_text(
            "[analysis]\n"
            "tau = 0.002\n"
            "min_subjects = 3\n"
            "group_col = \"diet\"\n"
            "group_order = [\"HFD\", \"chow\"]\n"
        )
        config = AnalysisConfig.from_toml(str(path))
        assert config.tau == 0.002
        assert config.min_subjects == 3
        assert config.group_col == "diet"
        assert config.group_order == ("HFD", "chow")

    def test_from_toml_top_level(self, tmp_path):
        path = tmp_path / "analysis.toml"
        path.write_text("alpha = 0.1\n")
        assert AnalysisConfig.from_toml(str(path)).alpha == 0.1

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="unknown config keys"):
            AnalysisConfig.from_mapping({"tua": 0.1})

    def test_toml_correction_none(self, tmp_path):
        path = tmp_path / "analysis.toml"
        path.write_text("correction = \"none\"\n")
        config = AnalysisConfig.from_toml(str(path))
        assert config.correction is None
        assert config.resolve_correction("permutation") is None
