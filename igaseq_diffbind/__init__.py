"""
igaseq_diffbind: contamination-aware filtering and differential binding tests
for IgA-Seq reanalysis.

Public API
----------
run_analysis(fractions, metadata, oracle, method, strategy, ...)
    Full pipeline: filter → score → compare → correct → result table.

analyze_scores(scores, metadata, strategy, ...)
    Compare a ready-made score matrix across groups.

filter_fractions(fractions, tau, min_subjects, ...)
    Control subtraction, prevalence and threshold filters, presort gating.

threshold_sweep(table, thresholds, expected_taxa, ...)
    What each candidate abundance threshold would retain.

score(method, oracle, pos, ...)
    Validated call into the external score oracle.

compare_taxon / compare_taxa
    ANOVA or exact permutation test per taxon, with SSMD effect sizes.

finalize_results / results_table / significant_taxa / compare_methods
    FDR correction, significance calls and report tables.
"""

from .config import AnalysisConfig
from .exceptions import DiffBindError, ShapeMismatchError, EnumerationLimitError
from .fractions import FractionSet
from .filtering import (
    remove_contaminants,
    drop_rare_taxa,
    apply_threshold,
    gate_on_presort,
    filter_abundance,
    filter_fractions,
    threshold_sweep,
)
from .scoring import METHODS, score, score_fractions, default_pseudocount
from .comparison import (
    Strategy,
    ComparisonResult,
    ssmd,
    permutation_pvalue,
    anova_pvalues,
    compare_taxon,
    compare_taxa,
)
from .aggregation import (
    benjamini_hochberg,
    finalize_results,
    results_table,
    significant_taxa,
    compare_methods,
)
from .pipeline import analyze_scores, run_analysis

__all__ = [
    "AnalysisConfig",
    "DiffBindError",
    "ShapeMismatchError",
    "EnumerationLimitError",
    "FractionSet",
    "remove_contaminants",
    "drop_rare_taxa",
    "apply_threshold",
    "gate_on_presort",
    "filter_abundance",
    "filter_fractions",
    "threshold_sweep",
    "METHODS",
    "score",
    "score_fractions",
    "default_pseudocount",
    "Strategy",
    "ComparisonResult",
    "ssmd",
    "permutation_pvalue",
    "anova_pvalues",
    "compare_taxon",
    "compare_taxa",
    "benjamini_hochberg",
    "finalize_results",
    "results_table",
    "significant_taxa",
    "compare_methods",
    "analyze_scores",
    "run_analysis",
]

__version__ = "0.1.0"
