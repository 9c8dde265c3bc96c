"""
Command-line interface for igaseq_diffbind.

Usage:
    igaseq-diffbind sweep --table negative.csv --thresholds 1e-4,1e-3,1e-2 \
        --expected expected_taxa.txt --output-dir sweep/
    igaseq-diffbind filter --presort presort.csv --positive pos.csv \
        --negative neg.csv --control-col blank --tau 1e-3 --output-dir filtered/
    igaseq-diffbind compare --scores kau_scores.csv --metadata metadata.csv \
        --strategy permutation --group-col diet --output-dir results/
    igaseq-diffbind merge-methods --table kau=results_kau.csv \
        --table palm=results_palm.csv --output merged.csv
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import replace
from typing import List, Optional

import pandas as pd

from .aggregation import compare_methods, significant_taxa
from .config import AnalysisConfig
from .filtering import filter_fractions, threshold_sweep
from .fractions import FractionSet
from .pipeline import analyze_scores

logger = logging.getLogger("igaseq_diffbind")


def setup_logging(level: str = "INFO") -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=lvl, format="%(asctime)s %(levelname)s %(message)s",
                        datefmt="%H:%M:%S")


def parse_float_list(s: str) -> List[float]:
    return [float(part) for part in s.split(",") if part.strip()]


def read_taxa_list(path: Optional[str]) -> List[str]:
    """One taxon identifier per line; blank lines and '#' comments skipped."""
    if not path:
        return []
    with open(path) as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]


def read_table(path: str) -> pd.DataFrame:
    sep = "\t" if path.lower().endswith((".tsv", ".txt")) else ","
    return pd.read_csv(path, sep=sep, index_col=0)


def _cmd_sweep(args) -> None:
    table = read_table(args.table)
    if args.control_col:
        table = table.drop(columns=args.control_col)
    sweep = threshold_sweep(
        table,
        parse_float_list(args.thresholds),
        expected_taxa=read_taxa_list(args.expected),
        min_subjects=args.min_subjects,
    )
    os.makedirs(args.output_dir, exist_ok=True)
    sweep_path = os.path.join(args.output_dir, "threshold_sweep.csv")
    sweep.to_csv(sweep_path)
    logger.info("Threshold sweep saved to %s", sweep_path)

    if not args.no_plots:
        from .plots import plot_threshold_sweep
        import matplotlib.pyplot as plt

        fig = plot_threshold_sweep(sweep)
        fig.savefig(os.path.join(args.output_dir, "threshold_sweep.pdf"), transparent=True)
        plt.close(fig)


def _cmd_filter(args, config: AnalysisConfig) -> None:
    fractions = FractionSet(
        presort=read_table(args.presort),
        positive=read_table(args.positive),
        negative=read_table(args.negative),
        control_col=args.control_col,
    )
    filtered = filter_fractions(
        fractions,
        tau=config.tau,
        min_subjects=config.min_subjects,
        expected_taxa=read_taxa_list(args.expected),
        min_value=config.min_value,
    )
    os.makedirs(args.output_dir, exist_ok=True)
    for role in ("presort", "positive", "negative"):
        path = os.path.join(args.output_dir, f"filtered_{role}.csv")
        getattr(filtered, role).to_csv(path)
        logger.info("%s: %d taxa -> %s", role, len(getattr(filtered, role)), path)


def _cmd_compare(args, config: AnalysisConfig) -> None:
    scores = read_table(args.scores)
    metadata = read_table(args.metadata)

    table = analyze_scores(scores, metadata, args.strategy, config=config, n_jobs=args.n_jobs)

    os.makedirs(args.output_dir, exist_ok=True)
    results_path = os.path.join(args.output_dir, f"results_{args.name}.csv")
    table.to_csv(results_path)
    significant_taxa(table).to_csv(
        os.path.join(args.output_dir, f"significant_{args.name}.csv")
    )
    print(f"Results saved to {results_path}")
    print(f"  Taxa:        {len(table)}")
    print(f"  Untestable:  {int((~table['testable']).sum())}")
    print(f"  Significant: {int(table['significant'].sum())}")

    if not args.no_plots:
        from .plots import make_all_plots

        make_all_plots(table, output_dir=args.output_dir, name=args.name, alpha=config.alpha)
        print(f"Plots saved to {args.output_dir}/")


def _cmd_merge(args) -> None:
    tables = {}
    for spec in args.table:
        method, _, path = spec.partition("=")
        if not path:
            raise SystemExit(f"--table expects METHOD=PATH, got {spec!r}")
        tables[method] = read_table(path)
    merged = compare_methods(tables)
    merged.to_csv(args.output)
    print(f"{len(merged)} taxa significant under at least one method -> {args.output}")


def _build_config(args) -> AnalysisConfig:
    config = AnalysisConfig.from_toml(args.config) if args.config else AnalysisConfig()
    group_order = tuple(args.group_order.split(",")) if getattr(args, "group_order", None) else None
    correction = getattr(args, "correction", None)
    if correction == "none":
        # updated() skips None overrides
        config, correction = replace(config, correction=None), None
    return config.updated(
        tau=getattr(args, "tau", None),
        min_subjects=getattr(args, "min_subjects", None),
        min_per_group=getattr(args, "min_per_group", None),
        anova_min_subjects=getattr(args, "anova_min_subjects", None),
        max_enumerations=getattr(args, "max_enumerations", None),
        alpha=getattr(args, "alpha", None),
        correction=correction,
        group_col=getattr(args, "group_col", None),
        covariate_col=getattr(args, "covariate_col", None),
        group_order=group_order,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="igaseq-diffbind",
        description="Contamination-aware filtering and differential IgA binding tests",
    )
    parser.add_argument("--config", default=None, help="TOML file with analysis settings")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sweep", help="Report what candidate abundance thresholds retain")
    p.add_argument("--table", required=True, help="Abundance CSV (taxa x subjects)")
    p.add_argument("--thresholds", required=True, help="Comma-separated candidate thresholds")
    p.add_argument("--expected", default=None, help="File listing expected taxa")
    p.add_argument("--control-col", default=None, help="Control column to drop first")
    p.add_argument("--min-subjects", type=int, default=1)
    p.add_argument("--output-dir", default="igaseq_results")
    p.add_argument("--no-plots", action="store_true", help="Skip saving plots")

    p = sub.add_parser("filter", help="Filter pre-sort, positive and negative tables")
    p.add_argument("--presort",  required=True)
    p.add_argument("--positive", required=True)
    p.add_argument("--negative", required=True)
    p.add_argument("--control-col", default=None, help="Negative-control column name")
    p.add_argument("--expected", default=None, help="File listing expected taxa")
    p.add_argument("--tau",          type=float, default=None)
    p.add_argument("--min-subjects", type=int,   default=None)
    p.add_argument("--output-dir", default="igaseq_results")

    p = sub.add_parser("compare", help="Test score differences between groups")
    p.add_argument("--scores",   required=True, help="Score CSV (taxa x subjects)")
    p.add_argument("--metadata", required=True, help="Metadata CSV indexed by subject")
    p.add_argument("--strategy", choices=["anova", "permutation"], default="permutation")
    p.add_argument("--name", default="scores", help="Label used in output file names")
    p.add_argument("--group-col",     default=None)
    p.add_argument("--covariate-col", default=None)
    p.add_argument("--group-order",   default=None, help="Two labels, e.g. 'HFD,chow'")
    p.add_argument("--alpha",              type=float, default=None)
    p.add_argument("--correction", choices=["fdr_bh", "auto", "none"], default=None,
                   help="'none' reports raw p-values for either strategy")
    p.add_argument("--min-per-group",      type=int, default=None)
    p.add_argument("--anova-min-subjects", type=int, default=None)
    p.add_argument("--max-enumerations",   type=int, default=None)
    p.add_argument("--n-jobs", type=int, default=1)
    p.add_argument("--output-dir", default="igaseq_results")
    p.add_argument("--no-plots", action="store_true", help="Skip saving plots")

    p = sub.add_parser("merge-methods", help="Side-by-side results of two score methods")
    p.add_argument("--table", action="append", required=True, help="METHOD=PATH, repeatable")
    p.add_argument("--output", default="method_comparison.csv")

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "sweep":
        _cmd_sweep(args)
    elif args.command == "filter":
        _cmd_filter(args, _build_config(args))
    elif args.command == "compare":
        _cmd_compare(args, _build_config(args))
    else:
        _cmd_merge(args)


if __name__ == "__main__":
    main()
