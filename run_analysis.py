#!/usr/bin/env python3
"""
Run Acceptability Analysis
==========================

Simple entry point for running the ordinal mixed-model analysis of every
survey parameter.

Usage:
    python run_analysis.py                         # Run all parameters
    python run_analysis.py comfort appearance      # Run specific parameters
    python run_analysis.py --describe comfort      # Print parameter description
    python run_analysis.py --simulate              # Run on synthetic data

Environment:
    WEARSTATS_DATA_PATH: Path to the cleaned long-format survey CSV (optional)
"""
import sys
import argparse

from acceptability import (
    run_all,
    summarize_results,
    export_results,
    load_survey_data,
    simulate_dataset,
    PARAMETERS,
)
from acceptability.config import DEFAULT_DATA_PATH
from wearstats import MODEL_NAMES, describe_dataset


def _parse_overrides(items):
    overrides = {}
    for item in items or []:
        if "=" not in item:
            raise argparse.ArgumentTypeError(f"Expected PARAM=MODEL, got '{item}'")
        p_id, model = item.split("=", 1)
        if p_id not in PARAMETERS:
            raise argparse.ArgumentTypeError(f"Unknown parameter in --model: '{p_id}'")
        if model not in MODEL_NAMES:
            raise argparse.ArgumentTypeError(f"Unknown model in --model: '{model}' (choose from {list(MODEL_NAMES)})")
        overrides[p_id] = model
    return overrides


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run Light-Logger Acceptability Analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_analysis.py                       # Run all parameters
    python run_analysis.py comfort wear_week     # Run selected parameters
    python run_analysis.py --describe            # Show all descriptions
    python run_analysis.py --model comfort=m4    # Override the selected model
    python run_analysis.py --simulate --output-dir results/
        """,
    )
    parser.add_argument(
        "parameters",
        nargs="*",
        choices=list(PARAMETERS.keys()) + [],
        help="Specific parameters to run (default: all)",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Print parameter descriptions instead of running",
    )
    parser.add_argument(
        "--data",
        default=DEFAULT_DATA_PATH,
        help="Path to the cleaned survey CSV",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use synthetic survey data instead of --data",
    )
    parser.add_argument(
        "--model",
        action="append",
        metavar="PARAM=MODEL",
        help="Override the selected model of a parameter (repeatable)",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Write result tables as CSV into this directory",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Minimal output",
    )

    args = parser.parse_args(argv)
    parameters_to_run = args.parameters or list(PARAMETERS.keys())

    try:
        overrides = _parse_overrides(args.model)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    # Describe mode
    if args.describe:
        for p_id in parameters_to_run:
            config = PARAMETERS[p_id]
            print("=" * 70)
            print(f"{p_id}: {config['name']} (selected model: {overrides.get(p_id, config['selected_model'])})")
            print("=" * 70)
            print(config.get("description", "No description available"))
            print(f"Scale: {' < '.join(config['levels'])}")
            print()
        return 0

    print("=" * 70)
    print("LIGHT-LOGGER ACCEPTABILITY ANALYSIS")
    print("=" * 70)

    if args.simulate:
        print("Data: simulated survey")
        ds = simulate_dataset(parameters=parameters_to_run)
    else:
        print(f"Data: {args.data}")
        ds = load_survey_data(args.data, parameters=parameters_to_run)
    print(describe_dataset(ds))

    results = run_all(ds, parameters=parameters_to_run, model_overrides=overrides, verbose=not args.quiet)

    # Summary table
    print("\n" + "=" * 70)
    print("SUMMARY (FDR-adjusted LRT p-values)")
    print("=" * 70)
    summary = summarize_results(results)
    print(summary.to_string(index=False))

    if args.output_dir:
        written = export_results(results, args.output_dir)
        print(f"\nWrote {len(written)} files to {args.output_dir}")

    print("\n" + "=" * 70)
    print("COMPLETE")
    print("=" * 70)

    failed = [p_id for p_id, r in results.items() if r.get("error")]
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
