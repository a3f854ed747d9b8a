#!/usr/bin/env python3
"""
Generate key plots for the acceptability analysis.

Outputs figures into the specified folder (default: plots/).
"""
from __future__ import annotations

import argparse
import os

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from acceptability import PARAMETERS, load_survey_data, run_parameter, simulate_dataset
from acceptability.config import DEFAULT_DATA_PATH
from wearstats.plotting import (
    plot_category_probabilities,
    plot_random_effects,
    plot_significance_matrix,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate acceptability plots")
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
        "--out-dir",
        default="plots",
        help="Output directory for plots",
    )
    args = parser.parse_args()

    out_dir = os.path.abspath(args.out_dir)
    param_dir = os.path.join(out_dir, "parameters")
    os.makedirs(param_dir, exist_ok=True)

    ds = simulate_dataset() if args.simulate else load_survey_data(args.data)

    for p_id, config in PARAMETERS.items():
        result = run_parameter(p_id, ds, verbose=False)
        if result["error"]:
            print(f"[{p_id}] Skipped plot generation: {result['error']}")
            continue

        selected = result["selected_model"]
        title = f"{config['name']} [{selected}]"

        if result["significance"] is not None:
            plot_significance_matrix(
                result["significance"],
                title=title,
                save_path=os.path.join(param_dir, f"{p_id}_significance.png"),
            )
            plt.close("all")

        for setting, table in result["predictions"].items():
            plot_category_probabilities(
                table,
                title=f"{title}: {setting}",
                save_path=os.path.join(param_dir, f"{p_id}_probabilities_{setting}.png"),
            )
            plt.close("all")

        subject_sex = (
            ds["data"].groupby(ds["id_var"], observed=True)[ds["sex_var"]].first().astype(str).to_dict()
        )
        plot_random_effects(
            result["fits"][selected],
            group_labels=subject_sex,
            save_path=os.path.join(param_dir, f"{p_id}_random_effects.png"),
        )
        plt.close("all")

        print(f"[{p_id}] Plots written")

    print(f"Plots saved to: {param_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
