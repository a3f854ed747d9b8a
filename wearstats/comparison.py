"""
Model Comparison Module
=======================

Likelihood-ratio tests between the nested CLMM fits of one rating scale.

Four tests are run, always in this order:

    Interaction   m1 vs m2   position x sex interaction
    Sex           m2 vs m3   sex main effect
    Sample        m1 vs m4   sample-location effect
    Position      m5 vs m0   wearing-position effect

The four raw p-values are adjusted together (Benjamini-Hochberg, family size
fixed at 4). Choosing the model used downstream is left to the analyst.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .clmm import ClmmResult
from .formulas import is_nested
from .multiplicity import adjust_fdr


COMPARISONS: tuple[Dict[str, str], ...] = (
    {"name": "Interaction", "full": "m1", "reduced": "m2", "effect": "position x sex"},
    {"name": "Sex", "full": "m2", "reduced": "m3", "effect": "sex"},
    {"name": "Sample", "full": "m1", "reduced": "m4", "effect": "sample location"},
    {"name": "Position", "full": "m5", "reduced": "m0", "effect": "wearing position"},
)

N_MODEL_COMPARISONS = 4


def format_pvalue(p: float, threshold: float = 0.001, digits: int = 3) -> str:
    """Render a p-value for tables: "<0.001" below the threshold, else rounded."""
    if p is None or np.isnan(p):
        return "NA"
    if p < threshold:
        return f"<{threshold:g}"
    return f"{round(float(p), digits):.{digits}f}"


def likelihood_ratio_test(full: ClmmResult, reduced: ClmmResult) -> Tuple[float, int, float]:
    """
    Likelihood ratio test between two nested fits.

    :param full: ClmmResult of the larger model
    :param reduced: ClmmResult of the nested model
    :returns: (LR statistic, degrees of freedom, p-value)
    :raises ValueError: If the models are not nested, were fitted to
        different rows, or do not differ in parameter count
    """
    if not is_nested(reduced["spec"], full["spec"]):
        raise ValueError(
            f"Model {reduced['model_name']} is not nested in {full['model_name']}"
        )
    if full["n_obs"] != reduced["n_obs"] or full["n_groups"] != reduced["n_groups"]:
        raise ValueError(
            f"Models {full['model_name']} and {reduced['model_name']} were fitted to "
            f"different data ({full['n_obs']} vs {reduced['n_obs']} observations)"
        )

    df_diff = int(full["fit_stats"]["n_params"] - reduced["fit_stats"]["n_params"])
    if df_diff <= 0:
        raise ValueError(
            f"Model {full['model_name']} has no more parameters than {reduced['model_name']}"
        )

    # Nested ML fits cannot lose likelihood; tiny negatives are optimizer noise
    lr_stat = max(2.0 * (full["fit_stats"]["llf"] - reduced["fit_stats"]["llf"]), 0.0)
    p_value = float(stats.chi2.sf(lr_stat, df_diff))
    return float(lr_stat), df_diff, p_value


def compare_nested_models(
    fits: Dict[str, ClmmResult],
    n_comparisons: int = N_MODEL_COMPARISONS,
    comparisons: tuple = COMPARISONS,
) -> pd.DataFrame:
    """
    Run the four named likelihood-ratio tests and adjust them jointly.

    :param fits: Dictionary model name -> ClmmResult (m0..m5)
    :param n_comparisons: FDR family size (default: 4)
    :param comparisons: Test definitions (default: COMPARISONS)
    :returns: DataFrame with one row per test, in order
    """
    missing = sorted({c[k] for c in comparisons for k in ("full", "reduced")} - set(fits))
    if missing:
        raise ValueError(f"Fits missing for comparison: {missing}")

    rows = []
    for comp in comparisons:
        lr_stat, df_diff, p_value = likelihood_ratio_test(fits[comp["full"]], fits[comp["reduced"]])
        rows.append({
            "comparison": comp["name"],
            "effect": comp["effect"],
            "full": comp["full"],
            "reduced": comp["reduced"],
            "lr_stat": lr_stat,
            "df": df_diff,
            "p_value": p_value,
        })

    df = pd.DataFrame(rows)
    df["p_adjusted"] = adjust_fdr(df["p_value"].to_numpy(), n_comparisons=n_comparisons)
    df["p_display"] = [format_pvalue(p) for p in df["p_adjusted"]]
    return df


def model_fit_table(fits: Dict[str, ClmmResult]) -> pd.DataFrame:
    """
    Compare fits by log-likelihood and information criteria.

    :param fits: Dictionary model name -> ClmmResult
    :returns: DataFrame with llf, AIC, BIC and parameter counts
    """
    rows: List[Dict] = []
    for name, r in fits.items():
        rows.append({
            "model": name,
            "formula": r["formula"],
            "n_obs": r["n_obs"],
            "n_groups": r["n_groups"],
            "n_params": r["fit_stats"]["n_params"],
            "llf": r["fit_stats"]["llf"],
            "aic": r["fit_stats"]["aic"],
            "bic": r["fit_stats"]["bic"],
            "sd_subject": r["std_dev"],
        })
    return pd.DataFrame(rows)
