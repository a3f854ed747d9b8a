"""
Pairwise Contrasts Module
=========================

Significance matrices over the wearing positions.

The selected model is refitted once per position with that position as the
reference (baseline) level. Each refit yields the Wald p-values of all other
positions against the reference; p-values are FDR-adjusted within each
reference's family using a fixed comparison count, and a pair is flagged
"different" when the adjusted p-value is <= alpha. Self-comparisons are
added as diagonal rows that are never different.

The adjustment is per reference position and is not joint over every
(reference, level) pair. Each reference family holds k - 1 p-values, which
matches the fixed count of 7; a joint family of k(k - 1) = 56 p-values would
exceed it, and adjust_fdr rejects a count smaller than the number of p-values.

When the selected model carries the position x sex interaction, the
interaction coefficients of the same refits form an overlay matrix: a
position pair whose sex-specific contrast differs from the reference-sex
contrast.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import re

import numpy as np
import pandas as pd

from .clmm import fit_clmm, model_columns
from .formulas import ModelSpec, has_interaction
from .multiplicity import adjust_fdr
from .prepare import RowFilter, SurveyDataset, apply_row_filter


def relevel(df: pd.DataFrame, column: str, reference: str) -> pd.DataFrame:
    """
    Return a copy of ``df`` whose categorical ``column`` has ``reference`` first.

    :param df: DataFrame
    :param column: Unordered categorical column
    :param reference: Level to use as the baseline
    :returns: Copied DataFrame with reordered categories
    """
    series = df[column]
    categories = [str(c) for c in series.cat.categories] if isinstance(series.dtype, pd.CategoricalDtype) \
        else sorted(series.astype(str).unique())
    if reference not in categories:
        raise ValueError(f"Reference level '{reference}' not found in '{column}'")
    out = df.copy()
    ordered = [reference] + [c for c in categories if c != reference]
    out[column] = pd.Categorical(series.astype(str), categories=ordered)
    return out


def _check_levels(ds: SurveyDataset, spec: ModelSpec, factor: str, levels: List[str], subset: Optional[RowFilter]) -> None:
    """Every configured level must be observed in the rows the refits use."""
    df = apply_row_filter(ds["data"], subset if spec.get("uses_subset", True) else None)
    df = df.dropna(subset=model_columns(spec))
    present = set(df[factor].astype(str).unique())
    missing = [l for l in levels if l not in present]
    if missing:
        raise ValueError(
            f"Levels of '{factor}' absent from the data used for '{spec['response']}' "
            f"[{spec['name']}]: {missing}"
        )


def _extract_contrasts(coefficients: pd.DataFrame, factor: str, covariate: Optional[str]) -> Dict[str, List[Dict[str, Any]]]:
    """Split the refit's coefficient table into main-effect and interaction contrasts."""
    main = re.compile(rf"^{re.escape(factor)}\[T\.([^\]]+)\]$")
    inter = None
    if covariate is not None:
        inter = re.compile(rf"^{re.escape(factor)}\[T\.([^\]]+)\]:{re.escape(covariate)}\[T\.([^\]]+)\]$")

    out: Dict[str, List[Dict[str, Any]]] = {"main": [], "interaction": []}
    for _, row in coefficients.iterrows():
        term = row["term"]
        if inter is not None:
            m = inter.match(term)
            if m:
                out["interaction"].append({
                    "level": m.group(1),
                    "covariate_level": m.group(2),
                    "estimate": row["estimate"],
                    "p_value": row["p_value"],
                })
                continue
        m = main.match(term)
        if m:
            out["main"].append({"level": m.group(1), "estimate": row["estimate"], "p_value": row["p_value"]})
    return out


def build_significance_matrix(
    ds: SurveyDataset,
    spec: ModelSpec,
    subset: Optional[RowFilter] = None,
    factor: Optional[str] = None,
    n_comparisons: int = 7,
    alpha: float = 0.05,
    levels: Optional[List[str]] = None,
    verbose: bool = False,
    **fit_kwargs,
) -> pd.DataFrame:
    """
    Pairwise "is different" matrix over the levels of a factor.

    :param ds: SurveyDataset dictionary
    :param spec: ModelSpec of the selected model
    :param subset: Row predicate used at fit time (applied if spec uses it)
    :param factor: Factor column (default: the dataset's position column)
    :param n_comparisons: FDR family size per reference level (default: 7)
    :param alpha: Threshold on adjusted p-values (default: 0.05)
    :param levels: Levels to compare (default: the dataset's position levels)
    :param verbose: Print progress per refit
    :param fit_kwargs: Additional arguments passed to fit_clmm
    :returns: Long DataFrame keyed by (reference, level) with estimate,
        p_value, p_adjusted, different; with an interaction in the model,
        also p_value_interaction, p_adjusted_interaction, different_interaction
    :raises ValueError: If a level is absent from the data, or a reference
        family holds more p-values than n_comparisons
    :raises ModelConvergenceError: If any refit does not converge
    """
    factor = factor or ds["position_var"]
    levels = list(levels) if levels is not None else list(ds["position_levels"])
    if factor not in spec["terms"]:
        raise ValueError(f"Model {spec['name']} does not contain '{factor}'")

    _check_levels(ds, spec, factor, levels, subset)

    covariate = None
    if has_interaction(spec):
        pairs = [t.split(":") for t in spec["terms"] if ":" in t]
        partners = [b if a == factor else a for a, b in pairs if factor in (a, b)]
        covariate = partners[0] if partners else None

    rows: List[Dict[str, Any]] = []
    for reference in levels:
        if verbose:
            print(f"  Refitting {spec['name']} with {factor} = {reference} as reference")
        refit_ds = dict(ds)
        refit_ds["data"] = relevel(ds["data"], factor, reference)
        fit = fit_clmm(refit_ds, spec, subset=subset, **fit_kwargs)
        contrasts = _extract_contrasts(fit["coefficients"], factor, covariate)

        inter_by_level = {c["level"]: c for c in contrasts["interaction"]}
        for c in contrasts["main"]:
            row = {
                "reference": reference,
                "level": c["level"],
                "estimate": c["estimate"],
                "p_value": c["p_value"],
            }
            if covariate is not None:
                ic = inter_by_level.get(c["level"])
                row["estimate_interaction"] = ic["estimate"] if ic else np.nan
                row["p_value_interaction"] = ic["p_value"] if ic else np.nan
            rows.append(row)

    df = pd.DataFrame(rows)
    _adjust_within_reference(df, "p_value", "p_adjusted", n_comparisons)
    df["different"] = df["p_adjusted"] <= alpha
    if covariate is not None:
        _adjust_within_reference(df, "p_value_interaction", "p_adjusted_interaction", n_comparisons)
        df["different_interaction"] = df["p_adjusted_interaction"] <= alpha

    diagonal = pd.DataFrame({
        "reference": levels,
        "level": levels,
        "estimate": 0.0,
        "p_value": np.nan,
        "p_adjusted": np.nan,
        "different": False,
    })
    if covariate is not None:
        diagonal["estimate_interaction"] = 0.0
        diagonal["p_value_interaction"] = np.nan
        diagonal["p_adjusted_interaction"] = np.nan
        diagonal["different_interaction"] = False

    df = pd.concat([df, diagonal], ignore_index=True)
    df["reference"] = pd.Categorical(df["reference"], categories=levels)
    df["level"] = pd.Categorical(df["level"], categories=levels)
    df = df.sort_values(["reference", "level"]).reset_index(drop=True)
    df["different"] = df["different"].astype(bool)
    if covariate is not None:
        df["different_interaction"] = df["different_interaction"].astype(bool)
    df.attrs["factor"] = factor
    df.attrs["covariate"] = covariate
    df.attrs["model"] = spec["name"]
    return df


def _adjust_within_reference(df: pd.DataFrame, column: str, target: str, n_comparisons: int) -> None:
    df[target] = np.nan
    for _, idx in df.groupby("reference", sort=False).groups.items():
        df.loc[idx, target] = adjust_fdr(df.loc[idx, column].to_numpy(dtype=float), n_comparisons)


def significance_to_wide(matrix: pd.DataFrame, value: str = "different") -> pd.DataFrame:
    """
    Pivot a long significance matrix to a level x level table.

    :param matrix: Output of build_significance_matrix()
    :param value: Column to place in the cells (e.g. "different", "p_adjusted")
    :returns: DataFrame with reference levels as rows and compared levels as columns
    """
    wide = matrix.pivot(index="reference", columns="level", values=value)
    wide.index = wide.index.astype(str)
    wide.columns = wide.columns.astype(str)
    return wide
