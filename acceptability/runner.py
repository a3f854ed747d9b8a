"""
Parameter Runner
================

Generic execution engine for the per-parameter acceptability analysis.

This module handles the common workflow:
1. Build the nested formula family for the rating
2. Fit all six CLMMs (m1-m4 without the excluded sex category)
3. Compare nested models by LRT with FDR adjustment
4. Refit the analyst-selected model per reference position (significance matrix)
5. Predict response-category probabilities from the selected model
6. Return a structured result

The same pipeline runs for every configured parameter; a model that fails to
converge is recorded in that parameter's result and the batch continues.
"""

import os
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import (
    ALPHA,
    EXCLUDED_SEX,
    LINK,
    N_AGQ,
    N_MODEL_COMPARISONS,
    N_POSITION_COMPARISONS,
    PARAMETERS,
    PERCENTILES,
    PERCENTILE_METHOD,
    POSITION_COL,
    POSITION_LEVELS,
    SAMPLE_COL,
    SEX_COL,
    SUBJECT_COL,
    get_parameter,
)

from wearstats import (
    SurveyDataset,
    ModelConvergenceError,
    prepare_survey_data,
    make_exclusion_filter,
    build_formula_set,
    get_model_spec,
    fit_formula_set,
    shared_rows_filter,
    summarize_clmm_result,
    compare_nested_models,
    model_fit_table,
    build_significance_matrix,
    predict_from_fit,
    simulate_survey,
)


# -----------------------------------------------------------------------------
# ParameterResult (dictionary-based, no classes)
# -----------------------------------------------------------------------------

ParameterResult = Dict[str, Any]


def create_parameter_result(
    parameter_id: str,
    config: Dict[str, Any],
    rating: str,
    selected_model: str,
    formulas: Optional[List[Dict[str, Any]]] = None,
    fits: Optional[Dict[str, Any]] = None,
    comparison: Optional[pd.DataFrame] = None,
    model_table: Optional[pd.DataFrame] = None,
    significance: Optional[pd.DataFrame] = None,
    predictions: Optional[Dict[str, pd.DataFrame]] = None,
    error: str = "",
) -> ParameterResult:
    """Create a ParameterResult dictionary."""
    return {
        "parameter_id": parameter_id,
        "config": config,
        "rating": rating,
        "selected_model": selected_model,
        "formulas": formulas or [],
        "fits": fits or {},
        "comparison": comparison,
        "model_table": model_table,
        "significance": significance,
        "predictions": predictions or {},
        "error": error,
    }


def format_parameter_result(result: ParameterResult) -> str:
    """Format ParameterResult for display."""
    p_id = result["parameter_id"]
    if result.get("error"):
        return f"ParameterResult({p_id}: FAILED - {result['error']})"
    comparison = result.get("comparison")
    if comparison is None:
        return f"ParameterResult({p_id}: no comparison)"
    parts = [f"{row['comparison']} p={row['p_display']}" for _, row in comparison.iterrows()]
    return f"ParameterResult({p_id}: {', '.join(parts)}; selected {result['selected_model']})"


# -----------------------------------------------------------------------------
# Data Loading
# -----------------------------------------------------------------------------

def load_survey_data(
    path: str,
    parameters: Optional[List[str]] = None,
) -> SurveyDataset:
    """
    Load the cleaned long-format survey CSV and prepare it for modelling.

    Args:
        path: CSV with one row per subject x position
        parameters: Parameter IDs whose rating columns are required (default: all)

    Returns:
        SurveyDataset with the configured position levels and category labels
    """
    parameters = parameters or list(PARAMETERS.keys())
    configs = [get_parameter(p_id) for p_id in parameters]

    df = pd.read_csv(path)
    return prepare_survey_data(
        df,
        rating_cols=[c["rating"] for c in configs],
        id_col=SUBJECT_COL,
        position_col=POSITION_COL,
        sex_col=SEX_COL,
        sample_col=SAMPLE_COL,
        position_levels=POSITION_LEVELS,
        rating_levels={c["rating"]: c["levels"] for c in configs},
    )


def simulate_dataset(
    n_subjects: int = 60,
    parameters: Optional[List[str]] = None,
    seed: int = 20240219,
) -> SurveyDataset:
    """
    Synthetic stand-in for the survey, shaped like the configured parameters.

    Parameters sharing a response scale are simulated together, so every
    subject keeps the same sex and sample across ratings.

    Args:
        n_subjects: Number of simulated respondents
        parameters: Parameter IDs to simulate (default: all)
        seed: Random seed

    Returns:
        SurveyDataset prepared exactly like load_survey_data()
    """
    parameters = parameters or list(PARAMETERS.keys())
    configs = [get_parameter(p_id) for p_id in parameters]

    # Mild preference for the less visible positions
    position_effects = dict(zip(POSITION_LEVELS, [0.6, 0.2, 0.0, 0.3, -0.2, -0.8, -0.4, -0.6]))

    by_scale: Dict[tuple, List[str]] = {}
    for c in configs:
        by_scale.setdefault(tuple(c["levels"]), []).append(c["rating"])

    df = None
    for levels, ratings in by_scale.items():
        sim = simulate_survey(
            n_subjects=n_subjects,
            position_levels=POSITION_LEVELS,
            sex_levels=("Female", "Male", "Other"),
            sex_probs=(0.48, 0.48, 0.04),
            rating_levels=levels,
            ratings=ratings,
            position_effects=position_effects,
            seed=seed,
        )
        df = sim if df is None else df.merge(
            sim[["subject_id", "position"] + ratings], on=["subject_id", "position"]
        )

    df = df.rename(columns={
        "subject_id": SUBJECT_COL,
        "position": POSITION_COL,
        "sex": SEX_COL,
        "sample": SAMPLE_COL,
    })
    return prepare_survey_data(
        df,
        rating_cols=[c["rating"] for c in configs],
        id_col=SUBJECT_COL,
        position_col=POSITION_COL,
        sex_col=SEX_COL,
        sample_col=SAMPLE_COL,
        position_levels=POSITION_LEVELS,
        rating_levels={c["rating"]: c["levels"] for c in configs},
    )


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------

def count_different_pairs(significance: pd.DataFrame) -> int:
    """Number of off-diagonal (reference, level) cells flagged different."""
    off_diag = significance[significance["reference"] != significance["level"]]
    return int(off_diag["different"].sum())


def analyze_parameter(
    ds: SurveyDataset,
    rating: str,
    selected_model: str,
    subset: Optional[Any] = None,
    verbose: bool = True,
    parameter_id: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
    n_agq: int = N_AGQ,
    link: str = LINK,
    alpha: float = ALPHA,
) -> ParameterResult:
    """
    Run the full model-building, comparison and prediction pipeline for one rating.

    Args:
        ds: Prepared SurveyDataset
        rating: Rating column to analyse
        selected_model: Model (m0-m5) used for the significance matrix and
            predictions; chosen by the analyst, not derived here
        subset: Row predicate for the models carrying sex
            (default: exclude the configured sex categories)
        verbose: Print progress messages
        parameter_id: Identifier stored in the result (default: rating)
        config: Parameter configuration stored in the result
        n_agq: Quadrature points per fit
        link: Link function
        alpha: Threshold on adjusted contrast p-values

    Returns:
        ParameterResult dict. A ModelConvergenceError is stored in "error"
        together with whatever was completed before it.
    """
    parameter_id = parameter_id or rating
    config = config or {"name": rating, "rating": rating, "selected_model": selected_model}
    if subset is None:
        subset = make_exclusion_filter(ds["sex_var"], EXCLUDED_SEX)

    fit_kwargs = {"n_agq": n_agq, "link": link}
    formulas = build_formula_set(rating, ds)
    spec = get_model_spec(formulas, selected_model)

    partial: Dict[str, Any] = {}
    try:
        if verbose:
            print(f"  Fitting {len(formulas)} models ({', '.join(s['name'] for s in formulas)})")
        fits = fit_formula_set(ds, formulas, subset=subset, **fit_kwargs)
        partial["fits"] = fits

        comparison = compare_nested_models(fits, n_comparisons=N_MODEL_COMPARISONS)
        partial["comparison"] = comparison
        partial["model_table"] = model_fit_table(fits)
        if verbose:
            print(comparison[["comparison", "full", "reduced", "lr_stat", "df", "p_display"]].to_string(index=False))
            print(f"  Selected model: {selected_model} ({spec['fixed']})")

        # The null model has no position contrasts to compare
        has_position = ds["position_var"] in spec["terms"]
        if has_position:
            partial["significance"] = build_significance_matrix(
                ds,
                spec,
                subset=shared_rows_filter(ds, formulas, subset),
                n_comparisons=N_POSITION_COMPARISONS,
                alpha=alpha,
                verbose=verbose,
                **fit_kwargs,
            )

        predictions = predict_from_fit(
            fits[selected_model],
            factor=ds["position_var"],
            levels=ds["position_levels"] if has_position else None,
            quantiles=PERCENTILES,
            method=PERCENTILE_METHOD,
        )
        partial["predictions"] = predictions
    except ModelConvergenceError as e:
        if verbose:
            print(f"  FAILED: {e}")
        return create_parameter_result(
            parameter_id=parameter_id,
            config=config,
            rating=rating,
            selected_model=selected_model,
            formulas=formulas,
            error=str(e),
            **partial,
        )

    if verbose:
        print(summarize_clmm_result(fits[selected_model]))
        if partial.get("significance") is not None:
            n_pairs = len(ds["position_levels"]) * (len(ds["position_levels"]) - 1)
            print(f"  Position pairs flagged different: {count_different_pairs(partial['significance'])} of {n_pairs}")

    return create_parameter_result(
        parameter_id=parameter_id,
        config=config,
        rating=rating,
        selected_model=selected_model,
        formulas=formulas,
        **partial,
    )


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------

def run_parameter(
    parameter_id: str,
    ds: SurveyDataset,
    selected_model: Optional[str] = None,
    verbose: bool = True,
    **kwargs,
) -> ParameterResult:
    """
    Run the analysis for one configured parameter.

    Args:
        parameter_id: Key of PARAMETERS
        ds: Prepared SurveyDataset containing the parameter's rating column
        selected_model: Override for the configured selected_model
        verbose: Print progress messages
        **kwargs: Passed to analyze_parameter

    Returns:
        ParameterResult dict
    """
    config = dict(get_parameter(parameter_id))
    model = selected_model or config["selected_model"]

    if verbose:
        print(f"\n[{parameter_id}] {config['name']}")

    return analyze_parameter(
        ds,
        rating=config["rating"],
        selected_model=model,
        verbose=verbose,
        parameter_id=parameter_id,
        config=config,
        **kwargs,
    )


def run_all(
    ds: SurveyDataset,
    parameters: Optional[List[str]] = None,
    model_overrides: Optional[Dict[str, str]] = None,
    verbose: bool = True,
    **kwargs,
) -> Dict[str, ParameterResult]:
    """
    Run all (or selected) parameters sequentially.

    Args:
        ds: Prepared SurveyDataset
        parameters: Parameter IDs to run (default: all)
        model_overrides: Parameter ID -> model name replacing the configured choice
        verbose: Print progress messages
        **kwargs: Passed to analyze_parameter

    Returns:
        Dictionary mapping parameter ID to ParameterResult dict
    """
    parameters = parameters or list(PARAMETERS.keys())
    model_overrides = model_overrides or {}

    if verbose:
        print("=" * 70)
        print(f"ACCEPTABILITY ANALYSIS ({len(parameters)} parameters)")
        print("=" * 70)

    results = {}
    for p_id in parameters:
        results[p_id] = run_parameter(
            p_id,
            ds,
            selected_model=model_overrides.get(p_id),
            verbose=verbose,
            **kwargs,
        )

    return results


def summarize_results(
    results: Dict[str, ParameterResult],
) -> pd.DataFrame:
    """
    Create a summary table of all parameter results.

    Returns:
        DataFrame with one row per parameter: displayed (adjusted) p-values of
        the four model comparisons, selected model and number of position
        pairs flagged different
    """
    rows = []
    for p_id, result in results.items():
        row: Dict[str, Any] = {
            "Parameter": p_id,
            "Name": result["config"].get("name", p_id),
        }
        comparison = result.get("comparison")
        for name in ("Interaction", "Sex", "Sample", "Position"):
            if comparison is None:
                row[name] = None
            else:
                match = comparison.loc[comparison["comparison"] == name, "p_display"]
                row[name] = match.iloc[0] if not match.empty else None

        row["Selected Model"] = result["selected_model"]
        significance = result.get("significance")
        row["Different Pairs"] = count_different_pairs(significance) if significance is not None else None
        row["Status"] = "Failed" if result.get("error") else "OK"
        row["Note"] = result.get("error", "")
        rows.append(row)

    return pd.DataFrame(rows)


def export_results(
    results: Dict[str, ParameterResult],
    out_dir: str,
) -> List[str]:
    """
    Write the numeric outputs of every parameter as CSV files.

    Per parameter: model comparison, model fit table, significance matrix and
    the baseline / low / high prediction tables. Plus a summary.csv.

    Args:
        results: Dictionary of ParameterResult dicts
        out_dir: Output directory (created if missing)

    Returns:
        List of written file paths
    """
    os.makedirs(out_dir, exist_ok=True)
    written = []

    def _write(df: pd.DataFrame, name: str, index: bool = False) -> None:
        path = os.path.join(out_dir, name)
        df.to_csv(path, index=index)
        written.append(path)

    for p_id, result in results.items():
        if result.get("comparison") is not None:
            _write(result["comparison"], f"{p_id}_comparison.csv")
        if result.get("model_table") is not None:
            _write(result["model_table"], f"{p_id}_models.csv")
        if result.get("significance") is not None:
            _write(result["significance"], f"{p_id}_significance.csv")
        for setting, table in result.get("predictions", {}).items():
            _write(table, f"{p_id}_predictions_{setting}.csv", index=True)

    _write(summarize_results(results), "summary.csv")
    return written

