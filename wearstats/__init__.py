"""
wearstats: Ordinal Mixed-Model Analysis of Wearable Acceptability Surveys
=========================================================================

Statistics library behind the light-logger form-factor survey analysis.

Workflow per rating scale:
1. Prepare data (prepare_survey_data)
2. Build the nested formula family (build_formula_set)
3. Fit cumulative link mixed models (fit_formula_set)
4. Compare nested models by LRT with FDR adjustment (compare_nested_models)
5. For the analyst-selected model: significance matrix over wearing
   positions (build_significance_matrix) and predicted category
   probabilities (predict_from_fit)

Usage:
    from wearstats import prepare_survey_data, build_formula_set, fit_formula_set

    ds = prepare_survey_data(df, ["comfort"], id_col="Id")
    formulas = build_formula_set("comfort", ds)
    fits = fit_formula_set(ds, formulas, subset=make_exclusion_filter("sex", ["Other"]))
"""

from .prepare import (
    SurveyDataset,
    create_survey_dataset,
    validate_dataset,
    prepare_survey_data,
    subset_dataset,
    make_exclusion_filter,
    apply_row_filter,
    describe_dataset,
    rating_distribution,
    get_n_subjects,
    get_n_observations,
    get_obs_per_subject,
)
from .formulas import (
    MODEL_FAMILY,
    MODEL_NAMES,
    build_formula_set,
    get_model_spec,
    is_nested,
    has_interaction,
)
from .clmm import (
    LINKS,
    ModelConvergenceError,
    fit_clmm,
    fit_formula_set,
    shared_rows_filter,
    summarize_clmm_result,
    get_random_effects,
    get_coefficient,
    gauss_hermite_nodes,
)
from .multiplicity import adjust_fdr
from .comparison import (
    COMPARISONS,
    N_MODEL_COMPARISONS,
    likelihood_ratio_test,
    compare_nested_models,
    model_fit_table,
    format_pvalue,
)
from .contrasts import (
    build_significance_matrix,
    significance_to_wide,
    relevel,
)
from .predict import (
    INVERSE_LINKS,
    predict_category_probabilities,
    percentile_coefficients,
    factor_coefficients,
    predict_from_fit,
)
from .simulate import simulate_survey

__all__ = [
    # Data preparation
    "SurveyDataset",
    "create_survey_dataset",
    "validate_dataset",
    "prepare_survey_data",
    "subset_dataset",
    "make_exclusion_filter",
    "apply_row_filter",
    "describe_dataset",
    "rating_distribution",
    "get_n_subjects",
    "get_n_observations",
    "get_obs_per_subject",
    # Formulas
    "MODEL_FAMILY",
    "MODEL_NAMES",
    "build_formula_set",
    "get_model_spec",
    "is_nested",
    "has_interaction",
    # Fitting
    "LINKS",
    "ModelConvergenceError",
    "fit_clmm",
    "fit_formula_set",
    "shared_rows_filter",
    "summarize_clmm_result",
    "get_random_effects",
    "get_coefficient",
    "gauss_hermite_nodes",
    # Comparison
    "adjust_fdr",
    "COMPARISONS",
    "N_MODEL_COMPARISONS",
    "likelihood_ratio_test",
    "compare_nested_models",
    "model_fit_table",
    "format_pvalue",
    # Contrasts
    "build_significance_matrix",
    "significance_to_wide",
    "relevel",
    # Prediction
    "INVERSE_LINKS",
    "predict_category_probabilities",
    "percentile_coefficients",
    "factor_coefficients",
    "predict_from_fit",
    # Synthetic data
    "simulate_survey",
]
