"""
Light-Logger Acceptability Analysis
===================================

Per-parameter analysis of the wearable light-logger form-factor survey.

Every survey parameter (comfort, appearance, willingness to wear, ...) runs
through the same pipeline:
- Six nested cumulative link mixed models (m1-m5, m0)
- Four likelihood-ratio tests with FDR adjustment
- Significance matrix over wearing positions for the selected model
- Predicted response probabilities (baseline and between-subject percentiles)

Usage:
    from acceptability import simulate_dataset, run_all, summarize_results

    ds = simulate_dataset()
    results = run_all(ds, parameters=["comfort"])
    print(summarize_results(results))
"""

from .config import PARAMETERS, ParameterConfig, get_parameter, list_parameters
from .runner import (
    ParameterResult,
    analyze_parameter,
    run_parameter,
    run_all,
    summarize_results,
    export_results,
    format_parameter_result,
    count_different_pairs,
    load_survey_data,
    simulate_dataset,
)

__all__ = [
    "PARAMETERS",
    "ParameterConfig",
    "get_parameter",
    "list_parameters",
    "ParameterResult",
    "analyze_parameter",
    "run_parameter",
    "run_all",
    "summarize_results",
    "export_results",
    "format_parameter_result",
    "count_different_pairs",
    # Data
    "load_survey_data",
    "simulate_dataset",
]
