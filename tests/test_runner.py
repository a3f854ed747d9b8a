import os

import pandas as pd
import pytest

import acceptability.runner as runner
from acceptability import (
    PARAMETERS,
    analyze_parameter,
    count_different_pairs,
    export_results,
    format_parameter_result,
    get_parameter,
    list_parameters,
    run_all,
    simulate_dataset,
    summarize_results,
)
from acceptability.config import N_POSITION_COMPARISONS, POSITION_LEVELS
from wearstats import MODEL_NAMES, ModelConvergenceError

import run_analysis


def test_parameter_configuration_is_consistent():
    ratings = [c["rating"] for c in PARAMETERS.values()]

    assert len(ratings) == len(set(ratings))
    assert list_parameters() == list(PARAMETERS.keys())
    assert N_POSITION_COMPARISONS == len(POSITION_LEVELS) - 1
    for p_id, config in PARAMETERS.items():
        assert config["selected_model"] in MODEL_NAMES, p_id
        assert len(config["levels"]) >= 3, p_id


def test_unknown_parameter_raises():
    with pytest.raises(ValueError, match="Unknown parameter"):
        get_parameter("battery_life")


def test_simulated_dataset_shape():
    ds = simulate_dataset(n_subjects=12, parameters=["comfort", "wear_day"])
    df = ds["data"]

    assert len(df) == 12 * len(POSITION_LEVELS)
    assert ds["rating_levels"]["comfort"] == PARAMETERS["comfort"]["levels"]
    assert ds["rating_levels"]["wear_day"] == PARAMETERS["wear_day"]["levels"]
    assert list(df["position"].cat.categories) == POSITION_LEVELS
    # One sex per subject across scales
    assert (df.groupby("subject_id")["sex"].nunique() == 1).all()


def test_analyze_parameter_pipeline(small_ds):
    result = analyze_parameter(small_ds, "comfort", "m5", verbose=False)

    assert result["error"] == ""
    assert set(result["fits"]) == set(MODEL_NAMES)
    assert result["comparison"]["comparison"].tolist() == ["Interaction", "Sex", "Sample", "Position"]
    assert set(result["predictions"]) == {"baseline", "low", "high"}
    assert result["predictions"]["baseline"].index.tolist() == small_ds["position_levels"]
    assert count_different_pairs(result["significance"]) >= 2
    assert "selected m5" in format_parameter_result(result)


def test_convergence_failure_keeps_completed_steps(monkeypatch, small_ds, small_fits):
    def failing_matrix(*args, **kwargs):
        raise ModelConvergenceError("Model m5 for 'comfort' did not converge: refit")

    monkeypatch.setattr(runner, "fit_formula_set", lambda *args, **kwargs: small_fits)
    monkeypatch.setattr(runner, "build_significance_matrix", failing_matrix)

    result = analyze_parameter(small_ds, "comfort", "m5", verbose=False)

    assert "did not converge" in result["error"]
    assert result["comparison"] is not None
    assert result["significance"] is None
    assert result["predictions"] == {}


def test_run_all_isolates_failures(monkeypatch, small_ds, small_fits, tmp_path):
    ds = dict(small_ds)
    ds["data"] = small_ds["data"].assign(appearance=small_ds["data"]["comfort"])

    def fake_fit_formula_set(ds_, formulas, subset=None, **kwargs):
        if formulas[0]["response"] == "comfort":
            raise ModelConvergenceError("Model m1 for 'comfort' did not converge: test")
        return small_fits

    monkeypatch.setattr(runner, "fit_formula_set", fake_fit_formula_set)

    results = run_all(ds, parameters=["comfort", "appearance"],
                      model_overrides={"appearance": "m5"}, verbose=False)

    assert list(results) == ["comfort", "appearance"]
    assert "did not converge" in results["comfort"]["error"]
    assert results["appearance"]["error"] == ""
    assert results["appearance"]["selected_model"] == "m5"

    summary = summarize_results(results)
    assert summary["Status"].tolist() == ["Failed", "OK"]
    assert summary.loc[1, "Position"] == results["appearance"]["comparison"]["p_display"].iloc[3]

    written = export_results(results, str(tmp_path))
    names = {os.path.basename(p) for p in written}
    assert "summary.csv" in names
    assert "appearance_significance.csv" in names
    assert "appearance_predictions_high.csv" in names
    assert not any(n.startswith("comfort_") for n in names)
    assert len(pd.read_csv(tmp_path / "summary.csv")) == 2


def test_cli_describe(capsys):
    assert run_analysis.main(["--describe", "comfort"]) == 0

    out = capsys.readouterr().out
    assert "comfort: Comfort" in out
    assert "Very uncomfortable < Uncomfortable" in out


def test_cli_rejects_bad_model_override():
    with pytest.raises(SystemExit):
        run_analysis.main(["--describe", "--model", "comfort=m9"])
