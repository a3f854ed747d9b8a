import numpy as np
import pytest

from wearstats import (
    ModelConvergenceError,
    build_formula_set,
    fit_clmm,
    fit_formula_set,
    gauss_hermite_nodes,
    get_coefficient,
    get_model_spec,
    get_random_effects,
    likelihood_ratio_test,
    make_exclusion_filter,
    prepare_survey_data,
    shared_rows_filter,
    simulate_survey,
    summarize_clmm_result,
)
from wearstats.simulate import DEFAULT_RATING_LEVELS

from conftest import SMALL_POSITIONS, make_small_dataset


def test_gauss_hermite_nodes_integrate_gaussian_moments():
    nodes, weights = gauss_hermite_nodes(10)

    assert weights.sum() == pytest.approx(np.sqrt(np.pi))
    # E[X^2] for X ~ N(0, 1) via x = sqrt(2) * node
    assert np.sum(weights * 2 * nodes ** 2) / np.sqrt(np.pi) == pytest.approx(1.0)


def test_gauss_hermite_rejects_zero_points():
    with pytest.raises(ValueError):
        gauss_hermite_nodes(0)


def test_fit_structure(small_fits):
    fit = small_fits["m5"]

    assert fit["converged"]
    assert fit["model_name"] == "m5"
    assert fit["fixed_terms"] == ["position[T.Chest]", "position[T.Glasses]", "position[T.Necklace]"]
    assert len(fit["thresholds"]) == len(fit["response_levels"]) - 1
    assert fit["thresholds"]["threshold"].iloc[0] == f"{fit['response_levels'][0]}|{fit['response_levels'][1]}"
    assert np.all(np.diff(fit["thresholds"]["estimate"]) > 0)
    assert fit["variance"] == pytest.approx(fit["std_dev"] ** 2)
    assert fit["n_agq"] == 10
    assert fit["fit_stats"]["n_params"] == len(fit["params"])


def test_position_effects_recovered(small_fits):
    fit = small_fits["m5"]

    # Simulated: Chest +1, Glasses -1 relative to Wrist
    assert get_coefficient(fit, "position[T.Chest]") > 0
    assert get_coefficient(fit, "position[T.Glasses]") < 0
    assert get_coefficient(fit, "position[T.Wrist]") == 0.0


def test_standard_errors_positive_and_pvalues_valid(small_fits):
    coefs = small_fits["m1"]["coefficients"]

    assert np.all(coefs["std_error"] > 0)
    assert np.all((coefs["p_value"] >= 0) & (coefs["p_value"] <= 1))
    assert np.all(coefs["ci_lower"] < coefs["ci_upper"])


def test_interaction_model_terms(small_fits):
    terms = small_fits["m1"]["fixed_terms"]

    assert "sex[T.Male]" in terms
    assert "position[T.Chest]:sex[T.Male]" in terms
    assert "sample[T.Sweden]" in terms


def test_random_effect_count_equals_retained_subjects(small_ds, small_fits):
    data = small_ds["data"]
    all_subjects = data["subject_id"].nunique()
    retained = data.loc[data["sex"].astype(str) != "Other", "subject_id"].nunique()

    assert len(get_random_effects(small_fits["m5"])) == all_subjects
    assert len(get_random_effects(small_fits["m2"])) == retained
    assert small_fits["m2"]["n_groups"] == retained
    assert np.all(get_random_effects(small_fits["m2"])["cond_var"] > 0)


def test_interaction_model_likelihood_not_below_main_effects(small_fits):
    assert small_fits["m1"]["fit_stats"]["llf"] >= small_fits["m2"]["fit_stats"]["llf"] - 1e-3


def test_subset_ignored_for_position_only_model(small_fits):
    assert small_fits["m5"]["subset"] is None
    assert small_fits["m0"]["subset"] is None
    assert small_fits["m1"]["subset"] == "sex not in ['Other']"


def test_convergence_failure_raises():
    ds = make_small_dataset(n_subjects=30, position_effects={"Chest": 2.0, "Glasses": -2.0})
    spec = get_model_spec(build_formula_set("comfort", ds), "m5")

    with pytest.raises(ModelConvergenceError, match="did not converge"):
        fit_clmm(ds, spec, maxiter=0)


def test_missing_column_raises(small_ds):
    spec = dict(get_model_spec(build_formula_set("comfort", small_ds), "m5"))
    spec["terms"] = ["handedness"]
    spec["fixed"] = "handedness"

    with pytest.raises(ValueError, match="handedness"):
        fit_clmm(small_ds, spec)


def test_probit_link_fits(small_ds):
    spec = get_model_spec(build_formula_set("comfort", small_ds), "m0")
    fit = fit_clmm(small_ds, spec, link="probit", n_agq=5)

    assert fit["converged"]
    assert fit["link"] == "probit"
    assert fit["coefficients"].empty


def test_summary_mentions_model(small_fits):
    text = summarize_clmm_result(small_fits["m4"])

    assert "[m4]" in text
    assert "Subset: sex not in ['Other']" in text


def test_shared_rows_unchanged_without_missing_values(small_ds, small_formulas, exclude_other):
    assert shared_rows_filter(small_ds, small_formulas, exclude_other) is exclude_other
    assert shared_rows_filter(small_ds, small_formulas) is None


def test_missing_sex_rows_leave_every_subset_model():
    df = simulate_survey(n_subjects=30, position_levels=SMALL_POSITIONS, ratings=("comfort",), seed=21)
    dropped = df["subject_id"].drop_duplicates().iloc[:3]
    df.loc[df["subject_id"].isin(dropped), "sex"] = np.nan
    with pytest.warns(UserWarning, match="missing 'sex'"):
        ds = prepare_survey_data(
            df, ["comfort"],
            position_levels=SMALL_POSITIONS,
            rating_levels={"comfort": DEFAULT_RATING_LEVELS},
        )
    formulas = [get_model_spec(build_formula_set("comfort", ds), name) for name in ("m2", "m3")]

    fits = fit_formula_set(ds, formulas, subset=make_exclusion_filter("sex", ["Other"]))

    # m3 carries no sex term but still drops the rows m2 cannot use
    assert fits["m2"]["n_obs"] == fits["m3"]["n_obs"] == 27 * len(SMALL_POSITIONS)
    assert fits["m2"]["n_groups"] == 27
    assert not any("nan" in term for term in fits["m2"]["fixed_terms"])
    assert "complete" in fits["m3"]["subset"]
    _, df_diff, _ = likelihood_ratio_test(fits["m2"], fits["m3"])
    assert df_diff == 1
