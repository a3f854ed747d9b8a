"""
Null calibration of the wearing-position likelihood-ratio test.

Data are simulated without any position effect; the unadjusted m5 vs m0
test should reject at about the nominal 5% rate.

The bound is deliberately looser than asking 95% of replicates to exceed
p = 0.05. Under the null that share is only the expected value, so a strict
95% cut would fail about half of all correct runs. Up to 8 of 60 rejections
are allowed instead.
"""
import pytest

from wearstats import (
    build_formula_set,
    fit_clmm,
    get_model_spec,
    likelihood_ratio_test,
    prepare_survey_data,
    simulate_survey,
)
from wearstats.simulate import DEFAULT_RATING_LEVELS


N_REPLICATES = 60
# P(X >= 9) < 0.005 for X ~ Binomial(60, 0.05)
MAX_REJECTIONS = 8


@pytest.mark.slow
def test_position_lrt_null_rejection_rate():
    rejections = 0
    for i in range(N_REPLICATES):
        df = simulate_survey(n_subjects=50, sex_levels=("Female", "Male"), seed=1000 + i)
        ds = prepare_survey_data(df, ["rating"], rating_levels={"rating": DEFAULT_RATING_LEVELS})
        formulas = build_formula_set("rating", ds)

        full = fit_clmm(ds, get_model_spec(formulas, "m5"))
        reduced = fit_clmm(ds, get_model_spec(formulas, "m0"))
        _, _, p = likelihood_ratio_test(full, reduced)
        rejections += p < 0.05

    assert rejections <= MAX_REJECTIONS, f"{rejections}/{N_REPLICATES} null rejections"
