"""
Shared test configuration and fixtures.

Fitting fixtures are session-scoped: the synthetic surveys are small, but
every CLMM fit still runs a full quasi-Newton optimisation.
"""

import os
import sys

import matplotlib

matplotlib.use("Agg")

import pytest

# Expose the project root so the top-level scripts import without installation
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from wearstats import (  # noqa: E402
    build_formula_set,
    fit_formula_set,
    make_exclusion_filter,
    prepare_survey_data,
    simulate_survey,
)
from wearstats.simulate import DEFAULT_RATING_LEVELS  # noqa: E402


SMALL_POSITIONS = ["Wrist", "Chest", "Glasses", "Necklace"]


def make_small_dataset(n_subjects=40, seed=7, position_effects=None, sex_effects=None):
    df = simulate_survey(
        n_subjects=n_subjects,
        position_levels=SMALL_POSITIONS,
        sex_levels=("Female", "Male", "Other"),
        sex_probs=(0.45, 0.45, 0.10),
        sample_levels=("Germany", "Sweden"),
        ratings=("comfort",),
        position_effects=position_effects if position_effects is not None else {"Chest": 1.0, "Glasses": -1.0},
        sex_effects=sex_effects,
        seed=seed,
    )
    return prepare_survey_data(
        df,
        ["comfort"],
        position_levels=SMALL_POSITIONS,
        rating_levels={"comfort": DEFAULT_RATING_LEVELS},
    )


@pytest.fixture(scope="session")
def small_ds():
    return make_small_dataset()


@pytest.fixture(scope="session")
def exclude_other():
    return make_exclusion_filter("sex", ["Other"])


@pytest.fixture(scope="session")
def small_formulas(small_ds):
    return build_formula_set("comfort", small_ds)


@pytest.fixture(scope="session")
def small_fits(small_ds, small_formulas, exclude_other):
    return fit_formula_set(small_ds, small_formulas, subset=exclude_other)
