import numpy as np
import pytest
from statsmodels.stats.multitest import multipletests

from wearstats import adjust_fdr


def test_matches_statsmodels_when_count_equals_length():
    p = np.array([0.001, 0.02, 0.03, 0.04, 0.2, 0.5, 0.9])
    _, expected, _, _ = multipletests(p, method="fdr_bh")

    np.testing.assert_allclose(adjust_fdr(p, n_comparisons=len(p)), expected)


def test_known_values():
    adjusted = adjust_fdr([0.01, 0.04, 0.03, 0.20], n_comparisons=4)

    np.testing.assert_allclose(adjusted, [0.04, 0.04 * 4 / 3, 0.04 * 4 / 3, 0.20])


def test_adjusted_not_below_raw_and_order_preserved():
    rng = np.random.default_rng(3)
    p = rng.uniform(size=6)
    adjusted = adjust_fdr(p, n_comparisons=7)

    assert np.all(adjusted >= p)
    assert np.all(adjusted <= 1.0)
    order = np.argsort(p)
    assert np.all(np.diff(adjusted[order]) >= 0)


def test_larger_family_is_more_conservative():
    p = [0.01, 0.02, 0.03]

    assert np.all(adjust_fdr(p, n_comparisons=7) >= adjust_fdr(p, n_comparisons=3))


def test_nan_is_preserved():
    adjusted = adjust_fdr([0.01, np.nan, 0.04], n_comparisons=2)

    assert np.isnan(adjusted[1])
    np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.04])


def test_count_smaller_than_pvalues_raises():
    with pytest.raises(ValueError, match="smaller than the number"):
        adjust_fdr([0.01, 0.02, 0.03, 0.04, 0.05], n_comparisons=4)


def test_out_of_range_pvalue_raises():
    with pytest.raises(ValueError):
        adjust_fdr([0.5, 1.5], n_comparisons=2)


def test_family_larger_than_pvalues_known_values():
    # Two observed p-values in a family of four: p_adj_(i) = min_{j >= i} 4 / j * p_(j)
    adjusted = adjust_fdr([0.04, 0.001], n_comparisons=4)

    np.testing.assert_allclose(adjusted, [0.08, 0.004])


def test_unobserved_comparisons_enter_as_one():
    p = np.array([0.003, 0.02, 0.011])
    _, expected, _, _ = multipletests(np.concatenate([p, np.ones(4)]), method="fdr_bh")

    np.testing.assert_allclose(adjust_fdr(p, n_comparisons=7), expected[:3])
