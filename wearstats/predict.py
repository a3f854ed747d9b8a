"""
Probability Prediction Module
=============================

Turns fitted CLMM coefficients and cut-points into response-category
probabilities:

    P(Y = j | c) = F(theta_j - c) - F(theta_{j-1} - c),   theta_0 = -inf, theta_k = +inf

with F the inverse link (logistic CDF by default) and c a coefficient
setting (one per wearing position, the reference level being 0).
"""
from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple
import re

import numpy as np
import pandas as pd
from scipy import stats

from .clmm import LINKS, ClmmResult


INVERSE_LINKS = {name: fns["cdf"] for name, fns in LINKS.items()}


def predict_category_probabilities(
    coefficients: Sequence[float],
    cutpoints: Sequence[float],
    categories: Sequence[str],
    labels: Optional[Sequence[str]] = None,
    link: str = "logit",
) -> pd.DataFrame:
    """
    Predicted probability of every response category for each coefficient.

    :param coefficients: Linear predictor values, one per parameter setting
    :param cutpoints: Strictly increasing thresholds (k - 1 values)
    :param categories: Ordered response-category labels (k values)
    :param labels: Row labels (default: the coefficient values)
    :param link: Inverse link name ("logit", "probit", "cloglog")
    :returns: DataFrame (settings x categories); each row sums to 1
    :raises ValueError: If cut-points are not strictly increasing or the
        category count does not match the cut-points

    Example:
        >>> predict_category_probabilities([0, 1, 2], [-1, 1], ["low", "mid", "high"])
    """
    if link not in INVERSE_LINKS:
        raise ValueError(f"Unknown link '{link}'. Available: {list(INVERSE_LINKS)}")

    coef = np.asarray(coefficients, dtype=float).ravel()
    cuts = np.asarray(cutpoints, dtype=float).ravel()
    categories = [str(c) for c in categories]

    if len(categories) != len(cuts) + 1:
        raise ValueError(
            f"Expected {len(cuts) + 1} categories for {len(cuts)} cut-points, got {len(categories)}"
        )
    if np.any(~np.isfinite(cuts)) or np.any(np.diff(cuts) <= 0):
        raise ValueError(f"Cut-points must be finite and strictly increasing: {cuts.tolist()}")

    bounds = np.concatenate([[-np.inf], cuts, [np.inf]])
    cdf = INVERSE_LINKS[link](bounds[np.newaxis, :] - coef[:, np.newaxis])
    probs = np.diff(cdf, axis=1)

    index = list(labels) if labels is not None else list(coef)
    if len(index) != len(coef):
        raise ValueError("labels must have one entry per coefficient")
    return pd.DataFrame(probs, index=index, columns=categories)


def percentile_coefficients(
    coefficients: Sequence[float],
    variance: float,
    quantile: float,
    method: str = "literal",
    std_dev: Optional[float] = None,
) -> np.ndarray:
    """
    Coefficients for a low or high percentile of the between-subject distribution.

    ``method="literal"`` reproduces the report's transform

        coefficient * Phi^-1(quantile) * variance

    which scales the fixed effect itself rather than shifting it by a
    subject-level random intercept. It has no standard interpretation as a
    subject-percentile prediction and is kept only to reproduce published
    tables.

    ``method="subject_shift"`` is the conventional alternative

        coefficient + Phi^-1(quantile) * sigma

    (the linear predictor of a subject at that percentile of the random
    intercept distribution).

    :param coefficients: Coefficient settings (reference 0 included)
    :param variance: Random-intercept variance sigma^2
    :param quantile: Percentile in (0, 1), e.g. 0.05 or 0.95
    :param method: "literal" or "subject_shift"
    :param std_dev: Random-intercept SD (default: sqrt(variance))
    :returns: Transformed coefficients
    """
    if not 0 < quantile < 1:
        raise ValueError(f"quantile must be in (0, 1), got {quantile}")
    if variance < 0:
        raise ValueError("variance must be non-negative")

    coef = np.asarray(coefficients, dtype=float)
    z = stats.norm.ppf(quantile)

    if method == "literal":
        return coef * z * variance
    if method == "subject_shift":
        sd = np.sqrt(variance) if std_dev is None else std_dev
        return coef + z * sd
    raise ValueError(f"Unknown method '{method}'. Use 'literal' or 'subject_shift'")


def factor_coefficients(fit: ClmmResult, factor: str, levels: Optional[Sequence[str]] = None) -> pd.Series:
    """
    Main-effect coefficients of one factor with the reference level prepended as 0.

    :param fit: ClmmResult
    :param factor: Factor column (e.g. "position")
    :param levels: Expected level order (default: as found in the fit, reference first)
    :returns: Series indexed by level name
    """
    pattern = re.compile(rf"^{re.escape(factor)}\[T\.([^\]]+)\]$")
    coefs = fit["coefficients"]
    found: Dict[str, float] = {}
    for term, estimate in zip(coefs["term"], coefs["estimate"]):
        match = pattern.match(term)
        if match:
            found[match.group(1)] = float(estimate)

    if levels is None:
        levels = fit.get("factor_levels", {}).get(factor)
    if levels is None:
        if found:
            raise ValueError(f"Level set of '{factor}' unknown; pass levels explicitly")
        # Factor not in the model (null model): a single common setting
        return pd.Series([0.0], index=["(all)"], name=factor)

    missing = [l for l in levels if l not in found]
    if len(missing) != 1:
        raise ValueError(
            f"Expected exactly one reference level of '{factor}' without a coefficient, "
            f"found {missing}"
        )
    return pd.Series([found.get(l, 0.0) for l in levels], index=list(levels), name=factor)


def predict_from_fit(
    fit: ClmmResult,
    factor: str = "position",
    levels: Optional[Sequence[str]] = None,
    quantiles: Tuple[float, float] = (0.05, 0.95),
    method: str = "literal",
) -> Dict[str, pd.DataFrame]:
    """
    Baseline and percentile-scaled prediction tables for a fitted model.

    :param fit: ClmmResult of the selected model
    :param factor: Factor whose levels index the table rows
    :param levels: Level order (reference level first)
    :param quantiles: (low, high) percentiles of the subject distribution
    :param method: Percentile transform, see percentile_coefficients()
    :returns: {"baseline", "low", "high"} -> prediction DataFrames
    """
    coef = factor_coefficients(fit, factor, levels)
    cuts = fit["thresholds"]["estimate"].to_numpy()
    categories = fit["response_levels"]
    low_q, high_q = quantiles

    return {
        "baseline": predict_category_probabilities(
            coef.to_numpy(), cuts, categories, labels=coef.index, link=fit["link"]),
        "low": predict_category_probabilities(
            percentile_coefficients(coef.to_numpy(), fit["variance"], low_q, method, fit["std_dev"]),
            cuts, categories, labels=coef.index, link=fit["link"]),
        "high": predict_category_probabilities(
            percentile_coefficients(coef.to_numpy(), fit["variance"], high_q, method, fit["std_dev"]),
            cuts, categories, labels=coef.index, link=fit["link"]),
    }
