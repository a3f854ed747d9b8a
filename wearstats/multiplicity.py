"""
Multiplicity Correction Module
==============================

Benjamini-Hochberg false-discovery-rate adjustment with an explicit
comparison count.

The count is a fixed property of the analysis design (4 nested-model tests
per parameter, 7 contrasts per reference position), not the number of
p-values that happen to be available. Comparisons without a p-value enter
the family as p = 1, which ranks them last and leaves the adjustment of the
observed p-values at n / rank.
"""
from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests


def adjust_fdr(
    p_values: Union[Sequence[float], np.ndarray, pd.Series],
    n_comparisons: int,
) -> np.ndarray:
    """
    Benjamini-Hochberg adjusted p-values for a fixed number of comparisons.

    For the m non-missing p-values sorted ascending, p_(1) <= ... <= p_(m):

        p_adj_(i) = min(1, min_{j >= i} n / j * p_(j))

    Missing values stay missing.

    :param p_values: Raw p-values (NaN allowed)
    :param n_comparisons: Size of the comparison family (n >= m)
    :returns: Adjusted p-values in the input order
    :raises ValueError: If n_comparisons is smaller than the number of
        non-missing p-values, or any p-value lies outside [0, 1]

    Example:
        >>> adjust_fdr([0.01, 0.04, 0.03, 0.20], n_comparisons=4)
        array([0.04, 0.05333333, 0.05333333, 0.2])
    """
    p = np.asarray(p_values, dtype=float)
    out = np.full(p.shape, np.nan)

    mask = ~np.isnan(p)
    m = int(mask.sum())
    if n_comparisons < m:
        raise ValueError(
            f"Comparison count ({n_comparisons}) is smaller than the number of "
            f"p-values supplied ({m})"
        )
    if m == 0:
        return out

    raw = p[mask]
    if np.any((raw < 0) | (raw > 1)):
        raise ValueError("p-values must lie in [0, 1]")

    padded = np.concatenate([raw, np.ones(n_comparisons - m)])
    _, p_adjusted, _, _ = multipletests(padded, method="fdr_bh")
    out[mask] = p_adjusted[:m]
    return out
