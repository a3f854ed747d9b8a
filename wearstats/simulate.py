"""
Synthetic Survey Data
=====================

Generates survey responses from a cumulative-logit random-intercept model,
one rating per subject and wearing position. Used for tests, calibration
checks and the CLI's demonstration mode.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.special import expit


DEFAULT_RATING_LEVELS = [
    "Strongly disagree",
    "Disagree",
    "Neutral",
    "Agree",
    "Strongly agree",
]


def simulate_survey(
    n_subjects: int = 50,
    position_levels: Sequence[str] = ("Wrist", "Chest", "Glasses", "Necklace", "Headband"),
    sex_levels: Sequence[str] = ("Female", "Male"),
    sample_levels: Sequence[str] = ("Germany", "Sweden", "Other"),
    rating_levels: Sequence[str] = tuple(DEFAULT_RATING_LEVELS),
    ratings: Sequence[str] = ("rating",),
    position_effects: Optional[Dict[str, float]] = None,
    sex_effects: Optional[Dict[str, float]] = None,
    cutpoints: Optional[Sequence[float]] = None,
    sd_subject: float = 1.0,
    sex_probs: Optional[Sequence[float]] = None,
    seed: int = 20240219,
) -> pd.DataFrame:
    """
    Simulate one response per subject x position for each rating column.

    :param n_subjects: Number of subjects
    :param position_levels: Wearing positions rated by every subject
    :param sex_levels: Sex categories assigned per subject
    :param sample_levels: Sample locations assigned per subject
    :param rating_levels: Ordered response categories
    :param ratings: Names of the rating columns to generate
    :param position_effects: Linear-predictor shift per position (default: none)
    :param sex_effects: Linear-predictor shift per sex (default: none)
    :param cutpoints: Thresholds (default: evenly spaced in [-2, 2])
    :param sd_subject: SD of the subject random intercept
    :param sex_probs: Assignment probabilities for sex_levels (default: uniform)
    :param seed: Random seed
    :returns: DataFrame with subject_id, position, sex, sample and rating columns
    """
    rng = np.random.default_rng(seed)
    k = len(rating_levels)
    if cutpoints is None:
        cutpoints = np.linspace(-2.0, 2.0, k - 1)
    cutpoints = np.asarray(cutpoints, dtype=float)
    if len(cutpoints) != k - 1:
        raise ValueError(f"Need {k - 1} cut-points for {k} categories")

    position_effects = position_effects or {}
    sex_effects = sex_effects or {}

    subjects = [f"S{i:03d}" for i in range(1, n_subjects + 1)]
    sex = rng.choice(list(sex_levels), size=n_subjects, p=sex_probs)
    sample = rng.choice(list(sample_levels), size=n_subjects)

    rows: List[Dict] = []
    for s_idx, subject in enumerate(subjects):
        for position in position_levels:
            rows.append({
                "subject_id": subject,
                "position": position,
                "sex": sex[s_idx],
                "sample": sample[s_idx],
            })
    df = pd.DataFrame(rows)

    for rating in ratings:
        u = rng.normal(0.0, sd_subject, size=n_subjects)
        subject_idx = df["subject_id"].map({s: i for i, s in enumerate(subjects)}).to_numpy()
        eta = (
            df["position"].map(lambda p: position_effects.get(p, 0.0)).to_numpy(dtype=float)
            + df["sex"].map(lambda s: sex_effects.get(s, 0.0)).to_numpy(dtype=float)
            + u[subject_idx]
        )
        # P(Y <= j) = expit(theta_j - eta)
        cumulative = expit(cutpoints[np.newaxis, :] - eta[:, np.newaxis])
        draws = rng.uniform(size=len(df))
        codes = (draws[:, np.newaxis] > cumulative).sum(axis=1)
        df[rating] = [rating_levels[c] for c in codes]

    return df
