import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from wearstats import predict_category_probabilities
from wearstats.plotting import (
    plot_category_probabilities,
    plot_random_effects,
    plot_significance_matrix,
)


LEVELS = ["Wrist", "Chest", "Glasses"]


@pytest.fixture
def matrix():
    rows = []
    for ref in LEVELS:
        for lvl in LEVELS:
            same = ref == lvl
            p = np.nan if same else (0.001 if {ref, lvl} == {"Chest", "Glasses"} else 0.4)
            rows.append({
                "reference": ref,
                "level": lvl,
                "estimate": 0.0,
                "p_value": p,
                "p_adjusted": p,
                "different": (not same) and p < 0.05,
                "different_interaction": False,
            })
    df = pd.DataFrame(rows)
    df["reference"] = pd.Categorical(df["reference"], categories=LEVELS)
    df["level"] = pd.Categorical(df["level"], categories=LEVELS)
    df.loc[1, "different_interaction"] = True
    return df


def test_significance_heatmap(matrix, tmp_path):
    path = tmp_path / "matrix.png"
    fig = plot_significance_matrix(matrix, title="Comfort", save_path=str(path))

    assert path.exists()
    assert fig.axes[0].get_title() == "Comfort"
    plt.close(fig)


def test_category_probability_bars(tmp_path):
    table = predict_category_probabilities([0.0, 0.8, -0.5], [-1.0, 0.0, 1.0], ["1", "2", "3", "4"], labels=LEVELS)
    fig = plot_category_probabilities(table, save_path=str(tmp_path / "probs.png"))

    assert len(fig.axes[0].patches) == 3 * 4
    plt.close(fig)


def test_random_effects_caterpillar():
    result = {
        "outcome": "comfort",
        "model_name": "m5",
        "std_dev": 0.9,
        "random_effects": pd.DataFrame({
            "group": ["S001", "S002", "S003", "S004"],
            "mode": [-0.8, 0.1, 0.4, 1.2],
            "cond_var": [0.2, 0.25, 0.2, 0.3],
        }),
    }
    fig = plot_random_effects(result, group_labels={"S001": "Female", "S002": "Male", "S003": "Male"})

    assert len(fig.axes) == 2
    assert "comfort" in fig._suptitle.get_text().lower()
    plt.close(fig)
