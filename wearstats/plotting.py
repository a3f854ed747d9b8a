"""
Visualization Module
====================

Renders the numeric outputs of the acceptability analysis:

- plot_significance_matrix: heatmap of the position x position "different"
  matrix, with the interaction overlay outlined when present
- plot_category_probabilities: stacked bars of predicted response
  probabilities per wearing position
- plot_random_effects: caterpillar plot of subject random intercepts with
  conditional-variance error bars, plus their distribution

Architecture Note:
    Functions accept the plain dict / DataFrame records returned by the
    wearstats modules and return matplotlib Figures.

Example:
    >>> from wearstats.plotting import plot_significance_matrix
    >>> fig = plot_significance_matrix(matrix, title="Comfort")
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional, Tuple
import warnings

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib.patches import Rectangle
import seaborn as sns

if TYPE_CHECKING:
    from .clmm import ClmmResult


# =============================================================================
# Style Configuration
# =============================================================================

DIFFERENT_COLOR = "#E64B35"  # Coral red
SAME_COLOR = "#F2F2F2"
SUBJECT_COLOR = "#4DBBD5"  # Teal blue

DEFAULT_STYLE = {
    "figure.figsize": (10, 6),
    "axes.spines.top": False,
    "axes.spines.right": False,
    "font.size": 11,
    "axes.labelsize": 12,
    "axes.titlesize": 14,
}


def _apply_style() -> None:
    """Apply consistent plotting style."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        plt.rcParams.update(DEFAULT_STYLE)
        sns.set_palette("colorblind")


def _format_label(name: str) -> str:
    return name.replace("_", " ").strip().capitalize()


# =============================================================================
# Main Visualization Functions
# =============================================================================

def plot_significance_matrix(
    matrix: pd.DataFrame,
    title: Optional[str] = None,
    annotate: bool = True,
    figsize: Tuple[int, int] = (8, 7),
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Heatmap of which wearing positions differ from each other.

    Cells are coloured by the "different" flag and annotated with the
    adjusted p-value. If the matrix carries the interaction overlay, cells
    flagged "different_interaction" are outlined.

    :param matrix: Output of build_significance_matrix()
    :param title: Plot title
    :param annotate: Write adjusted p-values into the cells
    :param figsize: Figure size
    :param save_path: Path to save figure
    :returns: matplotlib Figure object
    """
    from .comparison import format_pvalue
    from .contrasts import significance_to_wide

    _apply_style()

    flags = significance_to_wide(matrix, "different").astype(float)
    p_adj = significance_to_wide(matrix, "p_adjusted")

    annot = None
    if annotate:
        annot = p_adj.apply(lambda col: col.map(lambda p: "" if pd.isna(p) else format_pvalue(p)))

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        flags,
        cmap=[SAME_COLOR, DIFFERENT_COLOR],
        vmin=0,
        vmax=1,
        cbar=False,
        linewidths=1,
        linecolor="white",
        annot=annot if annot is not None else False,
        fmt="",
        square=True,
        ax=ax,
    )

    if "different_interaction" in matrix.columns:
        overlay = significance_to_wide(matrix, "different_interaction")
        for i, ref in enumerate(overlay.index):
            for j, lvl in enumerate(overlay.columns):
                if bool(overlay.loc[ref, lvl]):
                    ax.add_patch(Rectangle((j, i), 1, 1, fill=False, edgecolor="black", linewidth=2))

    ax.set_xlabel("Compared position")
    ax.set_ylabel("Reference position")
    ax.set_title(title or "Pairwise differences between wearing positions")

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def plot_category_probabilities(
    predictions: pd.DataFrame,
    title: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 6),
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Stacked horizontal bars of predicted category probabilities.

    :param predictions: Prediction table (settings x categories)
    :param title: Plot title
    :param figsize: Figure size
    :param save_path: Path to save figure
    :returns: matplotlib Figure object
    """
    _apply_style()

    colors = sns.color_palette("RdYlGn", n_colors=predictions.shape[1])
    fig, ax = plt.subplots(figsize=figsize)

    left = np.zeros(len(predictions))
    y = np.arange(len(predictions))
    for color, category in zip(colors, predictions.columns):
        values = predictions[category].to_numpy(dtype=float)
        ax.barh(y, values, left=left, color=color, edgecolor="white", label=str(category))
        left += values

    ax.set_yticks(y)
    ax.set_yticklabels([str(i) for i in predictions.index])
    ax.invert_yaxis()
    ax.set_xlim(0, 1)
    ax.set_xlabel("Predicted probability")
    ax.legend(loc="upper center", bbox_to_anchor=(0.5, -0.12), ncol=min(len(predictions.columns), 7), frameon=False)
    ax.set_title(title or "Predicted response probabilities")

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def plot_random_effects(
    result: "ClmmResult",
    group_labels: Optional[Dict[str, str]] = None,
    title: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 6),
    save_path: Optional[str] = None,
) -> plt.Figure:
    """
    Visualize subject random intercepts (conditional modes).

    Subjects far from zero rate all positions consistently higher or lower
    than average.

    :param result: ClmmResult from fit_clmm()
    :param group_labels: Optional dict mapping subject IDs to group labels
    :param title: Plot title
    :param figsize: Figure size
    :param save_path: Path to save figure
    :returns: matplotlib Figure object
    """
    _apply_style()

    re_df = result["random_effects"].copy()
    re_df["group_label"] = re_df["group"].map(group_labels) if group_labels else "All"
    re_df["group_label"] = re_df["group_label"].fillna("Unknown")
    re_df = re_df.sort_values("mode").reset_index(drop=True)

    fig, axes = plt.subplots(1, 2, figsize=figsize, gridspec_kw={"width_ratios": [2, 1]})

    # Left panel: caterpillar plot with +/- 1.96 conditional SD
    ax1 = axes[0]
    groups = list(re_df["group_label"].unique())
    palette = {g: (SUBJECT_COLOR if len(groups) == 1 else f"C{i}") for i, g in enumerate(groups)}
    half_width = 1.959963984540054 * np.sqrt(re_df["cond_var"].to_numpy())
    for grp in groups:
        sub = re_df[re_df["group_label"] == grp]
        ax1.errorbar(
            sub["mode"],
            sub.index,
            xerr=half_width[sub.index],
            fmt="o",
            markersize=3,
            color=palette[grp],
            alpha=0.8,
            label=grp if len(groups) > 1 else None,
        )
    ax1.axvline(0, color="black", linestyle="--", linewidth=1, alpha=0.7)
    ax1.set_xlabel("Random intercept (conditional mode)")
    ax1.set_ylabel("Subjects (sorted)")
    ax1.set_yticks([])
    if len(groups) > 1:
        ax1.legend(loc="lower right")

    # Right panel: distribution
    ax2 = axes[1]
    ax2.hist(re_df["mode"], bins=15, alpha=0.7, color=SUBJECT_COLOR, orientation="horizontal")
    ax2.axhline(0, color="black", linestyle="--", linewidth=1, alpha=0.7)
    ax2.set_xlabel("Count")

    suptitle = title or f"Random intercepts: {_format_label(result['outcome'])} [{result['model_name']}]"
    suptitle += f" (SD = {result['std_dev']:.2f})"
    fig.suptitle(suptitle, fontsize=14, fontweight="bold")

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig
