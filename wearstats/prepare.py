"""
Data Preparation Module
=======================

Transforms cleaned survey responses into analysis-ready datasets with:
- Categorical wearing position with a fixed level set
- Demographic and sample-location factors
- Ordered categorical rating scales (one column per survey parameter)

Architecture Note:
    This module uses dictionaries instead of classes for data structures
    to keep every wearstats record a plain, inspectable container.

    SurveyDataset is a TypedDict containing:
    - data: pandas DataFrame with one row per response (subject x position)
    - rating_vars: list of ordinal rating column names
    - id_var, position_var, sex_var, sample_var: factor columns
    - position_levels: fixed, ordered wearing-position levels
    - rating_levels: ordered category labels per rating column
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypedDict
import warnings

import numpy as np
import pandas as pd


RowFilter = Callable[[pd.DataFrame], pd.Series]


# =============================================================================
# Survey Dataset TypedDict
# =============================================================================

class SurveyDataset(TypedDict):
    """
    Container for analysis-ready survey data with metadata.

    Keys:
        data: DataFrame with one row per response
        rating_vars: List of ordinal rating column names
        id_var: Subject identifier column (default: "subject_id")
        position_var: Wearing position factor column
        sex_var: Demographic sex factor column
        sample_var: Sample location factor column
        position_levels: Ordered wearing-position levels
        rating_levels: Ordered category labels for every rating column
    """
    data: pd.DataFrame
    rating_vars: List[str]
    id_var: str
    position_var: str
    sex_var: str
    sample_var: str
    position_levels: List[str]
    rating_levels: Dict[str, List[str]]


def create_survey_dataset(
    data: pd.DataFrame,
    rating_vars: List[str],
    id_var: str = "subject_id",
    position_var: str = "position",
    sex_var: str = "sex",
    sample_var: str = "sample",
    position_levels: Optional[List[str]] = None,
    rating_levels: Optional[Dict[str, List[str]]] = None,
) -> SurveyDataset:
    """
    Create a SurveyDataset dictionary with validation.

    :param data: DataFrame with one row per response
    :param rating_vars: List of ordinal rating column names
    :param id_var: Subject identifier column
    :param position_var: Wearing position column
    :param sex_var: Demographic sex column
    :param sample_var: Sample location column
    :param position_levels: Ordered position levels (default: categories in data)
    :param rating_levels: Category labels per rating (default: categories in data)
    :returns: Validated SurveyDataset dictionary
    """
    if position_levels is None:
        position_levels = _levels_of(data[position_var]) if position_var in data.columns else []

    if rating_levels is None:
        rating_levels = {
            r: _levels_of(data[r]) for r in rating_vars if r in data.columns
        }

    ds: SurveyDataset = {
        "data": data,
        "rating_vars": list(rating_vars),
        "id_var": id_var,
        "position_var": position_var,
        "sex_var": sex_var,
        "sample_var": sample_var,
        "position_levels": list(position_levels),
        "rating_levels": dict(rating_levels),
    }

    ds = validate_dataset(ds)
    return ds


def _levels_of(series: pd.Series) -> List[str]:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [str(c) for c in series.cat.categories]
    return sorted(str(v) for v in series.dropna().unique())


def validate_dataset(ds: SurveyDataset) -> SurveyDataset:
    """
    Validate the dataset structure.

    :param ds: SurveyDataset dictionary
    :returns: Validated SurveyDataset (rating_vars may be filtered)
    :raises ValueError: If required factor columns are missing
    """
    data = ds["data"]

    for key in ("id_var", "position_var", "sex_var", "sample_var"):
        col = ds[key]
        if col not in data.columns:
            raise ValueError(f"Column '{col}' ({key}) not found in data")

    missing_ratings = [v for v in ds["rating_vars"] if v not in data.columns]
    if missing_ratings:
        warnings.warn(f"Rating variables not found in data: {missing_ratings}")
        ds["rating_vars"] = [v for v in ds["rating_vars"] if v in data.columns]

    return ds


def get_n_subjects(ds: SurveyDataset) -> int:
    """Get number of unique subjects in dataset."""
    return ds["data"][ds["id_var"]].nunique()


def get_n_observations(ds: SurveyDataset) -> int:
    """Get total number of responses in dataset."""
    return len(ds["data"])


def get_obs_per_subject(ds: SurveyDataset) -> pd.Series:
    """Get number of responses per subject."""
    return ds["data"].groupby(ds["id_var"], observed=True).size()


# =============================================================================
# Row Filtering
# =============================================================================

def make_exclusion_filter(column: str, values: Sequence[Any]) -> RowFilter:
    """
    Build a row predicate that drops rows whose ``column`` is in ``values``.

    Used to exclude a demographic category (e.g. sex == "Other") from models
    that carry that covariate.

    :param column: Column to test
    :param values: Category values to exclude
    :returns: Callable mapping a DataFrame to a boolean keep-mask
    """
    excluded = [str(v) for v in values]

    def predicate(df: pd.DataFrame) -> pd.Series:
        return ~df[column].astype(str).isin(excluded)

    predicate.description = f"{column} not in {excluded}"
    return predicate


def apply_row_filter(df: pd.DataFrame, subset: Optional[RowFilter]) -> pd.DataFrame:
    """Apply an optional row predicate and drop categories left unused."""
    if subset is None:
        return df.copy()

    mask = subset(df)
    out = df.loc[mask.astype(bool)].copy()
    for col in out.columns:
        if isinstance(out[col].dtype, pd.CategoricalDtype) and not out[col].cat.ordered:
            out[col] = out[col].cat.remove_unused_categories()
    return out


def subset_dataset(
    ds: SurveyDataset,
    subset: Optional[RowFilter] = None,
    ratings: Optional[List[str]] = None,
    subjects: Optional[List[Any]] = None,
) -> SurveyDataset:
    """
    Create a subset of the dataset.

    :param ds: SurveyDataset dictionary
    :param subset: Row predicate (e.g. from make_exclusion_filter)
    :param ratings: Subset of rating variables
    :param subjects: Subset of subject IDs
    :returns: New SurveyDataset with filtered data
    """
    df = apply_row_filter(ds["data"], subset)

    if subjects is not None:
        df = df[df[ds["id_var"]].isin(subjects)]

    new_ratings = ratings if ratings is not None else ds["rating_vars"]

    return create_survey_dataset(
        data=df,
        rating_vars=new_ratings,
        id_var=ds["id_var"],
        position_var=ds["position_var"],
        sex_var=ds["sex_var"],
        sample_var=ds["sample_var"],
        position_levels=ds["position_levels"],
        rating_levels={r: ds["rating_levels"][r] for r in new_ratings if r in ds["rating_levels"]},
    )


def describe_dataset(ds: SurveyDataset) -> str:
    """
    Return a summary description of the dataset.

    :param ds: SurveyDataset dictionary
    :returns: Human-readable summary string
    """
    data = ds["data"]
    lines = [
        "SurveyDataset",
        f"  Subjects: {get_n_subjects(ds)}",
        f"  Responses: {get_n_observations(ds)}",
        f"  Positions: {len(ds['position_levels'])} ({', '.join(ds['position_levels'])})",
        f"  Sex: {dict(data[ds['sex_var']].value_counts(sort=False))}",
        f"  Sample: {dict(data[ds['sample_var']].value_counts(sort=False))}",
        f"  Ratings: {len(ds['rating_vars'])} variables",
    ]
    return "\n".join(lines)


def rating_distribution(ds: SurveyDataset, rating: str) -> pd.DataFrame:
    """
    Observed proportion of each response category per wearing position.

    :param ds: SurveyDataset dictionary
    :param rating: Rating column
    :returns: DataFrame (positions x categories), rows sum to 1
    """
    if rating not in ds["data"].columns:
        raise ValueError(f"Rating '{rating}' not found in dataset")

    df = ds["data"].dropna(subset=[rating])
    table = pd.crosstab(df[ds["position_var"]], df[rating], normalize="index", dropna=False)
    table = table.reindex(index=ds["position_levels"], columns=ds["rating_levels"].get(rating, table.columns))
    return table.fillna(0.0)


# =============================================================================
# Core DataFrame Preparation
# =============================================================================

def _to_ordered_rating(series: pd.Series, labels: Optional[List[str]], name: str) -> tuple[pd.Series, List[str]]:
    """Convert a rating column to an ordered categorical over ``labels``."""
    if labels is None:
        if isinstance(series.dtype, pd.CategoricalDtype):
            labels = [str(c) for c in series.cat.categories]
        else:
            values = series.dropna().unique()
            if pd.api.types.is_numeric_dtype(series):
                labels = [str(v) for v in sorted(values)]
            else:
                labels = sorted(str(v) for v in values)

    labels = [str(l) for l in labels]
    values = series.copy()

    # Numeric codes 1..k map onto the label order
    if pd.api.types.is_numeric_dtype(values) and not set(values.dropna().astype(str)) <= set(labels):
        codes = values.dropna()
        if not np.all(np.isin(codes, np.arange(1, len(labels) + 1))):
            raise ValueError(
                f"Rating '{name}' has numeric values outside 1..{len(labels)}: "
                f"{sorted(set(codes) - set(range(1, len(labels) + 1)))}"
            )
        values = values.map(lambda v: labels[int(v) - 1] if pd.notna(v) else np.nan)
    else:
        values = values.map(lambda v: str(v) if pd.notna(v) else np.nan)

    unknown = set(values.dropna()) - set(labels)
    if unknown:
        raise ValueError(f"Rating '{name}' has values not in its category labels: {sorted(unknown)}")

    return pd.Series(pd.Categorical(values, categories=labels, ordered=True), index=series.index), labels


def prepare_survey_data(
    df: pd.DataFrame,
    rating_cols: List[str],
    id_col: str = "subject_id",
    position_col: str = "position",
    sex_col: str = "sex",
    sample_col: str = "sample",
    position_levels: Optional[List[str]] = None,
    rating_levels: Optional[Mapping[str, List[str]]] = None,
) -> SurveyDataset:
    """
    Prepare a cleaned survey DataFrame for statistical analysis.

    :param df: DataFrame with one row per response
    :param rating_cols: Ordinal rating columns to analyse
    :param id_col: Subject identifier column
    :param position_col: Wearing position column
    :param sex_col: Demographic sex column
    :param sample_col: Sample location column
    :param position_levels: Fixed, ordered set of wearing positions
    :param rating_levels: Ordered category labels per rating column
    :returns: SurveyDataset dictionary ready for wearstats functions
    :raises ValueError: If columns are missing or values fall outside the level sets

    Example:
        >>> ds = prepare_survey_data(raw, ["comfort"], id_col="Id",
        ...                          position_levels=["Wrist", "Chest"])
        >>> fit = fit_clmm(ds, build_formula_set("comfort", ds)[4])
    """
    required = [id_col, position_col, sex_col, sample_col]
    missing = [c for c in required + list(rating_cols) if c not in df.columns]
    if missing:
        raise ValueError(f"Columns not found in DataFrame: {missing}. "
                         f"Available columns: {list(df.columns)}")

    df = df.copy()
    rating_levels = dict(rating_levels or {})

    # Wearing position: fixed level set, values outside it are an error
    positions = df[position_col].astype(str)
    if position_levels is None:
        position_levels = sorted(positions.unique())
    position_levels = [str(p) for p in position_levels]
    unknown = set(positions.unique()) - set(position_levels)
    if unknown:
        raise ValueError(f"Position values not in the configured level set: {sorted(unknown)}")
    df[position_col] = pd.Categorical(positions, categories=position_levels)

    # Missing demographics stay missing; the fits drop those rows
    for col in (sex_col, sample_col):
        values = df[col].map(lambda v: v if pd.isna(v) else str(v))
        n_missing = int(values.isna().sum())
        if n_missing:
            warnings.warn(f"{n_missing} rows with missing '{col}' are left out of the covariate models")
        df[col] = pd.Categorical(values, categories=sorted(values.dropna().unique()))

    levels_out: Dict[str, List[str]] = {}
    for col in rating_cols:
        df[col], levels_out[col] = _to_ordered_rating(df[col], rating_levels.get(col), col)

    if id_col != "subject_id":
        df = df.rename(columns={id_col: "subject_id"})
    df["subject_id"] = df["subject_id"].astype(str)

    df = df.sort_values(["subject_id", position_col]).reset_index(drop=True)

    return create_survey_dataset(
        data=df,
        rating_vars=list(rating_cols),
        id_var="subject_id",
        position_var=position_col,
        sex_var=sex_col,
        sample_var=sample_col,
        position_levels=position_levels,
        rating_levels=levels_out,
    )
