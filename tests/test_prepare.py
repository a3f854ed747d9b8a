import numpy as np
import pandas as pd
import pytest

from wearstats import (
    apply_row_filter,
    describe_dataset,
    get_n_observations,
    get_n_subjects,
    get_obs_per_subject,
    make_exclusion_filter,
    prepare_survey_data,
    rating_distribution,
    subset_dataset,
)


LEVELS = ["Low", "Mid", "High"]


def _raw():
    return pd.DataFrame({
        "Id": [1, 1, 2, 2, 3, 3],
        "position": ["Wrist", "Chest"] * 3,
        "sex": ["Female", "Female", "Male", "Male", "Other", "Other"],
        "sample": ["Germany", "Germany", "Sweden", "Sweden", "Germany", "Germany"],
        "comfort": ["Low", "High", "Mid", "Mid", "High", np.nan],
    })


def test_prepare_builds_categoricals_and_renames_id():
    ds = prepare_survey_data(_raw(), ["comfort"], id_col="Id",
                             position_levels=["Wrist", "Chest", "Hat"],
                             rating_levels={"comfort": LEVELS})
    df = ds["data"]

    assert ds["id_var"] == "subject_id"
    assert "subject_id" in df.columns and "Id" not in df.columns
    assert df["subject_id"].tolist()[:2] == ["1", "1"]
    assert list(df["position"].cat.categories) == ["Wrist", "Chest", "Hat"]
    assert df["comfort"].cat.ordered
    assert list(df["comfort"].cat.categories) == LEVELS
    assert ds["rating_levels"]["comfort"] == LEVELS


def test_prepare_maps_numeric_codes_to_labels():
    raw = _raw()
    raw["comfort"] = [1, 3, 2, 2, 3, np.nan]
    ds = prepare_survey_data(raw, ["comfort"], id_col="Id", rating_levels={"comfort": LEVELS})

    wrist_s1 = ds["data"].query("subject_id == '1' and position == 'Wrist'")["comfort"].iloc[0]
    assert wrist_s1 == "Low"


def test_prepare_rejects_unknown_position():
    with pytest.raises(ValueError, match="Position values"):
        prepare_survey_data(_raw(), ["comfort"], id_col="Id", position_levels=["Wrist"])


def test_prepare_rejects_unknown_rating_value():
    with pytest.raises(ValueError, match="not in its category labels"):
        prepare_survey_data(_raw(), ["comfort"], id_col="Id", rating_levels={"comfort": ["Low", "Mid"]})


def test_prepare_rejects_missing_columns():
    with pytest.raises(ValueError, match="Columns not found"):
        prepare_survey_data(_raw().drop(columns=["sample"]), ["comfort"], id_col="Id")


def test_counts_and_obs_per_subject():
    ds = prepare_survey_data(_raw(), ["comfort"], id_col="Id", rating_levels={"comfort": LEVELS})

    assert get_n_subjects(ds) == 3
    assert get_n_observations(ds) == 6
    assert get_obs_per_subject(ds).tolist() == [2, 2, 2]


def test_exclusion_filter_drops_rows_and_unused_categories():
    ds = prepare_survey_data(_raw(), ["comfort"], id_col="Id", rating_levels={"comfort": LEVELS})
    keep = make_exclusion_filter("sex", ["Other"])

    filtered = apply_row_filter(ds["data"], keep)

    assert "Other" not in filtered["sex"].astype(str).tolist()
    assert list(filtered["sex"].cat.categories) == ["Female", "Male"]
    assert len(ds["data"]) == 6  # source untouched
    assert keep.description == "sex not in ['Other']"


def test_subset_dataset_keeps_metadata():
    ds = prepare_survey_data(_raw(), ["comfort"], id_col="Id", rating_levels={"comfort": LEVELS})
    sub = subset_dataset(ds, subset=make_exclusion_filter("sex", ["Other"]))

    assert get_n_subjects(sub) == 2
    assert sub["position_levels"] == ds["position_levels"]
    assert sub["rating_levels"] == ds["rating_levels"]


def test_rating_distribution_rows_sum_to_one():
    ds = prepare_survey_data(_raw(), ["comfort"], id_col="Id", rating_levels={"comfort": LEVELS})
    table = rating_distribution(ds, "comfort")

    assert list(table.columns) == LEVELS
    np.testing.assert_allclose(table.sum(axis=1).to_numpy(), 1.0)


def test_describe_dataset_mentions_subjects():
    ds = prepare_survey_data(_raw(), ["comfort"], id_col="Id", rating_levels={"comfort": LEVELS})
    text = describe_dataset(ds)

    assert "Subjects: 3" in text
    assert "Responses: 6" in text


def test_missing_sex_is_not_a_level():
    raw = _raw()
    raw.loc[raw["Id"] == 2, "sex"] = np.nan

    with pytest.warns(UserWarning, match="2 rows with missing 'sex'"):
        ds = prepare_survey_data(raw, ["comfort"], id_col="Id",
                                 position_levels=["Wrist", "Chest"],
                                 rating_levels={"comfort": LEVELS})
    df = ds["data"]

    assert list(df["sex"].cat.categories) == ["Female", "Other"]
    assert df["sex"].isna().sum() == 2
    assert list(df["sample"].cat.categories) == ["Germany", "Sweden"]
