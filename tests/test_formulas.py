import pytest

from wearstats import MODEL_NAMES, build_formula_set, get_model_spec, has_interaction, is_nested


def test_family_order_and_names():
    formulas = build_formula_set("comfort")

    assert [s["name"] for s in formulas] == ["m1", "m2", "m3", "m4", "m5", "m0"]
    assert MODEL_NAMES == ["m1", "m2", "m3", "m4", "m5", "m0"]


def test_formula_strings():
    formulas = {s["name"]: s for s in build_formula_set("comfort")}

    assert formulas["m1"]["formula"] == "comfort ~ position * sex + sample + (1 | subject_id)"
    assert formulas["m2"]["fixed"] == "position + sex + sample"
    assert formulas["m3"]["fixed"] == "position + sample"
    assert formulas["m4"]["fixed"] == "position * sex"
    assert formulas["m5"]["fixed"] == "position"
    assert formulas["m0"]["formula"] == "comfort ~ 1 + (1 | subject_id)"


def test_subset_flags():
    flags = {s["name"]: s["uses_subset"] for s in build_formula_set("comfort")}

    assert flags == {"m1": True, "m2": True, "m3": True, "m4": True, "m5": False, "m0": False}


def test_nesting_of_compared_pairs():
    f = {s["name"]: s for s in build_formula_set("comfort")}

    for full, reduced in [("m1", "m2"), ("m2", "m3"), ("m1", "m4"), ("m5", "m0"), ("m4", "m5")]:
        assert is_nested(f[reduced], f[full]), f"{reduced} should be nested in {full}"
    assert not is_nested(f["m4"], f["m2"])
    assert not is_nested(f["m3"], f["m4"])


def test_custom_column_names():
    columns = {"position": "pos", "sex": "gender", "sample": "site", "subject": "pid"}
    m1 = build_formula_set("rating", columns=columns)[0]

    assert m1["formula"] == "rating ~ pos * gender + site + (1 | pid)"
    assert m1["terms"] == ["pos", "gender", "pos:gender", "site"]
    assert has_interaction(m1)


def test_missing_response_raises(small_ds):
    with pytest.raises(ValueError, match="not found"):
        build_formula_set("not_a_rating", small_ds)


def test_unknown_model_raises():
    with pytest.raises(ValueError, match="Unknown model"):
        get_model_spec(build_formula_set("comfort"), "m9")
