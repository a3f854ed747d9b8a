"""
Model Formula Family
====================

The six nested cumulative-link mixed model formulas fitted for every
rating scale. The family is a closed, ordered enumeration; each entry lists
the fixed-effect terms it contains so nesting can be checked mechanically.

    m1  rating ~ position * sex + sample + (1 | subject_id)
    m2  rating ~ position + sex + sample + (1 | subject_id)
    m3  rating ~ position + sample       + (1 | subject_id)
    m4  rating ~ position * sex          + (1 | subject_id)
    m5  rating ~ position                + (1 | subject_id)
    m0  rating ~ 1                       + (1 | subject_id)

Nesting: m1 ⊃ m2 ⊃ m3 and m1 ⊃ m4 ⊃ m5 ⊃ m0.

Models carrying sex (and m3, which is tested against m2) are fitted on the
subset that excludes the "Other" sex category; m5 and m0 use all rows.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .prepare import SurveyDataset


ModelSpec = Dict[str, Any]


# Term placeholders are resolved against the dataset's column names
MODEL_FAMILY: tuple[Dict[str, Any], ...] = (
    {
        "name": "m1",
        "label": "Position x sex interaction + sample",
        "terms": ("position", "sex", "position:sex", "sample"),
        "uses_subset": True,
    },
    {
        "name": "m2",
        "label": "Main effects + sample",
        "terms": ("position", "sex", "sample"),
        "uses_subset": True,
    },
    {
        "name": "m3",
        "label": "Position + sample (no sex)",
        "terms": ("position", "sample"),
        "uses_subset": True,
    },
    {
        "name": "m4",
        "label": "Position x sex interaction (no sample)",
        "terms": ("position", "sex", "position:sex"),
        "uses_subset": True,
    },
    {
        "name": "m5",
        "label": "Position only",
        "terms": ("position",),
        "uses_subset": False,
    },
    {
        "name": "m0",
        "label": "Null (random intercept only)",
        "terms": (),
        "uses_subset": False,
    },
)

MODEL_NAMES: List[str] = [m["name"] for m in MODEL_FAMILY]


def _resolve_terms(terms: tuple, columns: Dict[str, str]) -> List[str]:
    resolved = []
    for term in terms:
        parts = [columns[p] for p in term.split(":")]
        resolved.append(":".join(parts))
    return resolved


def _fixed_part(terms: List[str], columns: Dict[str, str]) -> str:
    """Render the fixed-effects part in patsy syntax."""
    if not terms:
        return "1"
    pos, sex = columns["position"], columns["sex"]
    interaction = f"{pos}:{sex}"
    pieces = []
    if interaction in terms:
        pieces.append(f"{pos} * {sex}")
    for term in terms:
        if interaction in terms and term in (pos, sex, interaction):
            continue
        pieces.append(term)
    return " + ".join(pieces)


def build_formula_set(
    response: str,
    ds: Optional[SurveyDataset] = None,
    columns: Optional[Dict[str, str]] = None,
) -> List[ModelSpec]:
    """
    Build the six nested model definitions for one rating variable.

    :param response: Rating column name
    :param ds: SurveyDataset providing the factor column names
    :param columns: Explicit mapping {"position", "sex", "sample", "subject"} -> column
    :returns: List of ModelSpec dicts in the order m1, m2, m3, m4, m5, m0
    """
    if columns is None:
        if ds is None:
            columns = {"position": "position", "sex": "sex", "sample": "sample", "subject": "subject_id"}
        else:
            columns = {
                "position": ds["position_var"],
                "sex": ds["sex_var"],
                "sample": ds["sample_var"],
                "subject": ds["id_var"],
            }

    if ds is not None and response not in ds["data"].columns:
        raise ValueError(f"Rating '{response}' not found in dataset")

    specs = []
    for entry in MODEL_FAMILY:
        terms = _resolve_terms(entry["terms"], columns)
        fixed = _fixed_part(terms, columns)
        specs.append({
            "name": entry["name"],
            "label": entry["label"],
            "response": response,
            "fixed": fixed,
            "terms": terms,
            "group": columns["subject"],
            "formula": f"{response} ~ {fixed} + (1 | {columns['subject']})",
            "uses_subset": entry["uses_subset"],
        })
    return specs


def get_model_spec(formulas: List[ModelSpec], name: str) -> ModelSpec:
    """Look up one model definition by name (m0..m5)."""
    for spec in formulas:
        if spec["name"] == name:
            return spec
    raise ValueError(f"Unknown model: {name}. Available: {[s['name'] for s in formulas]}")


def is_nested(reduced: ModelSpec, full: ModelSpec) -> bool:
    """True when every fixed term of ``reduced`` is also in ``full``."""
    return set(reduced["terms"]) <= set(full["terms"]) and reduced["group"] == full["group"]


def has_interaction(spec: ModelSpec) -> bool:
    """True when the model carries a two-factor interaction term."""
    return any(":" in term for term in spec["terms"])
