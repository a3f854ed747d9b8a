"""
Parameter Configuration
=======================

Declarative definitions for every survey parameter (rating scale) analysed
in the light-logger form-factor study.

This module centralizes the analysis design to:
1. Replace the per-parameter copy of the same modelling pipeline
2. Enable batch processing via the runner
3. Record the analyst's model choice per parameter in one place

Each parameter is defined as a ParameterConfig dict with:
- name: Short descriptive name
- description: Survey item and rationale
- rating: Rating column name in the cleaned data
- levels: Ordered response-category labels (lowest first)
- selected_model: Model used for the significance matrix and predictions.
  This is the analyst's decision after reading the comparison table
  (m5 when neither sex, interaction nor sample is supported; m4 when the
  interaction or sex is supported but sample is not; ...). It is never
  derived from the p-values automatically.
"""

import os
from typing import Any, Dict, List


ParameterConfig = Dict[str, Any]


# =============================================================================
# Data layout
# =============================================================================

DATA_PATH_ENV = "WEARSTATS_DATA_PATH"
DEFAULT_DATA_PATH = os.getenv(DATA_PATH_ENV, "data/cleaned/LightLogger_survey_long.csv")

SUBJECT_COL = "id"
POSITION_COL = "position"
SEX_COL = "sex"
SAMPLE_COL = "sample"

POSITION_LEVELS: List[str] = [
    "Wrist",
    "Upper arm",
    "Chest",
    "Necklace",
    "Glasses",
    "Headband",
    "Ear",
    "Hat",
]

# Sex category dropped from every model that carries sex
EXCLUDED_SEX = ["Other"]


# =============================================================================
# Analysis constants
# =============================================================================

N_MODEL_COMPARISONS = 4          # Interaction, Sex, Sample, Position
N_POSITION_COMPARISONS = 7       # Contrasts per reference position
ALPHA = 0.05
N_AGQ = 10                       # Adaptive Gauss-Hermite quadrature points
LINK = "logit"
PERCENTILES = (0.05, 0.95)       # Between-subject percentiles for predictions
PERCENTILE_METHOD = "literal"


AGREEMENT_5 = ["Strongly disagree", "Disagree", "Neutral", "Agree", "Strongly agree"]
LIKELIHOOD_7 = [
    "Extremely unlikely",
    "Unlikely",
    "Somewhat unlikely",
    "Neutral",
    "Somewhat likely",
    "Likely",
    "Extremely likely",
]
COMFORT_5 = [
    "Very uncomfortable",
    "Uncomfortable",
    "Neutral",
    "Comfortable",
    "Very comfortable",
]


PARAMETERS: Dict[str, ParameterConfig] = {
    "comfort": {
        "name": "Comfort",
        "description": """
        How comfortable would it be to wear the light logger at this position
        for a full day?
        """,
        "rating": "comfort",
        "levels": COMFORT_5,
        "selected_model": "m5",
    },
    "appearance": {
        "name": "Appearance",
        "description": """
        I would like the way the light logger looks at this position.
        """,
        "rating": "appearance",
        "levels": AGREEMENT_5,
        "selected_model": "m4",
    },
    "social_acceptability": {
        "name": "Social acceptability",
        "description": """
        I would feel comfortable wearing the light logger at this position
        around other people.
        """,
        "rating": "social_acceptability",
        "levels": AGREEMENT_5,
        "selected_model": "m5",
    },
    "attention": {
        "name": "Attention drawn",
        "description": """
        Wearing the light logger at this position would draw attention to me.
        """,
        "rating": "attention",
        "levels": AGREEMENT_5,
        "selected_model": "m5",
    },
    "interference": {
        "name": "Interference with activities",
        "description": """
        The light logger at this position would interfere with my daily
        activities (work, sports, eating).
        """,
        "rating": "interference",
        "levels": AGREEMENT_5,
        "selected_model": "m5",
    },
    "handling": {
        "name": "Ease of handling",
        "description": """
        Putting on and taking off the light logger at this position would be easy.
        """,
        "rating": "handling",
        "levels": AGREEMENT_5,
        "selected_model": "m5",
    },
    "wear_day": {
        "name": "Willingness (one day)",
        "description": """
        How likely would you be to wear the light logger at this position
        for one day?
        """,
        "rating": "wear_day",
        "levels": LIKELIHOOD_7,
        "selected_model": "m5",
    },
    "wear_week": {
        "name": "Willingness (one week)",
        "description": """
        How likely would you be to wear the light logger at this position
        for one week?
        """,
        "rating": "wear_week",
        "levels": LIKELIHOOD_7,
        "selected_model": "m4",
    },
    "wear_month": {
        "name": "Willingness (one month)",
        "description": """
        How likely would you be to wear the light logger at this position
        for one month?
        """,
        "rating": "wear_month",
        "levels": LIKELIHOOD_7,
        "selected_model": "m5",
    },
    "privacy": {
        "name": "Privacy concern",
        "description": """
        A light logger at this position would make me worry about my privacy.
        """,
        "rating": "privacy",
        "levels": AGREEMENT_5,
        "selected_model": "m5",
    },
}


def get_parameter(parameter_id: str) -> ParameterConfig:
    """Get configuration for a specific parameter."""
    if parameter_id not in PARAMETERS:
        raise ValueError(f"Unknown parameter: {parameter_id}. Available: {list(PARAMETERS.keys())}")
    return PARAMETERS[parameter_id]


def list_parameters() -> List[str]:
    """List all available parameter IDs."""
    return list(PARAMETERS.keys())
