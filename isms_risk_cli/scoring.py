"""Risk scoring model.

Inherent score is probability times the worst of the three impact
dimensions; residual score is the plain product of the residual ratings.
Every function returns ``None`` when its inputs are incomplete instead of
defaulting to zero.
"""
from __future__ import annotations

import math
from typing import Optional

from isms_risk_cli.exceptions import ValidationError
from isms_risk_cli.models.risks import (
    STATUS_ASSESSED,
    STATUS_IDENTIFIED,
    STATUS_IN_TREATMENT,
    RiskSnapshot,
)

CRITICAL = "Critical"
HIGH = "High"
MEDIUM = "Medium"
LOW = "Low"

LEVELS = (CRITICAL, HIGH, MEDIUM, LOW)

# Lower bound of each band, highest first. Fixed policy, not a parameter.
_BANDS = ((17, CRITICAL), (13, HIGH), (7, MEDIUM))

MIN_RATING = 1
MAX_RATING = 5

PROBABILITY_SCALE = {
    1: ("Molto Bassa", "<5% annuo"),
    2: ("Bassa", "5-25% annuo"),
    3: ("Media", "25-50% annuo"),
    4: ("Alta", "50-75% annuo"),
    5: ("Molto Alta", ">75% annuo"),
}

IMPACT_SCALE = {
    1: ("Trascurabile", "Minimo impatto"),
    2: ("Limitato", "Impatto gestibile"),
    3: ("Significativo", "Impatto rilevante"),
    4: ("Grave", "Impatto serio"),
    5: ("Critico", "Impatto catastrofico"),
}


def classify(score: int) -> str:
    for lower_bound, level in _BANDS:
        if score >= lower_bound:
            return level
    return LOW


def classify_optional(score: Optional[int]) -> Optional[str]:
    return None if score is None else classify(score)


def combined_impact(
    operational: Optional[int],
    economic: Optional[int],
    legal: Optional[int],
) -> Optional[int]:
    """Worst impact dimension; absent dimensions are left out, not counted as 1."""
    present = [value for value in (operational, economic, legal) if value]
    return max(present) if present else None


def inherent_score(
    probability: Optional[int],
    operational_impact: Optional[int],
    economic_impact: Optional[int],
    legal_impact: Optional[int],
) -> Optional[int]:
    impact = combined_impact(operational_impact, economic_impact, legal_impact)
    if not probability or impact is None:
        return None
    return probability * impact


def residual_score(
    residual_probability: Optional[int],
    residual_impact: Optional[int],
) -> Optional[int]:
    if not residual_probability or not residual_impact:
        return None
    return residual_probability * residual_impact


def reduction_percentage(
    inherent: Optional[int],
    residual: Optional[int],
) -> Optional[int]:
    if not inherent or residual is None:
        return None
    # Halves round up.
    return int(math.floor(100 * (1 - residual / inherent) + 0.5))


def validate_rating(value: Optional[int], field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer between 1 and 5.")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            f"{field_name} must be between {MIN_RATING} and {MAX_RATING}, got {value}."
        )
    return value


def derive_status(snapshot: RiskSnapshot) -> str:
    """Status is recomputed from scratch on every save.

    It is not monotonic: clearing the treatment plan on a later save moves a
    risk from "In trattamento" back to "Valutato".
    """
    if snapshot.treatment_plan and snapshot.residual_probability and snapshot.residual_impact:
        return STATUS_IN_TREATMENT
    impact = combined_impact(
        snapshot.operational_impact, snapshot.economic_impact, snapshot.legal_impact,
    )
    if snapshot.inherent_probability and impact is not None:
        return STATUS_ASSESSED
    return STATUS_IDENTIFIED
