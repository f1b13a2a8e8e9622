from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

STATUS_IDENTIFIED = "Identificato"
STATUS_ASSESSED = "Valutato"
STATUS_IN_TREATMENT = "In trattamento"

RISK_STATUSES = (STATUS_IDENTIFIED, STATUS_ASSESSED, STATUS_IN_TREATMENT)


@dataclass
class Risk:
    id: Optional[str]
    risk_id: str
    name: str
    description: str = ""
    risk_type: str = "scenario"
    threat_id: Optional[str] = None
    asset_id: Optional[str] = None
    organization_id: Optional[str] = None
    inherent_probability: Optional[int] = None
    inherent_impact: Optional[int] = None
    inherent_risk_score: Optional[int] = None
    inherent_risk_level: Optional[str] = None
    residual_probability: Optional[int] = None
    residual_impact: Optional[int] = None
    residual_risk_score: Optional[int] = None
    residual_risk_level: Optional[str] = None
    treatment_strategy: Optional[str] = None
    treatment_description: Optional[str] = None
    treatment_cost: Optional[float] = None
    treatment_deadline: Optional[str] = None
    treatment_responsible: Optional[str] = None
    related_controls: List[str] = field(default_factory=list)
    status: str = STATUS_IDENTIFIED
    scope: Optional[str] = None


@dataclass(frozen=True)
class RiskSnapshot:
    """The fields status derivation looks at, taken at save time."""

    inherent_probability: Optional[int] = None
    operational_impact: Optional[int] = None
    economic_impact: Optional[int] = None
    legal_impact: Optional[int] = None
    treatment_plan: Optional[str] = None
    residual_probability: Optional[int] = None
    residual_impact: Optional[int] = None
