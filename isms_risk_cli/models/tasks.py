from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from isms_risk_cli.models.risks import Risk


@dataclass
class ImprovementActionForm:
    title: str
    description: str = ""
    responsible_person: str = ""
    target_date: Optional[str] = None
    priority: str = "medium"
    estimated_cost: Optional[float] = None

    @classmethod
    def from_risk(cls, risk: Risk) -> "ImprovementActionForm":
        return cls(
            title=f"Mitigazione: {risk.name}",
            description=risk.treatment_description or "",
            responsible_person=risk.treatment_responsible or "",
            target_date=risk.treatment_deadline,
            estimated_cost=risk.treatment_cost,
        )


@dataclass
class TrainingRecordForm:
    employee_name: str
    training_title: str
    training_type: str = "security_awareness"
    training_date: Optional[str] = None
    notes: str = ""

    @classmethod
    def from_risk(cls, risk: Risk) -> "TrainingRecordForm":
        return cls(
            employee_name=risk.treatment_responsible or "",
            training_title=f"Formazione su: {risk.name}",
            training_date=risk.treatment_deadline,
            notes=f"Formazione derivata dal piano di trattamento del rischio: {risk.name}",
        )


@dataclass
class ImprovementAction:
    id: str
    action_code: str
    title: str
    source_id: str
    target_date: str
    implementation_status: str
    effectiveness_verified: bool


@dataclass
class TrainingRecord:
    id: str
    training_title: str
    employee_name: str
    training_date: str
    status: str
    certificate_issued: bool
