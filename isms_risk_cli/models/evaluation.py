from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, List, Optional, Union

from isms_risk_cli.models.risks import Risk, RiskSnapshot
from isms_risk_cli.models.threats import Threat
from isms_risk_cli.scoring import validate_rating

DEFAULT_TREATMENT_STRATEGY = "Mitigazione"


@dataclass(frozen=True)
class AssessmentStage:
    name: ClassVar[str] = "assessment"


@dataclass(frozen=True)
class TreatmentStage:
    name: ClassVar[str] = "treatment"


@dataclass(frozen=True)
class SummaryStage:
    saved: bool = False
    name: ClassVar[str] = "summary"


Stage = Union[AssessmentStage, TreatmentStage, SummaryStage]


@dataclass
class InherentRatings:
    probability: Optional[int] = None
    operational_impact: Optional[int] = None
    economic_impact: Optional[int] = None
    legal_impact: Optional[int] = None


@dataclass
class TreatmentDraft:
    plan: str = ""
    strategy: str = DEFAULT_TREATMENT_STRATEGY
    cost: Optional[float] = None
    deadline: Optional[str] = None
    responsible: Optional[str] = None
    residual_probability: Optional[int] = None
    residual_impact: Optional[int] = None


@dataclass
class EvaluationSession:
    """In-progress evaluation of one risk; never persisted as such."""

    threat: Threat
    ratings: InherentRatings = field(default_factory=InherentRatings)
    selected_controls: List[str] = field(default_factory=list)
    treatment: TreatmentDraft = field(default_factory=TreatmentDraft)
    stage: Stage = field(default_factory=AssessmentStage)
    asset_id: Optional[str] = None
    risk: Optional[Risk] = None
    closed: bool = False

    @property
    def is_editing(self) -> bool:
        return self.risk is not None and self.risk.id is not None

    def rate_inherent(
        self,
        probability: Optional[int] = None,
        operational_impact: Optional[int] = None,
        economic_impact: Optional[int] = None,
        legal_impact: Optional[int] = None,
    ) -> None:
        self.ratings = InherentRatings(
            probability=validate_rating(probability, "Probability"),
            operational_impact=validate_rating(operational_impact, "Operational impact"),
            economic_impact=validate_rating(economic_impact, "Economic impact"),
            legal_impact=validate_rating(legal_impact, "Legal impact"),
        )

    def rate_residual(
        self,
        probability: Optional[int] = None,
        impact: Optional[int] = None,
    ) -> None:
        self.treatment.residual_probability = validate_rating(probability, "Residual probability")
        self.treatment.residual_impact = validate_rating(impact, "Residual impact")

    def toggle_control(self, control_id: str) -> None:
        if control_id in self.selected_controls:
            self.selected_controls.remove(control_id)
        else:
            self.selected_controls.append(control_id)

    def snapshot(self) -> RiskSnapshot:
        return RiskSnapshot(
            inherent_probability=self.ratings.probability,
            operational_impact=self.ratings.operational_impact,
            economic_impact=self.ratings.economic_impact,
            legal_impact=self.ratings.legal_impact,
            treatment_plan=self.treatment.plan.strip() or None,
            residual_probability=self.treatment.residual_probability,
            residual_impact=self.treatment.residual_impact,
        )

    def reset(self) -> None:
        self.ratings = InherentRatings()
        self.selected_controls = []
        self.treatment = TreatmentDraft()
        self.stage = AssessmentStage()
