"""Three-stage risk evaluation: assessment, treatment, summary.

Stage transitions are synchronous and never touch the backend. Only
``handle_submit`` persists, either as a quick save (assessment or treatment)
or as the full save offered by the summary stage.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from isms_risk_cli.audit_log import AuditLogger, run_post_commit_hooks
from isms_risk_cli.client import BackendClient
from isms_risk_cli.exceptions import ApiError, IsmsRiskError, PreconditionError, WorkflowError
from isms_risk_cli.models.evaluation import (
    DEFAULT_TREATMENT_STRATEGY,
    AssessmentStage,
    EvaluationSession,
    InherentRatings,
    Stage,
    SummaryStage,
    TreatmentDraft,
    TreatmentStage,
)
from isms_risk_cli.models.risks import Risk
from isms_risk_cli.models.threats import Threat
from isms_risk_cli.notifications import Notifier
from isms_risk_cli.organization import OrganizationContext
from isms_risk_cli.risks import RiskRegister, parse_risk
from isms_risk_cli.scoring import (
    classify_optional,
    combined_impact,
    derive_status,
    inherent_score,
    residual_score,
)
from isms_risk_cli.threats import ThreatCatalog

logger = logging.getLogger(__name__)

_TABLE = "risks"


@dataclass
class SaveOutcome:
    saved: bool
    risk: Optional[Risk] = None
    closed: bool = False
    error: Optional[str] = None


class RiskEvaluationWorkflow:
    def __init__(
        self,
        client: BackendClient,
        organization: OrganizationContext,
        audit_log: AuditLogger,
        notifier: Notifier,
        threats: ThreatCatalog,
        register: RiskRegister,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.organization = organization
        self.audit_log = audit_log
        self.notifier = notifier
        self.threats = threats
        self.register = register
        self._clock = clock

    def start(self, threat_id: str, asset_id: Optional[str] = None) -> EvaluationSession:
        threat = self.threats.get_threat(threat_id)
        return EvaluationSession(threat=threat, asset_id=asset_id)

    def edit(self, risk_id: str) -> EvaluationSession:
        """Open an existing risk for re-evaluation.

        Only the combined inherent impact is stored, so it is loaded into all
        three impact dimensions.
        """
        risk = self.register.get_risk(risk_id)
        threat = self._threat_for(risk)
        impact = risk.inherent_impact
        return EvaluationSession(
            threat=threat,
            ratings=InherentRatings(
                probability=risk.inherent_probability,
                operational_impact=impact,
                economic_impact=impact,
                legal_impact=impact,
            ),
            selected_controls=list(risk.related_controls),
            treatment=TreatmentDraft(
                plan=risk.treatment_description or "",
                strategy=risk.treatment_strategy or DEFAULT_TREATMENT_STRATEGY,
                cost=risk.treatment_cost,
                deadline=risk.treatment_deadline,
                responsible=risk.treatment_responsible,
                residual_probability=risk.residual_probability,
                residual_impact=risk.residual_impact,
            ),
            asset_id=risk.asset_id,
            risk=risk,
        )

    @staticmethod
    def can_proceed_to_treatment(session: EvaluationSession) -> bool:
        r = session.ratings
        return bool(r.probability and r.operational_impact and r.economic_impact and r.legal_impact)

    @classmethod
    def can_proceed_to_summary(cls, session: EvaluationSession) -> bool:
        t = session.treatment
        return bool(
            cls.can_proceed_to_treatment(session)
            and session.selected_controls
            and t.residual_probability
            and t.residual_impact
        )

    def advance(self, session: EvaluationSession) -> Stage:
        if isinstance(session.stage, AssessmentStage):
            if not self.can_proceed_to_treatment(session):
                raise WorkflowError(
                    "Rate the probability and all three impact dimensions before treatment."
                )
            session.stage = TreatmentStage()
        elif isinstance(session.stage, TreatmentStage):
            if not self.can_proceed_to_summary(session):
                raise WorkflowError(
                    "Select at least one control and rate the residual probability and impact."
                )
            session.stage = SummaryStage()
        else:
            raise WorkflowError("The summary is the last stage.")
        return session.stage

    def back(self, session: EvaluationSession) -> Stage:
        if isinstance(session.stage, SummaryStage):
            session.stage = TreatmentStage()
        elif isinstance(session.stage, TreatmentStage):
            session.stage = AssessmentStage()
        return session.stage

    def close(self, session: EvaluationSession) -> None:
        session.reset()
        session.closed = True

    def handle_submit(self, session: EvaluationSession, quick_save: bool) -> SaveOutcome:
        try:
            self._check_save_allowed(session, quick_save)
            risk = self._persist(session)
        except IsmsRiskError as exc:
            if isinstance(exc, ApiError):
                logger.error("Saving risk for threat %s failed: %s", session.threat.threat_id, exc)
            self.notifier.error("Errore nel salvataggio", str(exc))
            return SaveOutcome(saved=False, error=str(exc))

        self.notifier.success(
            "Rischio salvato con successo",
            f"{risk.name} - {risk.inherent_risk_level or 'non valutato'}",
        )

        if quick_save and isinstance(session.stage, AssessmentStage):
            self.close(session)
            return SaveOutcome(saved=True, risk=risk, closed=True)
        if not quick_save:
            session.stage = SummaryStage(saved=True)
        return SaveOutcome(saved=True, risk=risk)

    @staticmethod
    def _check_save_allowed(session: EvaluationSession, quick_save: bool) -> None:
        if session.closed:
            raise WorkflowError("The evaluation has been closed.")
        if quick_save and isinstance(session.stage, SummaryStage):
            raise WorkflowError("Use the full save from the summary stage.")
        if not quick_save and not isinstance(session.stage, SummaryStage):
            raise WorkflowError("The full save is only available from the summary stage.")

    def _persist(self, session: EvaluationSession) -> Risk:
        values = build_risk_values(session)
        previous = session.risk

        if previous is not None and previous.id is not None:
            row = self.client.update(_TABLE, previous.id, values)
            action = "update"
            old_values: Optional[Dict[str, Any]] = asdict(previous)
        else:
            organization_id = self.organization.require()
            values.update({
                "risk_id": f"RISK-{int(self._clock() * 1000)}",
                "organization_id": organization_id,
                "scope": "Organizzazione",
            })
            row = self.client.insert(_TABLE, values)
            action = "create"
            old_values = None

        risk = parse_risk(row)
        session.risk = risk
        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                action, "risk", risk.id, risk.name,
                old_values=old_values, new_values=row,
            ),
        ])
        return risk

    def _threat_for(self, risk: Risk) -> Threat:
        if risk.threat_id:
            try:
                return self.threats.get_threat(risk.threat_id)
            except PreconditionError:
                logger.warning("Threat %s of risk %s no longer exists", risk.threat_id, risk.risk_id)
        return Threat(
            threat_id=risk.threat_id or "",
            name=risk.name,
            description=risk.description,
            category="",
        )


def build_risk_values(session: EvaluationSession) -> Dict[str, Any]:
    """Column values for the risks table derived from the session.

    Residual columns are written together or not at all.
    """
    r = session.ratings
    t = session.treatment
    impact = combined_impact(r.operational_impact, r.economic_impact, r.legal_impact)
    inherent = inherent_score(r.probability, r.operational_impact, r.economic_impact, r.legal_impact)
    residual = residual_score(t.residual_probability, t.residual_impact)

    values: Dict[str, Any] = {
        "inherent_probability": _as_text(r.probability),
        "inherent_impact": _as_text(impact),
        "inherent_risk_score": inherent,
        "inherent_risk_level": classify_optional(inherent),
        "residual_probability": _as_text(t.residual_probability) if residual else None,
        "residual_impact": _as_text(t.residual_impact) if residual else None,
        "residual_risk_score": residual,
        "residual_risk_level": classify_optional(residual),
        "treatment_strategy": t.strategy or None,
        "treatment_description": t.plan.strip() or None,
        "treatment_cost": t.cost,
        "treatment_deadline": t.deadline or None,
        "treatment_responsible": (t.responsible or "").strip() or None,
        "related_controls": list(session.selected_controls),
        "status": derive_status(session.snapshot()),
    }
    if not session.is_editing:
        values.update({
            "risk_type": "scenario",
            "name": session.threat.name,
            "description": session.threat.description,
            "threat_id": session.threat.threat_id or None,
            "asset_id": session.asset_id,
        })
    return values


def _as_text(value: Optional[int]) -> Optional[str]:
    return str(value) if value else None
