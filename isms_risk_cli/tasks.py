from __future__ import annotations

import logging
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict

from isms_risk_cli.audit_log import AuditLogger, run_post_commit_hooks
from isms_risk_cli.client import BackendClient
from isms_risk_cli.exceptions import IsmsRiskError, PreconditionError
from isms_risk_cli.models.risks import Risk
from isms_risk_cli.models.tasks import (
    ImprovementAction,
    ImprovementActionForm,
    TrainingRecord,
    TrainingRecordForm,
)
from isms_risk_cli.organization import OrganizationContext

logger = logging.getLogger(__name__)

ACTION_TYPE = "corrective"
DEFAULT_TARGET_DAYS = 30


class DownstreamTaskGenerator:
    """Turns a treated risk into an improvement action or a training record.

    The two are independent; a risk can spawn both. The link back to the
    risk is the ``source_id`` column and descriptive text only.
    """

    def __init__(
        self,
        client: BackendClient,
        organization: OrganizationContext,
        audit_log: AuditLogger,
        *,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.organization = organization
        self.audit_log = audit_log
        self._today = today
        self._clock = clock

    def create_improvement_action(
        self, risk: Risk, form: ImprovementActionForm,
    ) -> ImprovementAction:
        _require_persisted(risk)
        organization_id = self.organization.require()

        target_date = form.target_date or (
            self._today() + timedelta(days=DEFAULT_TARGET_DAYS)
        ).isoformat()
        values = {
            "organization_id": organization_id,
            "action_code": self._action_code(organization_id),
            "action_type": ACTION_TYPE,
            "source": "risk_assessment",
            "source_id": risk.id,
            "title": form.title,
            "description": form.description,
            "action_plan": form.description,
            "responsible_person": form.responsible_person,
            "target_date": target_date,
            "priority": form.priority,
            "estimated_cost": form.estimated_cost,
            "status": "open",
            "implementation_status": "planned",
            "effectiveness_verified": False,
        }
        row = self.client.insert("improvement_actions", values)
        action = _parse_action(row)

        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "create", "improvement_action", action.id, action.title,
                new_values=row, notes=f"Created from risk treatment: {risk.name}",
            ),
        ])
        return action

    def create_training_record(
        self, risk: Risk, form: TrainingRecordForm,
    ) -> TrainingRecord:
        _require_persisted(risk)
        organization_id = self.organization.require()

        values = {
            "organization_id": organization_id,
            "employee_name": form.employee_name,
            "training_title": form.training_title,
            "training_type": form.training_type,
            "training_date": form.training_date or self._today().isoformat(),
            "notes": form.notes,
            "status": "planned",
            "certificate_issued": False,
        }
        row = self.client.insert("training_records", values)
        record = _parse_training(row)

        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "create", "training_record", record.id, record.training_title,
                new_values=row, notes=f"Created from risk treatment: {risk.name}",
            ),
        ])
        return record

    def _action_code(self, organization_id: str) -> str:
        try:
            code = self.client.generate_sequential_code(organization_id, ACTION_TYPE)
        except IsmsRiskError as exc:
            logger.warning("Action code generation failed, using a timestamp code: %s", exc)
            code = ""
        return code or f"IMP-{int(self._clock() * 1000)}"


def _require_persisted(risk: Risk) -> None:
    if not risk.id:
        raise PreconditionError("Save the risk before creating tasks from it.")


def _parse_action(row: Dict[str, Any]) -> ImprovementAction:
    return ImprovementAction(
        id=str(row.get("id", "")),
        action_code=str(row.get("action_code", "") or ""),
        title=str(row.get("title", "") or ""),
        source_id=str(row.get("source_id", "") or ""),
        target_date=str(row.get("target_date", "") or ""),
        implementation_status=str(row.get("implementation_status", "") or ""),
        effectiveness_verified=bool(row.get("effectiveness_verified")),
    )


def _parse_training(row: Dict[str, Any]) -> TrainingRecord:
    return TrainingRecord(
        id=str(row.get("id", "")),
        training_title=str(row.get("training_title", "") or ""),
        employee_name=str(row.get("employee_name", "") or ""),
        training_date=str(row.get("training_date", "") or ""),
        status=str(row.get("status", "") or ""),
        certificate_issued=bool(row.get("certificate_issued")),
    )
