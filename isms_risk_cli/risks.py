from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from isms_risk_cli.audit_log import AuditLogger, run_post_commit_hooks
from isms_risk_cli.client import BackendClient
from isms_risk_cli.exceptions import PreconditionError
from isms_risk_cli.models.risks import STATUS_IDENTIFIED, Risk
from isms_risk_cli.organization import OrganizationContext
from isms_risk_cli.scoring import LEVELS

_TABLE = "risks"


class RiskRegister:
    def __init__(
        self,
        client: BackendClient,
        organization: OrganizationContext,
        audit_log: AuditLogger,
    ) -> None:
        self.client = client
        self.organization = organization
        self.audit_log = audit_log

    def list_risks(
        self,
        level: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Risk]:
        query = {"organization_id": f"eq.{self.organization.require()}"}
        if level:
            query["inherent_risk_level"] = f"eq.{level}"
        if status:
            query["status"] = f"eq.{status}"
        rows = self.client.select(_TABLE, query, order="inherent_risk_score.desc.nullslast")
        risks = [parse_risk(row) for row in rows]
        if search:
            needle = search.lower()
            risks = [
                r for r in risks
                if needle in r.name.lower() or needle in r.risk_id.lower()
            ]
        return risks

    def stats(self) -> Dict[str, int]:
        counts = {level: 0 for level in LEVELS}
        for risk in self.list_risks():
            if risk.inherent_risk_level in counts:
                counts[risk.inherent_risk_level] += 1
        return counts

    def get_risk(self, risk_id: str) -> Risk:
        query = {
            "id": f"eq.{risk_id}",
            "organization_id": f"eq.{self.organization.require()}",
        }
        rows = self.client.select(_TABLE, query, limit=1)
        if not rows:
            raise PreconditionError(f"Risk {risk_id} not found.")
        return parse_risk(rows[0])

    def delete_risk(self, risk_id: str) -> None:
        risk = self.get_risk(risk_id)
        self.client.delete(_TABLE, risk_id)
        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "delete", "risk", risk.id, risk.name, old_values=asdict(risk),
            ),
        ])


def parse_risk(row: Dict[str, Any]) -> Risk:
    controls = row.get("related_controls")
    return Risk(
        id=str(row["id"]) if row.get("id") is not None else None,
        risk_id=str(row.get("risk_id", "") or ""),
        name=str(row.get("name", "") or "").strip(),
        description=str(row.get("description", "") or ""),
        risk_type=str(row.get("risk_type", "") or "scenario"),
        threat_id=row.get("threat_id") or None,
        asset_id=row.get("asset_id") or None,
        organization_id=row.get("organization_id") or None,
        inherent_probability=parse_optional_int(row.get("inherent_probability")),
        inherent_impact=parse_optional_int(row.get("inherent_impact")),
        inherent_risk_score=parse_optional_int(row.get("inherent_risk_score")),
        inherent_risk_level=row.get("inherent_risk_level") or None,
        residual_probability=parse_optional_int(row.get("residual_probability")),
        residual_impact=parse_optional_int(row.get("residual_impact")),
        residual_risk_score=parse_optional_int(row.get("residual_risk_score")),
        residual_risk_level=row.get("residual_risk_level") or None,
        treatment_strategy=row.get("treatment_strategy") or None,
        treatment_description=row.get("treatment_description") or None,
        treatment_cost=_as_optional_float(row.get("treatment_cost")),
        treatment_deadline=row.get("treatment_deadline") or None,
        treatment_responsible=row.get("treatment_responsible") or None,
        related_controls=[str(c) for c in controls] if isinstance(controls, list) else [],
        status=str(row.get("status") or STATUS_IDENTIFIED),
        scope=row.get("scope") or None,
    )


def parse_optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_optional_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None
