"""Audit-scope suggestions.

Three independent candidate sets are collected for an organization:
implemented controls whose last verification is missing or older than a
year, high risks without a residual score, and non-conformities whose
corrective action is completed but not yet verified. Their control
references are merged into the scope of a proposed audit.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from isms_risk_cli.audit_log import AuditLogger, run_post_commit_hooks
from isms_risk_cli.client import BackendClient
from isms_risk_cli.exceptions import IsmsRiskError, ValidationError
from isms_risk_cli.models.risks import Risk
from isms_risk_cli.models.suggestions import (
    ControlCandidate,
    NonConformityCandidate,
    ProposedAudit,
    SuggestionBundle,
)
from isms_risk_cli.organization import OrganizationContext
from isms_risk_cli.risks import parse_risk

logger = logging.getLogger(__name__)

DISPLAY_LIMIT = 10
VERIFICATION_MAX_AGE = timedelta(days=365)
HIGH_RISK_THRESHOLD = 12


class SmartSuggestionAggregator:
    def __init__(
        self,
        client: BackendClient,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.client = client
        self._now = now

    def collect(self, organization_id: str) -> SuggestionBundle:
        """Full, untruncated candidate sets; use ``display`` to cut them."""
        evaluated_at = self._now()
        return SuggestionBundle(
            controls_to_verify=self._controls_to_verify(evaluated_at),
            high_risks=self._high_risks(organization_id),
            nc_to_verify=self._nc_to_verify(organization_id),
        )

    def _controls_to_verify(self, evaluated_at: datetime) -> List[ControlCandidate]:
        rows = self.client.select(
            "controls", {"status": "eq.implemented"}, order="control_id.asc",
        )
        candidates = [_parse_control(row) for row in rows]
        return [
            c for c in candidates
            if c.status == "implemented"
            and is_verification_stale(c.last_verification_date, evaluated_at)
        ]

    def _high_risks(self, organization_id: str) -> List[Risk]:
        rows = self.client.select(
            "risks",
            {
                "organization_id": f"eq.{organization_id}",
                "inherent_risk_score": f"gte.{HIGH_RISK_THRESHOLD}",
                "residual_risk_score": "is.null",
            },
            order="inherent_risk_score.desc",
        )
        return [r for r in (parse_risk(row) for row in rows) if is_high_unverified(r)]

    def _nc_to_verify(self, organization_id: str) -> List[NonConformityCandidate]:
        rows = self.client.select(
            "non_conformities",
            {"organization_id": f"eq.{organization_id}", "status": "eq.completed"},
            order="created_at.desc",
        )
        candidates = [_parse_nc(row) for row in rows]
        return [nc for nc in candidates if is_ready_for_verification(nc)]


def is_verification_stale(last_verification: Optional[str], evaluated_at: datetime) -> bool:
    verified_on = _parse_date(last_verification)
    if verified_on is None:
        return True
    return evaluated_at.date() - verified_on > VERIFICATION_MAX_AGE


def is_high_unverified(risk: Risk) -> bool:
    return (
        risk.inherent_risk_score is not None
        and risk.inherent_risk_score >= HIGH_RISK_THRESHOLD
        and risk.residual_risk_score is None
    )


def is_ready_for_verification(nc: NonConformityCandidate) -> bool:
    return nc.status == "completed" and not nc.effectiveness_verified


def merge_control_scope(
    controls: Iterable[ControlCandidate],
    high_risks: Iterable[Risk],
    nc_to_verify: Iterable[NonConformityCandidate],
) -> List[str]:
    """Deduplicated control references of all three sets, sorted."""
    scope = {c.control_id for c in controls if c.control_id}
    for risk in high_risks:
        scope.update(ref for ref in risk.related_controls if ref)
    scope.update(nc.related_control for nc in nc_to_verify if nc.related_control)
    return sorted(scope)


def propose_audit(bundle: SuggestionBundle) -> ProposedAudit:
    scope = merge_control_scope(bundle.controls_to_verify, bundle.high_risks, bundle.nc_to_verify)
    objective = (
        f"Verifica di {len(bundle.controls_to_verify)} controlli implementati, "
        f"{len(bundle.high_risks)} rischi elevati non verificati e "
        f"{len(bundle.nc_to_verify)} non conformità con azioni completate."
    )
    return ProposedAudit(control_scope=scope, objective=objective)


class AuditPlanner:
    def __init__(
        self,
        client: BackendClient,
        organization: OrganizationContext,
        audit_log: AuditLogger,
    ) -> None:
        self.client = client
        self.organization = organization
        self.audit_log = audit_log

    def plan(
        self,
        proposal: ProposedAudit,
        planned_date: str,
        auditor_name: str = "",
    ) -> Dict[str, Any]:
        if not proposal.control_scope:
            raise ValidationError("The proposed audit has no controls in scope.")
        if _parse_date(planned_date) is None:
            raise ValidationError(f"Invalid planned date '{planned_date}', expected YYYY-MM-DD.")
        organization_id = self.organization.require()

        try:
            audit_code = self.client.generate_sequential_code(organization_id, "audit")
        except IsmsRiskError as exc:
            logger.warning("Audit code generation failed: %s", exc)
            audit_code = ""

        values = {
            "organization_id": organization_id,
            "audit_code": audit_code or None,
            "audit_type": "internal",
            "planned_date": planned_date,
            "audit_scope": ", ".join(proposal.control_scope),
            "objective": proposal.objective,
            "auditor_name": auditor_name or None,
            "status": "planned",
        }
        row = self.client.insert("internal_audits", values)
        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "create", "audit", str(row.get("id", "")), row.get("audit_code"),
                new_values=row, notes="Planned from smart suggestions",
            ),
        ])
        return row


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _parse_control(row: Dict[str, Any]) -> ControlCandidate:
    return ControlCandidate(
        control_id=str(row.get("control_id", "") or ""),
        title=str(row.get("title", "") or ""),
        status=str(row.get("status", "") or ""),
        last_verification_date=row.get("last_verification_date") or None,
    )


def _parse_nc(row: Dict[str, Any]) -> NonConformityCandidate:
    return NonConformityCandidate(
        id=str(row.get("id", "")),
        nc_code=str(row.get("nc_code", "") or ""),
        title=str(row.get("title", "") or ""),
        status=str(row.get("status", "") or ""),
        related_control=row.get("related_control") or None,
        effectiveness_verified=bool(row.get("effectiveness_verified")),
    )
