from __future__ import annotations

import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml

from isms_risk_cli.audit_log import AuditLogger, run_post_commit_hooks
from isms_risk_cli.client import BackendClient
from isms_risk_cli.exceptions import (
    PreconditionError,
    ReferentialIntegrityError,
    ValidationError,
)
from isms_risk_cli.models.threats import (
    NIS2_INCIDENT_TYPES,
    THREAT_CATEGORIES,
    Threat,
    ThreatFilters,
)
from isms_risk_cli.organization import OrganizationContext
from isms_risk_cli.risks import parse_optional_int

SEED_PATH = Path(__file__).resolve().parent / "data" / "threat_catalog.yaml"

SUGGESTED_CONTROLS = (
    "5.1", "5.7", "5.10", "5.14", "5.23", "5.30",
    "6.1", "6.2", "6.3", "6.5", "6.8",
    "7.1", "7.2", "7.3", "7.4", "7.5", "7.7", "7.8", "7.10", "7.11", "7.14",
    "8.1", "8.2", "8.3", "8.5", "8.6", "8.7", "8.8", "8.9", "8.10", "8.11",
    "8.12", "8.14", "8.16", "8.19", "8.23", "8.28",
)

_UPDATABLE_FIELDS = ("name", "description", "category", "nis2_type", "controls")

_TABLE = "threat_library"


class ThreatCatalog:
    def __init__(
        self,
        client: BackendClient,
        organization: OrganizationContext,
        audit_log: AuditLogger,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.organization = organization
        self.audit_log = audit_log
        self._clock = clock

    def list_threats(self, filters: Optional[ThreatFilters] = None) -> List[Threat]:
        """Shared entries plus the current organization's custom entries."""
        filters = filters or ThreatFilters()
        query = self._visibility_filter()
        if filters.category:
            query["category"] = f"eq.{filters.category}"
        if filters.nis2_type:
            query["nis2_incident_type"] = f"eq.{filters.nis2_type}"

        rows = self.client.select(_TABLE, query, order="created_at.desc")
        threats = [parse_threat(row) for row in rows]

        if filters.sector:
            threats = [t for t in threats if _matches_sector(t, filters.sector)]
        if filters.search_text:
            threats = [t for t in threats if _matches_search(t, filters.search_text)]
        return threats

    def get_threat(self, threat_id: str) -> Threat:
        """Look up a shared threat or one of the current organization's own."""
        query = self._visibility_filter()
        query["threat_id"] = f"eq.{threat_id}"
        rows = self.client.select(_TABLE, query, limit=1)
        if not rows:
            raise PreconditionError(f"Threat {threat_id} not found in the catalog.")
        return parse_threat(rows[0])

    def create_custom_threat(
        self,
        name: str,
        description: str,
        category: str,
        nis2_type: Optional[str] = None,
        controls: Optional[Sequence[str]] = None,
    ) -> Threat:
        _validate_threat_fields(name, description, category, nis2_type)
        organization_id = self.organization.require()

        values = {
            "threat_id": f"CT-{int(self._clock() * 1000)}",
            "name": name.strip(),
            "description": description.strip(),
            "category": category,
            "nis2_incident_type": _stored_nis2(nis2_type),
            "iso27001_controls": _stored_controls(controls),
            "is_custom": True,
            "organization_id": organization_id,
        }
        row = self.client.insert(_TABLE, values)
        threat = parse_threat(row)

        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "create", "threat", threat.id, threat.name, new_values=row,
            ),
        ])
        return threat

    def update_custom_threat(self, threat_id: str, fields: Dict[str, Any]) -> Threat:
        unknown = sorted(set(fields) - set(_UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Cannot update threat field(s): {', '.join(unknown)}.")

        current = self.get_threat(threat_id)
        self._require_owned(current, "modified")

        name = fields.get("name", current.name)
        description = fields.get("description", current.description)
        category = fields.get("category", current.category)
        nis2_type = fields.get("nis2_type", current.nis2_incident_type)
        controls = fields.get("controls", current.iso27001_controls)
        _validate_threat_fields(name, description, category, nis2_type)

        values = {
            "name": name.strip(),
            "description": description.strip(),
            "category": category,
            "nis2_incident_type": _stored_nis2(nis2_type),
            "iso27001_controls": _stored_controls(controls),
        }
        row = self.client.update(_TABLE, str(current.id), values)
        updated = parse_threat(row)

        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "update", "threat", updated.id, updated.name,
                old_values=asdict(current), new_values=row,
            ),
        ])
        return updated

    def count_references(self, threat_id: str) -> int:
        rows = self.client.select("risks", {"threat_id": f"eq.{threat_id}"}, columns="id")
        return len(rows)

    def delete_custom_threat(
        self,
        threat_id: str,
        confirm: Callable[[Threat], bool],
    ) -> bool:
        """Delete a custom threat that no risk references.

        The reference check and the delete are two separate requests, so a
        risk created in between is not detected.
        """
        threat = self.get_threat(threat_id)
        self._require_owned(threat, "deleted")

        references = self.count_references(threat.threat_id)
        if references:
            noun = "risk" if references == 1 else "risks"
            raise ReferentialIntegrityError(
                f"Threat {threat.threat_id} is used by {references} {noun}. "
                "Delete those risks first."
            )

        if not confirm(threat):
            return False

        self.client.delete(_TABLE, str(threat.id))
        run_post_commit_hooks([
            lambda: self.audit_log.log_event(
                "delete", "threat", threat.id, threat.name, old_values=asdict(threat),
            ),
        ])
        return True

    def seed_catalog(self, seed_path: Path = SEED_PATH) -> int:
        with open(seed_path, encoding="utf-8") as f:
            entries = yaml.safe_load(f) or []

        existing = {
            str(row.get("threat_id", ""))
            for row in self.client.select(_TABLE, {"is_custom": "is.false"}, columns="threat_id")
        }
        inserted = 0
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("threat_id") in existing:
                continue
            values = dict(entry)
            values["is_custom"] = False
            values["organization_id"] = None
            self.client.insert(_TABLE, values)
            inserted += 1
        return inserted

    def _visibility_filter(self) -> Dict[str, str]:
        organization_id = self.organization.get_organization_id()
        if organization_id:
            return {"or": f"(organization_id.is.null,organization_id.eq.{organization_id})"}
        return {"organization_id": "is.null"}

    def _require_owned(self, threat: Threat, verb: str) -> None:
        if not threat.is_custom:
            raise PreconditionError(
                f"Threat {threat.threat_id} belongs to the shared catalog and cannot be {verb}."
            )
        if threat.organization_id != self.organization.get_organization_id():
            raise PreconditionError(
                f"Threat {threat.threat_id} belongs to another organization and cannot be {verb}."
            )


def parse_threat(row: Dict[str, Any]) -> Threat:
    return Threat(
        threat_id=str(row.get("threat_id", "") or ""),
        name=str(row.get("name", "") or "").strip(),
        description=str(row.get("description", "") or ""),
        category=str(row.get("category", "") or ""),
        nis2_incident_type=row.get("nis2_incident_type") or None,
        typical_probability=parse_optional_int(row.get("typical_probability")),
        typical_impact=parse_optional_int(row.get("typical_impact")),
        iso27001_controls=_as_str_list(row.get("iso27001_controls")),
        relevant_sectors=_as_str_list(row.get("relevant_sectors")),
        is_custom=bool(row.get("is_custom")),
        organization_id=row.get("organization_id") or None,
        name_en=row.get("name_en") or None,
        id=str(row["id"]) if row.get("id") is not None else None,
    )


def _validate_threat_fields(
    name: Optional[str],
    description: Optional[str],
    category: Optional[str],
    nis2_type: Optional[str],
) -> None:
    if not (name or "").strip() or not (description or "").strip() or not category:
        raise ValidationError("Name, description and category are required.")
    if category not in THREAT_CATEGORIES:
        raise ValidationError(
            f"Unknown threat category '{category}'. "
            f"Choose one of: {', '.join(THREAT_CATEGORIES)}."
        )
    if nis2_type and nis2_type not in NIS2_INCIDENT_TYPES:
        raise ValidationError(f"Unknown NIS2 incident type '{nis2_type}'.")


def _stored_nis2(nis2_type: Optional[str]) -> Optional[str]:
    if not nis2_type or nis2_type == "not_applicable":
        return None
    return nis2_type


def _stored_controls(controls: Optional[Sequence[str]]) -> Optional[List[str]]:
    cleaned = [str(c).strip() for c in controls or [] if str(c).strip()]
    return cleaned or None


def _matches_sector(threat: Threat, sector: str) -> bool:
    return not threat.relevant_sectors or sector in threat.relevant_sectors


def _matches_search(threat: Threat, text: str) -> bool:
    needle = text.lower()
    return (
        needle in threat.name.lower()
        or needle in threat.description.lower()
        or needle in threat.threat_id.lower()
    )
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]
