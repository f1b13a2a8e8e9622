from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from isms_risk_cli.client import BackendClient
from isms_risk_cli.exceptions import IsmsRiskError
from isms_risk_cli.organization import OrganizationContext

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = ("create", "update", "delete")
ENTITY_TYPES = ("risk", "threat", "improvement_action", "training_record", "audit")


class AuditLogger:
    """Writes audit-trail rows. Never raises: a failed write is only logged."""

    def __init__(self, client: BackendClient, organization: OrganizationContext) -> None:
        self.client = client
        self.organization = organization

    def log_event(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        entity_name: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> bool:
        if action not in AUDIT_ACTIONS or entity_type not in ENTITY_TYPES:
            logger.warning("Unknown audit event %s %s, skipping", action, entity_type)
            return False
        organization_id = self.organization.get_organization_id()
        if not organization_id:
            logger.warning("No organization found for audit log, skipping %s %s", action, entity_type)
            return False

        row = {
            "organization_id": organization_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "entity_name": entity_name,
            "old_values": old_values,
            "new_values": new_values,
            "notes": notes,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.client.insert("audit_logs", row)
        except IsmsRiskError as exc:
            logger.warning("Audit log failed for %s %s %s: %s", action, entity_type, entity_id, exc)
            return False
        logger.debug("Audit event logged: %s %s", action, entity_type)
        return True


def run_post_commit_hooks(hooks: Iterable[Callable[[], Any]]) -> int:
    """Run side effects after a primary write has succeeded.

    Each hook is isolated; a failing hook cannot undo the write or stop the
    hooks after it. Returns the number of hooks that failed.
    """
    failures = 0
    for hook in hooks:
        try:
            hook()
        except Exception:
            failures += 1
            logger.exception("Post-commit hook %r failed", hook)
    return failures
