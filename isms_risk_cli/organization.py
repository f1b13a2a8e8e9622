from __future__ import annotations

from typing import Optional

from isms_risk_cli.exceptions import PreconditionError


class OrganizationContext:
    def __init__(self, organization_id: Optional[str] = None) -> None:
        self._organization_id = organization_id or None

    def get_organization_id(self) -> Optional[str]:
        return self._organization_id

    def require(self) -> str:
        """Return the organization id or fail before anything is written."""
        if not self._organization_id:
            raise PreconditionError(
                "No organization selected. Set organization_id in .isms-risk.ini."
            )
        return self._organization_id
