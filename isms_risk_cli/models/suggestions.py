from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional

from isms_risk_cli.models.risks import Risk


@dataclass
class ControlCandidate:
    control_id: str
    title: str
    status: str
    last_verification_date: Optional[str] = None


@dataclass
class NonConformityCandidate:
    id: str
    nc_code: str
    title: str
    status: str
    related_control: Optional[str] = None
    effectiveness_verified: bool = False


@dataclass
class SuggestionBundle:
    controls_to_verify: List[ControlCandidate] = field(default_factory=list)
    high_risks: List[Risk] = field(default_factory=list)
    nc_to_verify: List[NonConformityCandidate] = field(default_factory=list)

    def display(self, limit: int) -> "SuggestionBundle":
        """Copy with each list cut to its first ``limit`` entries."""
        return replace(
            self,
            controls_to_verify=self.controls_to_verify[:limit],
            high_risks=self.high_risks[:limit],
            nc_to_verify=self.nc_to_verify[:limit],
        )

    def is_empty(self) -> bool:
        return not (self.controls_to_verify or self.high_risks or self.nc_to_verify)


@dataclass
class ProposedAudit:
    control_scope: List[str]
    objective: str
