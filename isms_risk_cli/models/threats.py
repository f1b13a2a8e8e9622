from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

THREAT_CATEGORIES = (
    "Natural/Environmental",
    "Cyber/Technical",
    "Hardware/Infrastructure",
    "Human",
    "Organizational",
    "Legal/Compliance",
    "Physical",
    "Reputational",
    "Technical",
)

NIS2_INCIDENT_TYPES = (
    "availability_disruption",
    "confidentiality_breach",
    "integrity_compromise",
    "not_applicable",
)


@dataclass
class Threat:
    threat_id: str
    name: str
    description: str
    category: str
    nis2_incident_type: Optional[str] = None
    typical_probability: Optional[int] = None
    typical_impact: Optional[int] = None
    iso27001_controls: List[str] = field(default_factory=list)
    relevant_sectors: List[str] = field(default_factory=list)
    is_custom: bool = False
    organization_id: Optional[str] = None
    name_en: Optional[str] = None
    id: Optional[str] = None


@dataclass
class ThreatFilters:
    category: Optional[str] = None
    nis2_type: Optional[str] = None
    sector: Optional[str] = None
    search_text: Optional[str] = None
