from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from isms_risk_cli.exceptions import ConfigError


@dataclass
class AppConfig:
    api_url: str
    api_key: str
    organization_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.api_url:
            raise ConfigError("API URL cannot be empty.")
        if not self.api_url.endswith("/"):
            self.api_url = self.api_url + "/"
        if not self.api_key:
            raise ConfigError("API key cannot be empty.")
        if self.organization_id is not None:
            self.organization_id = self.organization_id.strip() or None
