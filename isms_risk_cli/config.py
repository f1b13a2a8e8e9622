from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from isms_risk_cli.exceptions import ConfigError
from isms_risk_cli.models.config import AppConfig

CONFIG_FILENAME = ".isms-risk.ini"
_SECTION = "isms"
_KEYS = ("api_url", "api_key", "organization_id")

# The service key and the organization can be supplied per shell so that a
# shared working directory does not pin them.
ENV_OVERRIDES = {
    "api_key": "ISMS_RISK_API_KEY",
    "organization_id": "ISMS_RISK_ORGANIZATION_ID",
}


def config_exists(directory: Path) -> bool:
    return (directory / CONFIG_FILENAME).is_file()


def write_config(directory: Path, config: AppConfig) -> None:
    """Store the connection settings readable by the owner only."""
    cp = configparser.ConfigParser(interpolation=None)
    cp[_SECTION] = {
        "api_url": config.api_url,
        "api_key": config.api_key,
        "organization_id": config.organization_id or "",
    }
    path = directory / CONFIG_FILENAME
    with open(path, "w", encoding="utf-8") as f:
        cp.write(f)
    path.chmod(0o600)


def read_config(directory: Path, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load the backend connection for the current working directory.

    Non-empty ISMS_RISK_API_KEY and ISMS_RISK_ORGANIZATION_ID variables take
    precedence over the file.
    """
    values = _read_section(directory / CONFIG_FILENAME)
    environ = os.environ if environ is None else environ
    for key, variable in ENV_OVERRIDES.items():
        override = environ.get(variable, "").strip()
        if override:
            values[key] = override

    for key in ("api_url", "api_key"):
        if not values[key]:
            raise ConfigError(
                f"Invalid configuration: missing or empty '{key}' in {CONFIG_FILENAME}. "
                "Run isms-risk --init to reconfigure."
            )
    if not values["api_url"].startswith("https://"):
        raise ConfigError(
            f"Invalid configuration: api_url in {CONFIG_FILENAME} must start with https://"
        )

    return AppConfig(
        api_url=values["api_url"],
        api_key=values["api_key"],
        organization_id=values["organization_id"] or None,
    )


def _read_section(path: Path) -> Dict[str, str]:
    if not path.is_file():
        raise ConfigError("Configuration not found. Run isms-risk --init first.")

    # API keys may contain '%', which the default interpolation rejects.
    cp = configparser.ConfigParser(interpolation=None)
    try:
        cp.read(str(path), encoding="utf-8")
    except configparser.Error as exc:
        raise ConfigError(
            f"Invalid configuration format in {CONFIG_FILENAME}. "
            "Run isms-risk --init to reconfigure."
        ) from exc

    if not cp.has_section(_SECTION):
        raise ConfigError(
            f"Invalid configuration: missing [{_SECTION}] section in {CONFIG_FILENAME}."
        )
    section = cp[_SECTION]
    return {key: section.get(key, "").strip() for key in _KEYS}
