from __future__ import annotations

import sys
from typing import Optional


class Notifier:
    """Transient success/error messages shown to the operator."""

    def success(self, message: str, description: Optional[str] = None) -> None:
        print(_join(message, description))

    def error(self, message: str, description: Optional[str] = None) -> None:
        print(_join(message, description), file=sys.stderr)


def _join(message: str, description: Optional[str]) -> str:
    return f"{message}: {description}" if description else message
