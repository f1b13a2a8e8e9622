from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any


class BaseFormatter(ABC):
    @abstractmethod
    def render(self, data: Any) -> str:
        ...

    @abstractmethod
    def file_extension(self) -> str:
        ...

    def write(self, data: Any, output_path: Path) -> None:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(self.render(data))


def to_plain(data: Any) -> Any:
    """Dataclasses (and lists of them) as plain dicts and lists."""
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    if isinstance(data, (list, tuple)):
        return [to_plain(item) for item in data]
    if isinstance(data, dict):
        return {key: to_plain(value) for key, value in data.items()}
    return data
