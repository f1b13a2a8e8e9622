from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import yaml

from isms_risk_cli.formatters.base import to_plain
from isms_risk_cli.formatters.json_formatter import JsonFormatter
from isms_risk_cli.formatters.yaml_formatter import YamlFormatter


@dataclass
class _Item:
    code: str
    tags: List[str] = field(default_factory=list)


class TestToPlain:
    def test_nested_dataclasses(self) -> None:
        data = {"items": [_Item("5.1", ["a"]), _Item("8.7")], "count": 2}
        assert to_plain(data) == {
            "items": [{"code": "5.1", "tags": ["a"]}, {"code": "8.7", "tags": []}],
            "count": 2,
        }

    def test_scalars_pass_through(self) -> None:
        assert to_plain("x") == "x"
        assert to_plain(None) is None


class TestJsonFormatter:
    def test_file_extension(self) -> None:
        assert JsonFormatter().file_extension() == ".json"

    def test_write_and_parse_back(self, tmp_path: Path) -> None:
        data = {"id": 1, "name": "Test", "tags": ["a", "b"]}
        path = tmp_path / "out.json"
        JsonFormatter().write(data, path)

        parsed = json.loads(path.read_text(encoding="utf-8"))
        assert parsed == data

    def test_indent_and_no_ascii_escape(self) -> None:
        content = JsonFormatter().render({"title": "Non conformità"})
        assert "conformità" in content
        assert "  " in content  # indented

    def test_trailing_newline(self) -> None:
        assert JsonFormatter().render({}).endswith("\n")


class TestYamlFormatter:
    def test_file_extension(self) -> None:
        assert YamlFormatter().file_extension() == ".yaml"

    def test_keeps_key_order_and_unicode(self) -> None:
        content = YamlFormatter().render({"zeta": "Sanità", "alpha": 1})
        assert content.index("zeta") < content.index("alpha")
        assert "Sanità" in content

    def test_dataclass_list(self, tmp_path: Path) -> None:
        path = tmp_path / "out.yaml"
        YamlFormatter().write([_Item("5.1")], path)

        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert parsed == [{"code": "5.1", "tags": []}]
