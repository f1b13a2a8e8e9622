from __future__ import annotations

import copy
import itertools
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from isms_risk_cli.audit_log import AuditLogger
from isms_risk_cli.organization import OrganizationContext

ORG_ID = "org-1"


class InMemoryBackend:
    """Stand-in for BackendClient understanding the PostgREST filters we send."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self._codes = itertools.count(1)

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, str]] = None,
        *,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        rows = [r for r in self.tables.get(table, []) if _matches(r, filters or {})]
        if order:
            column, direction = order.split(".")[:2]
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=direction == "desc")
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(values)
        row.setdefault("id", f"{table}-{next(self._ids)}")
        self.tables.setdefault(table, []).append(row)
        return copy.deepcopy(row)

    def update(self, table: str, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        for row in self.tables.get(table, []):
            if row["id"] == row_id:
                row.update(values)
                return copy.deepcopy(row)
        raise AssertionError(f"no row {row_id} in {table}")

    def delete(self, table: str, row_id: str) -> None:
        self.tables[table] = [r for r in self.tables.get(table, []) if r["id"] != row_id]

    def generate_sequential_code(self, organization_id: str, code_type: str) -> str:
        return f"{code_type.upper()[:3]}-{next(self._codes):03d}"

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])


def _matches(row: Dict[str, Any], filters: Dict[str, str]) -> bool:
    for column, expression in filters.items():
        if column == "or":
            alternatives = expression.strip("()").split(",")
            if not any(_check(row, *alt.split(".", 1)) for alt in alternatives):
                return False
        elif not _check(row, column, expression):
            return False
    return True


def _check(row: Dict[str, Any], column: str, expression: str) -> bool:
    operator, operand = expression.split(".", 1)
    value = row.get(column)
    if operator == "is":
        if operand == "null":
            return value is None
        return value is (operand == "true")
    if operator == "eq":
        return value is not None and str(value) == operand
    if value is None:
        return False
    if operator == "gte":
        return float(value) >= float(operand)
    if operator == "lt":
        return str(value) < operand
    raise AssertionError(f"unsupported operator {operator}")


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def organization() -> OrganizationContext:
    return OrganizationContext(ORG_ID)


@pytest.fixture
def audit_log(backend: InMemoryBackend, organization: OrganizationContext) -> AuditLogger:
    return AuditLogger(backend, organization)  # type: ignore[arg-type]


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()
