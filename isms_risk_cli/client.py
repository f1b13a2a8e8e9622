from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from isms_risk_cli import __version__
from isms_risk_cli.exceptions import ApiError, AuthenticationError
from isms_risk_cli.models.config import AppConfig

_REST_PREFIX = "rest/v1/"


class BackendClient:
    """Thin client for the hosted PostgREST backend.

    Filters are passed through as PostgREST operator expressions, e.g.
    ``{"status": "eq.implemented", "inherent_risk_score": "gte.12"}``.
    """

    _RETURN_ROW = {"Prefer": "return=representation"}

    def __init__(self, config: AppConfig) -> None:
        self._base_url = config.api_url
        self._session = requests.Session()
        self._session.headers.update({
            "apikey": config.api_key,
            "Authorization": f"Bearer {config.api_key}",
            "User-Agent": f"isms-risk-cli/{__version__}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, str]] = None,
        *,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        params: Dict[str, str] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        rows = self._request("GET", _REST_PREFIX + table, params=params)
        return rows if isinstance(rows, list) else []

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._request(
            "POST", _REST_PREFIX + table, json=values, headers=self._RETURN_ROW,
        )
        return _first_row(rows, table)

    def update(self, table: str, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._request(
            "PATCH", _REST_PREFIX + table,
            params={"id": f"eq.{row_id}"}, json=values, headers=self._RETURN_ROW,
        )
        return _first_row(rows, table)

    def delete(self, table: str, row_id: str) -> None:
        self._request("DELETE", _REST_PREFIX + table, params={"id": f"eq.{row_id}"})

    def rpc(self, function: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", _REST_PREFIX + "rpc/" + function, json=args or {})

    def generate_sequential_code(self, organization_id: str, code_type: str) -> str:
        result = self.rpc(
            "generate_sequential_code",
            {"org_id": organization_id, "code_type": code_type},
        )
        return str(result) if result else ""

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        normalized_path = path.lstrip("/")
        url = self._base_url + normalized_path
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.ConnectionError as exc:
            raise ApiError(
                f"Cannot connect to {self._base_url}. "
                "Check your network connection and API URL."
            ) from exc
        except requests.RequestException as exc:
            raise ApiError(
                f"Cannot connect to {self._base_url}. "
                "Check your network connection and API URL."
            ) from exc

        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Authentication failed. Your API key may be invalid or expired. "
                "Run isms-risk --init to set a new key."
            )
        if response.status_code == 404:
            raise ApiError(
                f"Resource not found: {normalized_path}. "
                "The backend schema may have changed."
            )
        if response.status_code >= 500:
            raise ApiError(
                f"Backend server error ({response.status_code}). "
                "Please try again later."
            )

        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise ApiError(
                f"Backend request failed ({response.status_code}) for {normalized_path}: "
                f"{_error_detail(response)}"
            ) from exc

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"Invalid response from backend for {normalized_path}. Expected JSON data."
            ) from exc


def _first_row(rows: Any, table: str) -> Dict[str, Any]:
    if isinstance(rows, list) and rows and isinstance(rows[0], dict):
        return rows[0]
    if isinstance(rows, dict):
        return rows
    raise ApiError(f"Backend returned no row for {table}.")


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return "no details"
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("hint") or "no details")
    return "no details"
