"""Async HTTP client for the Jira Cloud REST API (v3).

Owns transport and authentication and maps every non-success response
onto the error taxonomy in ``errors``. Callers get parsed JSON back; no
normalization happens here.
"""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Any
from urllib.parse import quote

import httpx

from ticketwright.config import Credentials, is_jira_cloud_url, normalize_jira_url
from ticketwright.errors import (
    ConfigurationError,
    TrackerError,
    TransientNetworkError,
    UnknownTrackerError,
    error_for_status,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/rest/api/3"
DEFAULT_TIMEOUT = 30.0
SEARCH_LIMIT = 20
_FIELDS_PAGE_SIZE = 100


class JiraClient:
    """One authenticated session against one Jira Cloud site and project.

    Use as an async context manager, or call :meth:`aclose` when done.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        base_url = normalize_jira_url(credentials.jira_url)
        if not is_jira_cloud_url(base_url):
            msg = f"Invalid Jira URL: {credentials.jira_url}. Must be a Jira Cloud URL (*.atlassian.net)"
            raise ConfigurationError(msg)
        self.base_url = base_url
        self.project_key = credentials.project_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": credentials.auth_header, "Accept": "application/json"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> JiraClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def browse_url(self, issue_key: str) -> str:
        return f"{self.base_url}/browse/{issue_key}"

    # -- transport --

    async def _request(
        self,
        method: str,
        path: str,
        *,
        context: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        files: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        started = perf_counter()
        try:
            response = await self._client.request(method, path, params=params, json=json, files=files, headers=headers)
        except httpx.TransportError as exc:
            logger.warning(
                "Transport failure during %s: %s", context, exc, extra={"action": context, "error": str(exc)}
            )
            raise TransientNetworkError(f"{context} failed: {exc}") from exc
        duration_ms = round((perf_counter() - started) * 1000, 1)
        logger.debug(
            "%s %s -> %s",
            method,
            path,
            response.status_code,
            extra={"action": context, "duration_ms": duration_ms},
        )
        if response.is_success:
            return response
        raise error_for_status(response.status_code, response.text, context=context)

    async def _get_json(self, path: str, *, context: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request("GET", path, context=context, params=params)
        return _decode(response, context)

    # -- schema --

    async def list_issue_types(self) -> list[dict[str, Any]]:
        """Issue types available for creation in the project."""
        path = f"{API_PREFIX}/issue/createmeta/{quote(self.project_key, safe='')}/issuetypes"
        data = await self._get_json(path, context="list issue types")
        return _list_from(data, "issueTypes", "values")

    async def list_fields(self, issue_type_id: str) -> list[dict[str, Any]]:
        """Field metadata for one issue type, following createmeta pagination."""
        path = (
            f"{API_PREFIX}/issue/createmeta/{quote(self.project_key, safe='')}"
            f"/issuetypes/{quote(str(issue_type_id), safe='')}"
        )
        fields: list[dict[str, Any]] = []
        start_at = 0
        while True:
            data = await self._get_json(
                path,
                context="fetch field metadata",
                params={"startAt": start_at, "maxResults": _FIELDS_PAGE_SIZE},
            )
            page = _list_from(data, "fields", "values")
            fields.extend(page)
            total = data.get("total") if isinstance(data, dict) else None
            if not page or not isinstance(total, int) or len(fields) >= total:
                return fields
            start_at = len(fields)

    # -- issues --

    async def create_issue(self, fields: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", f"{API_PREFIX}/issue", context="create issue", json={"fields": fields})
        data = _decode(response, "create issue")
        if not isinstance(data, dict) or "key" not in data:
            raise UnknownTrackerError("create issue returned no issue key", status_code=response.status_code)
        return data

    async def upload_attachment(self, issue_key: str, filename: str, content: bytes, mime_type: str) -> None:
        await self._request(
            "POST",
            f"{API_PREFIX}/issue/{quote(issue_key, safe='')}/attachments",
            context="upload attachment",
            files={"file": (filename, content, mime_type)},
            headers={"X-Atlassian-Token": "no-check"},
        )

    async def get_issue(self, issue_key: str, *, fields: str = "summary") -> dict[str, Any]:
        path = f"{API_PREFIX}/issue/{quote(issue_key, safe='')}"
        data = await self._get_json(path, context="get issue", params={"fields": fields})
        return data if isinstance(data, dict) else {}

    # -- search surfaces --

    async def issue_picker(self, query: str, *, current_jql: str) -> list[dict[str, Any]]:
        """Issue-picker suggestions, flattened across sections and deduplicated by key."""
        data = await self._get_json(
            f"{API_PREFIX}/issue/picker",
            context="issue picker search",
            params={"query": query, "currentJQL": current_jql, "showSubTasks": "false"},
        )
        seen: set[str] = set()
        issues: list[dict[str, Any]] = []
        for section in _list_from(data, "sections"):
            for issue in section.get("issues") or []:
                key = issue.get("key") if isinstance(issue, dict) else None
                if key and key not in seen:
                    seen.add(key)
                    issues.append(issue)
        return issues

    async def search_jql(
        self, jql: str, *, fields: str = "summary", max_results: int = SEARCH_LIMIT
    ) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{API_PREFIX}/search/jql",
            context="structured query search",
            params={"jql": jql, "fields": fields, "maxResults": max_results},
        )
        return _list_from(data, "issues")

    async def field_suggestions(self, field_name: str, value: str) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{API_PREFIX}/jql/autocompletedata/suggestions",
            context="field value suggestions",
            params={"fieldName": field_name, "fieldValue": value},
        )
        return _list_from(data, "results")

    async def search_users(self, query: str) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{API_PREFIX}/user/search",
            context="people search",
            params={"query": query, "maxResults": SEARCH_LIMIT},
        )
        return [u for u in data if isinstance(u, dict)] if isinstance(data, list) else []

    async def group_picker(self, query: str) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{API_PREFIX}/groups/picker",
            context="group picker search",
            params={"query": query, "maxResults": SEARCH_LIMIT},
        )
        return _list_from(data, "groups")

    # -- diagnostics --

    async def validate_configuration(self) -> bool:
        """Probe authentication and project access. Never raises for tracker errors."""
        try:
            await self._request("GET", f"{API_PREFIX}/myself", context="validate authentication")
            await self._request(
                "GET",
                f"{API_PREFIX}/project/{quote(self.project_key, safe='')}",
                context="validate project access",
            )
        except TrackerError as exc:
            logger.warning("Jira configuration validation failed: %s", exc)
            return False
        return True


def _decode(response: httpx.Response, context: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        logger.warning("Non-JSON response during %s", context, extra={"body": response.text[:2000]})
        raise UnknownTrackerError(f"{context} returned invalid JSON", status_code=response.status_code) from exc


def _list_from(data: Any, *keys: str) -> list[dict[str, Any]]:
    """First list found under *keys* in a JSON object, keeping only dict entries."""
    if not isinstance(data, dict):
        return []
    for key in keys:
        value = data.get(key)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
    return []
