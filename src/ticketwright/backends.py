"""Backends the WizardController talks to.

``DirectBackend`` runs a TrackerService in-process (used by the CLI);
``ProxyBackend`` goes through the HTTP proxy exactly as a browser client
would, sending session credentials in the ``x-jira-credentials`` header.
Both raise the ``errors`` taxonomy.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from ticketwright.config import CREDENTIALS_HEADER, Credentials, Settings, missing_env_vars, resolve_credentials
from ticketwright.errors import ConfigurationError, TransientNetworkError, UnknownTrackerError, error_from_envelope
from ticketwright.models import Candidate, FieldModel, IssueRequest, IssueTypeDescriptor, SubmissionResult
from ticketwright.service import TrackerService

logger = logging.getLogger(__name__)


class TrackerBackend(Protocol):
    def use_credentials(self, credentials: Credentials | None) -> None: ...

    async def list_issue_types(self) -> list[IssueTypeDescriptor]: ...

    async def get_fields(self, issue_type: str, *, include_optional: bool = False) -> list[FieldModel]: ...

    async def search(self, field: FieldModel, query: str, *, issue_type: str | None = None) -> list[Candidate]: ...

    async def create_issue(self, request: IssueRequest) -> SubmissionResult: ...

    async def aclose(self) -> None: ...


class DirectBackend:
    """In-process backend. Session credentials win over the environment."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        credentials: Credentials | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._credentials = credentials
        self._transport = transport
        self._environ = environ
        self._service: TrackerService | None = None

    def use_credentials(self, credentials: Credentials | None) -> None:
        self._credentials = credentials
        self._service = None

    async def _get_service(self) -> TrackerService:
        if self._service is None:
            header = self._credentials.to_header_value() if self._credentials else None
            credentials = resolve_credentials(header, self._environ)
            if credentials is None:
                missing = missing_env_vars(self._environ)
                msg = "Jira is not configured. Please provide credentials or set environment variables."
                raise ConfigurationError(msg, missing=missing)
            self._service = TrackerService(credentials, self._settings, transport=self._transport)
        return self._service

    async def list_issue_types(self) -> list[IssueTypeDescriptor]:
        return await (await self._get_service()).list_issue_types()

    async def get_fields(self, issue_type: str, *, include_optional: bool = False) -> list[FieldModel]:
        return await (await self._get_service()).get_fields(issue_type, include_optional=include_optional)

    async def search(self, field: FieldModel, query: str, *, issue_type: str | None = None) -> list[Candidate]:
        return await (await self._get_service()).resolver.resolve(field, query)

    async def create_issue(self, request: IssueRequest) -> SubmissionResult:
        return await (await self._get_service()).create_issue(request)

    async def aclose(self) -> None:
        if self._service is not None:
            await self._service.aclose()
            self._service = None


class ProxyBackend:
    """HTTP backend against a running ticketwright proxy."""

    def __init__(
        self,
        base_url: str,
        *,
        credentials: Credentials | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._credentials = credentials
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    def use_credentials(self, credentials: Credentials | None) -> None:
        self._credentials = credentials

    async def _call(self, method: str, action: str, *, params: dict[str, Any] | None = None, json: Any = None) -> Any:
        headers = {CREDENTIALS_HEADER: self._credentials.to_header_value()} if self._credentials else {}
        try:
            response = await self._client.request(
                method,
                "/api/jira",
                params={"action": action, **(params or {})},
                json=json,
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"proxy {action} failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if response.is_success and isinstance(payload, dict):
            return payload
        if response.is_success:
            raise UnknownTrackerError(f"proxy {action} returned invalid JSON", status_code=response.status_code)
        raise error_from_envelope(response.status_code, payload)

    async def list_issue_types(self) -> list[IssueTypeDescriptor]:
        payload = await self._call("GET", "issue-types")
        return [IssueTypeDescriptor.from_dict(item) for item in payload.get("issueTypes", [])]

    async def get_fields(self, issue_type: str, *, include_optional: bool = False) -> list[FieldModel]:
        payload = await self._call(
            "GET",
            "fields",
            params={"issueType": issue_type, "includeOptional": str(include_optional).lower()},
        )
        return [FieldModel.from_dict(item) for item in payload.get("fields", [])]

    async def search(self, field: FieldModel, query: str, *, issue_type: str | None = None) -> list[Candidate]:
        params = {"field": field.display_name, "fieldKey": field.key, "query": query}
        if issue_type:
            params["issueType"] = issue_type
        payload = await self._call("GET", "search", params=params)
        return [Candidate.from_dict(item) for item in payload.get("results", [])]

    async def create_issue(self, request: IssueRequest) -> SubmissionResult:
        payload = await self._call("POST", "create", json=request.to_body())
        return SubmissionResult(
            success=bool(payload.get("success")),
            tracker_id=payload.get("trackerId"),
            tracker_url=payload.get("trackerUrl"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
