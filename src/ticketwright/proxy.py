"""Application-facing HTTP proxy (FastAPI).

``GET /api/jira?action=status|issue-types|fields|search`` and
``POST /api/jira?action=create``. Every request resolves its own
credentials: the ``x-jira-credentials`` header when it carries a complete
set, otherwise the server environment.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from ticketwright.config import (
    CREDENTIALS_HEADER,
    DEFAULT_PORT,
    Settings,
    config_status,
    missing_env_vars,
    read_settings,
    resolve_credentials,
)
from ticketwright.errors import ConfigurationError, TrackerError, TransientNetworkError, ValidationError
from ticketwright.models import IssueRequest
from ticketwright.service import TrackerService
from ticketwright.types.api import (
    CreateIssueResponse,
    ErrorBody,
    ErrorResponse,
    FieldsResponse,
    IssueTypesResponse,
    SearchResponse,
)

if TYPE_CHECKING:
    from fastapi.responses import JSONResponse
    from starlette.requests import Request

logger = logging.getLogger(__name__)

_BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off"})
_GET_ACTIONS = ("status", "issue-types", "fields", "search")
_POST_ACTIONS = ("create",)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    body = ErrorResponse(error=ErrorBody(message=message, code=code, details=details or {}))
    return JSONResponse(body, status_code=status_code)


def _tracker_error_response(exc: TrackerError) -> JSONResponse:
    """Map a taxonomy error onto the envelope with its HTTP status."""
    if isinstance(exc, ConfigurationError):
        return _error_response(exc.user_message, exc.code, 400, {"missing": exc.missing})
    if isinstance(exc, TransientNetworkError):
        return _error_response(exc.user_message, exc.code, 503)
    if exc.status_code in (400, 401, 403, 404):
        details: dict[str, Any] = {}
        if isinstance(exc, ValidationError):
            # The wizard needs the per-field detail to find undeclared required fields.
            details = {"body": exc.body, "fieldErrors": exc.field_errors, "errorMessages": exc.error_messages}
        return _error_response(exc.user_message, exc.code, exc.status_code, details)
    return _error_response(exc.user_message, exc.code, 502, {"trackerStatus": exc.status_code})


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse and validate a JSON object body, returning 400 on failure."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


def _get_bool_param(params: Mapping[str, str], name: str, default: bool) -> bool | JSONResponse:
    """Extract a boolean query param, returning *default* when absent."""
    raw = params.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _BOOL_TRUE_VALUES:
        return True
    if value in _BOOL_FALSE_VALUES:
        return False
    return _error_response(
        f'Invalid value for {name}: "{raw}". Must be one of true/false, 1/0, yes/no, on/off.',
        "VALIDATION_ERROR",
        400,
        {"param": name, "value": raw},
    )


def _required_param(params: Mapping[str, str], name: str) -> str | JSONResponse:
    value = (params.get(name) or "").strip()
    if not value:
        return _error_response(f"Missing required parameter: {name}", "VALIDATION_ERROR", 400, {"param": name})
    return value


def _validate_create_body(body: dict[str, Any]) -> IssueRequest | JSONResponse:
    for key in ("issueType", "summary"):
        if not isinstance(body.get(key), str) or not body[key].strip():
            return _error_response(f"{key} is required", "VALIDATION_ERROR", 400, {"param": key})
    for key, kind in (("fields", dict), ("labels", list), ("context", dict), ("attachments", list)):
        if key in body and not isinstance(body[key], kind):
            return _error_response(f"{key} must be a JSON {kind.__name__}", "VALIDATION_ERROR", 400, {"param": key})
    try:
        return IssueRequest.from_body(body)  # type: ignore[arg-type]
    except (KeyError, TypeError, AttributeError) as exc:
        return _error_response(f"Malformed create request: {exc}", "VALIDATION_ERROR", 400)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    environ: Mapping[str, str] | None = None,
) -> Any:
    """Create the FastAPI proxy application.

    *transport* is handed to every tracker client the app builds;
    *environ* replaces ``os.environ`` for server-side credentials.
    """
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse

    # Expose Request in module globals so PEP 563 deferred annotations resolve
    globals()["Request"] = Request

    app_settings = settings if settings is not None else read_settings()
    app = FastAPI(title="ticketwright proxy", docs_url=None, redoc_url=None)

    def _service_for(request: Request) -> TrackerService:
        credentials = resolve_credentials(request.headers.get(CREDENTIALS_HEADER), environ)
        if credentials is None:
            missing = missing_env_vars(environ)
            msg = "Jira is not configured. Please provide credentials or set environment variables."
            raise ConfigurationError(msg, missing=missing)
        return TrackerService(credentials, app_settings, transport=transport)

    async def _issue_types(service: TrackerService) -> JSONResponse:
        types = await service.list_issue_types()
        return JSONResponse(IssueTypesResponse(issueTypes=[t.to_dict() for t in types]))

    async def _fields(service: TrackerService, params: Mapping[str, str]) -> JSONResponse:
        issue_type = _required_param(params, "issueType")
        if not isinstance(issue_type, str):
            return issue_type
        include_optional = _get_bool_param(params, "includeOptional", False)
        if not isinstance(include_optional, bool):
            return include_optional
        fields = await service.get_fields(issue_type, include_optional=include_optional)
        result = FieldsResponse(
            issueType=issue_type, fields=[f.to_dict() for f in fields], projectKey=service.project_key
        )
        return JSONResponse(result)

    async def _search(service: TrackerService, params: Mapping[str, str]) -> JSONResponse:
        field_name = _required_param(params, "field")
        if not isinstance(field_name, str):
            return field_name
        results = await service.search(
            field_name,
            params.get("query", ""),
            field_key=params.get("fieldKey") or None,
            issue_type=params.get("issueType") or None,
        )
        return JSONResponse(SearchResponse(results=[c.to_dict() for c in results]))

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.get("/api/jira")
    async def api_jira_get(request: Request) -> JSONResponse:
        params = request.query_params
        action = params.get("action", "")
        if action == "status":
            return JSONResponse(config_status(environ))
        if action not in _GET_ACTIONS:
            return _error_response(
                f"Unknown action: {action or '(none)'}",
                "INVALID_ACTION",
                400,
                {"valid": list(_GET_ACTIONS)},
            )
        try:
            async with _service_for(request) as service:
                if action == "issue-types":
                    return await _issue_types(service)
                if action == "fields":
                    return await _fields(service, params)
                return await _search(service, params)
        except TrackerError as exc:
            return _tracker_error_response(exc)

    @app.post("/api/jira")
    async def api_jira_post(request: Request) -> JSONResponse:
        action = request.query_params.get("action", "")
        if action not in _POST_ACTIONS:
            return _error_response(
                f"Unknown action: {action or '(none)'}",
                "INVALID_ACTION",
                400,
                {"valid": list(_POST_ACTIONS)},
            )
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        issue = _validate_create_body(body)
        if not isinstance(issue, IssueRequest):
            return issue
        try:
            async with _service_for(request) as service:
                result = await service.create_issue(issue)
        except TrackerError as exc:
            return _tracker_error_response(exc)
        except ValueError as exc:
            return _error_response(str(exc), "VALIDATION_ERROR", 400)
        created = CreateIssueResponse(
            success=result.success, trackerId=result.tracker_id or "", trackerUrl=result.tracker_url or ""
        )
        return JSONResponse(created)

    return app


def main(
    port: int = DEFAULT_PORT, *, settings: Settings | None = None, environ: Mapping[str, str] | None = None
) -> None:
    """Start the proxy server on localhost; *environ* supplies server-side credentials."""
    import uvicorn

    app = create_app(settings, environ=environ)
    print(f"ticketwright proxy: http://localhost:{port}/api/jira")
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
