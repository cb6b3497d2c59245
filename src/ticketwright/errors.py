"""Tracker error taxonomy and the status-code mapping into it.

Every failure that crosses the tracker boundary becomes a ``TrackerError``
subclass. ``ValidationError`` is the only recoverable one inside a wizard
session; the authentication, authorization, not-found and configuration
errors end the session for the current credential set.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Base for every tracker-facing failure."""

    code = "TRACKER_ERROR"
    terminal = False
    default_user_message = "Unable to connect to Jira. Please check your credentials and try again."

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return self.default_user_message


class ConfigurationError(TrackerError):
    """No usable credentials, or credentials that cannot address a tracker."""

    code = "NOT_CONFIGURED"
    terminal = True
    default_user_message = "Jira is not configured. Please provide credentials or set environment variables."

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        self.missing = missing or []
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return str(self)


class AuthenticationError(TrackerError):
    code = "AUTHENTICATION_FAILED"
    terminal = True
    default_user_message = "Authentication failed. Please check your email and API token."


class AuthorizationError(TrackerError):
    code = "PERMISSION_DENIED"
    terminal = True
    default_user_message = "Access denied. Please check your permissions for this project."


class NotFoundError(TrackerError):
    code = "NOT_FOUND"
    terminal = True
    default_user_message = "Project not found. Please verify your Jira URL and project key."


class ValidationError(TrackerError):
    """HTTP 400 from the tracker. Carries per-field detail when the body has it."""

    code = "VALIDATION_ERROR"
    default_user_message = "Jira rejected the issue. Please review the highlighted fields."

    def __init__(self, message: str, *, status_code: int | None = 400, body: str = "") -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.field_errors, self.error_messages = _parse_validation_body(body)


class TransientNetworkError(TrackerError):
    code = "NETWORK_ERROR"
    default_user_message = "Unable to connect to Jira. Please check your internet connection."


class UnknownTrackerError(TrackerError):
    code = "TRACKER_ERROR"
    default_user_message = "Jira server error. Please try again later."


_STATUS_CLASSES: dict[int, type[TrackerError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
}

# Proxy error codes back to exception classes (see proxy._error_response).
ERROR_CODES: dict[str, type[TrackerError]] = {
    cls.code: cls
    for cls in (
        ConfigurationError,
        AuthenticationError,
        AuthorizationError,
        NotFoundError,
        ValidationError,
        TransientNetworkError,
        UnknownTrackerError,
    )
}


def _parse_validation_body(body: str) -> tuple[dict[str, str], list[str]]:
    """Extract ``errors`` (field -> message) and ``errorMessages`` from a tracker body."""
    if not body:
        return {}, []
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return {}, []
    if not isinstance(data, dict):
        return {}, []
    raw_errors = data.get("errors")
    field_errors = {str(k): str(v) for k, v in raw_errors.items()} if isinstance(raw_errors, dict) else {}
    raw_messages = data.get("errorMessages")
    messages = [str(m) for m in raw_messages] if isinstance(raw_messages, list) else []
    return field_errors, messages


def error_for_status(status_code: int, body: str, *, context: str) -> TrackerError:
    """Build the taxonomy error for a non-success tracker response.

    The body is logged here for diagnostics; callers must not surface it
    verbatim to end users.
    """
    logger.warning(
        "Tracker error during %s: HTTP %s",
        context,
        status_code,
        extra={"tracker_status": status_code, "body": body[:2000]},
    )
    cls = _STATUS_CLASSES.get(status_code, UnknownTrackerError)
    return cls(f"{context} failed: HTTP {status_code}", status_code=status_code, body=body)


# ---------------------------------------------------------------------------
# Human-readable messages for raw error text
# ---------------------------------------------------------------------------

_FRIENDLY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"401|unauthorized|authentication", re.I), AuthenticationError.default_user_message),
    (re.compile(r"403|forbidden|permission", re.I), AuthorizationError.default_user_message),
    (re.compile(r"404|not found", re.I), NotFoundError.default_user_message),
    (re.compile(r"429|rate limit", re.I), "Too many requests. Please wait a moment and try again."),
    (re.compile(r"500|internal server", re.I), "Jira server error. Please try again later."),
    (
        re.compile(r"502|503|504|bad gateway|unavailable", re.I),
        "Jira is temporarily unavailable. Please try again later.",
    ),
    (re.compile(r"network|fetch|connection|ECONNREFUSED", re.I), TransientNetworkError.default_user_message),
    (re.compile(r"timeout|timed out", re.I), "Request timed out. Please try again."),
    (re.compile(r"invalid.*url", re.I), "Invalid Jira URL. Please check your configuration."),
    (re.compile(r"project.*key", re.I), "Invalid project key. Please check your configuration."),
)


def friendly_message(raw: str) -> str:
    """Map raw error text onto a fixed, user-safe message."""
    for pattern, message in _FRIENDLY_PATTERNS:
        if pattern.search(raw):
            return message
    return TrackerError.default_user_message


def error_from_envelope(status_code: int, payload: Any) -> TrackerError:
    """Rebuild a taxonomy error from a proxy ``{"error": {...}}`` envelope."""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, str):
        error = {"message": error}
    if not isinstance(error, dict):
        return UnknownTrackerError(f"Proxy request failed: HTTP {status_code}", status_code=status_code)
    message = str(error.get("message", f"HTTP {status_code}"))
    details = error.get("details") if isinstance(error.get("details"), dict) else {}
    cls = ERROR_CODES.get(str(error.get("code", "")))
    if cls is None:
        cls = _STATUS_CLASSES.get(status_code, UnknownTrackerError)
    if cls is ConfigurationError:
        missing = details.get("missing") if isinstance(details.get("missing"), list) else []
        return ConfigurationError(message, missing=[str(m) for m in missing])
    body = details.get("body", "")
    return cls(message, status_code=status_code, body=body if isinstance(body, str) else json.dumps(body))
