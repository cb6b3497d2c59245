"""Credentials and settings resolution.

Server-side credentials come from the environment; a caller may supply its
own per request in the ``x-jira-credentials`` header, which then wins.
Adapter settings (labels, default field values, custom fields) live in a
JSON file at $TICKETWRIGHT_CONFIG or ~/.config/ticketwright/config.json.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from ticketwright.types.api import StatusResponse

logger = logging.getLogger(__name__)

CREDENTIALS_HEADER = "x-jira-credentials"
ENV_VARS: tuple[str, ...] = ("JIRA_URL", "JIRA_EMAIL", "JIRA_API_TOKEN", "JIRA_PROJECT_KEY")

SETTINGS_DIR = Path.home() / ".config" / "ticketwright"
SETTINGS_FILE = SETTINGS_DIR / "config.json"
DEFAULT_PORT = 8390

_PROJECT_KEY_RE = re.compile(r"^[A-Z][A-Z0-9]*$")
_JIRA_CLOUD_SUFFIX = ".atlassian.net"


def normalize_jira_url(raw: str) -> str:
    """Reduce user input to ``scheme://host`` with no trailing slash.

    A missing scheme defaults to https. Unparseable input is returned with
    trailing slashes stripped.
    """
    trimmed = raw.strip()
    if not trimmed:
        return ""
    candidate = trimmed if re.match(r"^https?://", trimmed, re.I) else f"https://{trimmed}"
    try:
        url = httpx.URL(candidate)
    except httpx.InvalidURL:
        return re.sub(r"[\\/]+$", "", trimmed)
    if not url.host:
        return re.sub(r"[\\/]+$", "", trimmed)
    port = f":{url.port}" if url.port else ""
    return f"{url.scheme}://{url.host}{port}"


def is_jira_cloud_url(url: str) -> bool:
    try:
        host = httpx.URL(url).host
    except httpx.InvalidURL:
        return False
    return bool(host) and host.lower().endswith(_JIRA_CLOUD_SUFFIX)


@dataclass(frozen=True)
class Credentials:
    """An email/API-token pair bound to one Jira Cloud site and project."""

    jira_url: str
    email: str
    api_token: str
    project_key: str

    def __repr__(self) -> str:
        return f"Credentials(jira_url={self.jira_url!r}, email={self.email!r}, project_key={self.project_key!r})"

    @property
    def auth_header(self) -> str:
        token = base64.b64encode(f"{self.email}:{self.api_token}".encode()).decode("ascii")
        return f"Basic {token}"

    def validate(self) -> dict[str, str]:
        """Return field -> message for every invalid entry (empty when valid)."""
        errors: dict[str, str] = {}
        if not self.jira_url.strip():
            errors["jiraUrl"] = "Jira URL is required"
        elif not is_jira_cloud_url(normalize_jira_url(self.jira_url)):
            errors["jiraUrl"] = "Please enter a valid Atlassian URL (e.g., https://your-company.atlassian.net)"

        if not self.email.strip():
            errors["email"] = "Email is required"
        elif "@" not in self.email:
            errors["email"] = "Please enter a valid email address"

        if not self.api_token.strip():
            errors["apiToken"] = "API Token is required"

        if not self.project_key.strip():
            errors["projectKey"] = "Project Key is required"
        elif not _PROJECT_KEY_RE.match(self.project_key.strip().upper()):
            errors["projectKey"] = "Project key should be uppercase letters (e.g., PROJ)"
        return errors

    def normalized(self) -> Credentials:
        return Credentials(
            jira_url=normalize_jira_url(self.jira_url),
            email=self.email.strip(),
            api_token=self.api_token.strip(),
            project_key=self.project_key.strip().upper(),
        )

    def to_header_value(self) -> str:
        return json.dumps(
            {
                "jiraUrl": self.jira_url,
                "email": self.email,
                "apiToken": self.api_token,
                "projectKey": self.project_key,
            }
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Credentials | None:
        """Build from the camelCase header shape; ``None`` if any key is missing or empty."""
        values = [data.get(k) for k in ("jiraUrl", "email", "apiToken", "projectKey")]
        if not all(isinstance(v, str) and v for v in values):
            return None
        jira_url, email, api_token, project_key = values
        return cls(jira_url, email, api_token, project_key)  # type: ignore[arg-type]


def parse_credentials_header(value: str | None) -> Credentials | None:
    """Parse the session credentials header. Invalid headers are logged and ignored."""
    if not value:
        return None
    try:
        data = json.loads(value)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Ignoring unparseable %s header: %s", CREDENTIALS_HEADER, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring %s header: expected a JSON object", CREDENTIALS_HEADER)
        return None
    creds = Credentials.from_mapping(data)
    if creds is None:
        logger.warning(
            "Ignoring %s header: jiraUrl, email, apiToken and projectKey are all required", CREDENTIALS_HEADER
        )
    return creds


def missing_env_vars(environ: Mapping[str, str] | None = None) -> list[str]:
    env = os.environ if environ is None else environ
    return [name for name in ENV_VARS if not env.get(name)]


def credentials_from_env(environ: Mapping[str, str] | None = None) -> Credentials | None:
    env = os.environ if environ is None else environ
    if missing_env_vars(env):
        return None
    return Credentials(
        jira_url=env["JIRA_URL"],
        email=env["JIRA_EMAIL"],
        api_token=env["JIRA_API_TOKEN"],
        project_key=env["JIRA_PROJECT_KEY"],
    )


def config_status(environ: Mapping[str, str] | None = None) -> StatusResponse:
    """Report whether server-side credentials are present. Ignores session credentials."""
    missing = missing_env_vars(environ)
    configured = not missing
    hint = "Jira is ready to receive feedback" if configured else f"Add these to the environment: {', '.join(missing)}"
    return StatusResponse(configured=configured, missing=missing, hint=hint)


def resolve_credentials(header_value: str | None, environ: Mapping[str, str] | None = None) -> Credentials | None:
    """Explicit session credentials first, then the environment."""
    return parse_credentials_header(header_value) or credentials_from_env(environ)


# ---------------------------------------------------------------------------
# Settings file
# ---------------------------------------------------------------------------


@dataclass
class Settings:
    port: int = DEFAULT_PORT
    default_labels: list[str] = field(default_factory=list)
    default_field_values: dict[str, Any] = field(default_factory=dict)
    custom_fields: dict[str, Any] = field(default_factory=dict)
    log_dir: Path = SETTINGS_DIR / "logs"


def settings_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get("TICKETWRIGHT_CONFIG")
    return Path(override).expanduser() if override else SETTINGS_FILE


def read_settings(path: Path | None = None) -> Settings:
    """Read the settings file. Returns defaults if missing or invalid."""
    path = path or settings_path()
    if not path.exists():
        return Settings()
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Corrupt settings file %s: %s; using defaults", path, exc)
        return Settings()
    if not isinstance(data, dict):
        logger.warning("Settings file %s is not a JSON object; using defaults", path)
        return Settings()

    raw_port = data.get("port", DEFAULT_PORT)
    try:
        port = int(raw_port)
    except (TypeError, ValueError):
        logger.warning("Invalid port value %r in settings; using default %d", raw_port, DEFAULT_PORT)
        port = DEFAULT_PORT
    if not (1 <= port <= 65535):
        logger.warning("Port %d out of range (1-65535) in settings; using default %d", port, DEFAULT_PORT)
        port = DEFAULT_PORT

    raw_labels = data.get("default_labels", [])
    if not isinstance(raw_labels, list):
        logger.warning("default_labels in %s must be a list; ignoring", path)
        raw_labels = []
    labels = [label for label in raw_labels if isinstance(label, str) and label]

    defaults = data.get("default_field_values", {})
    if not isinstance(defaults, dict):
        logger.warning("default_field_values in %s must be an object; ignoring", path)
        defaults = {}

    custom = data.get("custom_fields", {})
    if not isinstance(custom, dict):
        logger.warning("custom_fields in %s must be an object; ignoring", path)
        custom = {}

    settings = Settings(port=port, default_labels=labels, default_field_values=defaults, custom_fields=custom)
    raw_log_dir = data.get("log_dir")
    if isinstance(raw_log_dir, str) and raw_log_dir:
        settings.log_dir = Path(raw_log_dir).expanduser()
    return settings
