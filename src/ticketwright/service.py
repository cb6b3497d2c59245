"""TrackerService: everything one credential set can do against the tracker.

The proxy builds one per request; the CLI builds one per invocation.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from collections.abc import Iterable
from typing import Any

import httpx

from ticketwright.autocomplete import AutocompleteResolver, ad_hoc_field
from ticketwright.client import JiraClient
from ticketwright.config import Credentials, Settings
from ticketwright.errors import TrackerError
from ticketwright.formatters import build_description, format_summary
from ticketwright.models import Attachment, Candidate, FieldModel, IssueRequest, IssueTypeDescriptor, SubmissionResult
from ticketwright.normalizer import normalize
from ticketwright.schema import SchemaFetcher

logger = logging.getLogger(__name__)

FEEDBACK_LABELS: dict[str, str] = {"issue": "bug", "feature": "enhancement", "like": "feedback"}
# Set from the request itself; caller-supplied field values never override them.
RESERVED_FIELDS: frozenset[str] = frozenset({"project", "issuetype", "summary", "description", "labels"})

_DATA_URL_RE = re.compile(r"^data:image/(\w+);base64,(.+)$", re.S)


class TrackerService:
    def __init__(
        self,
        credentials: Credentials,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.client = JiraClient(credentials.normalized(), transport=transport)
        self.schema = SchemaFetcher(self.client)
        self.resolver = AutocompleteResolver(self.client)

    @property
    def project_key(self) -> str:
        return self.client.project_key

    async def __aenter__(self) -> TrackerService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    # -- schema --

    async def list_issue_types(self) -> list[IssueTypeDescriptor]:
        return await self.schema.list_issue_types()

    async def get_fields(self, issue_type: str, *, include_optional: bool = False) -> list[FieldModel]:
        raw_fields = await self.schema.fetch_fields(issue_type)
        return normalize(
            raw_fields,
            include_optional=include_optional,
            default_overrides=self.settings.default_field_values,
        )

    # -- autocomplete --

    async def search(
        self,
        field_name: str,
        query: str,
        *,
        field_key: str | None = None,
        issue_type: str | None = None,
    ) -> list[Candidate]:
        """Search candidates for a field. Never raises for tracker failures.

        With *issue_type* the field's full model (and its declared options)
        is looked up first; without it, or if that lookup fails, the search
        runs on name and key alone.
        """
        field: FieldModel | None = None
        if issue_type:
            try:
                fields = await self.get_fields(issue_type, include_optional=True)
            except TrackerError as exc:
                logger.info("Field lookup for search failed; searching by name only: %s", exc)
                fields = []
            field = _find_field(fields, field_name, field_key)
        return await self.resolver.resolve(field or ad_hoc_field(field_name, field_key), query)

    # -- creation --

    def build_issue_fields(self, request: IssueRequest) -> dict[str, Any]:
        labels = _dedupe_labels(
            [
                *self.settings.default_labels,
                *request.labels,
                *([FEEDBACK_LABELS[request.feedback_kind]] if request.feedback_kind in FEEDBACK_LABELS else []),
            ]
        )
        fields: dict[str, Any] = {
            "project": {"key": self.project_key},
            "issuetype": {"name": request.issue_type},
            "summary": format_summary(request.summary),
            "description": build_description(request.description, request.context),
            "labels": labels,
            **self.settings.custom_fields,
        }
        for key, value in request.fields.items():
            if key in RESERVED_FIELDS:
                logger.debug("Ignoring caller value for reserved field %s", key)
                continue
            if value is None or value == "":
                continue
            fields[key] = _stringify_id(value)
        return fields

    async def create_issue(self, request: IssueRequest) -> SubmissionResult:
        """Create the issue, then upload attachments best-effort.

        Tracker rejections propagate as TrackerError; attachment failures
        never do.
        """
        if not request.summary.strip():
            msg = "Summary is required"
            raise ValueError(msg)
        fields = self.build_issue_fields(request)
        logger.info(
            "Creating %s issue in %s with fields %s",
            request.issue_type,
            self.project_key,
            sorted(fields),
            extra={"action": "create_issue"},
        )
        created = await self.client.create_issue(fields)
        issue_key = str(created["key"])
        if request.attachments:
            await self.upload_attachments(issue_key, request.attachments)
        return SubmissionResult(success=True, tracker_id=issue_key, tracker_url=self.client.browse_url(issue_key))

    async def upload_attachments(self, issue_key: str, attachments: Iterable[Attachment]) -> int:
        """Upload concurrently; returns how many succeeded. Failures are logged only."""
        decoded = [d for d in (_decode_attachment(a) for a in attachments) if d is not None]
        if not decoded:
            return 0
        results = await asyncio.gather(
            *(self.client.upload_attachment(issue_key, name, content, mime) for name, content, mime in decoded),
            return_exceptions=True,
        )
        uploaded = 0
        for (name, _, _), result in zip(decoded, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Attachment %s failed to upload to %s: %s",
                    name,
                    issue_key,
                    result,
                    extra={"action": "upload_attachment", "error": str(result)},
                )
            else:
                uploaded += 1
        return uploaded

    async def validate_configuration(self) -> bool:
        return await self.client.validate_configuration()


def _find_field(fields: list[FieldModel], name: str, key: str | None) -> FieldModel | None:
    if key:
        for field in fields:
            if field.key == key:
                return field
    lowered = name.lower()
    for field in fields:
        if field.display_name.lower() == lowered:
            return field
    return None


def _dedupe_labels(labels: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for label in labels:
        if label and label not in seen:
            seen.add(label)
            result.append(label)
    return result


def _stringify_id(value: Any) -> Any:
    """Tracker option references need string ids; callers sometimes send numbers."""
    if isinstance(value, dict) and "id" in value and not isinstance(value["id"], str):
        return {**value, "id": str(value["id"])}
    if isinstance(value, list):
        return [_stringify_id(item) for item in value]
    return value


def _decode_attachment(attachment: Attachment) -> tuple[str, bytes, str] | None:
    match = _DATA_URL_RE.match(attachment.data_url)
    if not match:
        logger.warning("Skipping attachment %s: not a base64 image data URL", attachment.name)
        return None
    extension, payload = match.groups()
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Skipping attachment %s: invalid base64 content", attachment.name)
        return None
    return f"{attachment.name}.{extension}", content, f"image/{extension}"
