"""SchemaFetcher: raw issue-type and field metadata for one project.

Two-step createmeta lookup: list the project's issue types, then fetch one
type's fields. Nothing is cached; every call goes to the tracker.
"""

from __future__ import annotations

import logging
from typing import Any

from ticketwright.client import JiraClient
from ticketwright.errors import NotFoundError
from ticketwright.models import IssueTypeDescriptor
from ticketwright.types import RawFieldMeta

logger = logging.getLogger(__name__)


class SchemaFetcher:
    def __init__(self, client: JiraClient) -> None:
        self._client = client

    @property
    def project_key(self) -> str:
        return self._client.project_key

    async def list_issue_types(self) -> list[IssueTypeDescriptor]:
        raw_types = await self._client.list_issue_types()
        types: list[IssueTypeDescriptor] = []
        for raw in raw_types:
            if raw.get("id") is None or not raw.get("name"):
                logger.debug("Skipping malformed issue type entry: %r", raw)
                continue
            types.append(
                IssueTypeDescriptor(
                    id=str(raw["id"]),
                    name=str(raw["name"]),
                    description=raw.get("description") or None,
                    icon_url=raw.get("iconUrl") or None,
                )
            )
        return types

    async def find_issue_type(self, name_or_id: str) -> IssueTypeDescriptor:
        """Resolve an issue type by case-insensitive name, or by id.

        Raises NotFoundError when the project has no such type.
        """
        wanted = name_or_id.strip().lower()
        types = await self.list_issue_types()
        for issue_type in types:
            if issue_type.name.lower() == wanted:
                return issue_type
        for issue_type in types:
            if issue_type.id == name_or_id.strip():
                return issue_type
        available = ", ".join(t.name for t in types) or "none"
        msg = f"Issue type '{name_or_id}' not found in project {self.project_key} (available: {available})"
        raise NotFoundError(msg, status_code=404)

    async def fetch_fields(self, issue_type: str | IssueTypeDescriptor) -> dict[str, RawFieldMeta]:
        """Raw field descriptors for one issue type, keyed by field id in tracker order."""
        if isinstance(issue_type, IssueTypeDescriptor):
            descriptor = issue_type
        else:
            descriptor = await self.find_issue_type(issue_type)
        raw_fields = await self._client.list_fields(descriptor.id)
        fields: dict[str, RawFieldMeta] = {}
        for raw in raw_fields:
            key = raw.get("fieldId") or raw.get("key")
            if not key:
                logger.debug("Skipping field descriptor without an id: %r", raw.get("name"))
                continue
            fields[str(key)] = _to_raw_meta(str(key), raw)
        logger.info(
            "Fetched %d field descriptors for %s/%s",
            len(fields),
            self.project_key,
            descriptor.name,
            extra={"action": "fetch_fields"},
        )
        return fields


def _to_raw_meta(key: str, raw: dict[str, Any]) -> RawFieldMeta:
    meta: RawFieldMeta = {
        "key": key,
        "name": str(raw.get("name") or key),
        "required": bool(raw.get("required", False)),
        "schema": raw.get("schema") if isinstance(raw.get("schema"), dict) else {},  # type: ignore[typeddict-item]
    }
    if isinstance(raw.get("allowedValues"), list):
        meta["allowedValues"] = raw["allowedValues"]
    if "hasDefaultValue" in raw:
        meta["hasDefaultValue"] = bool(raw["hasDefaultValue"])
    if "defaultValue" in raw:
        meta["defaultValue"] = raw["defaultValue"]
    if raw.get("autoCompleteUrl"):
        meta["autoCompleteUrl"] = str(raw["autoCompleteUrl"])
    if raw.get("description"):
        meta["description"] = str(raw["description"])
    return meta
