"""FieldNormalizer: raw createmeta descriptors to an ordered FieldModel list.

Pure and total. Unknown schema shapes fall back to ``text``; malformed
allowed-value entries are dropped rather than raising.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ticketwright.autocomplete import categorize
from ticketwright.models import FieldModel, FieldOption, FieldType
from ticketwright.types import RawAllowedValue, RawFieldMeta

logger = logging.getLogger(__name__)

# Collected by dedicated wizard steps or implied by the session; never generic fields.
SKIP_FIELDS: frozenset[str] = frozenset({"summary", "description", "issuetype", "project", "reporter", "attachment"})

_SCHEMA_TYPES: dict[str, FieldType] = {
    "string": "text",
    "number": "number",
    "array": "array",
    "user": "user",
    "date": "date",
    "datetime": "datetime",
    "boolean": "boolean",
}
# Schema types whose values are typed in directly, never searched for.
_LITERAL_SCHEMA_TYPES: frozenset[str] = frozenset({"string", "number", "date", "datetime", "boolean"})
PRIORITY_KEY = "priority"


def normalize(
    raw_fields: Mapping[str, RawFieldMeta] | Iterable[RawFieldMeta],
    *,
    include_optional: bool = False,
    default_overrides: Mapping[str, Any] | None = None,
) -> list[FieldModel]:
    """Normalize raw descriptors into FieldModels, required first then by name.

    *raw_fields* is either a key -> descriptor mapping (as returned by
    ``SchemaFetcher.fetch_fields``) or a plain sequence of descriptors
    carrying ``fieldId``/``key``. *default_overrides* are adapter-level
    defaults and take precedence over anything the tracker declares.
    """
    overrides = default_overrides or {}
    normalized: list[FieldModel] = []
    skipped: list[str] = []
    for key, meta in _iter_descriptors(raw_fields):
        name = str(meta.get("name") or key)
        if key in SKIP_FIELDS or name.lower() in SKIP_FIELDS:
            skipped.append(key)
            continue
        if not meta.get("required", False) and not include_optional:
            continue
        normalized.append(normalize_field(key, meta, default_override=overrides.get(key)))
    if skipped:
        logger.debug("Skipped fields collected by dedicated steps: %s", skipped)
    normalized.sort(key=lambda f: (not f.required, f.display_name.casefold(), f.display_name))
    return normalized


def normalize_field(key: str, meta: RawFieldMeta, *, default_override: Any = None) -> FieldModel:
    """Normalize one descriptor. Does not apply the skip or optional filters."""
    name = str(meta.get("name") or key)
    schema = meta.get("schema") if isinstance(meta.get("schema"), dict) else {}
    schema_type = str(schema.get("type") or "string")  # type: ignore[union-attr]
    custom_type = str(schema.get("custom") or "")  # type: ignore[union-attr]

    options = _build_options(meta.get("allowedValues"))
    field_type: FieldType
    if options:
        field_type = "multiselect" if schema_type == "array" else "select"
    else:
        field_type = _SCHEMA_TYPES.get(schema_type, "text")
        if field_type == "text" and schema_type == "string" and _looks_narrative(key, name, custom_type):
            field_type = "textarea"

    auto_complete_url = meta.get("autoCompleteUrl") or None
    category = categorize(name, key)
    needs_search = bool(auto_complete_url) or field_type == "user" or (
        category in ("epic", "team") and schema_type not in _LITERAL_SCHEMA_TYPES
    )

    return FieldModel(
        key=key,
        display_name=name,
        required=bool(meta.get("required", False)),
        type=field_type,
        options=options,
        autocomplete_category=category if needs_search else None,
        default_value=_resolve_default(key, meta, options, default_override),
        description=meta.get("description") or None,
        placeholder=f"Enter {name.lower()}",
        auto_complete_url=auto_complete_url,
    )


def _iter_descriptors(
    raw_fields: Mapping[str, RawFieldMeta] | Iterable[RawFieldMeta],
) -> Iterable[tuple[str, RawFieldMeta]]:
    if isinstance(raw_fields, Mapping):
        for key, meta in raw_fields.items():
            if isinstance(meta, Mapping):
                yield str(key), meta
        return
    for meta in raw_fields:
        if not isinstance(meta, Mapping):
            continue
        key = meta.get("fieldId") or meta.get("key")
        if key:
            yield str(key), meta


def _looks_narrative(key: str, name: str, custom_type: str) -> bool:
    return "textarea" in custom_type or "description" in name.lower() or "description" in key.lower()


def _build_options(allowed: list[RawAllowedValue] | None) -> tuple[FieldOption, ...]:
    if not isinstance(allowed, list):
        return ()
    options: list[FieldOption] = []
    for entry in allowed:
        if not isinstance(entry, Mapping):
            continue
        raw_id, value, name = entry.get("id"), entry.get("value"), entry.get("name")
        ident = raw_id if raw_id not in (None, "") else (value or name)
        if ident in (None, ""):
            continue
        options.append(
            FieldOption(
                id=str(ident),
                value=str(value or name or ident),
                label=str(name or value or ident),
            )
        )
    return tuple(options)


def _resolve_default(key: str, meta: RawFieldMeta, options: tuple[FieldOption, ...], override: Any) -> Any:
    """Adapter override > tracker default > sole option > priority "medium"."""
    if override is not None:
        return override
    if meta.get("hasDefaultValue") and meta.get("defaultValue") is not None:
        return _unwrap_tracker_default(meta["defaultValue"])
    if len(options) == 1:
        return options[0].id
    if key == PRIORITY_KEY and options:
        for option in options:
            if "medium" in option.label.lower() or "medium" in option.value.lower():
                return option.id
    return None


def _unwrap_tracker_default(raw: Any) -> Any:
    """Reduce a tracker default object (``{"id": ..}``, ``{"accountId": ..}``) to the value a step stores."""
    if isinstance(raw, list):
        unwrapped = [_unwrap_tracker_default(item) for item in raw]
        return [item for item in unwrapped if item is not None]
    if isinstance(raw, Mapping):
        for attr in ("id", "accountId", "value", "name", "key"):
            if raw.get(attr) not in (None, ""):
                return str(raw[attr])
        return None
    return raw
