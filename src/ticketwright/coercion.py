"""SubmissionCoercer: wizard values to the tracker's per-type wire format.

Values arrive as the explicit shapes of ``models.FieldValue``. Each field
type has one coercion function; a value whose shape a type does not accept
is reported once and omitted from the payload.
"""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ticketwright.models import FieldModel, FieldType, Selection

logger = logging.getLogger(__name__)

PRIORITY_KEY = "priority"


class _Omit(enum.Enum):
    OMIT = "omit"

    def __repr__(self) -> str:
        return "OMIT"


OMIT = _Omit.OMIT
"""Marker for "leave this field out of the submission"."""


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return not value
    return False


def _scalar_id(value: Any) -> str | None:
    """The identifier carried by a scalar-ish value, or None for unrecognized shapes."""
    if isinstance(value, Selection):
        return value.id or None
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def _unrecognized(field: FieldModel, value: Any) -> _Omit:
    logger.warning(
        "Unrecognized value shape %s for %s field '%s'; omitting it",
        type(value).__name__,
        field.type,
        field.key,
    )
    return OMIT


# ---------------------------------------------------------------------------
# Per-type rules
# ---------------------------------------------------------------------------


def _coerce_select(field: FieldModel, value: Any) -> Any:
    ident = _scalar_id(value)
    if ident is None:
        return _unrecognized(field, value)
    option = field.find_option(ident)
    return {"id": option.id if option else ident}


def _coerce_priority(field: FieldModel, value: Any) -> Any:
    ident = _scalar_id(value)
    if ident is None:
        return _unrecognized(field, value)
    option = field.find_option(ident, match_label=True)
    if option:
        return {"name": option.label}
    if isinstance(value, Selection) and value.label:
        return {"name": value.label}
    return {"name": ident}


def _coerce_multiselect(field: FieldModel, value: Any) -> Any:
    entries = value if isinstance(value, list) else [value]
    coerced: list[dict[str, str]] = []
    for entry in entries:
        ident = _scalar_id(entry)
        if ident is None:
            continue
        option = field.find_option(ident)
        coerced.append({"id": option.id if option else ident})
    return coerced or OMIT


def _coerce_number(field: FieldModel, value: Any) -> Any:
    if isinstance(value, bool):
        return _unrecognized(field, value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return OMIT
    else:
        return _unrecognized(field, value)
    return number if math.isfinite(number) else OMIT


def _coerce_boolean(field: FieldModel, value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return _unrecognized(field, value)


def _coerce_user(field: FieldModel, value: Any) -> Any:
    ident = _scalar_id(value)
    if ident is None:
        return _unrecognized(field, value)
    return {"accountId": ident}


def _coerce_array(field: FieldModel, value: Any) -> Any:
    entries = value if isinstance(value, list) else [value]
    strings = [ident for ident in (_scalar_id(entry) for entry in entries) if ident]
    return strings or OMIT


def _coerce_text(field: FieldModel, value: Any) -> Any:
    if isinstance(value, str):
        return value
    ident = _scalar_id(value)
    return ident if ident is not None else _unrecognized(field, value)


def _coerce_date(field: FieldModel, value: Any) -> Any:
    ident = _scalar_id(value)
    if ident is None:
        return _unrecognized(field, value)
    if field.autocomplete_category is not None:
        return {"id": ident}
    return ident


_COERCERS: dict[FieldType, Callable[[FieldModel, Any], Any]] = {
    "text": _coerce_text,
    "textarea": _coerce_text,
    "select": _coerce_select,
    "multiselect": _coerce_multiselect,
    "number": _coerce_number,
    "boolean": _coerce_boolean,
    "user": _coerce_user,
    "date": _coerce_date,
    "datetime": _coerce_date,
    "array": _coerce_array,
}


def coerce(field: FieldModel, value: Any) -> Any:
    """Return the wire value for *value*, or ``OMIT`` if it must not be sent.

    Pure: the same field and value always produce the same result.
    """
    if _is_empty(value):
        return OMIT
    if field.key == PRIORITY_KEY and field.type == "select":
        return _coerce_priority(field, value)
    return _COERCERS[field.type](field, value)


def coerce_values(fields: Iterable[FieldModel], values: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce every field that has a value, dropping omitted ones."""
    payload: dict[str, Any] = {}
    for field in fields:
        if field.key not in values:
            continue
        wire = coerce(field, values[field.key])
        if wire is not OMIT:
            payload[field.key] = wire
    return payload
