"""ErrorClassifier: turn a failed submission into a message and missing field names.

The tracker enforces required fields its schema never declared and reports
them as semi-structured text. ``classify`` extracts the field names;
``classify_then_transition`` resolves them against the current field set
and decides whether the wizard can recover in place.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ticketwright.errors import TrackerError, ValidationError
from ticketwright.models import SYNTHETIC_KEYS, FieldModel

logger = logging.getLogger(__name__)

# Substring matching is skipped for names shorter than this.
MIN_SUBSTRING_MATCH = 3

_ENTER_VALUE_RE = re.compile(r"Please enter a value for the (.+?) fields?\b", re.I)
_AND_RE = re.compile(r"\s+and\s+", re.I)
_COMMA_RE = re.compile(r",\s*")
_QUOTED_REQUIRED_RE = re.compile(r"""['"]([^'"]+)['"]\s+is required""", re.I)
_BARE_REQUIRED_RE = re.compile(r"(?:^|[.:;\n]\s*)([A-Za-z][\w ()/-]{0,80}?)\s+is required", re.I)
_EMBEDDED_JSON_RE = re.compile(r"\{[\s\S]*\"errors\"[\s\S]*\}")


@dataclass(frozen=True)
class Classification:
    display_message: str
    missing_field_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class Recoverable:
    """Stay in review: attach *field_errors* and mark *newly_required* keys required."""

    field_errors: dict[str, str] = field(default_factory=dict)
    newly_required: frozenset[str] = frozenset()
    submit_message: str = ""
    reveal_optional: bool = False


@dataclass(frozen=True)
class Terminal:
    """The current credentials cannot go further; offer reconfiguration, not retry."""

    reason: str
    reconfigure: bool = True


Outcome = Recoverable | Terminal


def _dedupe(names: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        cleaned = name.strip().strip("'\"").strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return tuple(result)


def _structured_names(data: dict[str, Any]) -> list[str]:
    missing = data.get("missingFields")
    if isinstance(missing, list):
        return [str(name) for name in missing]
    errors = data.get("errors")
    if isinstance(errors, dict):
        return [str(key) for key in errors]
    return []


def parse_missing_field_names(text: str) -> tuple[str, ...]:
    """Apply the free-text patterns to *text*, in order, accumulating every match."""
    names: list[str] = []
    for match in _ENTER_VALUE_RE.finditer(text):
        for part in _AND_RE.split(match.group(1)):
            names.extend(_COMMA_RE.split(part))
    names.extend(m.group(1) for m in _QUOTED_REQUIRED_RE.finditer(text))
    names.extend(m.group(1) for m in _BARE_REQUIRED_RE.finditer(text))
    embedded = _EMBEDDED_JSON_RE.search(text)
    if embedded:
        try:
            data = json.loads(embedded.group(0))
        except (json.JSONDecodeError, ValueError):
            data = None
        if isinstance(data, dict) and isinstance(data.get("errors"), dict):
            names.extend(str(key) for key in data["errors"])
    return _dedupe(names)


def _validation_text(exc: ValidationError) -> str:
    parts = list(exc.error_messages)
    parts.extend(exc.field_errors.values())
    return "\n".join(p for p in parts if p) or exc.user_message


def classify(raw: str | TrackerError) -> Classification:
    """Classify a failure into a display message plus missing field names.

    Structured payloads listing offending fields win; free-text patterns are
    the fallback; anything else is an opaque message with no names.
    """
    if isinstance(raw, TrackerError):
        if isinstance(raw, ValidationError):
            text = _validation_text(raw)
            names = list(raw.field_errors)
            try:
                body = json.loads(raw.body) if raw.body else None
            except (json.JSONDecodeError, ValueError):
                body = None
            if isinstance(body, dict) and isinstance(body.get("missingFields"), list):
                names = [str(n) for n in body["missingFields"]]
            if names:
                return Classification(text, _dedupe(names))
            return Classification(text, parse_missing_field_names(text))
        return Classification(raw.user_message)

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        data = None
    if isinstance(data, dict):
        message = str(data.get("message") or data.get("error") or raw)
        names = _structured_names(data)
        if names:
            return Classification(message, _dedupe(names))
        return Classification(message, parse_missing_field_names(message))
    return Classification(raw, parse_missing_field_names(raw))


def match_fields_by_name(fields: Iterable[FieldModel], names: Iterable[str]) -> set[str]:
    """Resolve tracker-reported names to field keys.

    Per name: case-insensitive exact match on display name or key first;
    only when that finds nothing, substring containment in either direction
    against display names.
    """
    fields = list(fields)
    matched: set[str] = set()
    for name in names:
        wanted = name.strip().lower()
        if not wanted:
            continue
        exact = {f.key for f in fields if f.display_name.lower() == wanted or f.key.lower() == wanted}
        if exact:
            matched |= exact
            continue
        if len(wanted) < MIN_SUBSTRING_MATCH:
            continue
        for f in fields:
            candidate = f.display_name.lower()
            if len(candidate) < MIN_SUBSTRING_MATCH:
                continue
            if wanted in candidate or candidate in wanted:
                matched.add(f.key)
    return matched


def classify_then_transition(
    error: str | TrackerError,
    fields: Iterable[FieldModel],
    *,
    already_required: Iterable[str] = (),
) -> Outcome:
    """Classify a submission failure into the wizard's next move.

    *already_required* is the set of keys currently shown as required
    (schema-required plus conditionally required).
    """
    if isinstance(error, TrackerError) and error.terminal:
        logger.info("Submission failed terminally: %s", error.code, extra={"error": error.code})
        return Terminal(reason=error.user_message)

    fields = list(fields)
    by_key = {f.key: f for f in fields}
    classification = classify(error)
    names = classification.missing_field_names
    matched = match_fields_by_name(fields, names) if names else set()

    tracker_messages = error.field_errors if isinstance(error, ValidationError) else {}
    field_errors = {
        key: tracker_messages.get(key) or f"{by_key[key].display_name} is required" for key in sorted(matched)
    }
    for name in names:
        if name.lower() in SYNTHETIC_KEYS:
            key = name.lower()
            field_errors.setdefault(key, tracker_messages.get(key) or f"{key.capitalize()} is required")

    shown_required = set(already_required)
    newly_required = frozenset(matched - shown_required)
    if matched:
        readable = _dedupe(by_key[n].display_name if n in by_key else n for n in names)
        submit_message = f"Please fill in the required fields: {', '.join(readable)}"
    else:
        submit_message = classification.display_message
    if names and not matched:
        logger.info("Could not match reported fields %s to the current field set", list(names))
    return Recoverable(
        field_errors=field_errors,
        newly_required=newly_required,
        submit_message=submit_message,
        reveal_optional=bool(newly_required),
    )
