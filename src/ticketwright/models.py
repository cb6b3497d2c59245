"""Core data model: normalized fields, issue types, candidates, submissions.

FieldModel and friends are frozen. A field set is rebuilt from the tracker
every time an issue type is chosen and never mutated afterwards; the
wizard's mutable state lives in ``wizard.FormState`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from ticketwright.types import CandidateDict, FieldModelDict, FieldOptionDict, IssueTypeDict
from ticketwright.types.api import CreateIssueBody

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

FieldType = Literal[
    "text", "textarea", "select", "multiselect", "number", "boolean", "user", "date", "datetime", "array"
]
AutocompleteCategory = Literal["epic", "team", "user", "generic"]

FIELD_TYPES: frozenset[str] = frozenset(
    {"text", "textarea", "select", "multiselect", "number", "boolean", "user", "date", "datetime", "array"}
)
AUTOCOMPLETE_CATEGORIES: frozenset[str] = frozenset({"epic", "team", "user", "generic"})
_OPTION_TYPES: frozenset[str] = frozenset({"select", "multiselect"})

# The two synthetic fields collected by dedicated wizard steps. They are
# always required and never part of a FieldModel set.
SUMMARY_KEY = "summary"
DESCRIPTION_KEY = "description"
SYNTHETIC_KEYS: frozenset[str] = frozenset({SUMMARY_KEY, DESCRIPTION_KEY})


# ---------------------------------------------------------------------------
# Field schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldOption:
    """One selectable value. ``id`` is always a string on the wire."""

    id: str
    value: str
    label: str

    def to_dict(self) -> FieldOptionDict:
        return {"id": self.id, "value": self.value, "label": self.label}


@dataclass(frozen=True)
class FieldModel:
    """A submittable field, normalized from the tracker's raw descriptor."""

    key: str
    display_name: str
    required: bool
    type: FieldType
    options: tuple[FieldOption, ...] = ()
    autocomplete_category: AutocompleteCategory | None = None
    default_value: Any = None
    description: str | None = None
    placeholder: str = ""
    auto_complete_url: str | None = None

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            allowed = sorted(FIELD_TYPES)
            msg = f"Invalid field type '{self.type}' for field '{self.key}': must be one of {allowed}"
            raise ValueError(msg)
        if self.options and self.type not in _OPTION_TYPES:
            msg = f"Field '{self.key}' of type '{self.type}' cannot carry options"
            raise ValueError(msg)
        if self.autocomplete_category is not None and self.autocomplete_category not in AUTOCOMPLETE_CATEGORIES:
            msg = f"Invalid autocomplete category '{self.autocomplete_category}' for field '{self.key}'"
            raise ValueError(msg)

    def find_option(self, candidate: str, *, match_label: bool = False) -> FieldOption | None:
        """Return the option whose id or value (optionally label) equals *candidate*."""
        for option in self.options:
            if option.id == candidate or option.value == candidate:
                return option
            if match_label and option.label == candidate:
                return option
        return None

    def to_dict(self) -> FieldModelDict:
        result: FieldModelDict = {
            "id": self.key,
            "key": self.key,
            "name": self.display_name,
            "required": self.required,
            "type": self.type,
            "placeholder": self.placeholder,
        }
        if self.options:
            result["options"] = [o.to_dict() for o in self.options]
        if self.autocomplete_category is not None:
            result["autocompleteCategory"] = self.autocomplete_category
        if self.auto_complete_url:
            result["autoCompleteUrl"] = self.auto_complete_url
        if self.default_value is not None:
            result["defaultValue"] = self.default_value
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: FieldModelDict) -> FieldModel:
        options = tuple(
            FieldOption(id=str(o["id"]), value=str(o["value"]), label=str(o["label"])) for o in data.get("options", [])
        )
        return cls(
            key=data["key"],
            display_name=data["name"],
            required=bool(data["required"]),
            type=data["type"],  # type: ignore[arg-type]
            options=options,
            autocomplete_category=data.get("autocompleteCategory"),  # type: ignore[arg-type]
            default_value=data.get("defaultValue"),
            description=data.get("description"),
            placeholder=data.get("placeholder", ""),
            auto_complete_url=data.get("autoCompleteUrl"),
        )


@dataclass(frozen=True)
class IssueTypeDescriptor:
    id: str
    name: str
    description: str | None = None
    icon_url: str | None = None

    def to_dict(self) -> IssueTypeDict:
        result: IssueTypeDict = {"id": self.id, "name": self.name}
        if self.description:
            result["description"] = self.description
        if self.icon_url:
            result["iconUrl"] = self.icon_url
        return result

    @classmethod
    def from_dict(cls, data: IssueTypeDict) -> IssueTypeDescriptor:
        return cls(
            id=str(data["id"]),
            name=data["name"],
            description=data.get("description"),
            icon_url=data.get("iconUrl"),
        )


# ---------------------------------------------------------------------------
# Autocomplete and entered values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Candidate:
    """A remote search hit offered for an autocomplete-backed field."""

    id: str
    name: str
    value: str | None = None

    def to_dict(self) -> CandidateDict:
        result: CandidateDict = {"id": self.id, "name": self.name}
        if self.value is not None:
            result["value"] = self.value
        return result

    @classmethod
    def from_dict(cls, data: CandidateDict) -> Candidate:
        value = data.get("value")
        return cls(id=str(data["id"]), name=str(data["name"]), value=None if value is None else str(value))


@dataclass(frozen=True)
class Selection:
    """A value the user picked from options or autocomplete results."""

    id: str
    label: str = ""

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> Selection:
        return cls(id=candidate.id, label=candidate.name)


# Everything a wizard step can store for a field. Coercion dispatches on
# these shapes explicitly; anything else is an unrecognized shape.
FieldValue: TypeAlias = str | bool | int | float | Selection | list[str] | list[Selection] | None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Attachment:
    """A screenshot-like attachment carried as a ``data:`` URL."""

    name: str
    data_url: str


@dataclass
class IssueRequest:
    """Everything needed to create one issue. ``fields`` hold coerced wire values."""

    issue_type: str
    summary: str
    description: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    labels: list[str] = field(default_factory=list)
    feedback_kind: str | None = None
    context: dict[str, str] = field(default_factory=dict)
    attachments: list[Attachment] = field(default_factory=list)

    def to_body(self) -> CreateIssueBody:
        body: CreateIssueBody = {
            "issueType": self.issue_type,
            "summary": self.summary,
            "description": self.description,
            "fields": dict(self.fields),
            "labels": list(self.labels),
            "context": dict(self.context),
            "attachments": [{"name": a.name, "dataUrl": a.data_url} for a in self.attachments],
        }
        if self.feedback_kind:
            body["feedbackKind"] = self.feedback_kind
        return body

    @classmethod
    def from_body(cls, body: CreateIssueBody) -> IssueRequest:
        return cls(
            issue_type=body["issueType"],
            summary=body["summary"],
            description=body.get("description", ""),
            fields=dict(body.get("fields", {})),
            labels=[str(label) for label in body.get("labels", [])],
            feedback_kind=body.get("feedbackKind"),
            context={str(k): str(v) for k, v in body.get("context", {}).items()},
            attachments=[Attachment(name=a["name"], data_url=a["dataUrl"]) for a in body.get("attachments", [])],
        )


@dataclass(frozen=True)
class SubmissionResult:
    success: bool
    tracker_id: str | None = None
    tracker_url: str | None = None
    error: str | None = None
