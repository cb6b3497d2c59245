"""TypedDicts for raw tracker field metadata and normalized field shapes."""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict

# ---------------------------------------------------------------------------
# Raw createmeta shapes (as returned by the tracker; every key may be absent)
# ---------------------------------------------------------------------------


class RawFieldSchema(TypedDict, total=False):
    type: str
    items: str
    custom: str
    customId: int
    system: str


class RawAllowedValue(TypedDict, total=False):
    id: str | int
    value: str
    name: str
    description: str
    iconUrl: str
    self: str


class RawFieldMeta(TypedDict, total=False):
    """One entry of ``/issue/createmeta/{project}/issuetypes/{id}``.

    Newer endpoints use ``fieldId``; the legacy expand form uses ``key``.
    """

    fieldId: str
    key: str
    name: str
    required: bool
    schema: RawFieldSchema
    allowedValues: list[RawAllowedValue]
    hasDefaultValue: bool
    defaultValue: Any
    autoCompleteUrl: str
    description: str


# ---------------------------------------------------------------------------
# Normalized shapes (what the proxy hands to the wizard)
# ---------------------------------------------------------------------------


class FieldOptionDict(TypedDict):
    id: str
    value: str
    label: str


class FieldModelDict(TypedDict):
    id: str
    key: str
    name: str
    required: bool
    type: str
    placeholder: str
    options: NotRequired[list[FieldOptionDict]]
    autocompleteCategory: NotRequired[str]
    autoCompleteUrl: NotRequired[str]
    defaultValue: NotRequired[Any]
    description: NotRequired[str]


class IssueTypeDict(TypedDict):
    id: str
    name: str
    description: NotRequired[str]
    iconUrl: NotRequired[str]


class CandidateDict(TypedDict):
    id: str
    name: str
    value: NotRequired[str]
