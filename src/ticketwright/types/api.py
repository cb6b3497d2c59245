"""TypedDicts for proxy API request and response bodies."""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict

from ticketwright.types.fields import CandidateDict, FieldModelDict, IssueTypeDict


class ErrorBody(TypedDict):
    message: str
    code: str
    details: dict[str, Any]


class ErrorResponse(TypedDict):
    """Standard error envelope returned by every failing proxy action."""

    error: ErrorBody


class StatusResponse(TypedDict):
    """``?action=status``: reflects server-side credentials only."""

    configured: bool
    missing: list[str]
    hint: str


class IssueTypesResponse(TypedDict):
    issueTypes: list[IssueTypeDict]


class FieldsResponse(TypedDict):
    issueType: str
    fields: list[FieldModelDict]
    projectKey: str


class SearchResponse(TypedDict):
    results: list[CandidateDict]


class AttachmentBody(TypedDict):
    name: str
    dataUrl: str


class CreateIssueBody(TypedDict):
    """``POST ?action=create`` body. ``fields`` are already-coerced wire values."""

    issueType: str
    summary: str
    description: NotRequired[str]
    fields: NotRequired[dict[str, Any]]
    labels: NotRequired[list[str]]
    feedbackKind: NotRequired[str]
    context: NotRequired[dict[str, str]]
    attachments: NotRequired[list[AttachmentBody]]


class CreateIssueResponse(TypedDict):
    success: bool
    trackerId: str
    trackerUrl: str
