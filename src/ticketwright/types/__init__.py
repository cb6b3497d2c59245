# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from models.py, client.py, or any service module.
"""Typed wire contracts for the tracker, the proxy API, and the wizard."""

from __future__ import annotations

from ticketwright.types.api import (
    CreateIssueBody,
    CreateIssueResponse,
    ErrorBody,
    ErrorResponse,
    FieldsResponse,
    IssueTypesResponse,
    SearchResponse,
    StatusResponse,
)
from ticketwright.types.fields import (
    CandidateDict,
    FieldModelDict,
    FieldOptionDict,
    IssueTypeDict,
    RawAllowedValue,
    RawFieldMeta,
    RawFieldSchema,
)

__all__ = [
    "CandidateDict",
    "CreateIssueBody",
    "CreateIssueResponse",
    "ErrorBody",
    "ErrorResponse",
    "FieldModelDict",
    "FieldOptionDict",
    "FieldsResponse",
    "IssueTypeDict",
    "IssueTypesResponse",
    "RawAllowedValue",
    "RawFieldMeta",
    "RawFieldSchema",
    "SearchResponse",
    "StatusResponse",
]
