"""Session-scoped preference cache handed to each WizardController.

Holds what one user's session remembers between wizard runs: the
credentials they entered, the last issue type, and the values they last
submitted per issue type. Construct one per session and ``clear()`` it
when the session ends.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from ticketwright.config import Credentials
from ticketwright.models import SYNTHETIC_KEYS

logger = logging.getLogger(__name__)


@dataclass
class RememberedFields:
    values: dict[str, Any] = field(default_factory=dict)
    display_values: dict[str, str] = field(default_factory=dict)


class PreferenceStore:
    def __init__(self) -> None:
        self._credentials: Credentials | None = None
        self._last_issue_type: str | None = None
        self._fields: dict[str, RememberedFields] = {}

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    def remember_credentials(self, credentials: Credentials) -> None:
        self._credentials = credentials

    @property
    def last_issue_type(self) -> str | None:
        return self._last_issue_type

    def remember_issue_type(self, issue_type: str) -> None:
        self._last_issue_type = issue_type

    def remember_fields(self, issue_type: str, values: dict[str, Any], display_values: dict[str, str]) -> None:
        """Store submitted values for *issue_type*. Summary and description are never remembered."""
        kept = {k: copy.deepcopy(v) for k, v in values.items() if k not in SYNTHETIC_KEYS and v not in (None, "")}
        display = {k: v for k, v in display_values.items() if k in kept}
        self._fields[issue_type.lower()] = RememberedFields(values=kept, display_values=display)
        logger.debug("Remembered %d field values for issue type %s", len(kept), issue_type)

    def remembered_fields(self, issue_type: str) -> RememberedFields:
        remembered = self._fields.get(issue_type.lower())
        if remembered is None:
            return RememberedFields()
        return RememberedFields(values=copy.deepcopy(remembered.values), display_values=dict(remembered.display_values))

    def clear(self) -> None:
        self._credentials = None
        self._last_issue_type = None
        self._fields.clear()
