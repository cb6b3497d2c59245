"""Multi-step issue wizard: state values, the pure transition function, the controller.

Step sequence::

    discovering-config -> needs-credentials | selecting-type
    selecting-type -> entering-summary -> entering-description
        -> entering-required-field[0..n-1] -> reviewing -> submitting
        -> succeeded | reviewing (recoverable failure) | failed (terminal)

Each state is a frozen value carrying its own payload, and ``transition``
maps ``(state, event)`` to the next state without side effects. The number
of required-field steps is not fixed: a rejected submission can reveal
fields the schema never declared required, which grows ``required_fields``
and with it ``total_steps``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Literal, TypeAlias

from ticketwright.backends import TrackerBackend
from ticketwright.classifier import Terminal, classify_then_transition
from ticketwright.coercion import OMIT, coerce, coerce_values
from ticketwright.config import Credentials
from ticketwright.errors import ConfigurationError, TrackerError, UnknownTrackerError
from ticketwright.models import (
    DESCRIPTION_KEY,
    SUMMARY_KEY,
    SYNTHETIC_KEYS,
    Attachment,
    Candidate,
    FieldModel,
    FieldValue,
    IssueRequest,
    IssueTypeDescriptor,
    Selection,
    SubmissionResult,
)
from ticketwright.preferences import PreferenceStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.3
StepDirection = Literal["forward", "backward"]


class InvalidTransitionError(ValueError):
    """Raised when an event is not valid in the current wizard state."""

    def __init__(self, state: WizardState, event: WizardEvent) -> None:
        self.state = state
        self.event = event
        super().__init__(f"Cannot apply {type(event).__name__} in state {state.name}")


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DiscoveringConfig:
    name = "discovering-config"


@dataclass(frozen=True)
class NeedsCredentials:
    error: str | None = None
    name = "needs-credentials"


@dataclass(frozen=True)
class SelectingType:
    name = "selecting-type"


@dataclass(frozen=True)
class EnteringSummary:
    name = "entering-summary"


@dataclass(frozen=True)
class EnteringDescription:
    name = "entering-description"


@dataclass(frozen=True)
class EnteringRequiredField:
    index: int
    name = "entering-required-field"


@dataclass(frozen=True)
class Reviewing:
    name = "reviewing"


@dataclass(frozen=True)
class Submitting:
    name = "submitting"


@dataclass(frozen=True)
class Succeeded:
    result: SubmissionResult
    name = "succeeded"


@dataclass(frozen=True)
class Failed:
    reason: str
    reconfigure: bool = False
    name = "failed"


WizardState: TypeAlias = (
    DiscoveringConfig
    | NeedsCredentials
    | SelectingType
    | EnteringSummary
    | EnteringDescription
    | EnteringRequiredField
    | Reviewing
    | Submitting
    | Succeeded
    | Failed
)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialsRequired:
    error: str | None = None


@dataclass(frozen=True)
class TypesLoaded:
    pass


@dataclass(frozen=True)
class FieldsLoaded:
    pass


@dataclass(frozen=True)
class LoadFailed:
    reason: str
    reconfigure: bool = False


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Submit:
    pass


@dataclass(frozen=True)
class SubmitSucceeded:
    result: SubmissionResult


@dataclass(frozen=True)
class SubmitFailed:
    reason: str
    terminal: bool = False


@dataclass(frozen=True)
class Reconfigure:
    pass


WizardEvent: TypeAlias = (
    CredentialsRequired
    | TypesLoaded
    | FieldsLoaded
    | LoadFailed
    | Next
    | Back
    | Submit
    | SubmitSucceeded
    | SubmitFailed
    | Reconfigure
)


def _last_required_or_description(required_count: int) -> WizardState:
    if required_count > 0:
        return EnteringRequiredField(required_count - 1)
    return EnteringDescription()


def transition(state: WizardState, event: WizardEvent, *, required_count: int = 0) -> WizardState:
    """Return the state that follows *state* on *event*.

    *required_count* is the current length of the required-field list; it
    is passed in on every call because it can change between calls.
    Raises InvalidTransitionError for events the state does not accept.
    """
    match state, event:
        case DiscoveringConfig() | NeedsCredentials() | SelectingType(), CredentialsRequired(error=error):
            return NeedsCredentials(error)
        case DiscoveringConfig() | NeedsCredentials() | SelectingType(), TypesLoaded():
            return SelectingType()
        case DiscoveringConfig() | NeedsCredentials() | SelectingType(), LoadFailed(reason=reason, reconfigure=reconf):
            return Failed(reason, reconfigure=reconf)
        case SelectingType(), FieldsLoaded():
            return EnteringSummary()

        case EnteringSummary(), Next():
            return EnteringDescription()
        case EnteringDescription(), Next():
            return EnteringRequiredField(0) if required_count > 0 else Reviewing()
        case EnteringRequiredField(index=index), Next():
            return EnteringRequiredField(index + 1) if index + 1 < required_count else Reviewing()

        case EnteringSummary(), Back():
            return SelectingType()
        case EnteringDescription(), Back():
            return EnteringSummary()
        case EnteringRequiredField(index=index), Back():
            previous = min(index, required_count) - 1
            return EnteringRequiredField(previous) if previous >= 0 else EnteringDescription()
        case Reviewing(), Back():
            return _last_required_or_description(required_count)

        case Reviewing(), Submit():
            return Submitting()
        case Submitting(), SubmitSucceeded(result=result):
            return Succeeded(result)
        case Submitting(), SubmitFailed(reason=reason, terminal=True):
            return Failed(reason, reconfigure=True)
        case Submitting(), SubmitFailed():
            return Reviewing()

        case Failed() | SelectingType() | NeedsCredentials(), Reconfigure():
            return NeedsCredentials()
    raise InvalidTransitionError(state, event)


# ---------------------------------------------------------------------------
# Form state
# ---------------------------------------------------------------------------


@dataclass
class FormState:
    """Mutable per-session form data, owned by exactly one WizardController."""

    field_values: dict[str, FieldValue] = field(default_factory=dict)
    display_value_cache: dict[str, str] = field(default_factory=dict)
    conditionally_required_keys: set[str] = field(default_factory=set)
    current_step: WizardState = field(default_factory=DiscoveringConfig)
    step_direction: StepDirection = "forward"

    def mark_required(self, keys: set[str] | frozenset[str]) -> None:
        """Grow the conditionally-required set. Synthetic keys never enter it."""
        self.conditionally_required_keys |= {k for k in keys if k not in SYNTHETIC_KEYS}


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


def _entry_label(field_model: FieldModel, entry: object) -> str:
    if isinstance(entry, Selection):
        return entry.label or entry.id
    option = field_model.find_option(str(entry))
    return option.label if option else str(entry)


class WizardController:
    """Drives one issue-creation session against a TrackerBackend.

    Not safe to share between sessions; FormState and the
    conditionally-required set belong to this instance only.
    """

    def __init__(
        self,
        backend: TrackerBackend,
        preferences: PreferenceStore | None = None,
        *,
        context: dict[str, str] | None = None,
        labels: list[str] | None = None,
        feedback_kind: str | None = None,
        attachments: list[Attachment] | None = None,
        debounce: float = DEFAULT_DEBOUNCE,
    ) -> None:
        self.backend = backend
        self.preferences = preferences if preferences is not None else PreferenceStore()
        self.context = dict(context or {})
        self.labels = list(labels or [])
        self.feedback_kind = feedback_kind
        self.attachments = list(attachments or [])
        self.debounce = debounce

        self.form = FormState()
        self.issue_types: list[IssueTypeDescriptor] = []
        self.issue_type: IssueTypeDescriptor | None = None
        self.fields: list[FieldModel] = []
        self.errors: dict[str, str] = {}
        self.submit_message: str | None = None
        self.show_optional_fields = False
        self.search_results: dict[str, list[Candidate]] = {}
        self._submitting = False
        self._search_seq: dict[str, int] = {}

    # -- derived views (recomputed on every read) --

    @property
    def state(self) -> WizardState:
        return self.form.current_step

    @property
    def required_fields(self) -> list[FieldModel]:
        conditional = self.form.conditionally_required_keys
        return [f for f in self.fields if f.required or f.key in conditional]

    @property
    def optional_fields(self) -> list[FieldModel]:
        conditional = self.form.conditionally_required_keys
        return [f for f in self.fields if not f.required and f.key not in conditional]

    @property
    def total_steps(self) -> int:
        return 2 + len(self.required_fields) + 1

    @property
    def current_step_number(self) -> int:
        """1-based progress position; 0 outside the entry steps."""
        match self.state:
            case EnteringSummary():
                return 1
            case EnteringDescription():
                return 2
            case EnteringRequiredField(index=index):
                return 3 + min(index, max(len(self.required_fields) - 1, 0))
            case Reviewing() | Submitting() | Succeeded():
                return self.total_steps
        return 0

    @property
    def current_field(self) -> FieldModel | None:
        state = self.state
        if isinstance(state, EnteringRequiredField):
            required = self.required_fields
            if required:
                return required[min(state.index, len(required) - 1)]
        return None

    @property
    def preferred_issue_type(self) -> IssueTypeDescriptor | None:
        last = self.preferences.last_issue_type
        if last is None:
            return None
        return next((t for t in self.issue_types if t.name.lower() == last.lower()), None)

    def get_field(self, key: str) -> FieldModel:
        for candidate in self.fields:
            if candidate.key == key:
                return candidate
        msg = f"Unknown field '{key}' for issue type {self.issue_type.name if self.issue_type else '(none)'}"
        raise KeyError(msg)

    def display_value(self, key: str) -> str:
        value = self.form.field_values.get(key)
        if value in (None, "", []):
            return "Not set"
        cached = self.form.display_value_cache.get(key)
        if cached:
            return cached
        if key in SYNTHETIC_KEYS:
            return str(value)
        field_model = self.get_field(key)
        entries = value if isinstance(value, list) else [value]
        return ", ".join(_entry_label(field_model, entry) for entry in entries)

    # -- transitions --

    def _dispatch(self, event: WizardEvent) -> WizardState:
        previous = self.state
        new_state = transition(previous, event, required_count=len(self.required_fields))
        if isinstance(event, Next):
            self.form.step_direction = "forward"
        elif isinstance(event, Back):
            self.form.step_direction = "backward"
        self.form.current_step = new_state
        logger.debug("Wizard %s -> %s on %s", previous.name, new_state.name, type(event).__name__)
        return new_state

    async def start(self) -> WizardState:
        """Discover whether usable credentials exist and load issue types."""
        if self.preferences.credentials is not None:
            self.backend.use_credentials(self.preferences.credentials)
        await self._load_issue_types()
        return self.state

    async def _load_issue_types(self) -> None:
        try:
            self.issue_types = await self.backend.list_issue_types()
        except ConfigurationError as exc:
            explicit = self.preferences.credentials is not None
            self._dispatch(CredentialsRequired(exc.user_message if explicit else None))
            return
        except TrackerError as exc:
            self._dispatch(LoadFailed(exc.user_message, reconfigure=exc.terminal))
            return
        self._dispatch(TypesLoaded())

    async def save_credentials(self, credentials: Credentials) -> dict[str, str]:
        """Validate and adopt session credentials. Returns per-field errors (empty on success)."""
        errors = credentials.validate()
        if errors:
            self.errors = errors
            self._dispatch(CredentialsRequired("Please correct the highlighted fields."))
            return errors
        normalized = credentials.normalized()
        self.errors = {}
        self.preferences.remember_credentials(normalized)
        self.backend.use_credentials(normalized)
        await self._load_issue_types()
        return {}

    def reconfigure(self) -> Credentials | None:
        """Go back to credential entry; returns stored credentials for pre-filling."""
        self._dispatch(Reconfigure())
        self.errors = {}
        return self.preferences.credentials

    async def select_type(self, issue_type: str | IssueTypeDescriptor) -> WizardState:
        """Fetch the type's fields and reset per-type form data."""
        descriptor = issue_type if isinstance(issue_type, IssueTypeDescriptor) else self._find_issue_type(issue_type)
        if not isinstance(self.state, SelectingType):
            raise InvalidTransitionError(self.state, FieldsLoaded())
        try:
            fields = await self.backend.get_fields(descriptor.name, include_optional=True)
        except TrackerError as exc:
            logger.warning("Could not load fields for %s: %s", descriptor.name, exc)
            self._dispatch(LoadFailed(exc.user_message, reconfigure=exc.terminal))
            return self.state

        self.issue_type = descriptor
        self.fields = fields
        self._reset_for_type()
        self.preferences.remember_issue_type(descriptor.name)
        self._dispatch(FieldsLoaded())
        return self.state

    def _find_issue_type(self, name_or_id: str) -> IssueTypeDescriptor:
        wanted = name_or_id.strip().lower()
        for issue_type in self.issue_types:
            if issue_type.name.lower() == wanted or issue_type.id == name_or_id.strip():
                return issue_type
        return IssueTypeDescriptor(id=name_or_id, name=name_or_id)

    def _reset_for_type(self) -> None:
        assert self.issue_type is not None
        kept = {k: v for k, v in self.form.field_values.items() if k in SYNTHETIC_KEYS}
        remembered = self.preferences.remembered_fields(self.issue_type.name)
        display: dict[str, str] = {}
        for f in self.fields:
            if f.key in remembered.values:
                kept[f.key] = remembered.values[f.key]
                if f.key in remembered.display_values:
                    display[f.key] = remembered.display_values[f.key]
            elif f.default_value is not None:
                kept[f.key] = f.default_value
        self.form.field_values = kept
        self.form.display_value_cache = display
        self.form.conditionally_required_keys = set()
        self.errors = {}
        self.submit_message = None
        self.show_optional_fields = False
        self.search_results = {}

    def set_value(self, key: str, value: FieldValue, display: str | None = None) -> None:
        if key not in SYNTHETIC_KEYS:
            self.get_field(key)
        self.form.field_values[key] = value
        if display:
            self.form.display_value_cache[key] = display
        else:
            self.form.display_value_cache.pop(key, None)
        self.errors.pop(key, None)

    def select_candidate(self, key: str, candidate: Candidate) -> None:
        """Store an autocomplete pick; list-valued fields accumulate picks."""
        target = self.get_field(key)
        selection = Selection.from_candidate(candidate)
        if target.type in ("multiselect", "array"):
            current = self.form.field_values.get(key)
            picks = [v for v in current if isinstance(v, Selection)] if isinstance(current, list) else []
            if all(p.id != selection.id for p in picks):
                picks.append(selection)
            self.set_value(key, picks, ", ".join(p.label or p.id for p in picks))
        else:
            self.set_value(key, selection, candidate.name)

    def _step_errors(self, state: WizardState) -> dict[str, str]:
        values = self.form.field_values
        match state:
            case EnteringSummary():
                if not str(values.get(SUMMARY_KEY) or "").strip():
                    return {SUMMARY_KEY: "Summary is required"}
            case EnteringDescription():
                if not str(values.get(DESCRIPTION_KEY) or "").strip():
                    return {DESCRIPTION_KEY: "Description is required"}
            case EnteringRequiredField():
                current = self.current_field
                if current is not None and coerce(current, values.get(current.key)) is OMIT:
                    return {current.key: f"{current.display_name} is required"}
        return {}

    def next(self) -> bool:
        """Advance if the current step's value is valid; returns whether it moved."""
        errors = self._step_errors(self.state)
        if errors:
            self.errors.update(errors)
            return False
        self._dispatch(Next())
        return True

    def back(self) -> WizardState:
        return self._dispatch(Back())

    def validate(self) -> dict[str, str]:
        errors = self._step_errors(EnteringSummary())
        errors.update(self._step_errors(EnteringDescription()))
        values = self.form.field_values
        for f in self.required_fields:
            if coerce(f, values.get(f.key)) is OMIT:
                errors[f.key] = f"{f.display_name} is required"
        return errors

    def build_request(self) -> IssueRequest:
        assert self.issue_type is not None
        values = self.form.field_values
        return IssueRequest(
            issue_type=self.issue_type.name,
            summary=str(values.get(SUMMARY_KEY) or "").strip(),
            description=str(values.get(DESCRIPTION_KEY) or ""),
            fields=coerce_values(self.fields, values),
            labels=list(self.labels),
            feedback_kind=self.feedback_kind,
            context=dict(self.context),
            attachments=list(self.attachments),
        )

    async def submit(self) -> SubmissionResult | None:
        """Submit from review. Returns None if ignored (already submitting) or invalid."""
        if self._submitting:
            logger.info("Ignoring submit: a submission is already in flight")
            return None
        if not isinstance(self.state, Reviewing):
            raise InvalidTransitionError(self.state, Submit())
        errors = self.validate()
        if errors:
            self.errors.update(errors)
            names = [self.get_field(k).display_name if k not in SYNTHETIC_KEYS else k.capitalize() for k in errors]
            self.submit_message = f"Please fill in the required fields: {', '.join(names)}"
            return None

        self._submitting = True
        self.submit_message = None
        self._dispatch(Submit())
        try:
            request = self.build_request()
            result = await self.backend.create_issue(request)
        except TrackerError as exc:
            return self._apply_failure(exc)
        except Exception as exc:
            logger.exception("Submission failed unexpectedly", extra={"action": "submit"})
            return self._apply_failure(UnknownTrackerError(str(exc)))
        finally:
            self._submitting = False

        assert self.issue_type is not None
        self.preferences.remember_fields(self.issue_type.name, self.form.field_values, self.form.display_value_cache)
        self.form.conditionally_required_keys = set()
        self.errors = {}
        self._dispatch(SubmitSucceeded(result))
        logger.info("Created %s", result.tracker_id, extra={"action": "submit"})
        return result

    def _apply_failure(self, exc: TrackerError) -> SubmissionResult:
        shown_required = {f.key for f in self.required_fields}
        outcome = classify_then_transition(exc, self.fields, already_required=shown_required)
        if isinstance(outcome, Terminal):
            self.submit_message = outcome.reason
            self._dispatch(SubmitFailed(outcome.reason, terminal=True))
            return SubmissionResult(success=False, error=outcome.reason)

        self.form.mark_required(outcome.newly_required)
        self.errors.update(outcome.field_errors)
        self.submit_message = outcome.submit_message
        if outcome.reveal_optional:
            self.show_optional_fields = True
        self._dispatch(SubmitFailed(outcome.submit_message))
        logger.info(
            "Submission rejected; %d newly required field(s)",
            len(outcome.newly_required),
            extra={"action": "submit", "error": exc.code},
        )
        return SubmissionResult(success=False, error=outcome.submit_message)

    # -- autocomplete --

    async def search(self, field_key: str, query: str) -> list[Candidate] | None:
        """Debounced search. Returns None when a newer search for the field superseded this one."""
        target = self.get_field(field_key)
        seq = self._search_seq.get(field_key, 0) + 1
        self._search_seq[field_key] = seq
        if self.debounce > 0:
            await asyncio.sleep(self.debounce)
        if self._search_seq[field_key] != seq:
            return None
        issue_type = self.issue_type.name if self.issue_type else None
        try:
            results = await self.backend.search(target, query, issue_type=issue_type)
        except TrackerError as exc:
            logger.info("Search for %s failed; showing no results: %s", field_key, exc)
            results = []
        if self._search_seq[field_key] != seq:
            logger.debug("Discarding superseded search results for %s", field_key)
            return None
        self.search_results[field_key] = results
        return results
