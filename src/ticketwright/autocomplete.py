"""AutocompleteResolver: live candidate search for fields that cannot be enumerated.

Each category has an ordered strategy chain. The first strategy that yields
anything wins; results are never merged across strategies. A strategy whose
tracker call fails counts as empty, so resolution never raises for tracker
errors. Debouncing is the caller's job.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from ticketwright.client import JiraClient
from ticketwright.errors import TrackerError
from ticketwright.models import AutocompleteCategory, Candidate, FieldModel

logger = logging.getLogger(__name__)

Strategy = Callable[[], Awaitable[list[Candidate]]]

ISSUE_KEY_RE = re.compile(r"^[A-Z][A-Z0-9]*-\d+$")
TEAM_SUGGESTION_FIELD = "Team"
_USER_HINTS = ("assignee", "reporter", "user")
_TAG_RE = re.compile(r"<[^>]+>")


def categorize(name: str, key: str = "") -> AutocompleteCategory:
    """Classify a field by name/key substrings. Anything unrecognized is ``generic``."""
    lowered = f"{name.lower()} {key.lower()}"
    if "epic" in lowered:
        return "epic"
    if "team" in lowered:
        return "team"
    if any(hint in lowered for hint in _USER_HINTS):
        return "user"
    return "generic"


def looks_like_issue_key(query: str) -> bool:
    return bool(ISSUE_KEY_RE.match(query.strip().upper()))


def ad_hoc_field(name: str, key: str | None = None) -> FieldModel:
    """A minimal FieldModel for searches made without the issue type's schema."""
    field_key = key or name
    return FieldModel(
        key=field_key,
        display_name=name,
        required=False,
        type="text",
        autocomplete_category=categorize(name, field_key),
    )


def _jql_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class AutocompleteResolver:
    def __init__(self, client: JiraClient) -> None:
        self._client = client

    @property
    def project_key(self) -> str:
        return self._client.project_key

    async def resolve(self, field: FieldModel, query: str) -> list[Candidate]:
        category = field.autocomplete_category or categorize(field.display_name, field.key)
        query = query.strip()
        match category:
            case "epic":
                chain = self._epic_chain(query)
            case "team":
                chain = self._team_chain(field, query)
            case "user":
                chain = [self._named("people search", lambda: self._search_users(query))]
            case _:
                chain = [
                    self._named(
                        "field suggestions",
                        lambda: self._suggestions(field.display_name, query),
                    )
                ]
        return await self._run_chain(field.key, category, chain)

    async def _run_chain(
        self, field_key: str, category: str, chain: list[tuple[str, Strategy]]
    ) -> list[Candidate]:
        for label, strategy in chain:
            try:
                results = await strategy()
            except TrackerError as exc:
                logger.info(
                    "Autocomplete strategy '%s' failed for %s; trying next: %s",
                    label,
                    field_key,
                    exc,
                    extra={"action": "autocomplete", "error": exc.code},
                )
                continue
            if results:
                logger.debug("Autocomplete '%s' (%s) answered via %s", field_key, category, label)
                return results
        return []

    @staticmethod
    def _named(label: str, strategy: Strategy) -> tuple[str, Strategy]:
        return label, strategy

    # -- epic --

    def _epic_base_jql(self) -> str:
        return f'project = "{_jql_string(self.project_key)}" AND issuetype = Epic'

    def _epic_chain(self, query: str) -> list[tuple[str, Strategy]]:
        chain = [
            self._named("issue picker", lambda: self._epic_picker(query)),
            self._named("structured queries", lambda: self._epic_queries(query)),
        ]
        if looks_like_issue_key(query):
            chain.append(self._named("direct lookup", lambda: self._epic_lookup(query.upper())))
        return chain

    async def _epic_picker(self, query: str) -> list[Candidate]:
        issues = await self._client.issue_picker(query, current_jql=self._epic_base_jql())
        return _unique(
            _issue_candidate(issue.get("key"), issue.get("summaryText") or _strip_tags(issue.get("summary")))
            for issue in issues
        )

    async def _epic_queries(self, query: str) -> list[Candidate]:
        """Exact key, key prefix, summary substring, full text; first non-empty wins."""
        base = self._epic_base_jql()
        order = " ORDER BY updated DESC"
        if not query:
            return _epic_candidates(await self._client.search_jql(base + order))

        upper = query.upper()
        escaped = _jql_string(query)
        attempts: list[tuple[str, Callable[[list[dict[str, Any]]], list[dict[str, Any]]]]] = []
        if looks_like_issue_key(query):
            attempts.append((f'{base} AND key = "{_jql_string(upper)}"{order}', _identity))
        project_prefix = f"{self.project_key}-"
        if project_prefix.startswith(upper) or upper.startswith(project_prefix):

            def key_prefixed(issues: list[dict[str, Any]]) -> list[dict[str, Any]]:
                return [issue for issue in issues if str(issue.get("key", "")).startswith(upper)]

            attempts.append((base + order, key_prefixed))
        attempts.append((f'{base} AND summary ~ "{escaped}*"{order}', _identity))
        attempts.append((f'{base} AND text ~ "{escaped}"{order}', _identity))

        for jql, keep in attempts:
            try:
                issues = keep(await self._client.search_jql(jql))
            except TrackerError as exc:
                logger.debug("Epic query failed, trying next: %s (%s)", jql, exc.code)
                continue
            if issues:
                return _epic_candidates(issues)
        return []

    async def _epic_lookup(self, issue_key: str) -> list[Candidate]:
        issue = await self._client.get_issue(issue_key, fields="summary")
        summary = (issue.get("fields") or {}).get("summary")
        candidate = _issue_candidate(issue.get("key"), summary)
        return [candidate] if candidate else []

    # -- team --

    def _team_chain(self, field: FieldModel, query: str) -> list[tuple[str, Strategy]]:
        return [
            self._named("declared options", lambda: _filter_options(field, query)),
            self._named("team suggestions", lambda: self._suggestions(TEAM_SUGGESTION_FIELD, query)),
            self._named("group picker", lambda: self._groups(query)),
        ]

    async def _groups(self, query: str) -> list[Candidate]:
        groups = await self._client.group_picker(query)
        candidates = []
        for group in groups:
            name = group.get("name")
            if not name:
                continue
            ident = str(group.get("groupId") or name)
            candidates.append(Candidate(id=ident, name=str(name), value=ident))
        return _unique(candidates)

    # -- user / generic --

    async def _search_users(self, query: str) -> list[Candidate]:
        users = await self._client.search_users(query)
        candidates = []
        for user in users:
            account_id = user.get("accountId")
            if not account_id:
                continue
            name = user.get("displayName") or user.get("emailAddress") or account_id
            candidates.append(Candidate(id=str(account_id), name=str(name), value=str(account_id)))
        return _unique(candidates)

    async def _suggestions(self, field_name: str, query: str) -> list[Candidate]:
        results = await self._client.field_suggestions(field_name, query)
        candidates = []
        for result in results:
            ident = result.get("value") or result.get("id") or result.get("displayName")
            if ident in (None, ""):
                continue
            name = _strip_tags(result.get("displayName")) or result.get("text") or result.get("value") or ident
            value = result.get("value")
            candidates.append(Candidate(id=str(ident), name=str(name), value=None if value is None else str(value)))
        return _unique(candidates)


async def _filter_options(field: FieldModel, query: str) -> list[Candidate]:
    needle = query.lower()
    return [
        Candidate(id=option.id, name=option.label, value=option.value)
        for option in field.options
        if not needle or needle in option.label.lower() or needle in option.value.lower()
    ]


def _identity(issues: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return issues


def _epic_candidates(issues: list[dict[str, Any]]) -> list[Candidate]:
    return _unique(
        _issue_candidate(issue.get("key"), (issue.get("fields") or {}).get("summary")) for issue in issues
    )


def _issue_candidate(key: Any, summary: Any) -> Candidate | None:
    # Epic links are set by issue key, not numeric id.
    if not key:
        return None
    return Candidate(id=str(key), name=f"{key}: {summary or 'Untitled'}", value=str(key))


def _strip_tags(text: Any) -> str:
    return _TAG_RE.sub("", text) if isinstance(text, str) else ""


def _unique(candidates: Iterable[Candidate | None]) -> list[Candidate]:
    seen: set[str] = set()
    result: list[Candidate] = []
    for candidate in candidates:
        if candidate is None or candidate.id in seen:
            continue
        seen.add(candidate.id)
        result.append(candidate)
    return result
