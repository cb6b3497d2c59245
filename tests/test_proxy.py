"""Tests for the /api/jira proxy."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from tests._fakes import ENV, JIRA_URL, FakeJira, validation_reply
from ticketwright.config import CREDENTIALS_HEADER, ENV_VARS, Settings
from ticketwright.proxy import create_app
from ticketwright.types.api import ErrorBody, ErrorResponse, FieldsResponse


@pytest.fixture
async def client(settings: Settings, fake_jira: FakeJira) -> AsyncGenerator[AsyncClient, None]:
    """Proxy configured from a server environment."""
    app = create_app(settings, transport=fake_jira.transport(), environ=ENV)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def bare_client(settings: Settings, fake_jira: FakeJira) -> AsyncGenerator[AsyncClient, None]:
    """Proxy with no server-side credentials at all."""
    app = create_app(settings, transport=fake_jira.transport(), environ={})
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def _session_header(url: str = "https://session.atlassian.net") -> dict[str, str]:
    creds = {"jiraUrl": url, "email": "me@example.com", "apiToken": "tok", "projectKey": "PROJ"}
    return {CREDENTIALS_HEADER: json.dumps(creds)}


class TestHealthAndStatus:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_status_configured(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "status"})
        assert resp.json() == {"configured": True, "missing": [], "hint": "Jira is ready to receive feedback"}

    async def test_status_reports_missing(self, bare_client: AsyncClient) -> None:
        data = (await bare_client.get("/api/jira", params={"action": "status"})).json()
        assert data["configured"] is False
        assert data["missing"] == list(ENV_VARS)
        assert "JIRA_API_TOKEN" in data["hint"]

    async def test_status_ignores_session_credentials(self, bare_client: AsyncClient) -> None:
        resp = await bare_client.get("/api/jira", params={"action": "status"}, headers=_session_header())
        assert resp.json()["configured"] is False


class TestActions:
    async def test_unknown_get_action(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "delete"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "INVALID_ACTION"
        assert error["details"]["valid"] == ["status", "issue-types", "fields", "search"]

    async def test_missing_action(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira")
        assert resp.status_code == 400
        assert "(none)" in resp.json()["error"]["message"]

    async def test_error_envelope_shape(self, client: AsyncClient) -> None:
        body = (await client.get("/api/jira", params={"action": "delete"})).json()
        assert set(body) == ErrorResponse.__required_keys__
        assert set(body["error"]) == ErrorBody.__required_keys__

    async def test_unknown_post_action(self, client: AsyncClient) -> None:
        resp = await client.post("/api/jira", params={"action": "fields"}, json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_ACTION"


class TestIssueTypes:
    async def test_lists_types(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "issue-types"})
        assert resp.status_code == 200
        types = resp.json()["issueTypes"]
        assert types[0] == {"id": "10001", "name": "Bug", "description": "A problem"}
        assert [t["name"] for t in types] == ["Bug", "Story", "Epic"]

    async def test_session_header_wins_over_env(self, client: AsyncClient, fake_jira: FakeJira) -> None:
        await client.get("/api/jira", params={"action": "issue-types"}, headers=_session_header())
        assert fake_jira.requests[-1].url.host == "session.atlassian.net"

    async def test_incomplete_header_falls_back_to_env(self, client: AsyncClient, fake_jira: FakeJira) -> None:
        headers = {CREDENTIALS_HEADER: json.dumps({"jiraUrl": "https://session.atlassian.net"})}
        await client.get("/api/jira", params={"action": "issue-types"}, headers=headers)
        assert fake_jira.requests[-1].url.host == "example.atlassian.net"

    async def test_header_only_without_env(self, bare_client: AsyncClient) -> None:
        resp = await bare_client.get("/api/jira", params={"action": "issue-types"}, headers=_session_header())
        assert resp.status_code == 200

    async def test_not_configured(self, bare_client: AsyncClient) -> None:
        resp = await bare_client.get("/api/jira", params={"action": "issue-types"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "NOT_CONFIGURED"
        assert error["details"]["missing"] == list(ENV_VARS)

    async def test_non_cloud_session_url_not_configured(self, bare_client: AsyncClient) -> None:
        headers = _session_header("https://jira.internal.example.com")
        resp = await bare_client.get("/api/jira", params={"action": "issue-types"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "NOT_CONFIGURED"


class TestFields:
    async def test_requires_issue_type(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "fields"})
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"param": "issueType"}

    async def test_required_only_by_default(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "fields", "issueType": "Story"})
        data = resp.json()
        assert set(data) == FieldsResponse.__required_keys__
        assert data["issueType"] == "Story"
        assert data["projectKey"] == "PROJ"
        assert [f["key"] for f in data["fields"]] == ["components"]
        components = data["fields"][0]
        assert components["type"] == "multiselect"
        assert components["options"][0] == {"id": "10000", "value": "Frontend", "label": "Frontend"}

    async def test_include_optional(self, client: AsyncClient) -> None:
        params = {"action": "fields", "issueType": "Story", "includeOptional": "yes"}
        fields = (await client.get("/api/jira", params=params)).json()["fields"]
        by_key = {f["key"]: f for f in fields}
        assert by_key["customfield_10014"]["autocompleteCategory"] == "epic"
        assert by_key["customfield_10001"]["autocompleteCategory"] == "team"
        assert by_key["priority"]["defaultValue"] == "3"
        assert "summary" not in by_key

    async def test_invalid_bool(self, client: AsyncClient) -> None:
        params = {"action": "fields", "issueType": "Story", "includeOptional": "maybe"}
        resp = await client.get("/api/jira", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"param": "includeOptional", "value": "maybe"}

    async def test_unknown_issue_type_is_404(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "fields", "issueType": "Incident"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


class TestSearch:
    async def test_requires_field(self, client: AsyncClient) -> None:
        resp = await client.get("/api/jira", params={"action": "search", "query": "x"})
        assert resp.status_code == 400

    async def test_epic_search(self, client: AsyncClient, fake_jira: FakeJira) -> None:
        fake_jira.picker_issues = [{"key": "PROJ-1", "summaryText": "Checkout"}]
        params = {"action": "search", "field": "Epic Link", "fieldKey": "customfield_10014", "query": "che"}
        resp = await client.get("/api/jira", params=params)
        assert resp.json() == {"results": [{"id": "PROJ-1", "name": "PROJ-1: Checkout", "value": "PROJ-1"}]}

    async def test_search_failures_are_empty_results(self, client: AsyncClient, fake_jira: FakeJira) -> None:
        fake_jira.overrides[("GET", "/rest/api/3/jql/autocompletedata/suggestions")] = httpx.Response(500)
        resp = await client.get("/api/jira", params={"action": "search", "field": "Sprint", "query": "s"})
        assert resp.status_code == 200
        assert resp.json() == {"results": []}


class TestCreate:
    async def test_success(self, client: AsyncClient, fake_jira: FakeJira) -> None:
        body = {
            "issueType": "Bug",
            "summary": "Checkout broken",
            "description": "Clicking pay does nothing",
            "fields": {"priority": {"name": "High"}},
            "labels": ["checkout"],
            "feedbackKind": "issue",
            "context": {"Page": "/cart"},
        }
        resp = await client.post("/api/jira", params={"action": "create"}, json=body)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "trackerId": "PROJ-101", "trackerUrl": f"{JIRA_URL}/browse/PROJ-101"}
        created = fake_jira.created[0]
        assert created["labels"] == ["checkout", "bug"]
        assert created["priority"] == {"name": "High"}

    async def test_invalid_json(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/jira", params={"action": "create"}, content=b"{nope", headers={"content-type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid JSON body"

    async def test_body_must_be_object(self, client: AsyncClient) -> None:
        resp = await client.post("/api/jira", params={"action": "create"}, json=["Bug"])
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "body",
        [
            {"summary": "x"},
            {"issueType": "Bug", "summary": "   "},
            {"issueType": "Bug", "summary": "x", "fields": []},
            {"issueType": "Bug", "summary": "x", "labels": "ui"},
        ],
    )
    async def test_body_validation(self, client: AsyncClient, fake_jira: FakeJira, body: dict[str, object]) -> None:
        resp = await client.post("/api/jira", params={"action": "create"}, json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert fake_jira.created == []

    async def test_tracker_validation_detail(self, client: AsyncClient, fake_jira: FakeJira) -> None:
        fake_jira.create_replies.append(validation_reply(errors={"customfield_10001": "Team is required."}))
        resp = await client.post("/api/jira", params={"action": "create"}, json={"issueType": "Story", "summary": "x"})
        assert resp.status_code == 400
        details = resp.json()["error"]["details"]
        assert details["fieldErrors"] == {"customfield_10001": "Team is required."}
        assert json.loads(details["body"])["errors"] == {"customfield_10001": "Team is required."}

    @pytest.mark.parametrize(
        ("tracker_status", "status", "code"),
        [(401, 401, "AUTHENTICATION_FAILED"), (403, 403, "PERMISSION_DENIED"), (500, 502, "TRACKER_ERROR")],
    )
    async def test_status_mapping(
        self, client: AsyncClient, fake_jira: FakeJira, tracker_status: int, status: int, code: str
    ) -> None:
        fake_jira.create_replies.append(httpx.Response(tracker_status, text="internal detail"))
        resp = await client.post("/api/jira", params={"action": "create"}, json={"issueType": "Bug", "summary": "x"})
        assert resp.status_code == status
        error = resp.json()["error"]
        assert error["code"] == code
        assert "internal detail" not in error["message"]

    async def test_transport_failure_is_503(self, settings: Settings) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        app = create_app(settings, transport=httpx.MockTransport(refuse), environ=ENV)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.post("/api/jira", params={"action": "create"}, json={"issueType": "Bug", "summary": "x"})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "NETWORK_ERROR"
