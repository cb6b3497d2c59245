"""Tests for credentials resolution and the settings file."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from tests._fakes import ENV, JIRA_URL
from ticketwright.config import (
    DEFAULT_PORT,
    ENV_VARS,
    Credentials,
    config_status,
    credentials_from_env,
    is_jira_cloud_url,
    normalize_jira_url,
    parse_credentials_header,
    read_settings,
    resolve_credentials,
    settings_path,
)
from ticketwright.types.api import StatusResponse


class TestNormalizeJiraUrl:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("example.atlassian.net", "https://example.atlassian.net"),
            ("example.atlassian.net/", "https://example.atlassian.net"),
            ("  https://example.atlassian.net/jira/software/projects ", "https://example.atlassian.net"),
            ("http://localhost:8080/jira", "http://localhost:8080"),
            ("", ""),
            ("   ", ""),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_jira_url(raw) == expected

    def test_cloud_detection(self) -> None:
        assert is_jira_cloud_url("https://example.atlassian.net")
        assert not is_jira_cloud_url("https://jira.example.com")
        assert not is_jira_cloud_url("")


class TestCredentials:
    def test_valid(self) -> None:
        assert Credentials(JIRA_URL, "dev@example.com", "tok", "PROJ").validate() == {}

    def test_every_field_reported(self) -> None:
        errors = Credentials("", "", " ", "").validate()
        assert set(errors) == {"jiraUrl", "email", "apiToken", "projectKey"}

    def test_format_errors(self) -> None:
        errors = Credentials("https://jira.example.com", "not-an-email", "tok", "PROJ-1").validate()
        assert errors["jiraUrl"].startswith("Please enter a valid Atlassian URL")
        assert errors["email"] == "Please enter a valid email address"
        assert errors["projectKey"] == "Project key should be uppercase letters (e.g., PROJ)"

    def test_lowercase_project_key_accepted_and_normalized(self) -> None:
        creds = Credentials("example.atlassian.net/", " dev@example.com ", " tok ", "proj")
        assert creds.validate() == {}
        assert creds.normalized() == Credentials(JIRA_URL, "dev@example.com", "tok", "PROJ")

    def test_repr_hides_token(self) -> None:
        assert "secret" not in repr(Credentials(JIRA_URL, "a@b.c", "secret", "PROJ"))

    def test_header_value_round_trip(self) -> None:
        creds = Credentials(JIRA_URL, "a@b.c", "tok", "PROJ")
        assert parse_credentials_header(creds.to_header_value()) == creds


class TestCredentialsHeader:
    def test_absent(self) -> None:
        assert parse_credentials_header(None) is None
        assert parse_credentials_header("") is None

    @pytest.mark.parametrize(
        "value",
        [
            "{not json",
            json.dumps(["list"]),
            json.dumps({"jiraUrl": JIRA_URL, "email": "a@b.c", "apiToken": "", "projectKey": "PROJ"}),
            json.dumps({"jiraUrl": JIRA_URL, "email": "a@b.c", "apiToken": 5, "projectKey": "PROJ"}),
        ],
    )
    def test_invalid_headers_ignored(self, value: str, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="ticketwright.config"):
            assert parse_credentials_header(value) is None
        assert len(caplog.records) == 1
        assert "x-jira-credentials" in caplog.records[0].getMessage()


class TestResolution:
    def test_env_credentials(self) -> None:
        assert credentials_from_env(ENV) == Credentials(JIRA_URL, "dev@example.com", "secret-token", "PROJ")

    def test_env_incomplete(self) -> None:
        partial = {**ENV, "JIRA_API_TOKEN": ""}
        assert credentials_from_env(partial) is None

    def test_header_wins(self) -> None:
        session = Credentials("https://other.atlassian.net", "me@example.com", "tok", "OTHER")
        assert resolve_credentials(session.to_header_value(), ENV) == session

    def test_invalid_header_falls_back_to_env(self) -> None:
        assert resolve_credentials("garbage", ENV) == credentials_from_env(ENV)

    def test_nothing_available(self) -> None:
        assert resolve_credentials(None, {}) is None

    def test_status(self) -> None:
        assert config_status(ENV)["configured"] is True
        assert set(config_status(ENV)) == StatusResponse.__required_keys__
        status = config_status({"JIRA_URL": JIRA_URL})
        assert status["configured"] is False
        assert status["missing"] == list(ENV_VARS[1:])
        assert status["hint"] == "Add these to the environment: JIRA_EMAIL, JIRA_API_TOKEN, JIRA_PROJECT_KEY"


class TestSettings:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        settings = read_settings(tmp_path / "nope.json")
        assert settings.port == DEFAULT_PORT
        assert settings.default_labels == []

    def test_reads_values(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "port": 9000,
                    "default_labels": ["from-widget", "", 3],
                    "default_field_values": {"priority": "2"},
                    "custom_fields": {"customfield_1": "x"},
                    "log_dir": str(tmp_path / "logs"),
                }
            )
        )
        settings = read_settings(path)
        assert settings.port == 9000
        assert settings.default_labels == ["from-widget"]
        assert settings.default_field_values == {"priority": "2"}
        assert settings.custom_fields == {"customfield_1": "x"}
        assert settings.log_dir == tmp_path / "logs"

    def test_corrupt_file(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = tmp_path / "config.json"
        path.write_text("{broken")
        with caplog.at_level(logging.WARNING, logger="ticketwright.config"):
            assert read_settings(path).port == DEFAULT_PORT
        assert "Corrupt settings file" in caplog.text

    def test_not_an_object(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        assert read_settings(path).custom_fields == {}

    @pytest.mark.parametrize("port", ["abc", 0, 70000, None])
    def test_bad_port_uses_default(self, tmp_path: Path, port: object) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"port": port}))
        assert read_settings(path).port == DEFAULT_PORT

    def test_wrong_shapes_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"default_labels": "ui", "default_field_values": [], "custom_fields": "x"}))
        settings = read_settings(path)
        assert settings.default_labels == []
        assert settings.default_field_values == {}
        assert settings.custom_fields == {}

    def test_settings_path_override(self, tmp_path: Path) -> None:
        target = tmp_path / "custom.json"
        assert settings_path({"TICKETWRIGHT_CONFIG": str(target)}) == target
        assert settings_path({}).name == "config.json"
