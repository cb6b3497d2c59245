"""Shared pytest fixtures for ticketwright tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tests._fakes import ENV, JIRA_URL, PROJECT, FakeJira
from ticketwright.config import Credentials, Settings
from ticketwright.service import TrackerService


@pytest.fixture
def fake_jira() -> FakeJira:
    return FakeJira()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(jira_url=JIRA_URL, email=ENV["JIRA_EMAIL"], api_token=ENV["JIRA_API_TOKEN"], project_key=PROJECT)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(log_dir=tmp_path / "logs")


@pytest.fixture
async def service(
    credentials: Credentials, settings: Settings, fake_jira: FakeJira
) -> AsyncGenerator[TrackerService, None]:
    async with TrackerService(credentials, settings, transport=fake_jira.transport()) as svc:
        yield svc


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
