"""Tests for the check / ingest / restart commands."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from repolens.cli.main import app
from repolens.db.models import IngestionStatus
from repolens.service import RepolensService

runner = CliRunner()

URL = "https://github.com/acme/demo"


class _FakeHost:
    def __init__(self, file_count: int) -> None:
        self.count_files = AsyncMock(return_value=file_count)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return None


class _FakeOrchestrator:
    def __init__(self, repo, fail_with: str | None) -> None:
        self._repo = repo
        self._fail_with = fail_with

    async def run(self, project_id, repo_url):
        self._repo.mark_in_progress(project_id)
        self._repo.update_progress(project_id, 20, files_processed=0, files_total=3)
        if self._fail_with:
            self._repo.mark_failed(project_id, self._fail_with)
            return
        self._repo.update_progress(project_id, 95, files_processed=3, commits_total=2)
        self._repo.mark_completed(project_id)


@pytest.fixture
def fake_github(monkeypatch):
    """Swap the service's GitHub host and orchestrator for in-process fakes."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    state = {"file_count": 3, "fail_with": None}

    def make_service(repo, cfg):
        return RepolensService(
            repo,
            cfg,
            host_factory=lambda token: _FakeHost(state["file_count"]),
            orchestrator_factory=lambda r, host, c: _FakeOrchestrator(r, state["fail_with"]),
        )

    with patch("repolens.cli._shared.RepolensService", side_effect=make_service):
        yield state


# ------------------------------------------------------------------
# check
# ------------------------------------------------------------------


def test_check_allowed(db_path, cli_repo, fake_github):
    cli_repo.add_credits("local", 10)
    result = runner.invoke(app, ["check", URL, "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "Ready" in result.output


def test_check_insufficient(db_path, cli_repo, fake_github):
    fake_github["file_count"] = 120
    cli_repo.add_credits("local", 60)
    result = runner.invoke(app, ["check", URL, "--db", str(db_path)])
    assert result.exit_code == 1
    assert "120" in result.output
    assert "60" in result.output
    assert cli_repo.get_credits("local") == 60


def test_check_invalid_url(db_path, fake_github):
    result = runner.invoke(app, ["check", "gitlab.com/acme/demo", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Invalid GitHub URL" in result.output


# ------------------------------------------------------------------
# ingest
# ------------------------------------------------------------------


def test_ingest_completes_and_charges(db_path, cli_repo, fake_github):
    cli_repo.add_credits("local", 5)
    result = runner.invoke(app, ["ingest", URL, "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "Ingested 3 files" in result.output
    [project] = cli_repo.list_projects()
    assert project.status is IngestionStatus.COMPLETED
    assert project.name == "demo"
    assert cli_repo.get_credits("local") == 2


def test_ingest_custom_name(db_path, cli_repo, fake_github):
    cli_repo.add_credits("local", 5)
    runner.invoke(app, ["ingest", URL, "--name", "My Demo", "--db", str(db_path)])
    assert cli_repo.list_projects()[0].name == "My Demo"


def test_ingest_insufficient_credits(db_path, cli_repo, fake_github):
    result = runner.invoke(app, ["ingest", URL, "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Insufficient credits" in result.output
    assert cli_repo.list_projects() == []


def test_ingest_failure_points_to_restart(db_path, cli_repo, fake_github):
    fake_github["fail_with"] = "Cannot access repository"
    cli_repo.add_credits("local", 5)
    result = runner.invoke(app, ["ingest", URL, "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Cannot access repository" in result.output
    assert "repolens restart" in result.output


def test_ingest_without_api_key(db_path, fake_github, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY")
    result = runner.invoke(app, ["ingest", URL, "--db", str(db_path)])
    assert result.exit_code == 1
    assert "GEMINI_API_KEY" in result.output


# ------------------------------------------------------------------
# restart
# ------------------------------------------------------------------


def test_restart_failed_project(db_path, cli_repo, demo_project, fake_github):
    cli_repo.mark_failed("proj-1", "boom")
    result = runner.invoke(app, ["restart", "proj-1", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert cli_repo.get_project("proj-1").status is IngestionStatus.COMPLETED


def test_restart_unknown_project(db_path, fake_github):
    result = runner.invoke(app, ["restart", "nope", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_restart_archived_project(db_path, cli_repo, demo_project, fake_github):
    cli_repo.archive_project("proj-1")
    result = runner.invoke(app, ["restart", "proj-1", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "archived" in result.output
