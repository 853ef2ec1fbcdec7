"""Tests for RepolensService: admission, background ingestion, status and Q&A."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from repolens.config import RepolensConfig
from repolens.db.models import CodeRecord, IngestionStatus, Project
from repolens.errors import (
    IngestionAborted,
    IngestionInProgress,
    InsufficientCredits,
    InvalidRepositoryReference,
    ProjectArchived,
    ProjectNotFound,
)
from repolens.ingest.commits import CommitResult
from repolens.service import RepolensService

URL = "https://github.com/acme/demo"


class _FakeHost:
    def __init__(self, file_count: int = 3) -> None:
        self.count_files = AsyncMock(return_value=file_count)
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        self.closed = True


class _FakeOrchestrator:
    """Marks the project like the real one; behaviour is set per test."""

    def __init__(self, repo, outcome=None, gate: asyncio.Event | None = None) -> None:
        self._repo = repo
        self._outcome = outcome
        self._gate = gate
        self.commit_processor = MagicMock()
        self.commit_processor.process = AsyncMock(return_value=CommitResult(2, 1))

    async def run(self, project_id, repo_url):
        self._repo.mark_in_progress(project_id)
        if self._gate is not None:
            await self._gate.wait()
        if isinstance(self._outcome, BaseException):
            self._repo.mark_failed(project_id, str(self._outcome))
            raise IngestionAborted(project_id, str(self._outcome))
        if self._outcome == "crash":
            raise RuntimeError("unexpected crash")
        self._repo.mark_completed(project_id)


def _service(repo, *, file_count=3, outcome=None, gate=None):
    hosts: list[_FakeHost] = []
    orchestrators: list[_FakeOrchestrator] = []

    def host_factory(token):
        host = _FakeHost(file_count)
        hosts.append(host)
        return host

    def orchestrator_factory(r, host, cfg):
        orch = _FakeOrchestrator(r, outcome, gate)
        orchestrators.append(orch)
        return orch

    service = RepolensService(
        repo,
        RepolensConfig(),
        host_factory=host_factory,
        orchestrator_factory=orchestrator_factory,
    )
    service.hosts = hosts
    service.orchestrators = orchestrators
    return service


# ------------------------------------------------------------------
# Admission and project creation
# ------------------------------------------------------------------

async def test_create_ingestion_request_reports_without_charging(repo):
    repo.add_credits("u1", 60)
    service = _service(repo, file_count=120)
    result = await service.create_ingestion_request(URL, user_id="u1")
    assert (result.file_count, result.credits, result.allowed) == (120, 60, False)
    assert repo.get_credits("u1") == 60
    assert service.hosts[0].closed


async def test_create_project_charges_and_completes(repo):
    repo.add_credits("u1", 10)
    service = _service(repo, file_count=3)
    project = await service.create_project(URL, user_id="u1")
    assert project.name == "demo"
    assert repo.get_credits("u1") == 7
    await service.wait(project.id)
    status = service.get_ingestion_status(project.id)
    assert status.status is IngestionStatus.COMPLETED
    assert status.can_answer_questions
    assert not service.is_running(project.id)


async def test_create_project_insufficient_credits_creates_nothing(repo):
    repo.add_credits("u1", 1)
    service = _service(repo, file_count=120)
    with pytest.raises(InsufficientCredits):
        await service.create_project(URL, user_id="u1")
    assert repo.list_projects() == []
    assert repo.get_credits("u1") == 1


async def test_create_project_invalid_url(repo):
    with pytest.raises(InvalidRepositoryReference):
        await _service(repo).create_project("not a url", user_id="u1")


# ------------------------------------------------------------------
# Background ingestion
# ------------------------------------------------------------------

def _add_project(repo, pid="proj-1"):
    repo.add_project(Project(id=pid, name="demo", repo_url=URL, user_id="u1"))


async def test_start_ingestion_returns_before_completion(repo):
    _add_project(repo)
    gate = asyncio.Event()
    service = _service(repo, gate=gate)
    service.start_ingestion("proj-1", URL)
    await asyncio.sleep(0)
    assert service.is_running("proj-1")
    assert service.get_ingestion_status("proj-1").status is IngestionStatus.IN_PROGRESS
    gate.set()
    await service.wait("proj-1")
    assert service.get_ingestion_status("proj-1").status is IngestionStatus.COMPLETED


async def test_second_start_while_running_is_rejected(repo):
    _add_project(repo)
    gate = asyncio.Event()
    service = _service(repo, gate=gate)
    service.start_ingestion("proj-1", URL)
    with pytest.raises(IngestionInProgress):
        service.start_ingestion("proj-1", URL)
    gate.set()
    await service.wait("proj-1")


async def test_aborted_ingestion_is_contained(repo):
    _add_project(repo)
    service = _service(repo, outcome=RuntimeError("Cannot access repository"))
    service.start_ingestion("proj-1", URL)
    await service.wait("proj-1")
    status = service.get_ingestion_status("proj-1")
    assert status.status is IngestionStatus.FAILED
    assert status.error_message == "Cannot access repository"


async def test_unexpected_crash_marks_failed(repo):
    _add_project(repo)
    service = _service(repo, outcome="crash")
    service.start_ingestion("proj-1", URL)
    await service.wait("proj-1")
    status = service.get_ingestion_status("proj-1")
    assert status.status is IngestionStatus.FAILED
    assert status.error_message == "unexpected crash"


async def test_cancelled_ingestion_marks_failed(repo):
    _add_project(repo)
    service = _service(repo, gate=asyncio.Event())
    task = service.start_ingestion("proj-1", URL)
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    status = service.get_ingestion_status("proj-1")
    assert status.status is IngestionStatus.FAILED
    assert status.error_message == "Ingestion cancelled"


async def test_restart_resets_and_reruns(repo):
    _add_project(repo)
    service = _service(repo, outcome=RuntimeError("boom"))
    service.start_ingestion("proj-1", URL)
    await service.wait("proj-1")

    service._orchestrator_factory = lambda r, host, cfg: _FakeOrchestrator(r)
    service.restart_ingestion("proj-1")
    assert repo.get_project("proj-1").status is IngestionStatus.PENDING
    await service.wait("proj-1")
    status = service.get_ingestion_status("proj-1")
    assert status.status is IngestionStatus.COMPLETED
    assert status.error_message is None


async def test_restart_archived_project_rejected(repo):
    _add_project(repo)
    repo.archive_project("proj-1")
    with pytest.raises(ProjectArchived):
        _service(repo).restart_ingestion("proj-1")


async def test_restart_unknown_project_rejected(repo):
    with pytest.raises(ProjectNotFound):
        _service(repo).restart_ingestion("nope")


def test_start_requires_running_loop(repo):
    _add_project(repo)
    with pytest.raises(RuntimeError):
        _service(repo).start_ingestion("proj-1", URL)


# ------------------------------------------------------------------
# Status, projects, commits, credits
# ------------------------------------------------------------------

def test_status_unknown_project(repo):
    with pytest.raises(ProjectNotFound):
        _service(repo).get_ingestion_status("nope")


def test_archive_project(repo):
    _add_project(repo)
    service = _service(repo)
    service.archive_project("proj-1")
    assert service.list_projects() == []
    with pytest.raises(ProjectNotFound):
        service.archive_project("proj-1")


async def test_poll_commits_uses_commit_processor(repo):
    _add_project(repo)
    service = _service(repo)
    result = await service.poll_commits("proj-1")
    assert result.count == 2
    service.orchestrators[0].commit_processor.process.assert_awaited_once_with("proj-1", URL)


def test_credits(repo):
    service = _service(repo)
    assert service.get_credits("u1") == 0
    assert service.add_credits(25, "u1") == 25


# ------------------------------------------------------------------
# Question answering
# ------------------------------------------------------------------

def _fake_stream(*deltas):
    async def fake(model, messages, **kwargs):
        for delta in deltas:
            yield delta

    return patch("repolens.rag.llm_client.stream", new=fake)


async def test_ask_question_streams_answer_with_references(repo):
    _add_project(repo)
    repo.add_code_records([
        CodeRecord("proj-1", "src/login.ts", 0, "export function login() {}", "Login handler."),
        CodeRecord("proj-1", "src/db.ts", 0, "pool", "Database pool."),
    ])
    service = _service(repo)
    answer = service.ask_question("proj-1", "How does login work?")
    assert answer.file_references == ["src/login.ts"]
    assert not answer.overview
    with _fake_stream("It ", "calls login()."):
        text = await answer.stream.read()
    assert text == "It calls login()."
    assert "export function login()" in answer.stream.prompt


def test_ask_question_unknown_project(repo):
    with pytest.raises(ProjectNotFound):
        _service(repo).ask_question("nope", "anything?")


def test_save_and_list_answers(repo):
    _add_project(repo)
    service = _service(repo)
    saved = service.save_answer("proj-1", "Q?", "A.", ["a.py"], "u1")
    assert saved.id is not None
    [stored] = service.list_questions("proj-1")
    assert stored.references_list == ["a.py"]
