"""Application service — the operations a UI or API layer calls.

Ingestion runs as a background asyncio task per project. The task is its own
error boundary: every exit path leaves the project in COMPLETED or FAILED.
Callers poll get_ingestion_status(); there is no synchronous failure channel.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from repolens.config import RepolensConfig, github_token
from repolens.db.models import CommitRecord, IngestionStatus, Project, SavedQuestion
from repolens.db.repository import Repository
from repolens.errors import (
    IngestionAborted,
    IngestionInProgress,
    ProjectArchived,
    ProjectNotFound,
)
from repolens.ingest.admission import AdmissionResult, CreditAdmissionControl
from repolens.ingest.commits import CommitResult
from repolens.ingest.github_host import GitHost, parse_repo_url, sanitize_url
from repolens.ingest.orchestrator import IngestionOrchestrator
from repolens.rag.assembler import AnswerStream, build_context, build_prompt, file_references
from repolens.rag.retriever import KeywordRetriever
from repolens.retry import RetryPolicy

DEFAULT_USER = "local"

HostFactory = Callable[[str | None], GitHost]
OrchestratorFactory = Callable[[Repository, GitHost, RepolensConfig], IngestionOrchestrator]


@dataclass
class IngestionStatusView:
    status: IngestionStatus
    progress: int
    files_processed: int
    files_total: int
    commits_processed: int
    commits_total: int
    error_message: str | None
    can_answer_questions: bool
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class Answer:
    stream: AnswerStream
    file_references: list[str]
    overview: bool


class RepolensService:
    """Façade over admission, ingestion, status and question answering.

    Args:
        repo: Open Repository.
        cfg: Loaded configuration.
        host_factory: Builds a GitHost for a token; defaults to one built from cfg.
        orchestrator_factory: Builds the orchestrator around a host.
    """

    def __init__(
        self,
        repo: Repository,
        cfg: RepolensConfig | None = None,
        *,
        host_factory: HostFactory | None = None,
        orchestrator_factory: OrchestratorFactory = IngestionOrchestrator.from_config,
    ) -> None:
        self._repo = repo
        self.cfg = cfg or RepolensConfig()
        self._host_factory = host_factory or self._default_host
        self._orchestrator_factory = orchestrator_factory
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def _default_host(self, token: str | None) -> GitHost:
        return GitHost(
            token,
            api_url=self.cfg.github.api_url,
            per_page=self.cfg.github.per_page,
            retry=RetryPolicy(max_attempts=self.cfg.github.max_attempts),
            timeout=self.cfg.github.timeout,
        )

    # ------------------------------------------------------------------
    # Admission + project creation
    # ------------------------------------------------------------------

    async def create_ingestion_request(
        self, repo_url: str, token: str | None = None, user_id: str = DEFAULT_USER
    ) -> AdmissionResult:
        """Pre-check: size the repository and compare with the user's balance."""
        async with self._host_factory(github_token(token)) as host:
            return await CreditAdmissionControl(self._repo, host).check(user_id, repo_url)

    async def create_project(
        self,
        repo_url: str,
        name: str | None = None,
        token: str | None = None,
        user_id: str = DEFAULT_USER,
    ) -> Project:
        """Admit, charge the file count, create a PENDING project and start ingestion.

        Raises:
            InvalidRepositoryReference: For a malformed URL.
            InsufficientCredits: When the balance does not cover the file count.
        """
        ref = parse_repo_url(repo_url)
        token = github_token(token)
        async with self._host_factory(token) as host:
            admission = CreditAdmissionControl(self._repo, host)
            result = await admission.admit(user_id, repo_url)
            admission.charge(user_id, result.required_credits)

        project = Project(
            id=uuid.uuid4().hex,
            name=name or ref.repo,
            repo_url=repo_url,
            user_id=user_id,
        )
        self._repo.add_project(project)
        logger.info(f"Created project {project.id} for {sanitize_url(repo_url)}")
        self.start_ingestion(project.id, repo_url, token)
        return project

    # ------------------------------------------------------------------
    # Ingestion lifecycle
    # ------------------------------------------------------------------

    def start_ingestion(
        self, project_id: str, repo_url: str, token: str | None = None
    ) -> asyncio.Task[None]:
        """Spawn the ingestion task and return immediately. Needs a running loop."""
        self._require_ingestable(project_id)
        if self.is_running(project_id):
            raise IngestionInProgress(project_id)
        task = asyncio.get_running_loop().create_task(
            self._run_ingestion(project_id, repo_url, github_token(token)),
            name=f"ingest-{project_id}",
        )
        self._tasks[project_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(project_id, None))
        return task

    async def _run_ingestion(self, project_id: str, repo_url: str, token: str | None) -> None:
        try:
            async with self._host_factory(token) as host:
                orchestrator = self._orchestrator_factory(self._repo, host, self.cfg)
                await orchestrator.run(project_id, repo_url)
        except IngestionAborted as exc:
            logger.error(str(exc))
        except asyncio.CancelledError:
            self._repo.mark_failed(project_id, "Ingestion cancelled")
            raise
        except Exception as exc:
            logger.exception(f"Ingestion of project {project_id} crashed")
            self._repo.mark_failed(project_id, str(exc) or type(exc).__name__)

    def is_running(self, project_id: str) -> bool:
        task = self._tasks.get(project_id)
        return task is not None and not task.done()

    async def wait(self, project_id: str) -> None:
        """Await the project's running ingestion task, if any."""
        task = self._tasks.get(project_id)
        if task is not None:
            await asyncio.shield(task)

    def restart_ingestion(self, project_id: str, token: str | None = None) -> asyncio.Task[None]:
        """Reset a project to PENDING (progress and counters zeroed) and re-run it.

        Raises:
            ProjectNotFound: Unknown project.
            ProjectArchived: Archived project.
            IngestionInProgress: Its task is still running in this process.
        """
        project = self._require_ingestable(project_id)
        if self.is_running(project_id):
            raise IngestionInProgress(project_id)
        self._repo.reset_ingestion(project_id)
        logger.info(f"Restarting ingestion of project {project_id}")
        return self.start_ingestion(project_id, project.repo_url, token)

    def get_ingestion_status(self, project_id: str) -> IngestionStatusView:
        project = self._get_project(project_id)
        return IngestionStatusView(
            status=project.status,
            progress=project.progress,
            files_processed=project.files_processed,
            files_total=project.files_total,
            commits_processed=project.commits_processed,
            commits_total=project.commits_total,
            error_message=project.error_message,
            can_answer_questions=project.can_answer_questions,
            started_at=project.ingestion_started_at,
            completed_at=project.ingestion_completed_at,
        )

    # ------------------------------------------------------------------
    # Question answering
    # ------------------------------------------------------------------

    def ask_question(self, project_id: str, question: str) -> Answer:
        """Retrieve context and open an answer stream (not yet started)."""
        retriever = KeywordRetriever(self._repo, self.cfg.retrieval)
        ctx = retriever.retrieve(project_id, question)
        context = build_context(ctx, self.cfg.retrieval)
        prompt = build_prompt(question, context, ctx.overview)
        references = file_references(ctx, self.cfg.retrieval.max_references)
        logger.debug(
            f"Question on {project_id}: overview={ctx.overview}, "
            f"keywords={ctx.keywords}, {len(references)} references"
        )
        return Answer(
            stream=AnswerStream(self.cfg.generation.model, prompt),
            file_references=references,
            overview=ctx.overview,
        )

    def save_answer(
        self,
        project_id: str,
        question: str,
        answer: str,
        references: list[str],
        user_id: str = DEFAULT_USER,
    ) -> SavedQuestion:
        self._get_project(project_id)
        saved = SavedQuestion(
            project_id=project_id,
            user_id=user_id,
            question=question,
            answer=answer,
            file_references=json.dumps(references),
        )
        self._repo.add_question(saved)
        return saved

    def list_questions(self, project_id: str) -> list[SavedQuestion]:
        self._get_project(project_id)
        return self._repo.list_questions(project_id)

    # ------------------------------------------------------------------
    # Projects, commits, credits
    # ------------------------------------------------------------------

    def list_projects(self) -> list[Project]:
        return self._repo.list_projects()

    def archive_project(self, project_id: str) -> None:
        if not self._repo.archive_project(project_id):
            raise ProjectNotFound(project_id)
        logger.info(f"Archived project {project_id}")

    def list_commits(self, project_id: str, limit: int = 50) -> list[CommitRecord]:
        self._get_project(project_id)
        return self._repo.list_commits(project_id, limit=limit)

    async def poll_commits(self, project_id: str, token: str | None = None) -> CommitResult:
        """Fetch and store commits made since the last poll."""
        project = self._require_ingestable(project_id)
        async with self._host_factory(github_token(token)) as host:
            orchestrator = self._orchestrator_factory(self._repo, host, self.cfg)
            return await orchestrator.commit_processor.process(project_id, project.repo_url)

    def get_credits(self, user_id: str = DEFAULT_USER) -> int:
        return self._repo.get_credits(user_id)

    def add_credits(self, amount: int, user_id: str = DEFAULT_USER) -> int:
        return self._repo.add_credits(user_id, amount)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_project(self, project_id: str) -> Project:
        project = self._repo.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def _require_ingestable(self, project_id: str) -> Project:
        project = self._repo.get_project(project_id, include_archived=True)
        if project is None:
            raise ProjectNotFound(project_id)
        if project.deleted_at is not None:
            raise ProjectArchived(project_id)
        return project
