"""Ingestion orchestrator — the PENDING → IN_PROGRESS → COMPLETED/FAILED state machine.

Stages, each persisting progress before the next starts:

1. validate repository access            → 10
2. load files                            → 20 (files_total recorded)
3. summarize + chunk each file           → 20..60, per file
4. persist code records (insert-or-skip) → 80
5. poll commits                          → 95
6. mark COMPLETED                        → 100

Any exception escaping a stage marks the project FAILED (message +
completion timestamp) and is re-raised as IngestionAborted. A run always
starts from stage 1; the idempotent stores make a re-run cheap.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from repolens.config import RepolensConfig
from repolens.db.models import CodeRecord
from repolens.db.repository import Repository
from repolens.errors import HostUnavailable, IngestionAborted
from repolens.ingest.chunker import CodeChunker
from repolens.ingest.commits import CommitProcessor
from repolens.ingest.embedding_writer import EmbeddingWriter
from repolens.ingest.github_host import GitHost, parse_repo_url, sanitize_url
from repolens.ingest.loader import RepositoryLoader
from repolens.ingest.summarizer import Summarizer, code_fallback
from repolens.ratelimit import RateLimiter
from repolens.retry import RetryPolicy

PROGRESS_VALIDATED = 10
PROGRESS_LOADED = 20
PROGRESS_SUMMARIZED = 60
PROGRESS_STORED = 80
PROGRESS_COMMITS = 95


class IngestionOrchestrator:
    """Run one repository ingestion end to end against the store.

    Args:
        repo: Open Repository; the only shared mutable resource.
        host: GitHost for the validation probe.
        loader: RepositoryLoader for stage 2.
        summarizer: Summarizer for stage 3.
        chunker: CodeChunker for stage 3.
        commits: CommitProcessor for stage 5.
        embedding_writer: Optional; when given, stage 4 also embeds records that have no vector yet.
        pause_every: Pause after every N summarized files (0 disables pausing).
        pause_seconds: Length of each pause.
    """

    def __init__(
        self,
        repo: Repository,
        host: GitHost,
        loader: RepositoryLoader,
        summarizer: Summarizer,
        chunker: CodeChunker,
        commits: CommitProcessor,
        *,
        embedding_writer: EmbeddingWriter | None = None,
        pause_every: int = 10,
        pause_seconds: float = 1.0,
    ) -> None:
        self._repo = repo
        self._host = host
        self._loader = loader
        self._summarizer = summarizer
        self._chunker = chunker
        self._commits = commits
        self._embedding_writer = embedding_writer
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds

    @classmethod
    def from_config(
        cls, repo: Repository, host: GitHost, cfg: RepolensConfig
    ) -> IngestionOrchestrator:
        """Wire every stage component from *cfg* around an existing *host*."""
        summarizer = Summarizer(
            host,
            cfg.summarizer.model,
            retry=RetryPolicy(max_attempts=cfg.summarizer.max_attempts),
            rate_limiter=RateLimiter(min_interval=cfg.summarizer.min_request_interval),
            max_diff_bytes=cfg.summarizer.max_diff_bytes,
            max_code_chars=cfg.summarizer.max_code_chars,
            diff_timeout=cfg.summarizer.diff_timeout,
            file_timeout=cfg.summarizer.file_timeout,
            min_summary_length=cfg.summarizer.min_summary_length,
        )
        embedding_writer = None
        if cfg.embedding.enabled:
            embedding_writer = EmbeddingWriter(
                repo, cfg.embedding.model, dimensions=cfg.embedding.dimensions
            )
        return cls(
            repo,
            host,
            RepositoryLoader(host, cfg.loader.ignore, cfg.loader.max_concurrency),
            summarizer,
            CodeChunker(cfg.chunker.chunk_size, cfg.chunker.overlap),
            CommitProcessor(
                repo,
                host,
                summarizer,
                max_commits=cfg.ingestion.max_commits,
                ai_commit_limit=cfg.ingestion.ai_commit_limit,
                concurrency=cfg.ingestion.commit_concurrency,
            ),
            embedding_writer=embedding_writer,
            pause_every=cfg.ingestion.pause_every,
            pause_seconds=cfg.ingestion.pause_seconds,
        )

    @property
    def commit_processor(self) -> CommitProcessor:
        return self._commits

    async def run(self, project_id: str, repo_url: str) -> None:
        """Execute all stages for *project_id*.

        Raises:
            IngestionAborted: After the project has been marked FAILED.
        """
        safe_url = sanitize_url(repo_url)
        logger.info(f"Starting ingestion of {safe_url} for project {project_id}")
        self._repo.mark_in_progress(project_id)
        try:
            await self._run_stages(project_id, repo_url, safe_url)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(f"Ingestion of project {project_id} failed: {message}")
            self._repo.mark_failed(project_id, message)
            raise IngestionAborted(project_id, message) from exc
        self._repo.mark_completed(project_id)
        logger.info(f"Ingestion of project {project_id} completed")

    async def _run_stages(self, project_id: str, repo_url: str, safe_url: str) -> None:
        logger.info("Stage 1: validating repository access")
        ref = parse_repo_url(repo_url)
        if not await self._host.validate_repo_access(ref):
            raise HostUnavailable(f"Cannot access repository: {safe_url}")
        self._repo.update_progress(project_id, PROGRESS_VALIDATED)

        logger.info("Stage 2: loading repository files")
        documents = await self._loader.load(repo_url)
        total = len(documents)
        self._repo.update_progress(
            project_id, PROGRESS_LOADED, files_processed=0, files_total=total
        )
        logger.info(f"Loaded {total} files")

        logger.info("Stage 3: summarizing and chunking files")
        records: list[CodeRecord] = []
        for done, document in enumerate(documents, start=1):
            try:
                summary = await self._summarizer.summarize_file(document.path, document.content)
            except Exception as exc:
                logger.warning(f"Summary of {document.path} failed ({exc}); using fallback")
                summary = code_fallback(document.path, document.content)
            for chunk in self._chunker.chunk(document.path, document.content):
                records.append(
                    CodeRecord(
                        project_id=project_id,
                        file_name=chunk.file_name,
                        chunk_index=chunk.chunk_index,
                        source_code=chunk.content,
                        summary=summary,
                    )
                )
            self._repo.update_progress(
                project_id,
                PROGRESS_LOADED + (PROGRESS_SUMMARIZED - PROGRESS_LOADED) * done // total,
                files_processed=done,
            )
            if self.pause_every and done % self.pause_every == 0 and done < total:
                await asyncio.sleep(self.pause_seconds)
        self._repo.update_progress(project_id, PROGRESS_SUMMARIZED)

        logger.info(f"Stage 4: storing {len(records)} code records")
        inserted = self._repo.add_code_records(records)
        logger.info(f"Stored {len(inserted)} new code records ({len(records) - len(inserted)} already present)")
        if self._embedding_writer is not None:
            await self._embedding_writer.write_missing(project_id)
        self._repo.update_progress(project_id, PROGRESS_STORED)

        logger.info("Stage 5: processing commits")
        result = await self._commits.process(project_id, repo_url)
        self._repo.update_progress(
            project_id,
            PROGRESS_COMMITS,
            commits_processed=result.count,
            commits_total=self._repo.count_commits(project_id),
        )
