"""Commit processor — fetch unseen commits, summarize, persist idempotently."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from repolens.db.models import CommitRecord
from repolens.db.repository import Repository
from repolens.ingest.github_host import CommitInfo, GitHost, parse_repo_url
from repolens.ingest.summarizer import Summarizer


@dataclass
class CommitResult:
    count: int
    summarized: int


def message_summary(commit: CommitInfo) -> str:
    """Cheap summary for older commits: first line of the message, no AI call."""
    return commit.message.split("\n", 1)[0].strip() or f"Commit {commit.sha[:7]}"


class CommitProcessor:
    """Poll a repository's recent commits into the store.

    Only the newest *ai_commit_limit* unseen commits get an AI summary (run
    *concurrency* at a time); the rest are labelled from their message.

    Args:
        repo: Open Repository.
        host: GitHost for listing commits.
        summarizer: Summarizer for the AI-summarized prefix.
        max_commits: How many of the most recent commits to consider.
        ai_commit_limit: How many new commits receive an AI summary.
        concurrency: Maximum simultaneous AI commit summaries.
    """

    def __init__(
        self,
        repo: Repository,
        host: GitHost,
        summarizer: Summarizer,
        *,
        max_commits: int = 100,
        ai_commit_limit: int = 8,
        concurrency: int = 10,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._repo = repo
        self._host = host
        self._summarizer = summarizer
        self.max_commits = max_commits
        self.ai_commit_limit = ai_commit_limit
        self.concurrency = concurrency

    async def process(self, project_id: str, repo_url: str) -> CommitResult:
        """Store every not-yet-stored commit among the newest *max_commits*.

        Returns:
            CommitResult with the number of rows inserted and how many of the
            new commits were AI-summarized.
        """
        ref = parse_repo_url(repo_url)
        commits = await self._host.list_all_commits(ref, limit=self.max_commits)
        stored = self._repo.list_commit_hashes(project_id)
        new = [c for c in commits if c.sha not in stored]
        if not new:
            logger.info(f"No new commits for {ref.full_name}")
            return CommitResult(count=0, summarized=0)

        recent, older = new[: self.ai_commit_limit], new[self.ai_commit_limit:]
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _summarize(commit: CommitInfo) -> str:
            async with semaphore:
                return await self._summarizer.summarize_commit(repo_url, commit.sha, commit.message)

        ai_summaries = await asyncio.gather(*(_summarize(c) for c in recent))
        summaries = list(ai_summaries) + [message_summary(c) for c in older]

        records = [
            CommitRecord(
                project_id=project_id,
                commit_hash=commit.sha,
                message=commit.message,
                author_name=commit.author_name,
                author_avatar=commit.author_avatar,
                commit_date=commit.date,
                summary=summary,
            )
            for commit, summary in zip(new, summaries)
        ]
        inserted = self._repo.add_commits(records)
        logger.info(
            f"Stored {inserted} new commits for {ref.full_name} "
            f"({len(recent)} AI-summarized)"
        )
        return CommitResult(count=inserted, summarized=len(recent))
