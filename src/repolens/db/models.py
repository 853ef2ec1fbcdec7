"""Domain models for the repolens database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class IngestionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class Project:
    id: str
    name: str
    repo_url: str
    user_id: str | None = None
    status: IngestionStatus = IngestionStatus.PENDING
    progress: int = 0
    files_processed: int = 0
    files_total: int = 0
    commits_processed: int = 0
    commits_total: int = 0
    error_message: str | None = None
    created_at: str | None = None
    ingestion_started_at: str | None = None
    ingestion_completed_at: str | None = None
    deleted_at: str | None = None

    @property
    def can_answer_questions(self) -> bool:
        return self.status is IngestionStatus.COMPLETED


@dataclass
class CodeRecord:
    project_id: str
    file_name: str
    chunk_index: int
    source_code: str
    summary: str
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved records


@dataclass
class CommitRecord:
    project_id: str
    commit_hash: str
    message: str
    commit_date: str
    summary: str
    author_name: str = ""
    author_avatar: str = ""
    created_at: str | None = None


@dataclass
class SavedQuestion:
    project_id: str
    user_id: str
    question: str
    answer: str
    file_references: str = field(default_factory=lambda: "[]")
    id: int | None = None
    created_at: str | None = None

    @property
    def references_list(self) -> list[str]:
        return json.loads(self.file_references)
