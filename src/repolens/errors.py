"""Exception taxonomy for the ingestion pipeline.

Summarization failures are deliberately absent: the summarizer always
degrades to a fallback string. Duplicate-key inserts are absent too: the
repository treats them as no-ops.
"""

from __future__ import annotations


class RepolensError(Exception):
    """Base class for all repolens errors."""


class InvalidRepositoryReference(RepolensError, ValueError):
    """The repository URL is malformed or does not name an owner/repo pair."""


class InsufficientCredits(RepolensError):
    """The user's credit balance does not cover the repository's file count."""

    def __init__(self, file_count: int, credits: int) -> None:
        self.file_count = file_count
        self.credits = credits
        super().__init__(
            f"Insufficient credits: repository has {file_count} files, "
            f"balance is {credits}."
        )


class HostUnavailable(RepolensError):
    """The source host could not be reached after exhausting retries."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RepositoryLoadError(RepolensError):
    """The repository tree walk or a content fetch could not complete."""


class IngestionAborted(RepolensError):
    """An ingestion run failed; the project has already been marked FAILED."""

    def __init__(self, project_id: str, message: str) -> None:
        self.project_id = project_id
        super().__init__(f"Ingestion of project {project_id} aborted: {message}")


class ProjectNotFound(RepolensError, LookupError):
    """No (non-archived) project exists with the requested id."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class EmbeddingValidationError(RepolensError, ValueError):
    """An embedding vector had the wrong dimensionality or non-finite values."""


class IngestionInProgress(RepolensError):
    """An ingestion task for the project is still running in this process."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Ingestion of project {project_id} is already running")


class ProjectArchived(RepolensError):
    """The project was archived and no longer accepts ingestion."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id} is archived")
