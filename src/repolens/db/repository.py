"""Repository pattern for all repolens database operations.

Single interface for: users/credits, projects, code records, commits, saved
questions and summary embeddings. Every insert of a keyed row is
insert-or-ignore; a duplicate is a no-op, never an error.
"""

from __future__ import annotations

import json
import sqlite3

from repolens.db.models import (
    CodeRecord,
    CommitRecord,
    IngestionStatus,
    Project,
    SavedQuestion,
)

_PROJECT_COLUMNS = (
    "id, name, repo_url, user_id, status, progress, files_processed, files_total, "
    "commits_processed, commits_total, error_message, created_at, "
    "ingestion_started_at, ingestion_completed_at, deleted_at"
)

_CODE_RECORD_COLUMNS = (
    "rowid, project_id, file_name, chunk_index, source_code, summary, created_at"
)

_COMMIT_COLUMNS = (
    "project_id, commit_hash, message, author_name, author_avatar, commit_date, "
    "summary, created_at"
)


class Repository:
    """Data access layer for all repolens database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see repolens.db.schema.initialize).
        """
        self._conn = conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Users / credits
    # ------------------------------------------------------------------

    def get_credits(self, user_id: str) -> int:
        """Return the credit balance of *user_id* (0 for an unknown user)."""
        row = self._conn.execute(
            "SELECT credits FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return row["credits"] if row else 0

    def add_credits(self, user_id: str, amount: int) -> int:
        """Add *amount* credits to *user_id*, creating the user if needed.

        Returns:
            The new balance.
        """
        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")
        self._conn.execute(
            """
            INSERT INTO users (id, credits) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET credits = credits + excluded.credits
            """,
            (user_id, amount),
        )
        self._conn.commit()
        return self.get_credits(user_id)

    def charge_credits(self, user_id: str, amount: int) -> bool:
        """Atomically decrement the balance by *amount* if it covers it.

        Returns:
            True if the charge was applied, False if the balance was too low.
        """
        cur = self._conn.execute(
            "UPDATE users SET credits = credits - ? WHERE id = ? AND credits >= ?",
            (amount, user_id, amount),
        )
        self._conn.commit()
        return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, project: Project) -> None:
        self._conn.execute(
            """
            INSERT INTO projects (id, name, repo_url, user_id, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                project.id,
                project.name,
                project.repo_url,
                project.user_id,
                project.status.value,
            ),
        )
        self._conn.commit()

    def get_project(self, project_id: str, include_archived: bool = False) -> Project | None:
        """Return a project by ID, or None if missing (or archived, by default)."""
        sql = f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?"
        if not include_archived:
            sql += " AND deleted_at IS NULL"
        row = self._conn.execute(sql, (project_id,)).fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self, include_archived: bool = False) -> list[Project]:
        """Return projects ordered by creation time (newest first)."""
        sql = f"SELECT {_PROJECT_COLUMNS} FROM projects"
        if not include_archived:
            sql += " WHERE deleted_at IS NULL"
        sql += " ORDER BY created_at DESC, rowid DESC"
        return [_row_to_project(r) for r in self._conn.execute(sql).fetchall()]

    def archive_project(self, project_id: str) -> bool:
        """Soft-delete a project. Returns False if it was missing or already archived."""
        cur = self._conn.execute(
            "UPDATE projects SET deleted_at = datetime('now') "
            "WHERE id = ? AND deleted_at IS NULL",
            (project_id,),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def mark_in_progress(self, project_id: str) -> None:
        """Enter IN_PROGRESS: stamp the start time and clear any previous outcome."""
        self._conn.execute(
            """
            UPDATE projects SET
                status = ?,
                error_message = NULL,
                ingestion_started_at = datetime('now'),
                ingestion_completed_at = NULL
            WHERE id = ?
            """,
            (IngestionStatus.IN_PROGRESS.value, project_id),
        )
        self._conn.commit()

    def update_progress(
        self,
        project_id: str,
        progress: int,
        *,
        files_processed: int | None = None,
        files_total: int | None = None,
        commits_processed: int | None = None,
        commits_total: int | None = None,
    ) -> None:
        """Persist progress and any given stage counters in one statement.

        Progress never moves backwards: the stored value becomes
        ``MAX(progress, ?)``. Use reset_ingestion() to start over.
        """
        assignments = ["progress = MAX(progress, ?)"]
        params: list[object] = [progress]
        for column, value in (
            ("files_processed", files_processed),
            ("files_total", files_total),
            ("commits_processed", commits_processed),
            ("commits_total", commits_total),
        ):
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        params.append(project_id)
        self._conn.execute(
            f"UPDATE projects SET {', '.join(assignments)} WHERE id = ?", params
        )
        self._conn.commit()

    def mark_completed(self, project_id: str) -> None:
        self._conn.execute(
            """
            UPDATE projects SET
                status = ?,
                progress = 100,
                error_message = NULL,
                ingestion_completed_at = datetime('now')
            WHERE id = ?
            """,
            (IngestionStatus.COMPLETED.value, project_id),
        )
        self._conn.commit()

    def mark_failed(self, project_id: str, message: str) -> None:
        """Enter FAILED with *message*; progress is left where the run stopped."""
        self._conn.execute(
            """
            UPDATE projects SET
                status = ?,
                error_message = ?,
                ingestion_completed_at = datetime('now')
            WHERE id = ?
            """,
            (IngestionStatus.FAILED.value, message, project_id),
        )
        self._conn.commit()

    def reset_ingestion(self, project_id: str) -> None:
        """Return a project to PENDING with zeroed progress and counters."""
        self._conn.execute(
            """
            UPDATE projects SET
                status = ?,
                progress = 0,
                files_processed = 0,
                files_total = 0,
                commits_processed = 0,
                commits_total = 0,
                error_message = NULL,
                ingestion_started_at = NULL,
                ingestion_completed_at = NULL
            WHERE id = ?
            """,
            (IngestionStatus.PENDING.value, project_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Code records
    # ------------------------------------------------------------------

    def add_code_records(self, records: list[CodeRecord]) -> list[CodeRecord]:
        """Insert-or-ignore each record keyed by (project, file, chunk index).

        Existing rows are left untouched.

        Returns:
            The records that were actually inserted, with ``rowid`` set.
        """
        inserted: list[CodeRecord] = []
        for record in records:
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO code_records
                    (project_id, file_name, chunk_index, source_code, summary)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.project_id,
                    record.file_name,
                    record.chunk_index,
                    record.source_code,
                    record.summary,
                ),
            )
            if cur.rowcount == 1:
                record.rowid = cur.lastrowid
                inserted.append(record)
        self._conn.commit()
        return inserted

    def list_code_records(self, project_id: str, limit: int | None = None) -> list[CodeRecord]:
        """Return a project's records ordered by file name then chunk index."""
        sql = (
            f"SELECT {_CODE_RECORD_COLUMNS} FROM code_records WHERE project_id = ? "
            "ORDER BY file_name, chunk_index"
        )
        params: list[object] = [project_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_code_record(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_code_records(self, project_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM code_records WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def add_commits(self, commits: list[CommitRecord]) -> int:
        """Bulk insert-or-ignore keyed by (project, commit hash).

        Returns:
            Number of rows actually inserted.
        """
        if not commits:
            return 0
        before = self._conn.total_changes
        self._conn.executemany(
            """
            INSERT OR IGNORE INTO commits
                (project_id, commit_hash, message, author_name, author_avatar,
                 commit_date, summary)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    c.project_id,
                    c.commit_hash,
                    c.message,
                    c.author_name,
                    c.author_avatar,
                    c.commit_date,
                    c.summary,
                )
                for c in commits
            ],
        )
        inserted = self._conn.total_changes - before
        self._conn.commit()
        return inserted

    def list_commit_hashes(self, project_id: str) -> set[str]:
        rows = self._conn.execute(
            "SELECT commit_hash FROM commits WHERE project_id = ?", (project_id,)
        ).fetchall()
        return {r["commit_hash"] for r in rows}

    def list_commits(self, project_id: str, limit: int | None = None) -> list[CommitRecord]:
        """Return a project's commits, newest commit date first."""
        sql = (
            f"SELECT {_COMMIT_COLUMNS} FROM commits WHERE project_id = ? "
            "ORDER BY commit_date DESC, rowid"
        )
        params: list[object] = [project_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_commit(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_commits(self, project_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM commits WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Saved questions
    # ------------------------------------------------------------------

    def add_question(self, question: SavedQuestion) -> int:
        """Insert a saved question. Returns its new id."""
        cur = self._conn.execute(
            """
            INSERT INTO questions (project_id, user_id, question, answer, file_references)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                question.project_id,
                question.user_id,
                question.question,
                question.answer,
                question.file_references,
            ),
        )
        self._conn.commit()
        question.id = cur.lastrowid
        return cur.lastrowid

    def list_questions(self, project_id: str) -> list[SavedQuestion]:
        """Return a project's saved questions, newest first."""
        rows = self._conn.execute(
            """
            SELECT id, project_id, user_id, question, answer, file_references, created_at
            FROM questions WHERE project_id = ? ORDER BY id DESC
            """,
            (project_id,),
        ).fetchall()
        return [_row_to_question(r) for r in rows]

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, table: str, rowid: int, embedding: list[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = code record rowid."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(embedding)),
        )
        self._conn.commit()

    def count_embeddings(self, table: str) -> int:
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def list_code_records_missing_embedding(self, project_id: str, table: str) -> list[CodeRecord]:
        """Return a project's records that have no row in vec *table* yet."""
        rows = self._conn.execute(
            f"SELECT {_CODE_RECORD_COLUMNS} FROM code_records "
            f"WHERE project_id = ? AND rowid NOT IN (SELECT rowid FROM {table}) "
            "ORDER BY file_name, chunk_index",
            (project_id,),
        ).fetchall()
        return [_row_to_code_record(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        repo_url=row["repo_url"],
        user_id=row["user_id"],
        status=IngestionStatus(row["status"]),
        progress=row["progress"],
        files_processed=row["files_processed"],
        files_total=row["files_total"],
        commits_processed=row["commits_processed"],
        commits_total=row["commits_total"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        ingestion_started_at=row["ingestion_started_at"],
        ingestion_completed_at=row["ingestion_completed_at"],
        deleted_at=row["deleted_at"],
    )


def _row_to_code_record(row: sqlite3.Row) -> CodeRecord:
    return CodeRecord(
        rowid=row["rowid"],
        project_id=row["project_id"],
        file_name=row["file_name"],
        chunk_index=row["chunk_index"],
        source_code=row["source_code"],
        summary=row["summary"],
        created_at=row["created_at"],
    )


def _row_to_commit(row: sqlite3.Row) -> CommitRecord:
    return CommitRecord(
        project_id=row["project_id"],
        commit_hash=row["commit_hash"],
        message=row["message"],
        author_name=row["author_name"],
        author_avatar=row["author_avatar"],
        commit_date=row["commit_date"],
        summary=row["summary"],
        created_at=row["created_at"],
    )


def _row_to_question(row: sqlite3.Row) -> SavedQuestion:
    return SavedQuestion(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        question=row["question"],
        answer=row["answer"],
        file_references=row["file_references"],
        created_at=row["created_at"],
    )
