"""Forward-only migration runner for the repolens schema.

Vec tables (vec_code_records_*) are NOT migration-managed — use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id              TEXT PRIMARY KEY,
    credits         INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0)
);

CREATE TABLE IF NOT EXISTS projects (
    id                      TEXT PRIMARY KEY,
    name                    TEXT NOT NULL,
    repo_url                TEXT NOT NULL,
    user_id                 TEXT,
    status                  TEXT NOT NULL DEFAULT 'PENDING',
    progress                INTEGER NOT NULL DEFAULT 0,
    files_processed         INTEGER NOT NULL DEFAULT 0,
    files_total             INTEGER NOT NULL DEFAULT 0,
    commits_processed       INTEGER NOT NULL DEFAULT 0,
    commits_total           INTEGER NOT NULL DEFAULT 0,
    error_message           TEXT,
    created_at              DATETIME NOT NULL DEFAULT (datetime('now')),
    ingestion_started_at    DATETIME,
    ingestion_completed_at  DATETIME,
    deleted_at              DATETIME
);

CREATE TABLE IF NOT EXISTS code_records (
    project_id      TEXT NOT NULL REFERENCES projects(id),
    file_name       TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL,
    source_code     TEXT NOT NULL,
    summary         TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (project_id, file_name, chunk_index)
);

CREATE TABLE IF NOT EXISTS commits (
    project_id      TEXT NOT NULL REFERENCES projects(id),
    commit_hash     TEXT NOT NULL,
    message         TEXT NOT NULL,
    author_name     TEXT NOT NULL DEFAULT '',
    author_avatar   TEXT NOT NULL DEFAULT '',
    commit_date     TEXT NOT NULL,
    summary         TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (project_id, commit_hash)
);

CREATE TABLE IF NOT EXISTS questions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT NOT NULL REFERENCES projects(id),
    user_id         TEXT NOT NULL,
    question        TEXT NOT NULL,
    answer          TEXT NOT NULL,
    file_references TEXT NOT NULL DEFAULT '[]',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

_V2_SQL = """
CREATE INDEX IF NOT EXISTS idx_commits_project_date ON commits(project_id, commit_date);
CREATE INDEX IF NOT EXISTS idx_questions_project ON questions(project_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here — use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
