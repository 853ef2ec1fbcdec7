"""Helpers shared by the CLI commands: config, database, service, error rendering."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console

from repolens.cli import errors
from repolens.config import ConfigError, RepolensConfig, load_config
from repolens.db.connection import DEFAULT_DB_PATH, Database
from repolens.db.repository import Repository
from repolens.db.schema import initialize
from repolens.errors import (
    HostUnavailable,
    IngestionInProgress,
    InsufficientCredits,
    InvalidRepositoryReference,
    ProjectArchived,
    ProjectNotFound,
    RepolensError,
)
from repolens.service import RepolensService

console = Console()

DB_OPTION_HELP = "Path to the repolens database (env: REPOLENS_DB)."
DEFAULT_DB = DEFAULT_DB_PATH


def load_cfg() -> RepolensConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(errors.err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_db(db_path: Path) -> sqlite3.Connection:
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


@contextmanager
def open_service(db_path: Path) -> Iterator[RepolensService]:
    """Yield a service over an initialised database; close the connection after."""
    cfg = load_cfg()
    conn = open_db(db_path)
    try:
        yield RepolensService(Repository(conn), cfg)
    finally:
        conn.close()


def fail(exc: RepolensError) -> None:
    """Print the actionable message for *exc* and exit with code 1."""
    if isinstance(exc, InsufficientCredits):
        console.print(errors.err_insufficient_credits(exc.file_count, exc.credits))
    elif isinstance(exc, InvalidRepositoryReference):
        console.print(errors.err_invalid_repo(str(exc)))
    elif isinstance(exc, HostUnavailable):
        console.print(errors.err_host_unavailable(str(exc)))
    elif isinstance(exc, ProjectNotFound):
        console.print(errors.err_project_not_found(exc.project_id))
    elif isinstance(exc, ProjectArchived):
        console.print(errors.err_project_archived(exc.project_id))
    elif isinstance(exc, IngestionInProgress):
        console.print(errors.err_ingestion_running(exc.project_id))
    else:
        console.print(f"[red]Error:[/] {exc}")
    raise typer.Exit(1) from exc
