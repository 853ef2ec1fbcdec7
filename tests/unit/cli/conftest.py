"""Fixtures shared by the CLI tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from repolens.db.connection import Database
from repolens.db.models import Project
from repolens.db.repository import Repository
from repolens.db.schema import initialize


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Run each command from an empty directory without touching loguru's sinks."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("REPOLENS_DB", raising=False)
    with patch("repolens.cli.main.configure_logging") as configure:
        yield configure


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "repolens.db"


@pytest.fixture
def cli_repo(db_path: Path):
    """Repository on the same file the commands use; closed after the test."""
    conn = Database(db_path).connect()
    initialize(conn)
    yield Repository(conn)
    conn.close()


@pytest.fixture
def demo_project(cli_repo: Repository) -> Project:
    p = Project(id="proj-1", name="demo", repo_url="https://github.com/acme/demo", user_id="local")
    cli_repo.add_project(p)
    return p
