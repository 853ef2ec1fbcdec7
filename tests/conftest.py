"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from repolens.db.connection import Database
from repolens.db.models import Project
from repolens.db.repository import Repository
from repolens.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "repolens.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def project(repo):
    """A PENDING project row that records and commits can reference."""
    p = Project(id="proj-1", name="demo", repo_url="https://github.com/acme/demo", user_id="u1")
    repo.add_project(p)
    return p
