"""repolens database layer."""

from repolens.db.connection import Database
from repolens.db.migrations import MIGRATIONS, run_migrations
from repolens.db.schema import initialize
from repolens.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
