"""Embedding writer — optional summary embeddings into a per-model sqlite-vec table.

What is embedded: the record's summary, not its source text. Vectors are
validated for dimensionality and finiteness; a bad vector is a retry trigger.
Nothing at query time reads these vectors.
"""

from __future__ import annotations

from loguru import logger

from repolens.db.models import CodeRecord
from repolens.db.repository import Repository
from repolens.db.vectors import ensure_vec_table, model_to_slug
from repolens.rag import llm_client
from repolens.retry import RetryPolicy


class EmbeddingWriter:
    """Embed code record summaries and store them keyed by code record rowid.

    Args:
        repo:       Open Repository instance.
        model:      LiteLLM embedding model string.
        dimensions: Expected vector length (the vec table is created with it).
        retry:      RetryPolicy for each embedding call.
    """

    def __init__(
        self,
        repo: Repository,
        model: str = "gemini/text-embedding-004",
        *,
        dimensions: int = 768,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._repo = repo
        self.model = model
        self.dimensions = dimensions
        self.retry = retry or RetryPolicy()

    async def write(self, records: list[CodeRecord]) -> int:
        """Embed each saved record (``rowid`` set). Returns the number written."""
        saved = [r for r in records if r.rowid is not None]
        if not saved:
            return 0
        return await self._store(self._ensure_table(), saved)

    async def write_missing(self, project_id: str) -> int:
        """Embed every record of *project_id* that has no vector yet.

        A restart after a run that failed mid-embedding picks up the
        records whose vectors were never written.
        """
        table = self._ensure_table()
        missing = self._repo.list_code_records_missing_embedding(project_id, table)
        if not missing:
            logger.info(f"All code records of project {project_id} already embedded")
            return 0
        return await self._store(table, missing)

    def _ensure_table(self) -> str:
        llm_client.validate_api_key(self.model)
        return ensure_vec_table(
            self._repo.connection, model_to_slug(self.model), self.dimensions
        )

    async def _store(self, table: str, records: list[CodeRecord]) -> int:
        for record in records:
            vector = await self.retry.run(lambda text=record.summary: self._embed(text))
            self._repo.add_embedding(table, record.rowid, vector)
        logger.info(f"Embedded {len(records)} summaries into {table}")
        return len(records)

    async def _embed(self, text: str) -> list[float]:
        vector = await llm_client.embed(self.model, text)
        return llm_client.validate_embedding(vector, self.dimensions)
