"""Tests for EmbeddingWriter."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock, patch

import pytest

from repolens.db.models import CodeRecord
from repolens.db.vectors import model_to_slug, vec_table_name
from repolens.errors import EmbeddingValidationError
from repolens.ingest.embedding_writer import EmbeddingWriter
from repolens.retry import RetryPolicy

MODEL = "ollama/nomic-embed-text"


@pytest.fixture
def saved(repo, project):
    return repo.add_code_records([
        CodeRecord("proj-1", "a.py", 0, "x = 1", "Sets x."),
        CodeRecord("proj-1", "b.py", 0, "y = 2", "Sets y."),
    ])


def _writer(repo, dims=3):
    return EmbeddingWriter(repo, MODEL, dimensions=dims, retry=RetryPolicy(max_attempts=2, base_delay=0))


async def test_write_embeds_summaries(repo, saved):
    with patch("repolens.rag.llm_client.embed", new_callable=AsyncMock, return_value=[0.1, 0.2, 0.3]) as embed:
        written = await _writer(repo).write(saved)
    assert written == 2
    assert [c.args[1] for c in embed.await_args_list] == ["Sets x.", "Sets y."]
    assert repo.count_embeddings(vec_table_name(model_to_slug(MODEL))) == 2


async def test_unsaved_records_are_skipped(repo):
    unsaved = [CodeRecord("proj-1", "a.py", 0, "x", "s")]
    with patch("repolens.rag.llm_client.embed", new_callable=AsyncMock) as embed:
        assert await _writer(repo).write(unsaved) == 0
    embed.assert_not_awaited()


async def test_invalid_vector_is_retried(repo, saved):
    vectors = [[0.1, 0.2], [0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]
    with patch("repolens.rag.llm_client.embed", new_callable=AsyncMock, side_effect=vectors) as embed:
        assert await _writer(repo).write(saved) == 2
    assert embed.await_count == 3


async def test_persistently_invalid_vector_raises(repo, saved):
    with patch("repolens.rag.llm_client.embed", new_callable=AsyncMock, return_value=[math.nan, 0.0, 0.0]):
        with pytest.raises(EmbeddingValidationError, match="non-finite"):
            await _writer(repo).write(saved)


async def test_missing_api_key_raises(repo, saved, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    writer = EmbeddingWriter(repo, "gemini/text-embedding-004", dimensions=3)
    with pytest.raises(EnvironmentError, match="GEMINI_API_KEY"):
        await writer.write(saved)


async def test_write_missing_skips_embedded_records(repo, saved):
    writer = _writer(repo)
    with patch("repolens.rag.llm_client.embed", new_callable=AsyncMock, return_value=[0.1, 0.2, 0.3]):
        await writer.write(saved[:1])
    with patch("repolens.rag.llm_client.embed", new_callable=AsyncMock, return_value=[0.4, 0.5, 0.6]) as embed:
        assert await writer.write_missing("proj-1") == 1
        assert await writer.write_missing("proj-1") == 0
    assert [c.args[1] for c in embed.await_args_list] == ["Sets y."]
    assert repo.count_embeddings(vec_table_name(model_to_slug(MODEL))) == 2
