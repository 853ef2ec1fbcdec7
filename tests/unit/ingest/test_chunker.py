"""Tests for CodeChunker window boundaries and overlap."""

from __future__ import annotations

import pytest

from repolens.ingest.chunker import CodeChunker


def _reassemble(chunks) -> str:
    """Concatenate chunks, dropping each chunk's overlap with its predecessor."""
    text = chunks[0].content
    for prev, cur in zip(chunks, chunks[1:]):
        text += cur.content[prev.end - cur.start:]
    return text


def _lines(n: int, width: int = 40) -> str:
    return "".join(f"{i:05d} " + "x" * (width - 7) + "\n" for i in range(n))


def test_short_content_single_chunk():
    chunks = CodeChunker(100, 10).chunk("a.py", "print('hi')\n")
    assert len(chunks) == 1
    assert chunks[0].content == "print('hi')\n"
    assert (chunks[0].chunk_index, chunks[0].start, chunks[0].end) == (0, 0, 12)


def test_content_exactly_chunk_size_single_chunk():
    assert len(CodeChunker(50, 5).chunk("a", "x" * 50)) == 1


def test_empty_content_single_empty_chunk():
    chunks = CodeChunker(50, 5).chunk("empty.py", "")
    assert len(chunks) == 1
    assert chunks[0].content == ""


def test_windows_never_exceed_chunk_size():
    content = _lines(200)
    for chunk in CodeChunker(500, 50).chunk("big.py", content):
        assert len(chunk.content) <= 500
        assert chunk.content == content[chunk.start:chunk.end]


def test_consecutive_windows_overlap_exactly():
    chunks = CodeChunker(500, 50).chunk("big.py", _lines(200))
    assert len(chunks) > 1
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.start == prev.end - 50


def test_prefers_line_boundaries():
    chunks = CodeChunker(500, 50).chunk("big.py", _lines(200))
    for chunk in chunks[:-1]:
        assert chunk.content.endswith("\n")


def test_hard_cut_without_newlines():
    content = "y" * 2500
    chunks = CodeChunker(1000, 100).chunk("min.js", content)
    assert [(c.start, c.end) for c in chunks] == [(0, 1000), (900, 1900), (1800, 2500)]


def test_indices_are_sequential_and_file_name_kept():
    chunks = CodeChunker(300, 30).chunk("src/x.py", _lines(50))
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert {c.file_name for c in chunks} == {"src/x.py"}


@pytest.mark.parametrize("content", [
    _lines(300),
    "z" * 20_000,
    _lines(10, width=3000),
    "a\n" * 9000,
])
def test_reassembly_restores_content(content):
    chunks = CodeChunker(8192, 1024).chunk("f", content)
    assert _reassemble(chunks) == content
    assert chunks[-1].end == len(content)


def test_deterministic():
    content = _lines(400)
    chunker = CodeChunker(1000, 100)
    assert chunker.chunk("f", content) == chunker.chunk("f", content)


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, -1)])
def test_invalid_arguments(size, overlap):
    with pytest.raises(ValueError):
        CodeChunker(size, overlap)
