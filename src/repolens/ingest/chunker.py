"""Fixed-window code chunker with line-boundary preference."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CodeChunk:
    """A slice ``content[start:end]`` of one file."""

    file_name: str
    chunk_index: int
    content: str
    start: int
    end: int


class CodeChunker:
    """Split file content into overlapping windows of at most *chunk_size* characters.

    Content at or under *chunk_size* yields one chunk. Longer content is cut
    into windows where each window after the first starts exactly *overlap*
    characters before the previous window's end. A window prefers to end just
    after the last newline in its back half. Pure and deterministic.
    """

    def __init__(self, chunk_size: int = 8 * 1024, overlap: int = 1024) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, file_name: str, content: str) -> list[CodeChunk]:
        length = len(content)
        if length <= self.chunk_size:
            return [CodeChunk(file_name, 0, content, 0, length)]

        chunks: list[CodeChunk] = []
        start = 0
        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                newline = content.rfind("\n", start, end)
                if newline > start + self.chunk_size // 2 and newline + 1 - self.overlap > start:
                    end = newline + 1
            chunks.append(CodeChunk(file_name, len(chunks), content[start:end], start, end))
            if end >= length:
                break
            start = end - self.overlap
        return chunks

