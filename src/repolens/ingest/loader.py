"""Repository loader — walk a GitHub tree and fetch every non-ignored text file."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import PurePosixPath

import httpx
from loguru import logger

from repolens.config import DEFAULT_IGNORE_PATTERNS
from repolens.errors import RepolensError, RepositoryLoadError
from repolens.ingest.github_host import GitHost, RepoRef, gather_or_cancel, parse_repo_url


@dataclass
class Document:
    """One repository file: its path relative to the repo root and decoded text."""

    path: str
    content: str


def is_ignored(path: str, patterns: Iterable[str]) -> bool:
    """Return True if *path* matches any ignore pattern.

    Pattern forms:
    - ``dir/**``: anything below a directory named ``dir`` at any depth
      (a multi-segment ``a/b/**`` is anchored at the repository root).
    - ``a/*.txt``: matched against the full path.
    - ``*.lock``: matched against the file name only.
    """
    parts = PurePosixPath(path).parts
    if not parts:
        return False
    name = parts[-1]
    for pattern in patterns:
        if pattern.endswith("/**"):
            prefix = pattern[:-3]
            if "/" in prefix:
                if path.startswith(prefix + "/"):
                    return True
            elif any(fnmatchcase(d, prefix) for d in parts[:-1]):
                return True
        elif "/" in pattern:
            if fnmatchcase(path, pattern):
                return True
        elif fnmatchcase(name, pattern):
            return True
    return False


def _decode(data: bytes) -> str | None:
    if b"\x00" in data:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


class RepositoryLoader:
    """Fetch all text files of a repository at a branch.

    A failed tree walk or content fetch aborts the whole load with
    RepositoryLoadError. Binary files are skipped with a warning.

    Args:
        host: GitHost used for every request (owns token and rate limiting).
        ignore: Glob patterns of paths to skip (see is_ignored()).
        max_concurrency: Maximum simultaneous content fetches.
    """

    def __init__(
        self,
        host: GitHost,
        ignore: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
        max_concurrency: int = 5,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._host = host
        self.ignore = list(ignore)
        self.max_concurrency = max_concurrency

    async def load(self, repo_url: str, branch: str | None = None) -> list[Document]:
        """Return one Document per non-ignored text file, sorted by path.

        Raises:
            InvalidRepositoryReference: If *repo_url* cannot be parsed.
            RepositoryLoadError: If the walk or any fetch fails.
        """
        ref = parse_repo_url(repo_url)
        try:
            if branch is None:
                branch = await self._host.get_default_branch(ref)
            paths = await self._list_paths(ref, branch)
            wanted = sorted(p for p in paths if not is_ignored(p, self.ignore))
            logger.info(
                f"Loading {len(wanted)} files from {ref.full_name}@{branch} "
                f"({len(paths) - len(wanted)} ignored)"
            )
            semaphore = asyncio.Semaphore(self.max_concurrency)
            results = await gather_or_cancel(
                self._fetch(ref, branch, path, semaphore) for path in wanted
            )
        except (RepolensError, httpx.HTTPError) as exc:
            raise RepositoryLoadError(
                f"Failed to load repository {ref.full_name}: {exc}"
            ) from exc
        return [doc for doc in results if doc is not None]

    async def _list_paths(self, ref: RepoRef, branch: str) -> list[str]:
        paths, truncated = await self._host.list_tree(ref, branch)
        if not truncated:
            return paths
        logger.warning(f"Git tree of {ref.full_name} is truncated; walking directories instead")
        return await self._walk(ref, branch, "")

    async def _walk(self, ref: RepoRef, branch: str, path: str) -> list[str]:
        listing = await self._host.list_directory(ref, path, branch)
        files = [item["path"] for item in listing if item.get("type") == "file"]
        subdirs = [
            item["path"]
            for item in listing
            if item.get("type") == "dir" and not is_ignored(item["path"] + "/x", self.ignore)
        ]
        for sub in await gather_or_cancel(self._walk(ref, branch, d) for d in subdirs):
            files.extend(sub)
        return files

    async def _fetch(
        self, ref: RepoRef, branch: str, path: str, semaphore: asyncio.Semaphore
    ) -> Document | None:
        async with semaphore:
            data = await self._host.get_file_content(ref, path, branch)
        text = _decode(data)
        if text is None:
            logger.warning(f"Skipping binary file {path}")
            return None
        return Document(path=path, content=text)
