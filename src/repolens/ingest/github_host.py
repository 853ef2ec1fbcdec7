"""GitHub REST client with rate-limit-aware pacing and retry.

Every request goes through one RateLimiter (min interval + quota-reset block
fed from ``x-ratelimit-*`` headers) and the component's RetryPolicy.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from loguru import logger

from repolens.errors import HostUnavailable, InvalidRepositoryReference, RepolensError
from repolens.ratelimit import RateLimiter
from repolens.retry import RetryPolicy

_GITHUB_URL_RE = re.compile(
    r"^(?:https?://)?(?:[^@/\s]+@)?(?:www\.)?github\.com[/:]"
    r"(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?/?(?:[/?#].*)?$"
)
_SHORTHAND_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?$")
_USERINFO_RE = re.compile(r"(?<=://)[^@/\s]+@")

_DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
_RAW_MEDIA_TYPE = "application/vnd.github.raw"

T = TypeVar("T")


# ------------------------------------------------------------------
# Repository references
# ------------------------------------------------------------------


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def api_path(self) -> str:
        return f"/repos/{quote(self.owner)}/{quote(self.repo)}"


def sanitize_url(url: str) -> str:
    """Strip any ``user:token@`` credentials from *url* before it is logged."""
    return _USERINFO_RE.sub("", url)


def parse_repo_url(url: str) -> RepoRef:
    """Extract owner and repository name from a GitHub URL.

    Accepts ``https://github.com/owner/repo[.git][/...]``, ``github.com/owner/repo``,
    ``git@github.com:owner/repo.git`` and the ``owner/repo`` shorthand.

    Raises:
        InvalidRepositoryReference: If no owner/repo pair can be resolved.
    """
    candidate = (url or "").strip()
    match = _GITHUB_URL_RE.match(candidate) or _SHORTHAND_RE.match(candidate)
    if match is None or match["repo"] in ("", ".", ".."):
        raise InvalidRepositoryReference(
            f"Invalid GitHub URL format: {sanitize_url(candidate)!r}"
        )
    return RepoRef(owner=match["owner"], repo=match["repo"])


@dataclass
class CommitInfo:
    sha: str
    message: str
    author_name: str
    author_avatar: str
    date: str


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


class _RateLimited(HostUnavailable):
    """Quota exhausted; the limiter already knows when to resume."""


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, _RateLimited):
        return True
    if isinstance(exc, HostUnavailable):
        return exc.status_code is None or exc.status_code == 429 or exc.status_code >= 500
    return False


async def gather_or_cancel(coros: Iterable[Coroutine[Any, Any, T]]) -> list[T]:
    """Run *coros* concurrently; the first failure cancels the rest and is re-raised."""
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(coro) for coro in coros]
    except ExceptionGroup as eg:
        raise eg.exceptions[0] from None
    return [task.result() for task in tasks]


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------


class GitHost:
    """Async GitHub client.

    Args:
        token: Optional access token (sent as a Bearer token, never logged).
        api_url: REST API base URL.
        per_page: Page size for paginated listings (GitHub caps this at 100).
        retry: RetryPolicy applied to every request.
        timeout: Per-request timeout in seconds.
        rate_limiter: Pacing object; a fresh one is created when omitted.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        api_url: str = "https://api.github.com",
        per_page: int = 100,
        retry: RetryPolicy | None = None,
        timeout: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "repolens",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.per_page = per_page
        self.retry = retry or RetryPolicy()
        self.rate_limiter = rate_limiter or RateLimiter()
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHost:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        accept: str | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        await self.rate_limiter.wait()
        kwargs: dict[str, Any] = {"params": params}
        if accept:
            kwargs["headers"] = {"Accept": accept}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.get(path, **kwargs)
        self.rate_limiter.observe(response.headers)

        if response.status_code in (403, 429) and response.headers.get("x-ratelimit-remaining") == "0":
            raise _RateLimited(f"GitHub rate limit exceeded for {path}", response.status_code)
        if response.status_code >= 400:
            raise HostUnavailable(
                f"GitHub returned HTTP {response.status_code} for {path}",
                response.status_code,
            )
        return response

    async def _get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        accept: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
    ) -> httpx.Response:
        def _log_retry(attempt: int, exc: BaseException) -> None:
            logger.warning(f"GitHub request {path} failed ({exc}); attempt {attempt}")

        try:
            return await self.retry.run(
                lambda: self._send(path, params=params, accept=accept, timeout=timeout),
                on_retry=_log_retry,
                max_attempts=max_attempts,
                retryable=_is_transient,
            )
        except httpx.HTTPError as exc:
            raise HostUnavailable(f"GitHub request {path} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list_all_commits(self, ref: RepoRef, limit: int | None = None) -> list[CommitInfo]:
        """Page through commit history newest-first, stopping at *limit* items."""
        commits: list[CommitInfo] = []
        page = 1
        while limit is None or len(commits) < limit:
            response = await self._get(
                f"{ref.api_path}/commits",
                params={"per_page": self.per_page, "page": page},
            )
            items = response.json()
            if not items:
                break
            commits.extend(_to_commit_info(item) for item in items)
            if len(items) < self.per_page:
                break
            page += 1
        if limit is not None:
            commits = commits[:limit]
        logger.debug(f"Fetched {len(commits)} commits for {ref.full_name}")
        return commits

    async def count_files(self, ref: RepoRef, path: str = "") -> int:
        """Count blobs under *path* by walking directory listings (no content fetched)."""
        listing = await self.list_directory(ref, path)
        files = sum(1 for item in listing if item.get("type") == "file")
        subdirs = [item["path"] for item in listing if item.get("type") == "dir"]
        if subdirs:
            counts = await gather_or_cancel(self.count_files(ref, sub) for sub in subdirs)
            files += sum(counts)
        return files

    async def get_default_branch(self, ref: RepoRef, *, max_attempts: int | None = None) -> str:
        response = await self._get(ref.api_path, max_attempts=max_attempts)
        body = response.json()
        if not isinstance(body, dict) or not isinstance(body.get("default_branch"), str):
            raise HostUnavailable(f"Unexpected repository payload for {ref.full_name}")
        return body["default_branch"]

    async def get_commit_diff(self, ref: RepoRef, sha: str, *, timeout: float | None = None) -> str:
        """Return the unified diff text of one commit."""
        response = await self._get(
            f"{ref.api_path}/commits/{quote(sha)}",
            accept=_DIFF_MEDIA_TYPE,
            timeout=timeout,
        )
        return response.text

    async def validate_repo_access(self, ref: RepoRef) -> bool:
        """Probe the repository. Any failure is reported as ``False``, never raised."""
        try:
            await self.get_default_branch(ref, max_attempts=2)
        except (RepolensError, httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Repository {ref.full_name} is not accessible: {exc}")
            return False
        return True

    # ------------------------------------------------------------------
    # Tree access (used by RepositoryLoader)
    # ------------------------------------------------------------------

    async def list_tree(self, ref: RepoRef, branch: str) -> tuple[list[str], bool]:
        """Return (blob paths, truncated) from the recursive git tree of *branch*."""
        response = await self._get(
            f"{ref.api_path}/git/trees/{quote(branch, safe='')}",
            params={"recursive": "1"},
        )
        body = response.json()
        paths = [item["path"] for item in body.get("tree", []) if item.get("type") == "blob"]
        return paths, bool(body.get("truncated"))

    async def list_directory(
        self, ref: RepoRef, path: str = "", branch: str | None = None
    ) -> list[dict[str, Any]]:
        """Return the contents listing of one directory (a file path yields one entry)."""
        params = {"ref": branch} if branch else None
        response = await self._get(f"{ref.api_path}/contents/{quote(path)}", params=params)
        body = response.json()
        return body if isinstance(body, list) else [body]

    async def get_file_content(self, ref: RepoRef, path: str, branch: str) -> bytes:
        response = await self._get(
            f"{ref.api_path}/contents/{quote(path)}",
            params={"ref": branch},
            accept=_RAW_MEDIA_TYPE,
        )
        return response.content


def _to_commit_info(item: dict[str, Any]) -> CommitInfo:
    commit = item.get("commit") or {}
    author = commit.get("author") or {}
    account = item.get("author") or {}
    return CommitInfo(
        sha=item["sha"],
        message=commit.get("message") or "",
        author_name=author.get("name") or "",
        author_avatar=account.get("avatar_url") or "",
        date=author.get("date") or "",
    )
