"""Commit and file summarizer — LiteLLM calls with retry and deterministic fallbacks.

Neither entry point raises past its own boundary: every failure path
(timeout, provider error, rejected output) degrades to a locally computed
fallback summary so ingestion keeps moving.
"""

from __future__ import annotations

import asyncio
import hashlib
import re

import httpx
from loguru import logger

from repolens.errors import RepolensError
from repolens.ingest.github_host import GitHost, parse_repo_url
from repolens.rag import llm_client
from repolens.ratelimit import RateLimiter
from repolens.retry import RetryPolicy

TRUNCATION_MARKER = "\n\n[... truncated ...]"

_DIFF_HEADER_RE = re.compile(r"^diff --git", re.MULTILINE)
_CLASS_RE = re.compile(r"\bclass\s+(\w+)")
_FUNCTION_RE = re.compile(r"\b(?:function|def|func|fn|const|let|var)\s+(\w+)")

_COMMIT_SYSTEM_PROMPT = """\
You are an expert programmer summarizing a git diff.
Reminders about the git diff format:
For every file there are a few metadata lines, for example:
```
diff --git a/src/lib/index.js b/src/lib/index.js
index aadf691..bfef603 100644
--- a/src/lib/index.js
+++ b/src/lib/index.js
```
This means that `src/lib/index.js` was modified in this commit.
Then there is a specifier of the lines that were modified.
A line starting with `+` was added.
A line starting with `-` was deleted.
A line starting with neither is context and not part of the change.

EXAMPLE SUMMARY COMMENTS:
```
* Raised the amount of returned recordings from `10` to `100` [packages/server/recordings_api.ts], [packages/server/constants.ts]
* Fixed a typo in the github action name [.github/workflows/gpt-commit-summarizer.yml]
* Moved the `octokit` initialization to a separate file [src/octokit.ts], [src/index.ts]
* Lowered numeric tolerance for test files
```
Most commits need fewer comments than this example list. Name the files
when one or two are relevant; omit them when more are involved.
Do not copy the example into your summary."""

_FILE_SYSTEM_PROMPT = (
    "You are a senior software engineer who specialises in onboarding "
    "junior engineers onto projects."
)

_FILE_USER_PROMPT = """\
Explain to a junior engineer the purpose of the {file_name} file.
Give a summary specific to THIS file; do not give a generic response.
Here is the code:
---
{code}
---
Summarize the code above in no more than 100 words."""


# ------------------------------------------------------------------
# Fallbacks
# ------------------------------------------------------------------


def truncate(text: str, max_length: int) -> str:
    """Cut *text* to *max_length* characters and append a truncation marker."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


def commit_fallback(message: str, diff: str | None = None) -> str:
    """First line of the commit message plus a changed-file count from *diff*."""
    summary = message.split("\n", 1)[0].strip()
    if diff:
        files = len(_DIFF_HEADER_RE.findall(diff))
        if files:
            summary += f" ({files} file{'s' if files > 1 else ''} changed)"
    return summary


def code_fallback(file_name: str, code: str) -> str:
    """Structural description: file name, line count, first class/function names."""
    line_count = len(code.split("\n"))
    summary = f"File: {file_name} ({line_count} lines)"
    names = _CLASS_RE.findall(code)[:3] + _FUNCTION_RE.findall(code)[:3]
    if names:
        summary += f". Contains: {', '.join(names)}"
    return summary


class RejectedSummary(ValueError):
    """The model's output failed validation; triggers another attempt."""


# ------------------------------------------------------------------
# Summarizer
# ------------------------------------------------------------------


class Summarizer:
    """Produce natural-language summaries of commits and source files.

    Args:
        host: GitHost used to fetch commit diffs.
        model: LiteLLM model string.
        retry: RetryPolicy wrapped around every LLM call.
        rate_limiter: Paces LLM requests; defaults to one 0.2s-interval limiter.
        max_diff_bytes: Diffs longer than this are truncated before prompting.
        max_code_chars: File contents longer than this are truncated.
        diff_timeout: Seconds allowed for fetching one diff.
        file_timeout: Seconds allowed for one file summary, retries included.
        min_summary_length: Shorter model output is rejected.
    """

    def __init__(
        self,
        host: GitHost,
        model: str = "gemini/gemini-2.0-flash",
        *,
        retry: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        max_diff_bytes: int = 50 * 1024,
        max_code_chars: int = 10_000,
        diff_timeout: float = 30.0,
        file_timeout: float = 60.0,
        min_summary_length: int = 20,
    ) -> None:
        self._host = host
        self.model = model
        self.retry = retry or RetryPolicy()
        self.rate_limiter = rate_limiter or RateLimiter(min_interval=0.2)
        self.max_diff_bytes = max_diff_bytes
        self.max_code_chars = max_code_chars
        self.diff_timeout = diff_timeout
        self.file_timeout = file_timeout
        self.min_summary_length = min_summary_length
        self._seen_summaries: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    async def summarize_commit(self, repo_url: str, commit_hash: str, message: str = "") -> str:
        """Summarize one commit's diff; never raises."""
        fallback_message = message or f"Commit {commit_hash[:7]}"
        try:
            ref = parse_repo_url(repo_url)
            diff = await asyncio.wait_for(
                self._host.get_commit_diff(ref, commit_hash), timeout=self.diff_timeout
            )
        except (asyncio.TimeoutError, RepolensError, httpx.HTTPError) as exc:
            logger.warning(f"Could not fetch diff for {commit_hash[:7]} ({exc}); using fallback")
            return commit_fallback(fallback_message)

        if not diff.strip():
            logger.warning(f"Empty diff for {commit_hash[:7]}; using fallback")
            return commit_fallback(fallback_message)

        prompt_diff = truncate(diff, self.max_diff_bytes)
        messages = [
            {"role": "system", "content": _COMMIT_SYSTEM_PROMPT},
            {"role": "user", "content": f"Please summarise the following diff file:\n\n{prompt_diff}"},
        ]

        def _log_retry(attempt: int, exc: BaseException) -> None:
            logger.info(
                f"Retrying commit summary for {commit_hash[:7]} "
                f"(attempt {attempt}/{self.retry.max_attempts}): {exc}"
            )

        try:
            summary = await self.retry.run(lambda: self._complete(messages), on_retry=_log_retry)
        except Exception as exc:
            logger.warning(f"Commit summary for {commit_hash[:7]} failed after retries: {exc}")
            return commit_fallback(fallback_message, diff) or f"Commit: {commit_hash[:7]}"

        summary = summary.strip()
        if not summary:
            logger.warning(f"Empty summary for {commit_hash[:7]}; using fallback")
            return commit_fallback(fallback_message, diff) or f"Commit: {commit_hash[:7]}"
        return summary

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def summarize_file(self, file_name: str, code: str) -> str:
        """Summarize one source file; never raises."""
        if not code.strip():
            return code_fallback(file_name, "")

        prompt_code = truncate(code, self.max_code_chars)
        messages = [
            {"role": "system", "content": _FILE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": _FILE_USER_PROMPT.format(file_name=file_name, code=prompt_code),
            },
        ]

        async def _attempt() -> str:
            summary = (await self._complete(messages)).strip()
            self._validate_file_summary(file_name, summary)
            return summary

        def _log_retry(attempt: int, exc: BaseException) -> None:
            logger.info(
                f"Retrying file summary for {file_name} "
                f"(attempt {attempt}/{self.retry.max_attempts}): {exc}"
            )

        try:
            summary = await asyncio.wait_for(
                self.retry.run(_attempt, on_retry=_log_retry), timeout=self.file_timeout
            )
        except Exception as exc:
            logger.warning(f"File summary for {file_name} failed ({exc}); using fallback")
            return code_fallback(file_name, code)

        self._seen_summaries[_digest(summary)] = file_name
        return summary

    def _validate_file_summary(self, file_name: str, summary: str) -> None:
        if len(summary) < self.min_summary_length:
            raise RejectedSummary("Summary too short, likely invalid")
        owner = self._seen_summaries.get(_digest(summary))
        if owner is not None and owner != file_name:
            raise RejectedSummary(f"Summary is identical to the one produced for {owner}")

    async def _complete(self, messages: list[dict]) -> str:
        await self.rate_limiter.wait()
        return await llm_client.complete(self.model, messages)


def _digest(summary: str) -> str:
    normalized = " ".join(summary.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
