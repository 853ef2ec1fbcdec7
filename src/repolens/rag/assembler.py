"""Context assembler and answer streaming.

Turns a RetrievedContext into one bounded prompt:

  <instructions>

  START CONTEXT BLOCK
  <context>
  END CONTEXT BLOCK

  START QUESTION
  <question>
  END QUESTION

and streams the model's answer. A failing stream yields a fixed apology and
ends; it never raises into the caller.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from loguru import logger

from repolens.config import RetrievalCfg
from repolens.db.models import CodeRecord
from repolens.rag import llm_client
from repolens.rag.retriever import STRUCTURE_SAMPLE_COUNT, RetrievedContext

STREAM_FAILURE_MESSAGE = (
    "Sorry for the inconvenience. Your request couldn't be processed because "
    "either the AI provider usage limit has been exceeded or it is undergoing "
    "an update. Please try asking the question again later."
)

OVERVIEW_INSTRUCTIONS = """\
You are analyzing a GitHub project. Provide a comprehensive overview of this \
project based on the provided context. Include:
- Project purpose and main functionality
- Tech stack (infer from file types and package files)
- Project structure and organization
- Recent activity and development trends (from commits)
- Key features and capabilities
- How to get started or use the project

Be detailed but concise. Use markdown formatting. If you find a README file, \
prioritize that information."""

QUESTION_INSTRUCTIONS = """\
You are an AI assistant who answers questions about codebases. Your audience \
is a technical intern trying to understand this codebase.
Take into account the CONTEXT BLOCK provided with the question.
If the question is about the code or a specific file, give a detailed answer \
with step-by-step explanations.
If the context does not provide the answer, say "I am sorry, but I don't know \
the answer."
Do not invent anything that is not drawn directly from the context.
Answer in markdown, with code snippets where useful."""

_README_PREVIEW_CHARS = 500


def _excerpt(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _record_block(record: CodeRecord, label: str, limit: int) -> str:
    return (
        f"FILE: {record.file_name}\n"
        f"Summary: {record.summary}\n"
        f"{label}: {_excerpt(record.source_code, limit)}\n\n"
    )


def _overview_metadata(ctx: RetrievedContext) -> str:
    project = ctx.project
    created = (project.created_at or "Unknown").split(" ")[0]
    text = (
        "PROJECT METADATA:\n"
        f"- Project Name: {project.name}\n"
        f"- GitHub URL: {project.repo_url}\n"
        f"- Created: {created}\n\n"
    )

    if ctx.readmes:
        text += "README FILES:\n"
        for readme in ctx.readmes:
            text += (
                f"File: {readme.file_name}\n"
                f"Summary: {readme.summary}\n"
                f"Content Preview: {readme.source_code[:_README_PREVIEW_CHARS]}...\n\n"
            )

    if ctx.commits:
        text += f"RECENT COMMITS (Last {len(ctx.commits)}):\n"
        for commit in ctx.commits:
            text += f"- {commit.author_name}: {commit.message.splitlines()[0] if commit.message else ''}\n"
            if commit.summary:
                text += f"  Summary: {commit.summary}\n"
            text += f"  Date: {commit.commit_date[:10]}\n\n"

    if ctx.file_names:
        text += "PROJECT STRUCTURE (Sample files):\n"
        text += "".join(f"- {name}\n" for name in ctx.file_names[:STRUCTURE_SAMPLE_COUNT])
        extra = len(ctx.file_names) - STRUCTURE_SAMPLE_COUNT
        if extra > 0:
            text += f"... and {extra} more files\n"
    return text + "\n"


def build_context(ctx: RetrievedContext, cfg: RetrievalCfg | None = None) -> str:
    """Render *ctx* as context text of at most ``cfg.context_char_budget`` characters.

    Record blocks are added best-first until the next one would exceed the budget.
    """
    cfg = cfg or RetrievalCfg()
    if ctx.overview:
        text = _overview_metadata(ctx)
        label, limit = "Content", cfg.overview_excerpt_chars
    else:
        text = ""
        label, limit = "Code Content", cfg.excerpt_chars

    for record in ctx.records:
        block = _record_block(record, label, limit)
        if len(text) + len(block) > cfg.context_char_budget:
            logger.debug(f"Context budget reached; dropped records from {record.file_name} on")
            break
        text += block
    return text[: cfg.context_char_budget]


def build_prompt(question: str, context: str, overview: bool) -> str:
    instructions = OVERVIEW_INSTRUCTIONS if overview else QUESTION_INSTRUCTIONS
    return (
        f"{instructions}\n\n"
        f"START CONTEXT BLOCK\n{context}\nEND CONTEXT BLOCK\n\n"
        f"START QUESTION\n{question}\nEND QUESTION"
    )


def file_references(ctx: RetrievedContext, max_references: int = 10) -> list[str]:
    """Distinct file names used as context, in selection order."""
    return list(dict.fromkeys(r.file_name for r in ctx.records))[:max_references]


class AnswerStream:
    """Single-use async iterator over answer text deltas.

    Iterating drives the LLM stream; the full text is available afterwards
    as ``.text``. If the provider fails, the apology message is yielded and
    the iteration ends normally.
    """

    def __init__(self, model: str, prompt: str) -> None:
        self.model = model
        self.prompt = prompt
        self.failed = False
        self.done = False
        self._parts: list[str] = []
        self._started = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("AnswerStream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        messages = [{"role": "user", "content": self.prompt}]
        try:
            async for delta in llm_client.stream(self.model, messages):
                self._parts.append(delta)
                yield delta
        except Exception as exc:
            logger.error(f"Answer stream failed: {exc}")
            self.failed = True
            self._parts.append(STREAM_FAILURE_MESSAGE)
            yield STREAM_FAILURE_MESSAGE
        finally:
            self.done = True

    async def read(self) -> str:
        """Consume the whole stream and return the answer text."""
        async for _ in self:
            pass
        return self.text
