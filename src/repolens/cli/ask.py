"""repolens ask — stream an answer about an ingested repository."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from repolens.cli import errors
from repolens.cli._shared import DB_OPTION_HELP, DEFAULT_DB, console, fail, open_service
from repolens.errors import RepolensError
from repolens.service import DEFAULT_USER


def ask_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    question: Annotated[str, typer.Argument(help="Question about the codebase.")],
    save: Annotated[bool, typer.Option("--save", help="Store the question and answer.")] = False,
    user: Annotated[str, typer.Option("--user", help="Owner of the saved answer.")] = DEFAULT_USER,
    db: Annotated[Path, typer.Option("--db", envvar="REPOLENS_DB", help=DB_OPTION_HELP)] = DEFAULT_DB,
) -> None:
    """Answer a question from the project's stored files and commits."""
    with open_service(db) as service:
        try:
            status = service.get_ingestion_status(project_id)
            if not status.can_answer_questions:
                console.print(errors.warn_not_ready(project_id, status.status.value))
            answer = service.ask_question(project_id, question)
        except RepolensError as exc:
            fail(exc)

        async def _stream() -> str:
            async for delta in answer.stream:
                console.print(delta, end="", markup=False, highlight=False, soft_wrap=True)
            console.print()
            return answer.stream.text

        text = asyncio.run(_stream())

        if answer.file_references:
            console.print("\n[bold]References[/]")
            for name in answer.file_references:
                console.print(f"  [dim]•[/] {name}")

        if save and not answer.stream.failed:
            saved = service.save_answer(project_id, question, text, answer.file_references, user)
            console.print(f"[green]✓[/] Saved as question #{saved.id}")
