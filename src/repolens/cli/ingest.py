"""repolens check / ingest / restart — admission and the ingestion run.

The ingestion task lives inside this process, so ``ingest`` and ``restart``
stay attached and render the persisted progress until the task ends.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from repolens.cli import errors
from repolens.cli._shared import DB_OPTION_HELP, DEFAULT_DB, console, fail, open_service
from repolens.db.models import IngestionStatus
from repolens.errors import RepolensError
from repolens.rag.llm_client import validate_api_key
from repolens.service import DEFAULT_USER, IngestionStatusView, RepolensService

_POLL_INTERVAL = 0.5

DbOption = Annotated[Path, typer.Option("--db", envvar="REPOLENS_DB", help=DB_OPTION_HELP)]
TokenOption = Annotated[
    str | None,
    typer.Option("--token", help="GitHub token (defaults to $GITHUB_TOKEN)."),
]


def check_cmd(
    repo_url: Annotated[str, typer.Argument(help="GitHub repository URL or owner/repo.")],
    token: TokenOption = None,
    user: Annotated[str, typer.Option("--user", help="Credit account.")] = DEFAULT_USER,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Count a repository's files and compare them with your credit balance."""
    with open_service(db) as service:
        try:
            result = asyncio.run(service.create_ingestion_request(repo_url, token, user))
        except RepolensError as exc:
            fail(exc)

    console.print(f"Files:             [bold]{result.file_count}[/]")
    console.print(f"Required credits:  [bold]{result.required_credits}[/]")
    console.print(f"Your balance:      [bold]{result.credits}[/]")
    if result.allowed:
        console.print(f"[green]✓[/] Ready.  Run:  repolens ingest {repo_url}")
    else:
        console.print(errors.err_insufficient_credits(result.file_count, result.credits))
        raise typer.Exit(1)


def ingest_cmd(
    repo_url: Annotated[str, typer.Argument(help="GitHub repository URL or owner/repo.")],
    name: Annotated[str | None, typer.Option("--name", help="Project display name.")] = None,
    token: TokenOption = None,
    user: Annotated[str, typer.Option("--user", help="Credit account.")] = DEFAULT_USER,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Create a project for a repository and ingest it (charges one credit per file)."""
    with open_service(db) as service:
        _require_model_key(service.cfg.summarizer.model)

        async def _run() -> tuple[str, IngestionStatusView]:
            project = await service.create_project(repo_url, name, token, user)
            console.print(f"Project [bold]{project.id}[/] ({project.name}) created.")
            return project.id, await _watch(service, project.id)

        try:
            project_id, status = asyncio.run(_run())
        except RepolensError as exc:
            fail(exc)
    _report(project_id, status)


def restart_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    token: TokenOption = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Reset a project's ingestion and run it again from the first stage."""
    with open_service(db) as service:
        _require_model_key(service.cfg.summarizer.model)

        async def _run() -> IngestionStatusView:
            service.restart_ingestion(project_id, token)
            return await _watch(service, project_id)

        try:
            status = asyncio.run(_run())
        except RepolensError as exc:
            fail(exc)
    _report(project_id, status)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _require_model_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError as exc:
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(errors.err_no_api_key(provider))
        raise typer.Exit(1) from exc


def _describe(status: IngestionStatusView) -> str:
    if status.files_total:
        return f"{status.status.value} · files {status.files_processed}/{status.files_total}"
    return status.status.value


async def _watch(service: RepolensService, project_id: str) -> IngestionStatusView:
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        bar = progress.add_task("PENDING", total=100)
        while service.is_running(project_id):
            status = service.get_ingestion_status(project_id)
            progress.update(bar, completed=status.progress, description=_describe(status))
            await asyncio.sleep(_POLL_INTERVAL)
        await service.wait(project_id)
        status = service.get_ingestion_status(project_id)
        progress.update(bar, completed=status.progress, description=_describe(status))
    return status


def _report(project_id: str, status: IngestionStatusView) -> None:
    if status.status is IngestionStatus.COMPLETED:
        console.print(
            f"[green]✓[/] Ingested {status.files_total} files and "
            f"{status.commits_total} commits.\n"
            f"  Run:  repolens ask {project_id} \"<question>\""
        )
        return
    console.print(
        f"[red]Error:[/] Ingestion failed: {status.error_message}\n"
        f"  Run:  repolens restart {project_id}"
    )
    raise typer.Exit(1)
