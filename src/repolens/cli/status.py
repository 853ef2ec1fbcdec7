"""repolens status / projects / commits / archive."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from repolens.cli._shared import DB_OPTION_HELP, DEFAULT_DB, console, fail, open_service
from repolens.db.models import IngestionStatus
from repolens.errors import RepolensError

DbOption = Annotated[Path, typer.Option("--db", envvar="REPOLENS_DB", help=DB_OPTION_HELP)]

_STATUS_STYLE = {
    IngestionStatus.PENDING: "dim",
    IngestionStatus.IN_PROGRESS: "yellow",
    IngestionStatus.COMPLETED: "green",
    IngestionStatus.FAILED: "red",
}


def status_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Show a project's ingestion status and progress."""
    with open_service(db) as service:
        try:
            status = service.get_ingestion_status(project_id)
        except RepolensError as exc:
            fail(exc)

    style = _STATUS_STYLE[status.status]
    lines = [
        f"Status:     [{style}]{status.status.value}[/]",
        f"Progress:   [bold]{status.progress}%[/]",
        f"Files:      {status.files_processed}/{status.files_total}",
        f"Commits:    {status.commits_processed} new / {status.commits_total} stored",
        f"Q&A ready:  {'[green]yes[/]' if status.can_answer_questions else '[dim]no[/]'}",
    ]
    if status.started_at:
        lines.append(f"Started:    [dim]{status.started_at}[/]")
    if status.completed_at:
        lines.append(f"Finished:   [dim]{status.completed_at}[/]")
    if status.error_message:
        lines.append(f"Error:      [red]{status.error_message}[/]")
    console.print(Panel("\n".join(lines), title=f"[bold]{project_id}[/]", expand=False))


def projects_cmd(db: DbOption = DEFAULT_DB) -> None:
    """List projects that have not been archived."""
    with open_service(db) as service:
        projects = service.list_projects()

    if not projects:
        console.print("[dim]No projects yet.[/]  Run:  repolens ingest <repo-url>")
        return

    table = Table(box=None, padding=(0, 1))
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Repository", style="dim")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    for p in projects:
        style = _STATUS_STYLE[p.status]
        table.add_row(p.id, p.name, p.repo_url, f"[{style}]{p.status.value}[/]", f"{p.progress}%")
    console.print(table)


def commits_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    limit: Annotated[int, typer.Option("--limit", min=1, help="Commits to show.")] = 50,
    poll: Annotated[
        bool, typer.Option("--poll", help="Fetch new commits from GitHub first.")
    ] = False,
    token: Annotated[
        str | None, typer.Option("--token", help="GitHub token (defaults to $GITHUB_TOKEN).")
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Show a project's commit log, newest first."""
    with open_service(db) as service:
        try:
            if poll:
                result = asyncio.run(service.poll_commits(project_id, token))
                console.print(
                    f"[green]✓[/] {result.count} new commits ({result.summarized} AI-summarized)"
                )
            commits = service.list_commits(project_id, limit)
        except RepolensError as exc:
            fail(exc)

    if not commits:
        console.print(f"[dim]No commits stored.[/]  Run:  repolens commits {project_id} --poll")
        return

    for commit in commits:
        first_line = commit.message.split("\n", 1)[0]
        console.print(
            f"[bold]{commit.commit_hash[:7]}[/] [dim]{commit.commit_date[:10]}[/] "
            f"{commit.author_name}: {first_line}"
        )
        console.print(f"  {commit.summary}", markup=False)


def archive_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Archive a project (soft delete; its records stay in the database)."""
    if not yes:
        typer.confirm(f"Archive project {project_id}?", abort=True)
    with open_service(db) as service:
        try:
            service.archive_project(project_id)
        except RepolensError as exc:
            fail(exc)
    console.print(f"[green]✓[/] Archived {project_id}")
