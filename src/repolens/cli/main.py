"""repolens CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from repolens.cli._shared import load_cfg
from repolens.cli.ask import ask_cmd
from repolens.cli.credits import credits_app
from repolens.cli.ingest import check_cmd, ingest_cmd, restart_cmd
from repolens.cli.status import archive_cmd, commits_cmd, projects_cmd, status_cmd
from repolens.log import configure_logging


def _version() -> str:
    try:
        return importlib.metadata.version("repolens")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"repolens {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="repolens",
    help=(
        "repolens — ingest GitHub repositories and ask questions about them.\n\n"
        "  repolens ingest <url>     Summarize files and commits into the knowledge store.\n"
        "  repolens ask <id> <q>     Answer a question from the stored context."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override logging.level (DEBUG, INFO, WARNING...)."),
    ] = None,
) -> None:
    """repolens — GitHub repository ingestion and question answering."""
    cfg = load_cfg()
    configure_logging(log_level or cfg.logging.level, cfg.logging.file)


app.command("check")(check_cmd)
app.command("ingest")(ingest_cmd)
app.command("restart")(restart_cmd)
app.command("status")(status_cmd)
app.command("ask")(ask_cmd)
app.command("commits")(commits_cmd)
app.command("projects")(projects_cmd)
app.command("archive")(archive_cmd)
app.add_typer(credits_app, name="credits")


@app.command("version")
def version_cmd() -> None:
    """Show the installed repolens version."""
    typer.echo(f"repolens {_version()}")


if __name__ == "__main__":
    app()
