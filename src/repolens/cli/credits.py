"""repolens credits show / add."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from repolens.cli._shared import DB_OPTION_HELP, DEFAULT_DB, console, open_service
from repolens.service import DEFAULT_USER

credits_app = typer.Typer(help="Inspect and top up credit balances.", no_args_is_help=True)

DbOption = Annotated[Path, typer.Option("--db", envvar="REPOLENS_DB", help=DB_OPTION_HELP)]
UserOption = Annotated[str, typer.Option("--user", help="Credit account.")]


@credits_app.command("show")
def show_cmd(user: UserOption = DEFAULT_USER, db: DbOption = DEFAULT_DB) -> None:
    """Show the credit balance."""
    with open_service(db) as service:
        balance = service.get_credits(user)
    console.print(f"{user}: [bold]{balance}[/] credits")


@credits_app.command("add")
def add_cmd(
    amount: Annotated[int, typer.Argument(min=1, help="Credits to add.")],
    user: UserOption = DEFAULT_USER,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Add credits to a balance."""
    with open_service(db) as service:
        balance = service.add_credits(amount, user)
    console.print(f"[green]✓[/] {user}: [bold]{balance}[/] credits")
