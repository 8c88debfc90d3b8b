"""CLI — Settings document commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

app = typer.Typer(help="Locate and validate the settings document.")
console = Console()
err_console = Console(stderr=True)


@app.command("load-path")
def load_path() -> None:
    """Print the path of the settings file killjoy would load."""
    from killjoy.exceptions import SettingsNotFoundError
    from killjoy.settings import get_load_path

    try:
        path = get_load_path()
    except SettingsNotFoundError as exc:
        err_console.print(f"[red]{escape(exc.message)}[/red]")
        raise typer.Exit(1)
    typer.echo(str(path))


@app.command("validate")
def validate(
    path: Path | None = typer.Argument(
        None, help="Settings file to validate. Defaults to the discovered one."
    ),
) -> None:
    """Check that a settings file is valid."""
    from killjoy.exceptions import SettingsError
    from killjoy.settings import load

    try:
        loaded = load(path)
    except SettingsError as exc:
        err_console.print(f"[red]{escape(exc.message)}[/red]", markup=True, highlight=False)
        raise typer.Exit(1)

    scopes = ", ".join(scope.value for scope in loaded.bus_scopes()) or "none"
    console.print(
        f"[green]Settings are valid:[/green] {len(loaded.rules)} rule(s), "
        f"{len(loaded.notifiers)} notifier(s), bus scopes: {scopes}"
    )
