"""killjoy CLI — Entry point.

Usage:
    killjoy run [--settings PATH] [--config PATH] [--log-level LEVEL]
    killjoy settings load-path
    killjoy settings validate [PATH]
    killjoy --version
"""

from __future__ import annotations

import typer
from rich.console import Console

from killjoy import __version__
from killjoy.cli.commands import daemon, settings

app = typer.Typer(
    name="killjoy",
    help="killjoy — Watch systemd units and notify D-Bus services when they change state.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

console = Console()

app.command("run")(daemon.run)
app.add_typer(settings.app, name="settings")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"killjoy {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    pass


if __name__ == "__main__":
    app()
