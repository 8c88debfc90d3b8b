"""CLI — Run the monitoring daemon."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

err_console = Console(stderr=True)


def run(
    settings_file: Annotated[
        Path | None,
        typer.Option("--settings", "-s", help="Settings document (default: XDG search)."),
    ] = None,
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to daemon config.yaml.")
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Override the configured log level.")
    ] = None,
    log_format: Annotated[
        str | None, typer.Option("--log-format", help="console or json.")
    ] = None,
) -> None:
    """Monitor units and notify D-Bus services until interrupted."""
    from pydantic import ValidationError

    from killjoy import settings as settings_module
    from killjoy.bus.dbus_glib import DBusManagerConnection, DBusNotificationSender
    from killjoy.config import DaemonConfig, LoggingConfig, override_config
    from killjoy.exceptions import SettingsError
    from killjoy.logging import configure_logging, get_logger
    from killjoy.supervisor import Supervisor

    try:
        daemon_config = DaemonConfig.load(config_file=config)
        overrides = {
            key: value.lower()
            for key, value in (("level", log_level), ("format", log_format))
            if value is not None
        }
        if overrides:
            daemon_config.logging = LoggingConfig.model_validate(
                {**daemon_config.logging.model_dump(), **overrides}
            )
    except ValidationError as exc:
        err_console.print(f"[red]Invalid daemon configuration:[/red]\n{escape(str(exc))}")
        raise typer.Exit(1)

    override_config(daemon_config)
    configure_logging(
        level=daemon_config.logging.level,
        format=daemon_config.logging.format,
        log_file=str(daemon_config.logging.file) if daemon_config.logging.file else None,
    )
    log = get_logger("killjoy.cli")

    try:
        loaded = settings_module.load(settings_file or daemon_config.settings_path)
    except SettingsError as exc:
        log.error("settings_invalid", error=exc.message)
        err_console.print(f"[red]{escape(exc.message)}[/red]", highlight=False)
        raise typer.Exit(1)

    call_timeout = daemon_config.bus.call_timeout_seconds
    supervisor = Supervisor(
        loaded,
        lambda scope: DBusManagerConnection(scope, call_timeout=call_timeout),
        DBusNotificationSender(),
        notify_timeout=daemon_config.notify.timeout_seconds,
        reconnect_attempts=daemon_config.bus.reconnect_attempts,
        reconnect_backoff=daemon_config.bus.reconnect_backoff_seconds,
        reconnect_backoff_max=daemon_config.bus.reconnect_backoff_max_seconds,
    )
    exit_code = asyncio.run(supervisor.serve())
    if exit_code:
        raise typer.Exit(exit_code)
