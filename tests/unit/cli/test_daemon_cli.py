"""Unit tests — CLI run command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from killjoy.cli.main import app
from killjoy.events import BusScope

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_DIRS", str(tmp_path / "system"))
    monkeypatch.setattr("killjoy.logging.configure_logging", lambda **kwargs: None)


@pytest.mark.unit
class TestRun:
    def test_runs_supervisor(self, settings_file: Path) -> None:
        with patch("killjoy.supervisor.Supervisor.serve", new=AsyncMock(return_value=0)) as serve:
            result = runner.invoke(app, ["run", "--settings", str(settings_file)])
        assert result.exit_code == 0
        serve.assert_awaited_once()

    def test_propagates_failure_exit_code(self, settings_file: Path) -> None:
        with patch("killjoy.supervisor.Supervisor.serve", new=AsyncMock(return_value=1)):
            result = runner.invoke(app, ["run", "--settings", str(settings_file)])
        assert result.exit_code == 1

    def test_missing_settings_exits_1(self) -> None:
        with patch("killjoy.supervisor.Supervisor.serve", new=AsyncMock(return_value=0)) as serve:
            result = runner.invoke(app, ["run"])
        assert result.exit_code == 1
        serve.assert_not_awaited()

    def test_invalid_settings_exits_1(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text('{"version": 2, "rules": [], "notifiers": {}}')
        result = runner.invoke(app, ["run", "--settings", str(path)])
        assert result.exit_code == 1

    def test_invalid_log_level_exits_1(self, settings_file: Path) -> None:
        result = runner.invoke(
            app, ["run", "--settings", str(settings_file), "--log-level", "loud"]
        )
        assert result.exit_code == 1

    def test_connections_use_configured_timeout(self, settings_file: Path, tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text("bus:\n  call_timeout_seconds: 0.25\n")
        with patch("killjoy.supervisor.Supervisor.__init__", return_value=None) as init, \
             patch("killjoy.supervisor.Supervisor.serve", new=AsyncMock(return_value=0)):
            result = runner.invoke(
                app, ["run", "--settings", str(settings_file), "--config", str(config)]
            )
        assert result.exit_code == 0
        factory = init.call_args[0][1]
        assert factory(BusScope.SYSTEM)._call_timeout == 0.25
