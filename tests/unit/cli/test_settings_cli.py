"""Unit tests — CLI settings commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from killjoy.cli.main import app

runner = CliRunner()


@pytest.fixture
def xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_DIRS", str(tmp_path / "system"))
    return home


@pytest.mark.unit
class TestLoadPath:
    def test_prints_discovered_path(self, xdg: Path, basic_document: dict) -> None:
        path = xdg / "killjoy" / "settings.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps(basic_document))
        result = runner.invoke(app, ["settings", "load-path"])
        assert result.exit_code == 0
        assert result.stdout.strip() == str(path)

    def test_not_found(self, xdg: Path) -> None:
        result = runner.invoke(app, ["settings", "load-path"])
        assert result.exit_code == 1


@pytest.mark.unit
class TestValidate:
    def test_valid_file(self, settings_file: Path) -> None:
        result = runner.invoke(app, ["settings", "validate", str(settings_file)])
        assert result.exit_code == 0
        assert "valid" in result.output

    def test_invalid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"version": 1, "rules": []}))
        result = runner.invoke(app, ["settings", "validate", str(path)])
        assert result.exit_code == 1

    def test_not_json(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("rules = []")
        result = runner.invoke(app, ["settings", "validate", str(path)])
        assert result.exit_code == 1

    def test_validates_discovered_file(self, xdg: Path, basic_document: dict) -> None:
        path = xdg / "killjoy" / "settings.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps(basic_document))
        result = runner.invoke(app, ["settings", "validate"])
        assert result.exit_code == 0
