"""Settings document — watch rules and notifier endpoints.

The settings document is JSON, located with the XDG base-directory search::

    $XDG_CONFIG_HOME/killjoy/settings.json     (default ~/.config)
    $XDG_CONFIG_DIRS/killjoy/settings.json     (default /etc/xdg, in order)

Loading happens in two steps.  The raw document is parsed into pydantic
models (``SettingsDocument``) that check its shape; those are then converted
into immutable domain objects (``Settings``, ``Rule``, ``Notifier``) with
expressions compiled and notifier references resolved.  Any failure raises a
``SettingsError`` subclass and nothing is monitored.

After load, a ``Settings`` instance is never mutated.  It is passed explicitly
to every Bus Session and to the Dispatch Engine.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from killjoy.bus.names import is_valid_bus_name, path_for_bus_name
from killjoy.events import BusScope
from killjoy.exceptions import (
    SettingsNotFoundError,
    SettingsParseError,
    SettingsValidationError,
)
from killjoy.expressions import Expression, ExpressionType
from killjoy.units import ActiveState

SETTINGS_VERSION = 1
SETTINGS_DIR_NAME = "killjoy"
SETTINGS_FILE_NAME = "settings.json"


# ---------------------------------------------------------------------------
# Raw document schema
# ---------------------------------------------------------------------------


class NotifierDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bus_type: BusScope
    bus_name: str

    @field_validator("bus_name")
    @classmethod
    def check_bus_name(cls, v: str) -> str:
        if not is_valid_bus_name(v):
            raise ValueError(f"Found invalid bus name: {v}")
        return v


class RuleDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bus_type: BusScope
    active_states: list[ActiveState]
    expression: str
    expression_type: str
    notifiers: list[str]

    @field_validator("expression_type")
    @classmethod
    def check_expression_type(cls, v: str) -> str:
        try:
            return ExpressionType.parse(v).value
        except ValueError:
            raise ValueError(f"Found invalid expression type: {v}") from None

    @model_validator(mode="after")
    def check_expression(self) -> "RuleDocument":
        Expression.compile(self.expression, self.expression_type)
        return self


class SettingsDocument(BaseModel):
    """Shape of the settings file.

    Values here may be syntactically correct but still unusable; conversion
    with ``Settings.from_document`` is what makes them safe to act on.
    """

    model_config = ConfigDict(extra="forbid")

    version: int
    rules: list[RuleDocument]
    notifiers: dict[str, NotifierDocument]

    @field_validator("version")
    @classmethod
    def check_version(cls, v: int) -> int:
        if v != SETTINGS_VERSION:
            raise ValueError(f"Unsupported settings version {v}; expected {SETTINGS_VERSION}")
        return v

    @model_validator(mode="after")
    def check_notifier_references(self) -> "SettingsDocument":
        for index, rule in enumerate(self.rules):
            for label in rule.notifiers:
                if label not in self.notifiers:
                    raise ValueError(
                        f"Rule {index} references non-existent notifier: {label}"
                    )
        return self


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notifier:
    """A D-Bus service that is contacted when an event of interest happens."""

    label: str
    bus_scope: BusScope
    bus_name: str

    @property
    def object_path(self) -> str:
        return path_for_bus_name(self.bus_name)


@dataclass(frozen=True)
class Rule:
    """Units to watch, and notifiers to contact when any of them enter a state of interest."""

    bus_scope: BusScope
    active_states: frozenset[ActiveState]
    expression: Expression
    notifiers: tuple[str, ...]

    def matches_name(self, unit_name: str) -> bool:
        return self.expression.matches(unit_name)

    def matches(self, unit_name: str, active_state: ActiveState) -> bool:
        return active_state in self.active_states and self.expression.matches(unit_name)


@dataclass(frozen=True)
class Settings:
    rules: tuple[Rule, ...]
    notifiers: Mapping[str, Notifier]

    # -- construction -------------------------------------------------------

    @classmethod
    def from_document(cls, data: Any) -> "Settings":
        """Validate a decoded JSON document and build a ``Settings`` object."""
        try:
            document = SettingsDocument.model_validate(data)
        except ValidationError as exc:
            errors = exc.errors(include_url=False, include_context=False)
            raise SettingsValidationError(_format_errors(errors), errors=errors) from exc

        notifiers = {
            label: Notifier(label=label, bus_scope=doc.bus_type, bus_name=doc.bus_name)
            for label, doc in document.notifiers.items()
        }
        rules = tuple(
            Rule(
                bus_scope=doc.bus_type,
                active_states=frozenset(doc.active_states),
                expression=Expression.compile(doc.expression, doc.expression_type),
                notifiers=tuple(doc.notifiers),
            )
            for doc in document.rules
        )
        return cls(rules=rules, notifiers=MappingProxyType(notifiers))

    @classmethod
    def from_json(cls, text: str | bytes, source: str = "<string>") -> "Settings":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise SettingsParseError(source, str(exc)) from exc
        return cls.from_document(data)

    # -- lookups ------------------------------------------------------------

    def bus_scopes(self) -> list[BusScope]:
        """Deduplicated bus scopes referenced by at least one rule, in enum order."""
        used = {rule.bus_scope for rule in self.rules}
        return [scope for scope in BusScope if scope in used]

    def rules_for(self, bus_scope: BusScope) -> tuple[Rule, ...]:
        return tuple(rule for rule in self.rules if rule.bus_scope is bus_scope)

    def watches(self, bus_scope: BusScope, unit_name: str) -> bool:
        """Tell whether at least one rule for *bus_scope* selects *unit_name*."""
        return any(rule.matches_name(unit_name) for rule in self.rules_for(bus_scope))

    def matching_rules(
        self, bus_scope: BusScope, unit_name: str, active_state: ActiveState
    ) -> list[Rule]:
        """Rules for *bus_scope* whose state set and expression both match, in declared order."""
        return [
            rule
            for rule in self.rules
            if rule.bus_scope is bus_scope and rule.matches(unit_name, active_state)
        ]

    def notifier(self, label: str) -> Notifier:
        return self.notifiers[label]


def _format_errors(errors: list[dict[str, Any]]) -> str:
    lines = []
    for err in errors:
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<document>"
        lines.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "Invalid settings document:\n  " + "\n  ".join(lines)


# ---------------------------------------------------------------------------
# Discovery and loading
# ---------------------------------------------------------------------------


def get_search_paths() -> list[Path]:
    """Return candidate settings paths in order of preference."""
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    config_dirs = os.environ.get("XDG_CONFIG_DIRS") or "/etc/xdg"
    bases = [config_home, *(d for d in config_dirs.split(":") if d)]
    return [Path(base) / SETTINGS_DIR_NAME / SETTINGS_FILE_NAME for base in bases]


def get_load_path() -> Path:
    """Return the first existing settings file, or raise ``SettingsNotFoundError``."""
    candidates = get_search_paths()
    for path in candidates:
        if path.is_file():
            return path
    raise SettingsNotFoundError([str(p) for p in candidates])


def load(path: Path | str | None = None) -> Settings:
    """Read and validate the settings file at *path* (or the discovered one)."""
    load_path = Path(path) if path is not None else get_load_path()
    try:
        text = load_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsParseError(str(load_path), exc.strerror or str(exc)) from exc
    return Settings.from_json(text, source=str(load_path))
