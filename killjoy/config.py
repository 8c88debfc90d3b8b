"""killjoy — Daemon configuration.

This is the daemon's own operating configuration (logging, bus timeouts,
reconnect policy).  It is separate from the settings document, which holds
the watch rules and notifiers (see ``killjoy.settings``).

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/killjoy/config.yaml
    3. User config:   $XDG_CONFIG_HOME/killjoy/config.yaml
    4. An explicit ``--config`` file
    5. Environment variables prefixed with KILLJOY_ (e.g. KILLJOY_BUS__CALL_TIMEOUT_SECONDS)

Call ``DaemonConfig.load()`` once at startup.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


class BusConfig(BaseModel):
    call_timeout_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Reply timeout for service-manager method calls.",
    )
    reconnect_attempts: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Consecutive failed reconnects tolerated before a Bus Session gives up.",
    )
    reconnect_backoff_seconds: float = Field(default=1.0, gt=0)
    reconnect_backoff_max_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def check_backoff(self) -> "BusConfig":
        if self.reconnect_backoff_max_seconds < self.reconnect_backoff_seconds:
            raise ValueError("reconnect_backoff_max_seconds must be >= reconnect_backoff_seconds")
        return self


class NotifyConfig(BaseModel):
    timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long to wait for a notifier to acknowledge a Notify call.",
    )


# ---------------------------------------------------------------------------
# Root configuration
# ---------------------------------------------------------------------------


class DaemonConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KILLJOY_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    settings_path: Path | None = Field(
        default=None,
        description="Settings document to load instead of searching the XDG directories.",
    )

    @classmethod
    def load(cls, config_file: Path | None = None) -> "DaemonConfig":
        """Load configuration from YAML files + environment variables."""
        data: dict[str, object] = {}

        config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
        candidates = [
            Path("/etc/killjoy/config.yaml"),
            Path(config_home) / "killjoy" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml  # lazy import

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    data.update(loaded)

        return cls(**data)


# Module-level singleton, replaced by ``DaemonConfig.load()`` at startup.
_config: DaemonConfig | None = None


def get_config() -> DaemonConfig:
    global _config
    if _config is None:
        _config = DaemonConfig.load()
    return _config


def override_config(config: DaemonConfig) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _config
    _config = config
