"""
Central configuration using Pydantic BaseSettings.

Validates all env vars at startup (fail-fast). Values come from the
environment or an optional .env file; every group uses an ``SMG_`` prefix.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.tools.sqlplus_path)

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().

Settings are handed to the sequencer explicitly; steps never read the
environment themselves.
"""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


# =============================================================================
# Nested Settings Groups
# =============================================================================


class LoggingSettings(BaseSettings):
    """Trace logging configuration."""

    model_config = {"env_prefix": "SMG_LOG_", "extra": "ignore"}

    level: str = "INFO"
    format: str = "json"
    file: str = ""

    @field_validator("format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError("SMG_LOG_FORMAT must be 'json' or 'text'")
        return value


class ToolSettings(BaseSettings):
    """External programs invoked by provisioning steps."""

    model_config = {"env_prefix": "SMG_TOOL_", "extra": "ignore"}

    sqlplus_path: str = "sqlplus"
    import_utility: str = "imp"
    upgrade_tool: str = "SmgUpgrade"
    service_control: str = "net"
    oracle_service: str = "OracleServiceSMG"

    # Prepended to elevated commands; empty when the caller is already elevated
    elevation_prefix: List[str] = []


class TimeoutSettings(BaseSettings):
    """Timeouts (seconds) for every external call."""

    model_config = {"env_prefix": "SMG_TIMEOUT_", "extra": "ignore"}

    connect: int = 30
    query: int = 300
    process: int = 3600
    service_restart: int = 300
    connect_attempts: int = 3


class PathSettings(BaseSettings):
    """Persistent artefacts and log verification markers."""

    model_config = {"env_prefix": "SMG_", "extra": "ignore"}

    credential_store: Path = Path("data/reader_credentials.json")
    event_log: Path = Path("data/event_log.jsonl")
    report_dir: Path = Path("data/reports")

    upgrade_log_pattern: str = "upgrade_*.log"
    upgrade_success_marker: str = "Upgrade completed successfully"
    upgrade_error_markers: List[str] = ["ORA-", "SP2-", "PLS-", "FAILED"]


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "SMG_", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Nested groups (initialized separately to support env_prefix)
    logging: LoggingSettings = None  # type: ignore[assignment]
    tools: ToolSettings = None  # type: ignore[assignment]
    timeouts: TimeoutSettings = None  # type: ignore[assignment]
    paths: PathSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("logging") is None:
            values["logging"] = LoggingSettings()
        if values.get("tools") is None:
            values["tools"] = ToolSettings()
        if values.get("timeouts") is None:
            values["timeouts"] = TimeoutSettings()
        if values.get("paths") is None:
            values["paths"] = PathSettings()
        return values

    @model_validator(mode="after")
    def _validate_timeouts(self):
        """Every external call must be bounded."""
        t = self.timeouts
        for name in ("connect", "query", "process", "service_restart"):
            if getattr(t, name) <= 0:
                raise ValueError(f"SMG_TIMEOUT_{name.upper()} must be positive")
        if t.connect_attempts < 1:
            raise ValueError("SMG_TIMEOUT_CONNECT_ATTEMPTS must be at least 1")
        return self


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
