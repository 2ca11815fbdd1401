"""Configuration management for the Reelshelf daemon."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".reelshelf"
_CONFIG_FILE = "config.toml"
_PID_FILE = "daemon.pid"
_SOCKET_FILE = "daemon.sock"
_LOG_DIR = "logs"
_DB_FILE = "library.db"


def get_base_dir() -> Path:
    """Return the base directory for all Reelshelf runtime files (~/.reelshelf/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class DaemonConfig(BaseModel):
    """Settings that control the daemon process itself."""

    log_level: str = Field(default="info", description="Logging level")


class SessionConfig(BaseModel):
    """Settings that control how the session coordinator handles requests."""

    busy_policy: Literal["reject", "queue"] = Field(
        default="reject",
        description="What to do with a request that arrives while another is in flight",
    )


class PlaybackConfig(BaseModel):
    """External player used as the playback surface."""

    player_command: str = Field(default="mpv", description="Player executable")
    player_args: list[str] = Field(
        default_factory=lambda: ["--no-terminal", "--force-window=yes"],
        description="Arguments placed before the content locator",
    )
    attach_timeout_seconds: float = Field(default=10.0, gt=0, description="Give up attaching after this long")
    detach_timeout_seconds: float = Field(default=5.0, gt=0, description="Give up detaching after this long")
    startup_grace_seconds: float = Field(
        default=0.3,
        ge=0,
        description="A player that exits within this window is treated as a failed attach",
    )


class AppConfig(BaseModel):
    """Top-level application configuration."""

    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def socket_path(self) -> Path:
        return self.base_dir / _SOCKET_FILE

    @property
    def pid_path(self) -> Path:
        return self.base_dir / _PID_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    @property
    def db_path(self) -> Path:
        return self.base_dir / _DB_FILE


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _quote(raw: str) -> str:
    escaped = raw.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return repr(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return "[" + ", ".join(_quote(v) for v in value) + "]"
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar or string-list values).
    """
    lines: list[str] = []
    sections = [
        ("daemon", config.daemon),
        ("session", config.session),
        ("playback", config.playback),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")  # blank line between sections
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
