"""Configuration loading utilities for Pearl Gate."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"
DEFAULT_TELEPORT_COMMAND = ".tp instapearl {ign}"


class ConfigurationMissing(RuntimeError):
    """Raised when a required destination or credential is not configured."""


def _parse_id(value: Any, source: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid id %s for %s", value, source)
        return None


def _parse_ids(values: Any, source: str) -> Tuple[int, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [part.strip() for part in values.split(",") if part.strip()]
    parsed = (_parse_id(value, source) for value in values)
    return tuple(value for value in parsed if value is not None)


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    data_dir: Path
    log_file: Path
    guild_id: Optional[int]
    admin_channel_id: Optional[int]
    teleport_channel_id: Optional[int]
    admin_role_ids: Tuple[int, ...]
    teleport_command: str

    @staticmethod
    def from_dict(data: Dict[str, Any], base_dir: Path | None = None) -> "Settings":
        base_dir = base_dir or Path.cwd()
        storage = data.get("storage", {}) or {}
        channels = data.get("channels", {}) or {}
        data_dir = Path(storage.get("data_dir") or ".")
        if not data_dir.is_absolute():
            data_dir = base_dir / data_dir
        log_file = Path(storage.get("log_file") or "log/actions.log")
        if not log_file.is_absolute():
            log_file = data_dir / log_file
        return Settings(
            data_dir=data_dir,
            log_file=log_file,
            guild_id=_parse_id(data.get("guild_id"), "guild_id"),
            admin_channel_id=_parse_id(channels.get("admin"), "channels.admin"),
            teleport_channel_id=_parse_id(channels.get("teleport"), "channels.teleport"),
            admin_role_ids=_parse_ids(data.get("admin_role_ids"), "admin_role_ids"),
            teleport_command=str(data.get("teleport_command") or DEFAULT_TELEPORT_COMMAND),
        )

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        updates: Dict[str, Any] = {}
        if env.get("PEARL_GATE_DATA_DIR"):
            updates["data_dir"] = Path(env["PEARL_GATE_DATA_DIR"])
            updates["log_file"] = updates["data_dir"] / "log" / "actions.log"
        if env.get("PEARL_GATE_GUILD_ID"):
            updates["guild_id"] = _parse_id(env["PEARL_GATE_GUILD_ID"], "PEARL_GATE_GUILD_ID")
        if env.get("PEARL_GATE_CHANNEL_ADMIN"):
            updates["admin_channel_id"] = _parse_id(
                env["PEARL_GATE_CHANNEL_ADMIN"], "PEARL_GATE_CHANNEL_ADMIN"
            )
        if env.get("PEARL_GATE_CHANNEL_TELEPORT"):
            updates["teleport_channel_id"] = _parse_id(
                env["PEARL_GATE_CHANNEL_TELEPORT"], "PEARL_GATE_CHANNEL_TELEPORT"
            )
        if env.get("PEARL_GATE_ADMIN_ROLES"):
            updates["admin_role_ids"] = _parse_ids(
                env["PEARL_GATE_ADMIN_ROLES"], "PEARL_GATE_ADMIN_ROLES"
            )
        return replace(self, **updates) if updates else self


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.environ.get("PEARL_GATE_SETTINGS")
        self._path = path or (Path(env_path) if env_path else DEFAULT_SETTINGS_PATH)
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        self._cache = Settings.from_dict(data).with_env_overrides()
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


def require_token(environ: Optional[Dict[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    token = env.get("DISCORD_TOKEN")
    if not token:
        raise ConfigurationMissing("DISCORD_TOKEN environment variable must be set")
    return token


__all__ = ["ConfigurationMissing", "Settings", "SettingsLoader", "get_settings", "require_token"]
