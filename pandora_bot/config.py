"""Configuration loading utilities for Pandora."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    db_path: Path
    db_lock_timeout: float
    db_map_size: int
    address_pattern: str
    token_env: str
    banana_emoji: str
    someone_sample_size: int
    web_host: str
    web_port: int
    web_page_size: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        database = data.get("database", {}) or {}
        chat = data.get("chat", {}) or {}
        web = data.get("web", {}) or {}
        db_path = os.environ.get("PANDORA_DB_PATH") or database.get("path", "pandora.lmdb")
        return Settings(
            db_path=Path(db_path),
            db_lock_timeout=float(database.get("lock_timeout_seconds", 1.0)),
            db_map_size=int(database.get("map_size_mb", 256)) * 1024**2,
            address_pattern=str(chat.get("address_pattern", r"^pan(dora)?:\s*")),
            token_env=str(chat.get("token_env", "PANDORA_TOKEN")),
            banana_emoji=str(chat.get("banana_emoji", "\U0001F60D")),
            someone_sample_size=int(chat.get("someone_sample_size", 50)),
            web_host=str(web.get("host", "127.0.0.1")),
            web_port=int(web.get("port", 3000)),
            web_page_size=int(web.get("page_size", 50)),
        )


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.environ.get("PANDORA_CONFIG")
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
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["Settings", "SettingsLoader", "get_settings"]
