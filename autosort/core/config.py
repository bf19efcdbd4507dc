"""
Application Settings
=====================

Environment-driven configuration for the autosort orchestration layer.
Every field can be overridden with an ``AUTOSORT_`` prefixed environment
variable or a ``.env`` file next to the working directory.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "autosort"


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOSORT_",
        env_file=".env",
        extra="ignore",
    )

    APP_NAME: str = "autosort"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path | None = None

    # One sub-directory per context holding masterlist, userlist and engine state
    DATA_DIR: Path = Field(default_factory=_default_data_dir)

    # Masterlist source
    LIST_REVISION: str = "v0.14"
    MASTERLIST_REPOSITORY: str = "https://github.com/loot/{game}.git"

    # Engine
    ENGINE_LANGUAGE: str = "en"
    ENGINE_CLOSE_GRACE_S: float = 5.0
    PROBE_TIMEOUT_S: float = 10.0

    SUPPORTED_CONTEXTS: list[str] = Field(default_factory=lambda: [
        "oblivion",
        "skyrim",
        "skyrimse",
        "skyrimvr",
        "enderal",
        "fallout3",
        "falloutnv",
        "fallout4",
        "fallout4vr",
    ])
    # Context id -> id the engine knows the game by
    CONTEXT_ALIASES: dict[str, str] = Field(default_factory=lambda: {
        "skyrimvr": "skyrimse",
        "enderal": "skyrim",
    })
    # Applied before CONTEXT_ALIASES when picking the masterlist repository
    MASTERLIST_ALIASES: dict[str, str] = Field(default_factory=lambda: {
        "fallout4vr": "fallout4",
    })

    def ensure_directories(self) -> None:
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        if self.LOG_DIR is not None:
            self.LOG_DIR.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Cached settings accessor."""
    return Settings()


settings = get_settings()
