"""Centralized configuration and logging setup."""

import logging
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.logging import RichHandler


class Settings(BaseSettings):
    """Client settings loaded from MMM_* environment variables or .env"""

    model_config = SettingsConfigDict(
        env_prefix="MMM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==================== Server ====================
    # Skips .well-known discovery when set
    homeserver: Optional[str] = None

    # ==================== Sync ====================
    sync_timeout_ms: int = 30000
    request_timeout: float = 10.0
    retry_delay: float = 2.0

    # ==================== Shell ====================
    history_limit: int = 10
    room_prefix: str = "/"

    # ==================== Login ====================
    login_attempts: int = 3
    remember_login: bool = True
    device_name: str = "mmm"

    # ==================== Logging ====================
    log_level: str = "WARNING"
    log_to_file: bool = True

    @field_validator("homeserver")
    @classmethod
    def strip_trailing_slash(cls, v):
        if v:
            return v.rstrip("/")
        return None

    @field_validator("room_prefix")
    @classmethod
    def single_character_prefix(cls, v):
        if len(v) != 1:
            raise ValueError("room_prefix must be a single character")
        return v

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v):
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


def configure_logging(settings: Settings, log_file: Optional[Path] = None) -> None:
    """Rich handler on stderr, plus a DEBUG file log in the state directory"""
    root = logging.getLogger("mmm")
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    root.propagate = False

    console_handler = RichHandler(
        level=settings.log_level,
        console=Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    root.addHandler(console_handler)

    if log_file is not None and settings.log_to_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)
