"""Configuration management for html2exe."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MiB = 1024 * 1024


class Settings(BaseSettings):
    """Runtime configuration sourced from ``HTML2EXE_*`` environment variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="HTML2EXE_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Persisted layout
    temp_root: Path = Path("./temp")
    dist_root: Path = Path("./dist")
    cache_root: Path = Path("./.cache")

    # Intake limits
    max_archive_bytes: int = 50 * MiB
    max_entry_bytes: int = 10 * MiB
    max_entries: int = 10_000
    max_icon_bytes: int = 5 * MiB

    # Toolchain
    toolchain: Literal["electron", "wails"] = "electron"
    artifact_extension: str = ".exe"
    build_timeout: float = 600.0
    install_timeout: float = 300.0
    init_timeout: float = 60.0
    max_output_bytes: int = 10 * MiB
    npm_command: str = "npm"
    wails_command: str = "wails"
    wails_platform: str = "windows/amd64"
    build_estimate: str = "2-5 minutes"

    # Retention
    retention_seconds: float = 2 * 60 * 60
    sweep_interval_seconds: float = 15 * 60
    cleanup_on_shutdown: bool = True

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "HTML2EXE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("artifact_extension")
    @classmethod
    def _normalize_extension(cls, value: str) -> str:
        value = value.strip().lower()
        return value if value.startswith(".") else f".{value}"

    @field_validator(
        "build_timeout", "install_timeout", "init_timeout", "retention_seconds", "sweep_interval_seconds"
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    def resolved(self) -> Settings:
        """Return a copy with every storage root expanded to an absolute path."""
        return self.model_copy(
            update={
                "temp_root": self.temp_root.expanduser().resolve(),
                "dist_root": self.dist_root.expanduser().resolve(),
                "cache_root": self.cache_root.expanduser().resolve(),
            }
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings().resolved()


__all__ = ["MiB", "Settings", "get_settings"]
