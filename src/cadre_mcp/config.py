"""Configuration management for Cadre MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CadreSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    state_dir: Path = Field(default=Path("./state"), validation_alias="CADRE_STATE_DIR")
    workflow_paths: tuple[Path, ...] = Field(
        default=(Path("workflows"),), validation_alias="CADRE_WORKFLOW_PATHS"
    )
    checkout_root: Path = Field(
        default=Path("~/worktrees"), validation_alias="CADRE_CHECKOUT_ROOT"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="CADRE_LOG_LEVEL")
    lock_ttl_minutes: int = Field(default=120, validation_alias="CADRE_LOCK_TTL_MINUTES")
    force_expire_hours: float = Field(default=24.0, validation_alias="CADRE_FORCE_EXPIRE_HOURS")
    session_ttl_hours: float = Field(default=24.0, validation_alias="CADRE_SESSION_TTL_HOURS")
    max_queue_length: int = Field(default=3, validation_alias="CADRE_MAX_QUEUE_LENGTH")
    task_duration_ms: int = Field(default=300_000, validation_alias="CADRE_TASK_DURATION_MS")
    default_confidence: float = Field(default=0.8, validation_alias="CADRE_DEFAULT_CONFIDENCE")
    loop_interval_seconds: float = Field(
        default=30.0, validation_alias="CADRE_LOOP_INTERVAL_SECONDS"
    )
    tmux_path: str | None = Field(default=None, validation_alias="CADRE_TMUX_PATH")
    worker_command: str = Field(
        default="claude --model sonnet", validation_alias="CADRE_WORKER_COMMAND"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CADRE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("workflow_paths", mode="before")
    @classmethod
    def _parse_workflow_paths(cls, value):
        if value is None or value == "":
            return (Path("workflows"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("workflows"),)
        raise TypeError("CADRE_WORKFLOW_PATHS must be a list of paths or a path-separated string")

    @field_validator("lock_ttl_minutes", "max_queue_length", "task_duration_ms")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("lock TTL, queue length and task duration must be >= 1")
        return value

    @field_validator("force_expire_hours", "session_ttl_hours", "loop_interval_seconds")
    @classmethod
    def _validate_positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be greater than zero")
        return value

    @field_validator("default_confidence")
    @classmethod
    def _validate_confidence(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("CADRE_DEFAULT_CONFIDENCE must be between 0 and 1")
        return value


@lru_cache(maxsize=1)
def get_settings() -> CadreSettings:
    """Return cached settings instance."""

    settings = CadreSettings()
    settings.state_dir = settings.state_dir.expanduser().resolve()
    settings.checkout_root = settings.checkout_root.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.workflow_paths = tuple(path.expanduser().resolve() for path in settings.workflow_paths)
    return settings


__all__ = ["CadreSettings", "get_settings"]
