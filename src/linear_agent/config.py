"""Configuration management for the Linear agent."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    linear_api_key: str | None = Field(default=None, validation_alias="LINEAR_API_KEY")
    linear_api_url: str = Field(
        default="https://api.linear.app/graphql", validation_alias="LINEAR_API_URL"
    )
    linear_webhook_secret: str | None = Field(default=None, validation_alias="LINEAR_WEBHOOK_SECRET")

    llm_model: str = Field(
        default="deepseek/deepseek-r1-distill-llama-70b", validation_alias="OPENCODE_MODEL"
    )
    deepseek_api_key: str | None = Field(default=None, validation_alias="DEEPSEEK_API_KEY")
    groq_api_key: str | None = Field(default=None, validation_alias="GROQ_API_KEY")
    ollama_url: str = Field(default="http://localhost:11434", validation_alias="OLLAMA_URL")
    llm_temperature: float = Field(default=0.7, validation_alias="MODEL_TEMPERATURE")
    llm_max_tokens: int = Field(default=2000, validation_alias="MODEL_MAX_TOKENS")

    taskmaster_path: str | None = Field(default=None, validation_alias="TASKMASTER_PATH")
    codex_path: str | None = Field(default=None, validation_alias="CODEX_PATH")
    taskmaster_workspace: Path = Field(
        default=Path("./storage/taskmaster"), validation_alias="TASKMASTER_WORKSPACE"
    )
    taskmaster_num_tasks: int = Field(default=5, validation_alias="TASKMASTER_NUM_TASKS")

    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="AGENT_PROFILE_PATHS"
    )
    profile_id: str = Field(default="default", validation_alias="AGENT_PROFILE")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )

    host: str = Field(default="127.0.0.1", validation_alias="AGENT_HOST")
    port: int = Field(default=3000, validation_alias="PORT")

    log_level: str = Field(default="INFO", validation_alias="AGENT_LOG_LEVEL")
    soft_deadline_seconds: float = Field(default=9.0, validation_alias="AGENT_SOFT_DEADLINE_SECONDS")
    task_delay_seconds: float = Field(default=1.0, validation_alias="AGENT_TASK_DELAY_SECONDS")
    task_labels: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("taskmaster-task", "automated"), validation_alias="AGENT_TASK_LABELS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "AGENT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("AGENT_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("task_labels", mode="before")
    @classmethod
    def _parse_task_labels(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(str(item) for item in value)

    @field_validator("soft_deadline_seconds", "taskmaster_num_tasks")
    @classmethod
    def _validate_positive(cls, value):
        if value <= 0:
            raise ValueError("AGENT_SOFT_DEADLINE_SECONDS and TASKMASTER_NUM_TASKS must be > 0")
        return value

    @field_validator("task_delay_seconds")
    @classmethod
    def _validate_task_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("AGENT_TASK_DELAY_SECONDS must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> AgentSettings:
    """Return cached settings instance."""

    settings = AgentSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.taskmaster_workspace = settings.taskmaster_workspace.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["AgentSettings", "get_settings"]
