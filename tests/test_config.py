from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from linear_agent.config import AgentSettings, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("AGENT_LOG_LEVEL", "AGENT_TASK_LABELS", "AGENT_PROFILE_PATHS", "PORT", "OPENCODE_MODEL"):
        monkeypatch.delenv(name, raising=False)

    settings = AgentSettings(_env_file=None)

    assert settings.log_level == "INFO"
    assert settings.task_labels == ("taskmaster-task", "automated")
    assert settings.profile_paths == (Path("profiles"),)
    assert settings.port == 3000
    assert settings.soft_deadline_seconds == 9.0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_LOG_LEVEL", "debug")
    monkeypatch.setenv("AGENT_TASK_LABELS", "ai, taskmaster ,")
    monkeypatch.setenv("AGENT_PROFILE_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]))
    monkeypatch.setenv("OPENCODE_MODEL", "groq/llama-3.1-70b")
    monkeypatch.setenv("PORT", "8080")

    settings = AgentSettings(_env_file=None)

    assert settings.log_level == "DEBUG"
    assert settings.task_labels == ("ai", "taskmaster")
    assert settings.profile_paths == (tmp_path / "a", tmp_path / "b")
    assert settings.llm_model == "groq/llama-3.1-70b"
    assert settings.port == 8080


def test_invalid_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        AgentSettings(_env_file=None)


def test_rejects_non_positive_deadline(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_SOFT_DEADLINE_SECONDS", "0")
    with pytest.raises(ValidationError):
        AgentSettings(_env_file=None)


def test_rejects_negative_task_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_TASK_DELAY_SECONDS", "-1")
    with pytest.raises(ValidationError):
        AgentSettings(_env_file=None)


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHROMA_PERSIST_PATH", "journal")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.chroma_persist_path == (tmp_path / "journal").resolve()
        assert settings.chroma_persist_path.is_absolute()
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
