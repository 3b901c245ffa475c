"""Data models for the session journal."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class ProjectMappingRecord:
    issue_id: str
    project_id: str
    session_id: str
    created_at: datetime
    task_count: int
    metadata: dict[str, Any]


@dataclass(slots=True)
class SessionSummary:
    session_id: str
    status: str
    intent: str | None
    started_at: datetime | None
    updated_at: datetime | None
    event_count: int


__all__ = ["ProjectMappingRecord", "SessionSummary"]
