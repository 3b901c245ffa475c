"""Session snapshots, context and per-session runtime state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class IssueLabel(BaseModel):
    name: str


class IssueRef(BaseModel):
    """The Linear issue a session is attached to."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    title: str = ""
    description: str | None = None
    team_id: str = Field(default="", alias="teamId")
    identifier: str | None = None
    url: str | None = None
    labels: tuple[IssueLabel, ...] = ()
    priority: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _team_from_connection(cls, data: Any):
        if isinstance(data, dict) and "teamId" not in data and "team_id" not in data:
            team = data.get("team")
            if isinstance(team, dict) and team.get("id"):
                data = {**data, "teamId": team["id"]}
        return data

    @field_validator("labels", mode="before")
    @classmethod
    def _unwrap_labels(cls, value: Any):
        # GraphQL connections arrive as {"nodes": [...]}
        if isinstance(value, dict):
            value = value.get("nodes") or []
        if value is None:
            return ()
        return tuple({"name": item} if isinstance(item, str) else item for item in value)

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


class SessionComment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str | None = None
    body: str = ""
    created_at: str | None = Field(default=None, alias="createdAt")


class Session(BaseModel):
    """Immutable snapshot of an agent session delivered with each event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    issue: IssueRef | None = None
    comment: SessionComment | None = None
    previous_comments: tuple[SessionComment, ...] = Field(default=(), alias="previousComments")
    guidance: str | None = None

    @field_validator("previous_comments", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any):
        return () if value is None else value

    @field_validator("guidance", mode="before")
    @classmethod
    def _flatten_guidance(cls, value: Any):
        if isinstance(value, list):
            parts = [item.get("body", "") if isinstance(item, dict) else str(item) for item in value]
            return "\n".join(part for part in parts if part) or None
        return value


class PromptActivity(BaseModel):
    """The user activity carried by a ``prompted`` event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str | None = None
    body: str = ""
    signal: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _body_from_content(cls, data: Any):
        # Linear nests the prompt text under content.body
        if isinstance(data, dict) and not data.get("body"):
            content = data.get("content")
            if isinstance(content, dict) and content.get("body"):
                data = {**data, "body": content["body"]}
        return data

    @property
    def is_stop(self) -> bool:
        return (self.signal or "").lower() == "stop"


class SessionContext(BaseModel):
    """Flattened request context handed to the classifier and responder."""

    model_config = ConfigDict(frozen=True)

    issue_id: str | None = None
    issue_title: str | None = None
    issue_description: str | None = None
    comment: str | None = None
    previous_comments: tuple[SessionComment, ...] = ()
    guidance: str | None = None
    team_id: str | None = None
    labels: tuple[str, ...] = ()
    priority: int | None = None
    user_prompt: str | None = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionContext":
        issue = session.issue
        return cls(
            issue_id=issue.id if issue else None,
            issue_title=issue.title if issue else None,
            issue_description=issue.description if issue else None,
            comment=session.comment.body if session.comment else None,
            previous_comments=session.previous_comments,
            guidance=session.guidance,
            team_id=issue.team_id if issue else None,
            labels=tuple(issue.label_names) if issue else (),
            priority=issue.priority if issue else None,
        )

    def with_prompt(self, prompt: str | None) -> "SessionContext":
        return self.model_copy(update={"user_prompt": prompt})

    def searchable_text(self) -> str:
        parts = [self.issue_title, self.issue_description, self.comment, self.user_prompt]
        return " ".join(part for part in parts if part).lower()


class SessionStatus(str, Enum):
    ACTIVE = "active"
    WAITING_INPUT = "waiting_input"
    STOPPED = "stopped"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({SessionStatus.STOPPED, SessionStatus.COMPLETED})


@dataclass(slots=True)
class InputContext:
    """What a session waiting for input expects back."""

    kind: str
    question: str
    payload: dict[str, Any] = field(default_factory=dict)


class CancellationToken:
    """Cooperative cancellation signal shared with a background loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True as soon as cancelled."""

        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(slots=True)
class BackgroundHandle:
    task: asyncio.Task[None]
    token: CancellationToken

    @property
    def running(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        self.token.cancel()


@dataclass(slots=True)
class SessionRuntimeState:
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    waiting_for_input: bool = False
    input_context: InputContext | None = None
    background: BackgroundHandle | None = None
    intent: str | None = None

    def wait_for(self, input_context: InputContext) -> None:
        self.status = SessionStatus.WAITING_INPUT
        self.waiting_for_input = True
        self.input_context = input_context

    def resume(self) -> InputContext | None:
        pending = self.input_context
        self.status = SessionStatus.ACTIVE
        self.waiting_for_input = False
        self.input_context = None
        return pending

    @property
    def holds_session_open(self) -> bool:
        """True while a follow-up or a background loop still needs this state."""

        if self.waiting_for_input:
            return True
        return self.background is not None and self.background.running

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "waiting_for_input": self.waiting_for_input,
            "input_kind": self.input_context.kind if self.input_context else None,
            "background_running": bool(self.background and self.background.running),
            "intent": self.intent,
        }


__all__ = [
    "BackgroundHandle",
    "CancellationToken",
    "InputContext",
    "IssueLabel",
    "IssueRef",
    "PromptActivity",
    "Session",
    "SessionComment",
    "SessionContext",
    "SessionRuntimeState",
    "SessionStatus",
    "TERMINAL_STATUSES",
]
