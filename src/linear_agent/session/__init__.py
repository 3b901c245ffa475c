"""Session lifecycle: snapshots, runtime state, stores and the orchestrator."""

from .models import (
    BackgroundHandle,
    CancellationToken,
    InputContext,
    IssueRef,
    PromptActivity,
    Session,
    SessionContext,
    SessionRuntimeState,
    SessionStatus,
)
from .store import InMemorySessionStore, PermissionsCache, SessionStore

__all__ = [
    "BackgroundHandle",
    "CancellationToken",
    "InMemorySessionStore",
    "InputContext",
    "IssueRef",
    "PermissionsCache",
    "PromptActivity",
    "Session",
    "SessionContext",
    "SessionRuntimeState",
    "SessionStatus",
    "SessionStore",
]
