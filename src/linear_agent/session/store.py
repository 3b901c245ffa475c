"""In-process stores for session runtime state and workspace permissions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Protocol

from .models import SessionRuntimeState


class SessionStore(Protocol):
    """Keyed storage for runtime state, one entry per live session."""

    def get(self, session_id: str) -> SessionRuntimeState | None:
        ...

    def put(self, session_id: str, state: SessionRuntimeState) -> None:
        ...

    def delete(self, session_id: str) -> None:
        ...

    def items(self) -> Iterator[tuple[str, SessionRuntimeState]]:
        ...

    def clear(self) -> None:
        ...


class InMemorySessionStore:
    """Dictionary-backed :class:`SessionStore`; last write wins per key."""

    def __init__(self) -> None:
        self._states: dict[str, SessionRuntimeState] = {}

    def get(self, session_id: str) -> SessionRuntimeState | None:
        return self._states.get(session_id)

    def put(self, session_id: str, state: SessionRuntimeState) -> None:
        self._states[session_id] = state

    def delete(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    def items(self) -> Iterator[tuple[str, SessionRuntimeState]]:
        return iter(list(self._states.items()))

    def clear(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._states


@dataclass(slots=True)
class PermissionsEntry:
    permissions: Any
    updated_at: datetime


class PermissionsCache:
    """Workspace permissions as last reported by Linear. No expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, PermissionsEntry] = {}

    def update(self, workspace_id: str, permissions: Any) -> PermissionsEntry:
        entry = PermissionsEntry(permissions=permissions, updated_at=datetime.now(timezone.utc))
        self._entries[workspace_id] = entry
        return entry

    def get(self, workspace_id: str) -> PermissionsEntry | None:
        return self._entries.get(workspace_id)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["InMemorySessionStore", "PermissionsCache", "PermissionsEntry", "SessionStore"]
