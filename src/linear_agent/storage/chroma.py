"""Chroma-backed audit journal for agent sessions."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import ProjectMappingRecord, SessionSummary

PROJECT_MAPPING_EVENT = "project_mapping"

# Lifecycle events that change the summarized session status.
STATUS_EVENTS = {
    "session_created": "active",
    "session_waiting": "waiting_input",
    "session_resumed": "active",
    "session_completed": "completed",
    "session_stopped": "stopped",
    "session_failed": "completed",
}


class JournalUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the journal."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by the journal."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class JournalEvent:
    """Represents a stored event in Chroma."""

    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be scalars; None is not accepted.
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value)
    return cleaned


class ChromaJournal:
    """Record session lifecycle and project mappings in ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "linear_agent_sessions",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise JournalUnavailableError(
                "chromadb package is not installed; install linear-agent with its dependencies"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[JournalEvent]:
        events: list[JournalEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                JournalEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        collection = self._ensure_collection()
        counter = self._counters[session_id] = self._counters[session_id] + 1
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata: dict[str, Any] = {
            "session_id": session_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update(_scalar_metadata(metadata))

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return JournalEvent(
            id=event_id,
            session_id=session_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_session_events(self, session_id: str, *, limit: int | None = None) -> list[JournalEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"session_id": session_id}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            filtered: list[JournalEvent] = []
            for event in events:
                haystacks = [event.document.lower()]
                haystacks.extend(str(value).lower() for value in event.metadata.values())
                if any(needle in hay for hay in haystacks):
                    filtered.append(event)
            events = filtered
        return events[:limit] if limit else events

    def record_project_mapping(
        self,
        *,
        issue_id: str,
        project_id: str,
        session_id: str,
        task_count: int,
        metadata: dict[str, Any] | None = None,
    ) -> ProjectMappingRecord:
        payload = {
            "issue_id": issue_id,
            "project_id": project_id,
            "session_id": session_id,
            "task_count": task_count,
        }
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            session_id=session_id,
            event_type=PROJECT_MAPPING_EVENT,
            body=payload,
            metadata={"issue_id": issue_id, "project_id": project_id},
        )

        return ProjectMappingRecord(
            issue_id=issue_id,
            project_id=project_id,
            session_id=session_id,
            created_at=event.timestamp,
            task_count=task_count,
            metadata=metadata or {},
        )

    def list_project_mappings(self, issue_id: str | None = None) -> list[ProjectMappingRecord]:
        mappings: list[ProjectMappingRecord] = []
        for event in self.search_events(filters={"event_type": PROJECT_MAPPING_EVENT}):
            doc = json.loads(event.document)
            if issue_id and doc.get("issue_id") != issue_id:
                continue
            mappings.append(
                ProjectMappingRecord(
                    issue_id=doc["issue_id"],
                    project_id=doc["project_id"],
                    session_id=doc.get("session_id", event.session_id),
                    created_at=event.timestamp,
                    task_count=int(doc.get("task_count", 0)),
                    metadata={
                        k: v
                        for k, v in doc.items()
                        if k not in {"issue_id", "project_id", "session_id", "task_count"}
                    },
                )
            )
        return mappings

    def find_project_mapping(self, issue_id: str) -> ProjectMappingRecord | None:
        """Return the most recent project created for an issue."""

        mappings = self.list_project_mappings(issue_id)
        return mappings[-1] if mappings else None

    def session_summary(self, session_id: str) -> SessionSummary | None:
        events = self.fetch_session_events(session_id)
        if not events:
            return None

        status = "unknown"
        intent: str | None = None
        for event in events:
            status = STATUS_EVENTS.get(event.event_type, status)
            if event.metadata.get("intent"):
                intent = event.metadata["intent"]

        return SessionSummary(
            session_id=session_id,
            status=status,
            intent=intent,
            started_at=events[0].timestamp,
            updated_at=events[-1].timestamp,
            event_count=len(events),
        )


__all__ = ["ChromaJournal", "JournalEvent", "JournalUnavailableError", "STATUS_EVENTS"]
