from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from linear_agent.storage import ChromaJournal, JournalUnavailableError, ProjectMappingRecord


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    def __init__(self) -> None:
        self.current = datetime.fromisoformat("2025-01-01T00:00:00+00:00")

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def make_journal(tmp_path: Path, clock=None) -> ChromaJournal:
    return ChromaJournal(
        tmp_path,
        client_factory=lambda: StubClient(),
        clock=clock or (lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00")),
    )


def test_record_and_fetch_events(tmp_path: Path) -> None:
    journal = make_journal(tmp_path)

    event = journal.record_event(
        session_id="session-1",
        event_type="session_created",
        body={"issue_id": "issue-1"},
        metadata={"intent": None, "labels": ["bug"]},
    )

    assert event.metadata["sequence"] == 1
    assert "intent" not in event.metadata
    assert event.metadata["labels"] == '["bug"]'

    events = journal.fetch_session_events("session-1")
    assert len(events) == 1
    assert events[0].document == '{"issue_id": "issue-1"}'


def test_sequence_is_per_session(tmp_path: Path) -> None:
    journal = make_journal(tmp_path)

    journal.record_event(session_id="a", event_type="x", body="1")
    journal.record_event(session_id="b", event_type="x", body="1")
    journal.record_event(session_id="a", event_type="y", body="2")

    assert [event.metadata["sequence"] for event in journal.fetch_session_events("a")] == [1, 2]


def test_search_events_by_text_and_filter(tmp_path: Path) -> None:
    journal = make_journal(tmp_path)

    journal.record_event(session_id="s", event_type="note", body="Investigate oauth callback")
    journal.record_event(session_id="s", event_type="task_executed", body="Fix logging")

    assert len(journal.search_events("oauth")) == 1
    assert [event.document for event in journal.search_events(filters={"event_type": "task_executed"})] == [
        "Fix logging"
    ]


def test_project_mappings(tmp_path: Path) -> None:
    journal = make_journal(tmp_path, clock=TickingClock())

    first = journal.record_project_mapping(issue_id="issue-1", project_id="proj_a", session_id="s1", task_count=3)
    journal.record_project_mapping(issue_id="issue-2", project_id="proj_b", session_id="s2", task_count=1)
    journal.record_project_mapping(issue_id="issue-1", project_id="proj_c", session_id="s3", task_count=5)

    assert isinstance(first, ProjectMappingRecord)
    assert [record.project_id for record in journal.list_project_mappings("issue-1")] == ["proj_a", "proj_c"]
    assert len(journal.list_project_mappings()) == 3
    assert journal.find_project_mapping("issue-1").project_id == "proj_c"
    assert journal.find_project_mapping("issue-9") is None


def test_session_summary_folds_lifecycle(tmp_path: Path) -> None:
    journal = make_journal(tmp_path, clock=TickingClock())

    journal.record_event(session_id="s1", event_type="session_created", body={})
    journal.record_event(session_id="s1", event_type="session_classified", body={}, metadata={"intent": "bug_fix"})
    journal.record_event(session_id="s1", event_type="session_waiting", body={})

    summary = journal.session_summary("s1")

    assert summary.status == "waiting_input"
    assert summary.intent == "bug_fix"
    assert summary.event_count == 3
    assert summary.started_at < summary.updated_at

    journal.record_event(session_id="s1", event_type="session_stopped", body={})
    assert journal.session_summary("s1").status == "stopped"
    assert journal.session_summary("unknown") is None


def test_unavailable_client_raises(tmp_path: Path) -> None:
    def broken_factory():
        raise JournalUnavailableError("chromadb missing")

    journal = ChromaJournal(tmp_path, client_factory=broken_factory)

    with pytest.raises(JournalUnavailableError):
        journal.ping()
