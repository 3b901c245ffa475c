"""Linear agent diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from linear_agent.config import AgentSettings
from linear_agent.storage import ChromaJournal, JournalUnavailableError


def load_journal(settings: AgentSettings) -> ChromaJournal:
    try:
        journal = ChromaJournal(settings.chroma_persist_path)
        journal.ping()
    except JournalUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return journal


def cmd_events(args: argparse.Namespace) -> None:
    journal = load_journal(AgentSettings())
    events = journal.fetch_session_events(args.session_id)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": event.id,
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "document": event.document,
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_sessions(args: argparse.Namespace) -> None:
    journal = load_journal(AgentSettings())
    created = journal.search_events(filters={"event_type": "session_created"})

    seen: list[str] = []
    for event in created:
        if event.session_id not in seen:
            seen.append(event.session_id)

    summaries = []
    for session_id in seen:
        summary = journal.session_summary(session_id)
        if summary is None:
            continue
        if args.status and summary.status != args.status:
            continue
        summaries.append(
            {
                "session_id": summary.session_id,
                "status": summary.status,
                "intent": summary.intent,
                "started_at": summary.started_at.isoformat() if summary.started_at else None,
                "updated_at": summary.updated_at.isoformat() if summary.updated_at else None,
                "event_count": summary.event_count,
            }
        )
    print(json.dumps(summaries, indent=2))


def cmd_projects(args: argparse.Namespace) -> None:
    journal = load_journal(AgentSettings())
    records = journal.list_project_mappings(args.issue_id)
    payload = [
        {
            "issue_id": record.issue_id,
            "project_id": record.project_id,
            "session_id": record.session_id,
            "task_count": record.task_count,
            "created_at": record.created_at.isoformat(),
        }
        for record in records
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Linear agent diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_events = sub.add_parser("events", help="List journal events for one session")
    p_events.add_argument("--session-id", required=True)
    p_events.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_events.set_defaults(func=cmd_events)

    p_sessions = sub.add_parser("sessions", help="Summarize journaled sessions")
    p_sessions.add_argument("--status", help="Only show sessions in this status")
    p_sessions.set_defaults(func=cmd_sessions)

    p_projects = sub.add_parser("projects", help="List issue to TaskMaster project mappings")
    p_projects.add_argument("--issue-id")
    p_projects.set_defaults(func=cmd_projects)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
