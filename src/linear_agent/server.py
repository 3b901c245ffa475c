"""FastMCP server bootstrap for the Linear agent."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import __version__
from .activities import ActivityEmitter
from .classifier import RequestClassifier
from .commands import CommandNotFoundError, CommandRunner
from .config import AgentSettings, get_settings
from .linear import IssueTracker, LinearClient
from .llm import ChatCompletionBackend, CompletionBackend, Responder
from .profiles import DEFAULT_PROFILE, ProfileLoadError, ProfileLoader
from .session.orchestrator import SessionOrchestrator
from .storage import ChromaJournal, JournalUnavailableError
from .taskmaster import (
    TaskExecutionBridge,
    TaskExecutionService,
    TaskMasterClient,
    UnavailableTaskService,
)
from .tools import register_tools
from .webhooks import SIGNATURE_HEADER, WebhookDispatcher


def configure_logging(level: str) -> None:
    """Configure root logging for the agent server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _build_task_service(settings: AgentSettings, metadata: dict[str, Any]) -> TaskExecutionService:
    try:
        runner = CommandRunner(
            "task-master", Path(settings.taskmaster_path) if settings.taskmaster_path else None
        )
    except CommandNotFoundError as exc:
        metadata["error"] = str(exc)
        return UnavailableTaskService(str(exc))

    metadata["available"] = True
    version_result = _run_sync(runner.version())
    if version_result.ok:
        metadata["version"] = version_result.stdout.strip()

    executor: CommandRunner | None = None
    try:
        executor = CommandRunner("codex", Path(settings.codex_path) if settings.codex_path else None)
        metadata["executor"] = str(executor.executable)
    except CommandNotFoundError as exc:
        metadata["executor_error"] = str(exc)

    settings.taskmaster_workspace.mkdir(parents=True, exist_ok=True)
    return TaskMasterClient(
        runner,
        settings.taskmaster_workspace,
        executor=executor,
        num_tasks=settings.taskmaster_num_tasks,
    )


def create_server(
    settings: Optional[AgentSettings] = None,
    *,
    tracker: IssueTracker | None = None,
    backend: CompletionBackend | None = None,
    task_service: TaskExecutionService | None = None,
    journal: ChromaJournal | None = None,
) -> FastMCP:
    """Wire the orchestrator and expose it through FastMCP and the webhook route."""

    settings = settings or get_settings()
    started = time.monotonic()

    profile_loader = ProfileLoader(settings.profile_paths)
    profile_error: str | None = None
    try:
        profile = profile_loader.get(settings.profile_id)
    except ProfileLoadError as exc:
        profile_error = str(exc)
        profile = DEFAULT_PROFILE
        logging.getLogger(__name__).warning(
            "Falling back to the default prompt profile",
            extra={"profile_id": settings.profile_id, "error": profile_error},
        )

    if tracker is None:
        tracker = LinearClient(settings.linear_api_key or "", api_url=settings.linear_api_url)
    if backend is None:
        backend = ChatCompletionBackend.from_settings(settings)

    taskmaster_metadata: dict[str, Any] = {
        "available": task_service is not None,
        "workspace": str(settings.taskmaster_workspace),
        "version": None,
        "error": None,
    }
    if task_service is None:
        task_service = _build_task_service(settings, taskmaster_metadata)

    journal_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "linear_agent_sessions",
        "error": None,
    }
    if journal is None:
        try:
            journal = ChromaJournal(settings.chroma_persist_path)
            journal.ping()
        except JournalUnavailableError as exc:
            journal_metadata["error"] = str(exc)
            journal = None
    journal_metadata["available"] = journal is not None

    responder = Responder(backend, profile)
    emitter = ActivityEmitter(tracker)
    bridge = TaskExecutionBridge(
        task_service, tracker, journal=journal, task_labels=settings.task_labels
    )
    orchestrator = SessionOrchestrator(
        emitter,
        RequestClassifier(fallback=responder),
        responder,
        bridge,
        tracker,
        journal=journal,
        soft_deadline=settings.soft_deadline_seconds,
        task_delay=settings.task_delay_seconds,
    )
    dispatcher = WebhookDispatcher(orchestrator, settings.linear_webhook_secret)

    server = FastMCP(
        name="Linear Agent",
        version=__version__,
        instructions=(
            "Linear agent orchestrates agent sessions from Linear webhooks, breaks "
            "complex issues into TaskMaster projects and mirrors their progress as "
            "sub-issues. Use the tools to inspect or stop sessions."
        ),
    )

    handles = register_tools(
        server,
        orchestrator=orchestrator,
        bridge=bridge,
        dispatcher=dispatcher,
        journal=journal,
    )

    @server.resource(
        "resource://linear-agent/status",
        name="linear_status",
        title="Linear Agent Status",
        description="Provides the current runtime status for the Linear agent server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        sessions = orchestrator.active_sessions()
        status_counts: dict[str, int] = {}
        for snapshot in sessions.values():
            status_counts[snapshot["status"]] = status_counts.get(snapshot["status"], 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "profile": {"id": profile.id, "error": profile_error},
            "llm": {"model": settings.llm_model},
            "taskmaster": taskmaster_metadata,
            "storage": {"chroma": journal_metadata},
            "sessions": {
                "count": len(sessions),
                "status_counts": status_counts,
                "active": list(sessions.keys())[-5:],
            },
            "permissions": {"workspaces": len(orchestrator.permissions)},
            "pending_webhooks": len(dispatcher.pending),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    @server.custom_route("/webhooks/linear", methods=["POST"])
    async def linear_webhook(request: Request) -> JSONResponse:
        body = await request.body()
        status_code, payload = await dispatcher.receive(body, request.headers.get(SIGNATURE_HEADER))
        return JSONResponse(payload, status_code=status_code)

    @server.custom_route("/health", methods=["GET"])
    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "version": __version__,
                "uptime": round(time.monotonic() - started, 3),
            }
        )

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "bridge", bridge)
    setattr(server, "dispatcher", dispatcher)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "taskmaster_metadata", taskmaster_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Linear agent server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger = logging.getLogger(__name__)
    logger.info(
        "Launching Linear agent server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "model": settings.llm_model,
            "has_linear_key": bool(settings.linear_api_key),
            "has_webhook_secret": bool(settings.linear_webhook_secret),
            "taskmaster_available": getattr(server, "taskmaster_metadata", {}).get("available"),
            "chroma_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    try:
        server.run(transport="http", host=settings.host, port=settings.port)
    finally:
        logger.info("Shutting down Linear agent server")
        _run_sync(getattr(server, "orchestrator").cleanup())


if __name__ == "__main__":
    main()
