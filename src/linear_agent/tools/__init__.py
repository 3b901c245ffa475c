"""Tool registration for the Linear agent MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from ..session.models import PromptActivity, Session
from ..session.orchestrator import SessionOrchestrator
from ..storage import ChromaJournal
from ..taskmaster import TaskExecutionBridge
from ..webhooks import WebhookDispatcher, WebhookEvent

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    session_status: Any
    stop_session: Any
    dispatch_event: Any
    project_progress: Any


def register_tools(
    server: FastMCP,
    *,
    orchestrator: SessionOrchestrator,
    bridge: TaskExecutionBridge,
    dispatcher: WebhookDispatcher,
    journal: ChromaJournal | None,
) -> ToolHandles:
    """Register the agent's MCP tools on the server."""

    def _session_status(session_id: str, context: Context | None = None) -> dict[str, Any]:
        live = orchestrator.status(session_id)
        summary = journal.session_summary(session_id) if journal is not None else None
        if live is None and summary is None:
            raise ValueError(f"Session '{session_id}' not found")

        payload: dict[str, Any] = {"session_id": session_id, "active": live is not None, "runtime": live}
        if summary is not None:
            payload["journal"] = {
                "status": summary.status,
                "intent": summary.intent,
                "started_at": summary.started_at.isoformat() if summary.started_at else None,
                "updated_at": summary.updated_at.isoformat() if summary.updated_at else None,
                "event_count": summary.event_count,
            }
        _emit_log(
            context,
            "debug",
            "Session status",
            extra={"session_id": session_id, "active": live is not None},
        )
        return payload

    async def _stop_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        was_active = orchestrator.status(session_id) is not None
        await orchestrator.handle_prompted(Session(id=session_id), PromptActivity(signal="stop"))
        _emit_log(
            context,
            "info",
            "Session stopped",
            extra={"session_id": session_id, "was_active": was_active},
        )
        return {"session_id": session_id, "status": "stopped", "was_active": was_active}

    async def _dispatch_event(payload: dict[str, Any], context: Context | None = None) -> dict[str, Any]:
        try:
            event = WebhookEvent.model_validate(payload)
        except ValidationError as exc:
            raise ValueError(f"Invalid event payload: {exc}") from exc

        await dispatcher.process(event)
        session_id = (event.data.get("agentSession") or {}).get("id")
        _emit_log(
            context,
            "info",
            "Event dispatched",
            extra={"webhook_type": event.type, "action": event.action, "session_id": session_id},
        )
        return {
            "type": event.type,
            "action": event.action,
            "session_id": session_id,
            "runtime": orchestrator.status(session_id) if session_id else None,
        }

    async def _project_progress(issue_id: str, context: Context | None = None) -> dict[str, Any]:
        project_id = bridge.project_for_issue(issue_id)
        if project_id is None:
            raise ValueError(f"No TaskMaster project for issue '{issue_id}'")

        summary = await bridge.progress_summary(project_id)
        _emit_log(
            context,
            "debug",
            "Project progress",
            extra={"issue_id": issue_id, "project_id": project_id, "percentage": summary.percentage},
        )
        return {
            "issue_id": issue_id,
            "project_id": project_id,
            "summary": summary.model_dump(),
            "sub_issues": bridge.mapping.issues_for_project(project_id),
        }

    tool_session_status = server.tool(
        name="session_status",
        description="Report the runtime state and journal summary of an agent session.",
    )(_session_status)

    tool_stop_session = server.tool(
        name="stop_session",
        description="Stop an agent session, cancelling any background task execution.",
    )(_stop_session)

    tool_dispatch_event = server.tool(
        name="dispatch_event",
        description="Process a Linear webhook payload without signature verification.",
    )(_dispatch_event)

    tool_project_progress = server.tool(
        name="project_progress",
        description="Summarize TaskMaster progress for the project created from a Linear issue.",
    )(_project_progress)

    return ToolHandles(
        session_status=tool_session_status,
        stop_session=tool_stop_session,
        dispatch_event=tool_dispatch_event,
        project_progress=tool_project_progress,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is attached, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
