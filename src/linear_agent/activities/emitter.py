"""Emit one typed activity per turn to a Linear agent session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from ..linear import IssueTracker
from .markdown import normalize_markdown
from .models import (
    Activity,
    ActionActivity,
    ActivityAction,
    ElicitationActivity,
    ErrorActivity,
    ProcessStep,
    ResponseActivity,
    ThoughtActivity,
    activity_content,
)

logger = logging.getLogger(__name__)

PROGRESS_SLOTS = 20
FILLED_GLYPH = "█"
EMPTY_GLYPH = "░"


class EmitFailure(RuntimeError):
    """Raised when Linear does not accept an activity."""


@dataclass(slots=True)
class TaskLine:
    """A task as displayed in a task-list thought."""

    title: str
    completed: bool = False
    in_progress: bool = False

    @property
    def glyph(self) -> str:
        if self.completed:
            return "✅"
        if self.in_progress:
            return "🔄"
        return "⬜"


def progress_percentage(current: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(current / total * 100)


def render_progress(current: int, total: int, label: str) -> str:
    """Render ``[███░░...] 30% - label`` with one filled slot per ten percent.

    The bar has twenty slots but fills at most ten of them: ``3/10`` shows
    three filled slots and a finished run shows a half-full bar. The
    percentage text carries the exact figure.
    """

    percentage = progress_percentage(current, total)
    filled = max(0, min(PROGRESS_SLOTS, round(percentage / 10)))
    bar = FILLED_GLYPH * filled + EMPTY_GLYPH * (PROGRESS_SLOTS - filled)
    return f"[{bar}] {percentage}% - {label}"


def render_task_list(tasks: Sequence[TaskLine]) -> str:
    completed = sum(1 for task in tasks if task.completed)
    lines = [f"{task.glyph} {task.title}" for task in tasks]
    summary = f"Tasks: {completed}/{len(tasks)} completed"
    return "\n".join([summary, "", *lines])


class ActivityEmitter:
    """Send agent activities to Linear, one call per activity."""

    def __init__(self, tracker: IssueTracker) -> None:
        self._tracker = tracker

    async def emit(self, session_id: str, activity: Activity, ephemeral: bool = False) -> None:
        content = activity_content(activity)
        try:
            accepted = await self._tracker.create_activity(session_id, content, ephemeral)
        except Exception as exc:
            raise EmitFailure(
                f"Failed to create {activity.type} activity for session {session_id}: {exc}"
            ) from exc
        if not accepted:
            raise EmitFailure(f"Linear rejected {activity.type} activity for session {session_id}")

    async def thought(self, session_id: str, message: str, ephemeral: bool = False) -> None:
        await self.emit(session_id, ThoughtActivity(body=message), ephemeral)
        logger.debug("Thought emitted", extra={"session_id": session_id, "ephemeral": ephemeral})

    async def action(
        self,
        session_id: str,
        tool: str,
        arguments: dict[str, Any] | None = None,
        ephemeral: bool = False,
    ) -> None:
        await self.emit(session_id, ActionActivity(tool=tool, arguments=arguments or {}), ephemeral)
        logger.debug("Action emitted", extra={"session_id": session_id, "tool": tool})

    async def elicitation(
        self, session_id: str, prompt: str, options: Iterable[str] | None = None
    ) -> None:
        await self.emit(session_id, ElicitationActivity(prompt=prompt, options=list(options or [])))
        logger.debug("Elicitation emitted", extra={"session_id": session_id})

    async def response(
        self,
        session_id: str,
        body: str,
        actions: Iterable[ActivityAction] | None = None,
    ) -> None:
        activity = ResponseActivity(body=normalize_markdown(body), actions=list(actions or []))
        await self.emit(session_id, activity)
        logger.info(
            "Response emitted",
            extra={"session_id": session_id, "has_actions": bool(activity.actions)},
        )

    async def error(self, session_id: str, message: str, retryable: bool = False) -> None:
        await self.emit(session_id, ErrorActivity(body=message, retryable=retryable))
        logger.warning("Error emitted", extra={"session_id": session_id, "retryable": retryable})

    async def send(self, session_id: str, activity: Activity, ephemeral: bool = False) -> None:
        """Emit an already-built activity through the matching helper."""

        if isinstance(activity, ThoughtActivity):
            await self.thought(session_id, activity.body, ephemeral)
        elif isinstance(activity, ActionActivity):
            await self.action(session_id, activity.tool, activity.arguments, ephemeral)
        elif isinstance(activity, ElicitationActivity):
            await self.elicitation(session_id, activity.prompt, activity.options)
        elif isinstance(activity, ResponseActivity):
            await self.response(session_id, activity.body, activity.actions)
        else:
            await self.error(session_id, activity.body, activity.retryable)

    async def process(self, session_id: str, steps: Iterable[ProcessStep]) -> None:
        """Play reasoning steps as ephemeral activities, honouring each step's delay."""

        for step in steps:
            if step.delay:
                await asyncio.sleep(step.delay)
            if step.kind == "thought" and step.message:
                await self.thought(session_id, step.message, ephemeral=True)
            elif step.kind == "action" and step.tool:
                await self.action(session_id, step.tool, step.args, ephemeral=True)

    async def progress(self, session_id: str, current: int, total: int, label: str) -> None:
        await self.thought(session_id, render_progress(current, total, label), ephemeral=True)

    async def task_list(self, session_id: str, tasks: Sequence[TaskLine]) -> None:
        await self.thought(session_id, render_task_list(tasks), ephemeral=True)


__all__ = [
    "ActivityEmitter",
    "EmitFailure",
    "TaskLine",
    "render_progress",
    "render_task_list",
]
