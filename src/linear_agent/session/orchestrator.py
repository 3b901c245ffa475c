"""Agent session orchestrator.

Owns each session's runtime state from the first event until a terminal
state, routes requests to intent handlers, runs the waiting-for-input
sub-protocol and the cancellable TaskMaster execution loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..activities import (
    ActionActivity,
    Activity,
    ActivityAction,
    ActivityEmitter,
    ElicitationActivity,
    EmitFailure,
    ErrorActivity,
    ProcessStep,
    TaskLine,
    ThoughtActivity,
    render_progress,
)
from ..classifier import Intent, RequestClassifier
from ..linear import IssueTracker
from ..llm import Responder
from ..storage import ChromaJournal
from ..taskmaster import ProgressSummary, TaskExecutionBridge, TaskStatus
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
    TERMINAL_STATUSES,
)
from .store import InMemorySessionStore, PermissionsCache, PermissionsEntry, SessionStore

logger = logging.getLogger(__name__)

ANALYZING_MESSAGE = "🤔 Analyzing your request..."
STILL_PROCESSING_MESSAGE = "Still processing your request, this is taking longer than expected..."
STOP_MESSAGE = "⏹️ Stopped as requested. Let me know if you need anything else!"
ALL_TASKS_DONE_MESSAGE = "✅ All tasks completed successfully!"

DEFAULT_SOFT_DEADLINE = 9.0
DEFAULT_TASK_DELAY = 1.0

Handler = Callable[[Session, SessionContext, SessionRuntimeState], Awaitable[None]]
Continuation = Callable[[Session, SessionContext, SessionRuntimeState, InputContext], Awaitable[None]]


class HandlerFailure(RuntimeError):
    """Raised by an intent handler that cannot serve the request."""


def format_status_update(summary: ProgressSummary) -> str:
    return "\n".join(
        [
            "## Status Update",
            "",
            render_progress(summary.completed, summary.total, "tasks completed"),
            "",
            f"- ✅ Completed: {summary.completed}",
            f"- 🔄 In progress: {summary.in_progress}",
            f"- ⬜ Pending: {summary.pending}",
            f"- ❌ Failed: {summary.failed}",
        ]
    )


def format_execution_summary(summary: ProgressSummary) -> str:
    """Closing message of a finished execution loop.

    The loop also ends when the only tasks left are failed or blocked behind
    a failed dependency, so success is reported only when nothing remains.
    """

    if summary.completed == summary.total:
        return ALL_TASKS_DONE_MESSAGE
    blocked = summary.pending + summary.in_progress
    return "\n".join(
        [
            f"⚠️ Finished with {summary.completed}/{summary.total} tasks completed.",
            "",
            f"- ❌ Failed: {summary.failed}",
            f"- ⛔ Blocked: {blocked}",
            "",
            "Blocked tasks depend on a failed task. Check the failed sub-issues for details.",
        ]
    )


class SessionOrchestrator:
    """State machine driving Linear agent sessions."""

    def __init__(
        self,
        emitter: ActivityEmitter,
        classifier: RequestClassifier,
        responder: Responder,
        bridge: TaskExecutionBridge,
        tracker: IssueTracker,
        *,
        store: SessionStore | None = None,
        permissions: PermissionsCache | None = None,
        journal: ChromaJournal | None = None,
        soft_deadline: float = DEFAULT_SOFT_DEADLINE,
        task_delay: float = DEFAULT_TASK_DELAY,
    ) -> None:
        self._emitter = emitter
        self._classifier = classifier
        self._responder = responder
        self._bridge = bridge
        self._tracker = tracker
        self._store: SessionStore = store if store is not None else InMemorySessionStore()
        self._permissions = permissions if permissions is not None else PermissionsCache()
        self._journal = journal
        self._soft_deadline = soft_deadline
        self._task_delay = task_delay

        self._handlers: dict[Intent, Handler] = {
            Intent.TASK_CREATION: self._handle_task_creation,
            Intent.COMPLEX_PROJECT: self._handle_complex_project,
            Intent.CODE_REVIEW: self._handle_code_review,
            Intent.BUG_FIX: self._handle_bug_fix,
            Intent.QUESTION: self._handle_question,
            Intent.STATUS_UPDATE: self._handle_status_update,
            Intent.GENERAL: self._handle_general,
        }
        self._continuations: dict[str, Continuation] = {
            "bug_info": self._continue_bug_fix,
            "follow_up": self._continue_follow_up,
        }

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def permissions(self) -> PermissionsCache:
        return self._permissions

    # -- event entry points -------------------------------------------------

    async def handle_event(
        self, action: str, session: Session, activity: PromptActivity | None = None
    ) -> None:
        if action == "created":
            await self.handle_created(session)
        elif action == "prompted":
            await self.handle_prompted(session, activity or PromptActivity())
        else:
            logger.warning("Ignoring agent session action", extra={"action": action, "session_id": session.id})

    async def handle_created(self, session: Session) -> None:
        state = SessionRuntimeState()
        self._store.put(session.id, state)
        self._journal_event(
            session.id,
            "session_created",
            {"issue_id": session.issue.id if session.issue else None},
        )
        logger.info(
            "Agent session created",
            extra={"session_id": session.id, "issue_id": session.issue.id if session.issue else None},
        )

        watchdog = asyncio.create_task(self._watchdog(session.id))
        context = SessionContext.from_session(session)

        async def turn() -> None:
            await self._emitter.thought(session.id, ANALYZING_MESSAGE, ephemeral=True)
            await self._dispatch(session, context, state)

        try:
            await self._run_guarded(session.id, state, turn)
        finally:
            watchdog.cancel()

    async def handle_prompted(self, session: Session, activity: PromptActivity) -> None:
        state = self._store.get(session.id)

        if activity.is_stop:
            await self._handle_stop(session.id, state)
            return

        context = SessionContext.from_session(session).with_prompt(activity.body)

        if state is not None and state.waiting_for_input:
            pending = state.resume()
            self._journal_event(session.id, "session_resumed", {"input_kind": pending.kind if pending else None})
            continuation = self._continuations.get(pending.kind if pending else "", self._continue_follow_up)

            async def resume() -> None:
                await continuation(session, context, state, pending or InputContext("follow_up", ""))

            await self._run_guarded(session.id, state, resume)
            return

        if state is None:
            state = SessionRuntimeState()
            self._store.put(session.id, state)

        await self._run_guarded(session.id, state, lambda: self._dispatch(session, context, state))

    async def create_proactive_session(self, issue: IssueRef, reason: str) -> str | None:
        """Open a session on ``issue`` and run it as if Linear had created it."""

        session_id = await self._tracker.create_session_on_issue(issue.id, reason)
        if not session_id:
            logger.warning("Linear did not create a proactive session", extra={"issue_id": issue.id})
            return None
        logger.info("Proactive session created", extra={"session_id": session_id, "issue_id": issue.id})
        await self.handle_created(Session(id=session_id, issue=issue))
        return session_id

    def update_permissions(self, workspace_id: str, permissions: Any) -> PermissionsEntry:
        entry = self._permissions.update(workspace_id, permissions)
        logger.info("Permissions updated", extra={"workspace_id": workspace_id})
        return entry

    async def cleanup(self) -> None:
        """Cancel every background loop and drop all runtime state."""

        for session_id, state in self._store.items():
            if state.background is not None:
                state.background.cancel()
                logger.info("Cancelled background execution", extra={"session_id": session_id})
        self._store.clear()
        self._permissions.clear()

    def status(self, session_id: str) -> dict[str, Any] | None:
        state = self._store.get(session_id)
        return state.snapshot() if state is not None else None

    def active_sessions(self) -> dict[str, dict[str, Any]]:
        return {session_id: state.snapshot() for session_id, state in self._store.items()}

    # -- turn plumbing ------------------------------------------------------

    async def _dispatch(self, session: Session, context: SessionContext, state: SessionRuntimeState) -> None:
        intent = await self._classifier.classify(context)
        state.intent = intent.value
        logger.info("Request classified", extra={"session_id": session.id, "intent": intent.value})
        self._journal_event(session.id, "session_classified", {"intent": intent.value}, intent=intent.value)
        await self._handlers[intent](session, context, state)

    async def _run_guarded(
        self,
        session_id: str,
        state: SessionRuntimeState,
        work: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await work()
        except Exception as exc:
            logger.exception("Session handling failed", extra={"session_id": session_id})
            self._cancel_background(state)
            state.waiting_for_input = False
            state.input_context = None
            if state.status is not SessionStatus.STOPPED:
                state.status = SessionStatus.COMPLETED
            self._journal_event(session_id, "session_failed", {"error": str(exc)})
            await self._emitter.error(session_id, f"Failed to process request: {exc}", retryable=True)
        finally:
            self._finish_turn(session_id, state)

    def _finish_turn(self, session_id: str, state: SessionRuntimeState) -> None:
        if state.status not in TERMINAL_STATUSES and state.holds_session_open:
            if state.waiting_for_input:
                self._journal_event(
                    session_id,
                    "session_waiting",
                    {"input_kind": state.input_context.kind if state.input_context else None},
                )
            return
        self._release(session_id, state)

    def _release(self, session_id: str, state: SessionRuntimeState) -> None:
        if state.status is not SessionStatus.STOPPED:
            state.status = SessionStatus.COMPLETED
        if self._store.get(session_id) is state:
            self._store.delete(session_id)
            if state.status is SessionStatus.COMPLETED:
                self._journal_event(session_id, "session_completed", {"intent": state.intent})

    def _cancel_background(self, state: SessionRuntimeState) -> None:
        if state.background is not None:
            state.background.cancel()

    def _stopped(self, session_id: str, state: SessionRuntimeState) -> bool:
        """True once a stop signal has ended the session during a handler await."""

        if state.status is SessionStatus.STOPPED:
            logger.info("Session stopped while handling request", extra={"session_id": session_id})
            return True
        return False

    async def _watchdog(self, session_id: str) -> None:
        await asyncio.sleep(self._soft_deadline)
        try:
            await self._emitter.thought(session_id, STILL_PROCESSING_MESSAGE, ephemeral=True)
        except EmitFailure:
            logger.warning("Soft-deadline thought was rejected", extra={"session_id": session_id}, exc_info=True)

    async def _handle_stop(self, session_id: str, state: SessionRuntimeState | None) -> None:
        logger.info("Stop signal received", extra={"session_id": session_id})
        if state is not None:
            self._cancel_background(state)
            state.status = SessionStatus.STOPPED
            state.waiting_for_input = False
            state.input_context = None
            if self._store.get(session_id) is state:
                self._store.delete(session_id)
        self._journal_event(session_id, "session_stopped", {})
        await self._emitter.response(session_id, STOP_MESSAGE)

    async def _respond_with(self, session_id: str, state: SessionRuntimeState, activity: Activity) -> None:
        """End a turn with a parsed model reply.

        Thoughts and actions do not end a turn, so they are reported as the
        response body; an elicitation leaves the session waiting for input.
        """

        if isinstance(activity, ThoughtActivity):
            await self._emitter.response(session_id, activity.body)
        elif isinstance(activity, ActionActivity):
            await self._emitter.action(session_id, activity.tool, activity.arguments, ephemeral=True)
            await self._emitter.response(session_id, f"Planned action: `{activity.tool}`")
        elif isinstance(activity, ElicitationActivity):
            await self._emitter.elicitation(session_id, activity.prompt, activity.options)
            state.wait_for(InputContext(kind="follow_up", question=activity.prompt))
        elif isinstance(activity, ErrorActivity):
            await self._emitter.error(session_id, activity.body, activity.retryable)
        else:
            await self._emitter.response(session_id, activity.body, activity.actions)

    # -- intent handlers ----------------------------------------------------

    async def _handle_task_creation(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        await self._emitter.process(
            session.id,
            [
                ProcessStep(kind="thought", message="📝 Preparing to create a new task..."),
                ProcessStep(kind="action", tool="analyze_request", args={"type": "task"}),
            ],
        )
        if not context.team_id:
            raise HandlerFailure("Cannot create a task without a team")
        details = await self._responder.extract_task_details(context)

        issue = await self._tracker.create_issue(
            title=details.title,
            description=details.description,
            team_id=context.team_id,
            labels=details.labels,
            priority=details.priority,
        )
        actions = [ActivityAction(label="View Issue", url=issue.url)] if issue.url else []
        actions.append(ActivityAction(label="Add Details", command="/add-details"))
        await self._emitter.response(
            session.id,
            f"✅ Created task: **{details.title}**\n\nIssue: {issue.identifier or issue.id}\n\n{details.description}",
            actions,
        )

    async def _handle_complex_project(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        if session.issue is None:
            raise HandlerFailure("Complex projects need an issue to attach tasks to")

        await self._emitter.process(
            session.id,
            [
                ProcessStep(kind="thought", message="🚀 This looks like a complex project. Analyzing requirements..."),
                ProcessStep(kind="action", tool="taskmaster", args={"action": "initialize"}),
            ],
        )
        if self._stopped(session.id, state):
            return
        result = await self._bridge.handle_complex_task(session.id, session.issue)
        tasks = result.tasks
        if self._stopped(session.id, state):
            self._bridge.release_session(session.id, result.project.id)
            return

        await self._emitter.task_list(
            session.id,
            [
                TaskLine(
                    title=task.title,
                    completed=task.completed,
                    in_progress=task.status in (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW),
                )
                for task in tasks
            ],
        )
        if self._stopped(session.id, state):
            self._bridge.release_session(session.id, result.project.id)
            return
        actions = [ActivityAction(label="View Tasks", url=session.issue.url)] if session.issue.url else []
        await self._emitter.response(
            session.id,
            f"📋 Created {len(tasks)} tasks for your project.\n\n"
            "I'll start working on them now. You can track progress in the sub-issues.",
            actions,
        )

        if tasks:
            self._start_background(session.id, state, result.project.id)
        else:
            self._bridge.release_session(session.id, result.project.id)

    async def _handle_code_review(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        await self._emitter.thought(session.id, "🔍 Analyzing code for review...", ephemeral=True)
        review = await self._responder.perform_code_review(context)
        await self._emitter.response(session.id, f"## Code Review\n\n{review.content}", review.actions)

    async def _handle_bug_fix(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        await self._emitter.process(
            session.id,
            [
                ProcessStep(kind="thought", message="🐛 Investigating the bug..."),
                ProcessStep(kind="action", tool="analyze_code", args={"type": "bug"}),
            ],
        )
        analysis = await self._responder.analyze_bug(context)
        if analysis.needs_more_info:
            question = analysis.question or "Could you provide more details?"
            await self._emitter.elicitation(session.id, question, analysis.options)
            state.wait_for(InputContext(kind="bug_info", question=question))
            return

        await self._emitter.response(session.id, f"## Bug Analysis\n\n{analysis.solution}")

    async def _continue_bug_fix(
        self,
        session: Session,
        context: SessionContext,
        state: SessionRuntimeState,
        pending: InputContext,
    ) -> None:
        await self._emitter.thought(session.id, "🔧 Working on a fix with your answer...", ephemeral=True)
        fix = await self._responder.provide_bug_fix(context, context.user_prompt or "")
        await self._emitter.response(session.id, f"## Proposed Fix\n\n{fix}")

    async def _continue_follow_up(
        self,
        session: Session,
        context: SessionContext,
        state: SessionRuntimeState,
        pending: InputContext,
    ) -> None:
        await self._handle_general(session, context, state)

    async def _handle_question(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        await self._emitter.thought(session.id, "💭 Processing your question...", ephemeral=True)
        answer = await self._responder.answer_question(context)
        await self._respond_with(session.id, state, answer)

    async def _handle_status_update(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        await self._emitter.thought(session.id, "📊 Gathering status information...", ephemeral=True)
        project_id = self._bridge.project_for_issue(context.issue_id) if context.issue_id else None
        if project_id is not None:
            summary = await self._bridge.progress_summary(project_id)
            body = format_status_update(summary)
        else:
            body = await self._responder.summarize_status(context)
        await self._emitter.response(session.id, body)

    async def _handle_general(
        self, session: Session, context: SessionContext, state: SessionRuntimeState
    ) -> None:
        await self._emitter.process(session.id, self._responder.processing_steps(context))
        reply = await self._responder.process_request(context)
        await self._respond_with(session.id, state, reply)

    # -- background execution ----------------------------------------------

    def _start_background(self, session_id: str, state: SessionRuntimeState, project_id: str) -> None:
        if state.status in TERMINAL_STATUSES:
            logger.info("Not starting background execution for a finished session", extra={"session_id": session_id})
            self._bridge.release_session(session_id, project_id)
            return
        if state.background is not None and state.background.running:
            logger.info("Replacing running background execution", extra={"session_id": session_id})
            state.background.cancel()

        token = CancellationToken()
        task = asyncio.create_task(
            self._execute_tasks(session_id, state, project_id, token), name=f"taskmaster-{session_id}"
        )
        state.background = BackgroundHandle(task=task, token=token)
        logger.info("Background execution started", extra={"session_id": session_id, "project_id": project_id})

    async def _execute_tasks(
        self, session_id: str, state: SessionRuntimeState, project_id: str, token: CancellationToken
    ) -> None:
        executed = 0
        try:
            while not token.cancelled:
                outcome = await self._bridge.execute_next_task(session_id, project_id=project_id)
                if outcome.done:
                    if not token.cancelled:
                        summary = await self._bridge.progress_summary(project_id)
                        await self._emitter.response(session_id, format_execution_summary(summary))
                    break

                executed += 1
                if token.cancelled:
                    break

                if outcome.task is not None:
                    summary = await self._bridge.progress_summary(project_id)
                    verdict = "completed" if outcome.result and outcome.result.success else "failed"
                    await self._emitter.progress(
                        session_id,
                        summary.completed,
                        summary.total,
                        f"Task {outcome.task.id} {verdict}: {outcome.task.title}",
                    )

                if await token.wait(self._task_delay):
                    break
        except Exception as exc:
            logger.exception("Background task execution failed", extra={"session_id": session_id})
            if not token.cancelled:
                try:
                    await self._emitter.error(session_id, f"Task execution stopped: {exc}", retryable=True)
                except EmitFailure:
                    logger.exception("Failed to report background failure", extra={"session_id": session_id})
        finally:
            logger.info(
                "Background execution finished",
                extra={"session_id": session_id, "executed": executed, "cancelled": token.cancelled},
            )
            self._bridge.release_session(session_id, project_id)
            # Only the session's current loop releases its state.
            current = state.background is not None and state.background.token is token
            if current and not state.waiting_for_input:
                self._release(session_id, state)

    # -- journal -------------------------------------------------------------

    def _journal_event(self, session_id: str, event_type: str, body: dict[str, Any], **metadata: Any) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record_event(session_id=session_id, event_type=event_type, body=body, metadata=metadata)
        except Exception:
            logger.warning(
                "Failed to journal session event",
                extra={"session_id": session_id, "event_type": event_type},
                exc_info=True,
            )


__all__ = [
    "ALL_TASKS_DONE_MESSAGE",
    "ANALYZING_MESSAGE",
    "HandlerFailure",
    "STILL_PROCESSING_MESSAGE",
    "STOP_MESSAGE",
    "SessionOrchestrator",
    "format_execution_summary",
    "format_status_update",
]
