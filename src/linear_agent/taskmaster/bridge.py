"""Bridge between TaskMaster projects and Linear sub-issues.

A complex request becomes a TaskMaster project; each task (and subtask) is
mirrored as a Linear sub-issue under the originating issue. Execution then
walks the project one task at a time, keeping the mirrored issues' workflow
state and comments in step with the results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Sequence

from ..linear import IssueTracker
from ..session.models import IssueRef
from ..storage import ChromaJournal
from .client import TaskExecutionService
from .models import ExecutionResult, Project, ProgressSummary, Task, TaskStatus, summarize_progress

logger = logging.getLogger(__name__)

DEFAULT_TASK_LABELS = ("taskmaster-task", "automated")

PRD_TEMPLATE = """# Product Requirements Document

## Project: {title}

### Overview
{description}

### Objectives
- Implement the requested functionality
- Ensure code quality and testing
- Document the implementation

### Technical Requirements
- Follow existing code patterns
- Write appropriate tests
- Handle edge cases
- Provide clear documentation

### Success Criteria
- All functionality implemented as requested
- Tests passing
- Code review approved
- Documentation complete

### Implementation Approach
Break down the implementation into logical tasks that can be completed incrementally."""


class BridgeError(RuntimeError):
    """Raised when a session has no TaskMaster project to work on."""


class MirrorState(str, Enum):
    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def linear_name(self) -> str:
        return _LINEAR_STATE_NAMES[self]


_LINEAR_STATE_NAMES = {
    MirrorState.BACKLOG: "Backlog",
    MirrorState.IN_PROGRESS: "In Progress",
    MirrorState.IN_REVIEW: "In Review",
    MirrorState.DONE: "Done",
    MirrorState.CANCELLED: "Canceled",
}

STATUS_TO_MIRROR_STATE = {
    "pending": MirrorState.BACKLOG,
    "in_progress": MirrorState.IN_PROGRESS,
    "in-progress": MirrorState.IN_PROGRESS,
    "review": MirrorState.IN_REVIEW,
    "done": MirrorState.DONE,
    "completed": MirrorState.DONE,
    "cancelled": MirrorState.CANCELLED,
    "failed": MirrorState.CANCELLED,
}


def mirror_state_for(status: str | TaskStatus) -> MirrorState:
    """Map a task status onto a Linear workflow state; unknown means backlog."""

    key = status.value if isinstance(status, TaskStatus) else str(status or "").strip().lower()
    return STATUS_TO_MIRROR_STATE.get(key, MirrorState.BACKLOG)


def build_prd(issue: IssueRef) -> str:
    return PRD_TEMPLATE.format(
        title=issue.title,
        description=issue.description or "No description provided",
    )


def format_task_description(task: Task) -> str:
    parts = [f"## Task Details\n\n{task.description}\n"]
    if task.details:
        parts.append(f"\n### Implementation Details\n{task.details}\n")
    if task.dependencies:
        parts.append("\n### Dependencies\n")
        parts.extend(f"- Task {dependency}\n" for dependency in task.dependencies)
    if task.subtasks:
        parts.append("\n### Subtasks\n")
        parts.extend(f"- [ ] {subtask.title}\n" for subtask in task.subtasks)
    parts.append("\n---\n*Generated by the Linear agent with TaskMaster*")
    return "".join(parts)


def format_execution_result(result: ExecutionResult, executed_at: datetime | None = None) -> str:
    status = "✅ Success" if result.success else "❌ Failed"
    parts = [f"## Task Execution Result\n\n**Status**: {status}\n"]
    if result.details:
        parts.append(f"\n### Details\n{result.details}\n")
    if result.error:
        parts.append(f"\n### Error\n```\n{result.error}\n```\n")
    if result.changes:
        parts.append("\n### Changes Made\n")
        parts.extend(f"- {change}\n" for change in result.changes)
    timestamp = (executed_at or datetime.now(timezone.utc)).isoformat()
    parts.append(f"\n*Executed by the Linear agent at {timestamp}*")
    return "".join(parts)


class TaskIssueMapping:
    """Bidirectional index between TaskMaster tasks and Linear issues."""

    def __init__(self) -> None:
        self._issue_by_task: dict[tuple[str, str], str] = {}
        self._task_by_issue: dict[str, tuple[str, str]] = {}

    def record(self, project_id: str, task_id: str, issue_id: str) -> None:
        self._issue_by_task[(project_id, task_id)] = issue_id
        self._task_by_issue[issue_id] = (project_id, task_id)

    def issue_for(self, project_id: str, task_id: str) -> str | None:
        return self._issue_by_task.get((project_id, task_id))

    def task_for(self, issue_id: str) -> tuple[str, str] | None:
        return self._task_by_issue.get(issue_id)

    def issues_for_project(self, project_id: str) -> dict[str, str]:
        return {task: issue for (project, task), issue in self._issue_by_task.items() if project == project_id}

    def __len__(self) -> int:
        return len(self._issue_by_task)


@dataclass(slots=True)
class ComplexTaskResult:
    project: Project
    tasks: list[Task]
    materialized: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class TaskExecutionOutcome:
    done: bool
    task: Task | None = None
    result: ExecutionResult | None = None


class TaskExecutionBridge:
    """Turn complex requests into mirrored task DAGs and execute them."""

    def __init__(
        self,
        service: TaskExecutionService,
        tracker: IssueTracker,
        *,
        journal: ChromaJournal | None = None,
        task_labels: Sequence[str] = DEFAULT_TASK_LABELS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._service = service
        self._tracker = tracker
        self._journal = journal
        self._task_labels = list(task_labels)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.mapping = TaskIssueMapping()
        self._session_projects: dict[str, str] = {}
        self._issue_projects: dict[str, str] = {}
        self._issue_teams: dict[str, str] = {}
        self._state_ids: dict[tuple[str | None, MirrorState], str] = {}

    async def handle_complex_task(self, session_id: str, issue: IssueRef) -> ComplexTaskResult:
        logger.info("Handling complex task", extra={"session_id": session_id, "issue_id": issue.id})

        prd = build_prd(issue)
        project = await self._service.initialize_project(issue.title, prd)
        tasks = await self._service.parse_prd(project.id, prd)
        materialized = await self._materialize(project.id, issue, tasks)

        self._session_projects[session_id] = project.id
        self._issue_projects[issue.id] = project.id
        self._store_project_mapping(session_id, issue.id, project.id, len(tasks))

        logger.info(
            "Complex task prepared",
            extra={
                "session_id": session_id,
                "project_id": project.id,
                "task_count": len(tasks),
                "sub_issues": len(materialized),
            },
        )
        return ComplexTaskResult(project=project, tasks=tasks, materialized=materialized)

    async def _materialize(self, project_id: str, issue: IssueRef, tasks: Sequence[Task]) -> dict[str, str]:
        """Create one sub-issue per task, depth first, parents before children.

        A task whose sub-issue cannot be created is skipped together with its
        subtasks, which would have no parent to attach to.
        """

        created: dict[str, str] = {}
        stack: list[tuple[Task, str]] = [(task, issue.id) for task in reversed(tasks)]
        while stack:
            task, parent_id = stack.pop()
            try:
                sub_issue = await self._tracker.create_issue(
                    title=f"[Task {task.id}] {task.title}",
                    description=format_task_description(task),
                    team_id=issue.team_id,
                    parent_id=parent_id,
                    labels=self._task_labels,
                )
            except Exception:
                logger.exception(
                    "Failed to create Linear sub-issue",
                    extra={"project_id": project_id, "task_id": task.id},
                )
                continue

            self.mapping.record(project_id, task.id, sub_issue.id)
            self._issue_teams[sub_issue.id] = issue.team_id
            created[task.id] = sub_issue.id
            logger.info(
                "Created Linear sub-issue",
                extra={"task_id": task.id, "issue_id": sub_issue.id, "parent_id": parent_id},
            )
            stack.extend((subtask, sub_issue.id) for subtask in reversed(task.subtasks))
        return created

    def _store_project_mapping(self, session_id: str, issue_id: str, project_id: str, task_count: int) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record_project_mapping(
                issue_id=issue_id,
                project_id=project_id,
                session_id=session_id,
                task_count=task_count,
            )
        except Exception:
            logger.warning(
                "Failed to journal project mapping",
                extra={"issue_id": issue_id, "project_id": project_id},
                exc_info=True,
            )

    def project_for_session(self, session_id: str) -> str | None:
        return self._session_projects.get(session_id)

    def project_for_issue(self, issue_id: str) -> str | None:
        """Return the TaskMaster project created for an issue, if any."""

        project_id = self._issue_projects.get(issue_id)
        if project_id is not None or self._journal is None:
            return project_id
        try:
            record = self._journal.find_project_mapping(issue_id)
        except Exception:
            logger.warning("Project mapping lookup failed", extra={"issue_id": issue_id}, exc_info=True)
            return None
        if record is None:
            return None
        self._issue_projects[issue_id] = record.project_id
        return record.project_id

    def release_session(self, session_id: str, project_id: str | None = None) -> None:
        """Unbind a session's project; with ``project_id`` only if it is still the bound one."""

        if project_id is None or self._session_projects.get(session_id) == project_id:
            self._session_projects.pop(session_id, None)

    async def execute_next_task(self, session_id: str, project_id: str | None = None) -> TaskExecutionOutcome:
        if project_id is None:
            project_id = self._session_projects.get(session_id)
        if project_id is None:
            raise BridgeError(f"No TaskMaster project bound to session {session_id}")

        task = await self._service.get_next_task(project_id)
        if task is None:
            logger.info("No more tasks to execute", extra={"session_id": session_id, "project_id": project_id})
            return TaskExecutionOutcome(done=True)

        logger.info(
            "Executing task",
            extra={"session_id": session_id, "task_id": task.id, "title": task.title},
        )
        issue_id = self.mapping.issue_for(project_id, task.id)
        if issue_id:
            await self._set_mirror_state(issue_id, MirrorState.IN_PROGRESS)

        try:
            result = await self._service.execute_task(project_id, task.id)
        except Exception as exc:
            logger.exception("Task execution failed", extra={"session_id": session_id, "task_id": task.id})
            result = ExecutionResult(success=False, error=str(exc) or type(exc).__name__)

        if issue_id:
            final_state = MirrorState.DONE if result.success else MirrorState.CANCELLED
            await self._set_mirror_state(issue_id, final_state)
            await self._add_comment(issue_id, format_execution_result(result, self._clock()))

        final_status = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
        await self._service.update_task_status(project_id, task.id, final_status)
        self._journal_execution(session_id, project_id, task, result)
        return TaskExecutionOutcome(done=False, task=task, result=result)

    def _journal_execution(self, session_id: str, project_id: str, task: Task, result: ExecutionResult) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record_event(
                session_id=session_id,
                event_type="task_executed",
                body=result.model_dump(mode="json"),
                metadata={"project_id": project_id, "task_id": task.id, "success": result.success},
            )
        except Exception:
            logger.warning("Failed to journal task execution", extra={"task_id": task.id}, exc_info=True)

    async def sync_task_status(self, project_id: str, task_id: str) -> MirrorState | None:
        """Copy a task's current TaskMaster status onto its mirrored issue."""

        issue_id = self.mapping.issue_for(project_id, task_id)
        if issue_id is None:
            logger.warning("No Linear issue mapping found for task", extra={"task_id": task_id})
            return None

        status = await self._service.get_task_status(project_id, task_id)
        state = mirror_state_for(status)
        await self._set_mirror_state(issue_id, state)
        logger.info(
            "Synced task status",
            extra={"task_id": task_id, "issue_id": issue_id, "status": state.value},
        )
        return state

    async def progress_summary(self, project_id: str) -> ProgressSummary:
        return summarize_progress(await self._service.get_all_tasks(project_id))

    async def _resolve_state_id(self, team_id: str | None, state: MirrorState) -> str | None:
        key = (team_id, state)
        if key in self._state_ids:
            return self._state_ids[key]
        states = await self._tracker.list_workflow_states(name=state.linear_name, team_id=team_id)
        if not states:
            return None
        self._state_ids[key] = states[0].id
        return states[0].id

    async def _set_mirror_state(self, issue_id: str, state: MirrorState) -> bool:
        try:
            state_id = await self._resolve_state_id(self._issue_teams.get(issue_id) or None, state)
            if state_id is None:
                logger.warning(
                    "No Linear workflow state matches",
                    extra={"issue_id": issue_id, "status": state.value},
                )
                return False
            updated = await self._tracker.update_issue(issue_id, state_id=state_id)
        except Exception:
            logger.exception(
                "Failed to update Linear issue status",
                extra={"issue_id": issue_id, "status": state.value},
            )
            return False
        logger.info("Updated Linear issue status", extra={"issue_id": issue_id, "status": state.value})
        return updated

    async def _add_comment(self, issue_id: str, body: str) -> None:
        try:
            await self._tracker.create_comment(issue_id, body)
        except Exception:
            logger.exception("Failed to add Linear comment", extra={"issue_id": issue_id})
            return
        logger.info("Added comment to Linear issue", extra={"issue_id": issue_id})


__all__ = [
    "BridgeError",
    "ComplexTaskResult",
    "MirrorState",
    "PRD_TEMPLATE",
    "STATUS_TO_MIRROR_STATE",
    "TaskExecutionBridge",
    "TaskExecutionOutcome",
    "TaskIssueMapping",
    "build_prd",
    "format_execution_result",
    "format_task_description",
    "mirror_state_for",
]
