"""Task DAG records exchanged with the task-execution service."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

from pydantic import BaseModel, Field, field_validator


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_service(cls, value: object) -> "TaskStatus":
        """Read a TaskMaster status string; unknown values count as pending."""

        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        return _SERVICE_TO_STATUS.get(normalized, cls.PENDING)

    def to_service(self) -> str:
        return _STATUS_TO_SERVICE[self]


_SERVICE_TO_STATUS = {
    "pending": TaskStatus.PENDING,
    "deferred": TaskStatus.PENDING,
    "in_progress": TaskStatus.IN_PROGRESS,
    "in-progress": TaskStatus.IN_PROGRESS,
    "review": TaskStatus.REVIEW,
    "done": TaskStatus.COMPLETED,
    "completed": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "cancelled": TaskStatus.FAILED,
}

_STATUS_TO_SERVICE = {
    TaskStatus.PENDING: "pending",
    TaskStatus.IN_PROGRESS: "in-progress",
    TaskStatus.REVIEW: "review",
    TaskStatus.COMPLETED: "done",
    TaskStatus.FAILED: "cancelled",
}


class Task(BaseModel):
    """One node of the task DAG. Subtasks are children by containment."""

    id: str
    title: str
    description: str = ""
    details: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = Field(default_factory=list)
    subtasks: list["Task"] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> TaskStatus:
        return TaskStatus.from_service(value)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _stringify_dependencies(cls, value: Any) -> list[str]:
        if value is None:
            return []
        return [str(item) for item in value]

    @classmethod
    def from_taskmaster(cls, raw: dict[str, Any], parent_id: str | None = None) -> "Task":
        """Build a task from a ``tasks.json`` entry.

        TaskMaster numbers subtasks locally (``1``, ``2``...) and lets them
        depend on siblings by local number; both are qualified with the
        parent id here so every id in the tree is unique (``3.1``).
        """

        local_id = str(raw.get("id", ""))
        task_id = f"{parent_id}.{local_id}" if parent_id else local_id

        dependencies = []
        for dependency in raw.get("dependencies") or []:
            dependency = str(dependency)
            if parent_id and "." not in dependency:
                dependency = f"{parent_id}.{dependency}"
            dependencies.append(dependency)

        return cls(
            id=task_id,
            title=str(raw.get("title", "")),
            description=str(raw.get("description") or ""),
            details=raw.get("details") or None,
            status=raw.get("status"),
            dependencies=dependencies,
            subtasks=[cls.from_taskmaster(child, task_id) for child in raw.get("subtasks") or []],
        )

    @property
    def completed(self) -> bool:
        return self.status is TaskStatus.COMPLETED


class Project(BaseModel):
    id: str
    name: str
    description: str = ""
    path: Path | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExecutionResult(BaseModel):
    success: bool
    details: str | None = None
    error: str | None = None
    changes: list[str] = Field(default_factory=list)


class ProgressSummary(BaseModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    failed: int = 0
    percentage: int = 0


def iter_tasks(tasks: Sequence[Task]) -> Iterator[Task]:
    """Yield every task in document order, parents before their subtasks."""

    stack: list[Task] = list(reversed(tasks))
    while stack:
        task = stack.pop()
        yield task
        stack.extend(reversed(task.subtasks))


def find_task(tasks: Sequence[Task], task_id: str) -> Task | None:
    for task in iter_tasks(tasks):
        if task.id == task_id:
            return task
    return None


def next_ready_task(tasks: Sequence[Task]) -> Task | None:
    """Return the first pending task whose dependencies are all completed.

    Subtasks are offered before their parent; a parent becomes ready once
    every subtask is completed. A failed dependency never completes, so its
    dependents are never offered.
    """

    completed = {task.id for task in iter_tasks(tasks) if task.completed}

    def ready(candidates: Iterable[Task]) -> Task | None:
        for task in candidates:
            if task.status is not TaskStatus.PENDING:
                continue
            if not all(dependency in completed for dependency in task.dependencies):
                continue
            if task.subtasks:
                child = ready(task.subtasks)
                if child is not None:
                    return child
                if not all(subtask.completed for subtask in task.subtasks):
                    continue
            return task
        return None

    return ready(tasks)


def summarize_progress(tasks: Sequence[Task]) -> ProgressSummary:
    summary = ProgressSummary()
    for task in iter_tasks(tasks):
        summary.total += 1
        if task.status is TaskStatus.COMPLETED:
            summary.completed += 1
        elif task.status in (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW):
            summary.in_progress += 1
        elif task.status is TaskStatus.FAILED:
            summary.failed += 1
        else:
            summary.pending += 1
    if summary.total:
        summary.percentage = round(summary.completed / summary.total * 100)
    return summary


__all__ = [
    "ExecutionResult",
    "Project",
    "ProgressSummary",
    "Task",
    "TaskStatus",
    "find_task",
    "iter_tasks",
    "next_ready_task",
    "summarize_progress",
]
