"""Task-execution service backed by the TaskMaster and Codex CLIs.

Each project lives in its own directory under the workspace root.
TaskMaster owns ``.taskmaster/tasks/tasks.json`` there; tasks are executed
by running Codex non-interactively inside the same directory.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Protocol

from ..commands import CommandResult, CommandRunner
from .models import (
    ExecutionResult,
    Project,
    Task,
    TaskStatus,
    find_task,
    next_ready_task,
)

logger = logging.getLogger(__name__)

TASKS_FILE = Path(".taskmaster") / "tasks" / "tasks.json"
PRD_FILE = Path(".taskmaster") / "docs" / "prd.txt"
DEFAULT_TAG = "master"
OUTPUT_TAIL_CHARS = 2000


class TaskMasterError(RuntimeError):
    """Raised when a TaskMaster command fails or its task file is unreadable."""


class TaskExecutionService(Protocol):
    """Operations the bridge needs from a task-execution backend."""

    async def initialize_project(self, name: str, description: str) -> Project:
        ...

    async def parse_prd(self, project_id: str, document: str) -> list[Task]:
        ...

    async def get_next_task(self, project_id: str) -> Task | None:
        ...

    async def execute_task(self, project_id: str, task_id: str) -> ExecutionResult:
        ...

    async def update_task_status(self, project_id: str, task_id: str, status: TaskStatus) -> None:
        ...

    async def get_task_status(self, project_id: str, task_id: str) -> TaskStatus:
        ...

    async def get_all_tasks(self, project_id: str) -> list[Task]:
        ...


def _slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:40] or "project"


def load_tasks_document(document: Any, tag: str = DEFAULT_TAG) -> list[Task]:
    """Read tasks from either the tagged or the legacy ``tasks.json`` layout."""

    if not isinstance(document, dict):
        raise TaskMasterError("tasks.json must contain a JSON object")

    if isinstance(document.get("tasks"), list):
        raw_tasks = document["tasks"]
    else:
        tagged = document.get(tag)
        if not isinstance(tagged, dict):
            tagged = next(
                (value for value in document.values() if isinstance(value, dict) and "tasks" in value),
                {},
            )
        raw_tasks = tagged.get("tasks") or []

    return [Task.from_taskmaster(raw) for raw in raw_tasks]


def build_task_prompt(project: Project, task: Task) -> str:
    lines = [
        f"You are working on the project '{project.name}'.",
        f"Complete task {task.id}: {task.title}",
        "",
        task.description,
    ]
    if task.details:
        lines.extend(["", "Implementation details:", task.details])
    if task.subtasks:
        lines.extend(["", "Subtasks:"])
        lines.extend(f"- {subtask.title}" for subtask in task.subtasks)
    lines.extend(["", "Make the changes in the current directory and summarize what you did."])
    return "\n".join(lines)


def _snapshot(root: Path) -> dict[str, float]:
    files: dict[str, float] = {}
    for path in root.rglob("*"):
        relative = path.relative_to(root)
        if relative.parts and relative.parts[0] in {".taskmaster", ".git"}:
            continue
        if path.is_file():
            files[relative.as_posix()] = path.stat().st_mtime
    return files


def _diff_snapshots(before: dict[str, float], after: dict[str, float]) -> list[str]:
    changes = [f"Created {name}" for name in sorted(after.keys() - before.keys())]
    changes.extend(
        f"Modified {name}" for name in sorted(after.keys() & before.keys()) if after[name] != before[name]
    )
    changes.extend(f"Deleted {name}" for name in sorted(before.keys() - after.keys()))
    return changes


def _tail(text: str) -> str:
    text = text.strip()
    return text[-OUTPUT_TAIL_CHARS:] if len(text) > OUTPUT_TAIL_CHARS else text


class TaskMasterClient:
    """Drive the ``task-master`` CLI, one working directory per project."""

    def __init__(
        self,
        runner: CommandRunner,
        workspace_root: Path,
        *,
        executor: CommandRunner | None = None,
        num_tasks: int = 5,
        tag: str = DEFAULT_TAG,
    ) -> None:
        self._runner = runner
        self._workspace_root = Path(workspace_root)
        self._executor = executor
        self._num_tasks = num_tasks
        self._tag = tag
        self._projects: dict[str, Project] = {}

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    def project_dir(self, project_id: str) -> Path:
        project = self._projects.get(project_id)
        if project is not None and project.path is not None:
            return project.path
        return self._workspace_root / project_id

    async def _run(self, project_id: str, *args: str) -> CommandResult:
        result = await self._runner.run(*args, cwd=self.project_dir(project_id))
        if not result.ok:
            message = (result.stderr or result.stdout).strip() or f"exit code {result.returncode}"
            logger.error(
                "TaskMaster command failed",
                extra={"project_id": project_id, "command": args[0], "returncode": result.returncode},
            )
            raise TaskMasterError(f"task-master {args[0]} failed: {message}")
        return result

    async def initialize_project(self, name: str, description: str) -> Project:
        project_id = f"proj_{_slugify(name)}_{uuid.uuid4().hex[:8]}"
        path = self._workspace_root / project_id
        path.mkdir(parents=True, exist_ok=True)
        project = Project(id=project_id, name=name, description=description, path=path)
        self._projects[project_id] = project

        summary = description.strip().splitlines()[0] if description.strip() else name
        await self._run(
            project_id,
            "init",
            "--yes",
            "--skip-install",
            "--name",
            name,
            "--description",
            summary,
        )
        logger.info("Initialized TaskMaster project", extra={"project_id": project_id, "project_name": name})
        return project

    async def parse_prd(self, project_id: str, document: str) -> list[Task]:
        prd_path = self.project_dir(project_id) / PRD_FILE
        prd_path.parent.mkdir(parents=True, exist_ok=True)
        prd_path.write_text(document, encoding="utf-8")

        await self._run(
            project_id,
            "parse-prd",
            "--input",
            str(PRD_FILE),
            "--num-tasks",
            str(self._num_tasks),
            "--force",
        )
        tasks = await self.get_all_tasks(project_id)
        logger.info("Parsed PRD into tasks", extra={"project_id": project_id, "task_count": len(tasks)})
        return tasks

    async def get_all_tasks(self, project_id: str) -> list[Task]:
        tasks_path = self.project_dir(project_id) / TASKS_FILE
        if not tasks_path.exists():
            return []
        try:
            document = json.loads(tasks_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise TaskMasterError(f"Invalid tasks file {tasks_path}: {exc}") from exc
        return load_tasks_document(document, self._tag)

    async def get_next_task(self, project_id: str) -> Task | None:
        return next_ready_task(await self.get_all_tasks(project_id))

    async def get_task_status(self, project_id: str, task_id: str) -> TaskStatus:
        task = find_task(await self.get_all_tasks(project_id), task_id)
        if task is None:
            raise TaskMasterError(f"Task {task_id} not found in project {project_id}")
        return task.status

    async def update_task_status(self, project_id: str, task_id: str, status: TaskStatus) -> None:
        await self._run(project_id, "set-status", f"--id={task_id}", f"--status={status.to_service()}")
        logger.info(
            "Updated TaskMaster task status",
            extra={"project_id": project_id, "task_id": task_id, "status": status.value},
        )

    async def execute_task(self, project_id: str, task_id: str) -> ExecutionResult:
        if self._executor is None:
            raise TaskMasterError("No task executor configured")

        task = find_task(await self.get_all_tasks(project_id), task_id)
        if task is None:
            raise TaskMasterError(f"Task {task_id} not found in project {project_id}")

        project = self._projects.get(project_id) or Project(
            id=project_id, name=project_id, path=self.project_dir(project_id)
        )
        workdir = self.project_dir(project_id)
        before = _snapshot(workdir)
        result = await self._executor.run("exec", build_task_prompt(project, task), cwd=workdir)
        changes = _diff_snapshots(before, _snapshot(workdir))

        logger.info(
            "Executed task",
            extra={
                "project_id": project_id,
                "task_id": task_id,
                "returncode": result.returncode,
                "changes": len(changes),
            },
        )
        if result.ok:
            return ExecutionResult(success=True, details=_tail(result.stdout) or None, changes=changes)
        return ExecutionResult(
            success=False,
            details=_tail(result.stdout) or None,
            error=_tail(result.stderr) or f"exit code {result.returncode}",
            changes=changes,
        )


class UnavailableTaskService:
    """Service used when the TaskMaster CLI is missing; every call fails."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def _fail(self) -> TaskMasterError:
        return TaskMasterError(f"TaskMaster is not available: {self.reason}")

    async def initialize_project(self, name: str, description: str) -> Project:
        raise self._fail()

    async def parse_prd(self, project_id: str, document: str) -> list[Task]:
        raise self._fail()

    async def get_next_task(self, project_id: str) -> Task | None:
        raise self._fail()

    async def execute_task(self, project_id: str, task_id: str) -> ExecutionResult:
        raise self._fail()

    async def update_task_status(self, project_id: str, task_id: str, status: TaskStatus) -> None:
        raise self._fail()

    async def get_task_status(self, project_id: str, task_id: str) -> TaskStatus:
        raise self._fail()

    async def get_all_tasks(self, project_id: str) -> list[Task]:
        raise self._fail()


__all__ = [
    "TaskExecutionService",
    "TaskMasterClient",
    "TaskMasterError",
    "UnavailableTaskService",
    "build_task_prompt",
    "load_tasks_document",
]
