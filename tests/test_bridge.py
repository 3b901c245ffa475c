from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Sequence

import pytest

from linear_agent.linear import CreatedIssue, WorkflowState
from linear_agent.session.models import IssueRef
from linear_agent.taskmaster import (
    BridgeError,
    ExecutionResult,
    MirrorState,
    Project,
    Task,
    TaskExecutionBridge,
    TaskStatus,
    mirror_state_for,
    next_ready_task,
)
from linear_agent.taskmaster.bridge import build_prd, format_execution_result, format_task_description
from linear_agent.taskmaster.models import find_task, iter_tasks


class StubTracker:
    def __init__(self, fail_titles: Sequence[str] = ()) -> None:
        self.fail_titles = set(fail_titles)
        self.issues: list[dict[str, Any]] = []
        self.updates: list[tuple[str, str | None]] = []
        self.comments: list[tuple[str, str]] = []
        self.state_queries: list[tuple[str | None, str | None]] = []

    async def create_activity(self, session_id, content, ephemeral=False) -> bool:
        return True

    async def create_issue(self, *, title, description, team_id, parent_id=None, labels=None, priority=None):
        if any(fragment in title for fragment in self.fail_titles):
            raise RuntimeError("Linear refused")
        issue_id = f"ISS-{len(self.issues) + 1}"
        self.issues.append(
            {
                "id": issue_id,
                "title": title,
                "description": description,
                "team_id": team_id,
                "parent_id": parent_id,
                "labels": list(labels or []),
            }
        )
        return CreatedIssue(id=issue_id, identifier=issue_id, url=f"https://linear.app/acme/issue/{issue_id}")

    async def update_issue(self, issue_id, *, state_id=None, description=None) -> bool:
        self.updates.append((issue_id, state_id))
        return True

    async def create_comment(self, issue_id, body) -> bool:
        self.comments.append((issue_id, body))
        return True

    async def list_workflow_states(self, *, name=None, team_id=None):
        self.state_queries.append((name, team_id))
        return [WorkflowState(id=f"state-{name}", name=name or "")]

    async def create_session_on_issue(self, issue_id, reason=None):
        return None


class StubTaskService:
    def __init__(self, tasks: list[Task], *, fail_ids: Sequence[str] = (), raise_ids: Sequence[str] = ()) -> None:
        self.tasks = tasks
        self.fail_ids = set(fail_ids)
        self.raise_ids = set(raise_ids)
        self.status_updates: list[tuple[str, str, TaskStatus]] = []
        self.executed: list[str] = []

    async def initialize_project(self, name: str, description: str) -> Project:
        return Project(id="proj_1", name=name, description=description)

    async def parse_prd(self, project_id: str, document: str) -> list[Task]:
        return self.tasks

    async def get_next_task(self, project_id: str) -> Task | None:
        return next_ready_task(self.tasks)

    async def execute_task(self, project_id: str, task_id: str) -> ExecutionResult:
        self.executed.append(task_id)
        if task_id in self.raise_ids:
            raise RuntimeError("executor crashed")
        if task_id in self.fail_ids:
            return ExecutionResult(success=False, error="tests failed")
        return ExecutionResult(success=True, details=f"did {task_id}", changes=["Created app.py"])

    async def update_task_status(self, project_id: str, task_id: str, status: TaskStatus) -> None:
        self.status_updates.append((project_id, task_id, status))
        find_task(self.tasks, task_id).status = status

    async def get_task_status(self, project_id: str, task_id: str) -> TaskStatus:
        return find_task(self.tasks, task_id).status

    async def get_all_tasks(self, project_id: str) -> list[Task]:
        return self.tasks


class StubJournal:
    def __init__(self) -> None:
        self.mappings: list[dict[str, Any]] = []
        self.events: list[dict[str, Any]] = []

    def record_project_mapping(self, *, issue_id, project_id, session_id, task_count, metadata=None):
        self.mappings.append(
            {"issue_id": issue_id, "project_id": project_id, "session_id": session_id, "task_count": task_count}
        )

    def find_project_mapping(self, issue_id):
        for mapping in reversed(self.mappings):
            if mapping["issue_id"] == issue_id:
                return type("Record", (), mapping)()
        return None

    def record_event(self, *, session_id, event_type, body, metadata=None):
        self.events.append({"session_id": session_id, "event_type": event_type, "metadata": metadata or {}})


ISSUE = IssueRef(id="issue-1", title="Implement OAuth login", description="Add Google login", teamId="team-1")


def sample_tasks() -> list[Task]:
    return [
        Task.from_taskmaster({"id": 1, "title": "Set up provider", "description": "Register app"}),
        Task.from_taskmaster(
            {
                "id": 2,
                "title": "Callback",
                "dependencies": [1],
                "subtasks": [{"id": 1, "title": "Route"}, {"id": 2, "title": "Session cookie"}],
            }
        ),
    ]


def fixed_clock() -> datetime:
    return datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_handle_complex_task_materializes_every_task() -> None:
    tracker = StubTracker()
    journal = StubJournal()
    bridge = TaskExecutionBridge(StubTaskService(sample_tasks()), tracker, journal=journal)

    result = asyncio.run(bridge.handle_complex_task("session-1", ISSUE))

    assert len(result.tasks) == 2
    assert len(result.materialized) == len(list(iter_tasks(result.tasks))) == 4
    titles = [issue["title"] for issue in tracker.issues]
    assert titles == [
        "[Task 1] Set up provider",
        "[Task 2] Callback",
        "[Task 2.1] Route",
        "[Task 2.2] Session cookie",
    ]
    parents = {issue["title"]: issue["parent_id"] for issue in tracker.issues}
    assert parents["[Task 1] Set up provider"] == "issue-1"
    assert parents["[Task 2.1] Route"] == result.materialized["2"]
    assert all(issue["labels"] == ["taskmaster-task", "automated"] for issue in tracker.issues)
    assert all(issue["team_id"] == "team-1" for issue in tracker.issues)

    assert bridge.project_for_session("session-1") == "proj_1"
    assert bridge.project_for_issue("issue-1") == "proj_1"
    assert journal.mappings[0]["task_count"] == 2


def test_failed_sub_issue_skips_its_subtree() -> None:
    tracker = StubTracker(fail_titles=["Callback"])
    bridge = TaskExecutionBridge(StubTaskService(sample_tasks()), tracker)

    result = asyncio.run(bridge.handle_complex_task("session-1", ISSUE))

    assert set(result.materialized) == {"1"}
    assert [issue["title"] for issue in tracker.issues] == ["[Task 1] Set up provider"]


def test_project_for_issue_falls_back_to_journal() -> None:
    journal = StubJournal()
    journal.record_project_mapping(issue_id="issue-9", project_id="proj_old", session_id="s0", task_count=3)
    bridge = TaskExecutionBridge(StubTaskService([]), StubTracker(), journal=journal)

    assert bridge.project_for_issue("issue-9") == "proj_old"
    assert bridge.project_for_issue("issue-missing") is None


def test_execute_next_task_updates_mirror_and_service() -> None:
    tracker = StubTracker()
    service = StubTaskService(sample_tasks())
    journal = StubJournal()
    bridge = TaskExecutionBridge(service, tracker, journal=journal, clock=fixed_clock)

    async def scenario():
        created = await bridge.handle_complex_task("session-1", ISSUE)
        outcome = await bridge.execute_next_task("session-1")
        return created, outcome

    created, outcome = asyncio.run(scenario())

    assert not outcome.done
    assert outcome.task.id == "1"
    assert outcome.result.success
    issue_id = created.materialized["1"]
    assert tracker.updates == [(issue_id, "state-In Progress"), (issue_id, "state-Done")]
    assert tracker.comments[0][0] == issue_id
    assert "✅ Success" in tracker.comments[0][1]
    assert "2025-01-01T00:00:00+00:00" in tracker.comments[0][1]
    assert service.status_updates == [("proj_1", "1", TaskStatus.COMPLETED)]
    assert journal.events[-1]["event_type"] == "task_executed"


def test_execution_errors_become_failed_results() -> None:
    tracker = StubTracker()
    service = StubTaskService(sample_tasks(), raise_ids=["1"])
    bridge = TaskExecutionBridge(service, tracker)

    async def scenario():
        await bridge.handle_complex_task("session-1", ISSUE)
        first = await bridge.execute_next_task("session-1")
        second = await bridge.execute_next_task("session-1")
        return first, second

    first, second = asyncio.run(scenario())

    assert not first.result.success
    assert first.result.error == "executor crashed"
    assert tracker.updates[-1][1] == "state-Canceled"
    assert "❌ Failed" in tracker.comments[-1][1]
    assert service.status_updates == [("proj_1", "1", TaskStatus.FAILED)]
    # Task 2 depends on the failed task, so nothing is left to run.
    assert second.done


def test_execute_runs_subtasks_then_parent() -> None:
    service = StubTaskService(sample_tasks())
    bridge = TaskExecutionBridge(service, StubTracker())

    async def scenario() -> None:
        await bridge.handle_complex_task("session-1", ISSUE)
        while not (await bridge.execute_next_task("session-1")).done:
            pass

    asyncio.run(scenario())

    assert service.executed == ["1", "2.1", "2.2", "2"]


def test_execute_without_project_raises() -> None:
    bridge = TaskExecutionBridge(StubTaskService([]), StubTracker())
    with pytest.raises(BridgeError):
        asyncio.run(bridge.execute_next_task("unknown"))


def test_workflow_state_ids_are_cached() -> None:
    tracker = StubTracker()
    bridge = TaskExecutionBridge(StubTaskService(sample_tasks()), tracker)

    async def scenario() -> None:
        await bridge.handle_complex_task("session-1", ISSUE)
        await bridge.sync_task_status("proj_1", "1")
        await bridge.sync_task_status("proj_1", "2")

    asyncio.run(scenario())

    assert tracker.state_queries == [("Backlog", "team-1")]
    assert len(tracker.updates) == 2


def test_sync_task_status_maps_review_to_in_review() -> None:
    tasks = [Task.from_taskmaster({"id": 1, "title": "Set up provider", "status": "review"})]
    tracker = StubTracker()
    bridge = TaskExecutionBridge(StubTaskService(tasks), tracker)

    async def scenario() -> MirrorState | None:
        await bridge.handle_complex_task("session-1", ISSUE)
        return await bridge.sync_task_status("proj_1", "1")

    assert tasks[0].status is TaskStatus.REVIEW
    assert asyncio.run(scenario()) is MirrorState.IN_REVIEW
    assert tracker.updates == [("ISS-1", "state-In Review")]


def test_execute_with_explicit_project_survives_rebinding() -> None:
    service = StubTaskService(sample_tasks())
    bridge = TaskExecutionBridge(service, StubTracker())

    async def scenario() -> None:
        await bridge.handle_complex_task("session-1", ISSUE)
        bridge.release_session("session-1", "proj_other")
        assert bridge.project_for_session("session-1") == "proj_1"
        await bridge.execute_next_task("session-1", project_id="proj_1")
        bridge.release_session("session-1", "proj_1")
        assert bridge.project_for_session("session-1") is None
        await bridge.execute_next_task("session-1", project_id="proj_1")

    asyncio.run(scenario())

    assert service.executed == ["1", "2.1"]


def test_sync_task_status_without_mapping() -> None:
    bridge = TaskExecutionBridge(StubTaskService(sample_tasks()), StubTracker())
    assert asyncio.run(bridge.sync_task_status("proj_1", "1")) is None


def test_progress_summary() -> None:
    tasks = sample_tasks()
    tasks[0].status = TaskStatus.COMPLETED
    bridge = TaskExecutionBridge(StubTaskService(tasks), StubTracker())

    summary = asyncio.run(bridge.progress_summary("proj_1"))

    assert summary.total == 4
    assert summary.completed == 1
    assert summary.percentage == 25


@pytest.mark.parametrize(
    ("status", "state"),
    [
        ("pending", MirrorState.BACKLOG),
        ("in-progress", MirrorState.IN_PROGRESS),
        ("review", MirrorState.IN_REVIEW),
        ("done", MirrorState.DONE),
        ("cancelled", MirrorState.CANCELLED),
        ("mystery", MirrorState.BACKLOG),
        ("", MirrorState.BACKLOG),
        (TaskStatus.IN_PROGRESS, MirrorState.IN_PROGRESS),
        (TaskStatus.REVIEW, MirrorState.IN_REVIEW),
        (TaskStatus.COMPLETED, MirrorState.DONE),
        (TaskStatus.FAILED, MirrorState.CANCELLED),
    ],
)
def test_mirror_state_mapping_is_total(status, state: MirrorState) -> None:
    assert mirror_state_for(status) is state


def test_formatting_helpers() -> None:
    prd = build_prd(ISSUE)
    assert "## Project: Implement OAuth login" in prd
    assert "Add Google login" in prd

    description = format_task_description(sample_tasks()[1])
    assert "- Task 1" in description
    assert "- [ ] Route" in description

    report = format_execution_result(ExecutionResult(success=False, error="boom", changes=["Modified a.py"]))
    assert "❌ Failed" in report
    assert "```\nboom\n```" in report
    assert "- Modified a.py" in report
