"""TaskMaster integration: task models, CLI-backed client and the Linear bridge."""

from .bridge import (
    BridgeError,
    ComplexTaskResult,
    MirrorState,
    TaskExecutionBridge,
    TaskExecutionOutcome,
    TaskIssueMapping,
    mirror_state_for,
)
from .client import TaskExecutionService, TaskMasterClient, TaskMasterError, UnavailableTaskService
from .models import ExecutionResult, Project, ProgressSummary, Task, TaskStatus, next_ready_task

__all__ = [
    "BridgeError",
    "ComplexTaskResult",
    "ExecutionResult",
    "MirrorState",
    "Project",
    "ProgressSummary",
    "Task",
    "TaskExecutionBridge",
    "TaskExecutionOutcome",
    "TaskExecutionService",
    "TaskIssueMapping",
    "TaskMasterClient",
    "TaskMasterError",
    "TaskStatus",
    "UnavailableTaskService",
    "mirror_state_for",
    "next_ready_task",
]
