"""Agent activity protocol: typed activities, markdown handling and emission."""

from .emitter import ActivityEmitter, EmitFailure, TaskLine, render_progress, render_task_list
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
    parse_model_output,
)

__all__ = [
    "Activity",
    "ActionActivity",
    "ActivityAction",
    "ActivityEmitter",
    "ElicitationActivity",
    "EmitFailure",
    "ErrorActivity",
    "ProcessStep",
    "ResponseActivity",
    "TaskLine",
    "ThoughtActivity",
    "activity_content",
    "normalize_markdown",
    "parse_model_output",
    "render_progress",
    "render_task_list",
]
