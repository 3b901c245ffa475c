"""Typed agent activities and the parser for model responses."""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator


class ActivityAction(BaseModel):
    """A follow-up affordance attached to a response."""

    label: str
    url: str | None = None
    command: str | None = None


class ThoughtActivity(BaseModel):
    type: Literal["thought"] = "thought"
    body: str


class ActionActivity(BaseModel):
    type: Literal["action"] = "action"
    tool: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ElicitationActivity(BaseModel):
    type: Literal["elicitation"] = "elicitation"
    prompt: str
    options: list[str] = Field(default_factory=list)


class ResponseActivity(BaseModel):
    type: Literal["response"] = "response"
    body: str
    actions: list[ActivityAction] = Field(default_factory=list)


class ErrorActivity(BaseModel):
    type: Literal["error"] = "error"
    body: str
    retryable: bool = False


Activity = Annotated[
    Union[ThoughtActivity, ActionActivity, ElicitationActivity, ResponseActivity, ErrorActivity],
    Field(discriminator="type"),
]


def activity_content(activity: Activity) -> dict[str, Any]:
    """Render an activity as the content payload sent to Linear."""

    content = activity.model_dump(mode="json", exclude_none=True)
    if isinstance(activity, ErrorActivity):
        content["retry"] = content.pop("retryable")
    if isinstance(activity, (ElicitationActivity, ResponseActivity)):
        key = "options" if isinstance(activity, ElicitationActivity) else "actions"
        if not content.get(key):
            content.pop(key, None)
    return content


class ProcessStep(BaseModel):
    """One visible reasoning step played before a final turn."""

    kind: Literal["thought", "action"]
    message: str | None = None
    tool: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    delay: float = Field(default=0.0, description="Seconds to wait before emitting the step.")

    @field_validator("delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Step delay must not be negative")
        return value


_PREFIX = re.compile(
    r"^\s*(THINKING|ACTION|ELICITATION|RESPONSE|ERROR)\s*:\s*(.*)\Z",
    re.IGNORECASE | re.DOTALL,
)
_ACTION_CALL = re.compile(r"^([\w.-]+)\s*\((.*)\)\s*\Z", re.DOTALL)
_KEY_VALUE = re.compile(r"""\s*([\w-]+)\s*=\s*("[^"]*"|'[^']*'|[^,]*)\s*(?:,|\Z)""")


def _parse_arguments(raw: str) -> dict[str, Any]:
    raw = raw.strip()
    if not raw:
        return {}
    if raw.startswith("{"):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, dict):
            return decoded

    arguments: dict[str, Any] = {}
    position = 0
    while position < len(raw):
        match = _KEY_VALUE.match(raw, position)
        if match is None or match.end() == position:
            return {"input": raw}
        value = match.group(2).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        arguments[match.group(1)] = value
        position = match.end()
    return arguments


def parse_model_output(text: str) -> Activity:
    """Turn a model reply into exactly one activity.

    The reply must open with one of the grammar prefixes; anything else, or
    an ``ACTION`` line that is not shaped like ``tool(args)``, becomes a
    response carrying the whole text.
    """

    match = _PREFIX.match(text)
    if match is None:
        return ResponseActivity(body=text)

    kind = match.group(1).upper()
    remainder = match.group(2).strip()

    if kind == "ACTION":
        call = _ACTION_CALL.match(remainder)
        if call is None:
            return ResponseActivity(body=text)
        return ActionActivity(tool=call.group(1), arguments=_parse_arguments(call.group(2)))

    body = remainder or text
    if kind == "THINKING":
        return ThoughtActivity(body=body)
    if kind == "ELICITATION":
        return ElicitationActivity(prompt=body)
    if kind == "ERROR":
        return ErrorActivity(body=body)
    return ResponseActivity(body=body)


__all__ = [
    "Activity",
    "ActivityAction",
    "ActionActivity",
    "ElicitationActivity",
    "ErrorActivity",
    "ProcessStep",
    "ResponseActivity",
    "ThoughtActivity",
    "activity_content",
    "parse_model_output",
]
