"""Model-backed responder: prompt building and the per-intent model calls."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..activities import Activity, ActivityAction, ProcessStep, parse_model_output
from ..profiles import DEFAULT_PROFILE, PromptProfile
from ..session.models import SessionContext
from .backend import CompletionBackend

logger = logging.getLogger(__name__)

PRIORITY_NAMES = ("None", "Urgent", "High", "Normal", "Low")
DEFAULT_PRIORITY = 3
COMPLEXITY_STEP_DELAY = 0.5
DEFAULT_BUG_QUESTION = "Could you provide more details about when this bug occurs?"

_NEED_INFO = re.compile(r"^\s*NEED_INFO\s*:\s*(.*)\Z", re.IGNORECASE | re.DOTALL)
_JSON_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


class TaskDetails(BaseModel):
    title: str
    description: str = ""
    labels: list[str] = Field(default_factory=list)
    priority: int = Field(default=DEFAULT_PRIORITY, ge=0, le=4)


class ReviewResult(BaseModel):
    content: str
    actions: list[ActivityAction] = Field(default_factory=list)


class BugAnalysis(BaseModel):
    needs_more_info: bool
    question: str | None = None
    options: list[str] = Field(default_factory=list)
    solution: str | None = None


REVIEW_ACTIONS = (
    ActivityAction(label="Apply Suggestions", command="/apply"),
    ActivityAction(label="Request Changes", command="/changes"),
)


def describe_context(context: SessionContext) -> str:
    """Render the request context as the plain-text block sent to the model."""

    lines: list[str] = []
    if context.issue_title:
        lines.append(f"Issue: {context.issue_title}")
    if context.issue_description:
        lines.append(f"Description: {context.issue_description}")
    if context.comment:
        lines.append(f"\nUser comment: {context.comment}")
    if context.user_prompt:
        lines.append(f"\nUser prompt: {context.user_prompt}")
    if context.previous_comments:
        lines.append("\nPrevious conversation:")
        for comment in context.previous_comments:
            suffix = f" ({comment.created_at})" if comment.created_at else ""
            lines.append(f"- {comment.body}{suffix}")
    if context.guidance:
        lines.append(f"\nWorkspace guidance: {context.guidance}")
    if context.labels:
        lines.append(f"\nLabels: {', '.join(context.labels)}")
    if context.priority is not None:
        name = PRIORITY_NAMES[context.priority] if 0 <= context.priority < len(PRIORITY_NAMES) else "Unknown"
        lines.append(f"\nPriority: {name}")
    return "\n".join(lines)


def build_prompt(context: SessionContext) -> str:
    return f"{describe_context(context)}\n\n\nProvide a helpful response following the activity format rules."


def _decode_json_object(text: str) -> dict[str, Any] | None:
    candidates = [text.strip()]
    fenced = _JSON_FENCE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(decoded, dict):
            return decoded
    return None


class Responder:
    """Ask the model backend for replies shaped by a :class:`PromptProfile`."""

    def __init__(self, backend: CompletionBackend, profile: PromptProfile | None = None) -> None:
        self._backend = backend
        self._profile = profile or DEFAULT_PROFILE

    @property
    def profile(self) -> PromptProfile:
        return self._profile

    async def _ask(self, instructions: str, context: SessionContext) -> str:
        return await self._backend.complete(
            self._profile.system_prompt,
            f"{instructions}\n\nContext:\n{describe_context(context)}",
        )

    async def process_request(self, context: SessionContext) -> Activity:
        reply = await self._backend.complete(self._profile.system_prompt, build_prompt(context))
        activity = parse_model_output(reply)
        logger.debug("Model reply parsed", extra={"activity_type": activity.type})
        return activity

    def initial_thought(self, context: SessionContext) -> str:
        title = (context.issue_title or "").lower()
        if "bug" in title:
            return "🐛 Analyzing the bug report..."
        if "implement" in title:
            return "🚀 Planning implementation approach..."
        if context.comment and "?" in context.comment:
            return "💭 Processing your question..."
        return "🤔 Analyzing your request..."

    def is_complex(self, context: SessionContext) -> bool:
        text = " ".join(
            part for part in (context.issue_title, context.issue_description, context.comment) if part
        ).lower()
        return any(indicator in text for indicator in self._profile.complexity_indicators)

    def processing_steps(self, context: SessionContext) -> list[ProcessStep]:
        """Visible reasoning played before a generic reply."""

        steps = [ProcessStep(kind="thought", message=self.initial_thought(context))]
        if self.is_complex(context):
            steps.append(
                ProcessStep(
                    kind="action",
                    tool="analyze_complexity",
                    args={"issue": context.issue_title or context.issue_id or ""},
                    delay=COMPLEXITY_STEP_DELAY,
                )
            )
        return steps

    async def classify(self, context: SessionContext) -> str:
        reply = await self._ask(self._profile.classification_prompt, context)
        return reply.strip().lower()

    async def extract_task_details(self, context: SessionContext) -> TaskDetails:
        reply = await self._ask(self._profile.task_extraction_prompt, context)
        decoded = _decode_json_object(reply)
        if decoded is not None:
            try:
                return TaskDetails.model_validate(decoded)
            except ValidationError:
                logger.debug("Task details failed validation; using context", exc_info=True)

        return TaskDetails(
            title=context.issue_title or "New Task",
            description=context.issue_description or context.comment or context.user_prompt or "",
            labels=list(context.labels),
            priority=context.priority if context.priority is not None else DEFAULT_PRIORITY,
        )

    async def perform_code_review(self, context: SessionContext) -> ReviewResult:
        reply = await self._ask(self._profile.code_review_prompt, context)
        return ReviewResult(content=reply.strip(), actions=list(REVIEW_ACTIONS))

    async def analyze_bug(self, context: SessionContext) -> BugAnalysis:
        reply = await self._ask(self._profile.bug_analysis_prompt, context)
        need_info = _NEED_INFO.match(reply)
        if need_info:
            return BugAnalysis(
                needs_more_info=True,
                question=need_info.group(1).strip() or DEFAULT_BUG_QUESTION,
                options=list(self._profile.bug_followup_options),
            )
        return BugAnalysis(needs_more_info=False, solution=reply.strip())

    async def provide_bug_fix(self, context: SessionContext, answer: str) -> str:
        reply = await self._ask(f"{self._profile.bug_fix_prompt}\n\nReporter's answer: {answer}", context)
        return reply.strip()

    async def answer_question(self, context: SessionContext) -> Activity:
        return await self.process_request(context)

    async def summarize_status(self, context: SessionContext) -> str:
        reply = await self._ask(self._profile.status_prompt, context)
        return reply.strip()


__all__ = [
    "BugAnalysis",
    "Responder",
    "ReviewResult",
    "TaskDetails",
    "build_prompt",
    "describe_context",
]
