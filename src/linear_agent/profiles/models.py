"""Prompt profiles that shape how the agent talks to its model backend."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_SYSTEM_PROMPT = """You are a helpful Linear agent assistant. You must respond with EXACTLY ONE activity type per response.

CRITICAL: You can only emit ONE of these per response - never combine them:

THINKING: Use this for observations, analysis, or planning next steps
ACTION: Use this to call tools or perform operations (format: ACTION: tool_name(parameters))
ELICITATION: Ask the user for more information (ends your turn)
RESPONSE: Final response when task is complete (ends your turn)
ERROR: Report errors or problems (ends your turn)

RESPONSE FORMAT RULES:
1. Start with exactly ONE activity type
2. NEVER combine multiple activity types in a single response
3. Each response must be complete and standalone

For Linear-specific operations:
- Create issues with clear titles and descriptions
- Use labels to categorize work
- Set appropriate priority levels (0=None, 1=Urgent, 2=High, 3=Normal, 4=Low)

Context handling:
- Understand follow-up questions from conversation history
- Reference previous activities when relevant"""

DEFAULT_CLASSIFICATION_PROMPT = """Classify this request into one of these categories:
- task_creation: Creating new tasks or issues
- complex_project: Large implementation requiring multiple steps
- code_review: Reviewing code or PRs
- bug_fix: Fixing bugs or errors
- question: Answering questions
- status_update: Providing status or progress updates
- general: Other requests

Respond with just the category name."""

DEFAULT_TASK_EXTRACTION_PROMPT = """Extract task details from the request below.

Provide a JSON object with:
- title: Clear, concise task title
- description: Detailed description
- labels: Array of relevant labels
- priority: Number 0-4 (0=None, 1=Urgent, 2=High, 3=Normal, 4=Low)

Respond only with valid JSON."""

DEFAULT_CODE_REVIEW_PROMPT = """Review the code or change described below and provide feedback.

Structure your review with:
1. Summary of changes
2. Positive aspects
3. Issues or concerns
4. Suggestions for improvement
5. Overall recommendation

Be constructive and specific."""

DEFAULT_BUG_ANALYSIS_PROMPT = """Analyze this bug report.

If you need more information before proposing a fix, start your reply with
NEED_INFO: followed by the single question to ask the reporter.
Otherwise describe the root cause and the fix."""

DEFAULT_BUG_FIX_PROMPT = """Propose a fix for the bug below using the reporter's latest answer.
Describe the root cause, the change to make, and how to verify it."""

DEFAULT_STATUS_PROMPT = """Summarize the current status of this work item for the team.
Mention what is done, what is in progress and what is blocked."""


class PromptProfile(BaseModel):
    """Prompts and defaults used by the responder for one deployment."""

    id: str = Field(..., description="Unique identifier for the profile.")
    title: str = Field(default="", description="Display title for the profile.")
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt enforcing the one-activity response grammar.",
    )
    classification_prompt: str = Field(default=DEFAULT_CLASSIFICATION_PROMPT)
    task_extraction_prompt: str = Field(default=DEFAULT_TASK_EXTRACTION_PROMPT)
    code_review_prompt: str = Field(default=DEFAULT_CODE_REVIEW_PROMPT)
    bug_analysis_prompt: str = Field(default=DEFAULT_BUG_ANALYSIS_PROMPT)
    bug_fix_prompt: str = Field(default=DEFAULT_BUG_FIX_PROMPT)
    status_prompt: str = Field(default=DEFAULT_STATUS_PROMPT)
    bug_followup_options: list[str] = Field(
        default_factory=lambda: [
            "Always",
            "Sometimes",
            "Only with specific inputs",
            "After certain actions",
        ],
        description="Options offered when the agent asks for more bug details.",
    )
    complexity_indicators: list[str] = Field(
        default_factory=lambda: [
            "implement",
            "build",
            "create system",
            "develop",
            "architecture",
            "refactor",
        ],
        description="Phrases that add a complexity-analysis step to the visible reasoning.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Prompt profile id must not be empty")
        return normalized

    @field_validator("bug_followup_options", "complexity_indicators", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("bug_followup_options and complexity_indicators must be sequences of strings")


DEFAULT_PROFILE = PromptProfile(id="default", title="Linear agent")


__all__ = ["DEFAULT_PROFILE", "PromptProfile"]
