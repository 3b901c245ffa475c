"""Request classification: ordered keyword rules, then a model fallback."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from .session.models import SessionContext

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    TASK_CREATION = "task_creation"
    COMPLEX_PROJECT = "complex_project"
    CODE_REVIEW = "code_review"
    BUG_FIX = "bug_fix"
    QUESTION = "question"
    STATUS_UPDATE = "status_update"
    GENERAL = "general"

    @classmethod
    def coerce(cls, value: object) -> "Intent":
        """Map arbitrary model output onto an intent, defaulting to ``general``."""

        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().strip("`'\".").lower()
        try:
            return cls(normalized)
        except ValueError:
            return cls.GENERAL


@dataclass(frozen=True, slots=True)
class KeywordRule:
    intent: Intent
    patterns: tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(re.search(pattern, text) for pattern in self.patterns)


# Order is precedence: the first rule that matches wins.
KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(Intent.TASK_CREATION, (r"\bcreate (?:a )?(?:new )?task", r"\bnew task")),
    KeywordRule(Intent.COMPLEX_PROJECT, (r"\bimplement", r"\bbuild", r"\bdevelop")),
    KeywordRule(Intent.CODE_REVIEW, (r"\breview", r"\bpr\b", r"\bpull request")),
    KeywordRule(Intent.BUG_FIX, (r"\bbug", r"\bfix", r"\berror")),
    KeywordRule(Intent.QUESTION, (r"\?", r"\bhow\b", r"\bwhat\b", r"\bwhy\b")),
    KeywordRule(Intent.STATUS_UPDATE, (r"\bstatus\b", r"\bprogress\b", r"\bupdate")),
)


class ModelClassifier(Protocol):
    async def classify(self, context: SessionContext) -> str:
        ...


def match_keywords(text: str, rules: Sequence[KeywordRule] = KEYWORD_RULES) -> Intent | None:
    lowered = text.lower()
    for rule in rules:
        if rule.matches(lowered):
            return rule.intent
    return None


class RequestClassifier:
    """Classify a session context into an :class:`Intent`."""

    def __init__(
        self,
        fallback: ModelClassifier | None = None,
        rules: Sequence[KeywordRule] = KEYWORD_RULES,
    ) -> None:
        self._fallback = fallback
        self._rules = tuple(rules)

    async def classify(self, context: SessionContext) -> Intent:
        intent = match_keywords(context.searchable_text(), self._rules)
        if intent is not None:
            return intent

        if self._fallback is None:
            return Intent.GENERAL

        try:
            answer = await self._fallback.classify(context)
        except Exception:
            logger.warning("Model classification failed; using general intent", exc_info=True)
            return Intent.GENERAL
        return Intent.coerce(answer)


__all__ = ["Intent", "KEYWORD_RULES", "KeywordRule", "ModelClassifier", "RequestClassifier", "match_keywords"]
