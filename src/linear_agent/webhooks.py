"""Inbound Linear webhooks: signature check, acknowledgement and dispatch.

The acknowledgement never depends on processing. Once the signature
verifies, the event is handed to a background task and the caller gets a
200 straight away, so Linear does not redeliver.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .session.models import IssueRef, PromptActivity, Session
from .session.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "linear-signature"
PROACTIVE_LABELS = frozenset({"needs-ai", "automation"})
PROACTIVE_NOTIFICATIONS = frozenset({"mention", "assignment"})


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check a hex HMAC-SHA256 of the raw body in constant time."""

    if not signature or not secret:
        return False
    return hmac.compare_digest(signature.strip().lower(), compute_signature(body, secret))


def _label_names(issue: dict[str, Any]) -> set[str]:
    labels = issue.get("labels") or []
    if isinstance(labels, dict):
        labels = labels.get("nodes") or []
    return {label.get("name", "") if isinstance(label, dict) else str(label) for label in labels}


def should_create_proactive_session(notification: dict[str, Any]) -> bool:
    issue = notification.get("issue")
    if not isinstance(issue, dict):
        return False
    priority = issue.get("priority")
    if isinstance(priority, int) and priority in (1, 2):
        return True
    if _label_names(issue) & PROACTIVE_LABELS:
        return True
    return notification.get("type") == "assignment"


def proactive_reason(notification: dict[str, Any]) -> str:
    if notification.get("type") == "assignment":
        return "You were assigned to this issue"
    priority = (notification.get("issue") or {}).get("priority")
    if isinstance(priority, int) and priority in (1, 2):
        return "High priority issue detected"
    return "Automated assistance triggered"


class WebhookEvent(BaseModel):
    type: str
    action: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class WebhookDispatcher:
    """Verify, acknowledge and process Linear webhook deliveries."""

    def __init__(self, orchestrator: SessionOrchestrator, secret: str | None) -> None:
        self._orchestrator = orchestrator
        self._secret = secret
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> set[asyncio.Task[None]]:
        return set(self._pending)

    async def receive(self, body: bytes, signature: str | None) -> tuple[int, dict[str, Any]]:
        """Return the HTTP status and JSON body to answer the delivery with."""

        if not verify_signature(body, signature, self._secret):
            logger.warning("Invalid webhook signature")
            return 401, {"error": "Invalid signature"}

        try:
            event = WebhookEvent.model_validate(json.loads(body))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Unreadable webhook payload", exc_info=True)
            return 200, {"received": True, "error": True}

        self.schedule(event)
        return 200, {"received": True}

    def schedule(self, event: WebhookEvent) -> asyncio.Task[None]:
        task = asyncio.create_task(self.process(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish processing."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def process(self, event: WebhookEvent) -> None:
        try:
            if event.type == "AgentSessionEvent":
                await self._handle_agent_session_event(event)
            elif event.type == "PermissionChange":
                self._handle_permission_change(event)
            elif event.type == "InboxNotification":
                await self._handle_inbox_notification(event)
            else:
                logger.debug("Ignoring webhook type", extra={"webhook_type": event.type})
        except Exception:
            logger.exception(
                "Webhook processing error",
                extra={"webhook_type": event.type, "action": event.action},
            )

    async def _handle_agent_session_event(self, event: WebhookEvent) -> None:
        session = Session.model_validate(event.data.get("agentSession") or {})
        raw_activity = event.data.get("agentActivity")
        activity = PromptActivity.model_validate(raw_activity) if raw_activity else None
        logger.info(
            "Agent session event",
            extra={
                "action": event.action,
                "session_id": session.id,
                "issue_id": session.issue.id if session.issue else None,
            },
        )
        await self._orchestrator.handle_event(event.action or "", session, activity)

    def _handle_permission_change(self, event: WebhookEvent) -> None:
        workspace = event.data.get("workspace") or {}
        teams = event.data.get("teams") or []
        logger.info(
            "Permission change",
            extra={
                "workspace_id": workspace.get("id"),
                "teams": [team.get("id") for team in teams if isinstance(team, dict)],
            },
        )
        if workspace.get("id"):
            self._orchestrator.update_permissions(workspace["id"], event.data.get("permissions"))

    async def _handle_inbox_notification(self, event: WebhookEvent) -> None:
        notification = event.data.get("notification") or {}
        if notification.get("type") not in PROACTIVE_NOTIFICATIONS:
            return
        logger.info(
            "Inbox notification",
            extra={
                "notification_type": notification.get("type"),
                "issue_id": (notification.get("issue") or {}).get("id"),
            },
        )
        if should_create_proactive_session(notification):
            issue = IssueRef.model_validate(notification["issue"])
            await self._orchestrator.create_proactive_session(issue, proactive_reason(notification))


__all__ = [
    "SIGNATURE_HEADER",
    "WebhookDispatcher",
    "WebhookEvent",
    "compute_signature",
    "proactive_reason",
    "should_create_proactive_session",
    "verify_signature",
]
