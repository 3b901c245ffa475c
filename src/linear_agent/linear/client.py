"""GraphQL client for the Linear API.

Only the mutations and queries the agent needs are implemented: agent
activities, issue creation and updates, comments, workflow states, issue
labels and proactive agent sessions.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx

from .models import CreatedIssue, WorkflowState

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.linear.app/graphql"
DEFAULT_TIMEOUT = 30.0

ACTIVITY_CREATE = """
mutation AgentActivityCreate($input: AgentActivityCreateInput!) {
  agentActivityCreate(input: $input) {
    success
    agentActivity { id createdAt }
  }
}
"""

ISSUE_CREATE = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id identifier url }
  }
}
"""

ISSUE_UPDATE = """
mutation IssueUpdate($id: String!, $input: IssueUpdateInput!) {
  issueUpdate(id: $id, input: $input) { success }
}
"""

COMMENT_CREATE = """
mutation CommentCreate($input: CommentCreateInput!) {
  commentCreate(input: $input) { success }
}
"""

WORKFLOW_STATES = """
query WorkflowStates($filter: WorkflowStateFilter) {
  workflowStates(filter: $filter) { nodes { id name type } }
}
"""

ISSUE_LABELS = """
query IssueLabels($filter: IssueLabelFilter) {
  issueLabels(filter: $filter) { nodes { id name } }
}
"""

SESSION_CREATE_ON_ISSUE = """
mutation AgentSessionCreateOnIssue($input: AgentSessionCreateOnIssue!) {
  agentSessionCreateOnIssue(input: $input) {
    success
    agentSession { id }
  }
}
"""


class LinearAPIError(RuntimeError):
    """Raised when Linear rejects a request or returns GraphQL errors."""


class IssueTracker(Protocol):
    """The slice of the issue tracker the orchestrator and bridge depend on."""

    async def create_activity(
        self, session_id: str, content: dict[str, Any], ephemeral: bool = False
    ) -> bool:
        ...

    async def create_issue(
        self,
        *,
        title: str,
        description: str,
        team_id: str,
        parent_id: str | None = None,
        labels: Sequence[str] | None = None,
        priority: int | None = None,
    ) -> CreatedIssue:
        ...

    async def update_issue(
        self, issue_id: str, *, state_id: str | None = None, description: str | None = None
    ) -> bool:
        ...

    async def create_comment(self, issue_id: str, body: str) -> bool:
        ...

    async def list_workflow_states(
        self, *, name: str | None = None, team_id: str | None = None
    ) -> list[WorkflowState]:
        ...

    async def create_session_on_issue(self, issue_id: str, reason: str | None = None) -> str | None:
        ...


class LinearClient:
    """Async Linear GraphQL client built on httpx."""

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("A Linear API key is required")
        self._api_key = api_key
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport

    async def request(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL document and return its ``data`` object."""

        headers = {"Authorization": self._api_key, "Content-Type": "application/json"}
        payload = {"query": query, "variables": variables or {}}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._api_url, json=payload, headers=headers)

        if response.status_code >= 400:
            raise LinearAPIError(f"Linear API error {response.status_code}: {response.text[:200]}")

        body = response.json()
        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            raise LinearAPIError(f"Linear GraphQL error: {messages}")
        return body.get("data") or {}

    async def create_activity(
        self, session_id: str, content: dict[str, Any], ephemeral: bool = False
    ) -> bool:
        activity_input: dict[str, Any] = {"agentSessionId": session_id, "content": content}
        if ephemeral:
            activity_input["ephemeral"] = True
        data = await self.request(ACTIVITY_CREATE, {"input": activity_input})
        return bool((data.get("agentActivityCreate") or {}).get("success"))

    async def create_issue(
        self,
        *,
        title: str,
        description: str,
        team_id: str,
        parent_id: str | None = None,
        labels: Sequence[str] | None = None,
        priority: int | None = None,
    ) -> CreatedIssue:
        issue_input: dict[str, Any] = {"title": title, "description": description, "teamId": team_id}
        if parent_id:
            issue_input["parentId"] = parent_id
        if priority is not None:
            issue_input["priority"] = priority
        if labels:
            label_ids = await self._resolve_label_ids(labels)
            if label_ids:
                issue_input["labelIds"] = label_ids

        data = await self.request(ISSUE_CREATE, {"input": issue_input})
        result = data.get("issueCreate") or {}
        if not result.get("success") or not result.get("issue"):
            raise LinearAPIError(f"Linear refused to create issue '{title}'")
        return CreatedIssue.model_validate(result["issue"])

    async def update_issue(
        self, issue_id: str, *, state_id: str | None = None, description: str | None = None
    ) -> bool:
        update: dict[str, Any] = {}
        if state_id is not None:
            update["stateId"] = state_id
        if description is not None:
            update["description"] = description
        if not update:
            return True
        data = await self.request(ISSUE_UPDATE, {"id": issue_id, "input": update})
        return bool((data.get("issueUpdate") or {}).get("success"))

    async def create_comment(self, issue_id: str, body: str) -> bool:
        data = await self.request(COMMENT_CREATE, {"input": {"issueId": issue_id, "body": body}})
        return bool((data.get("commentCreate") or {}).get("success"))

    async def list_workflow_states(
        self, *, name: str | None = None, team_id: str | None = None
    ) -> list[WorkflowState]:
        state_filter: dict[str, Any] = {}
        if name is not None:
            state_filter["name"] = {"eqIgnoreCase": name}
        if team_id is not None:
            state_filter["team"] = {"id": {"eq": team_id}}
        data = await self.request(WORKFLOW_STATES, {"filter": state_filter or None})
        nodes = (data.get("workflowStates") or {}).get("nodes") or []
        return [WorkflowState.model_validate(node) for node in nodes]

    async def create_session_on_issue(self, issue_id: str, reason: str | None = None) -> str | None:
        """Open an agent session on an issue and return its id."""

        session_input: dict[str, Any] = {"issueId": issue_id}
        if reason:
            session_input["reason"] = reason
        data = await self.request(SESSION_CREATE_ON_ISSUE, {"input": session_input})
        result = data.get("agentSessionCreateOnIssue") or {}
        if not result.get("success"):
            return None
        return (result.get("agentSession") or {}).get("id")

    async def _resolve_label_ids(self, labels: Sequence[str]) -> list[str]:
        data = await self.request(ISSUE_LABELS, {"filter": {"name": {"in": list(labels)}}})
        nodes = (data.get("issueLabels") or {}).get("nodes") or []
        found = {node["name"]: node["id"] for node in nodes}
        missing = [label for label in labels if label not in found]
        if missing:
            logger.debug("Skipping unknown Linear labels", extra={"labels": missing})
        return [found[label] for label in labels if label in found]


__all__ = ["IssueTracker", "LinearAPIError", "LinearClient"]
