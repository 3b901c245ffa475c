"""Records returned by the Linear API."""

from __future__ import annotations

from pydantic import BaseModel


class CreatedIssue(BaseModel):
    id: str
    identifier: str | None = None
    url: str | None = None


class WorkflowState(BaseModel):
    id: str
    name: str
    type: str | None = None


__all__ = ["CreatedIssue", "WorkflowState"]
