"""Linear issue-tracker client."""

from .client import IssueTracker, LinearAPIError, LinearClient
from .models import CreatedIssue, WorkflowState

__all__ = [
    "CreatedIssue",
    "IssueTracker",
    "LinearAPIError",
    "LinearClient",
    "WorkflowState",
]
