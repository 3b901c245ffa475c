"""Model backend and responder."""

from .backend import BackendError, ChatCompletionBackend, CompletionBackend, ProviderConfig, resolve_provider
from .responder import BugAnalysis, Responder, ReviewResult, TaskDetails

__all__ = [
    "BackendError",
    "BugAnalysis",
    "ChatCompletionBackend",
    "CompletionBackend",
    "ProviderConfig",
    "Responder",
    "ReviewResult",
    "TaskDetails",
    "resolve_provider",
]
