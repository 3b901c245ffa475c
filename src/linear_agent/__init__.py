"""Linear agent-session orchestrator backed by TaskMaster and a chat model."""

__version__ = "0.1.0"

__all__ = ["__version__"]
