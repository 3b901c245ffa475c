"""Async wrappers around the external CLIs the agent drives."""

from .runner import CommandResult, CommandRunner, CommandRunnerError, CommandNotFoundError

__all__ = [
    "CommandRunner",
    "CommandResult",
    "CommandRunnerError",
    "CommandNotFoundError",
]
