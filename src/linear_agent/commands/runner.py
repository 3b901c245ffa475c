"""Async runner for external command-line tools (TaskMaster, Codex)."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .utils import sanitize_environment


class CommandRunnerError(RuntimeError):
    """Base class for command runner errors."""


class CommandNotFoundError(CommandRunnerError):
    """Raised when a CLI executable cannot be located."""


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Execute a CLI asynchronously, optionally inside a working directory."""

    def __init__(self, name: str, executable: Path | None = None) -> None:
        self._name = name
        self._executable_path = self._resolve_executable(name, executable)

    @staticmethod
    def _resolve_executable(name: str, explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise CommandNotFoundError(f"{name} executable not found at {candidate}")

        binary = shutil.which(name)
        if binary is None:
            raise CommandNotFoundError(f"{name} executable not found on PATH")
        return Path(binary)

    @property
    def name(self) -> str:
        return self._name

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CommandResult:
        return await self._invoke("--version")

    async def run(
        self,
        *args: str,
        cwd: Path | None = None,
        flags: Sequence[str] | None = None,
    ) -> CommandResult:
        prefix = list(flags or [])
        return await self._invoke(*prefix, *args, cwd=cwd)

    async def _invoke(self, *args: str, cwd: Path | None = None) -> CommandResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CommandResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeCommandRunner(CommandRunner):
    """Test double that simulates CLI responses."""

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[CommandResult] | None = None,
        name: str = "fake",
    ) -> None:
        self._name = name
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._cwds: list[Path | None] = []
        self._executable_path = Path(f"/tmp/fake-{name}")

    async def _invoke(self, *args: str, cwd: Path | None = None) -> CommandResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        self._cwds.append(cwd)
        if self._responses:
            return self._responses.pop(0)
        return CommandResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def cwds(self) -> list[Path | None]:
        return self._cwds
