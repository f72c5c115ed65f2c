"""
foreman.integrations.command_runner - Shell Command Execution
===============================================================

Run-command tasks, environment setup and validation all execute shell
commands through a CommandRunner. The engine never spawns processes itself,
so tests substitute a scripted runner and never touch the host shell.

    ┌─────────────────┐   run(cmd, cwd)   ┌──────────────────────┐
    │ ExecutionEngine │ ────────────────→ │   CommandRunner      │
    │ capabilities    │ ←── CommandResult │     (abstract)       │
    └─────────────────┘                   └──────────┬───────────┘
                                         ┌───────────┴───────────┐
                                 ┌───────▼────────┐    ┌─────────▼──────────┐
                                 │ LocalCommand   │    │ SandboxCommand     │
                                 │ Runner         │    │ Runner (container) │
                                 └────────────────┘    └────────────────────┘

Contract:
    ``run`` never raises for a failing or hanging command. A non-zero exit
    code and a timeout both come back as ``CommandResult(success=False)``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, TYPE_CHECKING

import structlog

from foreman.core.models import CommandResult

if TYPE_CHECKING:
    from foreman.integrations.sandbox import SandboxRuntime


logger = structlog.get_logger()


class CommandRunner(ABC):
    """Abstract shell command executor."""

    @abstractmethod
    async def run(
        self,
        command: str,
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` in ``cwd`` and capture its output.

        Args:
            command: Shell command line.
            cwd: Working directory. Created if missing.
            timeout: Seconds before the command is killed. None uses the
                runner default.
        """
        ...


class LocalCommandRunner(CommandRunner):
    """Runs commands with ``asyncio.create_subprocess_shell`` on the host."""

    def __init__(self, default_timeout: float = 30.0) -> None:
        self._default_timeout = default_timeout
        self._logger = logger.bind(component="local_command_runner")

    async def run(
        self,
        command: str,
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        limit = timeout if timeout is not None else self._default_timeout
        cwd.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()

        self._logger.debug("command_started", command=command, cwd=str(cwd))
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            duration = time.monotonic() - started
            self._logger.warning("command_timed_out", command=command, timeout=limit)
            return CommandResult(
                success=False,
                stderr=f"Command timed out after {limit:g}s: {command}",
                exit_code=proc.returncode,
                duration_seconds=duration,
                timed_out=True,
            )

        duration = time.monotonic() - started
        result = CommandResult(
            success=proc.returncode == 0,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=proc.returncode,
            duration_seconds=duration,
        )
        self._logger.debug(
            "command_finished",
            command=command,
            exit_code=proc.returncode,
            duration_seconds=round(duration, 3),
        )
        return result


class SandboxCommandRunner(CommandRunner):
    """Runs commands inside a sandbox container bound to the project.

    The container is started on first use and reused for later commands.
    ``cwd`` is translated to the matching directory under the sandbox mount.
    The container is started writable so engine tasks can modify the project.
    """

    def __init__(
        self,
        runtime: "SandboxRuntime",
        project_path: Path,
        candidate_id: str = "foreman",
        kind: str = "python",
    ) -> None:
        self._runtime = runtime
        self._project_path = project_path
        self._candidate_id = candidate_id
        self._kind = kind
        self._started = False
        self._logger = logger.bind(component="sandbox_command_runner", candidate_id=candidate_id)

    async def run(
        self,
        command: str,
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        if not self._started:
            await self._runtime.start(self._candidate_id, self._kind, self._project_path, writable=True)
            self._started = True

        try:
            relative = cwd.resolve().relative_to(self._project_path.resolve())
        except ValueError:
            relative = Path(".")
        if str(relative) not in ("", "."):
            command = f"cd {relative.as_posix()} && {command}"

        return await self._runtime.exec_in(self._candidate_id, command, timeout)

    async def close(self) -> None:
        if self._started:
            await self._runtime.stop(self._candidate_id)
            self._started = False
