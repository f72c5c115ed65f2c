"""
foreman.integrations.sandbox - Container Sandbox Runtime
==========================================================

Isolated execution of candidate code. The default runtime drives the docker
CLI through a CommandRunner, so no Docker SDK is required and tests can
script the CLI output.

Container constraints (from SandboxConfig):
    --memory / --cpus               resource quota
    --security-opt=no-new-privileges:true
    --cap-drop=ALL
    --network=none                  when network_disabled and not writable
    --tmpfs /tmp:rw,noexec,nosuid,size=100m
    -v <workspace>:/assessment:ro   read-only project mount

A writable start mounts the project read-write and keeps the network.
SandboxCommandRunner starts its container writable for engine tasks;
candidate code runs in the read-only, offline container.

Lifecycle:
    start(candidate_id, kind, workspace, writable) → docker create + docker start
    exec_in(candidate_id, command)        → docker exec, with timeout
    stop(candidate_id)                    → docker rm -f
    stop_all()                            → stop every tracked container
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import structlog

from foreman.core.config import SandboxConfig
from foreman.core.exceptions import CollaboratorError
from foreman.core.models import CommandResult
from foreman.integrations.command_runner import CommandRunner


logger = structlog.get_logger()


# Images per candidate kind; unknown kinds fall back to the configured image.
_KIND_IMAGES = {
    "python": "python:3.11-slim",
    "node": "node:20-slim",
}


class SandboxRuntime(ABC):
    """Abstract isolated executor keyed by candidate id."""

    @abstractmethod
    async def start(
        self,
        candidate_id: str,
        kind: str,
        workspace: Path,
        writable: bool = False,
    ) -> str:
        """Create and start a sandbox. Returns the runtime's container id."""
        ...

    @abstractmethod
    async def exec_in(
        self,
        candidate_id: str,
        command: str,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        ...

    @abstractmethod
    async def stop(self, candidate_id: str) -> None:
        ...

    async def stop_all(self) -> None:
        for candidate_id in list(self.active_candidates()):
            await self.stop(candidate_id)

    @abstractmethod
    def active_candidates(self) -> list[str]:
        ...


class DockerSandboxRuntime(SandboxRuntime):
    """Sandbox runtime backed by the docker CLI.

    Args:
        config: Resource and security settings.
        host_runner: Runner used to invoke ``docker`` on the host.
    """

    def __init__(self, config: SandboxConfig, host_runner: CommandRunner) -> None:
        self._config = config
        self._host_runner = host_runner
        self._containers: dict[str, str] = {}
        self._logger = logger.bind(component="docker_sandbox")

    def active_candidates(self) -> list[str]:
        return list(self._containers)

    def build_create_command(
        self,
        candidate_id: str,
        kind: str,
        workspace: Path,
        writable: bool = False,
    ) -> str:
        image = _KIND_IMAGES.get(kind, self._config.image)
        args = [
            "docker", "create",
            "--name", f"foreman-{candidate_id}",
            f"--memory={self._config.memory_limit}",
            f"--cpus={self._config.cpu_limit}",
            "--security-opt=no-new-privileges:true",
            "--cap-drop=ALL",
        ]
        if self._config.network_disabled and not writable:
            args.append("--network=none")
        args += [
            "--tmpfs", "/tmp:rw,noexec,nosuid,size=100m",
            "-v", f"{workspace.resolve()}:{self._config.workdir}" + ("" if writable else ":ro"),
            "-w", self._config.workdir,
            "-e", f"PYTHONPATH={self._config.workdir}",
            image,
            "sleep", "infinity",
        ]
        return shlex.join(args)

    async def start(
        self,
        candidate_id: str,
        kind: str,
        workspace: Path,
        writable: bool = False,
    ) -> str:
        if candidate_id in self._containers:
            return self._containers[candidate_id]

        created = await self._host_runner.run(
            self.build_create_command(candidate_id, kind, workspace, writable),
            cwd=workspace,
        )
        if not created.success:
            raise CollaboratorError(
                message=f"docker create failed: {created.error_text}",
                collaborator="docker",
                details={"candidate_id": candidate_id},
            )
        container_id = created.stdout.strip()

        started = await self._host_runner.run(f"docker start {container_id}", cwd=workspace)
        if not started.success:
            await self._host_runner.run(f"docker rm -f {container_id}", cwd=workspace)
            raise CollaboratorError(
                message=f"docker start failed: {started.error_text}",
                collaborator="docker",
                details={"candidate_id": candidate_id, "container_id": container_id},
            )

        self._containers[candidate_id] = container_id
        self._logger.info("sandbox_started", candidate_id=candidate_id, container_id=container_id[:12])
        return container_id

    async def exec_in(
        self,
        candidate_id: str,
        command: str,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        container_id = self._containers.get(candidate_id)
        if container_id is None:
            raise CollaboratorError(
                message=f"No sandbox running for candidate: {candidate_id}",
                collaborator="docker",
                details={"candidate_id": candidate_id},
            )
        return await self._host_runner.run(
            f"docker exec {container_id} sh -c {shlex.quote(command)}",
            cwd=Path("."),
            timeout=timeout if timeout is not None else self._config.timeout_seconds,
        )

    async def stop(self, candidate_id: str) -> None:
        container_id = self._containers.pop(candidate_id, None)
        if container_id is None:
            return
        result = await self._host_runner.run(f"docker rm -f {container_id}", cwd=Path("."))
        if not result.success:
            self._logger.warning(
                "sandbox_cleanup_failed",
                candidate_id=candidate_id,
                error=result.error_text,
            )
        else:
            self._logger.info("sandbox_stopped", candidate_id=candidate_id)
