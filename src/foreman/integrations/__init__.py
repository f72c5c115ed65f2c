"""
foreman.integrations - External Collaborators
===============================================

    - llm:            completion providers (mock, anthropic)
    - command_runner: shell command execution (local, sandboxed)
    - sandbox:        container runtime for isolated execution
"""

from foreman.integrations.command_runner import (
    CommandRunner,
    LocalCommandRunner,
    SandboxCommandRunner,
)
from foreman.integrations.sandbox import DockerSandboxRuntime, SandboxRuntime

__all__ = [
    "CommandRunner",
    "DockerSandboxRuntime",
    "LocalCommandRunner",
    "SandboxCommandRunner",
    "SandboxRuntime",
]
