"""
Shared Test Fixtures for Foreman
==================================

Fixtures are organized by layer:

    1. Configuration fixtures
    2. Integration fixtures (scripted command runner, mock LLM provider)
    3. Orchestration fixtures (bus, reporter, resolver, engine)

No fixture touches the network or runs a real shell command: commands go
through FakeCommandRunner, which returns scripted CommandResults.
"""

from __future__ import annotations

from collections import deque
from pathlib import Path
from typing import Optional

import pytest

from foreman.core.config import DatasetConfig, ExecutionConfig
from foreman.core.models import CommandResult
from foreman.integrations.command_runner import CommandRunner
from foreman.integrations.llm.mock import MockLLMProvider
from foreman.orchestration.coordination_bus import InMemoryCoordinationBus
from foreman.orchestration.error_resolver import ErrorResolver
from foreman.orchestration.execution_engine import ExecutionEngine
from foreman.orchestration.notifications import ProgressReporter


# =============================================================================
# Scripted Command Runner
# =============================================================================
def ok(stdout: str = "") -> CommandResult:
    return CommandResult(success=True, stdout=stdout, exit_code=0)


def fail(stderr: str, exit_code: int = 1) -> CommandResult:
    return CommandResult(success=False, stderr=stderr, exit_code=exit_code)


class FakeCommandRunner(CommandRunner):
    """CommandRunner returning scripted results.

    ``script(fragment, *results)`` queues results for any command containing
    ``fragment``; the last queued result repeats once the others are used.
    Unscripted commands succeed.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Path]] = []
        self._scripts: list[tuple[str, deque[CommandResult]]] = []

    def script(self, fragment: str, *results: CommandResult) -> None:
        self._scripts.append((fragment, deque(results)))

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]

    async def run(
        self,
        command: str,
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        self.calls.append((command, cwd))
        for fragment, results in self._scripts:
            if fragment in command and results:
                return results.popleft() if len(results) > 1 else results[0]
        return ok(f"ran: {command}")


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def execution_config():
    """ExecutionConfig with no inter-task delay."""
    return ExecutionConfig(inter_task_delay_seconds=0)


@pytest.fixture
def dataset_config():
    """DatasetConfig with small synthetic defaults."""
    return DatasetConfig(synthetic_rows=20, synthetic_features=3)


@pytest.fixture
def project_path(tmp_path):
    """Empty project directory under pytest's tmp_path."""
    path = tmp_path / "project"
    path.mkdir()
    return path


# =============================================================================
# Integrations
# =============================================================================

@pytest.fixture
def runner():
    """FakeCommandRunner where every command succeeds until scripted."""
    return FakeCommandRunner()


@pytest.fixture
def mock_llm_provider():
    """Fresh MockLLMProvider with no queued responses."""
    return MockLLMProvider()


# =============================================================================
# Orchestration
# =============================================================================

@pytest.fixture
async def bus():
    """Connected InMemoryCoordinationBus."""
    instance = InMemoryCoordinationBus()
    await instance.connect()
    yield instance
    await instance.disconnect()


@pytest.fixture
def reporter(bus):
    """ProgressReporter publishing on the test bus."""
    return ProgressReporter(bus)


@pytest.fixture
def resolver(bus, mock_llm_provider, project_path, reporter):
    """ErrorResolver with the mock provider and a budget of 2 attempts."""
    return ErrorResolver(
        bus,
        llm_provider=mock_llm_provider,
        max_retry_attempts=2,
        project_path=project_path,
        reporter=reporter,
    )


@pytest.fixture
def engine(bus, runner, project_path, execution_config, dataset_config, reporter, resolver):
    """ExecutionEngine wired to the resolver through the bus."""
    return ExecutionEngine(
        bus,
        runner,
        project_path,
        config=execution_config,
        datasets=dataset_config,
        reporter=reporter,
    )
