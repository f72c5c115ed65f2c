"""
foreman.capabilities - Default Bus Capabilities
=================================================

Named async operations registered on the CoordinationBus and invoked by the
ExecutionEngine, the ErrorResolver and external callers:

    files.py        file_operations, data_share, agent_coordination
    datasets.py     dataset_search, dataset_download, synthetic_dataset
    environment.py  environment_setup, terminal_execution, sandbox_execution

``error_resolution``, ``task_execution`` and ``file_management`` are not
here: the components that own them register them at construction.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import httpx

from foreman.capabilities.datasets import DatasetService, register_dataset_capabilities
from foreman.capabilities.environment import EnvironmentSetup, register_environment_capabilities
from foreman.capabilities.files import FileOperations, register_file_capabilities
from foreman.core.config import DatasetConfig, ExecutionConfig
from foreman.integrations.command_runner import CommandRunner
from foreman.integrations.llm.base import BaseLLMProvider
from foreman.integrations.sandbox import SandboxRuntime
from foreman.orchestration.coordination_bus import CoordinationBus


def register_default_capabilities(
    bus: CoordinationBus,
    project_path: str | Path,
    command_runner: CommandRunner,
    llm_provider: Optional[BaseLLMProvider] = None,
    datasets: Optional[DatasetConfig] = None,
    execution: Optional[ExecutionConfig] = None,
    sandbox: Optional[SandboxRuntime] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    seed: Optional[int] = None,
) -> None:
    """Register every default capability on ``bus``."""
    register_file_capabilities(bus, project_path)
    register_dataset_capabilities(
        bus,
        DatasetService(
            project_path,
            config=datasets,
            llm_provider=llm_provider,
            http_client=http_client,
            seed=seed,
        ),
    )
    register_environment_capabilities(
        bus,
        EnvironmentSetup(project_path, command_runner, config=execution),
        sandbox=sandbox,
        project_path=project_path,
    )


__all__ = [
    "DatasetService",
    "EnvironmentSetup",
    "FileOperations",
    "register_default_capabilities",
]
