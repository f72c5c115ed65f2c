"""
foreman.capabilities.environment - Project Environment Capabilities
=====================================================================

    environment_setup        project skeleton, requirements.txt from the tech
                             stack, setup.py and .env.example; with
                             ``full=True`` also a setup script, a virtual
                             environment and an install
    terminal_execution       run one command through the command runner
    sandbox_execution        run one command inside a sandbox container
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import structlog

from foreman.core.config import ExecutionConfig
from foreman.core.exceptions import CollaboratorError, ExecutionError
from foreman.integrations.command_runner import CommandRunner
from foreman.integrations.sandbox import SandboxRuntime
from foreman.orchestration.coordination_bus import Capability, CoordinationBus


logger = structlog.get_logger()

SKELETON_DIRECTORIES = ("src", "tests", "datasets", "docs")

BASE_REQUIREMENTS = ["pytest>=7.0.0", "black>=22.0.0", "flake8>=4.0.0"]

# Tech-stack keyword → requirement line.
STACK_REQUIREMENTS = {
    "pandas": "pandas>=1.5.0",
    "numpy": "numpy>=1.21.0",
    "sklearn": "scikit-learn>=1.1.0",
    "scikit-learn": "scikit-learn>=1.1.0",
    "matplotlib": "matplotlib>=3.5.0",
    "seaborn": "seaborn>=0.11.0",
    "requests": "requests>=2.28.0",
    "flask": "flask>=2.2.0",
    "sqlalchemy": "sqlalchemy>=1.4.0",
    "jupyter": "jupyter>=1.0.0",
}

ENV_EXAMPLE = "PYTHONPATH=.\nDATASET_PATH=./datasets/\nLOG_LEVEL=INFO\n"

SETUP_PY_TEMPLATE = '''from setuptools import find_packages, setup

setup(
    name="{name}",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={{"": "src"}},
    install_requires=[
{requirements}
    ],
)
'''

SETUP_SCRIPT_TEMPLATE = """#!/usr/bin/env bash
set -e
python -m venv {venv}
source {venv}/bin/activate
pip install --upgrade pip
pip install -r requirements.txt
"""


def build_requirements(tech_stack: list[str]) -> list[str]:
    """Base requirements plus one line per recognised stack entry, deduplicated."""
    requirements = list(BASE_REQUIREMENTS)
    for entry in tech_stack:
        line = STACK_REQUIREMENTS.get(str(entry).strip().lower())
        if line and line not in requirements:
            requirements.append(line)
    return requirements


class EnvironmentSetup:
    """Creates the assessment project skeleton."""

    def __init__(
        self,
        project_path: str | Path,
        command_runner: CommandRunner,
        config: Optional[ExecutionConfig] = None,
    ) -> None:
        self._project_path = Path(project_path)
        self._runner = command_runner
        self._config = config or ExecutionConfig()
        self._logger = logger.bind(component="environment_setup")

    async def setup(self, params: dict[str, Any]) -> dict[str, Any]:
        tech_stack = list(params.get("tech_stack") or [])
        project_name = str(params.get("project_name") or "assessment").replace(" ", "_").lower()
        full = bool(params.get("full", False))

        directories = list(SKELETON_DIRECTORIES) + (["scripts"] if full else [])
        for directory in directories:
            (self._project_path / directory).mkdir(parents=True, exist_ok=True)

        requirements = build_requirements(tech_stack)
        files = {
            "requirements.txt": "\n".join(requirements) + "\n",
            "setup.py": SETUP_PY_TEMPLATE.format(
                name=project_name,
                requirements="\n".join(f'        "{line}",' for line in requirements),
            ),
            ".env.example": ENV_EXAMPLE,
        }
        if full:
            files["scripts/setup_env.sh"] = SETUP_SCRIPT_TEMPLATE.format(venv=self._config.venv_dir)

        for relative, content in files.items():
            (self._project_path / relative).write_text(content)
        if full:
            (self._project_path / "scripts" / "setup_env.sh").chmod(0o755)

        self._logger.info(
            "environment_skeleton_created",
            project_path=str(self._project_path),
            requirements=len(requirements),
            full=full,
        )

        result: dict[str, Any] = {
            "success": True,
            "directories": directories,
            "files_created": list(files),
            "requirements": requirements,
        }
        if full:
            for command in (
                f"python -m venv {self._config.venv_dir}",
                f"{self._config.venv_dir}/bin/pip install -r requirements.txt",
            ):
                outcome = await self._runner.run(
                    command, self._project_path, timeout=self._config.command_timeout_seconds
                )
                if not outcome.success:
                    raise ExecutionError(
                        f"Environment command failed: {command}: {outcome.error_text}",
                        capability="environment_setup",
                    )
            result["virtual_env"] = self._config.venv_dir
        return result

    async def terminal(self, params: dict[str, Any]) -> dict[str, Any]:
        command = params.get("command")
        if not command:
            raise ExecutionError("terminal_execution requires a command", capability="terminal_execution")
        cwd = self._project_path / params["cwd"] if params.get("cwd") else self._project_path
        outcome = await self._runner.run(
            command, cwd, timeout=params.get("timeout") or self._config.command_timeout_seconds
        )
        return outcome.model_dump()


def make_sandbox_execution(runtime: SandboxRuntime, project_path: str | Path):
    async def sandbox_execution(params: dict[str, Any]) -> dict[str, Any]:
        command = params.get("command")
        if not command:
            raise ExecutionError("sandbox_execution requires a command", capability="sandbox_execution")
        candidate_id = params.get("candidate_id", "default")

        try:
            if candidate_id not in runtime.active_candidates():
                await runtime.start(candidate_id, params.get("kind", "python"), Path(project_path))
            outcome = await runtime.exec_in(candidate_id, command, params.get("timeout"))
        except CollaboratorError as exc:
            raise ExecutionError(str(exc), capability="sandbox_execution", details=exc.details) from exc
        return outcome.model_dump()

    return sandbox_execution


def register_environment_capabilities(
    bus: CoordinationBus,
    setup: EnvironmentSetup,
    sandbox: Optional[SandboxRuntime] = None,
    project_path: str | Path = ".",
) -> None:
    bus.register_capability(
        Capability(
            name="environment_setup",
            description="Create the project skeleton and requirements",
            parameters={
                "tech_stack": "List of technologies",
                "project_name": "Name used in setup.py",
                "full": "Also create a virtual environment and install requirements",
            },
            handler=setup.setup,
            owner="capabilities",
        )
    )
    bus.register_capability(
        Capability(
            name="terminal_execution",
            description="Run a shell command in the project",
            parameters={"command": "Shell command", "cwd": "Directory relative to the project", "timeout": "Seconds"},
            handler=setup.terminal,
            owner="capabilities",
        )
    )
    if sandbox is not None:
        bus.register_capability(
            Capability(
                name="sandbox_execution",
                description="Run a shell command inside an isolated container",
                parameters={
                    "command": "Shell command",
                    "candidate_id": "Sandbox key",
                    "kind": "python | node",
                    "timeout": "Seconds",
                },
                handler=make_sandbox_execution(sandbox, project_path),
                owner="capabilities",
            )
        )
