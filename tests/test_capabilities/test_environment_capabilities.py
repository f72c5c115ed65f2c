"""
Tests for foreman.capabilities.environment and the default registration
=========================================================================

environment_setup file generation, terminal_execution, sandbox_execution,
and register_default_capabilities wiring everything onto one bus.
"""

import os

import pytest

from foreman.capabilities import register_default_capabilities
from foreman.capabilities.environment import (
    BASE_REQUIREMENTS,
    EnvironmentSetup,
    build_requirements,
    register_environment_capabilities,
)
from foreman.core.config import SandboxConfig
from foreman.core.exceptions import ExecutionError
from foreman.core.models import Task
from foreman.integrations.sandbox import DockerSandboxRuntime

from tests.conftest import FakeCommandRunner, fail, ok


@pytest.fixture
async def env_bus(bus, project_path, runner, execution_config):
    register_environment_capabilities(bus, EnvironmentSetup(project_path, runner, config=execution_config))
    return bus


class TestBuildRequirements:
    """Tech stack → requirements.txt lines."""

    def test_base_only(self) -> None:
        assert build_requirements([]) == BASE_REQUIREMENTS

    def test_known_entries_deduplicated(self) -> None:
        requirements = build_requirements(["Pandas", "sklearn", "scikit-learn", "rust"])
        assert requirements[len(BASE_REQUIREMENTS):] == ["pandas>=1.5.0", "scikit-learn>=1.1.0"]


class TestEnvironmentSetup:
    """Project skeleton generation."""

    async def test_skeleton(self, env_bus, project_path, runner) -> None:
        result = await env_bus.invoke(
            "environment_setup",
            {"tech_stack": ["pandas", "numpy"], "project_name": "Churn Model"},
            "t",
        )

        assert result["success"] is True
        for directory in ("src", "tests", "datasets", "docs"):
            assert (project_path / directory).is_dir()
        assert "pandas>=1.5.0" in (project_path / "requirements.txt").read_text()
        setup_py = (project_path / "setup.py").read_text()
        assert 'name="churn_model"' in setup_py
        assert '"numpy>=1.21.0",' in setup_py
        assert (project_path / ".env.example").exists()
        assert "virtual_env" not in result
        assert runner.commands == [], "The basic skeleton runs no commands"

    async def test_full_setup_runs_venv_and_install(self, env_bus, project_path, runner) -> None:
        result = await env_bus.invoke("environment_setup", {"full": True}, "t")

        script = project_path / "scripts" / "setup_env.sh"
        assert script.exists()
        assert os.access(script, os.X_OK)
        assert runner.commands == [
            "python -m venv assessment_env",
            "assessment_env/bin/pip install -r requirements.txt",
        ]
        assert result["virtual_env"] == "assessment_env"

    async def test_full_setup_command_failure(self, env_bus, runner) -> None:
        runner.script("python -m venv", fail("ensurepip is not available"))

        with pytest.raises(ExecutionError, match="ensurepip is not available"):
            await env_bus.invoke("environment_setup", {"full": True}, "t")


class TestTerminalExecution:
    """One command through the runner."""

    async def test_runs_in_cwd(self, env_bus, project_path, runner) -> None:
        runner.script("ls", ok("README.md\n"))

        result = await env_bus.invoke("terminal_execution", {"command": "ls", "cwd": "src"}, "t")

        assert result["stdout"] == "README.md\n"
        assert runner.calls[0][1] == project_path / "src"

    async def test_command_required(self, env_bus) -> None:
        with pytest.raises(ExecutionError):
            await env_bus.invoke("terminal_execution", {}, "t")


class TestSandboxExecution:
    """Sandbox capability over a scripted docker CLI."""

    async def test_starts_then_execs(self, bus, project_path, runner) -> None:
        host = FakeCommandRunner()
        host.script("docker create", ok("cid\n"))
        host.script("docker exec", ok("Python 3.11\n"))
        register_environment_capabilities(
            bus,
            EnvironmentSetup(project_path, runner),
            sandbox=DockerSandboxRuntime(SandboxConfig(), host),
            project_path=project_path,
        )

        result = await bus.invoke("sandbox_execution", {"command": "python -V", "candidate_id": "c1"}, "t")

        assert result["stdout"] == "Python 3.11\n"
        assert host.commands[1] == "docker start cid"

    async def test_runtime_failure_becomes_execution_error(self, bus, project_path, runner) -> None:
        host = FakeCommandRunner()
        host.script("docker create", fail("daemon not running"))
        register_environment_capabilities(
            bus,
            EnvironmentSetup(project_path, runner),
            sandbox=DockerSandboxRuntime(SandboxConfig(), host),
            project_path=project_path,
        )

        with pytest.raises(ExecutionError, match="daemon not running"):
            await bus.invoke("sandbox_execution", {"command": "ls"}, "t")


class TestDefaultRegistration:
    """register_default_capabilities puts every capability on the bus."""

    async def test_all_capabilities_registered(self, bus, project_path, runner) -> None:
        register_default_capabilities(bus, project_path, runner, seed=1)

        assert set(bus.list_capabilities()) == {
            "file_operations",
            "data_share",
            "agent_coordination",
            "dataset_search",
            "dataset_download",
            "synthetic_dataset",
            "environment_setup",
            "terminal_execution",
        }

    async def test_engine_generates_dataset_through_capabilities(
        self, bus, engine, project_path, runner, dataset_config
    ) -> None:
        register_default_capabilities(bus, project_path, runner, datasets=dataset_config, seed=5)

        result = await engine.execute_task(
            Task(id="gen", type="generate_dataset", path="data/dataset.csv", metadata={"data_type": "regression"})
        )

        assert result.success is True
        assert (project_path / "data" / "dataset.csv").exists()
        assert bus.get("dataset_context")["rows"] == 20
