"""
foreman.core.config - Configuration Management
================================================

Configuration for Foreman is loaded from several sources. The highest
priority comes first:

    1. Explicit constructor arguments
    2. Environment variables (prefixed with FOREMAN_)
    3. YAML configuration file (foreman.yaml)
    4. Default values defined in the models below

Architecture Context:
    The top-level ForemanConfig is created once by the facade, and each
    section is handed to the component that owns it:

        ForemanConfig
            ├── LLMConfig          → completion provider → ErrorResolver
            ├── ExecutionConfig    → ExecutionEngine, ErrorResolver, runners
            ├── BusConfig          → CoordinationBus
            ├── DatasetConfig      → dataset capabilities
            ├── SandboxConfig      → DockerSandboxRuntime
            └── VerificationConfig → Orchestrator

Usage:
    config = ForemanConfig()
    config = load_config("foreman.yaml")
    config = ForemanConfig(log_level="DEBUG", execution=ExecutionConfig(max_retry_attempts=3))

Environment Variables:
    FOREMAN_LOG_LEVEL=DEBUG
    FOREMAN_PROJECT_PATH=/tmp/assessment
    FOREMAN_LLM__PROVIDER=anthropic
    FOREMAN_LLM__API_KEY=sk-ant-...
    FOREMAN_EXECUTION__MAX_RETRY_ATTEMPTS=3
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from foreman.core.exceptions import ConfigurationError


# =============================================================================
# LLM Configuration
# =============================================================================
# The completion service is only consulted by the AI-assisted tier of the
# error resolver and by the dataset search capability. The "mock" provider
# keeps every other path usable without credentials.
# =============================================================================
class LLMConfig(BaseModel):
    """Configuration for the completion service.

    Supported Providers:
        - "anthropic": Anthropic Messages API
        - "mock":      Scripted provider for tests and offline runs

    Attributes:
        provider: Which provider implementation to build.
        model: Model identifier within the provider.
        api_key: API key. None for the mock provider, or when the key is
            taken from the ANTHROPIC_API_KEY environment variable.
        temperature: Sampling temperature. Error analysis wants low values.
        max_tokens: Maximum tokens per completion.
        api_base_url: Optional custom endpoint (proxies, gateways).
    """

    provider: str = Field(
        default="mock",
        description="LLM provider name: 'anthropic' or 'mock'",
    )
    model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model identifier within the provider",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key for authentication (None for mock provider)",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for completions",
    )
    max_tokens: int = Field(
        default=1024,
        ge=1,
        le=64000,
        description="Maximum tokens per completion",
    )
    api_base_url: Optional[str] = Field(
        default=None,
        description="Custom API base URL",
    )


# =============================================================================
# Execution Configuration
# =============================================================================
class ExecutionConfig(BaseModel):
    """Knobs for the task execution loop and its retry budget.

    Attributes:
        max_retry_attempts: Per-task retry budget shared by the engine and
            the resolver. A task failing this many times aborts the plan.
        command_timeout_seconds: Wall-clock limit for a single shell command.
        inter_task_delay_seconds: Pause between dequeues. Tests set 0.
        liveness_factor: The loop stops after ``liveness_factor * N``
            dequeues, N being the number of tasks in the plan.
        strict_dependencies: Reject plans with unknown or cyclic
            dependencies before execution instead of only logging them.
        clean_workspace: Empty the project directory before executing.
        venv_dir: Name of the virtual environment directory.
        use_sandbox: Route run-command tasks through the sandbox runtime.
    """

    max_retry_attempts: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum retry attempts per task",
    )
    command_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single shell command in seconds",
    )
    inter_task_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Delay between dequeues in seconds",
    )
    liveness_factor: int = Field(
        default=3,
        ge=1,
        description="Dequeue budget multiplier over the plan size",
    )
    strict_dependencies: bool = Field(
        default=False,
        description="Raise on unknown or cyclic dependencies before running",
    )
    clean_workspace: bool = Field(
        default=False,
        description="Remove project directory contents before executing",
    )
    venv_dir: str = Field(
        default="assessment_env",
        description="Virtual environment directory name inside the project",
    )
    use_sandbox: bool = Field(
        default=False,
        description="Execute shell commands inside the sandbox runtime",
    )


class BusConfig(BaseModel):
    """Coordination bus settings."""

    history_limit: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of messages kept in bus history",
    )


class DatasetConfig(BaseModel):
    """Dataset acquisition and generation settings."""

    min_lines: int = Field(
        default=2,
        ge=1,
        description="Minimum non-empty lines for a downloaded dataset (header + one row)",
    )
    synthetic_rows: int = Field(
        default=1000,
        ge=1,
        description="Default number of rows for synthetic datasets",
    )
    synthetic_features: int = Field(
        default=5,
        ge=1,
        description="Default number of feature columns for synthetic datasets",
    )
    download_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for dataset downloads",
    )
    output_dir: str = Field(
        default="datasets",
        description="Directory, relative to the project, that receives datasets",
    )


class SandboxConfig(BaseModel):
    """Container sandbox settings.

    Defaults mirror the constraints applied to candidate code: small memory
    and CPU quota, no new privileges, all capabilities dropped, and a
    read-only bind mount of the workspace.
    """

    image: str = Field(default="python:3.11-slim", description="Container image")
    memory_limit: str = Field(default="512m", description="docker --memory value")
    cpu_limit: str = Field(default="0.5", description="docker --cpus value")
    network_disabled: bool = Field(default=True, description="Run with --network=none")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-exec timeout")
    workdir: str = Field(default="/assessment", description="Mount point inside the container")


class VerificationConfig(BaseModel):
    """Post-execution verification settings (advisory only)."""

    expected_paths: list[str] = Field(
        default_factory=lambda: ["README.md", "src", "tests"],
        description="Paths expected in the project after execution",
    )
    dataset_path: str = Field(
        default="data/dataset.csv",
        description="Dataset expected for data-oriented plans when no dataset was recorded",
    )
    pass_threshold: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Pass rate (percent) at which verification counts as passed",
    )


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   FOREMAN_LOG_LEVEL                      → config.log_level
#   FOREMAN_PROJECT_PATH                   → config.project_path
#   FOREMAN_LLM__PROVIDER                  → config.llm.provider
#   FOREMAN_EXECUTION__MAX_RETRY_ATTEMPTS  → config.execution.max_retry_attempts
# =============================================================================
class ForemanConfig(BaseSettings):
    """Top-level configuration for Foreman.

    Attributes:
        environment: Deployment environment.
        log_level: Logging level for structlog output.
        log_format: "console" for human-readable logs, "json" for log shipping.
        project_path: Root directory all task paths are resolved against.
        llm: Completion service configuration.
        execution: Execution loop configuration.
        bus: Coordination bus configuration.
        datasets: Dataset acquisition configuration.
        sandbox: Container sandbox configuration.
        verification: Verification phase configuration.
    """

    # -------------------------------------------------------------------------
    # General Settings
    # -------------------------------------------------------------------------
    environment: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log renderer",
    )
    project_path: str = Field(
        default="./assessment_project",
        description="Project directory that tasks operate on",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    llm: LLMConfig = Field(default_factory=LLMConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    datasets: DatasetConfig = Field(default_factory=DatasetConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)

    model_config = {
        "env_prefix": "FOREMAN_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> ForemanConfig:
    """Load Foreman configuration from a YAML file and environment variables.

    Args:
        path: Path to a YAML configuration file. If None, looks for
            'foreman.yaml' in the current directory and falls back to
            defaults plus environment variables.

    Returns:
        A validated ForemanConfig instance.

    Raises:
        FileNotFoundError: If an explicit path is provided but doesn't exist.
        ConfigurationError: If the YAML document is not a mapping.
    """
    if path is None:
        default_path = Path("foreman.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(config_path) as f:
            raw_data = yaml.safe_load(f)
        if raw_data is None:
            raw_data = {}
        if not isinstance(raw_data, dict):
            raise ConfigurationError(
                message=f"Configuration file must contain a mapping: {path}",
                details={"path": str(config_path), "type": type(raw_data).__name__},
            )
        yaml_data = raw_data

    return ForemanConfig(**yaml_data)


def get_default_config() -> ForemanConfig:
    """Create a ForemanConfig from defaults and environment variables."""
    return ForemanConfig()
