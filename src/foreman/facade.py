"""
foreman.facade - Foreman Top-Level Facade
===========================================

Single entry point that builds every collaborator from ForemanConfig and
wires them to one CoordinationBus.

    ┌──────────────────────────────────────────────────┐
    │                 Foreman (Facade)                  │
    │                                                   │
    │  Orchestrator ──→ ExecutionEngine (per session)   │
    │        │                 │                        │
    │        │          ErrorResolver                   │
    │        ▼                 ▼                        │
    │  ┌─────────────────────────────────────────────┐ │
    │  │ CoordinationBus: messages, state, capabilities│ │
    │  └─────────────────────────────────────────────┘ │
    │        ▲                                          │
    │  Capabilities: files, datasets, environment       │
    │        ▲                                          │
    │  Integrations: LLM provider, command runner,      │
    │                sandbox runtime                    │
    └──────────────────────────────────────────────────┘

Usage:
    >>> config = load_config("foreman.yaml")
    >>> async with Foreman(config) as foreman:
    ...     result = await foreman.run(JobContext(job_title="ML Engineer"), plan=plan)
    ...     print(result.outcome)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import httpx
import structlog

from foreman.capabilities import register_default_capabilities
from foreman.core.config import ForemanConfig
from foreman.core.logging import configure_logging
from foreman.core.models import JobContext, Plan, SessionResult
from foreman.integrations.command_runner import (
    CommandRunner,
    LocalCommandRunner,
    SandboxCommandRunner,
)
from foreman.integrations.llm.base import BaseLLMProvider
from foreman.integrations.llm.factory import create_llm_provider
from foreman.integrations.sandbox import DockerSandboxRuntime, SandboxRuntime
from foreman.orchestration.coordination_bus import CoordinationBus, InMemoryCoordinationBus
from foreman.orchestration.error_resolver import ErrorResolver
from foreman.orchestration.execution_engine import ExecutionEngine
from foreman.orchestration.notifications import ProgressReporter
from foreman.orchestration.orchestrator import Orchestrator, PlanProducer


logger = structlog.get_logger()


class Foreman:
    """Top-level facade.

    Lifecycle:
        1. ``Foreman(config)``     build collaborators
        2. ``await initialize()``  connect the bus, register capabilities
        3. ``await run(job)``      run sessions
        4. ``await shutdown()``    stop sandboxes, close clients, disconnect

    Every collaborator can be injected; anything omitted is built from the
    config. ``use_sandbox`` routes shell commands through a docker sandbox.
    """

    def __init__(
        self,
        config: Optional[ForemanConfig] = None,
        *,
        bus: Optional[CoordinationBus] = None,
        llm_provider: Optional[BaseLLMProvider] = None,
        command_runner: Optional[CommandRunner] = None,
        sandbox: Optional[SandboxRuntime] = None,
        plan_producer: Optional[PlanProducer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or ForemanConfig()
        configure_logging(self._config.log_level, self._config.log_format)

        self._project_path = Path(self._config.project_path)
        execution = self._config.execution

        # --- Integrations ---
        self._llm = llm_provider or create_llm_provider(self._config.llm)
        host_runner = LocalCommandRunner(default_timeout=execution.command_timeout_seconds)
        if sandbox is None and execution.use_sandbox:
            sandbox = DockerSandboxRuntime(self._config.sandbox, host_runner)
        self._sandbox = sandbox

        if command_runner is not None:
            self._runner = command_runner
        elif execution.use_sandbox and sandbox is not None:
            self._runner = SandboxCommandRunner(sandbox, self._project_path)
        else:
            self._runner = host_runner
        self._http_client = http_client

        # --- Orchestration ---
        self._bus = bus or InMemoryCoordinationBus(history_limit=self._config.bus.history_limit)
        self._reporter = ProgressReporter(self._bus)
        self._plan_producer = plan_producer
        self._resolver: Optional[ErrorResolver] = None
        self._orchestrator: Optional[Orchestrator] = None

        self._initialized = False
        self._logger = logger.bind(component="foreman")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> ForemanConfig:
        return self._config

    @property
    def bus(self) -> CoordinationBus:
        return self._bus

    @property
    def llm_provider(self) -> BaseLLMProvider:
        return self._llm

    @property
    def command_runner(self) -> CommandRunner:
        return self._runner

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    @property
    def resolver(self) -> Optional[ErrorResolver]:
        return self._resolver

    @property
    def orchestrator(self) -> Optional[Orchestrator]:
        return self._orchestrator

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Connect the bus and register every component. Idempotent."""
        if self._initialized:
            self._logger.debug("foreman_already_initialized")
            return

        self._logger.info("foreman_initializing", project_path=str(self._project_path))
        await self._bus.connect()

        execution = self._config.execution
        register_default_capabilities(
            self._bus,
            self._project_path,
            self._runner,
            llm_provider=self._llm,
            datasets=self._config.datasets,
            execution=execution,
            sandbox=self._sandbox,
            http_client=self._http_client,
        )
        self._resolver = ErrorResolver(
            self._bus,
            llm_provider=self._llm,
            max_retry_attempts=execution.max_retry_attempts,
            project_path=self._project_path,
            reporter=self._reporter,
        )
        self._orchestrator = Orchestrator(
            self._bus,
            engine_factory=self._build_engine,
            plan_producer=self._plan_producer,
            project_path=self._project_path,
            reporter=self._reporter,
            verification=self._config.verification,
        )

        self._initialized = True
        self._logger.info("foreman_initialized", capabilities=self._bus.list_capabilities())

    async def shutdown(self) -> None:
        """Stop sandboxes and disconnect the bus. Idempotent."""
        if not self._initialized:
            self._logger.debug("foreman_not_initialized_skipping_shutdown")
            return

        self._logger.info("foreman_shutting_down")
        if isinstance(self._runner, SandboxCommandRunner):
            await self._runner.close()
        if self._sandbox is not None:
            await self._sandbox.stop_all()
        await self._bus.disconnect()

        self._initialized = False
        self._logger.info("foreman_shutdown_complete")

    async def __aenter__(self) -> Foreman:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # =========================================================================
    # Sessions
    # =========================================================================

    async def run(self, job_context: Optional[JobContext] = None, plan: Optional[Plan] = None) -> SessionResult:
        """Run one session.

        Args:
            job_context: Job details. Defaults to ``JobContext()``.
            plan: Plan to execute. When given it is published to shared
                state for this session only; otherwise the configured
                PlanProducer supplies one.

        Raises:
            RuntimeError: If the facade has not been initialized.
        """
        self._ensure_initialized()
        job_context = job_context or JobContext()

        if plan is not None:
            self._bus.set("current_assessment_plan", plan.model_dump(mode="json"))
        try:
            result = await self._orchestrator.run_session(job_context)
        finally:
            if plan is not None:
                self._bus.delete("current_assessment_plan")

        self._logger.info(
            "session_result",
            session_id=result.session_id,
            outcome=result.outcome.value,
            plan_id=result.plan_id,
        )
        return result

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _build_engine(self) -> ExecutionEngine:
        return ExecutionEngine(
            self._bus,
            self._runner,
            self._project_path,
            config=self._config.execution,
            datasets=self._config.datasets,
            reporter=self._reporter,
        )

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "Foreman has not been initialized. "
                "Call await foreman.initialize() or use 'async with Foreman() as foreman:'"
            )

    def __repr__(self) -> str:
        return (
            f"Foreman(initialized={self._initialized}, "
            f"project_path={str(self._project_path)!r}, "
            f"llm={self._config.llm.provider!r})"
        )
