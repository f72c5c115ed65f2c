"""
foreman.orchestration.execution_engine - Task Execution Engine
================================================================

Drives a Plan's task list to completion or to a definitive failure.

Scheduling Loop:

    queue = FIFO(plan.tasks)
    while queue and dequeues < liveness_factor × N and not disposed:
        task = queue.popleft()
        ├── dependency not completed yet → push to back, continue
        ├── dispatch(task) succeeded     → mark completed
        └── dispatch(task) failed
              ├── retries[task] ≥ max   → abort the run (failure)
              └── retries[task] += 1, resolve(task, error, attempt)
                    ├── skip_task            → mark completed (degraded)
                    ├── corrected action     → run "<id>_retry_<n>" inline
                    │     ├── success        → mark the original completed
                    │     └── failure        → push original to back
                    └── no corrected action  → push original to back

Attempt Ownership:
    The engine's per-task counter is the only authority on exhaustion. The
    current attempt is passed explicitly to the ``error_resolution``
    capability so the resolver never keeps a second count for engine runs.

Handlers:
    One coroutine per TaskType in a dispatch table checked for completeness
    at construction. A handler returns an ExecutionResult and never raises;
    ``execute_task`` converts any escaped exception into a failed result.

Bus Integration:
    - invokes ``error_resolution``, ``dataset_search``, ``synthetic_dataset``,
      ``environment_setup``
    - registers ``task_execution`` and ``file_management``
    - answers ``request/execute_task`` (shared ``last_execution_result``,
      ``execution_status``)
"""

from __future__ import annotations

import asyncio
import shutil
import time
from collections import deque
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Optional

import structlog

from foreman.core.config import DatasetConfig, ExecutionConfig
from foreman.core.enums import MessageKind, NotificationLevel, TaskType
from foreman.core.exceptions import ConfigurationError, ExecutionError, ForemanError
from foreman.core.messages import BusMessage
from foreman.core.models import ErrorResolution, ExecutionReport, ExecutionResult, Plan, Task
from foreman.integrations.command_runner import CommandRunner
from foreman.orchestration.coordination_bus import Capability, CoordinationBus
from foreman.orchestration.notifications import ProgressReporter
from foreman.orchestration.plan_validation import validate_plan_dependencies


logger = structlog.get_logger()

TaskHandler = Callable[[Task], Awaitable[ExecutionResult]]

DEFAULT_ASSESSMENT_DOC = "ASSESSMENT_QUESTIONS.md"

VALIDATION_COMMANDS = (
    "python -m pytest -q",
    "python -m flake8 .",
    "python -m black --check .",
)


def _ok(task: Task, output: str = "") -> ExecutionResult:
    return ExecutionResult(success=True, output=output, task=task)


def _fail(task: Task, error: str, output: str = "") -> ExecutionResult:
    return ExecutionResult(success=False, output=output, error=error, task=task)


class ExecutionEngine:
    """Single-threaded FIFO scheduler with bounded self-healing retries.

    Args:
        bus: Coordination bus.
        command_runner: Executes shell commands for command-backed tasks.
        project_path: Root directory every task path is relative to.
        config: Retry budget, liveness factor, delay and workspace options.
        datasets: Dataset defaults for dataset tasks.
        reporter: Progress reporter; one is created on the bus if omitted.
        agent_id: Identity used on the bus.
    """

    def __init__(
        self,
        bus: CoordinationBus,
        command_runner: CommandRunner,
        project_path: str | Path,
        config: Optional[ExecutionConfig] = None,
        datasets: Optional[DatasetConfig] = None,
        reporter: Optional[ProgressReporter] = None,
        agent_id: str = "execution_engine",
    ) -> None:
        self._bus = bus
        self._runner = command_runner
        self._project_path = Path(project_path)
        self._config = config or ExecutionConfig()
        self._datasets = datasets or DatasetConfig()
        self._reporter = reporter or ProgressReporter(bus)
        self._agent_id = agent_id
        self._disposed = False
        self._logger = logger.bind(component="execution_engine")

        # ---------------------------------------------------------------------
        # Dispatch Table
        # ---------------------------------------------------------------------
        # Exactly one handler per TaskType. Adding a member to TaskType
        # without a handler fails at construction, not mid-run.
        # ---------------------------------------------------------------------
        self._handlers: dict[TaskType, TaskHandler] = {
            TaskType.CREATE_DIRECTORY: self._handle_create_directory,
            TaskType.CREATE_FILE: self._handle_create_file,
            TaskType.WRITE_ASSESSMENT_DOC: self._handle_write_assessment_doc,
            TaskType.RUN_COMMAND: self._handle_run_command,
            TaskType.FETCH_DATASET: self._handle_fetch_dataset,
            TaskType.GENERATE_DATASET: self._handle_generate_dataset,
            TaskType.SETUP_ENVIRONMENT: self._handle_setup_environment,
            TaskType.INSTALL_DEPENDENCIES: self._handle_install_dependencies,
            TaskType.CREATE_VIRTUAL_ENV: self._handle_create_virtual_env,
            TaskType.RUN_VALIDATION: self._handle_run_validation,
        }
        unhandled = set(TaskType) - set(self._handlers)
        if unhandled:
            raise ConfigurationError(
                message="ExecutionEngine has no handler for some task types",
                details={"task_types": sorted(t.value for t in unhandled)},
            )

        self._register_on_bus()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def project_path(self) -> Path:
        return self._project_path

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Stop the scheduling loop before its next dequeue.

        A dispatch already in flight runs to completion. The engine also
        stops answering ``execute_task`` requests.
        """
        self._disposed = True
        self._bus.unsubscribe(self._subscription)
        self._logger.info("execution_engine_disposed")

    # =========================================================================
    # Bus Wiring
    # =========================================================================

    def _register_on_bus(self) -> None:
        self._bus.register_capability(
            Capability(
                name="task_execution",
                description="Execute a single task and return its ExecutionResult",
                parameters={"task": "Task (model or dict)"},
                handler=self._execute_task_capability,
                owner=self._agent_id,
            )
        )
        self._bus.register_capability(
            Capability(
                name="file_management",
                description="Create folders and files inside the project",
                parameters={
                    "operation": "create_folder | create_file | write_content",
                    "path": "Path relative to the project",
                    "content": "File body for create_file / write_content",
                },
                handler=self._file_management_capability,
                owner=self._agent_id,
            )
        )
        self._subscription = self._bus.subscribe(
            self._handle_execute_request, kind=MessageKind.REQUEST, action="execute_task"
        )

    async def _execute_task_capability(self, params: dict[str, Any]) -> dict[str, Any]:
        task = params["task"] if isinstance(params["task"], Task) else Task.model_validate(params["task"])
        result = await self.execute_task(task)
        return result.model_dump(mode="json")

    async def _file_management_capability(self, params: dict[str, Any]) -> dict[str, Any]:
        operation = params.get("operation")
        path = params.get("path")
        if not path:
            raise ExecutionError("file_management requires a path", capability="file_management")

        target = self._project_path / path
        if operation == "create_folder":
            target.mkdir(parents=True, exist_ok=True)
        elif operation in ("create_file", "write_content"):
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(params.get("content") or "")
        else:
            raise ExecutionError(
                f"Unsupported file operation: {operation}",
                capability="file_management",
            )
        return {"success": True, "path": str(target)}

    async def _handle_execute_request(self, message: BusMessage) -> None:
        task = Task.model_validate(message.payload["task"])
        result = await self.execute_task(task)
        dumped = result.model_dump(mode="json")
        self._bus.set("last_execution_result", dumped)
        self._bus.set("execution_status", "success" if result.success else "failed")
        await self._bus.publish(message.create_response(self._agent_id, {"result": dumped}))

    # =========================================================================
    # Plan Execution
    # =========================================================================

    async def execute_plan(self, plan: Plan) -> ExecutionReport:
        """Run every task in ``plan``.

        Returns:
            ExecutionReport. ``success`` is True only when every task
            completed. ``aborted`` marks a task that exhausted its retry
            budget; ``stopped_by_liveness_bound`` marks a loop that ran out
            of dequeues with tasks still waiting.

        Raises:
            PlanValidationError: With ``strict_dependencies`` enabled, when
                the plan has unknown or cyclic dependencies.
        """
        total = len(plan.tasks)
        if total == 0:
            self._logger.warning("no_tasks_available", plan_id=plan.plan_id)
            await self._reporter.report(
                self._agent_id, "No tasks to execute", level=NotificationLevel.WARNING, progress=100
            )
            return ExecutionReport(success=True, total=0)

        dependency_report = validate_plan_dependencies(plan, strict=self._config.strict_dependencies)

        if self._config.clean_workspace:
            self._clean_workspace()
        self._project_path.mkdir(parents=True, exist_ok=True)

        queue: deque[Task] = deque(plan.tasks)
        completed: list[str] = []
        completed_set: set[str] = set()
        retry_counts: dict[str, int] = {}
        max_dequeues = self._config.liveness_factor * total
        dequeues = 0

        def mark_completed(task_id: str) -> None:
            if task_id not in completed_set:
                completed_set.add(task_id)
                completed.append(task_id)

        def build_report(success: bool, **extra: Any) -> ExecutionReport:
            return ExecutionReport(
                success=success,
                completed=len(completed),
                total=total,
                dequeue_attempts=dequeues,
                completed_ids=list(completed),
                dependency_report=dependency_report,
                **extra,
            )

        self._logger.info(
            "plan_execution_started",
            plan_id=plan.plan_id,
            total_tasks=total,
            max_dequeues=max_dequeues,
        )

        while queue and dequeues < max_dequeues:
            if self._disposed:
                self._logger.warning("plan_execution_disposed", completed=len(completed), total=total)
                return build_report(False, disposed=True)

            if dequeues > 0 and self._config.inter_task_delay_seconds > 0:
                await asyncio.sleep(self._config.inter_task_delay_seconds)
            dequeues += 1
            task = queue.popleft()

            pending = [dep for dep in task.dependencies if dep not in completed_set]
            if pending:
                self._logger.debug("task_requeued_waiting_on_dependencies", task_id=task.id, pending=pending)
                queue.append(task)
                continue

            progress = round(len(completed) / total * 100)
            self._bus.set("execution_progress", progress)
            await self._reporter.report(
                self._agent_id,
                f"Executing: {task.description or task.id}",
                level=NotificationLevel.EXECUTE,
                progress=progress,
                task_id=task.id,
            )

            result = await self.execute_task(task)
            if result.success:
                mark_completed(task.id)
                await self._reporter.report(
                    self._agent_id,
                    f"Completed: {task.description or task.id}",
                    level=NotificationLevel.SUCCESS,
                    progress=round(len(completed) / total * 100),
                    task_id=task.id,
                )
                continue

            current_attempt = retry_counts.get(task.id, 0)
            if current_attempt >= self._config.max_retry_attempts:
                self._logger.error(
                    "task_retry_budget_exhausted",
                    task_id=task.id,
                    attempts=current_attempt,
                    error=result.error,
                )
                await self._reporter.report(
                    self._agent_id,
                    f"Task {task.id} failed after {current_attempt} retries: {result.error}",
                    level=NotificationLevel.ERROR,
                    task_id=task.id,
                )
                return build_report(False, aborted=True, failed_task_id=task.id)

            attempt = current_attempt + 1
            retry_counts[task.id] = attempt
            resolution = await self._resolve(task, result.error or "Unknown error", attempt)

            if resolution.fixed and resolution.skip_task:
                self._logger.warning("task_skipped_after_resolution", task_id=task.id)
                mark_completed(task.id)
                continue

            if resolution.has_corrected_action:
                retry_task = task.derive_retry(
                    attempt,
                    command=resolution.retry_command,
                    content=resolution.revised_content,
                )
                self._logger.info(
                    "retry_task_dispatched",
                    task_id=task.id,
                    retry_task_id=retry_task.id,
                    command=retry_task.command,
                )
                retry_result = await self.execute_task(retry_task)
                if retry_result.success:
                    mark_completed(task.id)
                    await self._reporter.report(
                        self._agent_id,
                        f"Completed after retry: {task.description or task.id}",
                        level=NotificationLevel.SUCCESS,
                        progress=round(len(completed) / total * 100),
                        task_id=task.id,
                    )
                    continue

            queue.append(task)

        success = len(completed) == total
        stopped = bool(queue) and dequeues >= max_dequeues
        if stopped:
            self._logger.warning(
                "liveness_bound_reached",
                completed=len(completed),
                total=total,
                dequeue_attempts=dequeues,
                waiting=[task.id for task in queue],
            )

        self._bus.set("execution_progress", round(len(completed) / total * 100))
        await self._bus.publish(
            BusMessage(
                agent_id=self._agent_id,
                kind=MessageKind.NOTIFICATION,
                action="execution_completed",
                payload={"success": success, "completed": len(completed), "total": total},
            )
        )
        self._logger.info(
            "plan_execution_finished",
            plan_id=plan.plan_id,
            success=success,
            completed=len(completed),
            total=total,
            dequeue_attempts=dequeues,
        )
        return build_report(success, stopped_by_liveness_bound=stopped)

    async def _resolve(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        # Command-backed task types that carry no explicit command are
        # resolved against the command the handler actually ran, so rewrite
        # rules have something to rewrite.
        subject = task
        if task.command is None:
            default_command = self._default_command(task)
            if default_command is not None:
                subject = task.model_copy(update={"command": default_command})

        try:
            raw = await self._bus.invoke(
                "error_resolution",
                {"task": subject, "error": error, "attempt": attempt},
                caller_id=self._agent_id,
            )
        except ForemanError as exc:
            self._logger.error("error_resolution_unavailable", task_id=task.id, error=str(exc))
            return ErrorResolution(fixed=False, error_analysis=f"Error resolution unavailable: {exc}")
        return ErrorResolution.model_validate(raw)

    def _clean_workspace(self) -> None:
        if not self._project_path.exists():
            return
        for child in self._project_path.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        self._logger.info("workspace_cleaned", project_path=str(self._project_path))

    # =========================================================================
    # Single Task Dispatch
    # =========================================================================

    async def execute_task(self, task: Task) -> ExecutionResult:
        """Dispatch ``task`` to its handler. Never raises."""
        started = time.monotonic()
        handler = self._handlers.get(task.type)
        if handler is None:
            result = _fail(task, f"Unknown task type: {task.type}")
        else:
            try:
                result = await handler(task)
            except Exception as exc:
                self._logger.error("task_handler_error", task_id=task.id, error=str(exc))
                result = _fail(task, f"Execution error: {exc}")

        duration = time.monotonic() - started
        if not result.success:
            self._logger.warning("task_failed", task_id=task.id, task_type=task.type.value, error=result.error)
        return result.model_copy(update={"duration_seconds": duration})

    def _default_command(self, task: Task) -> Optional[str]:
        if task.type == TaskType.CREATE_VIRTUAL_ENV:
            return f"python -m venv {self._config.venv_dir}"
        if task.type == TaskType.INSTALL_DEPENDENCIES:
            pip = self._pip_executable()
            return f"{pip} install --upgrade pip && {pip} install -r requirements.txt"
        return None

    def _pip_executable(self) -> str:
        venv_pip = self._project_path / self._config.venv_dir / "bin" / "pip"
        if venv_pip.exists():
            return f"{self._config.venv_dir}/bin/pip"
        return "pip"

    def _resolve_path(self, relative: str) -> Path:
        return self._project_path / relative

    async def _run(self, task: Task, command: str, cwd: Optional[str] = None) -> ExecutionResult:
        workdir = self._project_path / cwd if cwd else self._project_path
        outcome = await self._runner.run(command, workdir, timeout=self._config.command_timeout_seconds)
        if outcome.success:
            return _ok(task, outcome.stdout)
        return _fail(task, outcome.error_text, output=outcome.stdout)

    # =========================================================================
    # Handlers: Filesystem
    # =========================================================================

    async def _handle_create_directory(self, task: Task) -> ExecutionResult:
        if not task.path:
            return _fail(task, "create_directory task requires a path")
        target = self._resolve_path(task.path)
        target.mkdir(parents=True, exist_ok=True)
        return _ok(task, f"Created directory: {task.path}")

    async def _handle_create_file(self, task: Task) -> ExecutionResult:
        if not task.path:
            return _fail(task, "create_file task requires a path")
        target = self._resolve_path(task.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(task.content or "")
        return _ok(task, f"Created file: {task.path}")

    async def _handle_write_assessment_doc(self, task: Task) -> ExecutionResult:
        relative = task.path or DEFAULT_ASSESSMENT_DOC
        content = task.content or f"# Assessment Questions\n\n{task.description}\n"
        target = self._resolve_path(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        return _ok(task, f"Created assessment document: {relative}")

    # =========================================================================
    # Handlers: Shell
    # =========================================================================

    async def _handle_run_command(self, task: Task) -> ExecutionResult:
        if not task.command:
            return _fail(task, "run_command task requires a command")
        return await self._run(task, task.command, task.cwd)

    async def _handle_create_virtual_env(self, task: Task) -> ExecutionResult:
        return await self._run(task, task.command or self._default_command(task), task.cwd)

    async def _handle_install_dependencies(self, task: Task) -> ExecutionResult:
        if task.command is None and not (self._project_path / "requirements.txt").exists():
            return _fail(task, "requirements.txt not found: No such file or directory")
        return await self._run(task, task.command or self._default_command(task), task.cwd)

    async def _handle_run_validation(self, task: Task) -> ExecutionResult:
        commands = [task.command] if task.command else list(VALIDATION_COMMANDS)
        warnings: list[str] = []
        for command in commands:
            outcome = await self._runner.run(
                command, self._project_path, timeout=self._config.command_timeout_seconds
            )
            if not outcome.success:
                warnings.append(f"{command}: {outcome.error_text}")

        if warnings:
            await self._reporter.report(
                self._agent_id,
                f"Validation reported {len(warnings)} issue(s)",
                level=NotificationLevel.WARNING,
                task_id=task.id,
                warnings=warnings,
            )
            return _ok(task, "Validation finished with warnings:\n" + "\n".join(warnings))
        return _ok(task, "Validation passed")

    # =========================================================================
    # Handlers: Datasets
    # =========================================================================

    async def _handle_fetch_dataset(self, task: Task) -> ExecutionResult:
        # A command here is an alternate acquisition path supplied by recovery.
        if task.command:
            return await self._run(task, task.command, task.cwd)
        return await self._acquire_dataset(task)

    async def _handle_generate_dataset(self, task: Task) -> ExecutionResult:
        hint = self._bus.get("job_description") or task.description
        return await self._generate_synthetic(task, task.metadata.get("data_type"), hint)

    async def _acquire_dataset(self, task: Task) -> ExecutionResult:
        job_description = self._bus.get("job_description") or "Data analysis role"
        tech_stack = self._bus.get("tech_stack") or ["python", "pandas"]
        job_title = self._bus.get("job_title") or "Data Scientist"

        try:
            found = await self._bus.invoke(
                "dataset_search",
                {
                    "job_description": job_description,
                    "tech_stack": tech_stack,
                    "job_title": job_title,
                    "output_dir": self._datasets.output_dir,
                },
                caller_id=self._agent_id,
            )
        except ForemanError as exc:
            found = {"success": False, "error": str(exc)}

        if found.get("success"):
            self._bus.set("dataset_context", found)
            return _ok(task, f"Dataset downloaded: {found.get('path')}")

        self._logger.warning("dataset_search_failed_using_synthetic", task_id=task.id, error=found.get("error"))
        return await self._generate_synthetic(
            task, task.metadata.get("data_type"), f"{job_title} {job_description}"
        )

    async def _generate_synthetic(
        self,
        task: Task,
        kind: Optional[str],
        hint: str,
    ) -> ExecutionResult:
        # With no explicit kind the capability infers one from the hint text.
        try:
            generated = await self._bus.invoke(
                "synthetic_dataset",
                {
                    "data_type": kind,
                    "hint": hint,
                    "rows": task.metadata.get("rows", self._datasets.synthetic_rows),
                    "features": task.metadata.get("features", self._datasets.synthetic_features),
                    "path": task.path,
                },
                caller_id=self._agent_id,
            )
        except ForemanError as exc:
            return _fail(task, f"Dataset generation failed: {exc}")

        self._bus.set("dataset_context", generated)
        return _ok(task, f"Synthetic {generated['data_type']} dataset generated: {generated['path']}")

    # =========================================================================
    # Handlers: Environment
    # =========================================================================

    async def _handle_setup_environment(self, task: Task) -> ExecutionResult:
        plan_data = self._bus.get("current_plan") or {}
        tech_stack = plan_data.get("tech_stack") or self._bus.get("tech_stack") or []

        try:
            await self._bus.invoke(
                "environment_setup",
                {"tech_stack": tech_stack, "project_name": plan_data.get("plan_id", "assessment")},
                caller_id=self._agent_id,
            )
        except ForemanError as exc:
            return _fail(task, f"Environment setup failed: {exc}")

        venv = await self._run(task, f"python -m venv {self._config.venv_dir}")
        if not venv.success:
            return _fail(task, f"Virtual environment creation failed: {venv.error}")

        if plan_data.get("requires_datasets"):
            dataset = await self._acquire_dataset(task.model_copy(update={"path": None}))
            if not dataset.success:
                return _fail(task, f"Dataset preparation failed: {dataset.error}")

        pip = self._pip_executable()
        install = await self._run(task, f"{pip} install -r requirements.txt")
        if not install.success:
            return _fail(task, f"Dependency installation failed: {install.error}")

        return _ok(task, "Environment setup complete")

    def __repr__(self) -> str:
        return (
            f"ExecutionEngine(project_path={str(self._project_path)!r}, "
            f"max_retry_attempts={self._config.max_retry_attempts}, "
            f"disposed={self._disposed})"
        )
