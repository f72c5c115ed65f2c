"""
foreman.core.models - Core Data Models
========================================

Pydantic models that flow between the Orchestrator, the ExecutionEngine and
the ErrorResolver.

Model Hierarchy:
    Task             → one unit of work (job ticket)
    Plan             → ordered list of tasks plus project metadata
    ExecutionResult  → outcome of running one task
    ErrorResolution  → outcome of one recovery attempt
    ExecutionReport  → outcome of running a whole plan
    DependencyReport → static analysis of a plan's dependency graph
    VerificationReport / VerificationCheck → post-execution checks
    JobContext       → job data the session is built for
    SessionResult    → outcome of an orchestrated session
    CommandResult    → outcome of one shell command

Data Flow:
    ┌──────────────┐   Plan          ┌──────────────────┐  Task + error  ┌──────────────┐
    │ Orchestrator │ ──────────────→ │ ExecutionEngine  │ ─────────────→ │ ErrorResolver│
    │              │ ←────────────── │                  │ ←───────────── │              │
    └──────────────┘ ExecutionReport └──────────────────┘ ErrorResolution└──────────────┘

Models are immutable by convention. Derived copies are built with
``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from foreman.core.enums import (
    ErrorCategory,
    Priority,
    ResolutionTier,
    SessionOutcome,
    SessionPhase,
    TaskType,
)


def _generate_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Task
# =============================================================================
class Task(BaseModel):
    """A unit of work inside a plan.

    Only the fields relevant to ``type`` are used by its handler: ``path``
    and ``content`` for files, ``command`` and ``cwd`` for shell work.
    Dependencies name other task ids in the same plan.

    Example:
        >>> Task(id="install", type="run_command", command="pip install pandas")
    """

    id: str = Field(description="Unique identifier within the plan")
    type: TaskType = Field(description="Kind of work; selects the handler")
    path: Optional[str] = Field(
        default=None,
        description="Target path relative to the project directory",
    )
    content: Optional[str] = Field(
        default=None,
        description="File body for file-producing tasks",
    )
    command: Optional[str] = Field(
        default=None,
        description="Shell command for run-command tasks",
    )
    cwd: Optional[str] = Field(
        default=None,
        description="Working directory relative to the project directory",
    )
    description: str = Field(
        default="",
        description="Human-readable summary used in logs and progress events",
    )
    priority: Priority = Field(default=Priority.MEDIUM)
    dependencies: list[str] = Field(
        default_factory=list,
        description="IDs of tasks that must complete first",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        # Legacy spellings ("create_folder", ...) are folded by TaskType._missing_.
        if isinstance(value, str):
            return TaskType(value)
        return value

    def derive_retry(
        self,
        attempt: int,
        command: Optional[str] = None,
        content: Optional[str] = None,
    ) -> "Task":
        """Build the corrected copy executed inline after a resolution.

        The derived task keeps type, path and dependencies, and is never
        enqueued: it exists only for the immediate retry.

        Args:
            attempt: Retry number, used in the id and description.
            command: Replacement command, if the resolution supplied one.
            content: Replacement file content, if the resolution supplied one.
        """
        update: dict[str, Any] = {
            "id": f"{self.id}_retry_{attempt}",
            "description": f"{self.description} (retry {attempt})",
        }
        if command is not None:
            update["command"] = command
        if content is not None:
            update["content"] = content
        return self.model_copy(update=update)


# =============================================================================
# Plan
# =============================================================================
class Plan(BaseModel):
    """Ordered list of tasks plus the metadata verification needs."""

    plan_id: str = Field(default_factory=_generate_id)
    tasks: list[Task] = Field(default_factory=list)
    assessment_type: Optional[str] = Field(
        default=None,
        description="E.g. 'data_science', 'backend'; drives dataset checks",
    )
    difficulty: Optional[str] = Field(default=None)
    tech_stack: list[str] = Field(default_factory=list)
    requires_datasets: bool = Field(default=False)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_data_oriented(self) -> bool:
        """True when verification should look for a dataset."""
        return self.assessment_type == "data_science" or self.requires_datasets

    def task_ids(self) -> set[str]:
        return {task.id for task in self.tasks}


# =============================================================================
# Execution Results
# =============================================================================
class ExecutionResult(BaseModel):
    """Outcome of executing a single task. Never raised, always returned."""

    model_config = {"frozen": True}

    success: bool
    output: str = ""
    error: Optional[str] = None
    task: Task
    duration_seconds: float = Field(default=0.0, ge=0)


class ErrorResolution(BaseModel):
    """Outcome of a recovery attempt.

    ``fixed`` with a ``retry_command`` or ``revised_content`` means the
    engine should run a derived retry task. ``fixed`` with ``skip_task``
    means the step is accepted as degraded and counted as completed.
    ``fixed`` with none of these means the resolver already repaired the
    environment (for example by creating a missing directory) and the
    original task should simply be requeued.
    """

    fixed: bool
    retry_command: Optional[str] = None
    revised_content: Optional[str] = None
    skip_task: bool = Field(
        default=False,
        description="Accept the failure and count the task as completed",
    )
    error_analysis: str = ""
    recommendations: list[str] = Field(default_factory=list)
    category: Optional[ErrorCategory] = None
    tier: ResolutionTier = ResolutionTier.NONE

    @property
    def has_corrected_action(self) -> bool:
        return self.fixed and (
            self.retry_command is not None or self.revised_content is not None
        )


class DependencyReport(BaseModel):
    """Static analysis of a plan's dependency graph.

    Attributes:
        missing: task id → dependency ids that name no task in the plan.
        cycles: ids of tasks that sit on (or behind) a dependency cycle.
        order: topological order of the tasks that can be scheduled.
    """

    missing: dict[str, list[str]] = Field(default_factory=dict)
    cycles: list[str] = Field(default_factory=list)
    order: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.missing and not self.cycles


class ExecutionReport(BaseModel):
    """Outcome of executing a whole plan."""

    success: bool
    completed: int = 0
    total: int = 0
    dequeue_attempts: int = 0
    aborted: bool = Field(
        default=False,
        description="A task exhausted its retry budget",
    )
    stopped_by_liveness_bound: bool = False
    disposed: bool = False
    failed_task_id: Optional[str] = None
    completed_ids: list[str] = Field(default_factory=list)
    dependency_report: Optional[DependencyReport] = None

    @property
    def progress(self) -> int:
        if self.total == 0:
            return 100
        return round(self.completed / self.total * 100)


# =============================================================================
# Retry Ledger
# =============================================================================
# Per-task attempt counters for standalone resolutions. Task ids whose budget
# was spent without a fix are kept in ``exhausted`` so a later call cannot
# restart the budget from zero.
# =============================================================================
class RetryLedger:
    """Mutable task id → attempt count map with an exhausted set."""

    def __init__(self) -> None:
        self._attempts: dict[str, int] = {}
        self._exhausted: set[str] = set()

    def attempts(self, task_id: str) -> int:
        return self._attempts.get(task_id, 0)

    def increment(self, task_id: str) -> int:
        count = self._attempts.get(task_id, 0) + 1
        self._attempts[task_id] = count
        return count

    def reset(self, task_id: str) -> None:
        """Forget the counter for one task (after a fix or exhaustion)."""
        self._attempts.pop(task_id, None)

    def mark_exhausted(self, task_id: str) -> None:
        self._attempts.pop(task_id, None)
        self._exhausted.add(task_id)

    def is_exhausted(self, task_id: str) -> bool:
        return task_id in self._exhausted

    def clear(self, task_id: Optional[str] = None) -> None:
        if task_id is None:
            self._attempts.clear()
            self._exhausted.clear()
        else:
            self._attempts.pop(task_id, None)
            self._exhausted.discard(task_id)

    def snapshot(self) -> dict[str, int]:
        return dict(self._attempts)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._attempts

    def __len__(self) -> int:
        return len(self._attempts)


# =============================================================================
# Verification
# =============================================================================
class VerificationCheck(BaseModel):
    name: str
    path: str
    passed: bool


class VerificationReport(BaseModel):
    """Advisory post-execution checks. Never changes the session outcome."""

    checks: list[VerificationCheck] = Field(default_factory=list)
    pass_rate: int = Field(default=0, ge=0, le=100)
    passed: bool = False

    @property
    def failed_checks(self) -> list[VerificationCheck]:
        return [check for check in self.checks if not check.passed]


# =============================================================================
# Session
# =============================================================================
class JobContext(BaseModel):
    """Job data a session is built for. Published to shared state."""

    job_description: str = Field(default="Data analysis role")
    job_title: str = Field(default="Data Scientist")
    resume_text: Optional[str] = None
    tech_stack: list[str] = Field(default_factory=lambda: ["python", "pandas"])
    preferred_language: str = Field(default="python")


class SessionResult(BaseModel):
    session_id: str
    outcome: SessionOutcome
    phase: SessionPhase
    plan_id: Optional[str] = None
    execution: Optional[ExecutionReport] = None
    verification: Optional[VerificationReport] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None


# =============================================================================
# Commands
# =============================================================================
class CommandResult(BaseModel):
    """Outcome of a single shell command, local or sandboxed."""

    model_config = {"frozen": True}

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def error_text(self) -> str:
        """Best description of a failure: stderr, else stdout, else the exit code."""
        if self.stderr.strip():
            return self.stderr.strip()
        if self.stdout.strip():
            return self.stdout.strip()
        return f"Command exited with code {self.exit_code}"
