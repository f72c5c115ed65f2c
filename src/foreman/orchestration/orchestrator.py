"""
foreman.orchestration.orchestrator - Session Lifecycle
========================================================

Owns one assessment-generation session from job context to verified project.

Session Flow:

    run_session(job_context)
        │
        ├── INITIALIZING (0%)   session keys written to shared state
        ├── PLANNING     (20%)  shared "current_assessment_plan" or PlanProducer
        │                       empty / task-less plan → InvalidPlanError
        ├── EXECUTING    (40%)  ExecutionEngine.execute_plan(plan)
        ├── VERIFYING    (90%)  advisory path checks, never fails the session
        └── COMPLETED   (100%)
                │
         any exception → FAILED, error surfaced as a notification
         finally        → engine.dispose(), shared "session_cleanup"

Outcome:
    completed            every task completed
    partially_completed  some tasks completed before the run aborted, hit the
                         liveness bound or was disposed
    failed               planning failed, an exception escaped, or a task
                         exhausted its retry budget before any task completed
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from foreman.core.config import VerificationConfig
from foreman.core.enums import MessageKind, NotificationLevel, SessionOutcome, SessionPhase
from foreman.core.exceptions import InvalidPlanError
from foreman.core.messages import BusMessage
from foreman.core.models import (
    JobContext,
    Plan,
    SessionResult,
    VerificationCheck,
    VerificationReport,
)
from foreman.orchestration.coordination_bus import Capability, CoordinationBus
from foreman.orchestration.execution_engine import ExecutionEngine
from foreman.orchestration.notifications import ProgressReporter


logger = structlog.get_logger()

_OUTCOME_LEVELS = {
    SessionOutcome.COMPLETED: NotificationLevel.SUCCESS,
    SessionOutcome.PARTIALLY_COMPLETED: NotificationLevel.WARNING,
    SessionOutcome.FAILED: NotificationLevel.ERROR,
}

EngineFactory = Callable[[], ExecutionEngine]

_WATCHED_NOTIFICATIONS = ("planning_completed", "execution_completed", "error_resolved")


# =============================================================================
# Plan Producers
# =============================================================================
class PlanProducer(ABC):
    """Turns a job context into a Plan. Plan generation itself lives elsewhere."""

    @abstractmethod
    async def produce(self, job_context: JobContext) -> Plan:
        ...


class StaticPlanProducer(PlanProducer):
    """Returns the same plan for every job context."""

    def __init__(self, plan: Plan) -> None:
        self._plan = plan

    async def produce(self, job_context: JobContext) -> Plan:
        return self._plan


# =============================================================================
# Orchestrator
# =============================================================================
class Orchestrator:
    """Runs sessions: plan, execute, verify.

    Args:
        bus: Coordination bus shared with the engine and resolver.
        engine_factory: Builds a fresh ExecutionEngine per session. The
            engine is disposed when the session ends.
        plan_producer: Source of plans when none is already published in
            shared state.
        project_path: Project root checked during verification.
        reporter: Progress reporter; one is created on the bus if omitted.
        verification: Paths checked by the verification pass.
    """

    def __init__(
        self,
        bus: CoordinationBus,
        engine_factory: EngineFactory,
        plan_producer: Optional[PlanProducer] = None,
        project_path: str | Path = ".",
        reporter: Optional[ProgressReporter] = None,
        verification: Optional[VerificationConfig] = None,
        agent_id: str = "orchestrator",
    ) -> None:
        self._bus = bus
        self._engine_factory = engine_factory
        self._plan_producer = plan_producer
        self._project_path = Path(project_path)
        self._reporter = reporter or ProgressReporter(bus)
        self._verification = verification or VerificationConfig()
        self._agent_id = agent_id
        self._logger = logger.bind(component="orchestrator")

        self._bus.register_capability(
            Capability(
                name="session_orchestration",
                description="Run a full session for a job context",
                parameters={"job_context": "JobContext (model or dict)"},
                handler=self._session_capability,
                owner=self._agent_id,
            )
        )
        for action in _WATCHED_NOTIFICATIONS:
            self._bus.subscribe(self._on_notification, kind=MessageKind.NOTIFICATION, action=action)

    @property
    def agent_id(self) -> str:
        return self._agent_id

    async def _session_capability(self, params: dict[str, Any]) -> dict[str, Any]:
        raw = params.get("job_context") or {}
        job_context = raw if isinstance(raw, JobContext) else JobContext.model_validate(raw)
        result = await self.run_session(job_context)
        return result.model_dump(mode="json")

    async def _on_notification(self, message: BusMessage) -> None:
        self._logger.info(
            "session_notification_received",
            action=message.action,
            from_agent=message.agent_id,
            payload=message.payload,
        )

    # =========================================================================
    # Session
    # =========================================================================

    async def run_session(self, job_context: JobContext) -> SessionResult:
        """Run one session. Never raises; failures come back as FAILED."""
        session_id = str(uuid.uuid4())
        started_at = datetime.now(timezone.utc)
        phase = SessionPhase.INITIALIZING
        plan: Optional[Plan] = None
        engine: Optional[ExecutionEngine] = None
        execution = None
        verification = None

        self._logger.info("session_started", session_id=session_id, job_title=job_context.job_title)

        try:
            self._bus.set("session_id", session_id)
            self._bus.set("project_path", str(self._project_path))
            self._bus.set("session_status", phase.value)
            self._bus.set("job_description", job_context.job_description)
            self._bus.set("dataset_context", None)
            self._bus.set("job_title", job_context.job_title)
            self._bus.set("tech_stack", list(job_context.tech_stack))
            self._bus.set("preferred_language", job_context.preferred_language)
            if job_context.resume_text is not None:
                self._bus.set("resume_text", job_context.resume_text)
            await self._transition(phase, "Initializing session", 0)

            phase = SessionPhase.PLANNING
            await self._transition(phase, "Preparing assessment plan", 20)
            plan = await self._obtain_plan(job_context)
            self._bus.set("current_plan", plan.model_dump(mode="json"))

            phase = SessionPhase.EXECUTING
            await self._transition(phase, f"Executing {len(plan.tasks)} tasks", 40)
            engine = self._engine_factory()
            execution = await engine.execute_plan(plan)

            error = None
            if execution.success:
                phase = SessionPhase.VERIFYING
                await self._transition(phase, "Verifying project", 90)
                verification = self.verify(plan)
                outcome = SessionOutcome.COMPLETED
                self._bus.set("clear_retry_attempts", True)
            elif execution.aborted and execution.completed == 0:
                outcome = SessionOutcome.FAILED
                error = f"Task {execution.failed_task_id} exhausted its retry budget before any task completed"
            else:
                outcome = SessionOutcome.PARTIALLY_COMPLETED

            phase = SessionPhase.FAILED if outcome is SessionOutcome.FAILED else SessionPhase.COMPLETED
            self._bus.set("session_status", outcome.value)
            await self._reporter.report(
                self._agent_id,
                f"Session finished: {outcome.value} ({execution.completed}/{execution.total} tasks)",
                level=_OUTCOME_LEVELS[outcome],
                progress=100,
                session_id=session_id,
            )
        except Exception as exc:
            self._logger.error("session_failed", session_id=session_id, phase=phase.value, error=str(exc))
            outcome = SessionOutcome.FAILED
            error = str(exc)
            failed_in = phase
            phase = SessionPhase.FAILED
            self._bus.set("session_status", outcome.value)
            await self._reporter.report(
                self._agent_id,
                f"Session failed during {failed_in.value}: {exc}",
                level=NotificationLevel.ERROR,
                session_id=session_id,
            )
        finally:
            if engine is not None:
                engine.dispose()
            self._bus.set("session_cleanup", {"session_id": session_id, "completed": True})

        self._logger.info("session_finished", session_id=session_id, outcome=outcome.value)
        return SessionResult(
            session_id=session_id,
            outcome=outcome,
            phase=phase,
            plan_id=plan.plan_id if plan else None,
            execution=execution,
            verification=verification,
            error=error,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    async def _transition(self, phase: SessionPhase, message: str, progress: int) -> None:
        self._bus.set("session_status", phase.value)
        level = NotificationLevel.VERIFY if phase == SessionPhase.VERIFYING else NotificationLevel.PLAN
        await self._reporter.report(self._agent_id, message, level=level, progress=progress, phase=phase.value)

    async def _obtain_plan(self, job_context: JobContext) -> Plan:
        published = self._bus.get("current_assessment_plan")
        if published is not None:
            plan = published if isinstance(published, Plan) else Plan.model_validate(published)
            self._logger.info("plan_taken_from_shared_state", plan_id=plan.plan_id)
        elif self._plan_producer is not None:
            plan = await self._plan_producer.produce(job_context)
        else:
            raise InvalidPlanError("No plan available: nothing published and no plan producer configured")

        if plan is None or not plan.tasks:
            raise InvalidPlanError(
                "Invalid assessment plan: no tasks",
                plan_id=plan.plan_id if plan else None,
            )
        return plan

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self, plan: Plan) -> VerificationReport:
        """Check expected output paths. Advisory: the result never fails a session.

        Data-oriented plans also check the dataset recorded in shared
        ``dataset_context`` by this session, falling back to the configured
        ``dataset_path`` when no dataset task ran.
        """
        checks = [
            VerificationCheck(name=f"exists:{relative}", path=relative, passed=(self._project_path / relative).exists())
            for relative in self._verification.expected_paths
        ]
        if plan.is_data_oriented:
            produced = self._bus.get("dataset_context") or {}
            dataset = produced.get("path") or self._verification.dataset_path
            checks.append(
                VerificationCheck(name="dataset", path=dataset, passed=(self._project_path / dataset).exists())
            )

        passed_count = sum(1 for check in checks if check.passed)
        pass_rate = round(passed_count / len(checks) * 100) if checks else 100
        report = VerificationReport(
            checks=checks,
            pass_rate=pass_rate,
            passed=pass_rate >= self._verification.pass_threshold,
        )

        log = self._logger.info if report.passed else self._logger.warning
        log(
            "verification_finished",
            plan_id=plan.plan_id,
            pass_rate=pass_rate,
            failed=[check.path for check in report.failed_checks],
        )
        return report

    def __repr__(self) -> str:
        return f"Orchestrator(project_path={str(self._project_path)!r})"
