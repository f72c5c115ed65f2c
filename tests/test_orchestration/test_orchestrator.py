"""
Tests for foreman.orchestration.orchestrator - Orchestrator
=============================================================

What's Being Tested:
    - Session outcomes: completed, partially_completed, failed
    - Plan source: shared state first, then the PlanProducer
    - Shared session keys and the finally-block cleanup
    - Advisory verification pass rate
    - The session_orchestration capability
"""

import pytest

from foreman.capabilities.datasets import DatasetService, register_dataset_capabilities
from foreman.core.config import VerificationConfig
from foreman.core.enums import NotificationLevel, SessionOutcome, SessionPhase, TaskType
from foreman.core.models import JobContext, Plan, Task
from foreman.orchestration.execution_engine import ExecutionEngine
from foreman.orchestration.orchestrator import Orchestrator, StaticPlanProducer

from tests.conftest import fail


def _scaffold_plan() -> Plan:
    return Plan(
        plan_id="scaffold",
        tasks=[
            Task(id="src", type=TaskType.CREATE_DIRECTORY, path="src"),
            Task(id="tests", type=TaskType.CREATE_DIRECTORY, path="tests"),
            Task(id="readme", type=TaskType.CREATE_FILE, path="README.md", content="# Project\n", dependencies=["src"]),
        ],
    )


@pytest.fixture
def engines():
    """Every engine built by the orchestrator's factory, in order."""
    return []


@pytest.fixture
def make_orchestrator(bus, runner, project_path, execution_config, reporter, resolver, engines):
    def factory(plan_producer=None, verification=None) -> Orchestrator:
        def build_engine() -> ExecutionEngine:
            engine = ExecutionEngine(bus, runner, project_path, config=execution_config, reporter=reporter)
            engines.append(engine)
            return engine

        return Orchestrator(
            bus,
            build_engine,
            plan_producer=plan_producer,
            project_path=project_path,
            reporter=reporter,
            verification=verification,
        )

    return factory


# =============================================================================
# Outcomes
# =============================================================================
class TestSessionOutcomes:
    """completed / partially_completed / failed."""

    async def test_completed_session(self, make_orchestrator, project_path) -> None:
        orchestrator = make_orchestrator(StaticPlanProducer(_scaffold_plan()))

        result = await orchestrator.run_session(JobContext())

        assert result.outcome is SessionOutcome.COMPLETED
        assert result.phase is SessionPhase.COMPLETED
        assert result.plan_id == "scaffold"
        assert result.execution.completed == 3
        assert result.verification.pass_rate == 100
        assert result.verification.passed is True
        assert result.completed_at >= result.started_at

    async def test_partial_session(self, make_orchestrator, runner) -> None:
        """An aborted run is a partial completion and skips verification."""
        runner.script("make", fail("something odd happened"))
        plan = Plan(tasks=[
            Task(id="src", type=TaskType.CREATE_DIRECTORY, path="src"),
            Task(id="build", type=TaskType.RUN_COMMAND, command="make"),
        ])
        orchestrator = make_orchestrator(StaticPlanProducer(plan))

        result = await orchestrator.run_session(JobContext())

        assert result.outcome is SessionOutcome.PARTIALLY_COMPLETED
        assert result.execution.aborted is True
        assert result.execution.completed == 1
        assert result.verification is None

    async def test_abort_before_any_completion_fails(self, make_orchestrator, runner, bus) -> None:
        """An exhausted retry budget with nothing completed is a failure."""
        runner.script("make", fail("something odd happened"))
        plan = Plan(tasks=[Task(id="build", type=TaskType.RUN_COMMAND, command="make")])
        orchestrator = make_orchestrator(StaticPlanProducer(plan))

        result = await orchestrator.run_session(JobContext())

        assert result.outcome is SessionOutcome.FAILED
        assert result.phase is SessionPhase.FAILED
        assert result.execution.aborted is True
        assert result.execution.completed == 0
        assert "build" in result.error
        assert result.verification is None
        assert bus.get("session_status") == "failed"

    async def test_no_plan_source_fails(self, make_orchestrator, bus) -> None:
        orchestrator = make_orchestrator()

        result = await orchestrator.run_session(JobContext())

        assert result.outcome is SessionOutcome.FAILED
        assert result.phase is SessionPhase.FAILED
        assert "No plan available" in result.error
        assert bus.get("session_status") == "failed"

    async def test_empty_plan_fails(self, make_orchestrator, engines) -> None:
        orchestrator = make_orchestrator(StaticPlanProducer(Plan(tasks=[])))

        result = await orchestrator.run_session(JobContext())

        assert result.outcome is SessionOutcome.FAILED
        assert "no tasks" in result.error
        assert engines == [], "No engine is built for a rejected plan"

    async def test_failure_is_reported(self, make_orchestrator, reporter) -> None:
        events = []
        reporter.add_sink(events.append)

        await make_orchestrator().run_session(JobContext())

        assert events[-1].level is NotificationLevel.ERROR
        assert events[-1].message.startswith("Session failed during planning")


# =============================================================================
# Session Plumbing
# =============================================================================
class TestSessionPlumbing:
    """Shared state, plan source precedence, disposal."""

    async def test_session_keys_published(self, make_orchestrator, bus, project_path) -> None:
        orchestrator = make_orchestrator(StaticPlanProducer(_scaffold_plan()))
        context = JobContext(job_title="ML Engineer", tech_stack=["python", "numpy"], resume_text="cv")

        result = await orchestrator.run_session(context)

        assert bus.get("session_id") == result.session_id
        assert bus.get("project_path") == str(project_path)
        assert bus.get("job_title") == "ML Engineer"
        assert bus.get("tech_stack") == ["python", "numpy"]
        assert bus.get("resume_text") == "cv"
        assert bus.get("session_status") == "completed"
        assert bus.get("current_plan")["plan_id"] == "scaffold"
        assert bus.get("session_cleanup") == {"session_id": result.session_id, "completed": True}

    async def test_shared_plan_takes_precedence(self, make_orchestrator, bus, project_path) -> None:
        shared = Plan(plan_id="shared", tasks=[Task(id="only", type=TaskType.CREATE_DIRECTORY, path="only")])
        bus.set("current_assessment_plan", shared.model_dump(mode="json"))
        orchestrator = make_orchestrator(StaticPlanProducer(_scaffold_plan()))

        result = await orchestrator.run_session(JobContext())

        assert result.plan_id == "shared"
        assert (project_path / "only").is_dir()
        assert not (project_path / "src").exists()

    async def test_engine_disposed_after_session(self, make_orchestrator, engines) -> None:
        orchestrator = make_orchestrator(StaticPlanProducer(_scaffold_plan()))

        await orchestrator.run_session(JobContext())
        await orchestrator.run_session(JobContext())

        assert len(engines) == 2, "Each session builds its own engine"
        assert all(engine.is_disposed for engine in engines)

    async def test_completed_session_clears_resolver_ledger(self, make_orchestrator, resolver) -> None:
        resolver.ledger.increment("stale-task")
        orchestrator = make_orchestrator(StaticPlanProducer(_scaffold_plan()))

        await orchestrator.run_session(JobContext())

        assert resolver.get_retry_attempts() == {}

    async def test_phase_progress_sequence(self, make_orchestrator, reporter) -> None:
        events = []
        reporter.add_sink(events.append)
        orchestrator = make_orchestrator(StaticPlanProducer(_scaffold_plan()))

        await orchestrator.run_session(JobContext())

        phases = [(e.context["phase"], e.progress) for e in events if "phase" in e.context]
        assert phases == [("initializing", 0), ("planning", 20), ("executing", 40), ("verifying", 90)]
        assert events[-1].progress == 100

    async def test_session_orchestration_capability(self, make_orchestrator, bus) -> None:
        make_orchestrator(StaticPlanProducer(_scaffold_plan()))

        result = await bus.invoke(
            "session_orchestration",
            {"job_context": {"job_title": "Analyst"}},
            caller_id="test",
        )

        assert result["outcome"] == "completed"
        assert bus.get("job_title") == "Analyst"


# =============================================================================
# Verification
# =============================================================================
class TestVerification:
    """Advisory path checks."""

    async def test_partial_pass_rate(self, make_orchestrator, project_path) -> None:
        (project_path / "README.md").write_text("x")
        orchestrator = make_orchestrator()

        report = orchestrator.verify(Plan(tasks=[]))

        assert report.pass_rate == 33
        assert report.passed is False
        assert [check.path for check in report.failed_checks] == ["src", "tests"]

    async def test_data_oriented_plan_checks_dataset(self, make_orchestrator, project_path) -> None:
        (project_path / "data").mkdir()
        (project_path / "data" / "dataset.csv").write_text("a,b\n")
        orchestrator = make_orchestrator(verification=VerificationConfig(expected_paths=[]))

        report = orchestrator.verify(Plan(assessment_type="data_science"))

        assert [check.name for check in report.checks] == ["dataset"]
        assert report.pass_rate == 100

    async def test_dataset_check_uses_recorded_dataset(self, make_orchestrator, bus, project_path) -> None:
        (project_path / "datasets").mkdir()
        (project_path / "datasets" / "regression_dataset.csv").write_text("a,b\n")
        bus.set("dataset_context", {"path": "datasets/regression_dataset.csv", "data_type": "regression"})
        orchestrator = make_orchestrator(verification=VerificationConfig(expected_paths=[]))

        report = orchestrator.verify(Plan(assessment_type="data_science"))

        assert report.checks[0].path == "datasets/regression_dataset.csv"
        assert report.pass_rate == 100

    async def test_session_verifies_the_generated_dataset(self, make_orchestrator, bus, project_path) -> None:
        register_dataset_capabilities(bus, DatasetService(project_path, seed=2))
        plan = Plan(
            assessment_type="data_science",
            tasks=[Task(id="gen", type=TaskType.GENERATE_DATASET, metadata={"data_type": "timeseries", "rows": 3})],
        )
        orchestrator = make_orchestrator(
            StaticPlanProducer(plan), verification=VerificationConfig(expected_paths=[])
        )

        result = await orchestrator.run_session(JobContext())

        assert result.verification.checks[0].path == "datasets/timeseries_dataset.csv"
        assert result.verification.passed is True

    async def test_no_checks_is_full_pass(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(verification=VerificationConfig(expected_paths=[]))
        report = orchestrator.verify(Plan())
        assert report.pass_rate == 100
        assert report.passed is True
