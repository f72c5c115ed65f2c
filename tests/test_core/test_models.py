"""
Tests for foreman.core.models, enums and exceptions
=====================================================

What's Being Tested:
    - Task validation, legacy task type names and derived retry tasks
    - ErrorResolution.has_corrected_action
    - RetryLedger bookkeeping
    - Report helpers (progress, failed checks, dependency validity)
    - Exception serialization
"""

import pytest
from pydantic import ValidationError

from foreman.core.enums import MessageKind, TaskType
from foreman.core.exceptions import (
    CapabilityNotFoundError,
    ExecutionError,
    ForemanError,
    InvalidPlanError,
    PlanValidationError,
)
from foreman.core.messages import BusMessage
from foreman.core.models import (
    CommandResult,
    DependencyReport,
    ErrorResolution,
    ExecutionReport,
    Plan,
    RetryLedger,
    Task,
    VerificationCheck,
    VerificationReport,
)


# =============================================================================
# Task
# =============================================================================
class TestTask:
    """Tests for the Task model."""

    def test_minimal_task(self) -> None:
        task = Task(id="a", type=TaskType.CREATE_DIRECTORY, path="src")
        assert task.dependencies == []
        assert task.command is None

    def test_type_accepts_string(self) -> None:
        assert Task(id="a", type="run_command", command="ls").type is TaskType.RUN_COMMAND

    @pytest.mark.parametrize(
        "legacy, expected",
        [
            ("create_folder", TaskType.CREATE_DIRECTORY),
            ("assessment_question", TaskType.WRITE_ASSESSMENT_DOC),
            ("download_dataset", TaskType.FETCH_DATASET),
            ("synthetic_dataset", TaskType.GENERATE_DATASET),
        ],
    )
    def test_legacy_type_names(self, legacy, expected) -> None:
        """Plans using the older type spellings still validate."""
        assert Task(id="a", type=legacy).type is expected

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Task(id="a", type="launch_rocket")

    def test_derive_retry(self) -> None:
        """A retry task gets '<id>_retry_<n>' and keeps everything else."""
        task = Task(
            id="install",
            type=TaskType.RUN_COMMAND,
            command="pip install x",
            description="Install x",
            dependencies=["venv"],
        )

        retry = task.derive_retry(2, command="pip3 install x")

        assert retry.id == "install_retry_2"
        assert retry.command == "pip3 install x"
        assert retry.description == "Install x (retry 2)"
        assert retry.dependencies == ["venv"]
        assert task.command == "pip install x", "Original task must not be mutated"

    def test_derive_retry_keeps_command_when_none_given(self) -> None:
        task = Task(id="f", type=TaskType.CREATE_FILE, path="a.py", content="print 1")
        retry = task.derive_retry(1, content="print(1)")
        assert retry.content == "print(1)"
        assert retry.command is None


# =============================================================================
# Plan and Reports
# =============================================================================
class TestPlanAndReports:
    """Plan helpers and report properties."""

    def test_plan_task_ids(self) -> None:
        plan = Plan(tasks=[Task(id="a", type="create_directory"), Task(id="b", type="create_file")])
        assert plan.task_ids() == {"a", "b"}

    def test_data_oriented_plan(self) -> None:
        assert Plan(assessment_type="data_science").is_data_oriented
        assert Plan(requires_datasets=True).is_data_oriented
        assert not Plan(assessment_type="backend").is_data_oriented

    def test_execution_report_progress(self) -> None:
        assert ExecutionReport(success=False, completed=2, total=3).progress == 67
        assert ExecutionReport(success=True, total=0).progress == 100

    def test_dependency_report_validity(self) -> None:
        assert DependencyReport(order=["a"]).is_valid
        assert not DependencyReport(missing={"c": ["x"]}).is_valid
        assert not DependencyReport(cycles=["a", "b"]).is_valid

    def test_verification_failed_checks(self) -> None:
        report = VerificationReport(
            checks=[
                VerificationCheck(name="readme", path="README.md", passed=True),
                VerificationCheck(name="src", path="src", passed=False),
            ],
            pass_rate=50,
        )
        assert [check.path for check in report.failed_checks] == ["src"]

    def test_command_result_error_text_prefers_stderr(self) -> None:
        assert CommandResult(success=False, stderr="boom", stdout="out").error_text == "boom"


# =============================================================================
# ErrorResolution
# =============================================================================
class TestErrorResolution:
    """has_corrected_action decides whether the engine runs an inline retry."""

    def test_fixed_with_command(self) -> None:
        assert ErrorResolution(fixed=True, retry_command="pip3 install x").has_corrected_action

    def test_fixed_with_content(self) -> None:
        assert ErrorResolution(fixed=True, revised_content="print(1)").has_corrected_action

    def test_fixed_without_action(self) -> None:
        assert not ErrorResolution(fixed=True).has_corrected_action

    def test_unfixed_with_command(self) -> None:
        assert not ErrorResolution(fixed=False, retry_command="x").has_corrected_action


# =============================================================================
# RetryLedger
# =============================================================================
class TestRetryLedger:
    """Per-task attempt counting."""

    def test_starts_at_zero(self) -> None:
        ledger = RetryLedger()
        assert ledger.attempts("t") == 0
        assert "t" not in ledger

    def test_increment_by_one(self) -> None:
        ledger = RetryLedger()
        assert ledger.increment("t") == 1
        assert ledger.increment("t") == 2
        assert ledger.snapshot() == {"t": 2}

    def test_reset_deletes_counter(self) -> None:
        ledger = RetryLedger()
        ledger.increment("t")
        ledger.reset("t")
        assert "t" not in ledger

    def test_mark_exhausted_deletes_counter(self) -> None:
        ledger = RetryLedger()
        ledger.increment("t")
        ledger.mark_exhausted("t")
        assert "t" not in ledger, "Counter must be absent after exhaustion"
        assert ledger.is_exhausted("t")

    def test_clear_one_and_all(self) -> None:
        ledger = RetryLedger()
        ledger.increment("a")
        ledger.mark_exhausted("b")
        ledger.clear("b")
        assert not ledger.is_exhausted("b")
        assert len(ledger) == 1
        ledger.clear()
        assert len(ledger) == 0


# =============================================================================
# Messages and Exceptions
# =============================================================================
class TestMessagesAndExceptions:
    """BusMessage responses and exception serialization."""

    def test_create_response_keeps_correlation(self) -> None:
        request = BusMessage(agent_id="a", kind=MessageKind.REQUEST, action="resolve_error")
        response = request.create_response("b", {"ok": True})
        assert response.kind is MessageKind.RESPONSE
        assert response.action == "resolve_error"
        assert response.correlation_id == request.message_id, (
            "An uncorrelated request is answered under its own message_id"
        )

    def test_capability_not_found_message(self) -> None:
        error = CapabilityNotFoundError("dataset_search")
        assert str(error) == "Capability not found: dataset_search"
        assert error.to_dict()["details"]["capability"] == "dataset_search"

    def test_execution_error_details(self) -> None:
        error = ExecutionError("bad", capability="file_operations", task_id="t1")
        assert error.details == {"capability": "file_operations", "task_id": "t1"}
        assert isinstance(error, ForemanError)

    def test_plan_validation_error_is_invalid_plan(self) -> None:
        error = PlanValidationError("cycle", plan_id="p1")
        assert isinstance(error, InvalidPlanError)
        assert error.error_code == "PLAN_DEPENDENCY_ERROR"
        assert error.details["plan_id"] == "p1"
