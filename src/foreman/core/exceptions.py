"""
foreman.core.exceptions - Custom Exception Hierarchy
======================================================

Structured exceptions for Foreman. Every exception carries a machine-readable
``error_code`` and a ``details`` dict so that failures serialize cleanly into
structlog events and into bus error messages.

Exception Hierarchy:
    ForemanError (base)
        ├── ConfigurationError        - Invalid config file or values
        ├── CoordinationBusError      - Bus misuse (publishing on a closed bus)
        ├── CapabilityNotFoundError   - invoke() on an unregistered capability
        ├── ExecutionError            - A capability failed to honour its contract
        ├── CollaboratorError         - Command runner, sandbox, LLM or HTTP failure
        └── InvalidPlanError          - Empty or malformed plan
              └── PlanValidationError - Unknown or cyclic dependencies (strict mode)

Propagation Rules:
    Task handlers and the error resolver convert every internal failure into
    a result value (ExecutionResult / ErrorResolution). Only the exceptions
    above escape, and only where a caller can act on them:

        Capability handler raises ExecutionError
            → CoordinationBus.invoke() logs and re-raises
            → caller (handler) converts it into ExecutionResult(success=False)

Usage:
    >>> raise CapabilityNotFoundError("dataset_search")
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
class ForemanError(Exception):
    """Base exception for all Foreman errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable code in UPPER_SNAKE_CASE.
        details: Additional debugging context.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception for logging and bus error payloads."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ConfigurationError(ForemanError):
    """Raised when configuration is invalid or missing. Fail fast at startup."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class CoordinationBusError(ForemanError):
    """Raised when the coordination bus is used incorrectly."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUS_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Capability Errors
# =============================================================================
# Capabilities are named async operations registered on the bus. Invoking a
# name nobody registered is a wiring bug; a handler failing is a runtime
# condition its caller is expected to turn into a failed task result.
# =============================================================================
class CapabilityNotFoundError(ForemanError):
    """Raised by ``CoordinationBus.invoke`` for an unregistered capability.

    Example:
        >>> raise CapabilityNotFoundError("dataset_search")
    """

    def __init__(
        self,
        name: str,
        error_code: str = "CAPABILITY_NOT_FOUND",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["capability"] = name

        super().__init__(
            message=f"Capability not found: {name}",
            error_code=error_code,
            details=enriched_details,
        )

        self.name = name


class ExecutionError(ForemanError):
    """Raised by a capability handler that cannot honour its contract.

    Attributes:
        capability: Name of the capability that failed, when known.
        task_id: ID of the task being executed, when known.
    """

    def __init__(
        self,
        message: str,
        capability: Optional[str] = None,
        task_id: Optional[str] = None,
        error_code: str = "EXECUTION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if capability:
            enriched_details["capability"] = capability
        if task_id:
            enriched_details["task_id"] = task_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.capability = capability
        self.task_id = task_id


class CollaboratorError(ForemanError):
    """Raised when an external collaborator fails.

    Collaborators are the command runner, the sandbox runtime, the completion
    service and the HTTP client used for dataset downloads.

    Attributes:
        collaborator: Short name of the failing collaborator ("docker", "llm", ...).
    """

    def __init__(
        self,
        message: str,
        collaborator: str,
        error_code: str = "COLLABORATOR_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["collaborator"] = collaborator

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.collaborator = collaborator


# =============================================================================
# Plan Errors
# =============================================================================
class InvalidPlanError(ForemanError):
    """Raised when a plan is missing, empty or otherwise unusable."""

    def __init__(
        self,
        message: str,
        plan_id: Optional[str] = None,
        error_code: str = "INVALID_PLAN",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if plan_id:
            enriched_details["plan_id"] = plan_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.plan_id = plan_id


class PlanValidationError(InvalidPlanError):
    """Raised in strict mode when a plan references unknown tasks or has cycles.

    Example:
        >>> raise PlanValidationError(
        ...     message="Plan has dependency problems",
        ...     plan_id="plan-1",
        ...     details={"missing": {"c": ["x"]}, "cycles": []},
        ... )
    """

    def __init__(
        self,
        message: str,
        plan_id: Optional[str] = None,
        error_code: str = "PLAN_DEPENDENCY_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message, plan_id=plan_id, error_code=error_code, details=details
        )
