"""
foreman.core - Foundation Layer
=================================

Data structures and configuration every other package depends on:

    - config:      ForemanConfig and its nested sections, load_config()
    - enums:       TaskType, ErrorCategory, SessionPhase, ...
    - models:      Task, Plan, ExecutionResult, ErrorResolution, reports
    - messages:    BusMessage, ProgressEvent
    - exceptions:  ForemanError hierarchy
    - logging:     structlog setup

Dependency Rule:
    core/ imports nothing else from the foreman package.
"""

from foreman.core.config import (
    DatasetConfig,
    ExecutionConfig,
    ForemanConfig,
    LLMConfig,
    SandboxConfig,
    VerificationConfig,
    load_config,
)
from foreman.core.enums import (
    ErrorCategory,
    MessageKind,
    NotificationLevel,
    ResolutionTier,
    SessionOutcome,
    SessionPhase,
    TaskType,
)
from foreman.core.exceptions import (
    CapabilityNotFoundError,
    CollaboratorError,
    ConfigurationError,
    CoordinationBusError,
    ExecutionError,
    ForemanError,
    InvalidPlanError,
    PlanValidationError,
)
from foreman.core.messages import BusMessage, ProgressEvent
from foreman.core.models import (
    ErrorResolution,
    ExecutionReport,
    ExecutionResult,
    JobContext,
    Plan,
    SessionResult,
    Task,
)

__all__ = [
    # Config
    "ForemanConfig",
    "LLMConfig",
    "ExecutionConfig",
    "DatasetConfig",
    "SandboxConfig",
    "VerificationConfig",
    "load_config",
    # Enums
    "TaskType",
    "ErrorCategory",
    "ResolutionTier",
    "MessageKind",
    "NotificationLevel",
    "SessionPhase",
    "SessionOutcome",
    # Exceptions
    "ForemanError",
    "ConfigurationError",
    "CoordinationBusError",
    "CapabilityNotFoundError",
    "ExecutionError",
    "CollaboratorError",
    "InvalidPlanError",
    "PlanValidationError",
    # Messages
    "BusMessage",
    "ProgressEvent",
    # Models
    "Task",
    "Plan",
    "ExecutionResult",
    "ErrorResolution",
    "ExecutionReport",
    "JobContext",
    "SessionResult",
]
