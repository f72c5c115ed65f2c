"""
foreman.core.enums - Type-Safe Enumerations
=============================================

All enums inherit from both ``str`` and ``Enum`` so they serialize to plain
strings and compare equal to them: ``TaskType.RUN_COMMAND == "run_command"``.

    ┌─────────────────────────────────────────────────────────────────┐
    │  PLANS          TaskType, Priority, SyntheticDataKind           │
    │  BUS            MessageKind, NotificationLevel                  │
    │  RECOVERY       ErrorCategory, ResolutionTier                   │
    │  SESSION        SessionPhase, SessionOutcome                    │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum
from typing import Optional


# =============================================================================
# Task Type Enumeration
# =============================================================================
# Each value has exactly one handler in the ExecutionEngine dispatch table.
# Plans produced by older planners used different spellings for a few of
# the kinds; _missing_ folds those onto the current members so that such
# plans still validate.
# =============================================================================
_LEGACY_TASK_TYPES = {
    "create_folder": "create_directory",
    "assessment_question": "write_assessment_doc",
    "download_dataset": "fetch_dataset",
    "synthetic_dataset": "generate_dataset",
}


class TaskType(str, Enum):
    """Kinds of work a plan can contain.

    Usage:
        >>> TaskType("create_folder") is TaskType.CREATE_DIRECTORY
        True
    """

    # --- Filesystem ---
    CREATE_DIRECTORY = "create_directory"          # mkdir -p <path>
    CREATE_FILE = "create_file"                    # write <content> to <path>
    WRITE_ASSESSMENT_DOC = "write_assessment_doc"  # questions document

    # --- Shell ---
    RUN_COMMAND = "run_command"                    # shell command in project/cwd

    # --- Datasets ---
    FETCH_DATASET = "fetch_dataset"                # search + download, synthetic fallback
    GENERATE_DATASET = "generate_dataset"          # synthetic only

    # --- Environment ---
    SETUP_ENVIRONMENT = "setup_environment"        # skeleton + venv + deps
    INSTALL_DEPENDENCIES = "install_dependencies"  # pip install -r requirements.txt
    CREATE_VIRTUAL_ENV = "create_virtual_env"      # python -m venv
    RUN_VALIDATION = "run_validation"              # pytest / flake8 / black, advisory

    @classmethod
    def _missing_(cls, value: object) -> Optional["TaskType"]:
        if isinstance(value, str):
            mapped = _LEGACY_TASK_TYPES.get(value.lower())
            if mapped is not None:
                return cls(mapped)
        return None


class Priority(str, Enum):
    """Task priority. Informational: the engine runs tasks in plan order."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SyntheticDataKind(str, Enum):
    """Shapes of synthetic dataset the generator can produce."""

    CLASSIFICATION = "classification"  # numeric features, integer class target
    REGRESSION = "regression"          # numeric features, linear target + noise
    NLP = "nlp"                        # text + sentiment label
    TIMESERIES = "timeseries"          # date + value with trend and seasonality


# =============================================================================
# Bus Enumerations
# =============================================================================
class MessageKind(str, Enum):
    """Top-level category of a bus message. Subscribers filter on it."""

    REQUEST = "request"            # asks a component to do something
    RESPONSE = "response"          # answers a request (same correlation_id)
    NOTIFICATION = "notification"  # progress, lifecycle and audit events
    ERROR = "error"                # failure reports


class NotificationLevel(str, Enum):
    """Level attached to progress notifications."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    EXECUTE = "execute"
    VERIFY = "verify"
    PLAN = "plan"


# =============================================================================
# Recovery Enumerations
# =============================================================================
class ErrorCategory(str, Enum):
    """Error classes the rule-based tier recognises, in match priority order."""

    COMMAND_NOT_FOUND = "command_not_found"
    PERMISSION_DENIED = "permission_denied"
    FILE_NOT_FOUND = "file_not_found"
    DEPENDENCY = "dependency"
    NETWORK = "network"
    SYNTAX = "syntax"
    GENERIC = "generic"


class ResolutionTier(str, Enum):
    """Which recovery tier produced an ErrorResolution."""

    RULE_BASED = "rule_based"
    FALLBACK = "fallback"
    AI_ASSISTED = "ai_assisted"
    NONE = "none"                  # short-circuit, nothing was attempted


# =============================================================================
# Session Enumerations
# =============================================================================
class SessionPhase(str, Enum):
    """Phases of an orchestrated session.

        INITIALIZING → PLANNING → EXECUTING → VERIFYING → COMPLETED
                 \\          \\           \\
                  └──────────┴───────────┴──→ FAILED
    """

    INITIALIZING = "initializing"
    PLANNING = "planning"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionOutcome(str, Enum):
    """Final outcome reported for a session."""

    COMPLETED = "completed"                      # all tasks executed
    PARTIALLY_COMPLETED = "partially_completed"  # some tasks never completed
    FAILED = "failed"                            # nothing completed, or an exception escaped
