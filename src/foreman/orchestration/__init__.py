"""
foreman.orchestration - Orchestration Layer
=============================================

    - CoordinationBus:   messages, shared state and the capability registry
    - ProgressReporter:  progress notifications to logs, sinks and the bus
    - ErrorResolver:     tiered resolution of failed tasks
    - ExecutionEngine:   FIFO task scheduler with bounded retries
    - Orchestrator:      session lifecycle (plan, execute, verify)
"""

from foreman.orchestration.coordination_bus import (
    Capability,
    CoordinationBus,
    InMemoryCoordinationBus,
    Mailbox,
    Subscription,
)
from foreman.orchestration.error_resolver import ErrorResolver, classify_error
from foreman.orchestration.execution_engine import ExecutionEngine
from foreman.orchestration.notifications import ProgressReporter
from foreman.orchestration.orchestrator import Orchestrator, PlanProducer, StaticPlanProducer
from foreman.orchestration.plan_validation import analyze_dependencies, validate_plan_dependencies

__all__ = [
    # Bus
    "Capability",
    "CoordinationBus",
    "InMemoryCoordinationBus",
    "Mailbox",
    "Subscription",
    # Notifications
    "ProgressReporter",
    # Resolution
    "ErrorResolver",
    "classify_error",
    # Execution
    "ExecutionEngine",
    "analyze_dependencies",
    "validate_plan_dependencies",
    # Sessions
    "Orchestrator",
    "PlanProducer",
    "StaticPlanProducer",
]
