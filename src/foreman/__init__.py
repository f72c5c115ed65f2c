"""
Foreman - Self-Healing Task Execution for Assessment Projects
===============================================================

Foreman turns a job description into a ready-to-run technical assessment
project: it obtains a plan, executes its tasks in dependency order, repairs
failing tasks with a tiered error resolver, and verifies the result.

    JobContext → Orchestrator → ExecutionEngine ⇄ ErrorResolver
                        │               │
                        └── CoordinationBus (messages, state, capabilities)

Quick Start:
    >>> from foreman import Foreman
    >>> async with Foreman() as foreman:
    ...     result = await foreman.run(job_context, plan=my_plan)
"""

__version__ = "0.1.0"

from foreman.facade import Foreman

__all__ = ["Foreman", "__version__"]
