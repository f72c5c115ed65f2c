"""
foreman.orchestration.plan_validation - Dependency Graph Analysis
===================================================================

Static checks on a Plan's dependency edges, run before execution:

    - missing:  dependencies naming no task in the plan
    - cycles:   tasks Kahn's algorithm cannot order (on or behind a cycle)
    - order:    a topological order of the tasks that can be scheduled

The ExecutionEngine still bounds its loop at ``liveness_factor × N``
dequeues. This analysis makes the reason for a partial completion visible
up front and, in strict mode, rejects the plan before any task runs.
"""

from __future__ import annotations

from collections import defaultdict, deque

import structlog

from foreman.core.exceptions import PlanValidationError
from foreman.core.models import DependencyReport, Plan


logger = structlog.get_logger()


def analyze_dependencies(plan: Plan) -> DependencyReport:
    """Run Kahn's algorithm over ``plan`` in plan order.

    Tasks blocked by a missing dependency (directly or through another
    blocked task) are left out of ``order`` but are not reported as cycles.
    """
    tasks = {task.id: task for task in plan.tasks}

    missing: dict[str, list[str]] = {}
    for task in plan.tasks:
        unknown = [dep for dep in task.dependencies if dep not in tasks]
        if unknown:
            missing[task.id] = unknown

    in_degree = {tid: 0 for tid in tasks}
    graph: dict[str, list[str]] = defaultdict(list)
    for tid, task in tasks.items():
        for dep in task.dependencies:
            if dep in tasks:
                graph[dep].append(tid)
                in_degree[tid] += 1

    queue = deque(tid for tid in tasks if in_degree[tid] == 0)
    ordered: list[str] = []
    while queue:
        node = queue.popleft()
        ordered.append(node)
        for neighbor in graph[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    ordered_set = set(ordered)
    cycles = [tid for tid in tasks if tid not in ordered_set]

    blocked = set(missing)
    frontier = deque(missing)
    while frontier:
        node = frontier.popleft()
        for neighbor in graph[node]:
            if neighbor not in blocked:
                blocked.add(neighbor)
                frontier.append(neighbor)

    return DependencyReport(
        missing=missing,
        cycles=cycles,
        order=[tid for tid in ordered if tid not in blocked],
    )


def validate_plan_dependencies(plan: Plan, strict: bool = False) -> DependencyReport:
    """Analyze ``plan`` and log problems; raise in strict mode.

    Raises:
        PlanValidationError: If ``strict`` and the plan has missing
            dependencies or cycles.
    """
    report = analyze_dependencies(plan)
    if report.is_valid:
        return report

    logger.warning(
        "plan_dependency_problems",
        plan_id=plan.plan_id,
        missing=report.missing,
        cycles=report.cycles,
        schedulable=len(report.order),
        total=len(plan.tasks),
    )
    if strict:
        raise PlanValidationError(
            message="Plan has unknown or cyclic task dependencies",
            plan_id=plan.plan_id,
            details={"missing": report.missing, "cycles": report.cycles},
        )
    return report
