"""
Run Plan Example - Build an Assessment Project from a Static Plan
===================================================================

Executes a small plan end to end: project skeleton, assessment document,
a synthetic dataset and one shell command. The interpreter check runs
``python --version``; on hosts without a ``python`` binary the error
resolver retries it as ``python3 --version``.

Usage:
    python examples/run_plan.py
"""

from __future__ import annotations

import asyncio
import tempfile

from foreman.core.config import ExecutionConfig, ForemanConfig
from foreman.core.enums import TaskType
from foreman.core.models import JobContext, Plan, Task
from foreman.facade import Foreman


def build_plan() -> Plan:
    return Plan(
        plan_id="churn-assessment",
        assessment_type="data_science",
        tech_stack=["python", "pandas", "sklearn"],
        tasks=[
            Task(id="src", type=TaskType.CREATE_DIRECTORY, path="src", description="Create src/"),
            Task(id="tests", type=TaskType.CREATE_DIRECTORY, path="tests", description="Create tests/"),
            Task(
                id="readme",
                type=TaskType.CREATE_FILE,
                path="README.md",
                content="# Churn Prediction Assessment\n",
                description="Write README",
            ),
            Task(
                id="questions",
                type=TaskType.WRITE_ASSESSMENT_DOC,
                content="# Questions\n\n1. Train a churn classifier on data/dataset.csv.\n",
                description="Write assessment questions",
                dependencies=["readme"],
            ),
            Task(
                id="dataset",
                type=TaskType.GENERATE_DATASET,
                path="data/dataset.csv",
                metadata={"data_type": "classification", "rows": 200},
                description="Generate churn dataset",
                dependencies=["src"],
            ),
            Task(
                id="python-version",
                type=TaskType.RUN_COMMAND,
                command="python --version",
                description="Check interpreter",
            ),
        ],
    )


async def main() -> None:
    project_dir = tempfile.mkdtemp(prefix="foreman-")
    config = ForemanConfig(
        project_path=project_dir,
        execution=ExecutionConfig(inter_task_delay_seconds=0),
    )

    async with Foreman(config) as foreman:
        result = await foreman.run(
            JobContext(job_title="Data Scientist", job_description="Customer churn prediction"),
            plan=build_plan(),
        )

    print(f"Project:   {project_dir}")
    print(f"Outcome:   {result.outcome.value}")
    if result.execution:
        print(f"Completed: {result.execution.completed}/{result.execution.total}")
    if result.verification:
        print(f"Verified:  {result.verification.pass_rate}%")


if __name__ == "__main__":
    asyncio.run(main())
