"""
foreman.orchestration.error_resolver - Error Resolution Engine
================================================================

Turns a failed Task plus its error text into an ErrorResolution by
escalating through three tiers:

    ┌──────────────┐  fixed?  ┌──────────────┐  fixed?  ┌──────────────┐
    │ 1. Rule-based│ ──no───→ │ 2. Fallback  │ ──no───→ │ 3. AI-assisted│
    │  (patterns)  │          │ (heuristics) │          │ (completion) │
    └──────┬───────┘          └──────┬───────┘          └──────┬───────┘
           └──────────── yes ────────┴──────────── yes ────────┘
                                     ↓
                              ErrorResolution

Attempt Accounting:
    Per task id: ``Fresh → Attempting(n) → {Resolved | Exhausted}``.

    - Called with an explicit ``attempt`` (the ExecutionEngine path), the
      caller owns the count. The resolver only refuses attempts beyond the
      maximum and never touches its own ledger.
    - Called without one (standalone use, bus requests), the resolver's
      RetryLedger owns the count: it increments per call, is deleted on a
      fix, and on exhaustion is deleted while the id is marked exhausted,
      so the next call short-circuits to "Max retry attempts exceeded"
      without running any tier. ``clear_retry_attempts`` resets both.

Failure Policy:
    Nothing escapes ``resolve``. Completion-service failures, malformed
    responses and unexpected errors inside a tier all come back as
    ``fixed=False`` with an analysis describing what went wrong.

Bus Integration:
    - capability ``error_resolution``  (params: task, error, attempt)
    - request action ``resolve_error`` → shared ``last_error_resolution``,
      ``error_resolution_status`` and a response message
    - shared key ``clear_retry_attempts`` set truthy → ledger cleared
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Optional

import structlog

from foreman.core.enums import ErrorCategory, MessageKind, NotificationLevel, ResolutionTier, TaskType
from foreman.core.messages import BusMessage
from foreman.core.models import ErrorResolution, RetryLedger, Task
from foreman.integrations.llm.base import BaseLLMProvider
from foreman.orchestration.coordination_bus import Capability, CoordinationBus
from foreman.orchestration.notifications import ProgressReporter


logger = structlog.get_logger()


# =============================================================================
# Error Classification
# =============================================================================
# Ordered: the first category whose keywords occur in the lowercased error
# text wins. GENERIC is the catch-all.
# =============================================================================
_CATEGORY_KEYWORDS: list[tuple[ErrorCategory, tuple[str, ...]]] = [
    (ErrorCategory.COMMAND_NOT_FOUND, ("command not found", "not recognized")),
    (ErrorCategory.PERMISSION_DENIED, ("permission denied", "eacces")),
    (ErrorCategory.FILE_NOT_FOUND, ("no such file", "enoent")),
    (ErrorCategory.DEPENDENCY, ("dependency", "package", "module")),
    (ErrorCategory.NETWORK, ("network", "timeout", "timed out", "connection", "econnreset")),
    (ErrorCategory.SYNTAX, ("syntax", "parse")),
]

MAX_BACKOFF_SECONDS = 30

FALLBACK_DATASET_COMMAND = (
    'python -c "from datasets import load_dataset; '
    "load_dataset('cifar10', split='train')\""
)

PLACEHOLDER_CONTENT = "placeholder content"

AI_SYSTEM_PROMPT = """You are an expert Error Resolution Agent for automated project setup pipelines.
You receive a failed task and its error output and must propose a concrete fix.

Return ONLY valid JSON with exactly these keys:
{
  "fixed": true or false,
  "retry_command": "corrected shell command, or null",
  "error_analysis": "short explanation of the root cause",
  "recommendations": ["actionable recommendation", "..."]
}
Do not wrap the JSON in markdown."""

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def classify_error(error: str) -> ErrorCategory:
    """Map error text to the first matching ErrorCategory."""
    lowered = error.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return ErrorCategory.GENERIC


def backoff_seconds(attempt: int) -> int:
    """Exponential backoff for network retries: ``min(30, 2**attempt)``."""
    return min(MAX_BACKOFF_SECONDS, 2 ** attempt)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` or ``` ... ``` block, if any."""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1)
    return text.strip()


def _parse_fixed_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"\"fixed\" must be a boolean, got {value!r}")


def fix_python_syntax(content: str) -> str:
    """Apply deterministic Python 2 → 3 substitutions to generated code."""
    fixed = re.sub(r"^(\s*)print\s+(?![(=])(.+?)\s*$", r"\1print(\2)", content, flags=re.MULTILINE)
    fixed = re.sub(r"\bexcept\s*:", "except Exception:", fixed)
    fixed = fixed.replace(".iteritems()", ".items()")
    return fixed


# =============================================================================
# ErrorResolver
# =============================================================================
class ErrorResolver:
    """Three-tier error resolution with attempt accounting.

    Args:
        bus: Coordination bus for shared state, notifications and capability
            registration.
        llm_provider: Completion provider for the AI tier. None disables it.
        max_retry_attempts: Attempts allowed per task id.
        project_path: Root for filesystem side effects (directories,
            placeholder files).
        reporter: Progress reporter; one is created on the bus if omitted.
        agent_id: Identity used on the bus.
    """

    def __init__(
        self,
        bus: CoordinationBus,
        llm_provider: Optional[BaseLLMProvider] = None,
        max_retry_attempts: int = 2,
        project_path: str | Path = ".",
        reporter: Optional[ProgressReporter] = None,
        agent_id: str = "error_resolver",
    ) -> None:
        self._bus = bus
        self._llm = llm_provider
        self._max_retry_attempts = max_retry_attempts
        self._project_path = Path(project_path)
        self._reporter = reporter or ProgressReporter(bus)
        self._agent_id = agent_id
        self._ledger = RetryLedger()
        self._logger = logger.bind(component="error_resolver")

        self._register_on_bus()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def max_retry_attempts(self) -> int:
        return self._max_retry_attempts

    @property
    def ledger(self) -> RetryLedger:
        return self._ledger

    # =========================================================================
    # Bus Wiring
    # =========================================================================

    def _register_on_bus(self) -> None:
        self._bus.register_capability(
            Capability(
                name="error_resolution",
                description="Analyze a failed task and propose a fix",
                parameters={
                    "task": "Task (model or dict) that failed",
                    "error": "Error text produced by the failure",
                    "attempt": "Optional attempt number owned by the caller",
                },
                handler=self._handle_capability,
                owner=self._agent_id,
            )
        )
        self._bus.subscribe(self._handle_request, kind=MessageKind.REQUEST, action="resolve_error")
        self._bus.on_state_change(self._handle_state_change)

    async def _handle_capability(self, params: dict[str, Any]) -> dict[str, Any]:
        task = Task.model_validate(params["task"]) if not isinstance(params["task"], Task) else params["task"]
        resolution = await self.resolve(task, str(params["error"]), attempt=params.get("attempt"))
        return resolution.model_dump(mode="json")

    async def _handle_request(self, message: BusMessage) -> None:
        payload = message.payload
        task = Task.model_validate(payload["task"])
        resolution = await self.resolve(task, str(payload.get("error", "")), attempt=payload.get("attempt"))

        result = resolution.model_dump(mode="json")
        self._bus.set("last_error_resolution", result)
        self._bus.set("error_resolution_status", "resolved" if resolution.fixed else "unresolved")
        await self._bus.publish(message.create_response(self._agent_id, {"resolution": result}))

    def _handle_state_change(self, key: str, value: Any, old_value: Any) -> None:
        if key == "clear_retry_attempts" and value:
            self.clear_retry_attempts()

    # =========================================================================
    # Attempt Ledger
    # =========================================================================

    def get_retry_attempts(self) -> dict[str, int]:
        return self._ledger.snapshot()

    def clear_retry_attempts(self, task_id: Optional[str] = None) -> None:
        self._ledger.clear(task_id)
        self._logger.info("retry_attempts_cleared", task_id=task_id)

    # =========================================================================
    # Top-Level Resolution
    # =========================================================================

    async def resolve(
        self,
        task: Task,
        error: str,
        attempt: Optional[int] = None,
    ) -> ErrorResolution:
        """Produce a resolution for ``task`` failing with ``error``.

        Args:
            task: The task that failed.
            error: Error text from the failure.
            attempt: Attempt number owned by the caller. None lets the
                resolver's own ledger count attempts.

        Returns:
            An ErrorResolution. Never raises.
        """
        caller_owned = attempt is not None

        if caller_owned:
            if attempt > self._max_retry_attempts:
                return await self._exhausted(task)
            current_attempt = attempt
        else:
            if (
                self._ledger.is_exhausted(task.id)
                or self._ledger.attempts(task.id) >= self._max_retry_attempts
            ):
                self._ledger.mark_exhausted(task.id)
                return await self._exhausted(task)
            current_attempt = self._ledger.increment(task.id)

        await self._reporter.report(
            self._agent_id,
            f"Resolving error for task {task.id} (attempt {current_attempt}/{self._max_retry_attempts})",
            level=NotificationLevel.WARNING,
            task_id=task.id,
            attempt=current_attempt,
        )

        try:
            resolution = await self._run_tiers(task, error, current_attempt)
        except Exception as exc:
            self._logger.error("error_analysis_failed", task_id=task.id, error=str(exc))
            resolution = ErrorResolution(
                fixed=False,
                error_analysis=f"Error analysis failed: {exc}",
                recommendations=["Check system logs", "Verify environment setup"],
            )

        if not caller_owned:
            if resolution.fixed:
                self._ledger.reset(task.id)
            elif current_attempt >= self._max_retry_attempts:
                self._ledger.mark_exhausted(task.id)

        self._logger.info(
            "error_resolution_finished",
            task_id=task.id,
            attempt=current_attempt,
            fixed=resolution.fixed,
            tier=resolution.tier.value,
            category=resolution.category.value if resolution.category else None,
        )

        if resolution.fixed:
            await self._reporter.report(
                self._agent_id,
                f"Resolved error for task {task.id} via {resolution.tier.value}: {resolution.error_analysis}",
                level=NotificationLevel.SUCCESS,
                task_id=task.id,
            )
            await self._bus.publish(
                BusMessage(
                    agent_id=self._agent_id,
                    kind=MessageKind.NOTIFICATION,
                    action="error_resolved",
                    payload={"task_id": task.id, "resolution": resolution.model_dump(mode="json")},
                )
            )
        else:
            await self._reporter.report(
                self._agent_id,
                f"Could not resolve error for task {task.id}: {resolution.error_analysis}",
                level=NotificationLevel.ERROR,
                task_id=task.id,
            )
        return resolution

    async def _exhausted(self, task: Task) -> ErrorResolution:
        self._logger.warning("retry_attempts_exhausted", task_id=task.id, max_attempts=self._max_retry_attempts)
        await self._reporter.report(
            self._agent_id,
            f"Max retry attempts exceeded for task {task.id}",
            level=NotificationLevel.ERROR,
            task_id=task.id,
        )
        return ErrorResolution(
            fixed=False,
            error_analysis="Max retry attempts exceeded",
            recommendations=[],
            tier=ResolutionTier.NONE,
        )

    async def _run_tiers(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        resolution = self.rule_based_fix(task, error, attempt)
        if resolution.fixed:
            return resolution

        fallback = self.fallback_strategies(task, error)
        if fallback.fixed:
            return fallback

        return await self.ai_assisted_fix(task, error, attempt)

    # =========================================================================
    # Tier 1: Rule-Based Fixes
    # =========================================================================
    # Deterministic for identical (task, error, attempt): the only side
    # effect is creating a directory that may already exist.
    # =========================================================================

    def rule_based_fix(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        category = classify_error(error)
        handler = {
            ErrorCategory.COMMAND_NOT_FOUND: self._fix_command_not_found,
            ErrorCategory.PERMISSION_DENIED: self._fix_permission_denied,
            ErrorCategory.FILE_NOT_FOUND: self._fix_file_not_found,
            ErrorCategory.DEPENDENCY: self._fix_dependency,
            ErrorCategory.NETWORK: self._fix_network,
            ErrorCategory.SYNTAX: self._fix_syntax,
            ErrorCategory.GENERIC: self._fix_generic,
        }[category]
        resolution = handler(task, error, attempt)
        return resolution.model_copy(update={"category": category, "tier": ResolutionTier.RULE_BASED})

    def _fix_command_not_found(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        command = task.command or ""
        error_lower = error.lower()

        if "python -m pip install" in command:
            return ErrorResolution(
                fixed=True,
                retry_command=command.replace("python -m pip install", "python3 -m pip install"),
                error_analysis="python not found, trying python3 -m pip",
                recommendations=["Use python3 explicitly on systems without a python alias"],
            )
        if "pip3 install" in command and "pip3" in error_lower:
            return ErrorResolution(
                fixed=True,
                retry_command=command.replace("pip3 install", "python3 -m pip install"),
                error_analysis="pip3 not found, trying python3 -m pip",
                recommendations=["python3 -m pip works without a pip3 entrypoint"],
            )
        if "pip install" in command:
            return ErrorResolution(
                fixed=True,
                retry_command=command.replace("pip install", "pip3 install"),
                error_analysis="pip not found, trying pip3",
                recommendations=["pip3 is usually available with Python 3"],
            )
        if command.startswith("npm "):
            return ErrorResolution(
                fixed=True,
                retry_command=f"npx {command}",
                error_analysis="npm not found on PATH, trying npx",
                recommendations=["Install Node.js or add npm to PATH"],
            )
        if re.search(r"\bpython\b", command) and "pip" not in command:
            return ErrorResolution(
                fixed=True,
                retry_command=re.sub(r"\bpython\b", "python3", command),
                error_analysis="python not found, trying python3",
                recommendations=["Use python3 explicitly on systems without a python alias"],
            )

        return ErrorResolution(
            fixed=False,
            error_analysis=f"Command not found: {error}",
            recommendations=["Verify command exists", "Check PATH environment variable"],
        )

    def _fix_permission_denied(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        command = task.command or ""
        if task.type == TaskType.RUN_COMMAND and command:
            if "install" in command and "--user" not in command:
                return ErrorResolution(
                    fixed=True,
                    retry_command=f"{command} --user",
                    error_analysis="Permission issue, retrying with --user flag",
                    recommendations=["Prefer a virtual environment over system-wide installs"],
                )
            if "mkdir " in command and "mkdir -p" not in command:
                return ErrorResolution(
                    fixed=True,
                    retry_command=command.replace("mkdir ", "mkdir -p ", 1),
                    error_analysis="Added recursive flag for mkdir",
                    recommendations=["Use mkdir -p for nested directories"],
                )

        return ErrorResolution(
            fixed=False,
            error_analysis=f"Permission denied: {error}",
            recommendations=["Check file permissions", "Run with appropriate privileges"],
        )

    def _fix_file_not_found(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        if task.type == TaskType.CREATE_FILE and task.path:
            parent = (self._project_path / task.path).parent
            parent.mkdir(parents=True, exist_ok=True)
            return ErrorResolution(
                fixed=True,
                error_analysis="Created missing directory for file",
                recommendations=["Directory structure created successfully"],
            )

        return ErrorResolution(
            fixed=False,
            error_analysis=f"File not found: {error}",
            recommendations=["Verify file paths", "Check working directory"],
        )

    def _fix_dependency(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        command = task.command or ""
        error_lower = error.lower()

        if "install" in command:
            if ("version" in error_lower or "conflict" in error_lower) and "--force" not in command:
                return ErrorResolution(
                    fixed=True,
                    retry_command=f"{command} --force",
                    error_analysis="Dependency version conflict, retrying with --force",
                    recommendations=["Pin compatible versions in requirements.txt"],
                )
            if "--no-cache-dir" not in command:
                return ErrorResolution(
                    fixed=True,
                    retry_command=f"{command} --no-cache-dir",
                    error_analysis="Dependency installation issue, retrying without cache",
                    recommendations=["Clear the package cache if the problem persists"],
                )

        return ErrorResolution(
            fixed=False,
            error_analysis=f"Dependency error: {error}",
            recommendations=["Check dependency versions", "Verify package availability"],
        )

    def _fix_network(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        delay = backoff_seconds(attempt)
        retry_command = f"sleep {delay} && {task.command}" if task.command else None
        return ErrorResolution(
            fixed=True,
            retry_command=retry_command,
            error_analysis=f"Network error (attempt {attempt}): {error}",
            recommendations=[
                "Check internet connection",
                "Verify proxy settings if applicable",
                "Retry with exponential backoff",
            ],
        )

    def _fix_syntax(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        recommendations = [
            "Review generated code for syntax errors",
            "Check language compatibility",
            "Use a linter for validation",
        ]
        if (
            task.type == TaskType.CREATE_FILE
            and task.path
            and task.path.endswith(".py")
            and task.content
        ):
            revised = fix_python_syntax(task.content)
            if revised != task.content:
                return ErrorResolution(
                    fixed=True,
                    revised_content=revised,
                    error_analysis="Applied automatic syntax corrections",
                    recommendations=recommendations,
                )

        return ErrorResolution(
            fixed=False,
            error_analysis=f"Syntax error in generated content: {error}",
            recommendations=recommendations,
        )

    def _fix_generic(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        recommendations = [
            "Check system resources",
            "Verify environment configuration",
            "Review task requirements",
        ]
        analysis = f"Generic error (attempt {attempt}): {error}"
        command = task.command or ""

        if attempt <= 2 and command:
            return ErrorResolution(
                fixed=True,
                retry_command=command,
                error_analysis=analysis,
                recommendations=recommendations,
            )
        if task.type == TaskType.RUN_COMMAND and " && " in command:
            first_step = command.split(" && ")[0].strip()
            return ErrorResolution(
                fixed=True,
                retry_command=first_step,
                error_analysis=f"Breaking complex command into simpler steps: {first_step}",
                recommendations=recommendations + ["Simplified command execution"],
            )
        return ErrorResolution(
            fixed=False,
            error_analysis=analysis,
            recommendations=recommendations + ["Manual intervention may be required"],
        )

    # =========================================================================
    # Tier 2: Fallback Strategies
    # =========================================================================

    def fallback_strategies(self, task: Task, error: str) -> ErrorResolution:
        error_lower = error.lower()

        if "download" in error_lower or "dataset" in error_lower:
            return ErrorResolution(
                fixed=True,
                retry_command=FALLBACK_DATASET_COMMAND,
                error_analysis="Primary dataset download failed, switched to Hugging Face datasets API",
                recommendations=["Prefer datasets.load_dataset over wget for resilience"],
                tier=ResolutionTier.FALLBACK,
            )

        if "file not found" in error_lower or "enoent" in error_lower:
            placeholder = self._project_path / (task.path or "placeholder.txt")
            placeholder.parent.mkdir(parents=True, exist_ok=True)
            if not placeholder.exists():
                placeholder.write_text(PLACEHOLDER_CONTENT)
            self._logger.warning("placeholder_file_created", task_id=task.id, path=str(placeholder))
            return ErrorResolution(
                fixed=True,
                retry_command=task.command,
                error_analysis="Created placeholder file to continue execution",
                recommendations=["Ensure real file is generated in prior pipeline step"],
                tier=ResolutionTier.FALLBACK,
            )

        if "network" in error_lower or "timeout" in error_lower:
            return ErrorResolution(
                fixed=True,
                skip_task=True,
                error_analysis="Network issues persisted, skipping non-critical step",
                recommendations=["Use cached results", "Re-run pipeline when network is stable"],
                tier=ResolutionTier.FALLBACK,
            )

        return ErrorResolution(
            fixed=False,
            error_analysis="No fallback strategy available",
            recommendations=[],
            tier=ResolutionTier.FALLBACK,
        )

    # =========================================================================
    # Tier 3: AI-Assisted Analysis
    # =========================================================================

    def build_ai_prompt(self, task: Task, error: str, attempt: int) -> str:
        return (
            f"TASK: {task.description or task.id}\n"
            f"TASK TYPE: {task.type.value}\n"
            f"COMMAND: {task.command or 'N/A'}\n"
            f"ERROR: {error}\n"
            f"ATTEMPT: {attempt}/{self._max_retry_attempts}\n"
            f"PROJECT PATH: {self._project_path}\n\n"
            "Analyze this error and provide a resolution."
        )

    async def ai_assisted_fix(self, task: Task, error: str, attempt: int) -> ErrorResolution:
        if self._llm is None:
            return ErrorResolution(
                fixed=False,
                error_analysis="AI analysis unavailable: no completion provider configured",
                recommendations=["Fallback to manual debugging"],
                tier=ResolutionTier.AI_ASSISTED,
            )

        self._bus.set(
            "current_error",
            {
                "task": task.model_dump(mode="json"),
                "type": task.type.value,
                "error": error,
                "attempt": attempt,
                "project_path": str(self._project_path),
            },
        )

        try:
            response = await self._llm.generate_with_system(
                AI_SYSTEM_PROMPT,
                self.build_ai_prompt(task, error, attempt),
            )
        except Exception as exc:
            self._logger.error("ai_analysis_failed", task_id=task.id, error=str(exc))
            self._bus.set("error_resolution_status", "ai_failed")
            return ErrorResolution(
                fixed=False,
                error_analysis=f"AI analysis failed: {exc}",
                recommendations=["Fallback to manual debugging", "Check error logs"],
                tier=ResolutionTier.AI_ASSISTED,
            )

        if not response.content.strip():
            self._bus.set("error_resolution_status", "ai_failed")
            return ErrorResolution(
                fixed=False,
                error_analysis="AI analysis failed: Empty AI response",
                recommendations=["Fallback to manual debugging", "Check error logs"],
                tier=ResolutionTier.AI_ASSISTED,
            )

        try:
            resolution = self.parse_ai_response(response.content)
        except ValueError as exc:
            self._logger.warning("ai_response_unparseable", task_id=task.id, error=str(exc))
            return ErrorResolution(
                fixed=False,
                error_analysis=f"AI response parsing failed: {exc}",
                recommendations=["Check AI response format", "Retry with stricter prompt"],
                tier=ResolutionTier.AI_ASSISTED,
            )

        self._bus.set("ai_error_resolution", resolution.model_dump(mode="json"))
        return resolution

    @staticmethod
    def parse_ai_response(content: str) -> ErrorResolution:
        """Parse a completion body into an ErrorResolution.

        Raises:
            ValueError: If the body is not a JSON object. ``json.JSONDecodeError``
                is a ValueError subclass.
        """
        data = json.loads(strip_code_fences(content))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        recommendations = data.get("recommendations") or []
        if not isinstance(recommendations, list):
            recommendations = [str(recommendations)]

        return ErrorResolution(
            fixed=_parse_fixed_flag(data.get("fixed", False)),
            retry_command=data.get("retry_command") or None,
            revised_content=data.get("revised_content") or None,
            error_analysis=str(data.get("error_analysis", "")),
            recommendations=[str(item) for item in recommendations],
            tier=ResolutionTier.AI_ASSISTED,
        )

    def __repr__(self) -> str:
        return (
            f"ErrorResolver(max_retry_attempts={self._max_retry_attempts}, "
            f"tracked={len(self._ledger)}, "
            f"llm={self._llm!r})"
        )
