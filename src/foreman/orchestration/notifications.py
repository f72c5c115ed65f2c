"""
foreman.orchestration.notifications - Progress Reporting
==========================================================

Every phase transition and every resolution attempt produces a progress
event. The ProgressReporter turns one call into three side effects:

    report(...)
        ├── structlog event   ("progress", agent=..., level=...)
        ├── bus message       (kind=notification, action="progress")
        └── sinks             (plain callables, e.g. a UI adapter or a test list)

The reporter never raises because a sink failed; progress is observational.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional

import structlog

from foreman.core.enums import MessageKind, NotificationLevel
from foreman.core.messages import BusMessage, ProgressEvent
from foreman.orchestration.coordination_bus import CoordinationBus


logger = structlog.get_logger()

ProgressSink = Callable[[ProgressEvent], None]

_LOG_METHODS = {
    NotificationLevel.ERROR: "error",
    NotificationLevel.WARNING: "warning",
}


class ProgressReporter:
    """Fan-out for progress events.

    Args:
        bus: Bus that receives ``notification/progress`` messages. None
            limits output to logs and sinks.
        sinks: Initial sink callables.
    """

    def __init__(
        self,
        bus: Optional[CoordinationBus] = None,
        sinks: Optional[list[ProgressSink]] = None,
    ) -> None:
        self._bus = bus
        self._sinks: list[ProgressSink] = list(sinks or [])
        self._logger = logger.bind(component="progress_reporter")

    def add_sink(self, sink: ProgressSink) -> None:
        self._sinks.append(sink)

    async def report(
        self,
        agent: str,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
        progress: Optional[int] = None,
        **context: Any,
    ) -> ProgressEvent:
        event = ProgressEvent(
            agent=agent,
            level=level,
            message=message,
            progress=progress,
            context=context,
        )

        log_method = getattr(self._logger, _LOG_METHODS.get(level, "info"))
        log_method("progress", agent=agent, level=level.value, message=message, progress=progress)

        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception as exc:
                self._logger.error("progress_sink_error", error=str(exc))

        if self._bus is not None:
            await self._bus.publish(
                BusMessage(
                    agent_id=agent,
                    kind=MessageKind.NOTIFICATION,
                    action="progress",
                    payload=event.model_dump(mode="json"),
                )
            )
        return event
