"""
foreman.core.messages - Coordination Bus Message Types
========================================================

Envelope types that travel over the CoordinationBus.

    ┌─────────────────────────────────────────────────────────────┐
    │  BusMessage (envelope)                                       │
    │  ├── message_id:      Unique identifier                      │
    │  ├── agent_id:        Sender                                 │
    │  ├── kind:            request | response | notification | error │
    │  ├── action:          Verb, e.g. "execute_task", "progress"  │
    │  ├── payload:         Data (dict)                            │
    │  ├── correlation_id:  Links request → response pairs         │
    │  └── timestamp:       When it was created                    │
    └─────────────────────────────────────────────────────────────┘

ProgressEvent is the payload of every ``notification/progress`` message and
the unit progress sinks receive.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from foreman.core.enums import MessageKind, NotificationLevel


def _generate_message_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BusMessage(BaseModel):
    """Universal envelope for bus traffic.

    Subscribers are selected by ``kind`` first and then by ``action``.

    Example:
        >>> msg = BusMessage(
        ...     agent_id="orchestrator",
        ...     kind=MessageKind.REQUEST,
        ...     action="generate_plan",
        ...     payload={"job_title": "Data Scientist"},
        ... )
    """

    message_id: str = Field(default_factory=_generate_message_id)
    agent_id: str = Field(description="ID of the sending component")
    kind: MessageKind = Field(description="Routing category")
    action: str = Field(description="Verb describing the message")
    payload: dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = Field(
        default=None,
        description="Links request-response message pairs together",
    )
    timestamp: datetime = Field(default_factory=_now)

    def create_response(
        self,
        agent_id: str,
        payload: dict[str, Any],
        kind: MessageKind = MessageKind.RESPONSE,
    ) -> "BusMessage":
        """Create a reply linked to this message via correlation_id."""
        return BusMessage(
            agent_id=agent_id,
            kind=kind,
            action=self.action,
            payload=payload,
            correlation_id=self.correlation_id or self.message_id,
        )


class ProgressEvent(BaseModel):
    """One progress notification emitted by a component."""

    agent: str = Field(description="Component that emitted the event")
    level: NotificationLevel = Field(default=NotificationLevel.INFO)
    message: str
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)
