"""
foreman.orchestration.coordination_bus - Coordination Bus
===========================================================

The Coordination Bus is the only thing the Orchestrator, the ExecutionEngine
and the ErrorResolver share. None of them holds a reference to another; they
exchange messages, read and write shared state, and invoke each other's
capabilities through the bus.

Architecture Context:

    ┌──────────────┐   publish / set    ┌───────────────────────────────┐
    │ Orchestrator │ ─────────────────→ │        COORDINATION BUS       │
    └──────────────┘                    │  ┌─────────┐  ┌─────────────┐ │
    ┌──────────────┐   invoke(name)     │  │ message │  │ shared state│ │
    │ Execution    │ ─────────────────→ │  │ queue + │  │ key → value │ │
    │ Engine       │                    │  │ history │  └─────────────┘ │
    └──────────────┘                    │  └─────────┘  ┌─────────────┐ │
    ┌──────────────┐   subscribe        │               │ capability  │ │
    │ Error        │ ←───────────────── │               │ registry    │ │
    │ Resolver     │                    │               └─────────────┘ │
    └──────────────┘                    └───────────────────────────────┘

Three Facilities:
    1. **Messages**: ``publish`` appends to a FIFO queue and to a bounded
       history, then drains the queue. Only one drain runs at a time; a
       message published while a drain is active (for example by a
       subscriber) waits in the queue and is delivered by that drain, in
       publish order. Subscribers are selected by message kind, then by
       action. Pull-style consumers open a Mailbox instead of a callback.

    2. **Shared state**: ``get``/``set``/``delete`` on a plain dict.
       Last write wins. ``set`` calls state listeners synchronously, after
       the new value is visible.

    3. **Capabilities**: named async operations. ``register_capability`` is
       idempotent by name (last registration wins). ``invoke`` raises
       CapabilityNotFoundError for unknown names, records successful calls
       in history, and lets the capability's own failure propagate.

Usage:
    >>> bus = InMemoryCoordinationBus()
    >>> await bus.connect()
    >>> bus.set("session_status", "starting")
    >>> bus.register_capability(Capability(name="echo", handler=echo))
    >>> await bus.invoke("echo", {"text": "hi"}, caller_id="test")
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

from foreman.core.enums import MessageKind
from foreman.core.exceptions import CapabilityNotFoundError, CoordinationBusError
from foreman.core.messages import BusMessage


logger = structlog.get_logger()


# =============================================================================
# Type Aliases
# =============================================================================
MessageCallback = Callable[[BusMessage], Awaitable[None]]
StateListener = Callable[[str, Any, Any], None]          # (key, new, old)
CapabilityHandler = Callable[[dict[str, Any]], Awaitable[Any]]


# =============================================================================
# Capability
# =============================================================================
class Capability(BaseModel):
    """A named, invokable operation registered on the bus.

    Attributes:
        name: Registry key.
        description: Human-readable summary.
        parameters: Declared parameter shape, name → description.
        handler: ``async (params) -> result``. Raises ExecutionError when it
            cannot honour its contract.
        owner: Component that registered it.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)
    handler: CapabilityHandler
    owner: Optional[str] = None


# =============================================================================
# Subscriptions and Mailboxes
# =============================================================================
class Subscription:
    """Handle returned by ``subscribe``; pass it to ``unsubscribe``."""

    def __init__(
        self,
        callback: MessageCallback,
        kind: Optional[MessageKind],
        action: Optional[str],
    ) -> None:
        self.subscription_id = str(uuid4())
        self.callback = callback
        self.kind = kind
        self.action = action

    def matches(self, message: BusMessage) -> bool:
        if self.kind is not None and message.kind != self.kind:
            return False
        if self.action is not None and message.action != self.action:
            return False
        return True

    def __repr__(self) -> str:
        return f"Subscription(kind={self.kind!r}, action={self.action!r})"


class Mailbox:
    """Pull-style typed channel fed by the bus.

    Messages arrive in publish order. ``get`` waits for the next one.
    """

    def __init__(self, kind: Optional[MessageKind], action: Optional[str]) -> None:
        self.kind = kind
        self.action = action
        self._queue: asyncio.Queue[BusMessage] = asyncio.Queue()
        self.subscription: Optional[Subscription] = None

    async def _deliver(self, message: BusMessage) -> None:
        self._queue.put_nowait(message)

    async def get(self, timeout: Optional[float] = None) -> BusMessage:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def get_nowait(self) -> BusMessage:
        return self._queue.get_nowait()

    def drain(self) -> list[BusMessage]:
        """Return every message currently waiting, oldest first."""
        messages = []
        while not self._queue.empty():
            messages.append(self._queue.get_nowait())
        return messages

    def __len__(self) -> int:
        return self._queue.qsize()


# =============================================================================
# Abstract Base Class: CoordinationBus
# =============================================================================
class CoordinationBus(ABC):
    """Abstract contract for the coordination bus.

    Components receive a bus instance by injection; nothing in Foreman
    reaches for a process-wide singleton.
    """

    # --- Lifecycle ---

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    # --- Messages ---

    @abstractmethod
    async def publish(self, message: BusMessage) -> None:
        """Queue a message and drain the queue unless a drain is active.

        Raises:
            CoordinationBusError: If the bus is not connected.
        """
        ...

    @abstractmethod
    def subscribe(
        self,
        callback: MessageCallback,
        kind: Optional[MessageKind] = None,
        action: Optional[str] = None,
    ) -> Subscription: ...

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None: ...

    @abstractmethod
    def open_mailbox(
        self,
        kind: Optional[MessageKind] = None,
        action: Optional[str] = None,
    ) -> Mailbox: ...

    @abstractmethod
    def history(self, limit: int = 50) -> list[BusMessage]: ...

    @abstractmethod
    def clear_history(self) -> None: ...

    # --- Shared state ---

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any: ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def snapshot(self) -> dict[str, Any]: ...

    @abstractmethod
    def on_state_change(self, listener: StateListener) -> None: ...

    @abstractmethod
    def set_agent_state(self, agent_id: str, state: dict[str, Any]) -> None: ...

    @abstractmethod
    def get_agent_state(self, agent_id: str) -> Optional[dict[str, Any]]: ...

    # --- Capabilities ---

    @abstractmethod
    def register_capability(self, capability: Capability) -> None: ...

    @abstractmethod
    def get_capability(self, name: str) -> Optional[Capability]: ...

    @abstractmethod
    def list_capabilities(self) -> list[str]: ...

    @abstractmethod
    async def invoke(
        self,
        name: str,
        params: dict[str, Any],
        caller_id: str,
    ) -> Any:
        """Invoke a registered capability.

        Raises:
            CapabilityNotFoundError: If ``name`` is not registered.
            Exception: Whatever the capability handler raises, unchanged.
        """
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================
# Everything lives in one event loop, so no locks are taken: the drain flag
# is the only guard needed to keep delivery ordered and non-re-entrant.
# A multi-threaded scheduler would have to protect _state, _history and the
# queue explicitly.
# =============================================================================
class InMemoryCoordinationBus(CoordinationBus):
    """Single-process coordination bus.

    Attributes:
        _queue: Messages waiting for delivery.
        _history: Bounded record of published messages and capability calls.
        _draining: True while a drain loop is delivering messages.
        _subscriptions: Registered callbacks and mailboxes, in order.
        _state: Shared key-value store.
        _agent_states: Per-component status dicts.
        _capabilities: Capability registry.
    """

    def __init__(self, history_limit: int = 1000, session_id: Optional[str] = None) -> None:
        self._queue: deque[BusMessage] = deque()
        self._history: deque[BusMessage] = deque(maxlen=history_limit)
        self._draining: bool = False

        self._subscriptions: list[Subscription] = []
        self._state_listeners: list[StateListener] = []

        self._state: dict[str, Any] = {}
        self._agent_states: dict[str, dict[str, Any]] = {}
        self._capabilities: dict[str, Capability] = {}

        self._connected: bool = False
        self._published_count: int = 0
        self._session_id = session_id or f"session-{uuid4().hex[:12]}"

        self._logger = logger.bind(component="coordination_bus", impl="in_memory")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def published_count(self) -> int:
        return self._published_count

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        self._connected = True
        self._logger.info("coordination_bus_connected", session_id=self._session_id)

    async def disconnect(self) -> None:
        """Stop accepting messages. Undelivered messages are dropped."""
        dropped = len(self._queue)
        self._queue.clear()
        self._subscriptions.clear()
        self._connected = False
        self._logger.info("coordination_bus_disconnected", dropped_messages=dropped)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise CoordinationBusError(
                message="Coordination bus is not connected. Call connect() first.",
                error_code="BUS_NOT_CONNECTED",
            )

    # =========================================================================
    # Messages
    # =========================================================================

    async def publish(self, message: BusMessage) -> None:
        self._ensure_connected()

        self._queue.append(message)
        self._history.append(message)
        self._published_count += 1

        self._logger.debug(
            "message_queued",
            message_id=message.message_id,
            kind=message.kind.value,
            action=message.action,
            agent_id=message.agent_id,
            draining=self._draining,
        )

        if self._draining:
            return
        await self._drain()

    async def _drain(self) -> None:
        self._draining = True
        try:
            while self._queue:
                message = self._queue.popleft()
                await self._dispatch(message)
        finally:
            self._draining = False

    async def _dispatch(self, message: BusMessage) -> None:
        # Kind subscribers first, then action subscribers.
        kind_subscribers = [s for s in self._subscriptions if s.action is None and s.matches(message)]
        action_subscribers = [s for s in self._subscriptions if s.action is not None and s.matches(message)]

        for subscription in kind_subscribers + action_subscribers:
            try:
                await subscription.callback(message)
            except Exception as exc:
                self._logger.error(
                    "subscriber_callback_error",
                    message_id=message.message_id,
                    action=message.action,
                    subscription=repr(subscription),
                    error=str(exc),
                )

    def subscribe(
        self,
        callback: MessageCallback,
        kind: Optional[MessageKind] = None,
        action: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(callback, kind, action)
        self._subscriptions.append(subscription)
        self._logger.debug(
            "subscribed",
            kind=kind.value if kind else None,
            action=action,
            total_subscribers=len(self._subscriptions),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def open_mailbox(
        self,
        kind: Optional[MessageKind] = None,
        action: Optional[str] = None,
    ) -> Mailbox:
        mailbox = Mailbox(kind, action)
        mailbox.subscription = self.subscribe(mailbox._deliver, kind=kind, action=action)
        return mailbox

    def close_mailbox(self, mailbox: Mailbox) -> None:
        if mailbox.subscription is not None:
            self.unsubscribe(mailbox.subscription)
            mailbox.subscription = None

    def history(self, limit: int = 50) -> list[BusMessage]:
        """Return the most recent ``limit`` history entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def clear_history(self) -> None:
        self._history.clear()

    # =========================================================================
    # Shared State
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        return self._state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        old_value = self._state.get(key)
        self._state[key] = value
        for listener in list(self._state_listeners):
            try:
                listener(key, value, old_value)
            except Exception as exc:
                self._logger.error("state_listener_error", key=key, error=str(exc))

    def delete(self, key: str) -> bool:
        if key not in self._state:
            return False
        del self._state[key]
        return True

    def snapshot(self) -> dict[str, Any]:
        return dict(self._state)

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def set_agent_state(self, agent_id: str, state: dict[str, Any]) -> None:
        self._agent_states[agent_id] = dict(state)
        self.set(f"agent_state:{agent_id}", dict(state))

    def get_agent_state(self, agent_id: str) -> Optional[dict[str, Any]]:
        return self._agent_states.get(agent_id)

    # =========================================================================
    # Capabilities
    # =========================================================================

    def register_capability(self, capability: Capability) -> None:
        previous = self._capabilities.get(capability.name)
        self._capabilities[capability.name] = capability
        if previous is not None:
            self._logger.info(
                "capability_replaced",
                capability=capability.name,
                previous_owner=previous.owner,
                owner=capability.owner,
            )
        else:
            self._logger.debug("capability_registered", capability=capability.name, owner=capability.owner)

    def get_capability(self, name: str) -> Optional[Capability]:
        return self._capabilities.get(name)

    def list_capabilities(self) -> list[str]:
        return sorted(self._capabilities)

    async def invoke(
        self,
        name: str,
        params: dict[str, Any],
        caller_id: str,
    ) -> Any:
        capability = self._capabilities.get(name)
        if capability is None:
            self._logger.warning("capability_not_found", capability=name, caller_id=caller_id)
            raise CapabilityNotFoundError(name, details={"caller_id": caller_id})

        self._logger.info("capability_invoked", capability=name, caller_id=caller_id)
        try:
            result = await capability.handler(params)
        except Exception as exc:
            self._logger.error(
                "capability_failed",
                capability=name,
                caller_id=caller_id,
                error=str(exc),
            )
            self._record_invocation(caller_id, {"capability": name, "params": params, "error": str(exc)})
            raise

        self._record_invocation(caller_id, {"capability": name, "params": params, "result": result})
        return result

    def _record_invocation(self, caller_id: str, payload: dict[str, Any]) -> None:
        self._history.append(
            BusMessage(
                agent_id=caller_id,
                kind=MessageKind.NOTIFICATION,
                action="capability_invocation",
                payload=payload,
            )
        )

    def __repr__(self) -> str:
        return (
            f"InMemoryCoordinationBus(session_id={self._session_id!r}, "
            f"capabilities={len(self._capabilities)}, "
            f"subscribers={len(self._subscriptions)}, "
            f"history={len(self._history)})"
        )
