"""
foreman.capabilities.files - File and Shared-Data Capabilities
================================================================

    file_operations      read / write / exists / delete inside the project
    data_share           set / get / delete on the bus shared state
    agent_coordination   publish a request message on behalf of a caller

Paths are always relative to the project directory; a path that resolves
outside it is rejected with ExecutionError.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from foreman.core.enums import MessageKind
from foreman.core.exceptions import ExecutionError
from foreman.core.messages import BusMessage
from foreman.orchestration.coordination_bus import Capability, CoordinationBus


logger = structlog.get_logger()


class FileOperations:
    """Project-scoped file access exposed as the ``file_operations`` capability."""

    def __init__(self, project_path: str | Path) -> None:
        self._project_path = Path(project_path)
        self._logger = logger.bind(component="file_operations")

    def _target(self, relative: Any) -> Path:
        if not relative:
            raise ExecutionError("file_operations requires a path", capability="file_operations")
        root = self._project_path.resolve()
        target = (self._project_path / str(relative)).resolve()
        if target != root and root not in target.parents:
            raise ExecutionError(
                f"Path escapes the project directory: {relative}",
                capability="file_operations",
            )
        return target

    async def __call__(self, params: dict[str, Any]) -> dict[str, Any]:
        operation = params.get("operation")
        target = self._target(params.get("path"))

        if operation == "read":
            if not target.is_file():
                raise ExecutionError(f"File not found: {params['path']}", capability="file_operations")
            return {"success": True, "content": target.read_text()}

        if operation == "write":
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(params.get("content") or "")
            self._logger.debug("file_written", path=str(target))
            return {"success": True, "path": str(target)}

        if operation == "exists":
            return {"success": True, "exists": target.exists()}

        if operation == "delete":
            existed = target.is_file()
            if existed:
                target.unlink()
            return {"success": True, "deleted": existed}

        raise ExecutionError(f"Unsupported file operation: {operation}", capability="file_operations")


def make_data_share(bus: CoordinationBus):
    async def data_share(params: dict[str, Any]) -> dict[str, Any]:
        operation = params.get("operation")
        key = params.get("key")
        if not key:
            raise ExecutionError("data_share requires a key", capability="data_share")

        if operation == "set":
            bus.set(key, params.get("value"))
            return {"success": True, "message": f"Data stored under key: {key}"}
        if operation == "get":
            return {"success": True, "value": bus.get(key)}
        if operation == "delete":
            deleted = bus.delete(key)
            return {"success": deleted, "message": f"Key {'deleted' if deleted else 'not found'}: {key}"}

        raise ExecutionError(f"Unsupported data_share operation: {operation}", capability="data_share")

    return data_share


def make_agent_coordination(bus: CoordinationBus):
    async def agent_coordination(params: dict[str, Any]) -> dict[str, Any]:
        action = params.get("action")
        if not action:
            raise ExecutionError("agent_coordination requires an action", capability="agent_coordination")

        message = BusMessage(
            agent_id=params.get("from_agent", "coordinator"),
            kind=MessageKind(params.get("kind", MessageKind.REQUEST.value)),
            action=action,
            payload=params.get("payload") or {},
        )
        await bus.publish(message)
        return {"success": True, "message_id": message.message_id}

    return agent_coordination


def register_file_capabilities(bus: CoordinationBus, project_path: str | Path) -> None:
    bus.register_capability(
        Capability(
            name="file_operations",
            description="Read, write, test and delete files inside the project",
            parameters={
                "operation": "read | write | exists | delete",
                "path": "Path relative to the project",
                "content": "Body for write",
            },
            handler=FileOperations(project_path),
            owner="capabilities",
        )
    )
    bus.register_capability(
        Capability(
            name="data_share",
            description="Share values between components through bus state",
            parameters={"operation": "set | get | delete", "key": "State key", "value": "Value for set"},
            handler=make_data_share(bus),
            owner="capabilities",
        )
    )
    bus.register_capability(
        Capability(
            name="agent_coordination",
            description="Publish a message to other components",
            parameters={
                "action": "Message action",
                "payload": "Message payload",
                "kind": "request | notification (default request)",
                "from_agent": "Sender id",
            },
            handler=make_agent_coordination(bus),
            owner="capabilities",
        )
    )
