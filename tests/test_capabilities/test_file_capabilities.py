"""
Tests for foreman.capabilities.files
======================================

file_operations (with the project-escape guard), data_share and
agent_coordination, invoked through the bus the way callers use them.
"""

import pytest

from foreman.capabilities.files import register_file_capabilities
from foreman.core.enums import MessageKind
from foreman.core.exceptions import ExecutionError


@pytest.fixture
async def file_bus(bus, project_path):
    register_file_capabilities(bus, project_path)
    return bus


class TestFileOperations:
    """Project-scoped read/write/exists/delete."""

    async def test_write_then_read(self, file_bus, project_path) -> None:
        await file_bus.invoke("file_operations", {"operation": "write", "path": "a/b.txt", "content": "hi"}, "t")

        result = await file_bus.invoke("file_operations", {"operation": "read", "path": "a/b.txt"}, "t")

        assert result == {"success": True, "content": "hi"}
        assert (project_path / "a" / "b.txt").exists()

    async def test_exists_and_delete(self, file_bus, project_path) -> None:
        (project_path / "x.txt").write_text("x")

        assert (await file_bus.invoke("file_operations", {"operation": "exists", "path": "x.txt"}, "t"))["exists"]
        deleted = await file_bus.invoke("file_operations", {"operation": "delete", "path": "x.txt"}, "t")
        again = await file_bus.invoke("file_operations", {"operation": "delete", "path": "x.txt"}, "t")

        assert deleted["deleted"] is True
        assert again["deleted"] is False

    async def test_read_missing_file(self, file_bus) -> None:
        with pytest.raises(ExecutionError, match="File not found"):
            await file_bus.invoke("file_operations", {"operation": "read", "path": "nope.txt"}, "t")

    @pytest.mark.parametrize("path", ["../outside.txt", "a/../../outside.txt", "/etc/passwd"])
    async def test_paths_outside_project_rejected(self, file_bus, path) -> None:
        with pytest.raises(ExecutionError, match="escapes the project"):
            await file_bus.invoke("file_operations", {"operation": "write", "path": path, "content": "x"}, "t")

    async def test_unknown_operation(self, file_bus) -> None:
        with pytest.raises(ExecutionError, match="Unsupported file operation"):
            await file_bus.invoke("file_operations", {"operation": "chmod", "path": "a"}, "t")


class TestDataShare:
    """Bus state through a capability."""

    async def test_set_get_delete(self, file_bus) -> None:
        await file_bus.invoke("data_share", {"operation": "set", "key": "k", "value": [1, 2]}, "t")
        assert file_bus.get("k") == [1, 2]

        got = await file_bus.invoke("data_share", {"operation": "get", "key": "k"}, "t")
        assert got["value"] == [1, 2]

        deleted = await file_bus.invoke("data_share", {"operation": "delete", "key": "k"}, "t")
        missing = await file_bus.invoke("data_share", {"operation": "delete", "key": "k"}, "t")
        assert deleted["success"] is True
        assert missing["success"] is False

    async def test_key_required(self, file_bus) -> None:
        with pytest.raises(ExecutionError):
            await file_bus.invoke("data_share", {"operation": "get"}, "t")


class TestAgentCoordination:
    """Publishing on behalf of a caller."""

    async def test_publishes_request(self, file_bus) -> None:
        mailbox = file_bus.open_mailbox(kind=MessageKind.REQUEST, action="ping")

        result = await file_bus.invoke(
            "agent_coordination",
            {"action": "ping", "payload": {"n": 1}, "from_agent": "ui"},
            "t",
        )

        message = mailbox.get_nowait()
        assert message.message_id == result["message_id"]
        assert message.agent_id == "ui"
        assert message.payload == {"n": 1}

    async def test_action_required(self, file_bus) -> None:
        with pytest.raises(ExecutionError):
            await file_bus.invoke("agent_coordination", {}, "t")
