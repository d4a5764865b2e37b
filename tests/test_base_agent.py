"""Tests for the BaseAgent lifecycle, execution envelope and tool access."""
from __future__ import annotations

import asyncio

import pytest

from petagent.agents.base import DISABLED_MESSAGE, MAX_LOGS
from petagent.core.models import AgentTrigger, TriggerType, UserMessageTriggerConfig
from petagent.orchestration.dispatcher import build_context
from tests.fakes import RecordingAgent


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_initialize_is_idempotent() -> None:
    agent = RecordingAgent("echo")

    await agent.initialize()
    tool_names = [tool.name for tool in agent.get_tools()]
    await agent.initialize()

    assert agent.initialized
    assert [tool.name for tool in agent.get_tools()] == tool_names
    assert len(tool_names) == len(set(tool_names))
    warnings = [entry for entry in agent.get_logs() if entry.level == "warn"]
    assert [entry.message for entry in warnings] == ["Agent already initialized"]


@pytest.mark.anyio
async def test_execute_initializes_lazily_and_reports_duration() -> None:
    agent = RecordingAgent("echo")

    result = await agent.execute(build_context(user_message="hi"))

    assert agent.initialized
    assert result.success
    assert result.message == "echo handled hi"
    assert result.duration is not None and result.duration >= 0


@pytest.mark.anyio
async def test_disabled_agent_does_not_run() -> None:
    agent = RecordingAgent("echo")
    agent.update_config(enabled=False)

    result = await agent.execute(build_context(user_message="hi"))

    assert result.success is False
    assert result.message == DISABLED_MESSAGE
    assert result.error is None
    assert agent.contexts == []


@pytest.mark.anyio
async def test_execution_timeout_becomes_error_result() -> None:
    async def slow(context):
        await asyncio.sleep(1)

    agent = RecordingAgent("slow", behaviour=slow)
    agent.update_config(timeout_ms=50)

    result = await agent.execute(build_context())

    assert result.success is False
    assert result.error == "执行超时 (50ms)"
    assert result.duration is not None


@pytest.mark.anyio
async def test_execution_exception_becomes_error_result() -> None:
    def broken(context):
        raise RuntimeError("bad state")

    agent = RecordingAgent("broken", behaviour=broken)

    result = await agent.execute(build_context())

    assert result.success is False
    assert result.error == "bad state"
    assert any(entry.level == "error" for entry in agent.get_logs())


@pytest.mark.anyio
async def test_call_tool_checks_existence_and_permissions() -> None:
    agent = RecordingAgent("tools")
    await agent.initialize()
    agent.update_config(tools=["current_time"])

    missing = await agent.call_tool("teleport", {})
    forbidden = await agent.call_tool("file_exists", {"path": "/"})
    allowed = await agent.call_tool("current_time", {})

    assert missing == {"success": False, "error": "工具不存在: teleport"}
    assert forbidden == {"success": False, "error": "智能体无权调用工具: file_exists"}
    assert allowed["success"] is True
    assert [tool.name for tool in agent.get_allowed_tools()] == ["current_time"]


@pytest.mark.anyio
async def test_cleanup_resets_agent() -> None:
    agent = RecordingAgent("echo")
    await agent.initialize()

    await agent.cleanup()

    assert not agent.initialized
    assert agent.get_tools() == []
    assert agent.get_logs() == []


def test_log_buffer_is_bounded() -> None:
    agent = RecordingAgent("chatty")

    for index in range(MAX_LOGS + 50):
        agent.log("info", f"m{index}")

    logs = agent.get_logs()
    assert len(logs) == MAX_LOGS
    assert logs[0].message == "m50"
    assert logs[-1].message == f"m{MAX_LOGS + 49}"


def test_trigger_management() -> None:
    trigger = AgentTrigger(
        id="greeting",
        type=TriggerType.USER_MESSAGE,
        config=UserMessageTriggerConfig(keywords=["hello"]),
    )
    agent = RecordingAgent("echo", triggers=[trigger])

    assert agent.set_trigger_enabled("greeting", False)
    assert agent.triggers[0].enabled is False
    assert not agent.set_trigger_enabled("unknown", True)

    agent.add_trigger(AgentTrigger(id="greeting", type=TriggerType.EVENT, config=trigger.config))
    assert len(agent.triggers) == 1
    assert agent.triggers[0].type is TriggerType.EVENT

    assert agent.remove_trigger("greeting")
    assert not agent.remove_trigger("greeting")


def test_settings_round_trip() -> None:
    agent = RecordingAgent("echo")

    agent.set_setting("volume", 3)

    assert agent.get_setting("volume") == 3
    assert agent.get_setting("missing", "default") == "default"
