"""Tests for the chat and workflow agents and the default agent wiring."""
from __future__ import annotations

import pytest

from petagent.agents.chat_agent import ChatAgent
from petagent.agents.workflow_agent import WorkflowAgent, choose_preset
from petagent.orchestration.dispatcher import AgentDispatcher, build_context
from petagent.runtime import register_default_agents
from petagent.tools.base import define_tool
from petagent.workflows.presets import WorkflowConfig
from tests.fakes import ScriptedModel, tool_call


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_chat_agent_keeps_conversation_history() -> None:
    model = ScriptedModel(steps=["Hi!", "Still here."])
    agent = ChatAgent(model, system_prompt="be a cat")

    first = await agent.execute(build_context(user_message="hello"))
    second = await agent.execute(build_context(user_message="are you there?"))

    assert (first.message, second.message) == ("Hi!", "Still here.")
    assert second.should_speak is True
    assert model.stream_calls[1]["messages"] == [
        {"role": "system", "content": "be a cat"},
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Hi!"},
        {"role": "user", "content": "are you there?"},
    ]

    await agent.cleanup()
    await agent.execute(build_context(user_message="again"))
    assert len(model.stream_calls[2]["messages"]) == 2


@pytest.mark.anyio
async def test_chat_agent_reports_tool_calls_and_extra_tools() -> None:
    pet_mood = define_tool("pet_mood", "Current pet mood", {}, lambda: "sleepy")
    model = ScriptedModel(steps=[tool_call("pet_mood"), "I'm sleepy."])
    agent = ChatAgent(model, extra_tools=[pet_mood])

    result = await agent.execute(build_context(user_message="how are you?"))

    assert result.message == "I'm sleepy."
    assert result.data["tool_calls"] == [
        {"name": "pet_mood", "args": {}, "result": {"success": True, "data": "sleepy"}}
    ]
    offered = {spec["function"]["name"] for spec in model.stream_calls[0]["tools"]}
    assert {"pet_mood", "current_time"} <= offered


@pytest.mark.anyio
async def test_chat_agent_needs_a_message() -> None:
    result = await ChatAgent(ScriptedModel()).execute(build_context())

    assert result.success is False
    assert result.error == "No user message to answer"


@pytest.mark.anyio
async def test_chat_agent_reports_model_failure() -> None:
    model = ScriptedModel(steps=[RuntimeError("model down"), "Back again."])
    agent = ChatAgent(model)

    failed = await agent.execute(build_context(user_message="hi"))

    assert failed.success is False
    assert failed.error == "model down"

    recovered = await agent.execute(build_context(user_message="hello?"))
    assert recovered.success
    assert model.stream_calls[1]["messages"][1:] == [{"role": "user", "content": "hello?"}]


def test_choose_preset() -> None:
    assert choose_preset("帮我写一篇关于猫的文章") == "content"
    assert choose_preset("Please WRITE a poem") == "content"
    assert choose_preset("帮我调研一下桌面宠物") == "research"


@pytest.mark.anyio
async def test_workflow_agent_returns_workflow_output() -> None:
    model = ScriptedModel(replies=["no plan", "no review"], steps=["pets are popular"])
    agent = WorkflowAgent(WorkflowConfig(model=model))

    result = await agent.execute(build_context(user_message="帮我调研一下桌面宠物"))

    assert result.success
    assert result.message == "[researcher]: pets are popular"
    assert result.data["preset"] == "research"
    assert result.data["tasks"][0]["status"] == "completed"


@pytest.mark.anyio
async def test_workflow_agent_reports_failed_runs() -> None:
    model = ScriptedModel(replies=[RuntimeError("model offline")])
    agent = WorkflowAgent(WorkflowConfig(model=model))

    result = await agent.execute(build_context(metadata={"input": "cats", "preset": "content"}))

    assert result.success is False
    assert result.error == "model offline"
    assert result.data["preset"] == "content"


@pytest.mark.anyio
async def test_default_agents_are_registered_and_removable() -> None:
    dispatcher = AgentDispatcher()

    await register_default_agents(dispatcher)

    ids = {registered.metadata.id for registered in dispatcher.get_registered_agents()}
    assert {"agent-chat", "agent-proactive-care", "agent-workflow"} <= ids
    matches = dispatcher.trigger_manager.match_user_message_triggers("你好")
    assert [m.agent_id for m in matches] == ["agent-chat"]

    assert await dispatcher.unregister_agent("agent-workflow")
    assert dispatcher.get_agent("agent-workflow") is None
    assert not await dispatcher.unregister_agent("agent-workflow")
