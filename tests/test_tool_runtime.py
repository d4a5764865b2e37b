"""Tests for the tool-calling AgentRuntime: gating, audit, limits and abort."""
from __future__ import annotations

import asyncio

import pytest

from petagent.agents.tool_runtime import (
    AUDIT_TABLE,
    DECLINED_ERROR,
    REDACTED,
    AgentRuntime,
    AgentRuntimeConfig,
    StatusEvent,
    classify_tool_result,
    format_args_for_confirmation,
    preview_value,
    sanitize_for_audit,
    wire_name,
)
from petagent.services.store import InMemoryRowStore
from petagent.tools.base import ParameterKind, ParameterSpec, define_tool
from tests.fakes import BlockingModel, LoopingToolModel, ScriptedModel, eventually, tool_call


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _statuses(run) -> list:
    return [event.status for event in run.events if event.type == "status"]


@pytest.mark.anyio
async def test_plain_text_run() -> None:
    model = ScriptedModel(steps=["Hello there"])
    runtime = AgentRuntime(AgentRuntimeConfig(model=model, system_prompt="be nice"))

    run = await runtime.run([{"role": "user", "content": "hi"}])

    assert run.content == "Hello there"
    assert run.tool_calls == []
    assert _statuses(run) == ["thinking", "done"]
    sent = model.stream_calls[0]["messages"]
    assert sent[0] == {"role": "system", "content": "be nice"}
    assert sent[-1] == {"role": "user", "content": "hi"}


@pytest.mark.anyio
async def test_tool_results_are_fed_back_to_the_model() -> None:
    model = ScriptedModel(steps=[tool_call("current_time", "call_7"), "It is late."])
    seen = []
    runtime = AgentRuntime(AgentRuntimeConfig(model=model, on_event=seen.append))

    run = await runtime.run([{"role": "user", "content": "what time is it?"}])

    assert run.content == "It is late."
    assert [call.name for call in run.tool_calls] == ["current_time"]
    assert run.tool_calls[0].result["success"] is True

    second_step = model.stream_calls[1]["messages"]
    assistant, tool_message = second_step[-2], second_step[-1]
    assert assistant["role"] == "assistant"
    assert assistant["tool_calls"][0]["id"] == "call_7"
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call_7"

    types = [event.type for event in seen]
    assert types.index("tool_call") < types.index("tool_result")
    assert seen == run.events


@pytest.mark.anyio
async def test_declined_confirmation_continues_the_run(tmp_path) -> None:
    target = tmp_path / "secret.txt"
    model = ScriptedModel(
        steps=[tool_call("file_write", path=str(target), content="data"), "I could not write it."]
    )
    store = InMemoryRowStore()
    runtime = AgentRuntime(AgentRuntimeConfig(model=model, audit_store=store, source="chat"))

    run = await runtime.run([{"role": "user", "content": "save this"}])

    assert run.tool_calls[0].result == {"success": False, "error": DECLINED_ERROR}
    assert run.content == "I could not write it."
    assert not target.exists()
    rows = await store.list(AUDIT_TABLE)
    assert len(rows) == 1
    assert rows[0]["status"] == "rejected"
    assert rows[0]["tool_name"] == "file_write"
    assert rows[0]["source"] == "chat"
    assert rows[0]["error"] == DECLINED_ERROR


@pytest.mark.anyio
async def test_approved_confirmation_executes_the_tool(tmp_path) -> None:
    target = tmp_path / "note.txt"
    prompts = []

    async def approve(message, options):
        prompts.append(message)
        return True

    model = ScriptedModel(steps=[tool_call("file_write", path=str(target), content="hi"), "Saved."])
    store = InMemoryRowStore()
    runtime = AgentRuntime(AgentRuntimeConfig(model=model, confirm=approve, audit_store=store))

    run = await runtime.run([{"role": "user", "content": "save"}])

    assert target.read_text(encoding="utf-8") == "hi"
    assert run.tool_calls[0].result["success"] is True
    assert "file_write" in prompts[0]
    rows = await store.list(AUDIT_TABLE)
    assert rows[0]["status"] == "succeeded"
    assert rows[0]["duration_ms"] >= 0


@pytest.mark.anyio
async def test_high_risk_tools_are_gated_even_without_flag() -> None:
    launched = []
    open_app = define_tool(
        "open_app",
        "Launch an application",
        {"name": ParameterSpec(ParameterKind.STRING, "App name", required=True)},
        lambda name: launched.append(name),
    )
    asked = []

    async def decline(message, options):
        asked.append(message)
        return False

    model = ScriptedModel(steps=[tool_call("open_app", name="calculator"), "ok"])
    runtime = AgentRuntime(AgentRuntimeConfig(model=model, tools=[open_app], confirm=decline))

    run = await runtime.run([{"role": "user", "content": "open calc"}])

    assert asked and launched == []
    assert run.tool_calls[0].result["error"] == DECLINED_ERROR


@pytest.mark.anyio
async def test_run_stops_after_max_steps() -> None:
    model = LoopingToolModel("current_time")
    runtime = AgentRuntime(AgentRuntimeConfig(model=model, max_steps=3))

    run = await runtime.run([{"role": "user", "content": "loop"}])

    assert len(model.stream_calls) == 3
    assert len(run.tool_calls) == 3
    assert _statuses(run)[-1] == "done"
    assert run.error is None


@pytest.mark.anyio
async def test_abort_ends_run_with_error_status() -> None:
    model = BlockingModel()
    runtime = AgentRuntime(AgentRuntimeConfig(model=model))

    pending = asyncio.create_task(runtime.run([{"role": "user", "content": "wait"}]))
    await eventually(lambda: model.stream_calls)
    assert runtime.is_running()
    runtime.abort()
    run = await pending

    assert run.events[-1] == StatusEvent("error", "aborted")
    assert run.error == "aborted"
    assert not runtime.is_running()


@pytest.mark.anyio
async def test_unknown_and_invalid_tool_calls_are_reported() -> None:
    model = ScriptedModel(steps=[tool_call("teleport"), tool_call("file_read", "call_2"), "done"])
    runtime = AgentRuntime(AgentRuntimeConfig(model=model))

    run = await runtime.run([{"role": "user", "content": "go"}])

    assert run.tool_calls[0].result == {"success": False, "error": "Unknown tool: teleport"}
    assert run.tool_calls[1].result == {"success": False, "error": "Missing required parameter: path"}


@pytest.mark.anyio
async def test_model_failure_is_reported_as_error_status() -> None:
    model = ScriptedModel(steps=[RuntimeError("rate limited")])
    runtime = AgentRuntime(AgentRuntimeConfig(model=model))

    run = await runtime.run([{"role": "user", "content": "hi"}])

    assert run.events[-1] == StatusEvent("error", "rate limited")
    assert run.error == "rate limited"
    assert run.content == ""


@pytest.mark.anyio
async def test_tool_selection_and_mcp_wire_names() -> None:
    calls = []
    remote = define_tool("fs:read", "Remote read", {}, lambda: calls.append("read") or "content")
    model = ScriptedModel(steps=[tool_call("fs__read"), "done"])
    runtime = AgentRuntime(
        AgentRuntimeConfig(model=model, tools=[remote], allowed_tools=["fs:read", "current_time"])
    )

    run = await runtime.run([{"role": "user", "content": "read"}], enabled_tools=["fs:read", "file_read"])

    offered = [spec["function"]["name"] for spec in model.stream_calls[0]["tools"]]
    assert offered == ["fs__read"]
    assert calls == ["read"]
    assert run.tool_calls[0].name == "fs:read"
    tool_events = [event for event in run.events if event.type == "tool_call"]
    assert tool_events[0].tool_name == "fs:read"


def test_confirmation_preview_redacts_and_truncates() -> None:
    preview = preview_value(
        {
            "api_key": "sk-123",
            "password": "hunter2",
            "note": "x" * 200,
            "items": list(range(30)),
            "nested": {"token": "t"},
        }
    )

    assert preview["api_key"] == REDACTED
    assert preview["password"] == REDACTED
    assert preview["note"] == "x" * 160 + "…(共200字)"
    assert preview["items"] == list(range(10))
    assert preview["nested"] == {"token": REDACTED}
    assert len(preview_value({f"k{i}": i for i in range(40)})) == 20
    assert "[已脱敏]" in format_args_for_confirmation({"secret": "s"})


def test_audit_sanitisation_limits() -> None:
    sanitized = sanitize_for_audit(
        {"authorization": "Bearer x", "body": "y" * 600, "rows": list(range(80)), "obj": object()}
    )

    assert sanitized["authorization"] == REDACTED
    assert sanitized["body"].startswith("y" * 500)
    assert sanitized["body"].endswith("…(共600字)")
    assert len(sanitized["rows"]) == 50
    assert isinstance(sanitized["obj"], str)


def test_classify_tool_result() -> None:
    assert classify_tool_result({"success": True, "data": 1}) == ("succeeded", None)
    assert classify_tool_result({"success": False, "error": DECLINED_ERROR}) == ("rejected", DECLINED_ERROR)
    assert classify_tool_result({"success": False, "error": "disk full"}) == ("failed", "disk full")
    assert classify_tool_result({"error": "odd"}) == ("failed", "odd")
    assert classify_tool_result("plain") == ("succeeded", None)


def test_wire_name() -> None:
    assert wire_name("current_time") == "current_time"
    assert wire_name("fs:read") == "fs__read"
    assert wire_name("web search.v2") == "web_search_v2"
