"""Tests for the dispatcher's queue, retry policy, concurrency and routing."""
from __future__ import annotations

import asyncio
import time

import pytest

from petagent.config import DispatcherConfig
from petagent.core.models import (
    AgentPriority,
    AgentSystemStatus,
    AgentTrigger,
    EventTriggerConfig,
    TaskStatus,
    TriggerType,
    UserMessageTriggerConfig,
)
from petagent.orchestration.dispatcher import SKIPPED_MESSAGE, AgentDispatcher, build_context
from tests.fakes import RecordingAgent, eventually


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _keyword_trigger(trigger_id: str, *keywords: str, is_default: bool = False) -> AgentTrigger:
    return AgentTrigger(
        id=trigger_id,
        type=TriggerType.USER_MESSAGE,
        config=UserMessageTriggerConfig(keywords=list(keywords), is_default=is_default),
    )


def test_queue_orders_by_priority_then_arrival() -> None:
    dispatcher = AgentDispatcher()
    for priority in (AgentPriority.LOW, AgentPriority.CRITICAL, AgentPriority.NORMAL, AgentPriority.HIGH):
        dispatcher.register_agent(RecordingAgent(priority.value, priority=priority))

    for agent_id in ("low", "critical", "normal", "high"):
        dispatcher.enqueue_task(agent_id, build_context())
    late_normal = dispatcher.enqueue_task("normal", build_context())

    queue = dispatcher.get_task_queue()
    assert [task.agent_id for task in queue] == ["critical", "high", "normal", "normal", "low"]
    assert queue[3] is late_normal


def test_full_queue_drops_oldest_task() -> None:
    dispatcher = AgentDispatcher(DispatcherConfig(queue_size=2))
    dispatcher.register_agent(RecordingAgent("echo"))

    first = dispatcher.enqueue_task("echo", build_context())
    second = dispatcher.enqueue_task("echo", build_context())
    third = dispatcher.enqueue_task("echo", build_context())

    assert dispatcher.get_task_queue() == [second, third]
    assert first.status is TaskStatus.CANCELLED


@pytest.mark.anyio
async def test_failed_task_is_retried_max_retries_times() -> None:
    attempts = []

    def failing(context):
        attempts.append(time.monotonic())
        return agent.create_result(False, error="boom")

    agent = RecordingAgent("flaky", behaviour=failing)
    dispatcher = AgentDispatcher(DispatcherConfig(max_retries=2, retry_delay_ms=50))
    dispatcher.register_agent(agent)
    await dispatcher.start()
    try:
        task = dispatcher.enqueue_task("flaky", build_context())
        await eventually(lambda: task.status is TaskStatus.FAILED)
    finally:
        await dispatcher.stop()

    assert len(attempts) == 3
    gaps = [later - earlier for earlier, later in zip(attempts, attempts[1:])]
    assert all(gap >= 0.05 for gap in gaps)
    assert task.retry_count == 2
    assert task.result.error == "boom"
    history = dispatcher.get_execution_history()
    assert len(history) == 1
    assert history[0].success is False
    assert dispatcher.get_registered_agent("flaky").error_count == 3


@pytest.mark.anyio
async def test_retry_is_dropped_when_queue_is_full() -> None:
    release = asyncio.Event()
    attempts = []

    def failing(context):
        attempts.append(context)
        return flaky.create_result(False, error="boom")

    async def blocking(context):
        await release.wait()
        return worker.create_result(True, "done")

    flaky = RecordingAgent("flaky", behaviour=failing)
    worker = RecordingAgent("worker", behaviour=blocking)
    dispatcher = AgentDispatcher(DispatcherConfig(max_concurrency=1, queue_size=2, max_retries=1, retry_delay_ms=300))
    dispatcher.register_agent(flaky)
    dispatcher.register_agent(worker)
    await dispatcher.start()
    try:
        task = dispatcher.enqueue_task("flaky", build_context())
        await eventually(lambda: len(attempts) == 1)
        for _ in range(3):
            dispatcher.enqueue_task("worker", build_context())

        await eventually(lambda: task.status is TaskStatus.FAILED)
        assert len(dispatcher.get_task_queue()) <= 2
        assert task not in dispatcher.get_task_queue()
    finally:
        release.set()
        await dispatcher.stop()

    assert len(attempts) == 1
    assert task.retry_count == 0
    assert task.result.error == "boom"
    assert [(r.agent_id, r.success) for r in dispatcher.get_execution_history() if r.agent_id == "flaky"] == [
        ("flaky", False)
    ]


def test_dispatcher_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PETAGENT_QUEUE_SIZE", "5")
    monkeypatch.setenv("PETAGENT_RETRY_DELAY_MS", "250")

    config = DispatcherConfig.from_env()

    assert (config.queue_size, config.retry_delay_ms, config.max_retries) == (5, 250, 2)


@pytest.mark.anyio
async def test_concurrency_is_capped() -> None:
    release = asyncio.Event()
    running = []
    peak = []

    async def blocking(context):
        running.append(context)
        peak.append(len(running))
        await release.wait()
        running.remove(context)
        return agent.create_result(True, "done")

    agent = RecordingAgent("worker", behaviour=blocking)
    dispatcher = AgentDispatcher(DispatcherConfig(max_concurrency=2))
    dispatcher.register_agent(agent)
    await dispatcher.start()
    try:
        tasks = [dispatcher.enqueue_task("worker", build_context()) for _ in range(5)]
        await eventually(lambda: len(dispatcher.get_active_tasks()) == 2)
        await asyncio.sleep(0.3)

        assert len(dispatcher.get_active_tasks()) == 2
        assert len(dispatcher.get_task_queue()) == 3

        release.set()
        await eventually(lambda: all(task.status is TaskStatus.COMPLETED for task in tasks))
    finally:
        await dispatcher.stop()

    assert max(peak) == 2
    assert dispatcher.get_stats().total_executions == 5


@pytest.mark.anyio
async def test_user_message_goes_to_best_match() -> None:
    weather = RecordingAgent("weather", triggers=[_keyword_trigger("kw", "天气")])
    chat = RecordingAgent("chat", triggers=[_keyword_trigger("default", is_default=True)])
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(weather)
    dispatcher.register_agent(chat)

    result = await dispatcher.dispatch_user_message("今天天气怎么样")

    assert result.success
    assert result.message == "weather handled 今天天气怎么样"
    assert chat.contexts == []
    context = weather.contexts[0]
    assert context.trigger_source is TriggerType.USER_MESSAGE
    assert context.trigger_id == "kw"
    assert dispatcher.get_registered_agent("weather").execution_count == 1
    history = dispatcher.get_execution_history()
    assert [(r.agent_id, r.trigger_type) for r in history] == [("weather", TriggerType.USER_MESSAGE)]


@pytest.mark.anyio
async def test_user_message_without_match_returns_none() -> None:
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(RecordingAgent("weather", triggers=[_keyword_trigger("kw", "天气")]))

    assert await dispatcher.dispatch_user_message("hello") is None
    assert dispatcher.get_execution_history() == []


@pytest.mark.anyio
async def test_vetoed_execution_is_a_skipped_success() -> None:
    agent = RecordingAgent("picky", veto=True)
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(agent)

    result = await dispatcher.execute_agent_by_id("picky")

    assert result.success
    assert result.message == SKIPPED_MESSAGE
    assert agent.contexts == []
    registered = dispatcher.get_registered_agent("picky")
    assert registered.execution_count == 0
    assert registered.error_count == 0


@pytest.mark.anyio
async def test_execute_unknown_agent() -> None:
    dispatcher = AgentDispatcher()

    result = await dispatcher.execute_agent_by_id("ghost")

    assert result.success is False
    assert result.error == "Agent not found: ghost"


@pytest.mark.anyio
async def test_stats_and_history_order() -> None:
    def failing(context):
        return bad.create_result(False, error="nope")

    good = RecordingAgent("good")
    bad = RecordingAgent("bad", behaviour=failing)
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(good)
    dispatcher.register_agent(bad)
    assert dispatcher.get_stats().success_rate == 1.0

    await dispatcher.execute_agent_by_id("good")
    await dispatcher.execute_agent_by_id("bad")

    stats = dispatcher.get_stats()
    assert stats.status is AgentSystemStatus.IDLE
    assert stats.total_agents == 2
    assert stats.total_executions == 2
    assert stats.success_rate == 0.5
    assert [r.agent_id for r in dispatcher.get_execution_history()] == ["bad", "good"]
    assert [r.agent_id for r in dispatcher.get_execution_history(limit=1)] == ["bad"]


@pytest.mark.anyio
async def test_event_trigger_enqueues_with_payload() -> None:
    agent = RecordingAgent(
        "feeder",
        triggers=[
            AgentTrigger(id="on-feed", type=TriggerType.EVENT, config=EventTriggerConfig(event_name="pet_fed"))
        ],
    )
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(agent)
    await dispatcher.start()
    try:
        assert await dispatcher.emit_event("pet_fed", {"food": "fish"}) == 1
        await eventually(lambda: len(agent.contexts) == 1)
    finally:
        await dispatcher.stop()

    context = agent.contexts[0]
    assert context.trigger_source is TriggerType.EVENT
    assert context.trigger_id == "on-feed"
    assert context.metadata == {"food": "fish"}


@pytest.mark.anyio
async def test_pause_holds_queue_until_resume() -> None:
    agent = RecordingAgent("echo")
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(agent)
    await dispatcher.start()
    try:
        dispatcher.pause()
        assert dispatcher.get_status() is AgentSystemStatus.PAUSED
        task = dispatcher.enqueue_task("echo", build_context())
        await asyncio.sleep(0.3)
        assert task.status is TaskStatus.PENDING

        dispatcher.resume()
        await eventually(lambda: task.status is TaskStatus.COMPLETED)
    finally:
        await dispatcher.stop()


@pytest.mark.anyio
async def test_stop_cancels_pending_work_and_cleans_up() -> None:
    agent = RecordingAgent("echo")
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(agent)
    await dispatcher.start()
    assert agent.initialized

    dispatcher.pause()
    task = dispatcher.enqueue_task("echo", build_context())
    await dispatcher.stop()

    assert task.status is TaskStatus.CANCELLED
    assert dispatcher.get_task_queue() == []
    assert dispatcher.get_status() is AgentSystemStatus.IDLE
    assert not agent.initialized


@pytest.mark.anyio
async def test_agent_registered_while_running_is_initialized() -> None:
    dispatcher = AgentDispatcher()
    await dispatcher.start()
    try:
        late = RecordingAgent("late")
        dispatcher.register_agent(late)
        await eventually(lambda: late.initialized)
    finally:
        await dispatcher.stop()


@pytest.mark.anyio
async def test_set_trigger_enabled_keeps_agent_and_manager_in_sync() -> None:
    agent = RecordingAgent("weather", triggers=[_keyword_trigger("kw", "天气")])
    dispatcher = AgentDispatcher()
    dispatcher.register_agent(agent)

    assert dispatcher.set_trigger_enabled("weather", "kw", False)

    assert agent.triggers[0].enabled is False
    assert dispatcher.get_registered_agent("weather").triggers[0].enabled is False
    assert await dispatcher.dispatch_user_message("天气") is None
    assert not dispatcher.set_trigger_enabled("weather", "missing", True)
