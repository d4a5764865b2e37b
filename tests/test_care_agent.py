"""Tests for the proactive care agent."""
from __future__ import annotations

import random
from datetime import datetime

import pytest

from petagent.agents.care_agent import (
    CARE_MESSAGES,
    HOURLY_CHECK,
    LATE_NIGHT,
    LONG_ABSENCE,
    SUGGESTED_ACTIVITIES,
    CareSettings,
    CareType,
    ProactiveCareAgent,
)
from petagent.core.models import EmotionRecord, PetStatus, TriggerType, now_ms
from petagent.orchestration.dispatcher import AgentDispatcher, build_context
from petagent.orchestration.triggers import TriggerManager


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _at(hour: int):
    return lambda: datetime(2024, 5, 1, hour, 30)


def _agent(hour: int = 12, **settings) -> ProactiveCareAgent:
    return ProactiveCareAgent(CareSettings(**settings), clock=_at(hour), rng=random.Random(7))


@pytest.mark.anyio
async def test_stress_message_gets_relief_and_notification() -> None:
    agent = _agent()

    result = await agent.execute(build_context(user_message="最近天天加班，压力好大"))

    assert result.success
    assert result.message in CARE_MESSAGES[CareType.STRESS_RELIEF]
    assert result.should_speak is True
    assert result.emotion == "sad"
    assert result.data["care_type"] == "stress_relief"
    assert result.data["suggested_activities"] == SUGGESTED_ACTIVITIES[CareType.STRESS_RELIEF]
    assert result.actions[0].type == "notification"
    assert result.actions[0].payload["body"] == result.message


@pytest.mark.anyio
async def test_stress_relief_can_be_disabled() -> None:
    agent = _agent(enable_stress_relief=False)

    assert not await agent.should_trigger(build_context(user_message="压力好大"))


@pytest.mark.parametrize("hour, expected", [(23, True), (1, True), (2, False), (12, False)])
def test_late_night_window(hour: int, expected: bool) -> None:
    assert _agent(hour).is_late_night() is expected


@pytest.mark.anyio
async def test_late_night_trigger_is_vetoed_during_the_day() -> None:
    context = build_context(trigger_source=TriggerType.CONDITION, trigger_id=LATE_NIGHT)

    assert await _agent(23).should_trigger(context)
    assert not await _agent(15).should_trigger(context)

    result = await _agent(23).execute(context)
    assert result.message in CARE_MESSAGES[CareType.LATE_NIGHT]
    assert result.actions is None


@pytest.mark.anyio
async def test_long_absence_uses_pet_last_interaction() -> None:
    agent = _agent()
    stale = PetStatus(last_interaction=now_ms() - 5 * 60 * 60 * 1000)
    context = build_context(trigger_source=TriggerType.CONDITION, trigger_id=LONG_ABSENCE)

    assert not await agent.should_trigger(context)
    context.current_pet_status = stale
    assert await agent.should_trigger(context)


@pytest.mark.anyio
async def test_hourly_check_with_negative_emotions() -> None:
    agent = _agent(enable_work_break=False)
    emotions = [
        EmotionRecord(id=str(i), emotion=emotion, intensity=5, timestamp=now_ms())
        for i, emotion in enumerate(["sad", "anxious", "happy", "angry"])
    ]
    calm = build_context(trigger_source=TriggerType.SCHEDULE, trigger_id=HOURLY_CHECK)
    upset = build_context(trigger_source=TriggerType.SCHEDULE, trigger_id=HOURLY_CHECK, recent_emotions=emotions)

    assert not await agent.should_trigger(calm)
    assert await agent.should_trigger(upset)

    quiet = await agent.execute(calm)
    assert quiet.data == {"triggered": False, "reason": "no_care_needed"}
    result = await agent.execute(upset)
    assert result.data["care_type"] == "emotional"


@pytest.mark.anyio
async def test_work_break_reminder_resets_timer() -> None:
    agent = _agent(work_break_interval_ms=0)
    context = build_context(trigger_source=TriggerType.SCHEDULE, trigger_id=HOURLY_CHECK)

    result = await agent.execute(context)

    assert result.data["care_type"] == "work_break"
    assert result.emotion == "calm"


def test_condition_evaluators_follow_settings() -> None:
    night = _agent(23)
    muted = _agent(23, enable_late_night=False)

    assert set(night.condition_evaluators()) == {"late_night_active", "long_absence"}
    assert night.condition_evaluators()["late_night_active"]() is True
    assert muted.condition_evaluators()["late_night_active"]() is False
    assert night.condition_evaluators()["long_absence"]() is False


@pytest.mark.anyio
async def test_stress_keywords_route_to_care_over_default_chat() -> None:
    manager = TriggerManager()
    dispatcher = AgentDispatcher(trigger_manager=manager)
    dispatcher.register_agent(_agent())

    result = await dispatcher.dispatch_user_message("最近天天加班，压力好大")

    assert result is not None
    assert result.data["care_type"] == "stress_relief"
    match = manager.match_user_message_triggers("最近天天加班，压力好大")[0]
    assert match.score == pytest.approx(0.2)
