"""Proactive care agent: break reminders, late-night and stress check-ins."""
from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from petagent.agents.base import BaseAgent
from petagent.core.models import (
    AgentAction,
    AgentConfig,
    AgentContext,
    AgentMetadata,
    AgentPriority,
    AgentResult,
    AgentTrigger,
    ConditionTriggerConfig,
    EmotionRecord,
    ScheduleTriggerConfig,
    TriggerType,
    UserMessageTriggerConfig,
    now_ms,
)
from petagent.tools.base import ParameterKind, ParameterSpec, Tool, define_tool

HOURLY_CHECK = "trigger-hourly-check"
LATE_NIGHT = "trigger-late-night"
LONG_ABSENCE = "trigger-long-absence"
STRESS_KEYWORDS = "trigger-stress-keywords"

NEGATIVE_EMOTIONS = frozenset({"sad", "anxious", "angry"})

METADATA = AgentMetadata(
    id="agent-proactive-care",
    name="主动关怀智能体",
    description='让用户感受到"被关心"，建立情感连接',
    icon="💝",
    category="care",
    priority=AgentPriority.HIGH,
    is_system=True,
)


class CareType(str, Enum):
    WORK_BREAK = "work_break"
    LATE_NIGHT = "late_night"
    EMOTIONAL = "emotional"
    LONG_ABSENCE = "long_absence"
    STRESS_RELIEF = "stress_relief"


CARE_MESSAGES: Dict[CareType, List[str]] = {
    CareType.WORK_BREAK: [
        "你已经连续工作好一会儿了，要不要休息一下？",
        "站起来活动活动吧，眼睛也需要休息哦~",
        "工作很重要，但身体更重要！休息一下吧~",
        "累了就歇会儿，我等你回来~",
    ],
    CareType.LATE_NIGHT: [
        "夜深了，还在忙吗？要注意休息哦~",
        "这么晚了还没睡呀，有什么我能帮到的吗？",
        "晚安的时间到了，明天再继续吧~",
        "深夜了，记得喝杯热牛奶，早点休息~",
    ],
    CareType.EMOTIONAL: [
        "我注意到你最近心情似乎不太好，想聊聊吗？",
        "有什么烦心事都可以告诉我，我会陪着你的",
        "如果心情不好，不妨深呼吸放松一下~",
        "无论发生什么，记得我一直在这里陪着你",
    ],
    CareType.LONG_ABSENCE: [
        "好久不见！想你了~",
        "你去哪里了呀？我等你好久了~",
        "终于等到你回来了！今天过得怎么样？",
        "好想你呀！快来陪我聊聊天~",
    ],
    CareType.STRESS_RELIEF: [
        "听起来你压力很大，要不要休息一下？",
        "工作/学习虽然重要，但也要照顾好自己",
        "深呼吸，慢慢来，一切都会好起来的",
        "我在这里陪着你，有什么需要帮忙的吗？",
        "要不要试试冥想或者听个故事放松一下？",
    ],
}

SUGGESTED_ACTIVITIES: Dict[CareType, List[str]] = {
    CareType.WORK_BREAK: ["站立伸展", "眼保健操", "喝杯水", "看看窗外"],
    CareType.LATE_NIGHT: ["热牛奶", "听轻音乐", "放下工作休息"],
    CareType.EMOTIONAL: ["深呼吸", "冥想", "听故事", "散步"],
    CareType.STRESS_RELIEF: ["深呼吸训练", "冥想放松", "听治愈故事", "和我聊聊天"],
    CareType.LONG_ABSENCE: ["聊聊今天的事", "玩个小游戏", "看看天气"],
}

CARE_EMOTIONS: Dict[CareType, str] = {
    CareType.WORK_BREAK: "calm",
    CareType.LATE_NIGHT: "calm",
    CareType.EMOTIONAL: "sad",
    CareType.STRESS_RELIEF: "sad",
    CareType.LONG_ABSENCE: "happy",
}


def default_triggers() -> List[AgentTrigger]:
    return [
        AgentTrigger(
            id=HOURLY_CHECK,
            type=TriggerType.SCHEDULE,
            config=ScheduleTriggerConfig(interval_seconds=3600),
            description="每小时定时检查",
        ),
        AgentTrigger(
            id=LATE_NIGHT,
            type=TriggerType.CONDITION,
            config=ConditionTriggerConfig(
                expression="late_night_active",
                check_interval_ms=30 * 60 * 1000,
                cooldown_ms=2 * 60 * 60 * 1000,
            ),
            description="深夜仍在使用时触发",
        ),
        AgentTrigger(
            id=LONG_ABSENCE,
            type=TriggerType.CONDITION,
            config=ConditionTriggerConfig(
                expression="long_absence",
                check_interval_ms=30 * 60 * 1000,
                cooldown_ms=4 * 60 * 60 * 1000,
            ),
            description="长时间未互动时触发",
        ),
        AgentTrigger(
            id=STRESS_KEYWORDS,
            type=TriggerType.USER_MESSAGE,
            config=UserMessageTriggerConfig(
                keywords=["加班", "压力", "焦虑", "失眠", "累死了", "烦死了", "崩溃", "受不了", "太难了", "心累"],
            ),
            description="检测到压力关键词时触发",
        ),
    ]


@dataclass(frozen=True)
class CareSettings:
    work_break_interval_ms: int = 2 * 60 * 60 * 1000
    late_night_start_hour: int = 23
    late_night_end_hour: int = 2
    long_absence_threshold_ms: int = 4 * 60 * 60 * 1000
    enable_work_break: bool = True
    enable_late_night: bool = True
    enable_emotional: bool = True
    enable_long_absence: bool = True
    enable_stress_relief: bool = True


class ProactiveCareAgent(BaseAgent):
    def __init__(
        self,
        settings: Optional[CareSettings] = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(
            METADATA,
            AgentConfig(tools=["suggest_activity"], max_steps=3, timeout_ms=10000),
            default_triggers(),
        )
        self.care_settings = settings or CareSettings()
        self._clock = clock
        self._rng = rng or random.Random()
        self._work_started_at = now_ms()
        self._last_work_remind_at = 0
        self._last_user_active_at = now_ms()

    def builtin_tools(self) -> List[Tool]:
        def suggest_activity(care_type: str) -> List[str]:
            return SUGGESTED_ACTIVITIES.get(CareType(care_type), [])

        return [
            *super().builtin_tools(),
            define_tool(
                "suggest_activity",
                "Suggest relaxing activities for a kind of care message",
                {
                    "care_type": ParameterSpec(
                        ParameterKind.STRING,
                        "Kind of care",
                        enum=tuple(c.value for c in CareType),
                        required=True,
                    )
                },
                suggest_activity,
            ),
        ]

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def is_late_night(self) -> bool:
        hour = self._clock().hour
        return hour >= self.care_settings.late_night_start_hour or hour < self.care_settings.late_night_end_hour

    def is_long_absence(self, last_interaction: Optional[int] = None) -> bool:
        reference = last_interaction if last_interaction is not None else self._last_user_active_at
        return now_ms() - reference >= self.care_settings.long_absence_threshold_ms

    def condition_evaluators(self) -> Dict[str, Callable[[], bool]]:
        """Evaluators for this agent's condition triggers, keyed by expression."""
        return {
            "late_night_active": lambda: self.care_settings.enable_late_night and self.is_late_night(),
            "long_absence": lambda: self.care_settings.enable_long_absence and self.is_long_absence(),
        }

    def record_user_active(self) -> None:
        self._work_started_at = now_ms()
        self._last_user_active_at = now_ms()

    def update_care_settings(self, **changes) -> None:
        self.care_settings = replace(self.care_settings, **changes)

    def _should_remind_work_break(self) -> bool:
        if not self.care_settings.enable_work_break:
            return False
        now = now_ms()
        interval = self.care_settings.work_break_interval_ms
        return now - self._work_started_at >= interval and now - self._last_work_remind_at >= interval

    def _emotional_distress(self, emotions: List[EmotionRecord]) -> bool:
        if not self.care_settings.enable_emotional or not emotions:
            return False
        return sum(1 for e in emotions if e.emotion in NEGATIVE_EMOTIONS) >= 3

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def should_trigger(self, context: AgentContext) -> bool:
        if context.trigger_source is TriggerType.USER_MESSAGE and context.user_message:
            return self.care_settings.enable_stress_relief
        if context.trigger_id == HOURLY_CHECK:
            return self._should_remind_work_break() or self._emotional_distress(context.recent_emotions)
        if context.trigger_id == LATE_NIGHT:
            return self.care_settings.enable_late_night and self.is_late_night()
        if context.trigger_id == LONG_ABSENCE:
            return self.care_settings.enable_long_absence and self.is_long_absence(
                context.current_pet_status.last_interaction
            )
        return True

    def _care_type(self, context: AgentContext) -> Optional[CareType]:
        if context.trigger_source is TriggerType.USER_MESSAGE and context.user_message:
            return CareType.STRESS_RELIEF
        if context.trigger_id == LATE_NIGHT:
            return CareType.LATE_NIGHT
        if context.trigger_id == LONG_ABSENCE:
            return CareType.LONG_ABSENCE
        if context.trigger_id == HOURLY_CHECK:
            if self._should_remind_work_break():
                return CareType.WORK_BREAK
            if self._emotional_distress(context.recent_emotions):
                return CareType.EMOTIONAL
            return None
        return CareType.EMOTIONAL

    async def on_execute(self, context: AgentContext) -> AgentResult:
        care_type = self._care_type(context)
        if care_type is None:
            return self.create_result(True, data={"triggered": False, "reason": "no_care_needed"})

        message = self._rng.choice(CARE_MESSAGES[care_type])
        if care_type is CareType.WORK_BREAK:
            self._last_work_remind_at = now_ms()
            self._work_started_at = self._last_work_remind_at

        activities = await self.call_tool("suggest_activity", {"care_type": care_type.value})
        self.log("info", f"Care message sent ({care_type.value})")

        actions = None
        if care_type is CareType.STRESS_RELIEF:
            actions = [
                AgentAction(
                    type="notification",
                    payload={"title": "温馨提醒", "body": message},
                )
            ]
        return self.create_result(
            True,
            message,
            should_speak=True,
            emotion=CARE_EMOTIONS[care_type],
            data={"care_type": care_type.value, "suggested_activities": activities.get("data")},
            actions=actions,
        )
