"""Trigger registry routing schedules, events and condition polls to agents."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from petagent.core.models import (
    AgentTrigger,
    ConditionTriggerConfig,
    EventTriggerConfig,
    ScheduleTriggerConfig,
    TriggerType,
    UserMessageTriggerConfig,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_MATCH_SCORE = 0.1

# (agent_id, trigger_id, context overrides)
TriggerCallback = Callable[[str, str, Dict[str, Any]], Union[None, Awaitable[None]]]
ConditionEvaluator = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass(slots=True)
class RegisteredTrigger:
    """Trigger plus the runtime state that says whether it is armed."""

    agent_id: str
    trigger: AgentTrigger
    timer: Optional[asyncio.Task] = None
    last_triggered_at: Optional[int] = None
    trigger_count: int = 0


@dataclass(slots=True)
class EventListener:
    agent_id: str
    trigger_id: str
    event_name: str
    filter: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class TriggerMatch:
    agent_id: str
    trigger_id: str
    score: float


@dataclass(slots=True)
class TriggerStats:
    total: int
    active: int
    by_type: Dict[str, int] = field(default_factory=dict)


def _key(agent_id: str, trigger_id: str) -> str:
    return f"{agent_id}:{trigger_id}"


class TriggerManager:
    """Owns every trigger registration and the timers/listeners behind them."""

    def __init__(self) -> None:
        self._triggers: Dict[str, RegisteredTrigger] = {}
        self._listeners: Dict[str, List[EventListener]] = {}
        self._evaluators: Dict[str, ConditionEvaluator] = {}
        self._callback: Optional[TriggerCallback] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, callback: TriggerCallback) -> None:
        if self._running:
            logger.warning("TriggerManager already running")
            return
        self._callback = callback
        self._running = True
        for registered in self._triggers.values():
            if registered.trigger.enabled:
                self._activate(registered)
        logger.info(f"TriggerManager started with {len(self._triggers)} triggers")

    def stop(self) -> None:
        if not self._running:
            return
        for registered in self._triggers.values():
            self._deactivate(registered)
        self._running = False
        self._callback = None
        logger.info("TriggerManager stopped")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_trigger(self, agent_id: str, trigger: AgentTrigger) -> None:
        key = _key(agent_id, trigger.id)
        existing = self._triggers.get(key)
        if existing is not None:
            self._deactivate(existing)

        registered = RegisteredTrigger(agent_id=agent_id, trigger=trigger)
        self._triggers[key] = registered
        if self._running and trigger.enabled:
            self._activate(registered)
        logger.debug(f"Registered trigger {key} ({trigger.type.value})")

    def unregister_trigger(self, agent_id: str, trigger_id: str) -> bool:
        registered = self._triggers.pop(_key(agent_id, trigger_id), None)
        if registered is None:
            return False
        self._deactivate(registered)
        return True

    def unregister_agent_triggers(self, agent_id: str) -> None:
        for registered in [r for r in self._triggers.values() if r.agent_id == agent_id]:
            self.unregister_trigger(agent_id, registered.trigger.id)

    def set_trigger_enabled(self, agent_id: str, trigger_id: str, enabled: bool) -> bool:
        registered = self._triggers.get(_key(agent_id, trigger_id))
        if registered is None:
            return False
        registered.trigger.enabled = enabled
        if not self._running:
            return True
        if enabled:
            self._activate(registered)
        else:
            self._deactivate(registered)
        return True

    def register_condition_evaluator(self, expression: str, evaluator: ConditionEvaluator) -> None:
        self._evaluators[expression] = evaluator

    def unregister_condition_evaluator(self, expression: str) -> None:
        self._evaluators.pop(expression, None)

    def get_trigger(self, agent_id: str, trigger_id: str) -> Optional[RegisteredTrigger]:
        return self._triggers.get(_key(agent_id, trigger_id))

    def get_triggers(self, agent_id: Optional[str] = None) -> List[RegisteredTrigger]:
        return [r for r in self._triggers.values() if agent_id is None or r.agent_id == agent_id]

    def get_stats(self) -> TriggerStats:
        by_type: Dict[str, int] = {t.value: 0 for t in TriggerType}
        for registered in self._triggers.values():
            by_type[registered.trigger.type.value] += 1
        active = sum(1 for r in self._triggers.values() if r.trigger.enabled)
        return TriggerStats(total=len(self._triggers), active=active, by_type=by_type)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def _activate(self, registered: RegisteredTrigger) -> None:
        self._deactivate(registered)
        trigger = registered.trigger
        config = trigger.config

        if trigger.type is TriggerType.SCHEDULE and isinstance(config, ScheduleTriggerConfig):
            if config.interval_seconds:
                registered.timer = asyncio.create_task(
                    self._interval_loop(registered, config.interval_seconds)
                )
            elif config.cron:
                logger.warning(
                    f"Cron triggers are not evaluated, {registered.agent_id}:{trigger.id} "
                    f"({config.cron}) will never fire"
                )
        elif trigger.type is TriggerType.EVENT and isinstance(config, EventTriggerConfig):
            self._listeners.setdefault(config.event_name, []).append(
                EventListener(
                    agent_id=registered.agent_id,
                    trigger_id=trigger.id,
                    event_name=config.event_name,
                    filter=config.filter,
                )
            )
        elif trigger.type is TriggerType.CONDITION and isinstance(config, ConditionTriggerConfig):
            registered.timer = asyncio.create_task(self._condition_loop(registered, config))

    def _deactivate(self, registered: RegisteredTrigger) -> None:
        if registered.timer is not None:
            registered.timer.cancel()
            registered.timer = None

        config = registered.trigger.config
        if isinstance(config, EventTriggerConfig):
            listeners = self._listeners.get(config.event_name, [])
            remaining = [
                listener
                for listener in listeners
                if not (
                    listener.agent_id == registered.agent_id
                    and listener.trigger_id == registered.trigger.id
                )
            ]
            if remaining:
                self._listeners[config.event_name] = remaining
            else:
                self._listeners.pop(config.event_name, None)

    async def _interval_loop(self, registered: RegisteredTrigger, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.fire_trigger(registered.agent_id, registered.trigger.id)

    async def _condition_loop(self, registered: RegisteredTrigger, config: ConditionTriggerConfig) -> None:
        while True:
            await asyncio.sleep(config.check_interval_ms / 1000)

            if config.cooldown_ms and registered.last_triggered_at is not None:
                if now_ms() - registered.last_triggered_at < config.cooldown_ms:
                    continue

            evaluator = self._evaluators.get(config.expression)
            if evaluator is None:
                logger.debug(f"No evaluator registered for condition '{config.expression}'")
                continue

            try:
                outcome = evaluator()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Condition '{config.expression}' evaluation failed: {exc}")
                continue

            if outcome:
                await self.fire_trigger(registered.agent_id, registered.trigger.id)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def fire_trigger(
        self,
        agent_id: str,
        trigger_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        registered = self._triggers.get(_key(agent_id, trigger_id))
        if registered is None or not registered.trigger.enabled or self._callback is None:
            return False

        registered.last_triggered_at = now_ms()
        registered.trigger_count += 1

        context: Dict[str, Any] = {
            "trigger_source": registered.trigger.type,
            "trigger_id": trigger_id,
        }
        if metadata is not None:
            context["metadata"] = metadata

        try:
            outcome = self._callback(agent_id, trigger_id, context)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Trigger callback failed for {agent_id}:{trigger_id}: {exc}")
            return False
        return True

    async def emit_event(self, event_name: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Fire every enabled listener of ``event_name`` whose filter matches; returns the count."""
        payload = payload or {}
        fired = 0
        for listener in list(self._listeners.get(event_name, [])):
            if listener.filter and any(payload.get(k) != v for k, v in listener.filter.items()):
                continue
            if await self.fire_trigger(listener.agent_id, listener.trigger_id, metadata=payload):
                fired += 1
        return fired

    def match_user_message_triggers(self, message: str) -> List[TriggerMatch]:
        lowered = message.lower()
        matches: List[TriggerMatch] = []

        for registered in self._triggers.values():
            trigger = registered.trigger
            config = trigger.config
            if not trigger.enabled or trigger.type is not TriggerType.USER_MESSAGE:
                continue
            if not isinstance(config, UserMessageTriggerConfig):
                continue

            score = 0.0
            if config.keywords:
                hits = sum(1 for keyword in config.keywords if keyword.lower() in lowered)
                score = hits / len(config.keywords)
            if score == 0 and config.is_default:
                score = DEFAULT_MATCH_SCORE

            if score > 0:
                matches.append(TriggerMatch(registered.agent_id, trigger.id, score))

        matches.sort(key=lambda match: match.score, reverse=True)
        return matches
