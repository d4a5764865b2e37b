"""Dispatcher responsible for scheduling and supervising agent executions."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from petagent.agents.base import BaseAgent
from petagent.config import DispatcherConfig
from petagent.core.models import (
    PRIORITY_ORDER,
    AgentContext,
    AgentExecutionRecord,
    AgentResult,
    AgentSystemStatus,
    AgentTask,
    EmotionRecord,
    PetStatus,
    RegisteredAgent,
    TaskStatus,
    TriggerType,
    UserProfile,
    generate_id,
    now_ms,
)
from petagent.orchestration.triggers import TriggerManager

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.1
MAX_HISTORY = 1000
SKIPPED_MESSAGE = "触发条件不满足，跳过执行"


@dataclass(slots=True)
class DispatcherStats:
    status: AgentSystemStatus
    total_agents: int
    active_agents: int
    queued_tasks: int
    active_tasks: int
    total_executions: int
    success_rate: float


def build_context(
    user_id: str = "default",
    trigger_source: TriggerType = TriggerType.USER_MESSAGE,
    *,
    user_message: Optional[str] = None,
    user_profile: Optional[UserProfile] = None,
    recent_emotions: Optional[List[EmotionRecord]] = None,
    current_pet_status: Optional[PetStatus] = None,
    timestamp: Optional[int] = None,
    trigger_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AgentContext:
    """Fresh execution context with structured defaults for missing parts."""
    return AgentContext(
        user_id=user_id,
        user_profile=user_profile or UserProfile(),
        recent_emotions=list(recent_emotions or []),
        current_pet_status=current_pet_status or PetStatus(),
        timestamp=timestamp if timestamp is not None else now_ms(),
        trigger_source=trigger_source,
        user_message=user_message,
        trigger_id=trigger_id,
        metadata=metadata,
    )


class AgentDispatcher:
    """Agent registry, priority task queue and concurrency-limited executor."""

    def __init__(
        self,
        config: Optional[DispatcherConfig] = None,
        *,
        trigger_manager: Optional[TriggerManager] = None,
    ) -> None:
        self.config = config or DispatcherConfig()
        self._triggers = trigger_manager or TriggerManager()
        self._agents: Dict[str, BaseAgent] = {}
        self._registered: Dict[str, RegisteredAgent] = {}
        self._queue: List[AgentTask] = []
        self._active: Dict[str, AgentTask] = {}
        self._history: Deque[AgentExecutionRecord] = deque(maxlen=MAX_HISTORY)
        self._status = AgentSystemStatus.IDLE
        self._tick: Optional[asyncio.Task] = None
        self._running_tasks: Set[asyncio.Task] = set()
        # task id -> (task waiting for its retry delay, delay timer)
        self._retries: Dict[str, Tuple[AgentTask, asyncio.Task]] = {}

    @property
    def trigger_manager(self) -> TriggerManager:
        return self._triggers

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_agent(self, agent: BaseAgent) -> None:
        agent_id = agent.agent_id
        if agent_id in self._agents:
            logger.warning(f"Agent {agent_id} already registered")
            return

        self._agents[agent_id] = agent
        self._registered[agent_id] = RegisteredAgent(
            metadata=agent.metadata,
            config=agent.config,
            triggers=list(agent.triggers),
        )
        for trigger in agent.triggers:
            self._triggers.register_trigger(agent_id, trigger)

        if self._status is not AgentSystemStatus.IDLE:
            self._spawn(self._initialize_agent(agent))
        logger.info(f"Registered agent {agent_id} with {len(agent.triggers)} triggers")

    async def unregister_agent(self, agent_id: str) -> bool:
        agent = self._agents.get(agent_id)
        if agent is None:
            return False

        self._triggers.unregister_agent_triggers(agent_id)
        try:
            await agent.cleanup()
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Cleanup failed for agent {agent_id}: {exc}")
        self._agents.pop(agent_id, None)
        self._registered.pop(agent_id, None)
        logger.info(f"Unregistered agent {agent_id}")
        return True

    def get_agent(self, agent_id: str) -> Optional[BaseAgent]:
        return self._agents.get(agent_id)

    def get_registered_agents(self) -> List[RegisteredAgent]:
        return [self._sync_registered(agent_id) for agent_id in self._registered]

    def get_registered_agent(self, agent_id: str) -> Optional[RegisteredAgent]:
        if agent_id not in self._registered:
            return None
        return self._sync_registered(agent_id)

    def _sync_registered(self, agent_id: str) -> RegisteredAgent:
        # Agents replace their config object on update_config.
        registered = self._registered[agent_id]
        agent = self._agents[agent_id]
        registered.config = agent.config
        registered.triggers = list(agent.triggers)
        return registered

    def set_trigger_enabled(self, agent_id: str, trigger_id: str, enabled: bool) -> bool:
        agent = self._agents.get(agent_id)
        if agent is None or not agent.set_trigger_enabled(trigger_id, enabled):
            return False
        self._triggers.set_trigger_enabled(agent_id, trigger_id, enabled)
        self._registered[agent_id].triggers = list(agent.triggers)
        return True

    async def _initialize_agent(self, agent: BaseAgent) -> None:
        try:
            await agent.initialize()
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Failed to initialize agent {agent.agent_id}: {exc}")
            registered = self._registered.get(agent.agent_id)
            if registered is not None:
                registered.status = AgentSystemStatus.ERROR

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._status is not AgentSystemStatus.IDLE:
            logger.warning("Dispatcher already started")
            return

        for agent in list(self._agents.values()):
            await self._initialize_agent(agent)

        self._triggers.start(self.handle_trigger)
        self._start_tick()
        self._status = AgentSystemStatus.RUNNING
        logger.info(f"Dispatcher started with {len(self._agents)} agents")

    async def stop(self) -> None:
        if self._status is AgentSystemStatus.IDLE:
            return

        self._stop_tick()
        self._triggers.stop()

        for task, timer in list(self._retries.values()):
            timer.cancel()
            task.status = TaskStatus.CANCELLED
        self._retries.clear()

        for task in self._queue:
            task.status = TaskStatus.CANCELLED
        self._queue.clear()

        for agent in list(self._agents.values()):
            try:
                await agent.cleanup()
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Cleanup failed for agent {agent.agent_id}: {exc}")

        self._status = AgentSystemStatus.IDLE
        logger.info("Dispatcher stopped")

    def pause(self) -> None:
        if self._status is not AgentSystemStatus.RUNNING:
            return
        self._stop_tick()
        self._status = AgentSystemStatus.PAUSED

    def resume(self) -> None:
        if self._status is not AgentSystemStatus.PAUSED:
            return
        self._start_tick()
        self._status = AgentSystemStatus.RUNNING

    def get_status(self) -> AgentSystemStatus:
        return self._status

    def update_config(self, **changes: Any) -> None:
        self.config = replace(self.config, **changes)

    def _start_tick(self) -> None:
        self._stop_tick()
        self._tick = asyncio.create_task(self._tick_loop())

    def _stop_tick(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(TICK_SECONDS)
            self.process_queue()

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._running_tasks.add(task)
        task.add_done_callback(self._running_tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Triggers and direct execution
    # ------------------------------------------------------------------

    def handle_trigger(self, agent_id: str, trigger_id: str, overrides: Dict[str, Any]) -> None:
        if agent_id not in self._agents:
            logger.warning(f"Trigger {trigger_id} fired for unknown agent {agent_id}")
            return
        context = build_context(**{"trigger_id": trigger_id, **overrides})
        self.enqueue_task(agent_id, context)

    async def emit_event(self, event_name: str, payload: Optional[Dict[str, Any]] = None) -> int:
        return await self._triggers.emit_event(event_name, payload)

    async def dispatch_user_message(
        self,
        message: str,
        context: Optional[AgentContext] = None,
    ) -> Optional[AgentResult]:
        """Run the best-matching ``user_message`` agent directly, bypassing the queue."""
        matches = self._triggers.match_user_message_triggers(message)
        if not matches:
            logger.debug("No user_message trigger matched")
            return None

        best = matches[0]
        agent = self._agents.get(best.agent_id)
        if agent is None:
            return None

        base = context or build_context()
        execution_context = replace(
            base,
            user_message=message,
            trigger_source=TriggerType.USER_MESSAGE,
            trigger_id=best.trigger_id,
        )
        logger.info(f"Message routed to {best.agent_id} (score={best.score:.2f})")
        return await self._execute_and_record(agent, execution_context)

    async def execute_agent_by_id(
        self,
        agent_id: str,
        context: Optional[AgentContext] = None,
    ) -> AgentResult:
        agent = self._agents.get(agent_id)
        if agent is None:
            return AgentResult(success=False, error=f"Agent not found: {agent_id}")
        return await self._execute_and_record(
            agent, context or build_context(trigger_source=TriggerType.EVENT)
        )

    async def _execute_and_record(self, agent: BaseAgent, context: AgentContext) -> AgentResult:
        started = now_ms()
        try:
            result = await self.execute_agent(agent, context)
        except Exception as exc:  # noqa: BLE001
            result = AgentResult(success=False, error=str(exc))
        self._record(agent.agent_id, context.trigger_source, started, result)
        return result

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue_task(self, agent_id: str, context: AgentContext) -> AgentTask:
        if len(self._queue) >= self.config.queue_size:
            evicted = self._queue.pop(0)
            evicted.status = TaskStatus.CANCELLED
            logger.warning(f"Task queue full, dropped oldest task {evicted.id} ({evicted.agent_id})")

        task = AgentTask(
            id=generate_id("task_"),
            agent_id=agent_id,
            context=context,
            created_at=now_ms(),
        )
        self._insert_by_priority(task)
        return task

    def _priority(self, agent_id: str) -> int:
        agent = self._agents.get(agent_id)
        if agent is None:
            return len(PRIORITY_ORDER)
        return PRIORITY_ORDER[agent.metadata.priority]

    def _insert_by_priority(self, task: AgentTask) -> None:
        priority = self._priority(task.agent_id)
        for index, queued in enumerate(self._queue):
            if self._priority(queued.agent_id) > priority:
                self._queue.insert(index, task)
                return
        self._queue.append(task)

    def get_task_queue(self) -> List[AgentTask]:
        return list(self._queue)

    def get_active_tasks(self) -> List[AgentTask]:
        return list(self._active.values())

    def process_queue(self) -> None:
        """Start the head task if a concurrency slot is free (one per tick)."""
        if len(self._active) >= self.config.max_concurrency or not self._queue:
            return

        task = self._queue.pop(0)
        task.status = TaskStatus.RUNNING
        task.started_at = now_ms()
        self._active[task.id] = task
        self._spawn(self._run_task(task))

    async def _run_task(self, task: AgentTask) -> None:
        agent = self._agents.get(task.agent_id)
        try:
            if agent is None:
                raise LookupError(f"Agent not found: {task.agent_id}")
            result = await self.execute_agent(agent, task.context)
        except Exception as exc:  # noqa: BLE001
            result = AgentResult(success=False, error=str(exc) or exc.__class__.__name__)
        finally:
            self._active.pop(task.id, None)

        if result.error is None:
            task.status = TaskStatus.COMPLETED
        elif task.retry_count < self.config.max_retries and self._status is not AgentSystemStatus.IDLE:
            logger.warning(
                f"Task {task.id} failed ({result.error}), retry "
                f"{task.retry_count + 1}/{self.config.max_retries}"
            )
            task.result = result
            self._retries[task.id] = (task, asyncio.create_task(self._retry_later(task)))
            return
        else:
            task.status = TaskStatus.FAILED
            logger.error(f"Task {task.id} failed permanently: {result.error}")

        task.result = result
        task.completed_at = now_ms()
        self._record(task.agent_id, task.context.trigger_source, task.started_at or task.created_at, result)

    async def _retry_later(self, task: AgentTask) -> None:
        await asyncio.sleep(self.config.retry_delay_ms / 1000)
        self._retries.pop(task.id, None)
        if len(self._queue) >= self.config.queue_size:
            task.status = TaskStatus.FAILED
            task.completed_at = now_ms()
            logger.error(f"Task queue full, dropped retry of task {task.id} ({task.agent_id})")
            result = task.result or AgentResult(success=False, error="Task queue full")
            self._record(task.agent_id, task.context.trigger_source, task.started_at or task.created_at, result)
            return

        task.retry_count += 1
        task.status = TaskStatus.PENDING
        task.started_at = None
        task.completed_at = None
        self._queue.insert(0, task)

    async def execute_agent(self, agent: BaseAgent, context: AgentContext) -> AgentResult:
        """Apply the agent's veto, execute it and update its counters."""
        if not await agent.should_trigger(context):
            return AgentResult(success=True, message=SKIPPED_MESSAGE)

        registered = self._registered.get(agent.agent_id)
        if registered is not None:
            registered.status = AgentSystemStatus.RUNNING
        try:
            result = await agent.execute(context)
        except Exception:
            if registered is not None:
                registered.error_count += 1
            raise
        finally:
            if registered is not None:
                registered.execution_count += 1
                registered.last_executed_at = now_ms()
                if registered.status is AgentSystemStatus.RUNNING:
                    registered.status = AgentSystemStatus.IDLE

        if result.error and registered is not None:
            registered.error_count += 1
        return result

    # ------------------------------------------------------------------
    # History and stats
    # ------------------------------------------------------------------

    def _record(self, agent_id: str, trigger_type: TriggerType, started_at: int, result: AgentResult) -> None:
        agent = self._agents.get(agent_id)
        completed_at = now_ms()
        self._history.append(
            AgentExecutionRecord(
                id=generate_id("exec_"),
                agent_id=agent_id,
                agent_name=agent.metadata.name if agent else agent_id,
                trigger_type=trigger_type,
                started_at=started_at,
                completed_at=completed_at,
                success=result.success,
                duration=result.duration if result.duration is not None else completed_at - started_at,
                message=result.message,
                error=result.error,
            )
        )

    def get_execution_history(self, limit: int = 50) -> List[AgentExecutionRecord]:
        """Most recent records first."""
        return list(reversed(self._history))[:limit]

    def get_stats(self) -> DispatcherStats:
        total = len(self._history)
        successes = sum(1 for record in self._history if record.success)
        return DispatcherStats(
            status=self._status,
            total_agents=len(self._agents),
            active_agents=sum(1 for agent in self._agents.values() if agent.config.enabled),
            queued_tasks=len(self._queue),
            active_tasks=len(self._active),
            total_executions=total,
            success_rate=successes / total if total else 1.0,
        )
