"""Agent that performs the action of one scheduled task definition."""
from __future__ import annotations

from typing import List, Optional

from petagent.agents.base import BaseAgent
from petagent.agents.tool_runtime import AgentRuntime, AgentRuntimeConfig
from petagent.core.models import (
    AgentAction,
    AgentConfig,
    AgentContext,
    AgentMetadata,
    AgentResult,
    AgentTrigger,
    EventTriggerConfig,
    ScheduleTriggerConfig,
    TriggerType,
    generate_id,
    now_ms,
)
from petagent.scheduler.tasks import (
    AgentTaskActionConfig,
    CronTriggerConfig,
    EventTaskTriggerConfig,
    IntervalTriggerConfig,
    NotificationActionConfig,
    ScriptActionConfig,
    TaskDefinition,
    TaskExecution,
    TaskRepository,
    WorkflowActionConfig,
)
from petagent.services.chat_model import ChatModel
from petagent.services.confirm import Confirmer
from petagent.services.store import RowStore
from petagent.workflows.models import WorkflowStatus
from petagent.workflows.presets import WorkflowConfig, run_workflow


def task_agent_id(task_id: str) -> str:
    return f"scheduled-{task_id}"


def triggers_for_task(task: TaskDefinition) -> List[AgentTrigger]:
    """Translate the persisted trigger into dispatcher triggers (manual has none)."""
    config = task.trigger.config
    trigger_id = f"{task.id}-trigger"
    if isinstance(config, IntervalTriggerConfig):
        return [
            AgentTrigger(
                id=trigger_id,
                type=TriggerType.SCHEDULE,
                config=ScheduleTriggerConfig(interval_seconds=config.seconds),
                enabled=task.enabled,
                description=task.name,
            )
        ]
    if isinstance(config, CronTriggerConfig):
        return [
            AgentTrigger(
                id=trigger_id,
                type=TriggerType.SCHEDULE,
                config=ScheduleTriggerConfig(cron=config.expression),
                enabled=task.enabled,
                description=task.name,
            )
        ]
    if isinstance(config, EventTaskTriggerConfig):
        return [
            AgentTrigger(
                id=trigger_id,
                type=TriggerType.EVENT,
                config=EventTriggerConfig(event_name=config.event_name, filter=config.filter),
                enabled=task.enabled,
                description=task.name,
            )
        ]
    return []


class ScheduledTaskAgent(BaseAgent):
    """Runs a :class:`TaskDefinition`'s action whenever its trigger fires."""

    def __init__(
        self,
        task: TaskDefinition,
        repository: TaskRepository,
        model: ChatModel,
        *,
        confirm: Optional[Confirmer] = None,
        audit_store: Optional[RowStore] = None,
    ) -> None:
        super().__init__(
            AgentMetadata(
                id=task_agent_id(task.id),
                name=task.name,
                description=task.description or "",
                category="scheduler",
            ),
            AgentConfig(enabled=task.enabled, timeout_ms=120000),
            triggers_for_task(task),
        )
        self.task = task
        self._repository = repository
        self._model = model
        self._confirm = confirm
        self._audit_store = audit_store

    async def on_execute(self, context: AgentContext) -> AgentResult:
        started = now_ms()
        try:
            result = await self._perform()
        except Exception as exc:  # noqa: BLE001
            result = self.create_result(False, error=str(exc) or exc.__class__.__name__)

        completed = now_ms()
        await self._repository.record_execution(
            TaskExecution(
                id=generate_id("exec_"),
                task_id=self.task.id,
                status="success" if result.success else "failed",
                started_at=started,
                completed_at=completed,
                result=result.message,
                error=result.error,
                duration=completed - started,
            )
        )
        updated = await self._repository.update(self.task.id, last_run=completed)
        if updated is not None:
            self.task = updated
        return result

    async def _perform(self) -> AgentResult:
        action = self.task.action.config

        if isinstance(action, AgentTaskActionConfig):
            runtime = AgentRuntime(
                AgentRuntimeConfig(
                    model=self._model,
                    max_steps=action.max_steps or 5,
                    source="scheduler",
                    allowed_tools=action.tools_allowed,
                    confirm=self._confirm,
                    audit_store=self._audit_store,
                )
            )
            run = await runtime.run([{"role": "user", "content": action.prompt}])
            if run.error:
                return self.create_result(False, error=run.error)
            return self.create_result(
                True,
                run.content,
                data={"tool_calls": [call.name for call in run.tool_calls]},
            )

        if isinstance(action, NotificationActionConfig):
            payload = {"title": action.title, "body": action.body}
            if action.action_button:
                payload["action_button"] = action.action_button
            if action.action_callback:
                payload["action_callback"] = action.action_callback
            return self.create_result(
                True,
                action.body,
                should_speak=False,
                actions=[AgentAction(type="notification", payload=payload)],
            )

        if isinstance(action, WorkflowActionConfig):
            text = (action.input or {}).get("prompt") or self.task.description or self.task.name
            state = await run_workflow(
                action.workflow_id,
                str(text),
                WorkflowConfig(model=self._model, confirm=self._confirm, audit_store=self._audit_store),
            )
            if state.status is not WorkflowStatus.COMPLETED:
                return self.create_result(False, error=state.error or f"Workflow ended as {state.status.value}")
            return self.create_result(True, state.output)

        if isinstance(action, ScriptActionConfig):
            return self.create_result(False, error="Script actions are not supported")

        return self.create_result(False, error=f"Unknown action type: {self.task.action.type}")
