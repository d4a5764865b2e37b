"""Persisted scheduled-task definitions and their repository."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from petagent.core.models import generate_id, now_ms
from petagent.services.store import RowStore

TASKS_TABLE = "scheduled_tasks"
EXECUTIONS_TABLE = "scheduled_task_executions"


class CamelModel(BaseModel):
    """Serialises with the camelCase keys used by the persisted JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class CronTriggerConfig(CamelModel):
    type: Literal["cron"] = "cron"
    expression: str


class IntervalTriggerConfig(CamelModel):
    type: Literal["interval"] = "interval"
    seconds: float = Field(gt=0)


class EventTaskTriggerConfig(CamelModel):
    type: Literal["event"] = "event"
    event_name: str
    filter: Optional[Dict[str, Any]] = None


class ManualTriggerConfig(CamelModel):
    type: Literal["manual"] = "manual"


TaskTriggerConfig = Union[
    CronTriggerConfig,
    IntervalTriggerConfig,
    EventTaskTriggerConfig,
    ManualTriggerConfig,
]


class TaskTrigger(CamelModel):
    type: Literal["cron", "interval", "event", "manual"]
    config: TaskTriggerConfig = Field(discriminator="type")


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class AgentTaskActionConfig(CamelModel):
    type: Literal["agent_task"] = "agent_task"
    prompt: str
    tools_allowed: Optional[List[str]] = None
    max_steps: Optional[int] = None


class NotificationActionConfig(CamelModel):
    type: Literal["notification"] = "notification"
    title: str
    body: str
    action_button: Optional[str] = None
    action_callback: Optional[str] = None


class WorkflowActionConfig(CamelModel):
    type: Literal["workflow"] = "workflow"
    workflow_id: str
    input: Optional[Dict[str, Any]] = None


class ScriptActionConfig(CamelModel):
    type: Literal["script"] = "script"
    code: str


TaskActionConfig = Union[
    AgentTaskActionConfig,
    NotificationActionConfig,
    WorkflowActionConfig,
    ScriptActionConfig,
]


class TaskAction(CamelModel):
    type: Literal["agent_task", "notification", "workflow", "script"]
    config: TaskActionConfig = Field(discriminator="type")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskDefinition(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    trigger: TaskTrigger
    action: TaskAction
    enabled: bool = True
    last_run: Optional[int] = None
    next_run: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: int
    updated_at: Optional[int] = None


class CreateTaskInput(CamelModel):
    name: str
    description: Optional[str] = None
    trigger: TaskTrigger
    action: TaskAction
    enabled: bool = True
    metadata: Optional[Dict[str, Any]] = None


class TaskExecution(CamelModel):
    id: str
    task_id: str
    status: Literal["running", "success", "failed", "cancelled"]
    started_at: int
    completed_at: Optional[int] = None
    result: Optional[str] = None
    error: Optional[str] = None
    duration: Optional[int] = None


class TaskRepository:
    """CRUD for task definitions over a :class:`RowStore`."""

    def __init__(self, store: RowStore) -> None:
        self._store = store

    async def create(self, data: CreateTaskInput) -> TaskDefinition:
        task = TaskDefinition(
            id=generate_id("task_"),
            created_at=now_ms(),
            **data.model_dump(),
        )
        await self._store.insert(TASKS_TABLE, task.to_json())
        return task

    async def get(self, task_id: str) -> Optional[TaskDefinition]:
        row = await self._store.get(TASKS_TABLE, task_id)
        return TaskDefinition.model_validate(row) if row is not None else None

    async def list(self, enabled_only: bool = False) -> List[TaskDefinition]:
        tasks = [TaskDefinition.model_validate(row) for row in await self._store.list(TASKS_TABLE)]
        if enabled_only:
            tasks = [task for task in tasks if task.enabled]
        return sorted(tasks, key=lambda task: task.created_at)

    async def update(self, task_id: str, **changes: Any) -> Optional[TaskDefinition]:
        current = await self.get(task_id)
        if current is None:
            return None
        changes.pop("id", None)
        changes.pop("created_at", None)
        updated = TaskDefinition.model_validate(
            {**current.model_dump(), **changes, "updated_at": now_ms()}
        )
        await self._store.update(TASKS_TABLE, task_id, updated.model_dump(by_alias=True, mode="json"))
        return updated

    async def delete(self, task_id: str) -> bool:
        return await self._store.delete(TASKS_TABLE, task_id)

    async def enable(self, task_id: str, enabled: bool = True) -> Optional[TaskDefinition]:
        return await self.update(task_id, enabled=enabled)

    async def record_execution(self, execution: TaskExecution) -> None:
        await self._store.insert(EXECUTIONS_TABLE, execution.to_json())

    async def list_executions(self, task_id: str) -> List[TaskExecution]:
        rows = await self._store.list(EXECUTIONS_TABLE)
        executions = [TaskExecution.model_validate(row) for row in rows if row.get("taskId") == task_id]
        return sorted(executions, key=lambda execution: execution.started_at, reverse=True)
