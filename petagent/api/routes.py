"""HTTP API exposing dispatcher and agent controls."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, Field

from petagent.core.models import (
    AgentAction,
    AgentExecutionRecord,
    AgentResult,
    AgentTrigger,
    RegisteredAgent,
    TriggerType,
)
from petagent.orchestration.dispatcher import AgentDispatcher, build_context
from petagent.runtime import get_dispatcher

router = APIRouter(prefix="/agents", tags=["agents"])
dispatcher_router = APIRouter(prefix="/dispatcher", tags=["dispatcher"])
events_router = APIRouter(prefix="/events", tags=["events"])


class TriggerResponse(BaseModel):
    id: str
    type: str
    enabled: bool
    description: Optional[str] = None

    @classmethod
    def from_trigger(cls, trigger: AgentTrigger) -> "TriggerResponse":
        return cls(
            id=trigger.id,
            type=trigger.type.value,
            enabled=trigger.enabled,
            description=trigger.description,
        )


class AgentResponse(BaseModel):
    agent_id: str
    name: str
    description: str
    category: str
    priority: str
    enabled: bool
    status: str
    execution_count: int
    error_count: int
    last_executed_at: Optional[int]
    triggers: List[TriggerResponse]

    @classmethod
    def from_registered(cls, registered: RegisteredAgent) -> "AgentResponse":
        return cls(
            agent_id=registered.metadata.id,
            name=registered.metadata.name,
            description=registered.metadata.description,
            category=registered.metadata.category,
            priority=registered.metadata.priority.value,
            enabled=registered.config.enabled,
            status=registered.status.value,
            execution_count=registered.execution_count,
            error_count=registered.error_count,
            last_executed_at=registered.last_executed_at,
            triggers=[TriggerResponse.from_trigger(t) for t in registered.triggers],
        )


class ActionResponse(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ResultResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    should_speak: Optional[bool] = None
    emotion: Optional[str] = None
    animation: Optional[str] = None
    actions: List[ActionResponse] = Field(default_factory=list)
    data: Optional[Dict[str, Any]] = None
    duration: Optional[int] = None

    @classmethod
    def from_result(cls, result: AgentResult) -> "ResultResponse":
        actions: List[AgentAction] = result.actions or []
        return cls(
            success=result.success,
            message=result.message,
            error=result.error,
            should_speak=result.should_speak,
            emotion=result.emotion,
            animation=result.animation,
            actions=[ActionResponse(type=a.type, payload=a.payload) for a in actions],
            data=result.data,
            duration=result.duration,
        )


class ExecuteRequest(BaseModel):
    user_id: str = "default"
    user_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class LogEntryResponse(BaseModel):
    level: str
    message: str
    timestamp: int
    data: Any = None


class TriggerToggleRequest(BaseModel):
    enabled: bool


class StatsResponse(BaseModel):
    status: str
    total_agents: int
    active_agents: int
    queued_tasks: int
    active_tasks: int
    total_executions: int
    success_rate: float


class HistoryEntryResponse(BaseModel):
    id: str
    agent_id: str
    agent_name: str
    trigger_type: str
    started_at: int
    completed_at: int
    success: bool
    duration: int
    message: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_record(cls, record: AgentExecutionRecord) -> "HistoryEntryResponse":
        return cls(
            id=record.id,
            agent_id=record.agent_id,
            agent_name=record.agent_name,
            trigger_type=record.trigger_type.value,
            started_at=record.started_at,
            completed_at=record.completed_at,
            success=record.success,
            duration=record.duration,
            message=record.message,
            error=record.error,
        )


class EventResponse(BaseModel):
    event_name: str
    fired: int


def _require_agent(dispatcher: AgentDispatcher, agent_id: str) -> RegisteredAgent:
    registered = dispatcher.get_registered_agent(agent_id)
    if registered is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown agent")
    return registered


@router.get("", response_model=List[AgentResponse])
async def list_agents(dispatcher: AgentDispatcher = Depends(get_dispatcher)) -> List[AgentResponse]:
    return [AgentResponse.from_registered(r) for r in dispatcher.get_registered_agents()]


@router.post("/{agent_id}/execute", response_model=ResultResponse)
async def execute_agent(
    agent_id: str,
    request: ExecuteRequest,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> ResultResponse:
    _require_agent(dispatcher, agent_id)
    context = build_context(
        request.user_id,
        TriggerType.EVENT,
        user_message=request.user_message,
        metadata=request.metadata,
    )
    result = await dispatcher.execute_agent_by_id(agent_id, context)
    return ResultResponse.from_result(result)


@router.get("/{agent_id}/logs", response_model=List[LogEntryResponse])
async def get_agent_logs(
    agent_id: str,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> List[LogEntryResponse]:
    _require_agent(dispatcher, agent_id)
    agent = dispatcher.get_agent(agent_id)
    return [
        LogEntryResponse(level=e.level, message=e.message, timestamp=e.timestamp, data=e.data)
        for e in agent.get_logs()
    ]


@router.patch("/{agent_id}/triggers/{trigger_id}", response_model=AgentResponse)
async def toggle_trigger(
    agent_id: str,
    trigger_id: str,
    request: TriggerToggleRequest,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> AgentResponse:
    _require_agent(dispatcher, agent_id)
    if not dispatcher.set_trigger_enabled(agent_id, trigger_id, request.enabled):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown trigger")
    return AgentResponse.from_registered(dispatcher.get_registered_agent(agent_id))


@dispatcher_router.get("/stats", response_model=StatsResponse)
async def get_stats(dispatcher: AgentDispatcher = Depends(get_dispatcher)) -> StatsResponse:
    stats = dispatcher.get_stats()
    return StatsResponse(
        status=stats.status.value,
        total_agents=stats.total_agents,
        active_agents=stats.active_agents,
        queued_tasks=stats.queued_tasks,
        active_tasks=stats.active_tasks,
        total_executions=stats.total_executions,
        success_rate=stats.success_rate,
    )


@dispatcher_router.get("/history", response_model=List[HistoryEntryResponse])
async def get_history(
    limit: int = 50,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> List[HistoryEntryResponse]:
    return [HistoryEntryResponse.from_record(r) for r in dispatcher.get_execution_history(limit)]


@dispatcher_router.post("/pause", status_code=status.HTTP_204_NO_CONTENT)
async def pause(dispatcher: AgentDispatcher = Depends(get_dispatcher)) -> None:
    dispatcher.pause()


@dispatcher_router.post("/resume", status_code=status.HTTP_204_NO_CONTENT)
async def resume(dispatcher: AgentDispatcher = Depends(get_dispatcher)) -> None:
    dispatcher.resume()


@events_router.post("/{event_name}", response_model=EventResponse, status_code=status.HTTP_202_ACCEPTED)
async def emit_event(
    event_name: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> EventResponse:
    fired = await dispatcher.emit_event(event_name, payload or {})
    return EventResponse(event_name=event_name, fired=fired)
