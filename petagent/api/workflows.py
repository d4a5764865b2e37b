"""Endpoints running the supervisor/worker workflow presets."""
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from petagent.runtime import get_workflow_config
from petagent.workflows.models import WorkflowEvent, WorkflowState
from petagent.workflows.presets import PRESETS, WorkflowConfig, run_workflow

router = APIRouter(prefix="/workflows", tags=["workflows"])


class WorkflowRunRequest(BaseModel):
    input: str = Field(..., min_length=1, description="Request handed to the supervisor")
    max_iterations: Optional[int] = Field(default=None, ge=1)


class WorkflowTaskResponse(BaseModel):
    id: str
    description: str
    assigned_to: str
    status: str
    result: Optional[str] = None
    error: Optional[str] = None


class WorkflowEventResponse(BaseModel):
    type: str
    node_id: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: int


class WorkflowRunResponse(BaseModel):
    preset: str
    status: str
    output: Optional[str] = None
    error: Optional[str] = None
    iterations: int
    results: Dict[str, str]
    tasks: List[WorkflowTaskResponse]
    events: List[WorkflowEventResponse]

    @classmethod
    def from_state(
        cls, preset: str, state: WorkflowState, events: List[WorkflowEvent]
    ) -> "WorkflowRunResponse":
        return cls(
            preset=preset,
            status=state.status.value,
            output=state.output,
            error=state.error,
            iterations=state.iteration,
            results=dict(state.results),
            tasks=[
                WorkflowTaskResponse(
                    id=t.id,
                    description=t.description,
                    assigned_to=t.assigned_to,
                    status=t.status.value,
                    result=t.result,
                    error=t.error,
                )
                for t in state.tasks
            ],
            events=[
                WorkflowEventResponse(
                    type=e.type,
                    node_id=e.node_id,
                    status=e.status.value if e.status else None,
                    message=e.message.content if e.message else None,
                    error=e.error,
                    timestamp=e.timestamp,
                )
                for e in events
            ],
        )


@router.get("", response_model=List[str])
async def list_presets() -> List[str]:
    return sorted(PRESETS)


@router.post("/{preset}/runs", response_model=WorkflowRunResponse)
async def create_run(
    preset: str,
    request: WorkflowRunRequest,
    workflow_config: WorkflowConfig = Depends(get_workflow_config),
) -> WorkflowRunResponse:
    if preset not in PRESETS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown workflow preset '{preset}'")

    if request.max_iterations is not None:
        workflow_config = replace(workflow_config, max_iterations=request.max_iterations)

    events: List[WorkflowEvent] = []
    state = await run_workflow(preset, request.input, workflow_config, on_event=events.append)
    return WorkflowRunResponse.from_state(preset, state, events)
