"""Data model for supervisor/worker workflow runs."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from petagent.core.models import generate_id, now_ms


class AgentRole(str, Enum):
    SUPERVISOR = "supervisor"
    RESEARCHER = "researcher"
    WRITER = "writer"
    EXECUTOR = "executor"
    CUSTOM = "custom"


class WorkflowStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(slots=True)
class AgentMessage:
    """Handoff note between workflow nodes."""

    from_: str
    to: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=generate_id)
    timestamp: int = field(default_factory=now_ms)


@dataclass(slots=True)
class WorkflowTask:
    """Subtask created by the supervisor; scoped to one workflow run."""

    description: str
    assigned_to: str
    depends_on: List[str] = field(default_factory=list)
    status: NodeStatus = NodeStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    id: str = field(default_factory=generate_id)


@dataclass(slots=True)
class WorkflowState:
    input: str
    status: WorkflowStatus = WorkflowStatus.IDLE
    current_node: Optional[str] = None
    messages: List[AgentMessage] = field(default_factory=list)
    tasks: List[WorkflowTask] = field(default_factory=list)
    results: Dict[str, str] = field(default_factory=dict)
    output: Optional[str] = None
    error: Optional[str] = None
    iteration: int = 0
    max_iterations: int = 10
    start_time: Optional[int] = None
    end_time: Optional[int] = None


def create_initial_state(input: str, max_iterations: int = 10) -> WorkflowState:
    return WorkflowState(input=input, max_iterations=max_iterations)


# A node returns the fields it changed; the executor merges them into the state.
StateUpdate = Dict[str, Any]
NodeFn = Callable[[WorkflowState], Awaitable[StateUpdate]]
Router = Callable[[WorkflowState], str]
EdgeCondition = Callable[[WorkflowState], bool]


@dataclass(slots=True)
class WorkflowNode:
    id: str
    type: AgentRole
    name: str
    execute: NodeFn
    system_prompt: str = ""
    tools: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class WorkflowEdge:
    from_: str
    to: Union[str, Router]
    condition: Optional[EdgeCondition] = None


@dataclass(frozen=True)
class WorkflowGraph:
    id: str
    name: str
    description: str
    nodes: Dict[str, WorkflowNode]
    edges: List[WorkflowEdge]
    entry_point: str
    end_nodes: List[str]


@dataclass(slots=True)
class WorkflowEvent:
    type: str  # node_start | node_end | message | task_update | status_change | error
    node_id: Optional[str] = None
    message: Optional[AgentMessage] = None
    task: Optional[WorkflowTask] = None
    status: Optional[WorkflowStatus] = None
    error: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)


def format_results(results: Dict[str, str]) -> str:
    return "\n\n".join(f"[{agent}]: {result}" for agent, result in results.items())
