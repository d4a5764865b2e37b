"""Ready-made supervisor/worker workflows."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from petagent.core.cancellation import CancellationToken
from petagent.services.chat_model import ChatModel
from petagent.services.confirm import Confirmer
from petagent.services.store import RowStore
from petagent.tools.base import Tool
from petagent.workflows.graph import EventSink, WorkflowGraphBuilder, WorkflowGraphExecutor
from petagent.workflows.models import (
    AgentRole,
    StateUpdate,
    WorkflowGraph,
    WorkflowNode,
    WorkflowState,
)
from petagent.workflows.supervisor import (
    END_NODE_ID,
    SupervisorConfig,
    create_supervisor_node,
    supervisor_router,
)
from petagent.workflows.workers import (
    WorkerConfig,
    create_executor_node,
    create_researcher_node,
    create_writer_node,
)


@dataclass
class WorkflowConfig:
    model: ChatModel
    max_iterations: int = 10
    tools: Sequence[Tool] = ()
    allowed_tools: Optional[Sequence[str]] = None
    confirm: Optional[Confirmer] = None
    audit_store: Optional[RowStore] = None

    def worker_config(self) -> WorkerConfig:
        return WorkerConfig(
            model=self.model,
            tools=self.tools,
            allowed_tools=self.allowed_tools,
            confirm=self.confirm,
            audit_store=self.audit_store,
        )


def create_end_node(preference: Sequence[str], fallback: str) -> WorkflowNode:
    """End node that fills ``output`` from the first available worker result."""

    async def execute(state: WorkflowState) -> StateUpdate:
        if state.output:
            return {}
        output = next((state.results[w] for w in preference if state.results.get(w)), fallback)
        return {"output": output}

    return WorkflowNode(id=END_NODE_ID, type=AgentRole.CUSTOM, name="End", execute=execute)


def create_research_workflow(config: WorkflowConfig) -> WorkflowGraph:
    workers = ("researcher", "writer")
    worker_config = config.worker_config()
    return (
        WorkflowGraphBuilder(
            "research",
            "Deep Research",
            "Multi-agent workflow for comprehensive research and report generation",
        )
        .add_node(create_supervisor_node(SupervisorConfig(model=config.model, workers=workers)))
        .add_node(create_researcher_node(worker_config))
        .add_node(create_writer_node(worker_config))
        .add_node(create_end_node(("writer", "researcher"), "Research completed."))
        .add_edge("supervisor", supervisor_router)
        .add_edge("researcher", "supervisor")
        .add_edge("writer", "supervisor")
        .set_entry_point("supervisor")
        .add_end_node(END_NODE_ID)
        .build()
    )


def create_content_workflow(config: WorkflowConfig) -> WorkflowGraph:
    workers = ("researcher", "writer", "executor")
    worker_config = config.worker_config()
    return (
        WorkflowGraphBuilder(
            "content",
            "Content Creation",
            "Multi-agent workflow for researching, writing and publishing content",
        )
        .add_node(create_supervisor_node(SupervisorConfig(model=config.model, workers=workers)))
        .add_node(create_researcher_node(worker_config))
        .add_node(create_writer_node(worker_config))
        .add_node(create_executor_node(worker_config))
        .add_node(create_end_node(("writer", "executor", "researcher"), "Content creation completed."))
        .add_edge("supervisor", supervisor_router)
        .add_edge("researcher", "supervisor")
        .add_edge("writer", "supervisor")
        .add_edge("executor", "supervisor")
        .set_entry_point("supervisor")
        .add_end_node(END_NODE_ID)
        .build()
    )


PRESETS: Dict[str, Callable[[WorkflowConfig], WorkflowGraph]] = {
    "research": create_research_workflow,
    "content": create_content_workflow,
}


async def run_workflow(
    preset: str,
    input: str,
    config: WorkflowConfig,
    *,
    on_event: Optional[EventSink] = None,
    signal: Optional[CancellationToken] = None,
) -> WorkflowState:
    if preset not in PRESETS:
        raise KeyError(f"Unknown workflow preset '{preset}'")
    executor = WorkflowGraphExecutor(PRESETS[preset](config))
    return await executor.run(
        input,
        max_iterations=config.max_iterations,
        on_event=on_event,
        signal=signal,
    )
