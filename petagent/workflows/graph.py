"""Graph-based workflow executor (state machine over named nodes)."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Union

from petagent.core.cancellation import CancellationToken
from petagent.core.errors import GraphConfigurationError
from petagent.core.models import now_ms
from petagent.workflows.models import (
    EdgeCondition,
    Router,
    WorkflowEdge,
    WorkflowEvent,
    WorkflowGraph,
    WorkflowNode,
    WorkflowState,
    WorkflowStatus,
    create_initial_state,
)

logger = logging.getLogger(__name__)

PAUSE_POLL_SECONDS = 0.1

EventSink = Callable[[WorkflowEvent], None]


class WorkflowGraphExecutor:
    """Run a workflow graph; owns the canonical state for the duration of a run."""

    def __init__(self, graph: WorkflowGraph) -> None:
        self.graph = graph
        self._state = create_initial_state("")
        self._on_event: Optional[EventSink] = None
        self._paused = False
        self._cancelled = False

    def _emit(self, event_type: str, **fields) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(WorkflowEvent(type=event_type, **fields))
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Workflow event handler failed: {exc}")

    def _next_node(self, node_id: str) -> Optional[str]:
        for edge in self.graph.edges:
            if edge.from_ != node_id:
                continue
            if edge.condition is not None and not edge.condition(self._state):
                continue
            return edge.to(self._state) if callable(edge.to) else edge.to
        return None

    def _should_stop(self, signal: Optional[CancellationToken]) -> bool:
        return self._cancelled or (signal is not None and signal.cancelled)

    def _mark_cancelled(self) -> None:
        self._state.status = WorkflowStatus.CANCELLED
        self._emit("status_change", status=WorkflowStatus.CANCELLED)

    async def run(
        self,
        input: str,
        *,
        max_iterations: int = 10,
        on_event: Optional[EventSink] = None,
        signal: Optional[CancellationToken] = None,
    ) -> WorkflowState:
        """Execute the graph from its entry point and return the final state.

        Node failures end the run in ``error`` status. A node id that the
        graph does not contain raises :class:`GraphConfigurationError`.
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self._on_event = on_event
        self._paused = False
        self._cancelled = False

        self._state = create_initial_state(input, max_iterations)
        self._state.status = WorkflowStatus.RUNNING
        self._state.start_time = now_ms()
        self._state.current_node = self.graph.entry_point
        self._emit("status_change", status=WorkflowStatus.RUNNING)

        while self._state.current_node and self._state.iteration < self._state.max_iterations:
            if self._should_stop(signal):
                self._mark_cancelled()
                break

            while self._paused:
                await asyncio.sleep(PAUSE_POLL_SECONDS)
                if self._should_stop(signal):
                    self._mark_cancelled()
                    self._state.end_time = now_ms()
                    return self._state

            node = self.graph.nodes.get(self._state.current_node)
            if node is None:
                message = f"Node not found: {self._state.current_node}"
                self._state.status = WorkflowStatus.ERROR
                self._state.error = message
                self._state.end_time = now_ms()
                self._emit("status_change", status=WorkflowStatus.ERROR)
                raise GraphConfigurationError(message)

            self._emit("node_start", node_id=node.id)
            try:
                updates = await node.execute(self._state)
                self._state = replace(self._state, **(updates or {}))
            except Exception as exc:  # noqa: BLE001
                message = str(exc) or "Unknown error"
                logger.error(f"Workflow node {node.id} failed: {message}")
                self._emit("error", node_id=node.id, error=message)
                self._state.status = WorkflowStatus.ERROR
                self._state.error = message
                self._state.end_time = now_ms()
                self._emit("status_change", status=WorkflowStatus.ERROR)
                return self._state
            self._emit("node_end", node_id=node.id)

            if self._should_stop(signal):
                self._state.status = WorkflowStatus.CANCELLED
                break

            if node.id in self.graph.end_nodes:
                self._state.status = WorkflowStatus.COMPLETED
                break

            # Routing follows the node that just ran; nodes may also have
            # written ``current_node`` as a hint for dynamic routers.
            self._state.current_node = self._next_node(node.id)
            self._state.iteration += 1

        if (
            self._state.status is not WorkflowStatus.CANCELLED
            and self._state.iteration >= self._state.max_iterations
        ):
            self._state.status = WorkflowStatus.ERROR
            self._state.error = "Max iterations reached"

        self._state.end_time = now_ms()
        self._emit("status_change", status=self._state.status)
        return self._state

    def pause(self) -> None:
        if self._state.status is WorkflowStatus.RUNNING:
            self._paused = True
            self._state.status = WorkflowStatus.PAUSED
            self._emit("status_change", status=WorkflowStatus.PAUSED)

    def resume(self) -> None:
        if self._state.status is WorkflowStatus.PAUSED:
            self._paused = False
            self._state.status = WorkflowStatus.RUNNING
            self._emit("status_change", status=WorkflowStatus.RUNNING)

    def cancel(self) -> None:
        self._cancelled = True
        self._paused = False
        self._state.status = WorkflowStatus.CANCELLED
        self._emit("status_change", status=WorkflowStatus.CANCELLED)

    def get_state(self) -> WorkflowState:
        return replace(self._state)


class WorkflowGraphBuilder:
    """Fluent builder that validates the graph before freezing it."""

    def __init__(self, graph_id: str, name: str, description: str = "") -> None:
        self._id = graph_id
        self._name = name
        self._description = description
        self._nodes: Dict[str, WorkflowNode] = {}
        self._edges: List[WorkflowEdge] = []
        self._entry_point = ""
        self._end_nodes: List[str] = []

    def add_node(self, node: WorkflowNode) -> WorkflowGraphBuilder:
        self._nodes[node.id] = node
        return self

    def add_edge(
        self,
        from_: str,
        to: Union[str, Router],
        condition: Optional[EdgeCondition] = None,
    ) -> WorkflowGraphBuilder:
        self._edges.append(WorkflowEdge(from_=from_, to=to, condition=condition))
        return self

    def set_entry_point(self, node_id: str) -> WorkflowGraphBuilder:
        self._entry_point = node_id
        return self

    def add_end_node(self, node_id: str) -> WorkflowGraphBuilder:
        if node_id not in self._end_nodes:
            self._end_nodes.append(node_id)
        return self

    def build(self) -> WorkflowGraph:
        if not self._entry_point:
            raise GraphConfigurationError("Entry point not set")
        if not self._end_nodes:
            raise GraphConfigurationError("No end nodes defined")
        if self._entry_point not in self._nodes:
            raise GraphConfigurationError(f"Entry point node not found: {self._entry_point}")
        for edge in self._edges:
            if edge.from_ not in self._nodes:
                raise GraphConfigurationError(f"Edge source node not found: {edge.from_}")
            if isinstance(edge.to, str) and edge.to not in self._nodes:
                raise GraphConfigurationError(f"Edge target node not found: {edge.to}")

        return WorkflowGraph(
            id=self._id,
            name=self._name,
            description=self._description,
            nodes=dict(self._nodes),
            edges=list(self._edges),
            entry_point=self._entry_point,
            end_nodes=list(self._end_nodes),
        )
