"""Worker nodes: researcher, writer and executor."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

from petagent.agents.tool_runtime import AgentRuntime, AgentRunResult, AgentRuntimeConfig
from petagent.services.chat_model import ChatModel
from petagent.services.confirm import Confirmer
from petagent.services.store import RowStore
from petagent.tools.base import Tool
from petagent.workflows.messaging import create_message, get_messages_for_agent
from petagent.workflows.models import (
    AgentRole,
    NodeStatus,
    StateUpdate,
    WorkflowNode,
    WorkflowState,
    WorkflowTask,
    format_results,
)
from petagent.workflows.supervisor import SUPERVISOR_ID

RESEARCHER_SYSTEM_PROMPT = """You are a research specialist. Your role is to:
1. Search for relevant information
2. Analyze and verify data
3. Summarize findings clearly

Use the tools available to you when needed.
Be thorough but concise. Focus on facts and cite sources when available.

After completing your research, summarize your key findings."""

WRITER_SYSTEM_PROMPT = """You are a professional writer and content specialist. Your role is to:
1. Create well-structured, engaging content
2. Summarize complex information clearly
3. Format text appropriately for the context
4. Edit and improve existing content

When given research results, synthesize them into coherent content.
When asked to write, produce polished, ready-to-use text."""

EXECUTOR_SYSTEM_PROMPT = """You are an execution specialist. Your role is to:
1. Execute tools and commands to accomplish tasks
2. Handle file operations, clipboard, and system interactions
3. Verify execution results
4. Report outcomes clearly

Be careful with file operations and always confirm results.
Report any errors or issues encountered during execution."""

RESEARCHER_TOOLS = ("current_time", "file_read", "file_exists")
EXECUTOR_TOOLS = (
    "clipboard_read",
    "clipboard_write",
    "file_read",
    "file_write",
    "file_exists",
    "open_url",
    "open_app",
)


@dataclass
class WorkerConfig:
    model: ChatModel
    # Extra tools (e.g. MCP-discovered) offered to tool-using workers.
    tools: Sequence[Tool] = ()
    allowed_tools: Optional[Sequence[str]] = None
    confirm: Optional[Confirmer] = None
    audit_store: Optional[RowStore] = None


def _pending(state: WorkflowState, worker: str) -> List[WorkflowTask]:
    return [t for t in state.tasks if t.assigned_to == worker and t.status is NodeStatus.PENDING]


def _complete(state: WorkflowState, worker: str, result: str) -> List[WorkflowTask]:
    return [
        replace(task, status=NodeStatus.COMPLETED, result=result)
        if task.assigned_to == worker and task.status is NodeStatus.PENDING
        else task
        for task in state.tasks
    ]


def _fail(state: WorkflowState, worker: str, error: str) -> List[WorkflowTask]:
    return [
        replace(task, status=NodeStatus.ERROR, error=error)
        if task.assigned_to == worker and task.status is NodeStatus.PENDING
        else task
        for task in state.tasks
    ]


async def _run_with_tools(
    config: WorkerConfig,
    system_prompt: str,
    prompt: str,
    enabled: Sequence[str],
    max_steps: int,
) -> AgentRunResult:
    runtime = AgentRuntime(
        AgentRuntimeConfig(
            model=config.model,
            system_prompt=system_prompt,
            tools=config.tools,
            max_steps=max_steps,
            source="workflow",
            allowed_tools=config.allowed_tools,
            confirm=config.confirm,
            audit_store=config.audit_store,
        )
    )
    return await runtime.run(
        [{"role": "user", "content": prompt}],
        [*enabled, *(tool.name for tool in config.tools)],
    )


def _report(
    state: WorkflowState,
    worker: str,
    content: str,
    tasks: List[WorkflowTask],
    metadata: Optional[Dict[str, Any]] = None,
) -> StateUpdate:
    note = create_message(worker, SUPERVISOR_ID, content, metadata=metadata)
    return {
        "tasks": tasks,
        "results": {**state.results, worker: content},
        "messages": [*state.messages, note],
        "current_node": SUPERVISOR_ID,
    }


def _report_failure(state: WorkflowState, worker: str, error: str) -> StateUpdate:
    note = create_message(worker, SUPERVISOR_ID, f"Error: {error}", metadata={"error": error})
    return {"tasks": _fail(state, worker, error), "messages": [*state.messages, note], "current_node": SUPERVISOR_ID}


def create_researcher_node(config: WorkerConfig) -> WorkflowNode:
    worker = AgentRole.RESEARCHER.value

    async def execute(state: WorkflowState) -> StateUpdate:
        mine = _pending(state, worker)
        if not mine:
            context = [
                {"role": "assistant", "content": f"[Previous context from {m.from_}]: {m.content}"}
                for m in get_messages_for_agent(state, worker)
            ]
            text = await config.model.generate(
                [
                    {"role": "system", "content": RESEARCHER_SYSTEM_PROMPT},
                    {"role": "user", "content": state.input},
                    *context,
                ],
                temperature=0.5,
            )
            return _report(state, worker, text, state.tasks)

        descriptions = "\n".join(task.description for task in mine)
        run = await _run_with_tools(
            config,
            RESEARCHER_SYSTEM_PROMPT,
            f"Research the following:\n{descriptions}",
            RESEARCHER_TOOLS,
            max_steps=3,
        )
        if run.error:
            return _report_failure(state, worker, run.error)
        return _report(
            state,
            worker,
            run.content,
            _complete(state, worker, run.content),
            metadata={"tool_calls": len(run.tool_calls), "tasks": [task.id for task in mine]},
        )

    return WorkflowNode(
        id=worker,
        type=AgentRole.RESEARCHER,
        name="Researcher",
        execute=execute,
        system_prompt=RESEARCHER_SYSTEM_PROMPT,
        tools=list(RESEARCHER_TOOLS),
    )


def create_writer_node(config: WorkerConfig) -> WorkflowNode:
    worker = AgentRole.WRITER.value

    async def execute(state: WorkflowState) -> StateUpdate:
        research = state.results.get("researcher")
        research_context = f"Research findings:\n{research}\n\n" if research else ""
        previous = "\n".join(f"[{m.from_}]: {m.content}" for m in get_messages_for_agent(state, worker))
        mine = _pending(state, worker)
        instructions = (
            "\n\nWriting tasks:\n" + "\n".join(f"- {task.description}" for task in mine) if mine else ""
        )

        text = await config.model.generate(
            [
                {"role": "system", "content": WRITER_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Original request: {state.input}\n\n{research_context}{previous}"
                        f"{instructions}\n\nPlease create the appropriate content."
                    ),
                },
            ],
            temperature=0.7,
        )
        return _report(
            state,
            worker,
            text,
            _complete(state, worker, text),
            metadata={"tasks": [task.id for task in mine]},
        )

    return WorkflowNode(
        id=worker,
        type=AgentRole.WRITER,
        name="Writer",
        execute=execute,
        system_prompt=WRITER_SYSTEM_PROMPT,
    )


def create_executor_node(config: WorkerConfig) -> WorkflowNode:
    worker = AgentRole.EXECUTOR.value

    async def execute(state: WorkflowState) -> StateUpdate:
        mine = _pending(state, worker)
        if not mine:
            note = create_message(worker, SUPERVISOR_ID, "No execution tasks pending.")
            return {"messages": [*state.messages, note], "current_node": SUPERVISOR_ID}

        descriptions = "\n".join(task.description for task in mine)
        run = await _run_with_tools(
            config,
            EXECUTOR_SYSTEM_PROMPT,
            f"Context:\n{format_results(state.results)}\n\nTasks to execute:\n{descriptions}",
            EXECUTOR_TOOLS,
            max_steps=5,
        )
        if run.error:
            return _report_failure(state, worker, run.error)
        tool_calls = [
            {
                "name": call.name,
                "success": not (isinstance(call.result, dict) and call.result.get("success") is False),
            }
            for call in run.tool_calls
        ]
        return _report(
            state,
            worker,
            run.content,
            _complete(state, worker, run.content),
            metadata={"tool_calls": tool_calls, "tasks": [task.id for task in mine]},
        )

    return WorkflowNode(
        id=worker,
        type=AgentRole.EXECUTOR,
        name="Executor",
        execute=execute,
        system_prompt=EXECUTOR_SYSTEM_PROMPT,
        tools=list(EXECUTOR_TOOLS),
    )
