"""Supervisor node: decomposes the request and routes between workers."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from petagent.services.chat_model import ChatModel
from petagent.workflows.messaging import create_message
from petagent.workflows.models import (
    AgentRole,
    StateUpdate,
    WorkflowNode,
    WorkflowState,
    WorkflowTask,
    format_results,
)

logger = logging.getLogger(__name__)

SUPERVISOR_ID = "supervisor"
END_NODE_ID = "end"
DEFAULT_WORKER = "researcher"

SUPERVISOR_SYSTEM_PROMPT = """You are a task supervisor responsible for:
1. Analyzing user requests and breaking them down into subtasks
2. Deciding which specialized agent should handle each task
3. Reviewing results and making decisions about next steps

Available agents:
- researcher: Searches for information, analyzes data, fact-checks
- writer: Creates content, writes summaries, formats text
- executor: Runs tools, executes commands, performs actions

Your responses should be in JSON format:
{
  "analysis": "Brief analysis of the request",
  "tasks": [
    {
      "description": "Task description",
      "assignTo": "researcher|writer|executor",
      "priority": 1
    }
  ],
  "nextAgent": "researcher|writer|executor|done",
  "reasoning": "Why this agent should go next"
}

If all tasks are complete, set nextAgent to "done"."""

REVIEW_SYSTEM_PROMPT = """You are reviewing the results from specialized agents.
Based on the original request and the results gathered, decide:
1. If more work is needed (and which agent should do it)
2. If the task is complete (compose final answer)

Respond in JSON:
{
  "isComplete": true|false,
  "nextAgent": "researcher|writer|executor|done",
  "reasoning": "Your reasoning",
  "finalAnswer": "If complete, your final synthesized answer"
}"""


def parse_json_reply(content: str) -> Dict[str, Any]:
    """Parse a model reply that should be a JSON object, tolerating code fences."""
    text = content.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object")
    return parsed


@dataclass
class SupervisorConfig:
    model: ChatModel
    workers: Sequence[str] = ("researcher", "writer", "executor")
    temperature: float = 0.3


def create_supervisor_node(config: SupervisorConfig) -> WorkflowNode:
    workers = list(config.workers)
    fallback = DEFAULT_WORKER if DEFAULT_WORKER in workers else workers[0]

    def route(agent: Any) -> str:
        if agent == "done":
            return END_NODE_ID
        return agent if agent in workers else fallback

    async def plan(state: WorkflowState) -> StateUpdate:
        reply = await config.model.generate(
            [
                {"role": "system", "content": SUPERVISOR_SYSTEM_PROMPT},
                {"role": "user", "content": state.input},
            ],
            temperature=config.temperature,
        )
        try:
            parsed = parse_json_reply(reply)
            raw_tasks = parsed.get("tasks") or []
            tasks: List[WorkflowTask] = []
            for index, raw in enumerate(raw_tasks):
                tasks.append(
                    WorkflowTask(
                        description=str(raw["description"]),
                        assigned_to=route(raw.get("assignTo")),
                        depends_on=[str(raw_tasks[index - 1]["description"])] if index > 0 else [],
                    )
                )
        except (ValueError, KeyError, TypeError, IndexError) as exc:
            logger.warning(f"Supervisor plan was not valid JSON, falling back to research: {exc}")
            return {
                "tasks": [WorkflowTask(description=state.input, assigned_to=fallback)],
                "current_node": fallback,
            }

        next_node = route(parsed.get("nextAgent") or fallback)
        note = create_message(
            SUPERVISOR_ID,
            next_node,
            parsed.get("analysis") or "Starting task analysis",
            metadata={"tasks": [task.description for task in tasks]},
        )
        return {
            "tasks": tasks,
            "messages": [*state.messages, note],
            "current_node": next_node,
        }

    async def review(state: WorkflowState) -> StateUpdate:
        completed = format_results(state.results)
        reply = await config.model.generate(
            [
                {"role": "system", "content": REVIEW_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Original request: {state.input}\n\nResults so far:\n{completed}",
                },
            ],
            temperature=config.temperature,
        )
        try:
            parsed = parse_json_reply(reply)
        except ValueError as exc:
            logger.warning(f"Supervisor review was not valid JSON, completing: {exc}")
            return {"output": completed or "Task completed.", "current_node": END_NODE_ID}

        if parsed.get("isComplete") or parsed.get("nextAgent") == "done":
            return {
                "output": parsed.get("finalAnswer") or completed or "Task completed.",
                "current_node": END_NODE_ID,
            }

        next_node = route(parsed.get("nextAgent"))
        note = create_message(
            SUPERVISOR_ID,
            next_node,
            parsed.get("reasoning") or "Continuing with next agent",
        )
        return {"messages": [*state.messages, note], "current_node": next_node}

    async def execute(state: WorkflowState) -> StateUpdate:
        if not state.tasks:
            return await plan(state)
        return await review(state)

    return WorkflowNode(
        id=SUPERVISOR_ID,
        type=AgentRole.SUPERVISOR,
        name="Supervisor",
        execute=execute,
        system_prompt=SUPERVISOR_SYSTEM_PROMPT,
    )


def supervisor_router(state: WorkflowState) -> str:
    """Dynamic edge out of the supervisor."""
    if state.iteration >= state.max_iterations - 1:
        return END_NODE_ID
    if state.output:
        return END_NODE_ID
    return state.current_node or SUPERVISOR_ID
