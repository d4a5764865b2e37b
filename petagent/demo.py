"""CLI demonstration of dispatcher-managed agents with a scripted model."""
from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, NoReturn, Optional

from petagent.agents.care_agent import ProactiveCareAgent
from petagent.agents.chat_agent import ChatAgent
from petagent.agents.workflow_agent import WorkflowAgent
from petagent.orchestration.dispatcher import AgentDispatcher
from petagent.services.chat_model import ChatMessage, ModelChunk, ToolCall
from petagent.services.confirm import approve_all
from petagent.services.store import InMemoryRowStore
from petagent.workflows.presets import WorkflowConfig
from petagent.workflows.supervisor import REVIEW_SYSTEM_PROMPT, SUPERVISOR_SYSTEM_PROMPT


class ScriptedChatModel:
    """Offline stand-in for an LLM: plans, reviews and calls ``current_time`` once."""

    async def generate(
        self,
        messages: List[ChatMessage],
        *,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        system = messages[0]["content"] if messages else ""
        if system == SUPERVISOR_SYSTEM_PROMPT:
            return json.dumps(
                {
                    "analysis": "Research first, then summarise",
                    "tasks": [
                        {"description": "Collect facts about desktop pets", "assignTo": "researcher"},
                        {"description": "Write a short summary", "assignTo": "writer"},
                    ],
                    "nextAgent": "researcher",
                }
            )
        if system == REVIEW_SYSTEM_PROMPT:
            if "[writer]" in messages[-1]["content"]:
                return '```json\n{"isComplete": true, "finalAnswer": "桌面宠物是一种常驻桌面的陪伴型小程序。"}\n```'
            return '{"isComplete": false, "nextAgent": "writer", "reasoning": "Need a summary"}'
        return "桌面宠物会在桌面上陪伴用户，并提供提醒与聊天。"

    async def stream(
        self,
        messages: List[ChatMessage],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
    ) -> AsyncIterator[ModelChunk]:
        last = messages[-1]
        if last["role"] == "tool":
            now = json.loads(last["content"]).get("data", {}).get("iso", "")
            yield ModelChunk(text=f"现在的时间是 {now}。")
            return
        names = {spec["function"]["name"] for spec in tools or []}
        if "current_time" in names:
            yield ModelChunk(tool_calls=[ToolCall(id="call_0", name="current_time", arguments={})])
            return
        yield ModelChunk(text="好的，我在这里。")


async def main() -> None:
    model = ScriptedChatModel()
    store = InMemoryRowStore()

    dispatcher = AgentDispatcher()
    dispatcher.register_agent(ChatAgent(model, confirm=approve_all, audit_store=store))
    dispatcher.register_agent(ProactiveCareAgent())
    dispatcher.register_agent(
        WorkflowAgent(WorkflowConfig(model=model, confirm=approve_all, audit_store=store))
    )
    await dispatcher.start()

    for message in ("现在几点了？", "最近天天加班，压力好大", "帮我调研一下桌面宠物"):
        result = await dispatcher.dispatch_user_message(message)
        if result is None:
            print(f"{message!r} -> no agent matched")
            continue
        print(f"{message!r} -> success={result.success} message={result.message!r}")

    for record in dispatcher.get_execution_history():
        print(f"  {record.agent_name}: {record.duration}ms success={record.success}")

    audit = await store.list("agent_tool_audit")
    print(f"Audited tool calls: {[row['tool_name'] for row in audit]}")

    stats = dispatcher.get_stats()
    print(f"Executions: {stats.total_executions}, success rate {stats.success_rate:.0%}")

    await dispatcher.stop()
    print("Dispatcher stopped")


def run() -> NoReturn:
    asyncio.run(main())


if __name__ == "__main__":
    run()
