"""LLM-powered chat agent that answers user messages with tool access."""
from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Deque, Optional, Sequence

from petagent.agents.base import BaseAgent
from petagent.agents.tool_runtime import AgentRuntime, AgentRuntimeConfig
from petagent.core.models import (
    AgentConfig,
    AgentContext,
    AgentMetadata,
    AgentPriority,
    AgentResult,
    AgentTrigger,
    TriggerType,
    UserMessageTriggerConfig,
)

if TYPE_CHECKING:
    from petagent.services.chat_model import ChatMessage, ChatModel
    from petagent.services.confirm import Confirmer
    from petagent.services.store import RowStore
    from petagent.tools.base import Tool

DEFAULT_SYSTEM_PROMPT = (
    "你是一只陪伴用户的桌面宠物助手。回答简洁、温暖，需要时可以调用工具完成任务。"
)
HISTORY_LIMIT = 20

METADATA = AgentMetadata(
    id="agent-chat",
    name="对话智能体",
    description="默认对话处理，可调用工具完成用户请求",
    icon="💬",
    category="chat",
    priority=AgentPriority.NORMAL,
    is_system=True,
)


class ChatAgent(BaseAgent):
    """Default ``user_message`` handler driving an AgentRuntime."""

    def __init__(
        self,
        model: ChatModel,
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        extra_tools: Sequence[Tool] = (),
        confirm: Optional[Confirmer] = None,
        audit_store: Optional[RowStore] = None,
        config: Optional[AgentConfig] = None,
    ) -> None:
        super().__init__(
            METADATA,
            config or AgentConfig(timeout_ms=60000),
            [
                AgentTrigger(
                    id="trigger-chat-default",
                    type=TriggerType.USER_MESSAGE,
                    config=UserMessageTriggerConfig(is_default=True),
                    description="未匹配其他智能体时的默认对话",
                )
            ],
        )
        self._model = model
        self._system_prompt = system_prompt
        self._extra_tools = list(extra_tools)
        self._confirm = confirm
        self._audit_store = audit_store
        self._history: Deque[ChatMessage] = deque(maxlen=HISTORY_LIMIT)

    def builtin_tools(self):
        return [*super().builtin_tools(), *self._extra_tools]

    async def on_execute(self, context: AgentContext) -> AgentResult:
        if not context.user_message:
            return self.create_result(False, error="No user message to answer")

        runtime = AgentRuntime(
            AgentRuntimeConfig(
                model=self._model,
                system_prompt=self._system_prompt,
                tools=self.get_tools(),
                max_steps=self.config.max_steps,
                source="chat",
                allowed_tools=self.config.tools or None,
                confirm=self._confirm,
                audit_store=self._audit_store,
            )
        )
        user_turn = {"role": "user", "content": context.user_message}
        run = await runtime.run([*self._history, user_turn])

        if run.error:
            return self.create_result(False, error=run.error)

        self._history.append(user_turn)
        if run.content:
            self._history.append({"role": "assistant", "content": run.content})

        return self.create_result(
            True,
            run.content,
            should_speak=True,
            data={
                "tool_calls": [
                    {"name": call.name, "args": call.args, "result": call.result} for call in run.tool_calls
                ]
            },
        )

    async def on_cleanup(self) -> None:
        self._history.clear()
