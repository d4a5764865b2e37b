"""Model client contract consumed by runtimes and workflow nodes."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from petagent.services.llm_pool import LLMPool

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, Any]


@dataclass(slots=True)
class ToolCall:
    """A tool invocation requested by the model within one step."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ModelChunk:
    """A streamed fragment: text delta and/or the step's completed tool calls."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


class ChatModel(Protocol):
    async def generate(
        self,
        messages: List[ChatMessage],
        *,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        """Return the complete text response for ``messages``."""

    def stream(
        self,
        messages: List[ChatMessage],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
    ) -> AsyncIterator[ModelChunk]:
        """Stream one model step: text deltas first, tool calls last."""


def parse_tool_arguments(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model produced non-JSON tool arguments: {raw[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


class OpenAIChatModel:
    """ChatModel backed by an OpenAI-compatible chat-completions endpoint."""

    def __init__(self, pool: LLMPool, model_name: str) -> None:
        self._pool = pool
        self.model_name = model_name

    async def generate(
        self,
        messages: List[ChatMessage],
        *,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        async with self._pool.acquire(self.model_name) as client:
            response = await client.chat.completions.create(
                model=self._pool.model_id(self.model_name),
                messages=messages,
                temperature=temperature,
                max_tokens=max_output_tokens,
            )
        return response.choices[0].message.content or ""

    async def stream(
        self,
        messages: List[ChatMessage],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
    ) -> AsyncIterator[ModelChunk]:
        request: Dict[str, Any] = {
            "model": self._pool.model_id(self.model_name),
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        if max_output_tokens:
            request["max_tokens"] = max_output_tokens
        if tools:
            request["tools"] = tools

        # index -> {"id", "name", "arguments"} accumulated across deltas
        pending: Dict[int, Dict[str, str]] = {}

        async with self._pool.acquire(self.model_name) as client:
            response = await client.chat.completions.create(**request)
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield ModelChunk(text=delta.content)
                for call in delta.tool_calls or []:
                    slot = pending.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        slot["id"] = call.id
                    if call.function and call.function.name:
                        slot["name"] += call.function.name
                    if call.function and call.function.arguments:
                        slot["arguments"] += call.function.arguments

        if pending:
            yield ModelChunk(
                tool_calls=[
                    ToolCall(
                        id=slot["id"] or f"call_{index}",
                        name=slot["name"],
                        arguments=parse_tool_arguments(slot["arguments"]),
                    )
                    for index, slot in sorted(pending.items())
                ]
            )
