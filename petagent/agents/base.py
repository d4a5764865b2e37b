"""Base agent definition used by the dispatcher."""
from __future__ import annotations

import abc
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Deque, Dict, List, Optional, Sequence

from petagent.core.errors import AgentTimeoutError
from petagent.core.models import (
    AgentConfig,
    AgentContext,
    AgentMetadata,
    AgentResult,
    AgentTrigger,
    now_ms,
)
from petagent.tools.base import Tool
from petagent.tools.builtin import create_builtin_tools

MAX_LOGS = 100
DISABLED_MESSAGE = "智能体已禁用"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(slots=True)
class AgentLogEntry:
    level: str
    message: str
    timestamp: int = field(default_factory=now_ms)
    data: Any = None


class BaseAgent(abc.ABC):
    """Abstract agent encapsulating lifecycle hooks, tools and triggers."""

    def __init__(
        self,
        metadata: AgentMetadata,
        config: Optional[AgentConfig] = None,
        triggers: Sequence[AgentTrigger] = (),
    ) -> None:
        self.metadata = metadata
        self.config = config or AgentConfig()
        self.triggers: List[AgentTrigger] = list(triggers)
        self._tools: Dict[str, Tool] = {}
        self._logs: Deque[AgentLogEntry] = deque(maxlen=MAX_LOGS)
        self._initialized = False
        self._logger = logging.getLogger(f"petagent.agents.{metadata.id}")

    @property
    def agent_id(self) -> str:
        return self.metadata.id

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Register built-in tools and run the ``on_initialize`` hook once."""
        if self._initialized:
            self.log("warn", "Agent already initialized")
            return

        for tool in self.builtin_tools():
            self.register_tool(tool)
        await self.on_initialize()
        self._initialized = True
        self.log("info", f"Agent {self.metadata.name} initialized")

    async def execute(self, context: AgentContext) -> AgentResult:
        """Run the agent; never raises, failures come back as results."""
        started = now_ms()
        try:
            if not self._initialized:
                await self.initialize()

            if not self.config.enabled:
                result = AgentResult(success=False, message=DISABLED_MESSAGE)
            else:
                result = await self.execute_with_timeout(
                    self.on_execute(context), self.config.timeout_ms
                )
        except Exception as exc:  # noqa: BLE001
            self.log("error", f"Execution failed: {exc}")
            result = AgentResult(success=False, error=str(exc) or exc.__class__.__name__)

        return replace(result, duration=now_ms() - started)

    async def cleanup(self) -> None:
        await self.on_cleanup()
        self._tools.clear()
        self._logs.clear()
        self._initialized = False

    async def execute_with_timeout(self, operation: Awaitable[AgentResult], timeout_ms: int) -> AgentResult:
        try:
            return await asyncio.wait_for(operation, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise AgentTimeoutError(timeout_ms) from exc

    async def should_trigger(self, context: AgentContext) -> bool:
        """Business-level veto applied after trigger matching."""
        return True

    @abc.abstractmethod
    async def on_execute(self, context: AgentContext) -> AgentResult:
        """Agent behaviour for one execution."""

    async def on_initialize(self) -> None:
        return None

    async def on_cleanup(self) -> None:
        return None

    def builtin_tools(self) -> List[Tool]:
        return create_builtin_tools()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def register_tool(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def unregister_tool(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def get_allowed_tools(self) -> List[Tool]:
        if not self.config.tools:
            return self.get_tools()
        return [tool for tool in self._tools.values() if tool.name in self.config.tools]

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            return {"success": False, "error": f"工具不存在: {name}"}
        if self.config.tools and name not in self.config.tools:
            return {"success": False, "error": f"智能体无权调用工具: {name}"}

        try:
            result = await tool.execute(args)
        except Exception as exc:  # noqa: BLE001
            self.log("error", f"Tool {name} failed: {exc}")
            return {"success": False, "error": str(exc) or "Tool execution failed"}
        if isinstance(result, dict) and "success" in result:
            return result
        return {"success": True, "data": result}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_config(self, **changes: Any) -> None:
        self.config = replace(self.config, **changes)

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self.config.settings.get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        self.config.settings[key] = value

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def add_trigger(self, trigger: AgentTrigger) -> None:
        self.triggers = [t for t in self.triggers if t.id != trigger.id] + [trigger]

    def remove_trigger(self, trigger_id: str) -> bool:
        before = len(self.triggers)
        self.triggers = [t for t in self.triggers if t.id != trigger_id]
        return len(self.triggers) != before

    def set_trigger_enabled(self, trigger_id: str, enabled: bool) -> bool:
        for trigger in self.triggers:
            if trigger.id == trigger_id:
                trigger.enabled = enabled
                return True
        return False

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def log(self, level: str, message: str, data: Any = None) -> None:
        self._logs.append(AgentLogEntry(level=level, message=message, data=data))
        self._logger.log(_LEVELS.get(level, logging.INFO), message)

    def get_logs(self) -> List[AgentLogEntry]:
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs.clear()

    def create_result(
        self,
        success: bool,
        message: Optional[str] = None,
        error: Optional[str] = None,
        **options: Any,
    ) -> AgentResult:
        return AgentResult(success=success, message=message, error=error, **options)
