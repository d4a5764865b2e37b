"""Tool-calling loop driving one model conversation with tool access."""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from petagent.core.cancellation import CancellationToken
from petagent.core.errors import OperationCancelledError
from petagent.core.models import now_ms
from petagent.services.chat_model import ChatMessage, ChatModel, ToolCall
from petagent.services.confirm import ConfirmOptions, Confirmer, decline_all
from petagent.services.store import RowStore
from petagent.tools.base import Tool, ToolExecutionContext
from petagent.tools.builtin import create_builtin_tools

logger = logging.getLogger(__name__)

DECLINED_ERROR = "用户拒绝执行该工具"
AUDIT_TABLE = "agent_tool_audit"

CONFIRM_REDACT_KEYS = frozenset({"apiKey", "api_key", "token", "password", "secret"})
AUDIT_REDACT_KEYS = CONFIRM_REDACT_KEYS | {"authorization"}
REDACTED = "[已脱敏]"

# Gated even when the tool itself does not ask for confirmation.
HIGH_RISK_TOOLS = frozenset({"file_write", "open_url", "open_app", "clipboard_write"})


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class StatusEvent:
    status: str  # thinking | executing | done | error
    message: Optional[str] = None
    type: str = "status"


@dataclass(slots=True)
class TextEvent:
    content: str
    type: str = "text"


@dataclass(slots=True)
class ToolCallEvent:
    tool_name: str
    tool_call_id: str
    arguments: Dict[str, Any]
    type: str = "tool_call"


@dataclass(slots=True)
class ToolResultEvent:
    tool_call_id: str
    result: Any
    error: Optional[str] = None
    type: str = "tool_result"


AgentEvent = Union[StatusEvent, TextEvent, ToolCallEvent, ToolResultEvent]


@dataclass(slots=True)
class ToolCallRecord:
    name: str
    args: Dict[str, Any]
    result: Any


@dataclass(slots=True)
class AgentRunResult:
    content: str
    events: List[AgentEvent] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class AgentRuntimeConfig:
    model: ChatModel
    system_prompt: Optional[str] = None
    tools: Sequence[Tool] = ()
    max_steps: int = 5
    on_event: Optional[Callable[[AgentEvent], None]] = None
    source: str = "chat"
    # Intersected with the per-run enabled_tools.
    allowed_tools: Optional[Sequence[str]] = None
    confirm: Optional[Confirmer] = None
    audit_store: Optional[RowStore] = None
    temperature: float = 0.7
    max_output_tokens: int = 2048


# ---------------------------------------------------------------------------
# Argument previews
# ---------------------------------------------------------------------------


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}…(共{len(text)}字)"


def preview_value(value: Any) -> Any:
    """Redacted, truncated copy of tool arguments for the confirmation dialog."""
    if isinstance(value, str):
        return _truncate(value, 160)
    if isinstance(value, (list, tuple)):
        return [preview_value(item) for item in list(value)[:10]]
    if isinstance(value, dict):
        return {
            key: REDACTED if key in CONFIRM_REDACT_KEYS else preview_value(item)
            for key, item in list(value.items())[:20]
        }
    return value


def format_args_for_confirmation(args: Dict[str, Any]) -> str:
    try:
        return json.dumps(preview_value(args), ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return "[参数无法序列化]"


def sanitize_for_audit(value: Any) -> Any:
    if isinstance(value, str):
        return _truncate(value, 500)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        return [sanitize_for_audit(item) for item in list(value)[:50]]
    if isinstance(value, dict):
        return {
            key: REDACTED if key in AUDIT_REDACT_KEYS else sanitize_for_audit(item)
            for key, item in list(value.items())[:50]
        }
    return str(value)


def json_for_audit(value: Any) -> Optional[str]:
    try:
        return json.dumps(sanitize_for_audit(value), ensure_ascii=False)
    except (TypeError, ValueError):
        return None


def classify_tool_result(result: Any) -> Tuple[str, Optional[str]]:
    """Map a tool result onto the audit status ``succeeded|failed|rejected``."""
    if isinstance(result, dict):
        error = result.get("error") if isinstance(result.get("error"), str) else None
        if result.get("success") is False:
            if error and "用户拒绝" in error:
                return "rejected", error
            return "failed", error
        if error:
            return "failed", error
    return "succeeded", None


_WIRE_NAME = re.compile(r"[^a-zA-Z0-9_-]")


def wire_name(name: str) -> str:
    """Tool name as sent to the model; MCP names contain ``:``."""
    return _WIRE_NAME.sub("_", name.replace(":", "__"))


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


class AgentRuntime:
    """Drives model ⇄ tool round trips for a single conversation."""

    def __init__(self, config: AgentRuntimeConfig) -> None:
        self.config = config
        self._tools: Dict[str, Tool] = {tool.name: tool for tool in create_builtin_tools()}
        for tool in config.tools:
            self._tools[tool.name] = tool
        self._cancel: Optional[CancellationToken] = None

    def get_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def add_tool(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def remove_tool(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def abort(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel("aborted")

    def is_running(self) -> bool:
        return self._cancel is not None

    def _select_tools(self, enabled_tools: Optional[Sequence[str]]) -> List[Tool]:
        allowed = set(self.config.allowed_tools) if self.config.allowed_tools is not None else None
        enabled = set(enabled_tools) if enabled_tools is not None else None
        return [
            tool
            for tool in self._tools.values()
            if (allowed is None or tool.name in allowed) and (enabled is None or tool.name in enabled)
        ]

    async def run(
        self,
        messages: List[ChatMessage],
        enabled_tools: Optional[Sequence[str]] = None,
    ) -> AgentRunResult:
        """Run the conversation until the model stops calling tools or ``max_steps``."""
        run_id = str(uuid.uuid4())
        tools = {wire_name(tool.name): tool for tool in self._select_tools(enabled_tools)}
        tool_specs = [tool.to_openai(name) for name, tool in tools.items()]

        conversation: List[ChatMessage] = []
        if self.config.system_prompt:
            conversation.append({"role": "system", "content": self.config.system_prompt})
        conversation.extend(messages)

        result = AgentRunResult(content="")
        self._cancel = token = CancellationToken()

        try:
            self._emit(result, StatusEvent("thinking"))

            for step in range(self.config.max_steps):
                text, calls = await token.guard(self._model_step(conversation, tool_specs))
                if text:
                    result.content += text
                    self._emit(result, TextEvent(text))
                if not calls:
                    break

                conversation.append(
                    {
                        "role": "assistant",
                        "content": text or None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                            }
                            for call in calls
                        ],
                    }
                )
                for call in calls:
                    tool = tools.get(call.name)
                    self._emit(
                        result,
                        ToolCallEvent(tool.name if tool else call.name, call.id, call.arguments),
                    )
                self._emit(result, StatusEvent("executing", "Executing tools..."))

                for call in calls:
                    tool = tools.get(call.name)
                    tool_result = await self._invoke(run_id, call, tool, token)
                    self._emit(result, ToolResultEvent(call.id, tool_result))
                    result.tool_calls.append(
                        ToolCallRecord(tool.name if tool else call.name, call.arguments, tool_result)
                    )
                    conversation.append(
                        {
                            "role": "tool",
                            "tool_call_id": call.id,
                            "content": json.dumps(tool_result, ensure_ascii=False, default=str),
                        }
                    )
            else:
                logger.info(f"Run {run_id} stopped after reaching max_steps={self.config.max_steps}")

            self._emit(result, StatusEvent("done"))
        except OperationCancelledError:
            logger.info(f"Run {run_id} aborted")
            result.error = "aborted"
            self._emit(result, StatusEvent("error", "aborted"))
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Run {run_id} failed: {exc}")
            result.error = str(exc) or "Unknown error"
            self._emit(result, StatusEvent("error", result.error))
        finally:
            self._cancel = None

        return result

    async def _model_step(
        self,
        conversation: List[ChatMessage],
        tool_specs: List[Dict[str, Any]],
    ) -> Tuple[str, List[ToolCall]]:
        text = ""
        calls: List[ToolCall] = []
        async for chunk in self.config.model.stream(
            conversation,
            tools=tool_specs or None,
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
        ):
            text += chunk.text
            calls.extend(chunk.tool_calls)
        return text, calls

    async def _invoke(
        self,
        run_id: str,
        call: ToolCall,
        tool: Optional[Tool],
        token: CancellationToken,
    ) -> Any:
        if tool is None:
            return {"success": False, "error": f"Unknown tool: {call.name}"}

        started_at = now_ms()
        audit_id = await self._audit_start(run_id, call, tool, started_at)
        outcome: Any = None
        try:
            outcome = await self._execute_gated(tool, call.arguments, token)
        finally:
            if audit_id is not None:
                await self._audit_finish(audit_id, outcome, started_at)
        return outcome

    async def _execute_gated(
        self,
        tool: Tool,
        args: Dict[str, Any],
        token: CancellationToken,
    ) -> Any:
        try:
            tool.validate_args(args)
        except ValueError as exc:
            return {"success": False, "error": str(exc)}

        if tool.requires_confirmation or tool.name in HIGH_RISK_TOOLS:
            allowed = await token.guard(self._confirm(tool, args))
            if not allowed:
                logger.info(f"User declined tool {tool.name}")
                return {"success": False, "error": DECLINED_ERROR}

        try:
            return await token.guard(tool.execute(args, ToolExecutionContext(signal=token)))
        except OperationCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Tool {tool.name} raised: {exc}")
            return {"success": False, "error": str(exc) or "Tool execution failed"}

    async def _confirm(self, tool: Tool, args: Dict[str, Any]) -> bool:
        message = (
            f"工具「{tool.name}」需要你的确认才能执行。\n\n"
            f"说明：{tool.description}\n\n"
            f"参数预览：\n{format_args_for_confirmation(args)}\n\n"
            "是否允许执行？"
        )
        confirm = self.config.confirm or decline_all
        return bool(await confirm(message, ConfirmOptions()))

    async def _audit_start(
        self,
        run_id: str,
        call: ToolCall,
        tool: Tool,
        started_at: int,
    ) -> Optional[str]:
        store = self.config.audit_store
        if store is None:
            return None
        try:
            return await store.insert(
                AUDIT_TABLE,
                {
                    "run_id": run_id,
                    "tool_call_id": call.id,
                    "tool_name": tool.name,
                    "source": self.config.source,
                    "args_json": json_for_audit(call.arguments),
                    "requires_confirmation": tool.requires_confirmation,
                    "status": "running",
                    "started_at": started_at,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Failed to write tool audit row: {exc}")
            return None

    async def _audit_finish(self, audit_id: str, outcome: Any, started_at: int) -> None:
        store = self.config.audit_store
        if store is None:
            return
        completed_at = now_ms()
        if outcome is None:
            status, error = "failed", "aborted"
        else:
            status, error = classify_tool_result(outcome)
        try:
            await store.update(
                AUDIT_TABLE,
                audit_id,
                {
                    "status": status,
                    "result_json": json_for_audit(outcome),
                    "error": error,
                    "completed_at": completed_at,
                    "duration_ms": completed_at - started_at,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Failed to finalise tool audit row: {exc}")

    def _emit(self, result: AgentRunResult, event: AgentEvent) -> None:
        result.events.append(event)
        if self.config.on_event is not None:
            self.config.on_event(event)
