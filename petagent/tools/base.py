"""Uniform tool contract shared by built-in and MCP-discovered tools."""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from petagent.core.cancellation import CancellationToken
from petagent.core.errors import OperationCancelledError
from petagent.core.models import ToolResult

logger = logging.getLogger(__name__)


class ParameterKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


_PYTHON_TYPES: Dict[ParameterKind, Any] = {
    ParameterKind.STRING: str,
    ParameterKind.NUMBER: float,
    ParameterKind.INTEGER: int,
    ParameterKind.BOOLEAN: bool,
    ParameterKind.OBJECT: Dict[str, Any],
    ParameterKind.ARRAY: List[Any],
    ParameterKind.ANY: Any,
}


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """Description of a single tool argument."""

    kind: ParameterKind
    description: str = ""
    enum: Optional[Tuple[Any, ...]] = None
    required: bool = False
    default: Any = None

    @classmethod
    def from_json_schema(cls, prop: Dict[str, Any], required: bool) -> ParameterSpec:
        """Build a spec from a JSON-schema property (as served by MCP servers)."""
        raw_type = prop.get("type")
        if isinstance(raw_type, list):
            raw_type = next((t for t in raw_type if t != "null"), None)
        try:
            kind = ParameterKind(raw_type) if raw_type else ParameterKind.ANY
        except ValueError:
            kind = ParameterKind.ANY
        enum = prop.get("enum")
        return cls(
            kind=kind,
            description=prop.get("description", ""),
            enum=tuple(enum) if enum else None,
            required=required,
            default=prop.get("default"),
        )

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"description": self.description}
        if self.kind is not ParameterKind.ANY:
            schema["type"] = self.kind.value
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.default is not None:
            schema["default"] = self.default
        return schema


def build_args_model(name: str, parameters: Dict[str, ParameterSpec]) -> Type[BaseModel]:
    """Create the pydantic model that validates and deserialises tool arguments."""
    fields: Dict[str, Any] = {}
    for key, spec in parameters.items():
        annotation = _PYTHON_TYPES[spec.kind]
        if spec.enum:
            annotation = Literal[spec.enum]  # type: ignore[valid-type]
        if spec.required:
            fields[key] = (annotation, ...)
        else:
            fields[key] = (Optional[annotation], spec.default)
    model_name = "".join(part.capitalize() for part in name.replace(":", "_").split("_")) + "Args"
    return create_model(model_name, __config__=ConfigDict(extra="ignore"), **fields)


@dataclass(slots=True)
class ToolExecutionContext:
    signal: Optional[CancellationToken] = None
    on_progress: Optional[Callable[[str], None]] = None


ToolExecuteFn = Callable[[Dict[str, Any], ToolExecutionContext], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    """Named, schema-described capability a model can invoke."""

    name: str
    description: str
    parameters: Dict[str, ParameterSpec]
    execute_fn: ToolExecuteFn
    requires_confirmation: bool = False
    args_model: Type[BaseModel] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "args_model", build_args_model(self.name, self.parameters))

    @property
    def required(self) -> List[str]:
        return [key for key, spec in self.parameters.items() if spec.required]

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {key: spec.json_schema() for key, spec in self.parameters.items()},
        }
        if self.required:
            schema["required"] = self.required
        return schema

    def validate_args(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Return validated arguments; raises ``ValueError`` with a readable message."""
        for key in self.required:
            if args.get(key) is None:
                raise ValueError(f"Missing required parameter: {key}")
        try:
            model = self.args_model.model_validate(args)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise ValueError(f"Invalid arguments for {self.name}: {problems}") from exc
        return model.model_dump()

    async def execute(
        self,
        args: Dict[str, Any],
        context: Optional[ToolExecutionContext] = None,
    ) -> Any:
        return await self.execute_fn(args, context or ToolExecutionContext())

    def to_openai(self, wire_name: Optional[str] = None) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": wire_name or self.name,
                "description": self.description,
                "parameters": self.json_schema(),
            },
        }

    def renamed(self, name: str) -> Tool:
        return Tool(
            name=name,
            description=self.description,
            parameters=self.parameters,
            execute_fn=self.execute_fn,
            requires_confirmation=self.requires_confirmation,
        )


def define_tool(
    name: str,
    description: str,
    parameters: Dict[str, ParameterSpec],
    execute: Callable[..., Any],
    *,
    requires_confirmation: bool = False,
) -> Tool:
    """Create a tool whose handler receives validated keyword arguments.

    The handler may be sync or async and may accept a ``context`` keyword to
    receive the :class:`ToolExecutionContext`. Its return value is wrapped in
    a successful :class:`ToolResult`; exceptions become failed results.
    """
    wants_context = "context" in inspect.signature(execute).parameters
    tool: Tool

    async def run(args: Dict[str, Any], context: ToolExecutionContext) -> Dict[str, Any]:
        try:
            validated = tool.validate_args(args)
            kwargs = dict(validated)
            if wants_context:
                kwargs["context"] = context
            result = execute(**kwargs)
            if inspect.isawaitable(result):
                result = await result
            return ToolResult.ok(result).to_dict()
        except OperationCancelledError:
            return ToolResult.fail("Operation cancelled by user").to_dict()
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"Tool {name} failed: {exc}")
            return ToolResult.fail(str(exc) or "Tool execution failed").to_dict()

    tool = Tool(
        name=name,
        description=description,
        parameters=parameters,
        execute_fn=run,
        requires_confirmation=requires_confirmation,
    )
    return tool


def tools_by_name(tools: Sequence[Tool]) -> Dict[str, Tool]:
    return {tool.name: tool for tool in tools}
