"""Exception types raised by the agent core."""
from __future__ import annotations


class PetAgentError(Exception):
    """Base class for errors raised by petagent."""


class AgentTimeoutError(PetAgentError):
    """An agent execution lost the race against its ``timeout_ms``."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"执行超时 ({timeout_ms}ms)")
        self.timeout_ms = timeout_ms


class GraphConfigurationError(PetAgentError):
    """A workflow graph is malformed (missing entry point, end node or node)."""


class OperationCancelledError(PetAgentError):
    """A cancellation token fired while an operation was in flight."""
