"""Core data models shared across dispatcher, triggers and agents."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(prefix: str = "") -> str:
    suffix = uuid.uuid4().hex[:9]
    return f"{prefix}{now_ms()}_{suffix}" if prefix else f"{now_ms()}-{suffix}"


class AgentSystemStatus(str, Enum):
    """Status shared by the dispatcher and each registered agent."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


class TriggerType(str, Enum):
    USER_MESSAGE = "user_message"
    SCHEDULE = "schedule"
    EVENT = "event"
    CONDITION = "condition"


class AgentPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


# Lower index is served first.
PRIORITY_ORDER: Dict[AgentPriority, int] = {
    AgentPriority.CRITICAL: 0,
    AgentPriority.HIGH: 1,
    AgentPriority.NORMAL: 2,
    AgentPriority.LOW: 3,
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ScheduleTriggerConfig:
    """Fires every ``interval_seconds``; ``cron`` is accepted but not evaluated."""

    cron: Optional[str] = None
    interval_seconds: Optional[float] = None
    timezone: Optional[str] = None


@dataclass(slots=True)
class EventTriggerConfig:
    event_name: str
    filter: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class ConditionTriggerConfig:
    expression: str
    check_interval_ms: int
    cooldown_ms: Optional[int] = None


@dataclass(slots=True)
class UserMessageTriggerConfig:
    keywords: List[str] = field(default_factory=list)
    intents: List[str] = field(default_factory=list)
    is_default: bool = False


TriggerConfig = Union[
    ScheduleTriggerConfig,
    EventTriggerConfig,
    ConditionTriggerConfig,
    UserMessageTriggerConfig,
]


@dataclass(slots=True)
class AgentTrigger:
    """Declarative condition under which an agent gets scheduled."""

    id: str
    type: TriggerType
    config: TriggerConfig
    enabled: bool = True
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Agent identity and configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AgentMetadata:
    """Static identity of an agent type."""

    id: str
    name: str
    description: str
    version: str = "1.0.0"
    icon: Optional[str] = None
    category: str = "utility"
    priority: AgentPriority = AgentPriority.NORMAL
    is_system: bool = False


@dataclass(slots=True)
class AgentConfig:
    """Mutable runtime settings owned by an agent instance."""

    enabled: bool = True
    # Empty means unrestricted.
    tools: List[str] = field(default_factory=list)
    max_steps: int = 5
    timeout_ms: int = 30000
    settings: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Execution context and results
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class UserProfile:
    nickname: str = "用户"
    wake_up_hour: int = 7
    sleep_hour: int = 23
    preferred_topics: List[str] = field(default_factory=list)
    work_schedule: Optional[Dict[str, Any]] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)


@dataclass(slots=True)
class PetStatus:
    nickname: str = "宠物"
    mood: int = 80
    energy: int = 80
    intimacy: int = 50
    last_interaction: int = field(default_factory=now_ms)
    last_feed: Optional[int] = None
    last_play: Optional[int] = None
    total_interactions: int = 0
    coins: int = 0
    experience: int = 0
    created_at: int = field(default_factory=now_ms)


@dataclass(slots=True)
class EmotionRecord:
    id: str
    emotion: str
    intensity: int
    timestamp: int
    trigger: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(slots=True)
class AgentContext:
    """Snapshot passed into an agent execution."""

    user_id: str
    user_profile: UserProfile
    recent_emotions: List[EmotionRecord]
    current_pet_status: PetStatus
    timestamp: int
    trigger_source: TriggerType
    user_message: Optional[str] = None
    trigger_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class AgentAction:
    """Follow-up action requested by an agent result (notification, open_url, ...)."""

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AgentResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    should_speak: Optional[bool] = None
    emotion: Optional[str] = None
    animation: Optional[str] = None
    actions: Optional[List[AgentAction]] = None
    data: Optional[Dict[str, Any]] = None
    duration: Optional[int] = None


@dataclass(slots=True)
class ToolResult:
    """Uniform outcome of a tool invocation."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


# ---------------------------------------------------------------------------
# Dispatcher bookkeeping
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RegisteredAgent:
    """Status record the dispatcher keeps for each registered agent."""

    metadata: AgentMetadata
    config: AgentConfig
    triggers: List[AgentTrigger]
    status: AgentSystemStatus = AgentSystemStatus.IDLE
    execution_count: int = 0
    error_count: int = 0
    last_executed_at: Optional[int] = None


@dataclass(slots=True)
class AgentTask:
    """One queued invocation of an agent."""

    id: str
    agent_id: str
    context: AgentContext
    created_at: int
    status: TaskStatus = TaskStatus.PENDING
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    result: Optional[AgentResult] = None
    retry_count: int = 0


@dataclass(frozen=True, slots=True)
class AgentExecutionRecord:
    id: str
    agent_id: str
    agent_name: str
    trigger_type: TriggerType
    started_at: int
    completed_at: int
    success: bool
    duration: int
    message: Optional[str] = None
    error: Optional[str] = None
