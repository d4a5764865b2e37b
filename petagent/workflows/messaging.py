"""Helpers for the message log threaded through a workflow run."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from petagent.core.models import generate_id, now_ms
from petagent.workflows.models import AgentMessage, WorkflowState

Names = Union[str, Sequence[str]]


@dataclass(slots=True)
class MessageFilter:
    from_: Optional[Names] = None
    to: Optional[Names] = None
    after_timestamp: Optional[int] = None
    before_timestamp: Optional[int] = None


@dataclass(slots=True)
class AgentMessageCounts:
    sent: int = 0
    received: int = 0


@dataclass(slots=True)
class MessageStats:
    total_messages: int
    by_agent: Dict[str, AgentMessageCounts] = field(default_factory=dict)
    average_response_time: float = 0.0


def _as_set(names: Names) -> set:
    return {names} if isinstance(names, str) else set(names)


def filter_messages(messages: Iterable[AgentMessage], criteria: MessageFilter) -> List[AgentMessage]:
    senders = _as_set(criteria.from_) if criteria.from_ else None
    recipients = _as_set(criteria.to) if criteria.to else None
    selected = []
    for message in messages:
        if senders is not None and message.from_ not in senders:
            continue
        if recipients is not None and message.to not in recipients:
            continue
        if criteria.after_timestamp and message.timestamp <= criteria.after_timestamp:
            continue
        if criteria.before_timestamp and message.timestamp >= criteria.before_timestamp:
            continue
        selected.append(message)
    return selected


def get_messages_for_agent(state: WorkflowState, agent_id: str) -> List[AgentMessage]:
    return filter_messages(state.messages, MessageFilter(to=agent_id))


def get_messages_from_agent(state: WorkflowState, agent_id: str) -> List[AgentMessage]:
    return filter_messages(state.messages, MessageFilter(from_=agent_id))


def get_conversation(state: WorkflowState, agent_a: str, agent_b: str) -> List[AgentMessage]:
    """Messages exchanged between two agents, oldest first."""
    pair = {agent_a, agent_b}
    exchanged = [
        m for m in state.messages if {m.from_, m.to} == pair and m.from_ != m.to
    ]
    return sorted(exchanged, key=lambda m: m.timestamp)


def create_message(
    from_: str,
    to: str,
    content: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AgentMessage:
    return AgentMessage(from_=from_, to=to, content=content, metadata=metadata)


def create_broadcast(from_: str, content: str, agents: Sequence[str]) -> List[AgentMessage]:
    timestamp = now_ms()
    return [
        AgentMessage(from_=from_, to=agent, content=content, id=generate_id(), timestamp=timestamp)
        for agent in agents
    ]


def format_conversation(messages: Iterable[AgentMessage]) -> str:
    ordered = sorted(messages, key=lambda m: m.timestamp)
    return "\n\n".join(f"[{m.from_} -> {m.to}]: {m.content}" for m in ordered)


def get_latest_from_each_agent(state: WorkflowState) -> Dict[str, AgentMessage]:
    latest: Dict[str, AgentMessage] = {}
    for message in state.messages:
        existing = latest.get(message.from_)
        if existing is None or message.timestamp > existing.timestamp:
            latest[message.from_] = message
    return latest


def calculate_message_stats(state: WorkflowState) -> MessageStats:
    """Per-agent sent/received counts and mean reply latency in ms.

    A reply is a message whose sender was the recipient of the message
    immediately before it in time order.
    """
    by_agent: Dict[str, AgentMessageCounts] = {}
    for message in state.messages:
        by_agent.setdefault(message.from_, AgentMessageCounts()).sent += 1
        by_agent.setdefault(message.to, AgentMessageCounts()).received += 1

    ordered = sorted(state.messages, key=lambda m: m.timestamp)
    response_times = [
        current.timestamp - previous.timestamp
        for previous, current in zip(ordered, ordered[1:])
        if previous.to == current.from_
    ]
    average = sum(response_times) / len(response_times) if response_times else 0.0

    return MessageStats(
        total_messages=len(state.messages),
        by_agent=by_agent,
        average_response_time=average,
    )
