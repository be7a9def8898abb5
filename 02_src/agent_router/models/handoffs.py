"""Handoff data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]


@dataclass
class ChatMessage:
    """A role-tagged conversation turn."""

    role: Role
    content: str
    agent_id: str | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.agent_id is not None:
            data["agent_id"] = self.agent_id
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            agent_id=data.get("agent_id"),
            timestamp=data.get("timestamp"),
        )


@dataclass
class HandoffContext:
    """A request to transfer conversational control between two agents."""

    session_id: str
    from_agent: str
    to_agent: str
    reason: str
    user_intent: str
    conversation_history: list[ChatMessage] = field(default_factory=list)
    harness_trace_id: str | None = None


@dataclass
class AgentInvocationContext:
    """Reduced context handed to the target agent."""

    conversation_history: list[ChatMessage]
    user_intent: str
    session_id: str
    harness_trace_id: str | None = None


@dataclass
class HandoffEvent:
    """Append-only audit record of one handoff."""

    id: str
    session_id: str
    from_agent: str
    to_agent: str
    reason: str
    conversation_history: list[ChatMessage]
    user_intent: str
    created_at: datetime
    harness_trace_id: str | None = None


@dataclass
class HandoffResult:
    """Outcome of a successful handoff."""

    handoff_id: str
    from_agent: str
    to_agent: str
    response: Any = None
