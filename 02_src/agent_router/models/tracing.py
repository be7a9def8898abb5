"""Tracing and observability data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Closed set of trace event types."""

    SESSION_START = "SESSION_START"
    SESSION_END = "SESSION_END"
    MODE_TRANSITION = "MODE_TRANSITION"
    AGENT_ROUTING = "AGENT_ROUTING"
    AGENT_HANDOFF = "AGENT_HANDOFF"
    TOOL_INVOCATION = "TOOL_INVOCATION"
    PERSPECTIVE_INTEGRATION = "PERSPECTIVE_INTEGRATION"
    COST_TRACKED = "COST_TRACKED"
    ERROR = "ERROR"
    USER_INPUT = "USER_INPUT"
    AGENT_RESPONSE = "AGENT_RESPONSE"


@dataclass
class TraceEvent:
    """A single span in the trace tree.

    Recognized metadata keys: duration_ms, token_count, cost_usd, confidence,
    error_message, agent_id, mode. Other keys are carried through untouched.
    """

    span_id: str
    parent_id: str | None
    event_type: EventType
    timestamp: datetime
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    children: list["TraceEvent"] = field(default_factory=list, repr=False)

    def to_dict(self, include_children: bool = True) -> dict[str, Any]:
        """Serialize the event, and its subtree unless include_children is False.

        Built with an explicit stack so arbitrarily deep span chains serialize.
        """
        root = self._fields_dict()
        if not include_children:
            return root

        pending = [(self, root)]
        while pending:
            event, data = pending.pop()
            for child in event.children:
                child_data = child._fields_dict()
                data["children"].append(child_data)
                pending.append((child, child_data))
        return root

    def _fields_dict(self) -> dict[str, Any]:
        return {
            "span_id": self.span_id,
            "parent_id": self.parent_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "inputs": self.inputs,
            "outputs": self.outputs,
            "metadata": self.metadata,
            "children": [],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceEvent":
        root = cls._from_fields(data)
        pending = [(data, root)]
        while pending:
            raw, event = pending.pop()
            for raw_child in raw.get("children") or []:
                child = cls._from_fields(raw_child)
                event.children.append(child)
                pending.append((raw_child, child))
        return root

    @classmethod
    def _from_fields(cls, data: dict[str, Any]) -> "TraceEvent":
        return cls(
            span_id=data["span_id"],
            parent_id=data.get("parent_id"),
            event_type=EventType(data["event_type"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            inputs=data.get("inputs") or {},
            outputs=data.get("outputs") or {},
            metadata=data.get("metadata") or {},
        )


def flatten_events(roots: list[TraceEvent]) -> list[TraceEvent]:
    """Pre-order list of every event under `roots` (parents before children)."""
    flat: list[TraceEvent] = []
    pending = list(reversed(roots))
    while pending:
        event = pending.pop()
        flat.append(event)
        pending.extend(reversed(event.children))
    return flat


def link_events(events: list[TraceEvent]) -> list[TraceEvent]:
    """Attach each event to its parent by parent_id, keeping list order. Returns the roots.

    Events must come parents first; an event whose parent is not in the list
    becomes a root.
    """
    by_id: dict[str, TraceEvent] = {}
    roots: list[TraceEvent] = []
    for event in events:
        parent = by_id.get(event.parent_id) if event.parent_id else None
        if parent is not None:
            parent.children.append(event)
        else:
            roots.append(event)
        by_id[event.span_id] = event
    return roots


@dataclass
class TraceSummary:
    """Rolling metrics, updated on every log / span close."""

    total_events: int = 0
    total_duration_ms: float = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    agents_used: list[str] = field(default_factory=list)
    modes_used: list[str] = field(default_factory=list)
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "total_duration_ms": self.total_duration_ms,
            "total_tokens": self.total_tokens,
            "total_cost_usd": self.total_cost_usd,
            "agents_used": list(self.agents_used),
            "modes_used": list(self.modes_used),
            "errors": self.errors,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceSummary":
        return cls(
            total_events=data.get("total_events", 0),
            total_duration_ms=data.get("total_duration_ms", 0),
            total_tokens=data.get("total_tokens", 0),
            total_cost_usd=data.get("total_cost_usd", 0.0),
            agents_used=list(data.get("agents_used", [])),
            modes_used=list(data.get("modes_used", [])),
            errors=data.get("errors", 0),
        )


@dataclass
class Trace:
    """Nested-span record of one session/request plus its summary."""

    trace_id: str
    session_id: str
    user_id: str
    started_at: datetime
    ended_at: datetime | None = None  # None while open
    events: list[TraceEvent] = field(default_factory=list)  # roots only
    summary: TraceSummary = field(default_factory=TraceSummary)

    def to_dict(self, nested: bool = True) -> dict[str, Any]:
        """Serialize the trace. With nested=False, events are a flat pre-order list."""
        if nested:
            events = [event.to_dict() for event in self.events]
        else:
            events = [event.to_dict(include_children=False) for event in flatten_events(self.events)]
        return {
            "trace_id": self.trace_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "events": events,
            "summary": self.summary.to_dict(),
        }
