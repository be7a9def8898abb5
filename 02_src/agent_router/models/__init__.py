"""Core data models for the agent router."""

from .agents import Agent, FallbackReason, RoutingContext, RoutingDecision, TokenUsage
from .handoffs import (
    AgentInvocationContext,
    ChatMessage,
    HandoffContext,
    HandoffEvent,
    HandoffResult,
)
from .tracing import (
    EventType,
    Trace,
    TraceEvent,
    TraceSummary,
    flatten_events,
    link_events,
)

__all__ = [
    # Agents / routing
    "Agent",
    "FallbackReason",
    "RoutingContext",
    "RoutingDecision",
    "TokenUsage",
    # Handoffs
    "AgentInvocationContext",
    "ChatMessage",
    "HandoffContext",
    "HandoffEvent",
    "HandoffResult",
    # Tracing
    "EventType",
    "Trace",
    "TraceEvent",
    "TraceSummary",
    "flatten_events",
    "link_events",
]
