"""Agent router core: routing, fallback, tracing and handoffs between agents."""

from .app import Application, IApplication
from .errors import (
    AgentError,
    HandoffError,
    NotFoundError,
    ProviderError,
    RegistryError,
    RoutingError,
    StorageError,
    TraceError,
    ValidationError,
)
from .handoff import AgentDispatcher, HandoffPipeline, IAgentHandler
from .llm import ILLMProvider, LLMProvider
from .models import (
    Agent,
    AgentInvocationContext,
    ChatMessage,
    EventType,
    FallbackReason,
    HandoffContext,
    HandoffEvent,
    HandoffResult,
    RoutingContext,
    RoutingDecision,
    Trace,
    TraceEvent,
)
from .registry import AgentRegistry, IAgentRegistry
from .routing import FallbackOrchestrator, IRoutingEngine, RoutingEngine
from .storage import IStorage, Storage
from .tracker import TraceContext, TraceRetrieval, get_active_trace

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Models
    "Agent",
    "AgentInvocationContext",
    "ChatMessage",
    "EventType",
    "FallbackReason",
    "HandoffContext",
    "HandoffEvent",
    "HandoffResult",
    "RoutingContext",
    "RoutingDecision",
    "Trace",
    "TraceEvent",
    # Errors
    "AgentError",
    "HandoffError",
    "NotFoundError",
    "ProviderError",
    "RegistryError",
    "RoutingError",
    "StorageError",
    "TraceError",
    "ValidationError",
    # Components
    "AgentDispatcher",
    "AgentRegistry",
    "FallbackOrchestrator",
    "HandoffPipeline",
    "IAgentHandler",
    "IAgentRegistry",
    "ILLMProvider",
    "IRoutingEngine",
    "IStorage",
    "LLMProvider",
    "RoutingEngine",
    "Storage",
    "TraceContext",
    "TraceRetrieval",
    "get_active_trace",
]
