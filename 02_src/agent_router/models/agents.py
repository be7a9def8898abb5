"""Agent and routing data models."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Agent:
    """A named handler for a category of user intent."""

    id: str
    name: str
    description: str
    when_to_use: list[str]
    when_not_to_use: list[str]
    default: bool = False


class FallbackReason(str, Enum):
    """Why a decision was substituted by the default agent."""

    LOW_CONFIDENCE = "low_confidence"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    RATE_LIMIT = "rate_limit"
    AGENT_UNAVAILABLE = "agent_unavailable"
    REGISTRY_ERROR = "registry_error"
    UNKNOWN_ERROR = "unknown_error"
    EMPTY_QUERY = "empty_query"
    NO_API_KEY = "no_api_key"


@dataclass
class TokenUsage:
    """Token counts reported by the provider for one call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class RoutingContext:
    """Everything the router needs to pick an agent for one query."""

    query: str
    session_id: str
    conversation_context: list[str] = field(default_factory=list)
    available_agents: list[Agent] = field(default_factory=list)  # empty -> registry bootstrap


@dataclass
class RoutingDecision:
    """The chosen agent for a query. Produced fresh per call, never persisted here."""

    agent_id: str
    confidence: float
    reasoning: str
    agent_name: str | None = None
    fallback: bool = False
    fallback_reason: FallbackReason | None = None
    usage: TokenUsage | None = None
