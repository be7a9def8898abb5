"""Routing module."""

from .engine import (
    DEBUG_KEYWORDS,
    SEARCH_KEYWORDS,
    IRoutingEngine,
    RoutingEngine,
    RoutingResponse,
    parse_routing_response,
)
from .fallback import FallbackEvent, FallbackOrchestrator

__all__ = [
    "DEBUG_KEYWORDS",
    "SEARCH_KEYWORDS",
    "FallbackEvent",
    "FallbackOrchestrator",
    "IRoutingEngine",
    "RoutingEngine",
    "RoutingResponse",
    "parse_routing_response",
]
