"""Handoff module."""

from .dispatcher import AgentDispatcher, IAgentDispatcher, IAgentHandler
from .pipeline import HandoffPipeline, IHandoffPipeline

__all__ = [
    "AgentDispatcher",
    "HandoffPipeline",
    "IAgentDispatcher",
    "IAgentHandler",
    "IHandoffPipeline",
]
