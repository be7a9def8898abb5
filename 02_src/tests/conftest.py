"""Pytest configuration and fixtures."""

import copy
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


CATALOG = {
    "agents": [
        {
            "id": "dojo",
            "name": "Dojo",
            "description": "Thinking partner",
            "when_to_use": ["Exploring ideas"],
            "when_not_to_use": ["Searching saved material"],
            "default": True,
        },
        {
            "id": "librarian",
            "name": "Librarian",
            "description": "Search and retrieval",
            "when_to_use": ["Finding saved prompts"],
            "when_not_to_use": ["New ideas"],
            "default": False,
        },
        {
            "id": "debugger",
            "name": "Debugger",
            "description": "Conflict resolution",
            "when_to_use": ["Contradictions"],
            "when_not_to_use": ["Searching"],
            "default": False,
        },
    ]
}


def llm_json(agent_id: str, confidence: float, reasoning: str = "Because.") -> str:
    """Provider answer in the routing JSON shape."""
    return json.dumps({"agent_id": agent_id, "confidence": confidence, "reasoning": reasoning})


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from agent_router.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def catalog():
    """A fresh copy of the three-agent catalog."""
    return copy.deepcopy(CATALOG)


@pytest.fixture
def registry(catalog):
    """Create AgentRegistry over the in-memory catalog."""
    from agent_router.registry import AgentRegistry

    return AgentRegistry(data=catalog)


@pytest.fixture
def tracer(storage):
    """Create TraceContext persisting into storage."""
    from agent_router.tracker import TraceContext

    return TraceContext(storage)


@pytest.fixture
def mock_llm():
    """Create mock LLM provider with credentials."""
    from agent_router.llm import LLMResponse
    from agent_router.models import TokenUsage

    llm = Mock()
    llm.has_credentials = Mock(return_value=True)
    llm.call = AsyncMock(
        return_value=LLMResponse(
            content=llm_json("librarian", 0.9, "User wants to find saved prompts."),
            usage=TokenUsage(prompt_tokens=100, completion_tokens=20, total_tokens=120),
        )
    )
    return llm


@pytest.fixture
def engine(registry, mock_llm):
    """Create RoutingEngine with the mocked provider."""
    from agent_router.routing import RoutingEngine

    return RoutingEngine(registry, mock_llm)


@pytest.fixture
def orchestrator(engine, registry):
    """Create FallbackOrchestrator around the engine."""
    from agent_router.routing import FallbackOrchestrator

    return FallbackOrchestrator(engine, registry)


@pytest.fixture
def routing_context(registry):
    """Factory for routing contexts over the registry's agents."""
    from agent_router.models import RoutingContext

    def make(query: str = "find my prompts", **kwargs) -> RoutingContext:
        kwargs.setdefault("available_agents", registry.get_available_agents())
        return RoutingContext(query=query, session_id="session-1", **kwargs)

    return make


class RecordingHandler:
    """Agent handler that remembers what it was asked to do."""

    def __init__(self, agent_id: str, response: object = "ok"):
        self._agent_id = agent_id
        self.response = response
        self.calls = []

    @property
    def agent_id(self) -> str:
        return self._agent_id

    async def handle(self, context):
        self.calls.append(context)
        return self.response


@pytest.fixture
def dispatcher():
    """Create AgentDispatcher with recording handlers for every catalog agent."""
    from agent_router.handoff import AgentDispatcher

    d = AgentDispatcher()
    for agent in CATALOG["agents"]:
        d.register_handler(RecordingHandler(agent["id"]))
    return d


@pytest.fixture
def pipeline(registry, storage, dispatcher):
    """Create HandoffPipeline over real storage and the recording dispatcher."""
    from agent_router.handoff import HandoffPipeline

    return HandoffPipeline(registry, storage, dispatcher)


@pytest.fixture
def handoff_context():
    """Factory for valid handoff contexts."""
    from agent_router.models import ChatMessage, HandoffContext

    def make(**overrides) -> HandoffContext:
        values = {
            "session_id": "session-1",
            "from_agent": "dojo",
            "to_agent": "librarian",
            "reason": "User wants to search saved prompts",
            "user_intent": "Find prompts about onboarding",
            "conversation_history": [
                ChatMessage(role="user", content="I need my onboarding prompts"),
                ChatMessage(role="assistant", content="Let me hand you over", agent_id="dojo"),
            ],
        }
        values.update(overrides)
        return HandoffContext(**values)

    return make
