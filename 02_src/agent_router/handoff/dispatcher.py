"""AgentDispatcher implementation."""

from typing import Any, Protocol

from ..errors import HandoffError
from ..logging_config import get_logger
from ..models import AgentInvocationContext

logger = get_logger(__name__)


class IAgentHandler(Protocol):
    """A target agent that can take over a conversation."""

    @property
    def agent_id(self) -> str:
        ...

    async def handle(self, context: AgentInvocationContext) -> Any:
        """Continue the conversation from the handed-over context."""
        ...


class IAgentDispatcher(Protocol):
    """Looks up and invokes target agents."""

    def register_handler(self, handler: IAgentHandler) -> None:
        """Register a handler under its agent id."""
        ...

    async def invoke(self, agent_id: str, context: AgentInvocationContext) -> Any:
        """Invoke the handler registered for agent_id."""
        ...


class AgentDispatcher:
    """Maps agent ids to their handlers."""

    def __init__(self):
        self._handlers: dict[str, IAgentHandler] = {}

    def register_handler(self, handler: IAgentHandler) -> None:
        """Register a handler. A later registration for the same id replaces the earlier one."""
        if handler.agent_id in self._handlers:
            logger.warning("Replacing handler for agent %s", handler.agent_id)
        self._handlers[handler.agent_id] = handler

    def has_handler(self, agent_id: str) -> bool:
        return agent_id in self._handlers

    @property
    def agent_ids(self) -> list[str]:
        return list(self._handlers)

    async def invoke(self, agent_id: str, context: AgentInvocationContext) -> Any:
        handler = self._handlers.get(agent_id)
        if handler is None:
            raise HandoffError(f"No handler available for agent: {agent_id}", "unknown", agent_id)

        result = await handler.handle(context)
        logger.info(
            "Agent %s handled session %s",
            agent_id,
            context.session_id,
            extra={"context": {"agent_id": agent_id, "session_id": context.session_id}},
        )
        return result
