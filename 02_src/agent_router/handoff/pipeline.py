"""Handoff pipeline: validate, persist, trace and invoke the target agent."""

import time
from typing import Protocol

from ..errors import (
    AgentUnavailableHandoffError,
    HandoffError,
    HandoffValidationError,
    SameAgentHandoffError,
    StorageError,
)
from ..logging_config import get_logger
from ..models import (
    AgentInvocationContext,
    EventType,
    HandoffContext,
    HandoffEvent,
    HandoffResult,
)
from ..registry import IAgentRegistry
from ..storage import IStorage
from ..tracker import get_active_trace
from .dispatcher import IAgentDispatcher

logger = get_logger(__name__)


class IHandoffPipeline(Protocol):
    """Transfers conversational control between agents."""

    async def execute(self, context: HandoffContext) -> HandoffResult:
        """Run the handoff or raise HandoffError."""
        ...

    async def history(self, session_id: str) -> list[HandoffEvent]:
        """Handoffs of a session, oldest first."""
        ...

    async def last(self, session_id: str) -> HandoffEvent | None:
        """Most recent handoff of a session."""
        ...

    async def count(
        self,
        session_id: str,
        from_agent: str | None = None,
        to_agent: str | None = None,
    ) -> int:
        """Number of handoffs of a session."""
        ...


class HandoffPipeline:
    """Fail-fast handoff: the first failing step aborts the rest, nothing is rolled back.

    A persisted handoff whose target then fails stays in the audit log.
    """

    def __init__(
        self,
        registry: IAgentRegistry,
        storage: IStorage,
        dispatcher: IAgentDispatcher,
    ):
        self._registry = registry
        self._storage = storage
        self._dispatcher = dispatcher

    async def execute(self, context: HandoffContext) -> HandoffResult:
        tracer = get_active_trace()
        span_id = ""
        started = time.perf_counter()

        try:
            self._validate(context)
            event = await self._persist(context)

            if tracer:
                span_id = tracer.open_span(
                    EventType.AGENT_HANDOFF,
                    {
                        "from_agent": context.from_agent,
                        "to_agent": context.to_agent,
                        "reason": context.reason,
                        "conversation_length": len(context.conversation_history),
                        "user_intent": context.user_intent,
                    },
                    {"agent_id": context.to_agent},
                )

            response = await self._dispatcher.invoke(
                context.to_agent,
                AgentInvocationContext(
                    conversation_history=context.conversation_history,
                    user_intent=context.user_intent,
                    session_id=context.session_id,
                    harness_trace_id=context.harness_trace_id,
                ),
            )
        except Exception as e:
            if tracer:
                tracer.log(
                    EventType.ERROR,
                    {
                        "from_agent": context.from_agent,
                        "to_agent": context.to_agent,
                        "error_type": type(e).__name__,
                    },
                    {"error": True},
                    {"error_message": str(e)},
                )
                if span_id:
                    tracer.close_span(
                        span_id,
                        {"success": False},
                        {"duration_ms": _elapsed_ms(started), "error_message": str(e)},
                    )
            logger.error(
                "Handoff %s -> %s failed: %s",
                context.from_agent,
                context.to_agent,
                e,
                extra={"context": {"session_id": context.session_id}},
            )
            if isinstance(e, HandoffError):
                raise
            raise HandoffError(
                f"Handoff failed: {e}",
                context.from_agent,
                context.to_agent,
            ) from e

        if span_id:
            tracer.close_span(
                span_id,
                {"success": True, "handoff_id": event.id},
                {"duration_ms": _elapsed_ms(started)},
            )

        logger.info(
            "Handoff %s -> %s completed",
            context.from_agent,
            context.to_agent,
            extra={"context": {"session_id": context.session_id, "handoff_id": event.id}},
        )
        return HandoffResult(
            handoff_id=event.id,
            from_agent=context.from_agent,
            to_agent=context.to_agent,
            response=response,
        )

    def _validate(self, context: HandoffContext) -> None:
        from_agent, to_agent = context.from_agent, context.to_agent

        if _blank(context.session_id):
            raise HandoffValidationError(
                "session_id", "session_id is required", from_agent, to_agent
            )

        if _blank(from_agent):
            raise HandoffValidationError(
                "from_agent", "from_agent is required", from_agent, to_agent
            )
        if not self._registry.is_valid(from_agent):
            raise AgentUnavailableHandoffError(
                "from_agent", f"Invalid from_agent: {from_agent}", from_agent, to_agent
            )

        if _blank(to_agent):
            raise HandoffValidationError("to_agent", "to_agent is required", from_agent, to_agent)
        if not self._registry.is_valid(to_agent):
            raise AgentUnavailableHandoffError(
                "to_agent", f"Invalid to_agent: {to_agent}", from_agent, to_agent
            )
        if from_agent == to_agent:
            raise SameAgentHandoffError(from_agent)

        if _blank(context.reason):
            raise HandoffValidationError("reason", "reason is required", from_agent, to_agent)

        if not isinstance(context.conversation_history, list):
            raise HandoffValidationError(
                "conversation_history",
                "conversation_history must be a list",
                from_agent,
                to_agent,
            )

        if _blank(context.user_intent):
            raise HandoffValidationError(
                "user_intent", "user_intent is required", from_agent, to_agent
            )

    async def _persist(self, context: HandoffContext) -> HandoffEvent:
        try:
            return await self._storage.save_handoff(context)
        except StorageError as e:
            raise HandoffError(
                f"Failed to persist handoff: {e}",
                context.from_agent,
                context.to_agent,
            ) from e

    # Read side: failures degrade to empty results

    async def history(self, session_id: str) -> list[HandoffEvent]:
        try:
            return await self._storage.get_handoff_history(session_id)
        except Exception as e:
            logger.error("Failed to read handoff history for %s: %s", session_id, e, exc_info=True)
            return []

    async def last(self, session_id: str) -> HandoffEvent | None:
        try:
            return await self._storage.get_last_handoff(session_id)
        except Exception as e:
            logger.error("Failed to read last handoff for %s: %s", session_id, e, exc_info=True)
            return None

    async def count(
        self,
        session_id: str,
        from_agent: str | None = None,
        to_agent: str | None = None,
    ) -> int:
        try:
            return await self._storage.count_handoffs(session_id, from_agent, to_agent)
        except Exception as e:
            logger.error("Failed to count handoffs for %s: %s", session_id, e, exc_info=True)
            return 0


def _blank(value: object) -> bool:
    return not isinstance(value, str) or not value.strip()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
