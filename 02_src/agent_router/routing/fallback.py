"""Fallback orchestrator: the routing entry point that never raises."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from ..config import LAST_RESORT_AGENT_ID, LAST_RESORT_AGENT_NAME
from ..errors import (
    NotFoundError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    RegistryError,
    RoutingError,
)
from ..logging_config import get_logger
from ..models import FallbackReason, RoutingContext, RoutingDecision
from ..registry import AgentRegistry
from .engine import IRoutingEngine

logger = get_logger(__name__)


@dataclass
class FallbackEvent:
    """One fallback occurrence, as written to the log."""

    reason: FallbackReason
    fallback_agent_id: str
    fallback_agent_name: str
    session_id: str
    query: str
    timestamp: str
    error_message: str | None = None
    original_confidence: float | None = None


class FallbackOrchestrator:
    """Wraps the routing engine into a total function.

    route() always returns a RoutingDecision for some agent; every failure
    (registry, provider, unusable response, unavailable agent, bugs) becomes
    a fallback to the default agent with the reason spelled out.
    """

    def __init__(self, engine: IRoutingEngine, registry: AgentRegistry):
        self._engine = engine
        self._registry = registry

    async def route(self, context: RoutingContext) -> RoutingDecision:
        try:
            return await self._route(context)
        except Exception as e:
            reason, message = self.classify(e)
            decision = self._fallback_decision(reason, message)
            self._log(context, decision, reason, message)
            return decision

    async def _route(self, context: RoutingContext) -> RoutingDecision:
        if not context.available_agents:
            try:
                context.available_agents = self._registry.get_available_agents()
            except RegistryError as e:
                decision = self._fallback_decision(FallbackReason.REGISTRY_ERROR, str(e))
                self._log(context, decision, FallbackReason.REGISTRY_ERROR, str(e))
                return decision

        decision = await self._engine.route(context)

        if decision.fallback:
            self._log(
                context,
                decision,
                decision.fallback_reason or FallbackReason.UNKNOWN_ERROR,
                decision.reasoning,
                original_confidence=decision.confidence,
            )

        return self._revalidate(decision, context)

    def _revalidate(self, decision: RoutingDecision, context: RoutingContext) -> RoutingDecision:
        """The chosen agent must exist in the registry and be offered in this context."""
        try:
            self._registry.get_by_id(decision.agent_id)
            message = None
        except NotFoundError as e:
            message = str(e)

        if message is None and not any(a.id == decision.agent_id for a in context.available_agents):
            message = f"Agent {decision.agent_id} not in available agents list"

        if message is None:
            return decision

        fallback = self._fallback_decision(
            FallbackReason.AGENT_UNAVAILABLE,
            decision.agent_id,
            confidence=decision.confidence,
        )
        self._log(
            context,
            fallback,
            FallbackReason.AGENT_UNAVAILABLE,
            message,
            original_confidence=decision.confidence,
        )
        return fallback

    @staticmethod
    def classify(error: Exception) -> tuple[FallbackReason, str]:
        """Map an exception to a fallback reason and a user-facing message."""
        message = str(error) or type(error).__name__
        if isinstance(error, ProviderTimeoutError):
            return FallbackReason.TIMEOUT, message
        if isinstance(error, ProviderRateLimitError):
            return FallbackReason.RATE_LIMIT, message
        if isinstance(error, ProviderAuthError):
            return FallbackReason.API_ERROR, "Invalid or missing API key"
        if isinstance(error, RoutingError):
            return FallbackReason.API_ERROR, message
        if isinstance(error, NotFoundError):
            return FallbackReason.AGENT_UNAVAILABLE, message
        if isinstance(error, RegistryError):
            return FallbackReason.REGISTRY_ERROR, message
        return FallbackReason.UNKNOWN_ERROR, message

    def _fallback_decision(
        self,
        reason: FallbackReason,
        error_message: str | None = None,
        confidence: float = 0.0,
    ) -> RoutingDecision:
        try:
            default_agent = self._registry.get_default()
            agent_id, name = default_agent.id, default_agent.name
        except Exception as e:
            logger.error("Default agent unavailable, using last resort: %s", e)
            agent_id, name = LAST_RESORT_AGENT_ID, LAST_RESORT_AGENT_NAME

        if reason is FallbackReason.TIMEOUT:
            reasoning = f"Routing timed out ({error_message}). Falling back to {name}."
        elif reason is FallbackReason.API_ERROR:
            reasoning = f"API error: {error_message}. Falling back to {name}."
        elif reason is FallbackReason.RATE_LIMIT:
            reasoning = f"Rate limit exceeded. Falling back to {name}."
        elif reason is FallbackReason.AGENT_UNAVAILABLE:
            reasoning = f"Selected agent unavailable: {error_message}. Falling back to {name}."
        elif reason is FallbackReason.REGISTRY_ERROR:
            reasoning = f"Registry error: {error_message}. Falling back to {name}."
        else:
            reasoning = f"Unexpected error: {error_message}. Falling back to {name}."

        return RoutingDecision(
            agent_id=agent_id,
            agent_name=name,
            confidence=confidence,
            reasoning=reasoning,
            fallback=True,
            fallback_reason=reason,
        )

    def _log(
        self,
        context: RoutingContext,
        decision: RoutingDecision,
        reason: FallbackReason,
        error_message: str | None,
        original_confidence: float | None = None,
    ) -> None:
        event = FallbackEvent(
            reason=reason,
            fallback_agent_id=decision.agent_id,
            fallback_agent_name=decision.agent_name or "Unknown",
            session_id=getattr(context, "session_id", ""),
            query=getattr(context, "query", ""),
            timestamp=datetime.now(timezone.utc).isoformat(),
            error_message=error_message,
            original_confidence=original_confidence,
        )
        logger.warning(
            "Routing fallback (%s) to %s (%s)",
            reason.value,
            event.fallback_agent_name,
            event.fallback_agent_id,
            extra={"context": {**asdict(event), "reason": reason.value}},
        )
