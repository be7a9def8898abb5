"""Routing engine: picks the agent for a query (LLM classification or keyword heuristic)."""

import time
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from ..config import (
    CONFIDENCE_THRESHOLD,
    DEBUG_AGENT_ID,
    KEYWORD_CONFIDENCE,
    LAST_RESORT_AGENT_ID,
    LAST_RESORT_AGENT_NAME,
    SEARCH_AGENT_ID,
)
from ..errors import AgentError, NotFoundError, RegistryError, RoutingError, ValidationError
from ..llm import ILLMProvider, LLMCallOptions, model_for_agent
from ..logging_config import get_logger
from ..models import (
    Agent,
    EventType,
    FallbackReason,
    RoutingContext,
    RoutingDecision,
    TokenUsage,
)
from ..registry import IAgentRegistry
from ..tracker import get_active_trace

logger = get_logger(__name__)

SEARCH_KEYWORDS = ("search", "find", "lookup", "retrieve", "discover", "similar", "show")
DEBUG_KEYWORDS = ("conflict", "error", "wrong", "debug", "fix", "validate")

CONTEXT_TURNS = 5

SYSTEM_PROMPT = """You are the supervisor of a multi-agent assistant. \
Pick the single agent best suited to handle the user's latest message.

Available agents:
{agents}

Answer with JSON of exactly this shape:
{{"agent_id": "<one of: {agent_ids}>", "confidence": <number between 0 and 1>, \
"reasoning": "<one sentence>"}}"""


class RoutingResponse(BaseModel):
    """Schema the provider's answer must match. Nothing is coerced."""

    model_config = ConfigDict(strict=True)

    agent_id: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str


class IRoutingEngine(Protocol):
    async def route(self, context: RoutingContext) -> RoutingDecision:
        """Decide an agent. May raise taxonomy errors (see errors.py)."""
        ...


class RoutingEngine:
    """Decides which agent handles a query.

    Typed failures (provider errors, unusable responses, unknown agent ids)
    propagate so the fallback orchestrator can classify them. Any other
    exception is turned into a zero-confidence decision for the default agent.
    """

    def __init__(
        self,
        registry: IAgentRegistry,
        llm_provider: ILLMProvider | None = None,
        timeout: float | None = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        search_agent_id: str = SEARCH_AGENT_ID,
        debug_agent_id: str = DEBUG_AGENT_ID,
    ):
        self._registry = registry
        self._llm = llm_provider
        self._timeout = timeout
        self._threshold = confidence_threshold
        self._search_agent_id = search_agent_id
        self._debug_agent_id = debug_agent_id

    async def route(self, context: RoutingContext) -> RoutingDecision:
        if not context.available_agents:
            raise ValidationError("No agents available for routing")

        tracer = get_active_trace()
        span_id = ""
        if tracer:
            span_id = tracer.open_span(
                EventType.AGENT_ROUTING,
                {
                    "query": context.query,
                    "context_length": len(context.conversation_context),
                    "available_agents": [a.id for a in context.available_agents],
                },
            )
        started = time.perf_counter()

        try:
            decision = await self._decide(context)
        except Exception as e:
            if tracer:
                tracer.log(
                    EventType.ERROR,
                    {"query": context.query, "error_type": type(e).__name__},
                    {"error": True},
                    {"error_message": str(e)},
                )
            if isinstance(e, AgentError):
                if span_id:
                    tracer.close_span(
                        span_id,
                        {"error": True},
                        {"duration_ms": _elapsed_ms(started), "error_message": str(e)},
                    )
                raise
            logger.error("Unexpected routing failure: %s", e, exc_info=True)
            decision = self._error_decision(context, e)

        if span_id:
            tracer.close_span(
                span_id,
                {
                    "agent_id": decision.agent_id,
                    "confidence": decision.confidence,
                    "fallback": decision.fallback,
                },
                {
                    "duration_ms": _elapsed_ms(started),
                    "token_count": decision.usage.total_tokens if decision.usage else 0,
                    "agent_id": decision.agent_id,
                    "confidence": decision.confidence,
                },
            )
        return decision

    async def _decide(self, context: RoutingContext) -> RoutingDecision:
        default_agent = self._default_agent(context)

        if not context.query or not context.query.strip():
            return RoutingDecision(
                agent_id=default_agent.id,
                agent_name=default_agent.name,
                confidence=1.0,
                reasoning=f"Empty query. Routing to {default_agent.name}.",
                fallback=True,
                fallback_reason=FallbackReason.EMPTY_QUERY,
            )

        if self._llm is None or not self._llm.has_credentials():
            return self._route_by_keyword(context, default_agent)

        decision = await self._route_by_llm(context)

        if decision.confidence < self._threshold:
            return RoutingDecision(
                agent_id=default_agent.id,
                agent_name=default_agent.name,
                confidence=decision.confidence,
                reasoning=(
                    f"Low confidence ({decision.confidence:.2f}) for {decision.agent_id}. "
                    f"Falling back to {default_agent.name}. {decision.reasoning}"
                ),
                fallback=True,
                fallback_reason=FallbackReason.LOW_CONFIDENCE,
                usage=decision.usage,
            )

        return decision

    def _route_by_keyword(self, context: RoutingContext, default_agent: Agent) -> RoutingDecision:
        query = context.query.lower()
        target_id = default_agent.id

        # Search keywords win when both sets match
        matched = next((k for k in SEARCH_KEYWORDS if k in query), None)
        if matched:
            target_id = self._search_agent_id
        else:
            matched = next((k for k in DEBUG_KEYWORDS if k in query), None)
            if matched:
                target_id = self._debug_agent_id

        target = _find_agent(context.available_agents, target_id) or default_agent
        if matched:
            reasoning = (
                f"No API key configured. Keyword-based routing matched '{matched}', "
                f"routing to {target.name}."
            )
        else:
            reasoning = f"No API key configured. No keyword matched, routing to {target.name}."

        return RoutingDecision(
            agent_id=target.id,
            agent_name=target.name,
            confidence=KEYWORD_CONFIDENCE,
            reasoning=reasoning,
            fallback=True,
            fallback_reason=FallbackReason.NO_API_KEY,
        )

    async def _route_by_llm(self, context: RoutingContext) -> RoutingDecision:
        response = await self._llm.call(
            model_for_agent("supervisor"),
            self._build_messages(context),
            LLMCallOptions(
                temperature=0.3,
                max_tokens=500,
                json_mode=True,
                timeout=self._timeout,
            ),
        )

        parsed = parse_routing_response(response.content)
        agent = _find_agent(context.available_agents, parsed.agent_id)
        if agent is None:
            raise NotFoundError(parsed.agent_id)

        return RoutingDecision(
            agent_id=agent.id,
            agent_name=agent.name,
            confidence=parsed.confidence,
            reasoning=parsed.reasoning,
            fallback=False,
            usage=response.usage or TokenUsage(),
        )

    @staticmethod
    def _build_messages(context: RoutingContext) -> list[dict]:
        agent_blocks = []
        for agent in context.available_agents:
            use = "\n".join(f"    - {item}" for item in agent.when_to_use)
            avoid = "\n".join(f"    - {item}" for item in agent.when_not_to_use)
            agent_blocks.append(
                f"- id: {agent.id}\n"
                f"  name: {agent.name}\n"
                f"  description: {agent.description}\n"
                f"  use when:\n{use}\n"
                f"  do not use when:\n{avoid}"
            )

        system = SYSTEM_PROMPT.format(
            agents="\n".join(agent_blocks),
            agent_ids=", ".join(a.id for a in context.available_agents),
        )

        recent = context.conversation_context[-CONTEXT_TURNS:]
        user = context.query
        if recent:
            history = "\n".join(f"- {turn}" for turn in recent)
            user = f"Recent conversation:\n{history}\n\nLatest message:\n{context.query}"

        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def _default_agent(self, context: RoutingContext) -> Agent:
        for agent in context.available_agents:
            if agent.default:
                return agent
        return self._registry.get_default()

    def _error_decision(self, context: RoutingContext, error: Exception) -> RoutingDecision:
        try:
            default_agent = self._default_agent(context)
            agent_id, agent_name = default_agent.id, default_agent.name
        except (RegistryError, NotFoundError):
            agent_id, agent_name = LAST_RESORT_AGENT_ID, LAST_RESORT_AGENT_NAME

        return RoutingDecision(
            agent_id=agent_id,
            agent_name=agent_name,
            confidence=0.0,
            reasoning=f"Routing error: {error}. Falling back to {agent_name}.",
            fallback=True,
            fallback_reason=FallbackReason.UNKNOWN_ERROR,
        )


def parse_routing_response(content: str) -> RoutingResponse:
    """Validate the provider's JSON answer; any mismatch is a RoutingError."""
    text = (content or "").strip()
    if text.startswith("```"):
        text = text.strip("`").removeprefix("json").strip()
    if not text:
        raise RoutingError("Empty routing response from provider")

    try:
        return RoutingResponse.model_validate_json(text)
    except SchemaError as e:
        raise RoutingError(f"Invalid routing response: {e}", details=content) from e


def _find_agent(agents: list[Agent], agent_id: str) -> Agent | None:
    return next((a for a in agents if a.id == agent_id), None)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
