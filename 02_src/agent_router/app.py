"""Application bootstrap and lifecycle management."""

import os
from pathlib import Path
from typing import Protocol

from .config import get_llm_timeout, load_environment, resolve_db_path
from .errors import RegistryError
from .handoff import AgentDispatcher, HandoffPipeline, IAgentHandler
from .llm import ILLMProvider, LLMProvider
from .logging_config import get_logger, setup_logging
from .models import HandoffContext, HandoffResult, RoutingContext, RoutingDecision
from .registry import AgentRegistry
from .routing import FallbackOrchestrator, RoutingEngine
from .storage import IStorage, Storage
from .tracker import TraceContext, TraceRetrieval

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        registry_path: str | Path | None = None,
        llm_provider: ILLMProvider | None = None,
        configure_logging: bool = False,
    ):
        load_environment()

        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._registry_path = registry_path
        self._configure_logging = configure_logging

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._registry: AgentRegistry | None = None
        self._llm: ILLMProvider | None = llm_provider
        self._router: FallbackOrchestrator | None = None
        self._dispatcher: AgentDispatcher | None = None
        self._handoffs: HandoffPipeline | None = None
        self._traces: TraceRetrieval | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        if self._configure_logging:
            setup_logging()
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        self._traces = TraceRetrieval(self._storage)
        logger.info("Storage initialized")

        # 2. Registry. A broken catalog is reported but does not stop startup:
        # routing falls back to the last-resort agent until it is fixed.
        self._registry = AgentRegistry(self._registry_path)
        valid, errors = self._registry.validate()
        if valid:
            logger.info("Agent registry validated")
        else:
            logger.warning("Agent registry has problems: %s", "; ".join(errors))

        # 3. LLMProvider (no internal dependencies)
        if self._llm is None:
            self._llm = LLMProvider()
        if not self._llm.has_credentials():
            logger.warning("No valid ANTHROPIC_API_KEY; routing will use keyword matching")

        # 4. Routing (depends on Registry + LLM)
        engine = RoutingEngine(self._registry, self._llm, timeout=get_llm_timeout())
        self._router = FallbackOrchestrator(engine, self._registry)
        logger.info("Routing initialized")

        # 5. Handoffs (depends on Registry + Storage)
        self._dispatcher = AgentDispatcher()
        self._handoffs = HandoffPipeline(self._registry, self._storage, self._dispatcher)
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        self._handoffs = None
        self._router = None
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")
        self._storage = None
        self._traces = None

    async def reset(self) -> None:
        """Reset data between test runs."""
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        if self._registry:
            try:
                self._registry.reload()
            except RegistryError as e:
                logger.warning("Agent registry reload failed: %s", e)
        logger.info("Reset complete")

    def new_trace(self, strict: bool = False) -> TraceContext:
        """A fresh per-request trace context that persists into this app's storage."""
        return TraceContext(self.storage, strict=strict)

    def register_agent(self, handler: IAgentHandler) -> None:
        """Register a handoff target."""
        self.dispatcher.register_handler(handler)

    async def route(
        self,
        query: str,
        session_id: str,
        conversation_context: list[str] | None = None,
    ) -> RoutingDecision:
        """Route a query. Never raises once the application is started."""
        return await self.router.route(
            RoutingContext(
                query=query,
                session_id=session_id,
                conversation_context=list(conversation_context or []),
            )
        )

    async def handoff(self, context: HandoffContext) -> HandoffResult:
        """Hand the conversation over to another agent. Raises HandoffError."""
        return await self.handoffs.execute(context)

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def registry(self) -> AgentRegistry:
        if not self._registry:
            raise RuntimeError("Application not started")
        return self._registry

    @property
    def router(self) -> FallbackOrchestrator:
        """Get the routing entry point."""
        if not self._router:
            raise RuntimeError("Application not started")
        return self._router

    @property
    def dispatcher(self) -> AgentDispatcher:
        if not self._dispatcher:
            raise RuntimeError("Application not started")
        return self._dispatcher

    @property
    def handoffs(self) -> HandoffPipeline:
        """Get handoff pipeline instance."""
        if not self._handoffs:
            raise RuntimeError("Application not started")
        return self._handoffs

    @property
    def traces(self) -> TraceRetrieval:
        """Get trace retrieval instance."""
        if not self._traces:
            raise RuntimeError("Application not started")
        return self._traces
