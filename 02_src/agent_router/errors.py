"""Exception taxonomy shared by all components."""


class AgentError(Exception):
    """Base class for every error raised by the router core."""

    code = "AGENT_ERROR"

    def __init__(self, message: str, details: object | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AgentError):
    """Malformed or missing field."""

    code = "VALIDATION_ERROR"


class NotFoundError(AgentError):
    """Unknown agent id."""

    code = "AGENT_NOT_FOUND"

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class RoutingError(AgentError):
    """The provider answered, but the answer is not a usable routing decision."""

    code = "ROUTING_ERROR"


class RegistryError(AgentError):
    """The agent catalog could not be loaded or violates its invariants."""

    code = "REGISTRY_ERROR"


class StorageError(AgentError):
    """Persistence failure."""

    code = "STORAGE_ERROR"


class TraceError(AgentError):
    """Misuse of the trace lifecycle (ending a trace that was never started)."""

    code = "TRACE_ERROR"


# Provider errors


class ProviderError(AgentError):
    """Generic LLM provider failure."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, status: int | None = None, details: object | None = None):
        super().__init__(message, details)
        self.status = status


class ProviderAuthError(ProviderError):
    code = "AUTH_ERROR"

    def __init__(self, message: str, details: object | None = None):
        super().__init__(message, status=401, details=details)


class ProviderRateLimitError(ProviderError):
    code = "RATE_LIMIT_ERROR"

    def __init__(self, message: str, details: object | None = None):
        super().__init__(message, status=429, details=details)


class ProviderTimeoutError(ProviderError):
    code = "TIMEOUT_ERROR"

    def __init__(self, message: str, details: object | None = None):
        super().__init__(message, status=408, details=details)


# Handoff errors


class HandoffError(AgentError):
    """A handoff could not be completed. Carries both agent ids."""

    code = "HANDOFF_ERROR"

    def __init__(
        self,
        message: str,
        from_agent: str,
        to_agent: str,
        details: object | None = None,
    ):
        super().__init__(message, details)
        self.from_agent = from_agent
        self.to_agent = to_agent

    @property
    def agent_pair(self) -> str:
        return f"{self.from_agent}->{self.to_agent}"


class HandoffValidationError(HandoffError):
    """A required handoff field is missing or has the wrong shape."""

    code = "HANDOFF_VALIDATION_ERROR"

    def __init__(self, field: str, message: str, from_agent: str, to_agent: str):
        super().__init__(message, from_agent, to_agent)
        self.field = field


class SameAgentHandoffError(HandoffValidationError):
    code = "HANDOFF_SAME_AGENT"

    def __init__(self, agent_id: str):
        super().__init__(
            "to_agent",
            "Cannot handoff to the same agent",
            agent_id,
            agent_id,
        )


class AgentUnavailableHandoffError(HandoffValidationError):
    """from_agent or to_agent is not a currently valid registry id."""

    code = "HANDOFF_AGENT_UNAVAILABLE"
