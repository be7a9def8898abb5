"""Read access to persisted traces."""

from typing import Protocol

from ..errors import ValidationError
from ..models import Trace

MAX_USER_TRACES = 100


class ITraceReader(Protocol):
    async def get_trace(self, trace_id: str) -> Trace | None:
        ...

    async def get_session_traces(self, session_id: str) -> list[Trace]:
        ...

    async def get_user_traces(self, user_id: str, limit: int = 10) -> list[Trace]:
        ...


class TraceRetrieval:
    """Argument-checked queries over the trace store."""

    def __init__(self, storage: ITraceReader):
        self._storage = storage

    async def get_trace(self, trace_id: str) -> Trace | None:
        _require_id("trace_id", trace_id)
        return await self._storage.get_trace(trace_id)

    async def get_session_traces(self, session_id: str) -> list[Trace]:
        """All traces of a session, newest first."""
        _require_id("session_id", session_id)
        return await self._storage.get_session_traces(session_id)

    async def get_user_traces(self, user_id: str, limit: int = 10) -> list[Trace]:
        """Most recent traces of a user, newest first."""
        _require_id("user_id", user_id)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_USER_TRACES:
            raise ValidationError(f"Invalid limit: must be between 1 and {MAX_USER_TRACES}")
        return await self._storage.get_user_traces(user_id, limit)


def _require_id(name: str, value: object) -> None:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid {name}: must be a non-empty string")
