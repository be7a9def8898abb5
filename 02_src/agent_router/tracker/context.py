"""Per-request trace context: span stack + nested event tree + rolling summary."""

import copy
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

from ..errors import TraceError
from ..logging_config import get_logger
from ..models import EventType, Trace, TraceEvent, link_events

logger = get_logger(__name__)

_active_trace: ContextVar["TraceContext | None"] = ContextVar("active_trace", default=None)


def get_active_trace() -> "TraceContext | None":
    """Trace context bound to the current task, if it has a live trace."""
    ctx = _active_trace.get()
    if ctx is None or not ctx.is_active:
        return None
    return ctx


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class ITraceStore(Protocol):
    """Where finished traces go."""

    async def save_trace(self, trace: Trace) -> None:
        ...


class TraceContext:
    """Owns at most one in-flight Trace. Not shared between requests.

    Events live in a flat span-id map (the arena); each event also keeps its
    `children` list so the finished trace is a ready-made tree. Nesting,
    lookup and counting are map operations, never tree walks.
    """

    def __init__(self, storage: ITraceStore | None = None, strict: bool = False):
        self._storage = storage
        self._strict = strict
        self._trace: Trace | None = None
        self._stack: list[str] = []
        self._index: dict[str, TraceEvent] = {}

    @property
    def is_active(self) -> bool:
        return self._trace is not None

    @property
    def current(self) -> Trace | None:
        """The live (mutable) trace. Prefer the copy returned by end()."""
        return self._trace

    @property
    def span_depth(self) -> int:
        return len(self._stack)

    def start(self, session_id: str, user_id: str) -> Trace:
        """Create and install a new active trace, replacing any unfinished one."""
        if self._trace is not None:
            logger.warning(
                "Trace %s replaced before end(); %s events dropped",
                self._trace.trace_id,
                len(self._index),
            )

        self._trace = Trace(
            trace_id=_new_id("trace"),
            session_id=session_id,
            user_id=user_id,
            started_at=datetime.now(timezone.utc),
        )
        self._stack = []
        self._index = {}
        _active_trace.set(self)
        return self._trace

    def log(
        self,
        event_type: EventType | str,
        inputs: dict[str, Any] | None = None,
        outputs: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record an event under the innermost open span. Returns "" without a trace."""
        if self._trace is None:
            logger.warning("No active trace. Call start() first.")
            return ""

        try:
            event_type = EventType(event_type)
        except ValueError:
            logger.warning("Unknown trace event type %r; event dropped", event_type)
            return ""
        metadata = dict(metadata or {})
        parent_id = self._stack[-1] if self._stack else None

        event = TraceEvent(
            span_id=_new_id("span"),
            parent_id=parent_id,
            event_type=event_type,
            timestamp=datetime.now(timezone.utc),
            inputs=dict(inputs or {}),
            outputs=dict(outputs or {}),
            metadata=metadata,
        )

        parent = self._index.get(parent_id) if parent_id else None
        if parent is not None:
            parent.children.append(event)
        else:
            self._trace.events.append(event)
        self._index[event.span_id] = event

        self._update_summary(event_type, metadata)
        return event.span_id

    def open_span(
        self,
        event_type: EventType | str,
        inputs: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """log() + push: later events nest under this span until it is closed."""
        span_id = self.log(event_type, inputs, {}, metadata)
        if span_id:
            self._stack.append(span_id)
        return span_id

    def close_span(
        self,
        span_id: str,
        outputs: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Pop the innermost span and merge outputs/metadata into `span_id`.

        A mismatch between `span_id` and the stack top is logged and tolerated
        (the top is popped anyway) unless the context is strict.
        """
        if self._trace is None:
            logger.warning("No active trace. Cannot close span %s", span_id)
            return

        if not self._stack:
            logger.warning("Span stack is empty. Cannot close span %s", span_id)
            return

        top = self._stack[-1]
        if top != span_id:
            if self._strict:
                raise TraceError(f"Span mismatch: expected {top}, got {span_id}")
            logger.warning("Span mismatch. Expected %s but got %s", top, span_id)

        self._stack.pop()

        event = self._index.get(span_id)
        if event is None:
            logger.warning("Span %s not found in trace %s", span_id, self._trace.trace_id)
            return

        metadata = dict(metadata or {})
        event.outputs.update(outputs or {})
        event.metadata.update(metadata)
        self._update_summary(event.event_type, metadata, count_error=False)

    @asynccontextmanager
    async def span(
        self,
        event_type: EventType | str,
        inputs: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        """Open a span for the duration of the block; always closed, errors recorded."""
        span_id = self.open_span(event_type, inputs, metadata)
        started = time.perf_counter()
        try:
            yield span_id
        except Exception as e:
            if span_id:
                self.close_span(
                    span_id,
                    {"error": True},
                    {
                        "duration_ms": _elapsed_ms(started),
                        "error_message": str(e),
                    },
                )
            raise
        else:
            if span_id:
                self.close_span(span_id, {}, {"duration_ms": _elapsed_ms(started)})

    async def end(self) -> Trace:
        """Freeze, persist and release the active trace. Raises TraceError if none."""
        if self._trace is None:
            raise TraceError("No active trace to end.")

        self._trace.ended_at = datetime.now(timezone.utc)
        self._trace.summary.total_events = len(self._index)
        if self._stack:
            logger.warning(
                "Trace %s ended with %s open spans",
                self._trace.trace_id,
                len(self._stack),
            )

        live = self._trace
        events = list(self._index.values())
        self._trace = None
        self._stack = []
        self._index = {}
        if _active_trace.get() is self:
            _active_trace.set(None)

        # Rebuilt from the arena, so the copy never walks the tree
        frozen = Trace(
            trace_id=live.trace_id,
            session_id=live.session_id,
            user_id=live.user_id,
            started_at=live.started_at,
            ended_at=live.ended_at,
            events=link_events([_detached_copy(event) for event in events]),
            summary=copy.deepcopy(live.summary),
        )

        await self._persist(frozen)
        return frozen

    async def _persist(self, trace: Trace) -> None:
        if self._storage is None:
            logger.debug("No trace store configured; trace %s not persisted", trace.trace_id)
            return
        try:
            await self._storage.save_trace(trace)
            logger.info("Persisted trace %s", trace.trace_id)
        except Exception as e:
            logger.error(
                "Error persisting trace %s: %s. Falling back to log output.",
                trace.trace_id,
                e,
                exc_info=True,
                extra={"context": {"trace": trace.to_dict(nested=False)}},
            )

    def _update_summary(
        self,
        event_type: EventType,
        metadata: dict[str, Any],
        count_error: bool = True,
    ) -> None:
        summary = self._trace.summary

        if metadata.get("duration_ms"):
            summary.total_duration_ms += metadata["duration_ms"]
        if metadata.get("token_count"):
            summary.total_tokens += metadata["token_count"]
        if metadata.get("cost_usd"):
            summary.total_cost_usd += metadata["cost_usd"]
        if count_error and event_type is EventType.ERROR:
            summary.errors += 1

        if event_type is EventType.AGENT_ROUTING and metadata.get("agent_id"):
            agent_id = str(metadata["agent_id"])
            if agent_id not in summary.agents_used:
                summary.agents_used.append(agent_id)

        if event_type is EventType.MODE_TRANSITION and metadata.get("mode"):
            mode = str(metadata["mode"])
            if mode not in summary.modes_used:
                summary.modes_used.append(mode)


def _detached_copy(event: TraceEvent) -> TraceEvent:
    return replace(
        event,
        inputs=copy.deepcopy(event.inputs),
        outputs=copy.deepcopy(event.outputs),
        metadata=copy.deepcopy(event.metadata),
        children=[],
    )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
