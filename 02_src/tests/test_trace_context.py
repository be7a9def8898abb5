"""Tests for TraceContext."""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from agent_router.errors import StorageError, TraceError
from agent_router.models import EventType
from agent_router.tracker import TraceContext, get_active_trace


class TestTraceLifecycle:
    """Tests for start()/end()."""

    async def test_start_installs_active_trace(self, tracer):
        """Test that start creates a trace and binds it to the current task."""
        trace = tracer.start("session-1", "user-1")

        assert trace.trace_id.startswith("trace_")
        assert trace.session_id == "session-1"
        assert trace.ended_at is None
        assert get_active_trace() is tracer

    async def test_end_returns_frozen_copy(self, tracer):
        """Test that end returns a finished copy and releases the context."""
        live = tracer.start("session-1", "user-1")
        tracer.log(EventType.USER_INPUT, {"text": "hi"})

        trace = await tracer.end()

        assert trace is not live
        assert trace.ended_at is not None
        assert trace.summary.total_events == 1
        assert not tracer.is_active
        assert get_active_trace() is None

    async def test_end_without_trace_raises(self, tracer):
        """Test that ending without a started trace is an error."""
        with pytest.raises(TraceError):
            await tracer.end()

    async def test_end_persists_trace(self, tracer, storage):
        """Test that the finished trace is saved to storage."""
        tracer.start("session-1", "user-1")
        tracer.log(EventType.USER_INPUT)
        trace = await tracer.end()

        stored = await storage.get_trace(trace.trace_id)
        assert stored is not None
        assert stored.summary.total_events == 1
        assert stored.events[0].event_type is EventType.USER_INPUT

    async def test_persistence_failure_is_logged(self, caplog):
        """Test that a failing store does not break end()."""
        store = Mock()
        store.save_trace = AsyncMock(side_effect=StorageError("disk full"))
        tracer = TraceContext(store)
        tracer.start("session-1", "user-1")

        with caplog.at_level(logging.ERROR):
            trace = await tracer.end()

        assert trace.ended_at is not None
        assert "Error persisting trace" in caplog.text

    async def test_restart_replaces_unfinished_trace(self, tracer, caplog):
        """Test that starting again drops the unfinished trace with a warning."""
        first = tracer.start("session-1", "user-1")
        tracer.log(EventType.USER_INPUT)

        with caplog.at_level(logging.WARNING):
            second = tracer.start("session-2", "user-1")

        assert second.trace_id != first.trace_id
        assert tracer.current is second
        assert "replaced before end()" in caplog.text

    async def test_works_without_storage(self):
        """Test that a trace without store can still be ended."""
        tracer = TraceContext()
        tracer.start("session-1", "user-1")
        trace = await tracer.end()
        assert trace.session_id == "session-1"


class TestTraceLogging:
    """Tests for log()."""

    async def test_log_without_trace_is_noop(self, tracer):
        """Test that log returns an empty span id with no trace."""
        assert tracer.log(EventType.USER_INPUT) == ""
        assert tracer.current is None

    async def test_open_span_without_trace_is_noop(self, tracer):
        """Test that spans cannot be opened without a trace."""
        assert tracer.open_span(EventType.AGENT_ROUTING) == ""
        assert tracer.span_depth == 0

    async def test_close_span_without_trace_is_noop(self, tracer):
        """Test that closing a span with no trace does nothing."""
        tracer.close_span("span_missing")

    async def test_root_events_are_appended(self, tracer):
        """Test that events outside spans become roots."""
        trace = tracer.start("session-1", "user-1")
        first = tracer.log(EventType.USER_INPUT)
        second = tracer.log(EventType.AGENT_RESPONSE)

        assert [e.span_id for e in trace.events] == [first, second]
        assert all(e.parent_id is None for e in trace.events)

    async def test_string_event_type(self, tracer):
        """Test that event types may be given as strings."""
        trace = tracer.start("session-1", "user-1")
        tracer.log("TOOL_INVOCATION")
        assert trace.events[0].event_type is EventType.TOOL_INVOCATION

    async def test_unknown_event_type_is_dropped(self, tracer, caplog):
        """Test that an unknown event type name is logged and ignored."""
        trace = tracer.start("session-1", "user-1")

        with caplog.at_level(logging.WARNING):
            span_id = tracer.log("CONTEXT_BUILD")
            opened = tracer.open_span("CONTEXT_BUILD")
            tracer.log(EventType.USER_INPUT)

        assert span_id == ""
        assert opened == ""
        assert [e.event_type for e in trace.events] == [EventType.USER_INPUT]
        assert trace.summary.total_events == 1
        assert "Unknown trace event type" in caplog.text


    async def test_summary_aggregates_metadata(self, tracer):
        """Test that duration, tokens and cost are summed."""
        trace = tracer.start("session-1", "user-1")
        tracer.log(EventType.TOOL_INVOCATION, metadata={"duration_ms": 10, "token_count": 100})
        tracer.log(
            EventType.TOOL_INVOCATION,
            metadata={"duration_ms": 5, "token_count": 20, "cost_usd": 0.01},
        )

        assert trace.summary.total_duration_ms == 15
        assert trace.summary.total_tokens == 120
        assert trace.summary.total_cost_usd == pytest.approx(0.01)

    async def test_errors_and_agents_summary(self, tracer):
        """Test error counting and distinct agents in first-seen order."""
        trace = tracer.start("session-1", "user-1")
        tracer.log(EventType.ERROR)
        tracer.log(EventType.AGENT_ROUTING, metadata={"agent_id": "dojo"})
        tracer.log(EventType.AGENT_ROUTING, metadata={"agent_id": "librarian"})
        tracer.log(EventType.AGENT_ROUTING, metadata={"agent_id": "dojo"})

        assert trace.summary.errors == 1
        assert trace.summary.agents_used == ["dojo", "librarian"]

    async def test_modes_summary(self, tracer):
        """Test that mode transitions record distinct modes."""
        trace = tracer.start("session-1", "user-1")
        tracer.log(EventType.MODE_TRANSITION, metadata={"mode": "explore"})
        tracer.log(EventType.MODE_TRANSITION, metadata={"mode": "explore"})
        assert trace.summary.modes_used == ["explore"]


class TestTraceSpans:
    """Tests for open_span()/close_span()."""

    async def test_span_round_trip(self, tracer):
        """Test that two nested spans yield one root with one child."""
        tracer.start("session-1", "user-1")
        a = tracer.open_span(EventType.AGENT_ROUTING)
        b = tracer.open_span(EventType.TOOL_INVOCATION)
        tracer.close_span(b)
        tracer.close_span(a)

        trace = await tracer.end()

        assert len(trace.events) == 1
        root = trace.events[0]
        assert root.span_id == a
        assert [c.span_id for c in root.children] == [b]
        assert root.children[0].parent_id == a
        assert trace.summary.total_events == 2

    async def test_events_nest_under_open_span(self, tracer):
        """Test that log() attaches to the innermost span."""
        trace = tracer.start("session-1", "user-1")
        span = tracer.open_span(EventType.AGENT_ROUTING)
        child = tracer.log(EventType.TOOL_INVOCATION)
        tracer.close_span(span)
        after = tracer.log(EventType.AGENT_RESPONSE)

        assert trace.events[0].children[0].span_id == child
        assert trace.events[1].span_id == after

    async def test_close_merges_outputs_and_metadata(self, tracer):
        """Test that close_span updates the span and the summary."""
        trace = tracer.start("session-1", "user-1")
        span = tracer.open_span(EventType.AGENT_ROUTING, {"query": "q"}, {"model": "m"})
        tracer.close_span(span, {"agent_id": "librarian"}, {"agent_id": "librarian", "duration_ms": 7})

        event = trace.events[0]
        assert event.inputs == {"query": "q"}
        assert event.outputs == {"agent_id": "librarian"}
        assert event.metadata == {"model": "m", "agent_id": "librarian", "duration_ms": 7}
        assert trace.summary.agents_used == ["librarian"]
        assert trace.summary.total_duration_ms == 7

    async def test_close_on_empty_stack_warns(self, tracer, caplog):
        """Test that closing with nothing open is tolerated."""
        tracer.start("session-1", "user-1")
        with caplog.at_level(logging.WARNING):
            tracer.close_span("span_unknown")
        assert "Span stack is empty" in caplog.text

    async def test_mismatched_close_pops_top(self, tracer, caplog):
        """Test that a mismatch is logged and the top span is popped anyway."""
        trace = tracer.start("session-1", "user-1")
        a = tracer.open_span(EventType.AGENT_ROUTING)
        tracer.open_span(EventType.TOOL_INVOCATION)

        with caplog.at_level(logging.WARNING):
            tracer.close_span(a, {"done": True})

        assert "Span mismatch" in caplog.text
        assert tracer.span_depth == 1
        assert trace.events[0].outputs == {"done": True}

    async def test_strict_mismatch_raises(self, storage):
        """Test that a strict context rejects out-of-order closes."""
        tracer = TraceContext(storage, strict=True)
        tracer.start("session-1", "user-1")
        a = tracer.open_span(EventType.AGENT_ROUTING)
        tracer.open_span(EventType.TOOL_INVOCATION)

        with pytest.raises(TraceError, match="Span mismatch"):
            tracer.close_span(a)
        assert tracer.span_depth == 2

    async def test_deep_nesting(self, tracer):
        """Test that deeply nested spans keep their chain."""
        tracer.start("session-1", "user-1")
        ids = [tracer.open_span(EventType.TOOL_INVOCATION, {"depth": i}) for i in range(50)]
        for span_id in reversed(ids):
            tracer.close_span(span_id)

        trace = await tracer.end()

        node = trace.events[0]
        depth = 1
        while node.children:
            node = node.children[0]
            depth += 1
        assert depth == 50
        assert node.span_id == ids[-1]
        assert trace.summary.total_events == 50

    async def test_very_deep_nesting_round_trip(self, tracer, storage):
        """Test that a chain far deeper than the recursion limit ends, persists and reloads."""
        depth = 1500
        tracer.start("session-1", "user-1")
        ids = [tracer.open_span(EventType.TOOL_INVOCATION, {"depth": i}) for i in range(depth)]
        for span_id in reversed(ids):
            tracer.close_span(span_id)

        trace = await tracer.end()
        stored = await storage.get_trace(trace.trace_id)

        for root in (trace.events[0], stored.events[0]):
            node, seen = root, 1
            while node.children:
                node = node.children[0]
                seen += 1
            assert seen == depth
            assert node.span_id == ids[-1]
            assert node.inputs == {"depth": depth - 1}
        assert stored.summary.total_events == depth
        assert len(trace.to_dict()["events"]) == 1


    async def test_span_context_manager(self, tracer):
        """Test that span() closes the span and records the duration."""
        trace = tracer.start("session-1", "user-1")
        async with tracer.span(EventType.AGENT_HANDOFF, {"to": "librarian"}) as span_id:
            tracer.log(EventType.TOOL_INVOCATION)

        event = trace.events[0]
        assert event.span_id == span_id
        assert len(event.children) == 1
        assert "duration_ms" in event.metadata
        assert tracer.span_depth == 0

    async def test_span_context_manager_records_error(self, tracer):
        """Test that span() records the exception and re-raises it."""
        trace = tracer.start("session-1", "user-1")
        with pytest.raises(ValueError):
            async with tracer.span(EventType.AGENT_HANDOFF):
                raise ValueError("boom")

        event = trace.events[0]
        assert event.outputs == {"error": True}
        assert event.metadata["error_message"] == "boom"
        assert tracer.span_depth == 0


class TestTraceIsolation:
    """Tests for per-task trace handles."""

    async def test_concurrent_tasks_have_own_traces(self):
        """Test that concurrent requests never see each other's trace."""

        async def request(session_id: str) -> str:
            tracer = TraceContext()
            tracer.start(session_id, "user-1")
            await asyncio.sleep(0)
            get_active_trace().log(EventType.USER_INPUT, {"session": session_id})
            await asyncio.sleep(0)
            trace = await tracer.end()
            return trace.events[0].inputs["session"]

        results = await asyncio.gather(request("a"), request("b"), request("c"))
        assert results == ["a", "b", "c"]

    async def test_no_active_trace_by_default(self):
        """Test that a fresh task has no active trace."""
        assert get_active_trace() is None
