"""SQLite storage implementation."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import StorageError
from ..models import (
    ChatMessage,
    HandoffContext,
    HandoffEvent,
    Trace,
    TraceEvent,
    TraceSummary,
    link_events,
)


class IStorage(Protocol):
    """Persistent storage for traces and handoffs (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Traces
    async def save_trace(self, trace: Trace) -> None:
        """Save a finished trace."""
        ...

    async def get_trace(self, trace_id: str) -> Trace | None:
        """Get a trace by ID."""
        ...

    async def get_session_traces(self, session_id: str) -> list[Trace]:
        """Get all traces of a session (newest first)."""
        ...

    async def get_user_traces(self, user_id: str, limit: int = 10) -> list[Trace]:
        """Get recent traces of a user (newest first)."""
        ...

    # Handoffs
    async def save_handoff(self, context: HandoffContext) -> HandoffEvent:
        """Append a handoff event."""
        ...

    async def get_handoff_history(self, session_id: str) -> list[HandoffEvent]:
        """Get handoffs of a session (oldest first)."""
        ...

    async def get_last_handoff(self, session_id: str) -> HandoffEvent | None:
        """Get the most recent handoff of a session."""
        ...

    async def count_handoffs(
        self,
        session_id: str,
        from_agent: str | None = None,
        to_agent: str | None = None,
    ) -> int:
        """Count handoffs of a session, optionally filtered by agent."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


_TRACE_COLUMNS = "trace_id, session_id, user_id, started_at, ended_at, events, summary"
_HANDOFF_COLUMNS = (
    "id, session_id, from_agent, to_agent, reason, conversation_history, "
    "harness_trace_id, user_intent, created_at"
)


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise StorageError("Storage not initialized")
        return self._conn

    # Traces
    async def save_trace(self, trace: Trace) -> None:
        """Save a finished trace."""
        conn = self._require_conn()

        try:
            await conn.execute(
                f"""
                INSERT INTO traces ({_TRACE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trace.trace_id,
                    trace.session_id,
                    trace.user_id,
                    trace.started_at.isoformat(),
                    trace.ended_at.isoformat() if trace.ended_at else None,
                    json.dumps(trace.to_dict(nested=False)["events"], default=str),
                    json.dumps(trace.summary.to_dict()),
                ),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to insert trace {trace.trace_id}: {e}") from e

    async def get_trace(self, trace_id: str) -> Trace | None:
        """Get a trace by ID."""
        conn = self._require_conn()

        cursor = await conn.execute(
            f"SELECT {_TRACE_COLUMNS} FROM traces WHERE trace_id = ?",
            (trace_id,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return _row_to_trace(row)

    async def get_session_traces(self, session_id: str) -> list[Trace]:
        """Get all traces of a session (newest first)."""
        conn = self._require_conn()

        cursor = await conn.execute(
            f"""
            SELECT {_TRACE_COLUMNS}
            FROM traces
            WHERE session_id = ?
            ORDER BY started_at DESC
            """,
            (session_id,),
        )
        rows = await cursor.fetchall()

        return [_row_to_trace(row) for row in rows]

    async def get_user_traces(self, user_id: str, limit: int = 10) -> list[Trace]:
        """Get recent traces of a user (newest first)."""
        conn = self._require_conn()

        cursor = await conn.execute(
            f"""
            SELECT {_TRACE_COLUMNS}
            FROM traces
            WHERE user_id = ?
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        rows = await cursor.fetchall()

        return [_row_to_trace(row) for row in rows]

    # Handoffs
    async def save_handoff(self, context: HandoffContext) -> HandoffEvent:
        """Append a handoff event."""
        conn = self._require_conn()

        event = HandoffEvent(
            id=str(uuid.uuid4()),
            session_id=context.session_id,
            from_agent=context.from_agent,
            to_agent=context.to_agent,
            reason=context.reason,
            conversation_history=list(context.conversation_history),
            harness_trace_id=context.harness_trace_id,
            user_intent=context.user_intent,
            created_at=datetime.now(timezone.utc),
        )

        try:
            await conn.execute(
                f"""
                INSERT INTO agent_handoffs ({_HANDOFF_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.session_id,
                    event.from_agent,
                    event.to_agent,
                    event.reason,
                    json.dumps([_message_to_dict(m) for m in event.conversation_history]),
                    event.harness_trace_id,
                    event.user_intent,
                    event.created_at.isoformat(),
                ),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to insert handoff event: {e}") from e

        return event

    async def get_handoff_history(self, session_id: str) -> list[HandoffEvent]:
        """Get handoffs of a session (oldest first)."""
        conn = self._require_conn()

        cursor = await conn.execute(
            f"""
            SELECT {_HANDOFF_COLUMNS}
            FROM agent_handoffs
            WHERE session_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (session_id,),
        )
        rows = await cursor.fetchall()

        return [_row_to_handoff(row) for row in rows]

    async def get_last_handoff(self, session_id: str) -> HandoffEvent | None:
        """Get the most recent handoff of a session."""
        conn = self._require_conn()

        cursor = await conn.execute(
            f"""
            SELECT {_HANDOFF_COLUMNS}
            FROM agent_handoffs
            WHERE session_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
            """,
            (session_id,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return _row_to_handoff(row)

    async def count_handoffs(
        self,
        session_id: str,
        from_agent: str | None = None,
        to_agent: str | None = None,
    ) -> int:
        """Count handoffs of a session, optionally filtered by agent."""
        conn = self._require_conn()

        conditions = ["session_id = ?"]
        params: list[str] = [session_id]

        if from_agent:
            conditions.append("from_agent = ?")
            params.append(from_agent)
        if to_agent:
            conditions.append("to_agent = ?")
            params.append(to_agent)

        cursor = await conn.execute(
            f"SELECT COUNT(*) FROM agent_handoffs WHERE {' AND '.join(conditions)}",
            params,
        )
        row = await cursor.fetchone()

        return int(row[0]) if row else 0

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require_conn()

        for table in ["traces", "agent_handoffs"]:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _row_to_trace(row) -> Trace:
    return Trace(
        trace_id=row[0],
        session_id=row[1],
        user_id=row[2],
        started_at=_parse_ts(row[3]),
        ended_at=_parse_ts(row[4]),
        events=link_events([TraceEvent.from_dict(e) for e in json.loads(row[5])]),
        summary=TraceSummary.from_dict(json.loads(row[6])),
    )


def _message_to_dict(message: ChatMessage | dict) -> dict:
    if isinstance(message, ChatMessage):
        return message.to_dict()
    return dict(message)


def _row_to_handoff(row) -> HandoffEvent:
    return HandoffEvent(
        id=row[0],
        session_id=row[1],
        from_agent=row[2],
        to_agent=row[3],
        reason=row[4],
        conversation_history=[ChatMessage.from_dict(m) for m in json.loads(row[5])],
        harness_trace_id=row[6],
        user_intent=row[7],
        created_at=_parse_ts(row[8]),
    )
