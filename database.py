#!/usr/bin/env python3
"""
Relay database helpers (PostgreSQL version)

• Global ThreadedConnectionPool (optional, falls back to direct connects)
• Idempotent schema: messages, calls, user_presence
• Store classes consumed by the signaling router:
    PostgresMessageStore, PostgresCallStore, PostgresPresenceStore
• build_stores(settings) picks postgres or in-memory stores

Store writes run from background tasks, outside any Flask app context, so
connections are checked out per call instead of living on flask.g.
"""

import atexit
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from constants import get_db_connection_string, redact_postgres_dsn, sanitize_postgres_dsn
from realtime.calls import CallSession
from realtime.stores import MemoryCallStore, MemoryMessageStore, MemoryPresenceStore, Message


# ----------------------------------------------------------------------
# Connection helpers
# ----------------------------------------------------------------------

_POOL: ThreadedConnectionPool | None = None
_DSN: str | None = None


def init_db_pool(minconn: int = 1, maxconn: int = 10, dsn: str | None = None) -> None:
    """Initialise a global ThreadedConnectionPool.

    Safe to call multiple times (no-op after first init).
    """
    global _POOL, _DSN
    if _POOL is not None:
        return

    _DSN = str(sanitize_postgres_dsn(dsn or get_db_connection_string()))

    try:
        _POOL = ThreadedConnectionPool(minconn=int(minconn), maxconn=int(maxconn), dsn=_DSN)
        logging.info("✅  Postgres connection pool ready (min=%s max=%s)", minconn, maxconn)
    except psycopg2.Error as e:
        _POOL = None
        logging.warning("⚠️  Could not initialise Postgres pool; falling back to direct connects: %s", e)


def close_db_pool() -> None:
    global _POOL
    if _POOL is not None:
        _POOL.closeall()
        _POOL = None


def _acquire_conn():
    """Acquire a connection either from the pool or by direct connect.

    Returns (conn, from_pool: bool)
    """
    if _POOL is not None:
        return _POOL.getconn(), True
    return psycopg2.connect(_DSN or get_db_connection_string()), False


def _release_conn(conn, from_pool: bool) -> None:
    if conn is None:
        return
    if _POOL is not None and from_pool:
        try:
            # Ensure a clean connection is returned to the pool.
            conn.rollback()
        except psycopg2.Error:
            pass
        _POOL.putconn(conn)
    else:
        conn.close()


@contextmanager
def db_cursor(dict_rows: bool = False):
    """Yield a cursor; commit on success, roll back on error."""
    conn, from_pool = _acquire_conn()
    try:
        with conn.cursor(cursor_factory=RealDictCursor if dict_rows else None) as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _release_conn(conn, from_pool)


# ----------------------------------------------------------------------
# Schema
# ----------------------------------------------------------------------

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          TEXT PRIMARY KEY,
        sender_id   TEXT NOT NULL,
        receiver_id TEXT NOT NULL,
        text        TEXT NOT NULL,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages (sender_id, receiver_id, created_at);",
    """
    CREATE TABLE IF NOT EXISTS calls (
        id               TEXT PRIMARY KEY,
        caller_id        TEXT NOT NULL,
        receiver_id      TEXT NOT NULL,
        call_type        TEXT NOT NULL DEFAULT 'video',
        status           TEXT NOT NULL DEFAULT 'initiated',
        start_time       TIMESTAMPTZ,
        end_time         TIMESTAMPTZ,
        duration_seconds DOUBLE PRECISION NOT NULL DEFAULT 0,
        created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_calls_caller ON calls (caller_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_calls_receiver ON calls (receiver_id, created_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS user_presence (
        user_id   TEXT PRIMARY KEY,
        online    BOOLEAN NOT NULL DEFAULT FALSE,
        last_seen TIMESTAMPTZ
    );
    """,
)


def init_database() -> None:
    with db_cursor() as cur:
        for stmt in _SCHEMA:
            cur.execute(stmt)
    logging.info("✅  Database schema ready")


def _ts(epoch: float | None):
    if epoch is None:
        return None
    return datetime.fromtimestamp(float(epoch), tz=timezone.utc)


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


# ----------------------------------------------------------------------
# Stores
# ----------------------------------------------------------------------

class PostgresMessageStore:
    def save(self, message: Message) -> Message:
        with db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages (id, sender_id, receiver_id, text, created_at)
                VALUES (%s, %s, %s, %s, %s);
                """,
                (message.message_id, message.sender_id, message.receiver_id, message.text, message.timestamp),
            )
        return message

    def conversation(self, user_a: str, user_b: str) -> List[Dict[str, Any]]:
        with db_cursor(dict_rows=True) as cur:
            cur.execute(
                """
                SELECT id, sender_id, receiver_id, text, created_at
                  FROM messages
                 WHERE (sender_id = %s AND receiver_id = %s)
                    OR (sender_id = %s AND receiver_id = %s)
                 ORDER BY created_at ASC;
                """,
                (user_a, user_b, user_b, user_a),
            )
            rows = cur.fetchall() or []
        return [
            {
                "_id": r["id"],
                "senderId": r["sender_id"],
                "receiverId": r["receiver_id"],
                "text": r["text"],
                "timestamp": _iso(r["created_at"]),
            }
            for r in rows
        ]


class PostgresCallStore:
    _UPDATABLE = {"status", "start_time", "end_time", "duration_seconds"}
    _EPOCH_COLUMNS = {"start_time", "end_time"}

    def create(self, session: CallSession) -> None:
        with db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO calls (id, caller_id, receiver_id, call_type, status,
                                   start_time, end_time, duration_seconds, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO NOTHING;
                """,
                (
                    session.call_id,
                    session.caller_id,
                    session.receiver_id,
                    session.call_type,
                    session.status.value,
                    _ts(session.start_time),
                    _ts(session.end_time),
                    session.duration_seconds,
                    _ts(session.created_at),
                ),
            )

    def update(self, call_id: str, **fields: Any) -> None:
        cols = [k for k in fields if k in self._UPDATABLE]
        if not cols:
            return
        values = [_ts(fields[k]) if k in self._EPOCH_COLUMNS else fields[k] for k in cols]
        assignments = ", ".join(f"{k} = %s" for k in cols)
        with db_cursor() as cur:
            cur.execute(f"UPDATE calls SET {assignments} WHERE id = %s;", (*values, call_id))
            if cur.rowcount == 0:
                logging.warning("Call record %s not found for update", call_id)

    def history(self, user_id: str) -> List[Dict[str, Any]]:
        with db_cursor(dict_rows=True) as cur:
            cur.execute(
                """
                SELECT id, caller_id, receiver_id, call_type, status,
                       start_time, end_time, duration_seconds, created_at
                  FROM calls
                 WHERE caller_id = %s OR receiver_id = %s
                 ORDER BY created_at DESC;
                """,
                (user_id, user_id),
            )
            rows = cur.fetchall() or []
        return [
            {
                "call_id": r["id"],
                "caller_id": r["caller_id"],
                "receiver_id": r["receiver_id"],
                "call_type": r["call_type"],
                "status": r["status"],
                "start_time": _iso(r["start_time"]),
                "end_time": _iso(r["end_time"]),
                "duration_seconds": float(r["duration_seconds"] or 0),
                "created_at": _iso(r["created_at"]),
            }
            for r in rows
        ]


class PostgresPresenceStore:
    def set_online(self, user_id: str, online: bool) -> None:
        with db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO user_presence (user_id, online, last_seen)
                VALUES (%s, %s, NOW())
                ON CONFLICT (user_id)
                DO UPDATE SET online = EXCLUDED.online, last_seen = NOW();
                """,
                (user_id, bool(online)),
            )


def build_stores(settings: dict):
    """Return (message_store, call_store, presence_store) for the configured backend."""
    backend = str(settings.get("store_backend") or "postgres").strip().lower()
    if backend == "memory":
        logging.info("Using in-memory stores (history is lost on restart)")
        return MemoryMessageStore(), MemoryCallStore(), MemoryPresenceStore()

    if backend != "postgres":
        raise ValueError(f"Unknown store_backend: {backend!r}")

    dsn = get_db_connection_string(settings)
    logging.info("Using Postgres stores: %s", redact_postgres_dsn(dsn))
    init_db_pool(
        minconn=int(settings.get("db_pool_min", 1) or 1),
        maxconn=int(settings.get("db_pool_max", 10) or 10),
        dsn=dsn,
    )
    atexit.register(close_db_pool)
    try:
        init_database()
    except psycopg2.Error as e:
        # Relay keeps working; store writes will fail and be logged.
        logging.error("Could not initialise database schema: %s", e)
    return PostgresMessageStore(), PostgresCallStore(), PostgresPresenceStore()
