from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

import database
from realtime.calls import CallSession
from realtime.stores import MemoryCallStore, MemoryMessageStore, MemoryPresenceStore, Message


class FakeCursor:
    def __init__(self, rows=None, rowcount=1):
        self.executed = []
        self.rows = rows or []
        self.rowcount = rowcount

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))

    def fetchall(self):
        return self.rows


@pytest.fixture
def cursor(monkeypatch):
    cur = FakeCursor()

    @contextmanager
    def fake_db_cursor(dict_rows=False):
        yield cur

    monkeypatch.setattr(database, "db_cursor", fake_db_cursor)
    return cur


def test_build_stores_memory():
    message_store, call_store, presence_store = database.build_stores({"store_backend": "memory"})
    assert isinstance(message_store, MemoryMessageStore)
    assert isinstance(call_store, MemoryCallStore)
    assert isinstance(presence_store, MemoryPresenceStore)


def test_build_stores_rejects_unknown_backend():
    with pytest.raises(ValueError):
        database.build_stores({"store_backend": "mongo"})


def test_message_save(cursor):
    msg = Message(sender_id="alice", receiver_id="bob", text="hi")
    database.PostgresMessageStore().save(msg)
    sql, params = cursor.executed[0]
    assert sql.startswith("INSERT INTO messages")
    assert params == (msg.message_id, "alice", "bob", "hi", msg.timestamp)


def test_conversation_maps_rows(cursor):
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cursor.rows = [{"id": "m1", "sender_id": "bob", "receiver_id": "alice", "text": "yo", "created_at": ts}]
    rows = database.PostgresMessageStore().conversation("alice", "bob")
    assert rows == [{
        "_id": "m1",
        "senderId": "bob",
        "receiverId": "alice",
        "text": "yo",
        "timestamp": ts.isoformat(),
    }]
    assert cursor.executed[0][1] == ("alice", "bob", "bob", "alice")


def test_call_create_converts_epochs(cursor):
    session = CallSession(caller_id="alice", receiver_id="bob", caller_handle="s1", created_at=0.0)
    database.PostgresCallStore().create(session)
    params = cursor.executed[0][1]
    assert params[0] == session.call_id
    assert params[4] == "initiated"
    assert params[5] is None
    assert params[8] == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_call_update_only_known_columns(cursor):
    database.PostgresCallStore().update("c1", status="ended", start_time=10.0, duration_seconds=5, bogus=1)
    sql, params = cursor.executed[0]
    assert sql == "UPDATE calls SET status = %s, start_time = %s, duration_seconds = %s WHERE id = %s;"
    assert params == ("ended", datetime.fromtimestamp(10.0, tz=timezone.utc), 5, "c1")


def test_call_update_without_columns_is_noop(cursor):
    database.PostgresCallStore().update("c1", bogus=1)
    assert cursor.executed == []


def test_presence_upsert(cursor):
    database.PostgresPresenceStore().set_online("alice", 1)
    sql, params = cursor.executed[0]
    assert "ON CONFLICT (user_id)" in sql
    assert params == ("alice", True)
