"""Persistence collaborators used by the router.

The router only ever calls ``save``/``create``/``update``/``set_online`` and
never reads back, so any object with these methods works. Postgres-backed
implementations live in ``database.py``; the in-memory ones here back the
``store_backend = "memory"`` mode and the tests.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from realtime.calls import CallSession


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    sender_id: str
    receiver_id: str
    text: str
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_wire(self) -> Dict[str, Any]:
        # Key names match what the browser client reads.
        return {
            "_id": self.message_id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


class MessageStore(Protocol):
    def save(self, message: Message) -> Message: ...

    def conversation(self, user_a: str, user_b: str) -> List[Dict[str, Any]]: ...


class CallStore(Protocol):
    def create(self, session: CallSession) -> None: ...

    def update(self, call_id: str, **fields: Any) -> None: ...

    def history(self, user_id: str) -> List[Dict[str, Any]]: ...


class PresenceStore(Protocol):
    def set_online(self, user_id: str, online: bool) -> None: ...


class MemoryMessageStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: List[Message] = []

    def save(self, message: Message) -> Message:
        with self._lock:
            self._messages.append(message)
        return message

    def conversation(self, user_a: str, user_b: str) -> List[Dict[str, Any]]:
        pair = {user_a, user_b}
        with self._lock:
            rows = [m for m in self._messages if {m.sender_id, m.receiver_id} == pair]
        rows.sort(key=lambda m: m.timestamp)
        return [m.to_wire() for m in rows]


class MemoryCallStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Any]] = {}

    def create(self, session: CallSession) -> None:
        with self._lock:
            self._records[session.call_id] = session.to_dict()

    def update(self, call_id: str, **fields: Any) -> None:
        with self._lock:
            record = self._records.get(call_id)
            if record is None:
                raise KeyError(f"unknown call {call_id}")
            record.update(fields)

    def get(self, call_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(call_id)
            return dict(record) if record else None

    def history(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [
                dict(r) for r in self._records.values()
                if user_id in (r.get("caller_id"), r.get("receiver_id"))
            ]
        rows.sort(key=lambda r: r.get("created_at") or 0, reverse=True)
        return rows


class MemoryPresenceStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._online: Dict[str, bool] = {}

    def set_online(self, user_id: str, online: bool) -> None:
        with self._lock:
            self._online[user_id] = bool(online)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return self._online.get(user_id, False)
