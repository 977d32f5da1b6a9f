"""Call session lifecycle.

One ``CallSession`` per call attempt. Status only moves forward:

    initiated -> accepted | rejected | missed
    accepted  -> ended | missed

``rejected``, ``missed`` and ``ended`` are terminal. Every transition method
returns True when it changed the session and False when it was a no-op, so
callers can decide whether there is anything to persist.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class CallStatus(str, Enum):
    INITIATED = "initiated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MISSED = "missed"
    ENDED = "ended"


TERMINAL_STATUSES = frozenset({CallStatus.REJECTED, CallStatus.MISSED, CallStatus.ENDED})


def _new_call_id() -> str:
    return uuid.uuid4().hex


@dataclass
class CallSession:
    caller_id: str
    receiver_id: str
    caller_handle: str
    receiver_handle: Optional[str] = None
    call_type: str = "video"
    call_id: str = field(default_factory=_new_call_id)
    status: CallStatus = CallStatus.INITIATED
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: float = 0
    created_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def handles(self) -> tuple[str, ...]:
        return tuple(h for h in (self.caller_handle, self.receiver_handle) if h)

    def other_handle(self, handle: str) -> Optional[str]:
        """Return the peer's handle as seen from ``handle``."""
        if handle == self.caller_handle:
            return self.receiver_handle
        if handle == self.receiver_handle:
            return self.caller_handle
        return None

    def involves(self, handle: str) -> bool:
        return handle in self.handles()

    # ── transitions ────────────────────────────────────────────────────

    def accept(self, now: Optional[float] = None) -> bool:
        if self.status is not CallStatus.INITIATED:
            return False
        self.status = CallStatus.ACCEPTED
        self.start_time = time.time() if now is None else now
        return True

    def reject(self) -> bool:
        if self.status is not CallStatus.INITIATED:
            return False
        self.status = CallStatus.REJECTED
        return True

    def mark_missed(self) -> bool:
        """Callee could not be reached (or never answered)."""
        if self.status is not CallStatus.INITIATED:
            return False
        self.status = CallStatus.MISSED
        return True

    def terminate(self, now: Optional[float] = None) -> bool:
        """End the call from either side.

        A call that was actually started ends as ``ended`` with its duration;
        anything torn down before start counts as ``missed``.
        """
        if self.is_terminal:
            return False
        self.end_time = time.time() if now is None else now
        if self.start_time is not None:
            self.duration_seconds = max(0.0, self.end_time - self.start_time)
            self.status = CallStatus.ENDED
        else:
            self.duration_seconds = 0
            self.status = CallStatus.MISSED
        return True

    # ── persistence helpers ────────────────────────────────────────────

    def record_fields(self) -> Dict[str, Any]:
        """Mutable columns of the persisted call record."""
        return {
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": self.duration_seconds,
        }

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "call_id": self.call_id,
            "caller_id": self.caller_id,
            "receiver_id": self.receiver_id,
            "call_type": self.call_type,
            "created_at": self.created_at,
        }
        out.update(self.record_fields())
        return out
