"""Value types passed between the router and the Socket.IO layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Union

from realtime.calls import CallSession


# ── recipients ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ByUser:
    """Address a registered user; resolves through the registry."""
    user_id: str


@dataclass(frozen=True)
class ByConnection:
    """Address a raw connection handle (Socket.IO sid)."""
    handle: str


Target = Union[ByUser, ByConnection]


# ── outputs ────────────────────────────────────────────────────────────

@dataclass
class Outbound:
    """One event to emit.

    ``to`` is a connection handle; ``None`` means broadcast to every
    connected client. ``payload`` of ``None`` emits the bare event.
    """
    event: str
    payload: Any = None
    to: Optional[str] = None

    @property
    def is_broadcast(self) -> bool:
        return self.to is None


Effect = Callable[[], Any]


@dataclass
class Dispatch:
    """Result of handling one inbound event."""
    outbound: List[Outbound] = field(default_factory=list)
    effects: List[Effect] = field(default_factory=list)
    session: Optional[CallSession] = None

    def emit(self, event: str, payload: Any = None, to: Optional[str] = None) -> None:
        self.outbound.append(Outbound(event, payload, to))

    def defer(self, fn: Effect) -> None:
        self.effects.append(fn)

    def extend(self, other: "Dispatch") -> None:
        self.outbound.extend(other.outbound)
        self.effects.extend(other.effects)
