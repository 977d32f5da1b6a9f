"""In-memory relay state: who is connected, who is registered, who is in a call.

Neither class locks on its own. Both are owned by a single
``SignalingRouter`` which serializes every access behind its lock.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from realtime.calls import CallSession


class ConnectionRegistry:
    """UserId -> ConnectionHandle, plus the set of live handles.

    At most one handle per user and at most one user per handle.
    """

    def __init__(self) -> None:
        self._by_user: Dict[str, str] = {}
        self._live: Set[str] = set()

    # ── connection lifecycle ───────────────────────────────────────────

    def attach(self, handle: str) -> None:
        self._live.add(handle)

    def detach(self, handle: str) -> None:
        self._live.discard(handle)

    def is_live(self, handle: Optional[str]) -> bool:
        return bool(handle) and handle in self._live

    def live_handles(self) -> List[str]:
        return sorted(self._live)

    # ── user registration ──────────────────────────────────────────────

    def register(self, user_id: str, handle: str) -> Optional[str]:
        """Map ``user_id`` to ``handle`` (last register wins).

        Returns the user previously registered on this same handle when it
        was a *different* user; that user is no longer registered afterwards.
        """
        self._live.add(handle)
        displaced = self.user_for(handle)
        if displaced is not None and displaced != user_id:
            del self._by_user[displaced]
        else:
            displaced = None
        self._by_user[user_id] = handle
        return displaced

    def lookup(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        return self._by_user.get(user_id)

    def user_for(self, handle: str) -> Optional[str]:
        for user_id, h in self._by_user.items():
            if h == handle:
                return user_id
        return None

    def unregister_by_handle(self, handle: str) -> Optional[str]:
        """Remove the user registered on ``handle`` and return it (if any)."""
        user_id = self.user_for(handle)
        if user_id is not None:
            del self._by_user[user_id]
        return user_id

    def online_users(self) -> List[str]:
        return sorted(self._by_user)

    def __len__(self) -> int:
        return len(self._by_user)


class CallSessionTable:
    """ConnectionHandle -> CallSession; both participants share one instance."""

    def __init__(self) -> None:
        self._by_handle: Dict[str, CallSession] = {}

    def get(self, handle: Optional[str]) -> Optional[CallSession]:
        if not handle:
            return None
        return self._by_handle.get(handle)

    def add(self, session: CallSession) -> None:
        for handle in session.handles():
            self._by_handle[handle] = session

    def bind(self, handle: str, session: CallSession) -> None:
        self._by_handle[handle] = session

    def remove(self, session: CallSession) -> None:
        """Drop every key that still points at ``session``.

        A freed handle that is still a participant of another live session
        (a call that rang while it was busy) is re-keyed to that session.
        """
        freed = []
        for handle in session.handles():
            if self._by_handle.get(handle) is session:
                del self._by_handle[handle]
                freed.append(handle)
        for handle in freed:
            for other in self.involving(handle):
                if not other.is_terminal:
                    self._by_handle[handle] = other
                    break

    def involving(self, handle: str) -> List[CallSession]:
        """Every session ``handle`` takes part in, keyed by it or not."""
        return [s for s in self.sessions() if s.involves(handle)]

    def find(self, handle: str, peer_handle: Optional[str] = None) -> Optional[CallSession]:
        """Locate the session shared by ``handle`` and ``peer_handle``.

        Falls back to whatever session ``handle`` is in when the peer is
        unknown or the two handles are not in a session together.
        """
        own = self._by_handle.get(handle)
        if peer_handle:
            if own is not None and own.other_handle(handle) == peer_handle:
                return own
            theirs = self._by_handle.get(peer_handle)
            if theirs is not None and theirs.other_handle(peer_handle) == handle:
                return theirs
        return own

    def sessions(self) -> List[CallSession]:
        seen: Dict[int, CallSession] = {}
        for session in self._by_handle.values():
            seen.setdefault(id(session), session)
        return list(seen.values())

    def __contains__(self, handle: str) -> bool:
        return handle in self._by_handle

    def __len__(self) -> int:
        return len(self._by_handle)
