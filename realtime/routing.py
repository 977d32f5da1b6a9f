"""Signaling router.

Owns the connection registry and the call session table and turns each
inbound Socket.IO event into a ``Dispatch``: the events to emit plus the
persistence effects to run afterwards. Handlers never talk to the network
or the database themselves, which keeps them testable without a server.

All state access goes through ``self.lock``. ``deliver`` takes the same lock
and re-checks each recipient right before sending, so an event addressed to
a connection that dropped in the meantime is silently discarded.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from constants import (
    END_REASON_NO_ANSWER,
    END_REASON_PEER_DISCONNECTED,
    END_REASON_SUPERSEDED,
    EV_ANSWER_CALL,
    EV_CALL_ACCEPTED,
    EV_CALL_ENDED,
    EV_CALL_REJECTED,
    EV_CALL_USER,
    EV_END_CALL,
    EV_INCOMING_CALL,
    EV_LOGOUT,
    EV_MESSAGE_SENT,
    EV_MUTE_STATUS,
    EV_PEER_MUTE_STATUS,
    EV_RECEIVE_MESSAGE,
    EV_REGISTER_USER,
    EV_REJECT_CALL,
    EV_SEND_MESSAGE,
    EV_STOP_TYPING,
    EV_TYPING,
    EV_USER_STOP_TYPING,
    EV_USER_TYPING,
)
from realtime.broadcast import PresenceBroadcaster
from realtime.calls import CallSession, CallStatus
from realtime.events import ByConnection, ByUser, Dispatch, Target
from realtime.state import CallSessionTable, ConnectionRegistry
from realtime.stores import Message

logger = logging.getLogger(__name__)

EV_CONNECT = "connect"
EV_DISCONNECT = "disconnect"

Sender = Callable[[str, Any, Optional[str]], None]


def _fields(data) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {}


class SignalingRouter:
    def __init__(
        self,
        message_store=None,
        call_store=None,
        presence_store=None,
        *,
        end_calls_on_disconnect: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = ConnectionRegistry()
        self.calls = CallSessionTable()
        self.presence = PresenceBroadcaster(presence_store)
        self.message_store = message_store
        self.call_store = call_store
        self.end_calls_on_disconnect = end_calls_on_disconnect
        self.clock = clock
        self.lock = threading.RLock()

        self._handlers: Dict[str, Callable[[str, Any], Dispatch]] = {
            EV_CONNECT: self.on_connect,
            EV_DISCONNECT: self.on_disconnect,
            EV_REGISTER_USER: self.on_register_user,
            EV_LOGOUT: self.on_logout,
            EV_SEND_MESSAGE: self.on_send_message,
            EV_CALL_USER: self.on_call_user,
            EV_ANSWER_CALL: self.on_answer_call,
            EV_REJECT_CALL: self.on_reject_call,
            EV_END_CALL: self.on_end_call,
            EV_TYPING: self.on_typing,
            EV_STOP_TYPING: self.on_stop_typing,
            EV_MUTE_STATUS: self.on_mute_status,
        }

    @property
    def events(self) -> list[str]:
        return list(self._handlers)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def dispatch(self, event: str, handle: str, data=None) -> Dispatch:
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("No handler for event %r from %s", event, handle)
            return Dispatch()
        with self.lock:
            return handler(handle, data)

    def deliver(self, dispatch: Dispatch, send: Sender) -> int:
        """Emit ``dispatch.outbound`` through ``send(event, payload, to)``.

        Returns how many events were actually sent.
        """
        sent = 0
        with self.lock:
            for out in dispatch.outbound:
                if not out.is_broadcast and not self.registry.is_live(out.to):
                    logger.debug("Dropping %s for gone connection %s", out.event, out.to)
                    continue
                send(out.event, out.payload, out.to)
                sent += 1
        return sent

    def handle(self, event: str, handle: str, data, send: Sender) -> Dispatch:
        with self.lock:
            result = self.dispatch(event, handle, data)
            self.deliver(result, send)
        return result

    # ------------------------------------------------------------------
    # Target resolution
    # ------------------------------------------------------------------

    def parse_target(self, raw) -> Optional[Target]:
        """Interpret a lenient ``to`` value.

        Clients address the peer either by user id (caller side) or by the
        socket id they saw in ``incoming-call`` (callee side). A known user
        id wins; anything else is taken as a connection handle.
        """
        if raw is None or raw == "":
            return None
        raw = str(raw)
        if self.registry.lookup(raw) is not None:
            return ByUser(raw)
        return ByConnection(raw)

    def resolve(self, target: Optional[Target]) -> Optional[str]:
        if isinstance(target, ByUser):
            return self.registry.lookup(target.user_id)
        if isinstance(target, ByConnection):
            return target.handle if self.registry.is_live(target.handle) else None
        return None

    # ------------------------------------------------------------------
    # Connection lifecycle + presence
    # ------------------------------------------------------------------

    def on_connect(self, handle: str, data=None) -> Dispatch:
        self.registry.attach(handle)
        return Dispatch()

    def on_register_user(self, handle: str, data) -> Dispatch:
        user_id = data if isinstance(data, (str, int)) else _fields(data).get("userId")
        if user_id is None or isinstance(user_id, bool) or str(user_id) == "":
            logger.warning("register-user without a userId from %s", handle)
            return Dispatch()
        user_id = str(user_id)

        out = Dispatch()
        previous = self.registry.lookup(user_id)
        if previous and previous != handle:
            logger.info("User %s re-registered: %s -> %s", user_id, previous, handle)
        displaced = self.registry.register(user_id, handle)
        if displaced:
            out.extend(self.presence.announce(displaced, False))
        logger.info("User registered: %s -> %s", user_id, handle)
        out.extend(self.presence.announce(user_id, True))
        return out

    def on_logout(self, handle: str, data=None) -> Dispatch:
        return self._release(handle)

    def on_disconnect(self, handle: str, data=None) -> Dispatch:
        out = self._release(handle)
        self.registry.detach(handle)
        logger.info("Client disconnected: %s", handle)
        return out

    def _release(self, handle: str) -> Dispatch:
        out = Dispatch()
        if self.end_calls_on_disconnect:
            out.extend(self._hang_up(handle, END_REASON_PEER_DISCONNECTED))
        user_id = self.registry.unregister_by_handle(handle)
        if user_id is not None:
            out.extend(self.presence.announce(user_id, False))
        return out

    # ------------------------------------------------------------------
    # Chat relay
    # ------------------------------------------------------------------

    def on_send_message(self, handle: str, data) -> Dispatch:
        d = _fields(data)
        sender_id, receiver_id, text = d.get("senderId"), d.get("receiverId"), d.get("text")
        if not sender_id or not receiver_id or text is None:
            logger.warning("Malformed send-message from %s", handle)
            return Dispatch()

        out = Dispatch()
        message = Message(sender_id=str(sender_id), receiver_id=str(receiver_id), text=str(text))
        if self.message_store is not None:
            out.defer(functools.partial(self.message_store.save, message))

        wire = message.to_wire()
        receiver_handle = self.resolve(ByUser(message.receiver_id))
        if receiver_handle:
            out.emit(EV_RECEIVE_MESSAGE, wire, to=receiver_handle)
        out.emit(EV_MESSAGE_SENT, wire, to=handle)
        return out

    def on_typing(self, handle: str, data) -> Dispatch:
        return self._relay_typing(handle, data, EV_USER_TYPING)

    def on_stop_typing(self, handle: str, data) -> Dispatch:
        return self._relay_typing(handle, data, EV_USER_STOP_TYPING)

    def _relay_typing(self, handle: str, data, event: str) -> Dispatch:
        d = _fields(data)
        out = Dispatch()
        receiver_handle = self.resolve(ByUser(str(d.get("receiverId") or "")))
        if receiver_handle:
            out.emit(event, {"senderId": d.get("senderId")}, to=receiver_handle)
        return out

    # ------------------------------------------------------------------
    # Call signaling
    # ------------------------------------------------------------------

    def on_call_user(self, handle: str, data) -> Dispatch:
        d = _fields(data)
        callee_id = d.get("userToCall")
        if not callee_id:
            logger.warning("call-user without userToCall from %s", handle)
            return Dispatch()

        out = Dispatch()
        # Any call this handle is still part of (as caller or ringing callee) ends here.
        out.extend(self._hang_up(handle, END_REASON_SUPERSEDED))

        session = CallSession(
            caller_id=self.registry.user_for(handle) or handle,
            receiver_id=str(callee_id),
            caller_handle=handle,
            call_type=str(d.get("callType") or "video"),
            created_at=self.clock(),
        )
        out.session = session

        callee_handle = self.resolve(ByUser(session.receiver_id))
        if callee_handle is None:
            session.mark_missed()
            self._persist_new(session, out)
            logger.info("Call %s to %s missed: callee offline", session.call_id, session.receiver_id)
            return out

        session.receiver_handle = callee_handle
        self.calls.bind(handle, session)
        if callee_handle in self.calls:
            # Callee is busy; their client answers with reject-call.
            logger.info("Callee %s already in a call", session.receiver_id)
        else:
            self.calls.bind(callee_handle, session)
        self._persist_new(session, out)

        out.emit(
            EV_INCOMING_CALL,
            {
                "signal": d.get("signalData"),
                "from": d.get("from") or handle,
                "name": d.get("name"),
                "callType": d.get("callType"),
                "callId": session.call_id,
            },
            to=callee_handle,
        )
        logger.info("Call %s: %s -> %s", session.call_id, session.caller_id, session.receiver_id)
        return out

    def on_answer_call(self, handle: str, data) -> Dispatch:
        d = _fields(data)
        out = Dispatch()
        peer = self.resolve(self.parse_target(d.get("to")))

        session = self.calls.find(handle, peer)
        call_id = d.get("callId")
        if session is not None and call_id and call_id != session.call_id:
            logger.debug("answer-call for stale call %s", call_id)
            session = None

        if session is not None and handle != session.caller_handle:
            if session.accept(self.clock()):
                self._persist_update(session, out)
                logger.info("Call %s accepted", session.call_id)
        out.session = session

        if peer:
            out.emit(EV_CALL_ACCEPTED, {"signal": d.get("signal"), "name": d.get("name")}, to=peer)
        return out

    def on_reject_call(self, handle: str, data) -> Dispatch:
        d = _fields(data)
        out = Dispatch()
        peer = self.resolve(self.parse_target(d.get("to")))

        session = self.calls.find(handle, peer)
        if session is not None and session.reject():
            self.calls.remove(session)
            self._persist_update(session, out)
            logger.info("Call %s rejected", session.call_id)
        out.session = session

        if peer:
            out.emit(EV_CALL_REJECTED, to=peer)
        return out

    def on_end_call(self, handle: str, data) -> Dispatch:
        d = _fields(data)
        out = Dispatch()
        peer = self.resolve(self.parse_target(d.get("to")))

        session = self.calls.find(handle, peer)
        if session is not None:
            self._finish(session, out)
        out.session = session

        if peer:
            out.emit(EV_CALL_ENDED, to=peer)
        return out

    def on_mute_status(self, handle: str, data) -> Dispatch:
        d = _fields(data)
        out = Dispatch()
        peer = self.resolve(self.parse_target(d.get("to")))
        if peer:
            out.emit(EV_PEER_MUTE_STATUS, {"isMuted": d.get("isMuted")}, to=peer)
        return out

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def expire_unanswered(self, timeout_seconds: float) -> Dispatch:
        """Turn calls that have been ringing too long into missed calls."""
        out = Dispatch()
        if timeout_seconds <= 0:
            return out
        with self.lock:
            now = self.clock()
            for session in self.calls.sessions():
                if session.status is not CallStatus.INITIATED:
                    continue
                if now - session.created_at < timeout_seconds:
                    continue
                self._finish(session, out)
                for h in session.handles():
                    out.emit(EV_CALL_ENDED, {"reason": END_REASON_NO_ANSWER}, to=h)
                logger.info("Call %s missed: no answer after %ss", session.call_id, timeout_seconds)
        return out

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "connections": len(self.registry.live_handles()),
                "online_users": len(self.registry),
                "active_calls": len(self.calls.sessions()),
            }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _hang_up(self, handle: str, reason: str) -> Dispatch:
        """Terminate every session ``handle`` takes part in and tell each peer."""
        out = Dispatch()
        for session in self.calls.involving(handle):
            self._finish(session, out)
            peer = session.other_handle(handle)
            if peer and peer != handle:
                out.emit(EV_CALL_ENDED, {"reason": reason}, to=peer)
            logger.info("Call %s torn down (%s)", session.call_id, reason)
        return out

    def _finish(self, session: CallSession, out: Dispatch) -> None:
        if session.terminate(self.clock()):
            self._persist_update(session, out)
        self.calls.remove(session)

    def _persist_new(self, session: CallSession, out: Dispatch) -> None:
        if self.call_store is not None:
            # Copy: the worker runs outside the lock while handlers mutate the session.
            out.defer(functools.partial(self.call_store.create, dataclasses.replace(session)))

    def _persist_update(self, session: CallSession, out: Dispatch) -> None:
        if self.call_store is not None:
            out.defer(functools.partial(self.call_store.update, session.call_id, **session.record_fields()))
