"""Socket.IO handlers: 1:1 call signaling.

Signal payloads (SDP offers/answers) are opaque and relayed verbatim.
Session bookkeeping lives in the router; see realtime/routing.py.
"""

import logging

from flask import request

from constants import (
    EV_ANSWER_CALL,
    EV_CALL_USER,
    EV_END_CALL,
    EV_MUTE_STATUS,
    EV_REJECT_CALL,
)

logger = logging.getLogger(__name__)


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on(EV_CALL_USER)
    def handle_call_user(data=None):
        result = ctx.relay(EV_CALL_USER, request.sid, data)
        if result.session is not None:
            logger.debug("call-user from %s -> call %s (%s)",
                         request.sid, result.session.call_id, result.session.status.value)

    @socketio.on(EV_ANSWER_CALL)
    def handle_answer_call(data=None):
        ctx.relay(EV_ANSWER_CALL, request.sid, data)

    @socketio.on(EV_REJECT_CALL)
    def handle_reject_call(data=None):
        ctx.relay(EV_REJECT_CALL, request.sid, data)

    @socketio.on(EV_END_CALL)
    def handle_end_call(data=None):
        ctx.relay(EV_END_CALL, request.sid, data)

    @socketio.on(EV_MUTE_STATUS)
    def handle_mute_status(data=None):
        ctx.relay(EV_MUTE_STATUS, request.sid, data)
