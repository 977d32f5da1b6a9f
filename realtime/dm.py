"""Socket.IO handlers: direct messages and typing indicators.

The server never inspects message text beyond relaying and persisting it.
Typing events are fire-and-forget: no state, no storage.
"""

from flask import request

from constants import EV_SEND_MESSAGE, EV_STOP_TYPING, EV_TYPING


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on(EV_SEND_MESSAGE)
    def handle_send_message(data=None):
        ctx.relay(EV_SEND_MESSAGE, request.sid, data)

    @socketio.on(EV_TYPING)
    def handle_typing(data=None):
        ctx.relay(EV_TYPING, request.sid, data)

    @socketio.on(EV_STOP_TYPING)
    def handle_stop_typing(data=None):
        ctx.relay(EV_STOP_TYPING, request.sid, data)
