"""Socket.IO handlers: connection lifecycle and presence."""

from flask import request

from constants import EV_LOGOUT, EV_REGISTER_USER


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on("connect")
    def handle_connect(auth=None):
        ctx.relay("connect", request.sid)

    @socketio.on("disconnect")
    def handle_disconnect(*args, **kwargs):
        # Socket.IO may pass a reason depending on version.
        ctx.relay("disconnect", request.sid)

    @socketio.on(EV_REGISTER_USER)
    def handle_register_user(user_id=None):
        ctx.relay(EV_REGISTER_USER, request.sid, user_id)

    @socketio.on(EV_LOGOUT)
    def handle_logout(data=None):
        ctx.relay(EV_LOGOUT, request.sid, data)
