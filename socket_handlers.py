#!/usr/bin/env python3
"""
socket_handlers.py

Socket.IO wiring for the relay. Handler modules under realtime/ stay thin:
each forwards (event, sid, payload) to the SignalingRouter through
``ctx.relay``, which emits whatever the router decided and queues the
persistence effects.
"""

import logging
from types import SimpleNamespace

from realtime.effects import EffectRunner

logger = logging.getLogger(__name__)


def register_socketio_handlers(socketio, settings, router):
    """
    Registers all Socket.IO event handlers and returns the shared context
    (router, relay/send helpers, effect runner).
    """
    inline = str(settings.get("persistence_mode") or "background").lower() == "inline"
    effects = EffectRunner(socketio, inline=inline)

    def _send(event, payload, to):
        args = () if payload is None else (payload,)
        if to is None:
            socketio.emit(event, *args)
        else:
            socketio.emit(event, *args, to=to)

    def _relay(event, sid, data=None):
        result = router.handle(event, sid, data, _send)
        effects.submit(result.effects)
        return result

    def _deliver(dispatch):
        router.deliver(dispatch, _send)
        effects.submit(dispatch.effects)

    ctx = SimpleNamespace(router=router, relay=_relay, send=_send, deliver=_deliver, effects=effects)

    # ───────────────────────────────────────────────────────────────────
    # Register split handler modules (see realtime/*.py)
    # ───────────────────────────────────────────────────────────────────
    from realtime import dm, presence, voice
    presence.register(socketio, settings, ctx)
    dm.register(socketio, settings, ctx)
    voice.register(socketio, settings, ctx)

    logger.info("Socket.IO handlers registered (%d events)", len(router.events))
    return ctx
