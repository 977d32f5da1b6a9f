"""Presence fan-out.

Every registry change is announced to *all* connected clients, not just a
contact list. That is O(n) per login/logout; fine for the deployments this
relay targets.
"""

from __future__ import annotations

import functools
import logging

from constants import EV_USER_STATUS_CHANGE
from realtime.events import Dispatch

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    def __init__(self, presence_store=None):
        self.presence_store = presence_store

    def announce(self, user_id: str, online: bool) -> Dispatch:
        out = Dispatch()
        out.emit(EV_USER_STATUS_CHANGE, {"userId": user_id, "online": bool(online)})
        if self.presence_store is not None:
            out.defer(functools.partial(self.presence_store.set_online, user_id, bool(online)))
        logger.info("User %s is now %s", user_id, "online" if online else "offline")
        return out
