"""Best-effort persistence effects.

Relay events go out synchronously with the state change; store writes are
queued here and executed by one background task, in submission order, so a
call record is always created before it is updated. A failing write is
logged and dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Iterable

logger = logging.getLogger(__name__)


def run_effects(effects: Iterable) -> int:
    """Run effects in order; return how many failed."""
    failed = 0
    for fn in effects:
        try:
            fn()
        except Exception as exc:
            failed += 1
            logger.error("Persistence effect %r failed: %s", fn, exc)
    return failed


class EffectRunner:
    def __init__(self, socketio=None, inline: bool = False):
        self.socketio = socketio
        self.inline = inline or socketio is None
        self._queue: "queue.Queue[list]" = queue.Queue()
        self._started = False
        self._start_lock = threading.Lock()

    def submit(self, effects) -> None:
        effects = list(effects or ())
        if not effects:
            return
        if self.inline:
            run_effects(effects)
            return
        self._ensure_worker()
        self._queue.put(effects)

    def _ensure_worker(self) -> None:
        with self._start_lock:
            if self._started:
                return
            self.socketio.start_background_task(self._worker)
            self._started = True

    def _worker(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                run_effects(batch)
            finally:
                self._queue.task_done()

    def drain(self) -> None:
        """Block until every queued effect has run."""
        if not self.inline:
            self._queue.join()
