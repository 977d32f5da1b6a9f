import logging
import threading
import time

logger = logging.getLogger(__name__)


def _ring_timeout(settings: dict) -> float:
    try:
        return max(0.0, float(settings.get("call_ring_timeout_seconds", 0) or 0))
    except (TypeError, ValueError):
        return 0.0


def sweep_once(settings: dict, ctx) -> int:
    """Expire calls that have rung longer than ``call_ring_timeout_seconds``.

    Returns the number of call-ended events delivered.
    """
    timeout = _ring_timeout(settings)
    if timeout <= 0:
        return 0
    dispatch = ctx.router.expire_unanswered(timeout)
    if not dispatch.outbound and not dispatch.effects:
        return 0
    sent = ctx.router.deliver(dispatch, ctx.send)
    ctx.effects.submit(dispatch.effects)
    return sent


def start_janitor(settings: dict, ctx):
    """Start a lightweight background maintenance loop.

    - Turns unanswered calls into missed calls once the ring timeout passes

    Runs on a plain daemon thread (or a green thread once eventlet has
    monkey-patched ``threading``).
    """

    def _loop():
        while True:
            # Re-read settings each cycle so config changes take effect live.
            try:
                interval = int(settings.get("janitor_interval_seconds", 15))
            except (TypeError, ValueError):
                interval = 15
            interval = max(1, min(interval, 3600))

            try:
                n = sweep_once(settings, ctx)
                if n:
                    logger.info("[JANITOR] notified %d participants of unanswered calls", n)
            except Exception as e:
                logger.error("[JANITOR] ring timeout sweep error: %s", e)

            time.sleep(interval)

    t = threading.Thread(target=_loop, name="relay_janitor", daemon=True)
    t.start()
    return t
