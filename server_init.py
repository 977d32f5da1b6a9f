#!/usr/bin/env python3
"""
server_init.py
Builds and runs the call relay Flask + Socket.IO application.
Stores are chosen from settings (postgres or memory) before the router
and the Socket.IO handlers are wired up.
"""

from __future__ import annotations

import logging
import os

# Optional WebSocket support
# - Default: auto (use eventlet if available, otherwise fall back to threading/polling)
# - Override with: RELAY_SOCKETIO_ASYNC=threading|eventlet
RELAY_SOCKETIO_ASYNC = os.environ.get("RELAY_SOCKETIO_ASYNC", "auto").strip().lower()
_EVENTLET_AVAILABLE = False
if RELAY_SOCKETIO_ASYNC in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
        _EVENTLET_AVAILABLE = True
    except ImportError:
        _EVENTLET_AVAILABLE = False
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, request
from flask_cors import CORS
from flask_socketio import SocketIO

from constants import APP_VERSION, get_db_connection_string, redact_postgres_dsn
from database import build_stores
from janitor import start_janitor
from realtime.routing import SignalingRouter
from routes_chat import chat_bp

logger = logging.getLogger(__name__)


def _log_startup_banner(settings: Dict[str, Any], settings_file: Optional[Path] | None) -> None:
    """Log a boot banner that makes 'wrong DB / wrong config' obvious."""
    cfg_path = Path(settings_file) if settings_file else None
    cfg_exists = bool(cfg_path and cfg_path.exists())
    cfg_mtime = None
    if cfg_exists:
        cfg_mtime = datetime.fromtimestamp(cfg_path.stat().st_mtime).isoformat(timespec="seconds")

    logger.info("==================== CallRelay Boot ====================")
    logger.info("CallRelay version: %s", APP_VERSION)
    logger.info("Settings file: %s (exists=%s%s)", str(cfg_path) if cfg_path else "<none>", cfg_exists,
                f", mtime={cfg_mtime}" if cfg_mtime else "")
    logger.info("Store backend: %s", settings.get("store_backend"))
    if settings.get("store_backend") == "postgres":
        logger.info("Configured DSN: %s", redact_postgres_dsn(get_db_connection_string(settings)))
    logger.info("End calls on disconnect: %s", bool(settings.get("end_calls_on_disconnect", True)))
    logger.info("=========================================================")


def _normalize_cors_origins(val):
    if val is None:
        return None
    if isinstance(val, str):
        raw = val.strip()
        if not raw:
            return None
        # Support comma-separated strings
        if "," in raw:
            items = [x.strip() for x in raw.split(",") if x.strip()]
            return items or None
        return raw
    if isinstance(val, (list, tuple, set)):
        items = [str(x).strip() for x in val if str(x).strip()]
        return items or None
    return None


def create_app(
    settings: Dict[str, Any],
    settings_file: Optional[Path] | None = None,
    stores: tuple | None = None,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    This function does **not** start a server. It is safe to import from a
    Gunicorn `wsgi.py` module. ``stores`` overrides the configured backend
    with a ready (message, call, presence) triple.
    """

    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file
    _log_startup_banner(settings, settings_file)

    # ───── Flask App Core ─────
    app = Flask(__name__)
    app.config["RELAY_SETTINGS_FILE"] = str(settings_file) if settings_file else None
    app.config["RELAY_SETTINGS"] = settings
    app.secret_key = _ensure_secret_key(settings)

    # ───── Stores + router ─────
    message_store, call_store, presence_store = stores or build_stores(settings)
    router = SignalingRouter(
        message_store,
        call_store,
        presence_store,
        end_calls_on_disconnect=bool(settings.get("end_calls_on_disconnect", True)),
    )
    app.config["RELAY_STORES"] = {
        "messages": message_store,
        "calls": call_store,
        "presence": presence_store,
    }
    app.config["RELAY_ROUTER"] = router

    # ───── CORS ─────
    # The relay uses no cookies, so a wildcard origin is acceptable here.
    cors_origins = _normalize_cors_origins(settings.get("cors_origins"))
    if cors_origins is not None:
        CORS(app, origins=cors_origins)

    # ───── SocketIO Setup ─────
    # NOTE: long-polling generates a *ton* of HTTP requests (and log lines). If
    # eventlet is available, we prefer it to enable WebSockets.
    async_mode = "threading"
    if RELAY_SOCKETIO_ASYNC == "eventlet" and not _EVENTLET_AVAILABLE:
        logger.warning("[socketio] RELAY_SOCKETIO_ASYNC=eventlet but eventlet is not installed; "
                       "falling back to threading")
    if (RELAY_SOCKETIO_ASYNC in {"auto", "eventlet"}) and _EVENTLET_AVAILABLE:
        async_mode = "eventlet"

    app.config["RELAY_SOCKETIO_ASYNC_MODE"] = async_mode
    app.config["RELAY_WS_ENABLED"] = async_mode != "threading"

    # Session state is in-process, so no message_queue: run exactly one worker.
    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        logger=False,
        engineio_logger=False,
        ping_interval=20,
        ping_timeout=15,
    )
    app.config["RELAY_SOCKETIO"] = socketio

    # ───── Global Socket.IO Error Handler ─────
    # A failing handler must not take the connection (or server thread) down.
    @socketio.on_error_default  # applies to all namespaces
    def _socketio_default_error_handler(e):
        sid = getattr(request, "sid", None)
        logger.exception("Socket.IO handler error (sid=%s): %s", sid, e)

    # ───── Routes ─────
    app.register_blueprint(chat_bp)

    from socket_handlers import register_socketio_handlers
    app.config["RELAY_CTX"] = register_socketio_handlers(socketio, settings, router)

    return app, socketio


def run_web_server(
    settings: Dict[str, Any],
    settings_file: Optional[Path] | None = None,
) -> None:
    """Bootstrap the Flask-SocketIO app, attach blueprints & handlers, then run it."""

    app, socketio = create_app(settings, settings_file=settings_file)

    # ───── Run Server (dev / single-process) ─────
    host = settings.get("host") or "0.0.0.0"
    port = int(settings.get("port") or 5000)
    debug = bool(settings.get("debug") or False)

    logger.info("🚀  Starting CallRelay on http://%s:%s (debug=%s, async=%s)",
                host, port, debug, app.config["RELAY_SOCKETIO_ASYNC_MODE"])

    # Background janitor: ring timeouts for unanswered calls.
    start_janitor(settings, app.config["RELAY_CTX"])

    # Reduce console spam from long-polling by filtering Werkzeug access logs for /socket.io.
    class _RelaySocketIOAccessFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:  # type: ignore
            return "/socket.io/" not in record.getMessage()

    logging.getLogger("werkzeug").addFilter(_RelaySocketIOAccessFilter())

    run_kwargs: Dict[str, Any] = {}
    if app.config["RELAY_SOCKETIO_ASYNC_MODE"] == "threading":
        run_kwargs["allow_unsafe_werkzeug"] = True

    # The reloader would fork a second process with its own registry.
    socketio.run(
        app,
        host=host,
        port=port,
        debug=debug,
        use_reloader=False,
        log_output=False,
        **run_kwargs,
    )


# ───── Helpers ─────
def _ensure_secret_key(settings: Dict[str, Any]) -> str:
    key = settings.get("secret_key") or os.getenv("SECRET_KEY")
    if key:
        return key

    key = secrets.token_urlsafe(64)
    settings["secret_key"] = key
    logger.warning("Generated a one-off secret_key (NOT saved). Set SECRET_KEY to keep it stable.")
    return key
