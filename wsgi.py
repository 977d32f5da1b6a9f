"""wsgi.py

Gunicorn entrypoint for the call relay.

Run (example):
  RELAY_SOCKETIO_ASYNC=eventlet \
  gunicorn -c gunicorn_conf.py wsgi:app

Notes:
- Connection and call state live in process memory: run exactly one worker.
- The janitor (ring timeouts) starts inside that worker.
"""

from __future__ import annotations

import os

# ---- Ensure eventlet monkey_patch happens as early as possible ----
_async = (os.environ.get("RELAY_SOCKETIO_ASYNC", "auto") or "auto").strip().lower()
if _async in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
    except ImportError:
        # If eventlet isn't installed, the relay falls back to threading.
        pass

from pathlib import Path

from constants import CONFIG_FILE
from janitor import start_janitor
from main import apply_env_overrides, configure_logging, load_settings
from server_init import create_app


def _resolve_config_path() -> Path:
    # Prefer explicit env path when running under systemd.
    return Path(os.environ.get("RELAY_CONFIG") or CONFIG_FILE)


_settings_path = _resolve_config_path()
_settings = load_settings(_settings_path)
apply_env_overrides(_settings)
configure_logging(_settings)

# Create the Flask app + Socket.IO integration.
app, socketio = create_app(_settings, settings_file=_settings_path)
start_janitor(_settings, app.config["RELAY_CTX"])

# Expose these for tooling / introspection.
app.config["RELAY_GUNICORN"] = True
app.config["RELAY_SETTINGS_PATH"] = str(_settings_path)
