"""gunicorn_conf.py

Gunicorn config for the call relay (Flask-SocketIO on Eventlet).

Environment variables:
  RELAY_BIND=0.0.0.0:5000
  RELAY_GUNICORN_LOGLEVEL=info

Run with RELAY_SOCKETIO_ASYNC=eventlet (or leave it on auto).
"""

from __future__ import annotations

import os

bind = os.environ.get("RELAY_BIND", "0.0.0.0:5000")
# Registry and call sessions are per-process; more workers would split users.
workers = 1
worker_class = "eventlet"

# WebSockets keep connections open; avoid overly low timeouts.
timeout = 60

loglevel = os.environ.get("RELAY_GUNICORN_LOGLEVEL", "info")
accesslog = "-"
errorlog = "-"
