#!/usr/bin/env python3
"""routes_chat.py

Read-only HTTP endpoints next to the Socket.IO relay:
message history, call history, who is online, and a health check.

Socket.IO events are the only write path; nothing here mutates state.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from constants import APP_VERSION

logger = logging.getLogger(__name__)

chat_bp = Blueprint("chat", __name__)


def _stores() -> dict:
    return current_app.config.get("RELAY_STORES") or {}


def _router():
    return current_app.config["RELAY_ROUTER"]


@chat_bp.route("/api/messages", methods=["GET"])
def api_get_messages():
    """Conversation between two users, both directions, oldest first."""
    sender_id = (request.args.get("senderId") or "").strip()
    receiver_id = (request.args.get("receiverId") or "").strip()
    if not sender_id or not receiver_id:
        return jsonify({"error": "senderId and receiverId are required"}), 400

    store = _stores().get("messages")
    if store is None:
        return jsonify([])
    try:
        return jsonify(store.conversation(sender_id, receiver_id))
    except Exception as e:
        logger.exception("Message history lookup failed")
        return jsonify({"error": str(e)}), 500


@chat_bp.route("/api/calls/<user_id>", methods=["GET"])
def api_get_calls(user_id: str):
    """Call records where the user was caller or receiver, newest first."""
    store = _stores().get("calls")
    if store is None:
        return jsonify([])
    try:
        return jsonify(store.history(user_id))
    except Exception as e:
        logger.exception("Call history lookup failed")
        return jsonify({"error": str(e)}), 500


@chat_bp.route("/api/presence", methods=["GET"])
def api_get_presence():
    router = _router()
    with router.lock:
        users = router.registry.online_users()
    return jsonify({"online": users})


@chat_bp.route("/health", methods=["GET"])
def health_check():
    # Minimal health payload. Avoid leaking config.
    snap = _router().snapshot()
    return jsonify(
        {
            "status": "ok",
            "version": APP_VERSION,
            "async_mode": current_app.config.get("RELAY_SOCKETIO_ASYNC_MODE"),
            **snap,
        }
    )
