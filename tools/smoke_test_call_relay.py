#!/usr/bin/env python3
"""Smoke test: presence, message relay and a full call against a live relay.

What it checks
- /health answers.
- Two Socket.IO clients can register and see each other come online.
- send-message is relayed to the receiver and echoed to the sender.
- call-user -> incoming-call, answer-call -> call-accepted, end-call -> call-ended.
- The call shows up in /api/calls/<user> (only meaningful with a store backend).

Signal payloads are dummies; no media is negotiated.

Usage:
  python tools/smoke_test_call_relay.py --base http://127.0.0.1:5000

Tip:
  Run the server first in another terminal.
"""

from __future__ import annotations

import argparse
import os
import random
import string
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field

import requests
import socketio


WATCHED_EVENTS = (
    "user-status-change",
    "receive-message",
    "message-sent",
    "incoming-call",
    "call-accepted",
    "call-ended",
)


def _rand_suffix(n: int = 6) -> str:
    return "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(n))


@dataclass
class SioWrap:
    sio: socketio.Client
    received: dict = field(default_factory=lambda: defaultdict(list))
    cond: threading.Condition = field(default_factory=threading.Condition)

    def wait_for(self, event: str, predicate=lambda _p: True, timeout: float = 10.0):
        deadline = time.monotonic() + timeout
        with self.cond:
            while True:
                for payload in self.received[event]:
                    if predicate(payload):
                        return payload
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self.cond.wait(remaining)


def make_client(base: str) -> SioWrap:
    wrap = SioWrap(sio=socketio.Client(logger=False, engineio_logger=False))

    def _recorder(name):
        def _on(data=None):
            with wrap.cond:
                wrap.received[name].append(data)
                wrap.cond.notify_all()
        return _on

    for name in WATCHED_EVENTS:
        wrap.sio.on(name, _recorder(name))

    wrap.sio.connect(base, wait_timeout=10)
    return wrap


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base", default=os.environ.get("RELAY_BASE", "http://127.0.0.1:5000"))
    ap.add_argument("--user-a", default=f"smokea_{_rand_suffix()}")
    ap.add_argument("--user-b", default=f"smokeb_{_rand_suffix()}")
    args = ap.parse_args()

    base = args.base.rstrip("/")

    # 1) Health
    r = requests.get(f"{base}/health", timeout=10)
    r.raise_for_status()
    print(f"✅ /health OK: {r.json()}")

    # 2) Socket.IO connect + register
    A = make_client(base)
    B = make_client(base)

    try:
        A.sio.emit("register-user", args.user_a)
        B.sio.emit("register-user", args.user_b)
        if not A.wait_for("user-status-change", lambda p: p.get("userId") == args.user_b and p.get("online")):
            print("❌ A never saw B come online")
            return 2
        print("✅ Presence broadcast OK")

        # 3) Message relay
        A.sio.emit("send-message", {"senderId": args.user_a, "receiverId": args.user_b, "text": "hello"})
        if not B.wait_for("receive-message", lambda p: p.get("text") == "hello"):
            print("❌ Message not relayed")
            return 3
        if not A.wait_for("message-sent", lambda p: p.get("text") == "hello"):
            print("❌ Sender did not get message-sent")
            return 3
        print("✅ Message relay OK")

        # 4) Call
        A.sio.emit("call-user", {
            "userToCall": args.user_b,
            "signalData": {"type": "offer", "sdp": "smoke"},
            "name": args.user_a,
            "callType": "audio",
        })
        incoming = B.wait_for("incoming-call")
        if not incoming:
            print("❌ incoming-call not received")
            return 4

        B.sio.emit("answer-call", {
            "to": incoming["from"],
            "signal": {"type": "answer", "sdp": "smoke"},
            "callId": incoming.get("callId"),
        })
        if not A.wait_for("call-accepted"):
            print("❌ call-accepted not received")
            return 5

        A.sio.emit("end-call", {"to": args.user_b})
        if B.wait_for("call-ended") is None:
            print("❌ call-ended not received")
            return 6
        print("✅ Call signaling OK")

        # 5) History (best-effort: writes are asynchronous)
        time.sleep(0.5)
        r = requests.get(f"{base}/api/calls/{args.user_a}", timeout=10)
        if r.ok and any(c.get("call_id") == incoming.get("callId") for c in r.json()):
            print("✅ Call history OK")
        else:
            print(f"⚠️  Call not found in history ({r.status_code})")

        print("\n🎉 Smoke test PASSED")
        return 0

    finally:
        for c in (A, B):
            if c.sio.connected:
                c.sio.disconnect()


if __name__ == "__main__":
    raise SystemExit(main())
