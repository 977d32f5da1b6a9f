from types import SimpleNamespace

import pytest

from janitor import sweep_once
from realtime.calls import CallStatus
from realtime.effects import EffectRunner


@pytest.fixture
def ctx(relay, router):
    return SimpleNamespace(router=router, send=relay._send, effects=EffectRunner(inline=True))


@pytest.fixture
def ringing(relay):
    relay.connect("sid-a", "alice")
    relay.connect("sid-b", "bob")
    session = relay("call-user", "sid-a", {"userToCall": "bob", "signalData": {}}).session
    relay.clear()
    return session


def test_sweep_disabled_by_default(ctx, ringing, clock):
    clock.advance(3600)
    assert sweep_once({"call_ring_timeout_seconds": 0}, ctx) == 0
    assert ringing.status is CallStatus.INITIATED


def test_sweep_leaves_fresh_calls(ctx, ringing, clock, relay):
    clock.advance(10)
    assert sweep_once({"call_ring_timeout_seconds": 30}, ctx) == 0
    assert ringing.status is CallStatus.INITIATED
    assert relay.sent == []


def test_sweep_expires_unanswered_calls(ctx, ringing, clock, relay, router, stores):
    clock.advance(31)
    assert sweep_once({"call_ring_timeout_seconds": 30}, ctx) == 2

    assert ringing.status is CallStatus.MISSED
    assert relay.to("sid-a") == [("call-ended", {"reason": "no_answer"})]
    assert relay.to("sid-b") == [("call-ended", {"reason": "no_answer"})]
    assert len(router.calls) == 0
    assert stores[1].get(ringing.call_id)["status"] == "missed"


def test_sweep_ignores_accepted_calls(ctx, ringing, clock, relay):
    relay("answer-call", "sid-b", {"to": "sid-a"})
    clock.advance(120)
    assert sweep_once({"call_ring_timeout_seconds": 30}, ctx) == 0
    assert ringing.status is CallStatus.ACCEPTED


def test_bad_timeout_value_disables_sweep(ctx, ringing, clock):
    clock.advance(120)
    assert sweep_once({"call_ring_timeout_seconds": "soon"}, ctx) == 0
