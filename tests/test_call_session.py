from realtime.calls import CallSession, CallStatus


def _session():
    return CallSession(caller_id="alice", receiver_id="bob", caller_handle="s1", receiver_handle="s2")


def test_new_session_is_initiated():
    s = _session()
    assert s.status is CallStatus.INITIATED
    assert s.start_time is None
    assert s.duration_seconds == 0
    assert len(s.call_id) == 32


def test_accept_sets_start_time_once():
    s = _session()
    assert s.accept(100.0)
    assert s.status is CallStatus.ACCEPTED
    assert s.start_time == 100.0

    assert not s.accept(200.0)
    assert s.status is CallStatus.ACCEPTED
    assert s.start_time == 100.0


def test_terminate_accepted_computes_duration():
    s = _session()
    s.accept(100.0)
    assert s.terminate(142.5)
    assert s.status is CallStatus.ENDED
    assert s.end_time == 142.5
    assert s.duration_seconds == 42.5


def test_terminate_initiated_is_missed():
    s = _session()
    assert s.terminate(150.0)
    assert s.status is CallStatus.MISSED
    assert s.duration_seconds == 0
    assert s.end_time == 150.0


def test_reject_only_from_initiated():
    s = _session()
    assert s.reject()
    assert s.status is CallStatus.REJECTED

    accepted = _session()
    accepted.accept(1.0)
    assert not accepted.reject()
    assert accepted.status is CallStatus.ACCEPTED


def test_terminal_states_do_not_move():
    s = _session()
    s.reject()
    assert not s.accept(1.0)
    assert not s.terminate(2.0)
    assert not s.mark_missed()
    assert s.status is CallStatus.REJECTED
    assert s.end_time is None


def test_other_handle():
    s = _session()
    assert s.other_handle("s1") == "s2"
    assert s.other_handle("s2") == "s1"
    assert s.other_handle("s3") is None
    assert s.involves("s2")


def test_record_fields():
    s = _session()
    s.accept(10.0)
    s.terminate(15.0)
    assert s.record_fields() == {
        "status": "ended",
        "start_time": 10.0,
        "end_time": 15.0,
        "duration_seconds": 5.0,
    }
    assert s.to_dict()["call_id"] == s.call_id
