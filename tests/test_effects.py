import logging
import threading

from realtime.effects import EffectRunner, run_effects


class ThreadedSocketIO:
    """Just enough of flask_socketio.SocketIO for EffectRunner."""

    def __init__(self):
        self.started = 0

    def start_background_task(self, target, *args, **kwargs):
        self.started += 1
        t = threading.Thread(target=target, args=args, kwargs=kwargs, daemon=True)
        t.start()
        return t


def test_run_effects_logs_and_counts_failures(caplog):
    calls = []

    def boom():
        raise RuntimeError("db down")

    with caplog.at_level(logging.ERROR, logger="realtime.effects"):
        failed = run_effects([lambda: calls.append(1), boom, lambda: calls.append(2)])

    assert failed == 1
    assert calls == [1, 2]
    assert "db down" in caplog.text


def test_inline_runner_runs_immediately():
    calls = []
    runner = EffectRunner(inline=True)
    runner.submit([lambda: calls.append("x")])
    assert calls == ["x"]


def test_runner_without_socketio_is_inline():
    assert EffectRunner().inline


def test_background_runner_keeps_submission_order():
    sio = ThreadedSocketIO()
    runner = EffectRunner(sio)
    seen = []

    for i in range(20):
        runner.submit([lambda i=i: seen.append(i)])
    runner.drain()

    assert seen == list(range(20))
    assert sio.started == 1


def test_empty_submit_does_not_start_worker():
    sio = ThreadedSocketIO()
    runner = EffectRunner(sio)
    runner.submit([])
    runner.submit(None)
    assert sio.started == 0
