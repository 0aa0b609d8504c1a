from __future__ import annotations

import logging
import threading

from peerlink.scheduler import EventScheduler


def test_events_run_in_post_order_on_the_draining_thread() -> None:
    sched = EventScheduler()
    seen: list[tuple[int, str]] = []
    for i in range(5):
        sched.post(lambda i=i: seen.append((i, threading.current_thread().name)))

    assert sched.run_pending() == 5
    assert [i for i, _ in seen] == [0, 1, 2, 3, 4]
    assert {name for _, name in seen} == {threading.current_thread().name}


def test_worker_posts_are_picked_up() -> None:
    sched = EventScheduler()
    seen: list[str] = []
    sched.spawn(lambda: sched.post(seen.append, "from-worker"), name="test-worker")

    sched.run_pending(timeout=2.0)
    assert seen == ["from-worker"]


def test_run_returns_after_stop() -> None:
    sched = EventScheduler()
    seen: list[int] = []
    sched.post(seen.append, 1)
    sched.post(sched.stop)
    sched.post(seen.append, 2)

    sched.run()
    assert seen == [1]
    assert sched.stopped


def test_failing_handler_does_not_stop_the_loop(caplog) -> None:
    sched = EventScheduler()
    seen: list[int] = []

    def boom() -> None:
        raise ValueError("boom")

    caplog.set_level(logging.ERROR, logger="peerlink.scheduler")
    sched.post(boom)
    sched.post(seen.append, 1)
    assert sched.run_pending() == 2
    assert seen == [1]
    assert "boom" in caplog.text
