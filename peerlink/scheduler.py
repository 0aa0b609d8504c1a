"""
Single cooperative event scheduler.

Blocking socket work (accept, recv, connect, reading stdin) runs in daemon
threads, but those threads never touch shared state.  They ``post`` a
callback and the main thread runs callbacks one at a time, in arrival order.
Anything a callback mutates therefore needs no lock.

Usage::

    sched = EventScheduler()
    sched.spawn(worker, name="peerlink-worker")   # worker calls sched.post(...)
    sched.run()                                   # until sched.stop()
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

log = logging.getLogger("peerlink.scheduler")

_STOP = object()


class EventScheduler:
    """FIFO of callbacks drained by whichever thread calls run()."""

    def __init__(self) -> None:
        self._events: queue.Queue[tuple[Any, tuple]] = queue.Queue()
        self._stopped = threading.Event()

    # ------------------------------------------------------------------
    # Producers (any thread)
    # ------------------------------------------------------------------

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)`` to run on the scheduler thread."""
        self._events.put((callback, args))

    def spawn(self, target: Callable[..., Any], *args: Any, name: str) -> threading.Thread:
        """Start a daemon worker thread; it should only communicate via post()."""
        t = threading.Thread(target=target, args=args, daemon=True, name=name)
        t.start()
        return t

    def stop(self) -> None:
        self._stopped.set()
        self._events.put((_STOP, ()))

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    # ------------------------------------------------------------------
    # Consumer (scheduler thread)
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Process events until stop() is called."""
        while not self._stopped.is_set():
            callback, args = self._events.get()
            if callback is _STOP:
                break
            self._dispatch(callback, args)

    def run_pending(self, timeout: float = 0.0) -> int:
        """
        Run every event already queued and return how many ran.
        With *timeout* > 0, wait that long for the first event if none is queued.
        """
        ran = 0
        block = timeout > 0
        while True:
            try:
                callback, args = self._events.get(block=block, timeout=timeout if block else None)
            except queue.Empty:
                return ran
            block = False
            if callback is _STOP:
                return ran
            self._dispatch(callback, args)
            ran += 1

    def _dispatch(self, callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except Exception:
            log.exception("Event handler %r failed", getattr(callback, "__qualname__", callback))
