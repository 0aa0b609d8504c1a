from __future__ import annotations

import io
import threading
import time
from typing import Callable

import pytest
from rich.console import Console

from peerlink.config import Settings
from peerlink.context import AppContext
from peerlink.scheduler import EventScheduler


class FakeNetwork:
    """Decides how FakeSocket.connect() behaves per remote address."""

    def __init__(self) -> None:
        self.refused: set[tuple[str, int]] = set()
        self.held: dict[tuple[str, int], threading.Event] = {}
        self.sockets: list[FakeSocket] = []

    def refuse(self, addr: tuple[str, int]) -> None:
        self.refused.add(addr)

    def hold(self, addr: tuple[str, int]) -> threading.Event:
        gate = threading.Event()
        self.held[addr] = gate
        return gate

    def factory(self, *args) -> "FakeSocket":
        sock = FakeSocket(self)
        self.sockets.append(sock)
        return sock


class FakeSocket:
    def __init__(self, network: FakeNetwork) -> None:
        self._network = network
        self._closed = threading.Event()
        self._inbox: list[bytes] = []
        self._inbox_ready = threading.Event()
        self.sent: list[bytes] = []
        self.bound: tuple[str, int] | None = None
        self.connected_to: tuple[str, int] | None = None
        self.connect_calls = 0
        self.listening = False
        self.stall: threading.Event | None = None   # sendall blocks until it is set
        self.fail_writes = False

    # --- listening side ---
    def setsockopt(self, *args) -> None:
        pass

    def settimeout(self, value) -> None:
        pass

    def bind(self, addr) -> None:
        self.bound = addr

    def listen(self, backlog) -> None:
        self.listening = True

    def accept(self):
        self._closed.wait()
        raise OSError("closed")

    # --- connecting side ---
    def connect(self, addr) -> None:
        self.connect_calls += 1
        gate = self._network.held.get(addr)
        if gate is not None:
            gate.wait(timeout=5)
        if addr in self._network.refused:
            raise ConnectionRefusedError(111, "Connection refused")
        if self._closed.is_set():
            raise OSError(9, "Bad file descriptor")
        self.connected_to = addr

    def sendall(self, data: bytes) -> None:
        if self.stall is not None:
            self.stall.wait(timeout=5)
        if self.fail_writes:
            raise ConnectionResetError(104, "Connection reset by peer")
        if self._closed.is_set():
            raise OSError(32, "Broken pipe")
        self.sent.append(data)

    def recv(self, size: int) -> bytes:
        while True:
            if self._inbox:
                return self._inbox.pop(0)
            if self._closed.is_set():
                return b""
            self._inbox_ready.wait(timeout=0.05)
            self._inbox_ready.clear()

    def feed(self, data: bytes) -> None:
        self._inbox.append(data)
        self._inbox_ready.set()

    def shutdown(self, how) -> None:
        self._closed.set()

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()


def wait_until(scheduler: EventScheduler, predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        scheduler.run_pending(timeout=0.02)
        if predicate():
            return True
    return predicate()


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def settings() -> Settings:
    return Settings(port=5000, clear_screen=False)


@pytest.fixture
def context(network: FakeNetwork, settings: Settings) -> AppContext:
    ctx = AppContext(settings, resolve_ip=lambda: "192.168.1.20", socket_factory=network.factory)
    yield ctx
    ctx.shutdown()


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(output: io.StringIO) -> Console:
    return Console(file=output, width=120, color_system=None, highlight=False)
