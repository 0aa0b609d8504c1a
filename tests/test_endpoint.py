from __future__ import annotations

import logging
import socket
import threading
import time

import pytest

from conftest import FakeNetwork, wait_until
from peerlink.config import Settings
from peerlink.connections import ConnectionState, ConnectionTable
from peerlink.context import AppContext
from peerlink.endpoint import Endpoint
from peerlink.errors import ErrorKind, PeerLinkError
from peerlink.protocol import GREETING
from peerlink.scheduler import EventScheduler


def _listening(network: FakeNetwork) -> list:
    return [s for s in network.sockets if s.listening]


def test_endpoint_is_created_once(context: AppContext, network: FakeNetwork) -> None:
    first = context.get_endpoint("5000")
    second = context.get_endpoint(5000)

    assert first is second
    assert len(_listening(network)) == 1
    assert _listening(network)[0].bound == ("192.168.1.20", 5000)


def test_later_port_argument_is_ignored(context: AppContext, network: FakeNetwork) -> None:
    first = context.get_endpoint(5000)
    again = context.get_endpoint(6000)

    assert again is first
    assert (again.ip, again.port) == ("192.168.1.20", 5000)
    assert len(_listening(network)) == 1


@pytest.mark.parametrize("port", ["80", "1024", "65535", "70000", "abc", "", "12.5"])
def test_invalid_port_is_rejected(context: AppContext, network: FakeNetwork, port: str) -> None:
    with pytest.raises(PeerLinkError) as exc:
        context.get_endpoint(port)
    assert exc.value.kind is ErrorKind.INVALID_PORT
    assert network.sockets == []


def test_missing_local_address_is_ip_resolution_error(network: FakeNetwork) -> None:
    def no_address() -> str:
        raise PeerLinkError(ErrorKind.IP_RESOLUTION, "Unable to determine IPv4 address!")

    ctx = AppContext(Settings(), resolve_ip=no_address, socket_factory=network.factory)
    with pytest.raises(PeerLinkError) as exc:
        ctx.get_endpoint(5000)
    assert exc.value.kind is ErrorKind.IP_RESOLUTION
    assert network.sockets == []


def test_info_renders_address(context: AppContext) -> None:
    assert context.get_endpoint(5000).info() == "IP: 192.168.1.20, Port: 5000"


# ---------------------------------------------------------------------------
# Loopback round trip
# ---------------------------------------------------------------------------

def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def loopback():
    scheduler = EventScheduler()
    endpoint = Endpoint("127.0.0.1", _free_port(), scheduler, Settings())
    endpoint.start()
    table = ConnectionTable(scheduler)
    yield scheduler, endpoint, table
    table.close_all()
    endpoint.close()


def test_inbound_traffic_is_logged(loopback, caplog) -> None:
    scheduler, endpoint, table = loopback
    caplog.set_level(logging.INFO)

    conn = table.add_connection("127.0.0.1", endpoint.port)
    assert wait_until(scheduler, lambda: conn.state is ConnectionState.CONNECTED)
    assert wait_until(scheduler, lambda: "joined" in caplog.text)
    assert "New client connected: 127.0.0.1" in caplog.text
    assert len(endpoint.clients) == 1

    table.send_message(1, "hello peer")
    assert wait_until(scheduler, lambda: "hello peer" in caplog.text)
    assert wait_until(scheduler, lambda: "Welcome------" in caplog.text)


def test_inbound_close_only_touches_endpoint(loopback, caplog) -> None:
    scheduler, endpoint, table = loopback
    caplog.set_level(logging.INFO)

    table.add_connection("127.0.0.1", endpoint.port)
    table.add_connection("127.0.0.1", endpoint.port)
    assert wait_until(scheduler, lambda: len(endpoint.clients) == 2)

    table.remove_connection(1)
    assert wait_until(scheduler, lambda: len(endpoint.clients) == 1)
    assert "terminated connection" in caplog.text
    assert table.ids() == [1]
    assert table.get(1).state is ConnectionState.CONNECTED


def test_close_stops_accepting(loopback) -> None:
    scheduler, endpoint, table = loopback
    port = endpoint.port
    endpoint.close()

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as client:
        assert client.connect_ex(("127.0.0.1", port)) != 0


def test_sends_to_a_peer_that_never_reads_do_not_block() -> None:
    scheduler = EventScheduler()
    table = ConnectionTable(scheduler)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        server.settimeout(2.0)
        try:
            conn = table.add_connection("127.0.0.1", server.getsockname()[1])
            assert wait_until(scheduler, lambda: conn.state is ConnectionState.CONNECTED)
            peer, _ = server.accept()
            with peer:
                started = time.monotonic()
                for _ in range(2000):
                    table.send_message(1, "x" * 4000)
                assert time.monotonic() - started < 2.0

                seen: list[str] = []
                scheduler.post(seen.append, "tick")
                assert wait_until(scheduler, lambda: seen == ["tick"], timeout=1.0)
        finally:
            table.close_all()


def test_greeting_is_sent_off_the_scheduler_thread(network: FakeNetwork) -> None:
    scheduler = EventScheduler()
    endpoint = Endpoint("192.168.1.20", 5000, scheduler, Settings(), network.factory)
    client = network.factory()
    stall = threading.Event()
    client.stall = stall
    addr = ("10.0.0.9", 40000)

    scheduler.post(endpoint._on_accept, client, addr)
    scheduler.run_pending()
    assert endpoint.clients == [addr]
    assert client.sent == []

    stall.set()
    assert wait_until(scheduler, lambda: client.sent == [GREETING])
    endpoint.close()
    assert client.closed
