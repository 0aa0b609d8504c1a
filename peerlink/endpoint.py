"""
Local listening endpoint.

Endpoint
--------
    Binds one TCP socket on this host's IPv4 address and a port, accepts
    inbound peers in a daemon thread and watches each of them with a reader
    thread.  Greets every new peer, logs whatever it sends, and forgets it
    again on error or close.  Inbound peers are never part of the outbound
    ConnectionTable.

All bookkeeping happens in scheduler callbacks (``_on_*``); the worker
threads (accept, greet, read) do the blocking socket calls and only post
events.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Callable

from .config import Settings
from .protocol import decode_payload
from .scheduler import EventScheduler

log = logging.getLogger("peerlink.endpoint")

Address = tuple[str, int]


class Endpoint:
    """The process's inbound network identity: one address, one port."""

    def __init__(
        self,
        ip: str,
        port: int,
        scheduler: EventScheduler,
        settings: Settings | None = None,
        socket_factory: Callable[..., socket.socket] = socket.socket,
    ) -> None:
        self._ip = ip
        self._port = port
        self._scheduler = scheduler
        self._settings = settings or Settings()
        self._socket_factory = socket_factory
        self._server_sock: socket.socket | None = None
        self._clients: dict[Address, socket.socket] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def ip(self) -> str:
        return self._ip

    @property
    def port(self) -> int:
        return self._port

    @property
    def clients(self) -> list[Address]:
        """Addresses of inbound peers currently being watched."""
        return list(self._clients)

    def info(self) -> str:
        return f"IP: {self._ip}, Port: {self._port}"

    def start(self) -> None:
        """Bind, listen and start accepting.  Raises OSError if the bind fails."""
        sock = self._socket_factory(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self._ip, self._port))
            sock.listen(self._settings.backlog)
        except OSError:
            sock.close()
            raise
        sock.settimeout(1.0)
        self._server_sock = sock
        self._thread = self._scheduler.spawn(self._accept_loop, sock, name="peerlink-endpoint")
        log.info("Listening on %s:%d", self._ip, self._port)

    def close(self) -> None:
        self._stop_event.set()
        if self._server_sock:
            try:
                self._server_sock.close()
            except OSError:
                pass
            self._server_sock = None
        for addr in list(self._clients):
            self._drop(addr)
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------

    def _accept_loop(self, server: socket.socket) -> None:
        while not self._stop_event.is_set():
            try:
                conn, addr = server.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            self._scheduler.post(self._on_accept, conn, (addr[0], addr[1]))

    def _greet(self, conn: socket.socket, addr: Address, greeting: bytes) -> None:
        try:
            conn.sendall(greeting)
        except OSError as exc:
            self._scheduler.post(self._on_greet_failed, conn, addr, exc)

    def _read_loop(self, conn: socket.socket, addr: Address) -> None:
        while True:
            try:
                data = conn.recv(self._settings.recv_buffer)
            except OSError as exc:
                self._scheduler.post(self._on_error, conn, addr, exc)
                return
            if not data:
                self._scheduler.post(self._on_close, conn, addr)
                return
            self._scheduler.post(self._on_data, addr, data)

    # ------------------------------------------------------------------
    # Scheduler callbacks
    # ------------------------------------------------------------------

    def _on_accept(self, conn: socket.socket, addr: Address) -> None:
        if self._stop_event.is_set():
            conn.close()
            return
        self._clients[addr] = conn
        log.info("New client connected: %s", addr[0])
        if self._settings.greeting:
            self._scheduler.spawn(
                self._greet, conn, addr, self._settings.greeting,
                name=f"peerlink-greet-{addr[0]}:{addr[1]}",
            )
        self._scheduler.spawn(
            self._read_loop, conn, addr, name=f"peerlink-in-{addr[0]}:{addr[1]}"
        )

    def _on_greet_failed(self, conn: socket.socket, addr: Address, exc: OSError) -> None:
        if self._clients.get(addr) is not conn:
            return
        log.warning("Could not greet %s:%d: %s", addr[0], addr[1], exc)

    def _on_data(self, addr: Address, data: bytes) -> None:
        log.info(
            "Message received from %s (sender port %d): %s",
            addr[0], addr[1], decode_payload(data),
        )

    def _on_error(self, conn: socket.socket, addr: Address, exc: OSError) -> None:
        if self._clients.get(addr) is not conn:
            return
        log.warning("A client has disconnected: %s:%d (%s)", addr[0], addr[1], exc)
        self._drop(addr)

    def _on_close(self, conn: socket.socket, addr: Address) -> None:
        if self._clients.get(addr) is not conn:
            return
        log.info("A client terminated connection: %s:%d", addr[0], addr[1])
        self._drop(addr)

    def _drop(self, addr: Address) -> None:
        conn = self._clients.pop(addr, None)
        if conn is None:
            return
        try:
            conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        finally:
            conn.close()
