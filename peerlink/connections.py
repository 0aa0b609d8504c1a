"""
Outbound connections.

PeerConnection
--------------
    One socket this process opened towards a remote peer, with the id the
    user refers to it by and its lifecycle state.

ConnectionTable
---------------
    Ordered list of PeerConnections.  Ids are always 1..N in table order:
    removing an entry renumbers everything after it.  A connection whose
    transport fails stays in the table as CLOSED until the user terminates
    or reconnects it.

Connect attempts, reads and writes on connected sockets run in worker threads
that report back through the scheduler.  A write only enqueues bytes on the
connection's outbox; its writer thread does the blocking send, so a peer that
stops reading never stalls the scheduler.  Events carry the PeerConnection and
the socket they were started for, so an event that arrives after a
terminate, a reconnect or a renumbering is recognised as stale and ignored.
"""

from __future__ import annotations

import logging
import queue
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator

from .config import Settings
from .errors import ErrorKind, PeerLinkError
from .protocol import JOINED, decode_payload, encode_text, is_ipv4, port_in_range
from .scheduler import EventScheduler

log = logging.getLogger("peerlink.connections")


class ConnectionState(Enum):
    CONNECTING = "Connecting"
    CONNECTED  = "Connected"
    CLOSED     = "Closed"


@dataclass(eq=False)
class PeerConnection:
    id: int
    remote_ip: str
    remote_port: int
    sock: socket.socket
    state: ConnectionState = ConnectionState.CONNECTING
    connecting: bool = False        # connect attempt in flight
    destroyed: bool = False         # socket closed, no further I/O
    pending: list[bytes] = field(default_factory=list)   # writes issued while connecting
    outbox: queue.Queue[bytes | None] | None = None     # drained by the writer thread

    @property
    def address(self) -> tuple[str, int]:
        return self.remote_ip, self.remote_port

    def __str__(self) -> str:
        return f"#{self.id} {self.remote_ip}:{self.remote_port} [{self.state.value}]"


class ConnectionTable:
    """Sole owner and writer of the outbound PeerConnections."""

    HEADER = "id\tIP Address\tPort"

    def __init__(
        self,
        scheduler: EventScheduler,
        settings: Settings | None = None,
        socket_factory: Callable[..., socket.socket] = socket.socket,
    ) -> None:
        self._scheduler = scheduler
        self._settings = settings or Settings()
        self._socket_factory = socket_factory
        self._connections: list[PeerConnection] = []
        self._next_id = 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[PeerConnection]:
        return iter(list(self._connections))

    @property
    def next_id(self) -> int:
        return self._next_id

    def ids(self) -> list[int]:
        return [c.id for c in self._connections]

    def get(self, conn_id: int) -> PeerConnection:
        return self._connections[self._index(conn_id)]

    def list_connections(self) -> str:
        """Tab-separated snapshot: header row, then one row per connection."""
        rows = [self.HEADER]
        rows.extend(
            f"{c.id}\t{c.remote_ip}\t{c.remote_port}" for c in self._connections
        )
        return "\n".join(rows)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_connection(self, remote_ip: str, remote_port: int) -> PeerConnection:
        """Track a new peer and start connecting to it.  Returns immediately."""
        if not remote_ip or not is_ipv4(remote_ip):
            raise PeerLinkError(
                ErrorKind.INVALID_ARGUMENTS, f"{remote_ip!r} is not a dotted-quad IPv4 address"
            )
        if (
            not isinstance(remote_port, int)
            or isinstance(remote_port, bool)
            or not port_in_range(remote_port)
        ):
            raise PeerLinkError(
                ErrorKind.INVALID_ARGUMENTS, f"Port should be within (1024, 65535), got {remote_port!r}"
            )

        conn = PeerConnection(
            id=self._next_id,
            remote_ip=remote_ip,
            remote_port=remote_port,
            sock=self._new_socket(),
        )
        self._connections.append(conn)
        self._next_id += 1
        log.debug("Added %s", conn)
        self._connect(conn)
        return conn

    def remove_connection(self, conn_id: int) -> PeerConnection:
        """Close and forget connection *conn_id*, then renumber the rest."""
        idx = self._index(conn_id)
        conn = self._connections.pop(idx)
        self._destroy(conn)
        self._renumber()
        log.info("Terminated connection to %s:%d", conn.remote_ip, conn.remote_port)
        return conn

    def send_message(self, conn_id: int, text: str) -> None:
        self._write(self.get(conn_id), encode_text(text))

    def reconnect(self, conn_id: int) -> PeerConnection:
        """
        Retry a connection whose transport failed.  Connecting or connected
        entries are left alone, so repeated calls never stack attempts.
        """
        conn = self.get(conn_id)
        if conn.destroyed:
            conn.sock = self._new_socket()
            conn.destroyed = False
        self._connect(conn)
        return conn

    def close_all(self) -> None:
        for conn in self._connections:
            self._destroy(conn)

    # ------------------------------------------------------------------
    # Internals (scheduler thread)
    # ------------------------------------------------------------------

    def _index(self, conn_id: int) -> int:
        for idx, conn in enumerate(self._connections):
            if conn.id == conn_id:
                return idx
        raise PeerLinkError(
            ErrorKind.CONNECTION_NOT_FOUND, f"Connection with id {conn_id} not found!"
        )

    def _renumber(self) -> None:
        for new_id, conn in enumerate(self._connections, start=1):
            conn.id = new_id
        self._next_id = len(self._connections) + 1

    def _new_socket(self) -> socket.socket:
        return self._socket_factory(socket.AF_INET, socket.SOCK_STREAM)

    def _connect(self, conn: PeerConnection) -> None:
        if conn.connecting or conn.destroyed:
            log.debug("Connect to %s:%d skipped (already in progress or closed)", *conn.address)
            return
        if conn.state is ConnectionState.CONNECTED:
            return
        conn.connecting = True
        conn.state = ConnectionState.CONNECTING
        self._scheduler.spawn(
            self._connect_worker, conn, conn.sock, conn.address,
            name=f"peerlink-out-{conn.remote_ip}:{conn.remote_port}",
        )

    def _write(self, conn: PeerConnection, data: bytes) -> None:
        if conn.destroyed:
            log.warning("%s:%d is offline; message not sent", *conn.address)
            return
        if conn.outbox is None:
            conn.pending.append(data)
            return
        conn.outbox.put(data)

    def _destroy(self, conn: PeerConnection) -> None:
        conn.state = ConnectionState.CLOSED
        conn.connecting = False
        conn.pending.clear()
        if conn.outbox is not None:
            conn.outbox.put(None)  # sentinel
            conn.outbox = None
        if conn.destroyed:
            return
        conn.destroyed = True
        try:
            conn.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        finally:
            conn.sock.close()

    def _is_stale(self, conn: PeerConnection, sock: socket.socket) -> bool:
        return conn.destroyed or conn.sock is not sock

    # --- scheduler callbacks ------------------------------------------

    def _on_connected(self, conn: PeerConnection, sock: socket.socket) -> None:
        if self._is_stale(conn, sock):
            sock.close()
            return
        conn.connecting = False
        conn.state = ConnectionState.CONNECTED
        self._renumber()
        log.info("Connected to %s:%d as #%d", conn.remote_ip, conn.remote_port, conn.id)
        outbox: queue.Queue[bytes | None] = queue.Queue()
        for data in [JOINED, *conn.pending]:
            outbox.put(data)
        conn.pending, conn.outbox = [], outbox
        self._scheduler.spawn(
            self._write_worker, conn, sock, outbox,
            name=f"peerlink-out-write-{conn.remote_ip}:{conn.remote_port}",
        )
        self._scheduler.spawn(
            self._read_worker, conn, sock,
            name=f"peerlink-out-read-{conn.remote_ip}:{conn.remote_port}",
        )

    def _on_connect_failed(self, conn: PeerConnection, sock: socket.socket, exc: OSError) -> None:
        if self._is_stale(conn, sock):
            return
        log.warning("%s:%d is unreachable: %s", conn.remote_ip, conn.remote_port, exc)
        self._destroy(conn)

    def _on_data(self, conn: PeerConnection, sock: socket.socket, data: bytes) -> None:
        if self._is_stale(conn, sock):
            return
        log.info("Message from %s:%d: %s", conn.remote_ip, conn.remote_port, decode_payload(data))

    def _on_closed(self, conn: PeerConnection, sock: socket.socket, exc: OSError | None) -> None:
        if self._is_stale(conn, sock):
            return
        if exc is None:
            log.info("%s:%d closed the connection", conn.remote_ip, conn.remote_port)
        else:
            log.warning("Connection to %s:%d lost: %s", conn.remote_ip, conn.remote_port, exc)
        self._destroy(conn)

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------

    def _connect_worker(
        self, conn: PeerConnection, sock: socket.socket, address: tuple[str, int]
    ) -> None:
        try:
            sock.connect(address)
        except OSError as exc:
            self._scheduler.post(self._on_connect_failed, conn, sock, exc)
            return
        self._scheduler.post(self._on_connected, conn, sock)

    def _write_worker(
        self, conn: PeerConnection, sock: socket.socket, outbox: queue.Queue[bytes | None]
    ) -> None:
        while True:
            data = outbox.get()
            if data is None:
                return
            try:
                sock.sendall(data)
            except OSError as exc:
                self._scheduler.post(self._on_closed, conn, sock, exc)
                return

    def _read_worker(self, conn: PeerConnection, sock: socket.socket) -> None:
        while True:
            try:
                data = sock.recv(self._settings.recv_buffer)
            except OSError as exc:
                self._scheduler.post(self._on_closed, conn, sock, exc)
                return
            if not data:
                self._scheduler.post(self._on_closed, conn, sock, None)
                return
            self._scheduler.post(self._on_data, conn, sock, data)
