"""
Process context.

AppContext is built once in ``__main__`` and handed to everything that needs
the endpoint or the connection table.  It is what makes the Endpoint unique
per process: the first get_endpoint() call binds it, every later call hands
back the same object.
"""

from __future__ import annotations

import logging
import socket
from typing import Callable

from .config import Settings
from .connections import ConnectionTable
from .endpoint import Endpoint
from .errors import ErrorKind, PeerLinkError
from .protocol import local_ipv4, parse_port
from .scheduler import EventScheduler

log = logging.getLogger("peerlink.context")


class AppContext:
    def __init__(
        self,
        settings: Settings | None = None,
        scheduler: EventScheduler | None = None,
        resolve_ip: Callable[[], str] = local_ipv4,
        socket_factory: Callable[..., socket.socket] = socket.socket,
    ) -> None:
        self.settings = settings or Settings()
        self.scheduler = scheduler or EventScheduler()
        self.connections = ConnectionTable(self.scheduler, self.settings, socket_factory)
        self._resolve_ip = resolve_ip
        self._socket_factory = socket_factory
        self._endpoint: Endpoint | None = None
        self.exit_requested = False

    def get_endpoint(self, port: str | int | None = None) -> Endpoint:
        """
        Return the listening endpoint, binding it on first use.

        *port* is validated on every call but only used by the first one;
        without it the configured ``settings.port`` applies.
        """
        raw = port if port is not None else self.settings.port
        if raw is None:
            raise PeerLinkError(ErrorKind.INVALID_PORT, "Please provide a valid integer port number!")
        checked = parse_port(raw)
        if self._endpoint is None:
            endpoint = Endpoint(
                self._resolve_ip(), checked, self.scheduler, self.settings, self._socket_factory
            )
            endpoint.start()
            self._endpoint = endpoint
        return self._endpoint

    @property
    def endpoint(self) -> Endpoint:
        if self._endpoint is None:
            return self.get_endpoint()
        return self._endpoint

    def shutdown(self) -> None:
        """Close every socket and stop the scheduler.  Safe to call twice."""
        if self.exit_requested:
            return
        self.exit_requested = True
        self.connections.close_all()
        if self._endpoint is not None:
            self._endpoint.close()
        self.scheduler.stop()
        log.debug("Shutdown complete")
