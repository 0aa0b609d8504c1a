"""
Interactive command catalogue.

Every command is a plain handler ``handler(args)`` registered under its name.
Handlers check their own argument count and shape and raise PeerLinkError
(INVALID_ARGUMENTS and friends); they never catch it.  Reporting the error
and carrying on is the dispatch loop's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from rich.console import Console
from rich.table import Table

from .errors import ErrorKind, PeerLinkError
from .protocol import parse_ipv4, parse_port

if TYPE_CHECKING:
    from .context import AppContext

Handler = Callable[[list[str]], None]


@dataclass
class Command:
    name: str
    usage: str
    summary: str
    handler: Handler


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------

def _no_args(args: list[str]) -> None:
    if args:
        raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "This command does not accept arguments!")


def _parse_id(raw: str) -> int:
    try:
        return int(raw, 10)
    except ValueError:
        raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "ConnectionId must be a number!") from None


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class CommandRouter:
    """Maps command names to handlers bound to one AppContext."""

    def __init__(self, context: AppContext, console: Console) -> None:
        self._ctx = context
        self._console = console
        self._commands: dict[str, Command] = {}

        self.register("help", "help", "Prints help message", self.cmd_help)
        self.register("myip", "myip", "Prints local IP", self.cmd_myip)
        self.register("myport", "myport", "Prints listening port", self.cmd_myport)
        self.register("connect", "connect <ip> <port>", "Connects to server in network", self.cmd_connect)
        self.register("list", "list", "Lists connections", self.cmd_list)
        self.register("terminate", "terminate <id>", "Terminates a connection", self.cmd_terminate)
        self.register("send", "send <id> <message>", "Sends message to server", self.cmd_send)
        self.register("reconnect", "reconnect <id>", "Retries a failed connection", self.cmd_reconnect)
        self.register("exit", "exit", "Terminates connections and exits", self.cmd_exit)

    def register(self, name: str, usage: str, summary: str, handler: Handler) -> None:
        self._commands[name] = Command(name, usage, summary, handler)

    def resolve(self, name: str) -> Command | None:
        return self._commands.get(name)

    def names(self) -> list[str]:
        return list(self._commands)

    def _say(self, text: str) -> None:
        self._console.print(text, markup=False, highlight=False)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def cmd_help(self, args: list[str]) -> None:
        _no_args(args)
        table = Table(box=None, show_header=False, pad_edge=False)
        table.add_column("usage", style="bold")
        table.add_column("summary")
        for cmd in self._commands.values():
            table.add_row(cmd.usage, cmd.summary)
        self._say("Available commands:")
        self._console.print(table)

    def cmd_myip(self, args: list[str]) -> None:
        _no_args(args)
        self._say(f"IP Address: {self._ctx.endpoint.ip}")

    def cmd_myport(self, args: list[str]) -> None:
        _no_args(args)
        self._say(f"Port: {self._ctx.endpoint.port}")

    def cmd_connect(self, args: list[str]) -> None:
        if len(args) != 2:
            raise PeerLinkError(
                ErrorKind.INVALID_ARGUMENTS, "Expected 2 arguments: destination and port!"
            )
        remote_ip = parse_ipv4(args[0])
        remote_port = parse_port(args[1])
        self._ctx.connections.add_connection(remote_ip, remote_port)
        self._say("Connection added!")

    def cmd_list(self, args: list[str]) -> None:
        _no_args(args)
        self._say(self._ctx.connections.list_connections())

    def cmd_terminate(self, args: list[str]) -> None:
        if len(args) != 1:
            raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "Expected a single argument: connectionId!")
        conn = self._ctx.connections.remove_connection(_parse_id(args[0]))
        self._say(f"Connection to {conn.remote_ip}:{conn.remote_port} terminated")

    def cmd_send(self, args: list[str]) -> None:
        if len(args) < 2:
            raise PeerLinkError(
                ErrorKind.INVALID_ARGUMENTS, "Expected at least 2 arguments: connection id and message!"
            )
        conn_id = _parse_id(args[0])
        message = " ".join(args[1:])
        if not message.strip():
            raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "Message cannot be empty!")
        self._ctx.connections.send_message(conn_id, message)

    def cmd_reconnect(self, args: list[str]) -> None:
        if len(args) != 1:
            raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "Expected a single argument: connectionId!")
        conn = self._ctx.connections.reconnect(_parse_id(args[0]))
        self._say(f"Connection {conn.id}: {conn.state.value}")

    def cmd_exit(self, args: list[str]) -> None:
        _no_args(args)
        self._say("Exiting")
        self._ctx.shutdown()
