"""
Interactive dispatch loop.

A reader thread prompts and waits for one line of input, posts it to the
scheduler, then waits until that line has been fully handled before it
prompts again.  Lines are handled on the scheduler thread, so a command
never interleaves with a socket event or with another command.

    AWAITING_LINE --line--> DISPATCHING --handler returns / error shown--> AWAITING_LINE

``exit`` and end-of-input are the only ways out.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable

from rich.console import Console

from .commands import CommandRouter
from .context import AppContext
from .errors import PeerLinkError

log = logging.getLogger("peerlink.console")

UNKNOWN_COMMAND = "Unknown command:\n\t Type 'help' for available commands!"


class LoopState(Enum):
    AWAITING_LINE = "awaiting-line"
    DISPATCHING   = "dispatching"


class DispatchLoop:
    def __init__(
        self,
        context: AppContext,
        console: Console | None = None,
        read_line: Callable[[str], str] = input,
    ) -> None:
        self._ctx = context
        self.console = console or Console(highlight=False)
        self.router = CommandRouter(context, self.console)
        self._read_line = read_line
        self._ready = threading.Event()
        self.state = LoopState.AWAITING_LINE

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def start(self) -> threading.Thread:
        """Start the stdin reader; lines are handled once the scheduler runs."""
        self._ready.set()
        return self._ctx.scheduler.spawn(self._reader, name="peerlink-stdin")

    def handle_line(self, line: str) -> None:
        """Resolve and run one input line.  Command errors are shown, not raised."""
        try:
            parts = line.strip().split()
            if not parts:
                return
            name, args = parts[0], parts[1:]
            command = self.router.resolve(name)
            if command is None:
                self.console.print(UNKNOWN_COMMAND, markup=False)
                return
            self.state = LoopState.DISPATCHING
            try:
                command.handler(args)
            except PeerLinkError as err:
                log.debug("%s failed: %r", name, err)
                self.console.print(err.message, style="red", markup=False, highlight=False)
        finally:
            self.state = LoopState.AWAITING_LINE
            self._ready.set()

    def end_of_input(self) -> None:
        if self._ctx.exit_requested:
            return
        self.console.print("\nExiting CLI", markup=False)
        self._ctx.shutdown()

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------

    def _reader(self) -> None:
        while True:
            self._ready.wait()
            if self._ctx.exit_requested:
                return
            self._ready.clear()
            try:
                line = self._read_line(self._ctx.settings.prompt)
            except EOFError:
                self._ctx.scheduler.post(self.end_of_input)
                return
            self._ctx.scheduler.post(self.handle_line, line)
