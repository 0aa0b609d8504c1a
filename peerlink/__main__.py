"""
peerlink — peer-to-peer TCP messaging  CLI entry point.

Usage:
    python -m peerlink <port> [--log-level LEVEL] [-v] [--no-clear]

Listens for peers on <port> and opens an interactive prompt for connecting to
other peers and sending them messages.  Type 'help' at the prompt.
"""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console

from .config import Settings
from .console import DispatchLoop
from .context import AppContext
from .errors import ErrorKind, PeerLinkError

log = logging.getLogger("peerlink")


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _setup_logging(level: int) -> None:
    logging.basicConfig(
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        level=level,
    )


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

class _Parser(argparse.ArgumentParser):
    """Usage errors are startup failures: exit status 1, not argparse's 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="peerlink",
        description="peerlink — peer-to-peer TCP messaging (raw bytes, no framing)",
    )
    parser.add_argument("port", nargs="?", default=None,
                        help="Port to listen on, within (1024, 65535)")
    parser.add_argument("--log-level", default=None,
                        help="Logging level (default INFO, or $PEERLINK_LOG_LEVEL)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    parser.add_argument("--no-clear", action="store_true",
                        help="Do not clear the screen on startup")
    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run(argv: list[str] | None = None, console: Console | None = None) -> int:
    args = _build_parser().parse_args(argv)
    console = console or Console(highlight=False)

    try:
        settings = Settings.from_env()
        if args.log_level:
            settings.log_level = args.log_level.upper()
        if args.verbose:
            settings.log_level = "DEBUG"
        settings.clear_screen = settings.clear_screen and not args.no_clear
        settings.port = args.port
        settings.validate()
        if args.port is None:
            raise PeerLinkError(
                ErrorKind.INVALID_ARGUMENTS, "Please provide one argument as the port number!"
            )
    except PeerLinkError as err:
        console.print(err.message, style="red", markup=False)
        return 1

    _setup_logging(settings.log_level_value)
    context = AppContext(settings)

    try:
        endpoint = context.get_endpoint()
    except PeerLinkError as err:
        console.print(err.message, style="red", markup=False)
        return 1
    except OSError as exc:
        log.error("Cannot listen on port %s: %s", settings.port, exc)
        return 1

    loop = DispatchLoop(context, console=console)
    if settings.clear_screen:
        console.clear()
    console.print(f"peerlink  |  {endpoint.info()}  |  type 'help' for commands", markup=False)
    loop.start()

    try:
        context.scheduler.run()
    except KeyboardInterrupt:
        console.print("\nExiting CLI", markup=False)
    finally:
        context.shutdown()
    return 0


def main(argv: list[str] | None = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
