"""
Runtime settings.

Defaults come from ``protocol``; environment variables override them and CLI
flags override the environment:

    PEERLINK_LOG_LEVEL    logging level name          (default INFO)
    PEERLINK_BACKLOG      listen() backlog            (default 8)
    PEERLINK_GREETING     bytes sent to inbound peers (default "Welcome------")
    PEERLINK_PROMPT       interactive prompt          (default "~> ")
    PEERLINK_RECV_BUFFER  recv() size in bytes        (default 4096)

Any other PEERLINK_* variable is an error.  The listening port only comes
from the command line.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ErrorKind, PeerLinkError
from .protocol import GREETING, LISTEN_BACKLOG, PROMPT, RECV_BUFFER

_ENV_PREFIX = "PEERLINK_"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    port: str | int | None = None      # validated by AppContext.get_endpoint
    log_level: str = "INFO"
    backlog: int = LISTEN_BACKLOG
    greeting: bytes = GREETING
    prompt: str = PROMPT
    recv_buffer: int = RECV_BUFFER
    clear_screen: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls()
        for key, raw in env.items():
            if not key.startswith(_ENV_PREFIX):
                continue
            name = key[len(_ENV_PREFIX):].lower()
            if name == "log_level":
                settings.log_level = raw.upper()
            elif name == "backlog":
                settings.backlog = _int_setting(key, raw)
            elif name == "greeting":
                settings.greeting = raw.encode("utf-8")
            elif name == "prompt":
                settings.prompt = raw
            elif name == "recv_buffer":
                settings.recv_buffer = _int_setting(key, raw)
            else:
                raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, f"unknown setting {key}")
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.log_level not in _LOG_LEVELS:
            raise PeerLinkError(
                ErrorKind.INVALID_ARGUMENTS,
                f"log level must be one of {', '.join(_LOG_LEVELS)}, got {self.log_level!r}",
            )
        if self.backlog < 1:
            raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "backlog must be positive")
        if self.recv_buffer < 1:
            raise PeerLinkError(ErrorKind.INVALID_ARGUMENTS, "recv buffer must be positive")

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)


def _int_setting(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise PeerLinkError(
            ErrorKind.INVALID_ARGUMENTS, f"{key} must be an integer, got {raw!r}"
        ) from None
