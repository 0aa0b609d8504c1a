"""
Error taxonomy.

Every failure the command layer can report is a PeerLinkError tagged with an
ErrorKind.  Callers branch on ``err.kind`` instead of catching a family of
subclasses: during startup any of them aborts the process, inside the
dispatch loop every kind is reported and the loop carries on.
"""

from __future__ import annotations

from enum import IntEnum


class ErrorKind(IntEnum):
    IP_RESOLUTION        = 1
    INVALID_PORT         = 2
    INVALID_ARGUMENTS    = 3
    CONNECTION_NOT_FOUND = 4


_PREFIX: dict[ErrorKind, str] = {
    ErrorKind.INVALID_PORT: "Invalid port number",
    ErrorKind.INVALID_ARGUMENTS: "Invalid argument(s)",
}


class PeerLinkError(Exception):
    """A user-facing failure with a kind and a human-readable detail."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        prefix = _PREFIX.get(self.kind)
        if prefix is None:
            return self.detail
        return f"{prefix}:\n\t {self.detail}" if self.detail else prefix

    def __repr__(self) -> str:
        return f"PeerLinkError({self.kind.name}, {self.detail!r})"
