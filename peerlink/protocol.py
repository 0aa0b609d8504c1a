"""
peerlink wire constants and address parsing.

There is no framing: whatever is written to a socket goes out as-is and
inbound bytes are reported exactly as received.  This module only holds the
fixed values both sides rely on and the helpers that turn user-supplied text
into validated ports and IPv4 addresses.

parse_port("8080")        → 8080
parse_ipv4("10.0.0.5")    → "10.0.0.5"
local_ipv4()              → first non-loopback IPv4 of this host
"""

from __future__ import annotations

import ipaddress
import re
import socket

import psutil

from .errors import ErrorKind, PeerLinkError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_PORT: int = 1024                # exclusive
MAX_PORT: int = 65535               # exclusive
GREETING: bytes = b"Welcome------"  # sent to every accepted inbound peer
JOINED: bytes = b" joined"          # sent once an outbound connect succeeds
RECV_BUFFER: int = 4096
LISTEN_BACKLOG: int = 8
PROMPT: str = "~> "

_DOTTED_QUAD = re.compile(r"[0-9]{1,3}(\.[0-9]{1,3}){3}")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def port_in_range(port: int) -> bool:
    return MIN_PORT < port < MAX_PORT


def parse_port(raw: str | int) -> int:
    """Return *raw* as a port number, raising INVALID_PORT when it is not one."""
    if isinstance(raw, int) and not isinstance(raw, bool):
        port = raw
    else:
        text = str(raw).strip()
        # ASCII digits only: no sign, underscores or other scripts
        if not (text.isascii() and text.isdigit()):
            raise PeerLinkError(
                ErrorKind.INVALID_PORT,
                f"'{raw}' is not an integer port number!",
            )
        port = int(text, 10)
    if not port_in_range(port):
        raise PeerLinkError(
            ErrorKind.INVALID_PORT,
            f"Port should be within ({MIN_PORT}, {MAX_PORT}), got {port}",
        )
    return port


def is_ipv4(text: str) -> bool:
    if not _DOTTED_QUAD.fullmatch(text):
        return False
    return all(0 <= int(octet) <= 255 for octet in text.split("."))


def parse_ipv4(raw: str) -> str:
    """Return *raw* in canonical dotted-quad form or raise IP_RESOLUTION."""
    if not is_ipv4(raw):
        raise PeerLinkError(
            ErrorKind.IP_RESOLUTION, f'"{raw}" is not a valid IPv4 address!'
        )
    return ".".join(str(int(octet)) for octet in raw.split("."))


def local_ipv4() -> str:
    """First IPv4 address of a non-loopback interface, in interface order."""
    for _name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            if ipaddress.IPv4Address(addr.address).is_loopback:
                continue
            return parse_ipv4(addr.address)
    raise PeerLinkError(ErrorKind.IP_RESOLUTION, "Unable to determine IPv4 address!")


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def encode_text(text: str) -> bytes:
    return text.encode("utf-8")


def decode_payload(data: bytes) -> str:
    """Render raw inbound bytes for logging; undecodable bytes are replaced."""
    return data.decode("utf-8", errors="replace")
