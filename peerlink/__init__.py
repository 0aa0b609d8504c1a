"""
peerlink — peer-to-peer TCP messaging.

One process listens for inbound peers (``endpoint``) while keeping a numbered
table of outbound connections (``connections``), all driven from an
interactive prompt (``console`` / ``commands``).  Socket events and input
lines are serialised through a single ``scheduler``.
"""

__version__ = "1.0.0"
