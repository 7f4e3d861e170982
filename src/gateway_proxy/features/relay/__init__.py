"""
Relay - Relais WebSocket authentifié entre le client et le gateway.
"""

from .duplex import DuplexRelay
from .frames import (
    ErrorMessageRewriter,
    parse_frame,
    rewrite_handshake,
    sendable_close_code,
    truncate_reason,
)
from .legs import BackendLeg, ClientLeg, LegClosed, LegError

__all__ = [
    "DuplexRelay",
    "ErrorMessageRewriter",
    "parse_frame",
    "rewrite_handshake",
    "sendable_close_code",
    "truncate_reason",
    "BackendLeg",
    "ClientLeg",
    "LegClosed",
    "LegError",
]
