"""
Accès réseau au gateway (overlay HTTP/WebSocket) et relais HTTP.
"""

from .client import SandboxNetwork, create_sandbox_network, detect_overlay_host
from .http_relay import HttpRelay, inject_token

__all__ = [
    "SandboxNetwork",
    "create_sandbox_network",
    "detect_overlay_host",
    "HttpRelay",
    "inject_token",
]
