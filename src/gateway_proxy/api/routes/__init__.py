"""
Routes API de Gateway Proxy.
"""

from . import health, status, proxy, websocket

__all__ = [
    "health",
    "status",
    "proxy",
    "websocket",
]
