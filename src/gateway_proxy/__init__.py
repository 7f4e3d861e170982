"""
Gateway Proxy - Superviseur de gateway et relais HTTP/WebSocket authentifié.
"""

__version__ = "1.0.0"
