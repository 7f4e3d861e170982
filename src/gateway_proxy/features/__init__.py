"""
Fonctionnalités de Gateway Proxy.
"""

from .gateway import GatewaySupervisor, ConnectivityProbe, create_gateway_supervisor
from .relay import DuplexRelay, ErrorMessageRewriter

__all__ = [
    # Gateway
    "GatewaySupervisor",
    "ConnectivityProbe",
    "create_gateway_supervisor",
    # Relay
    "DuplexRelay",
    "ErrorMessageRewriter",
]
