"""
Configuration de Gateway Proxy.
"""

from .loader import load_config, reload_config
from .settings import Settings, ServerSettings, GatewaySettings, RelaySettings

__all__ = [
    "load_config",
    "reload_config",
    "Settings",
    "ServerSettings",
    "GatewaySettings",
    "RelaySettings",
]
