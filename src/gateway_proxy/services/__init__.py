"""
Services de Gateway Proxy.
"""

from .process_runtime import (
    LocalProcess,
    LocalProcessRuntime,
    ProcessHandle,
    ProcessRuntime,
    create_process_runtime,
)
from .websocket_manager import RelaySessionRegistry, create_session_registry

__all__ = [
    "LocalProcess",
    "LocalProcessRuntime",
    "ProcessHandle",
    "ProcessRuntime",
    "create_process_runtime",
    "RelaySessionRegistry",
    "create_session_registry",
]
