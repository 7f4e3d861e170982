"""
Cœur métier de Gateway Proxy.
Modules indépendants sans dépendances externes au package.
"""

from .exceptions import (
    GatewayProxyError,
    ConfigurationError,
    ProcessRuntimeError,
    PortTimeoutError,
    GatewayStartupError,
    RelayError,
)
from .constants import (
    GATEWAY_PORT,
    GATEWAY_COMMAND,
    STARTUP_TIMEOUT_S,
    PROBE_TIMEOUT_S,
    CLOSE_REASON_MAX_BYTES,
    CLOSE_ABNORMAL,
)
from .models import (
    ProcessStatus,
    Reachability,
    FrameKind,
    ProcessInfo,
    ProcessLogs,
    ProbeResult,
    SessionFrame,
)

__all__ = [
    # Exceptions
    "GatewayProxyError",
    "ConfigurationError",
    "ProcessRuntimeError",
    "PortTimeoutError",
    "GatewayStartupError",
    "RelayError",
    # Constants
    "GATEWAY_PORT",
    "GATEWAY_COMMAND",
    "STARTUP_TIMEOUT_S",
    "PROBE_TIMEOUT_S",
    "CLOSE_REASON_MAX_BYTES",
    "CLOSE_ABNORMAL",
    # Models
    "ProcessStatus",
    "Reachability",
    "FrameKind",
    "ProcessInfo",
    "ProcessLogs",
    "ProbeResult",
    "SessionFrame",
]
