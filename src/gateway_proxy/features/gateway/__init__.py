"""
Gateway - Supervision du processus backend et sondes de connectivité.
"""

from .probe import ConnectivityProbe
from .supervisor import GatewayMatcher, GatewaySupervisor, create_gateway_supervisor
from .diagnostics import FailureHint, build_failure_hint, describe_processes, tail

__all__ = [
    "ConnectivityProbe",
    "GatewayMatcher",
    "GatewaySupervisor",
    "create_gateway_supervisor",
    "FailureHint",
    "build_failure_hint",
    "describe_processes",
    "tail",
]
