"""
Dataclasses pour la configuration.

Règle de priorité: env > toml > défauts.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core.constants import (
    CLOSE_GRACE_S,
    CLOSE_REASON_MAX_BYTES,
    GATEWAY_COMMAND,
    GATEWAY_EXCLUDE_PATTERNS,
    GATEWAY_MATCH_PATTERNS,
    GATEWAY_PORT,
    PROBE_TIMEOUT_S,
    STARTUP_TIMEOUT_S,
    STATUS_PROBE_TIMEOUT_S,
)
from .loader import (
    as_bool,
    as_str_list,
    clamp_float,
    clamp_int,
    get_backend_env,
    get_error_rewrites,
    is_unset_value,
)


@dataclass
class ServerSettings:
    """Configuration du serveur HTTP du proxy."""
    host: str = "0.0.0.0"
    port: int = 8000
    debug_routes: bool = False
    log_level: str = "info"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerSettings":
        """Crée une instance depuis un dictionnaire."""
        host = data.get("host")
        log_level = data.get("log_level", "info")
        return cls(
            host=host if isinstance(host, str) and host.strip() else "0.0.0.0",
            port=clamp_int(data.get("port", 8000), default=8000, min_value=1, max_value=65535),
            debug_routes=as_bool(data.get("debug_routes", False), default=False),
            log_level=log_level.lower() if isinstance(log_level, str) else "info",
        )


@dataclass
class GatewaySettings:
    """Configuration du processus gateway supervisé."""
    command: str = GATEWAY_COMMAND
    port: int = GATEWAY_PORT
    startup_timeout_s: float = STARTUP_TIMEOUT_S
    probe_timeout_s: float = PROBE_TIMEOUT_S
    status_probe_timeout_s: float = STATUS_PROBE_TIMEOUT_S
    single_flight: bool = True
    start_on_boot: bool = False
    stop_on_shutdown: bool = True
    overlay_host: Optional[str] = None
    match_patterns: List[str] = field(default_factory=lambda: list(GATEWAY_MATCH_PATTERNS))
    exclude_patterns: List[str] = field(default_factory=lambda: list(GATEWAY_EXCLUDE_PATTERNS))
    required_env: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> "GatewaySettings":
        """Crée une instance depuis la section `[gateway]`."""
        command = data.get("command", GATEWAY_COMMAND)
        overlay_host = data.get("overlay_host")
        return cls(
            command=command if isinstance(command, str) and command.strip() else GATEWAY_COMMAND,
            port=clamp_int(data.get("port", GATEWAY_PORT), default=GATEWAY_PORT, min_value=1, max_value=65535),
            startup_timeout_s=clamp_float(
                data.get("startup_timeout_s", STARTUP_TIMEOUT_S),
                default=STARTUP_TIMEOUT_S, min_value=1.0, max_value=3600.0,
            ),
            probe_timeout_s=clamp_float(
                data.get("probe_timeout_s", PROBE_TIMEOUT_S),
                default=PROBE_TIMEOUT_S, min_value=0.5, max_value=120.0,
            ),
            status_probe_timeout_s=clamp_float(
                data.get("status_probe_timeout_s", STATUS_PROBE_TIMEOUT_S),
                default=STATUS_PROBE_TIMEOUT_S, min_value=0.5, max_value=120.0,
            ),
            single_flight=as_bool(data.get("single_flight", True), default=True),
            start_on_boot=as_bool(data.get("start_on_boot", False), default=False),
            stop_on_shutdown=as_bool(data.get("stop_on_shutdown", True), default=True),
            overlay_host=None if is_unset_value(overlay_host) or not isinstance(overlay_host, str) else overlay_host,
            match_patterns=as_str_list(data.get("match_patterns"), default=GATEWAY_MATCH_PATTERNS),
            exclude_patterns=as_str_list(data.get("exclude_patterns"), default=GATEWAY_EXCLUDE_PATTERNS),
            required_env=as_str_list(data.get("required_env"), default=[]),
            env=dict(env or {}),
        )

    def missing_env(self) -> List[str]:
        """Clés requises absentes de l'environnement transmis au gateway."""
        return [key for key in self.required_env if not self.env.get(key)]


@dataclass
class RelaySettings:
    """Configuration du relais WebSocket/HTTP."""
    token: Optional[str] = None
    reason_max_bytes: int = CLOSE_REASON_MAX_BYTES
    close_grace_s: float = CLOSE_GRACE_S
    error_rewrites: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], error_rewrites: List[Dict[str, Any]] = None) -> "RelaySettings":
        """Crée une instance depuis la section `[relay]`."""
        token = data.get("token")
        return cls(
            token=None if is_unset_value(token) or not isinstance(token, str) else token,
            reason_max_bytes=clamp_int(
                data.get("reason_max_bytes", CLOSE_REASON_MAX_BYTES),
                default=CLOSE_REASON_MAX_BYTES, min_value=16, max_value=CLOSE_REASON_MAX_BYTES,
            ),
            close_grace_s=clamp_float(
                data.get("close_grace_s", CLOSE_GRACE_S),
                default=CLOSE_GRACE_S, min_value=0.1, max_value=60.0,
            ),
            error_rewrites=list(error_rewrites or []),
        )


@dataclass
class Settings:
    """Configuration globale de l'application."""
    server: ServerSettings = field(default_factory=ServerSettings)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    relay: RelaySettings = field(default_factory=RelaySettings)

    @classmethod
    def from_config(cls, config: Dict[str, Any], environ: Mapping[str, str] = None) -> "Settings":
        """Crée une instance depuis la configuration chargée puis applique l'environnement."""
        if environ is None:
            environ = os.environ

        def section(name: str) -> Dict[str, Any]:
            obj = config.get(name)
            return obj if isinstance(obj, dict) else {}

        server_data = dict(section("server"))
        gateway_data = dict(section("gateway"))
        relay_data = dict(section("relay"))

        # Surcharges d'environnement
        if environ.get("GATEWAY_TOKEN"):
            relay_data["token"] = environ["GATEWAY_TOKEN"]
        if environ.get("GATEWAY_PORT"):
            gateway_data["port"] = environ["GATEWAY_PORT"]
        if environ.get("GATEWAY_COMMAND"):
            gateway_data["command"] = environ["GATEWAY_COMMAND"]
        if environ.get("GATEWAY_OVERLAY_HOST"):
            gateway_data["overlay_host"] = environ["GATEWAY_OVERLAY_HOST"]
        if environ.get("DEBUG_ROUTES"):
            server_data["debug_routes"] = environ["DEBUG_ROUTES"]

        return cls(
            server=ServerSettings.from_dict(server_data),
            gateway=GatewaySettings.from_dict(gateway_data, env=get_backend_env(config)),
            relay=RelaySettings.from_dict(relay_data, error_rewrites=get_error_rewrites(config)),
        )
