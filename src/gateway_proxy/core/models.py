"""
Dataclasses métier pour Gateway Proxy.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class ProcessStatus(str, Enum):
    """Cycle de vie d'un processus géré par le runtime."""
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"
    KILLED = "killed"

    @property
    def is_alive(self) -> bool:
        return self in (ProcessStatus.STARTING, ProcessStatus.RUNNING)


class Reachability(str, Enum):
    """Résultat tri-état d'une sonde de connectivité."""
    UNREACHABLE = "unreachable"
    LOOPBACK_ONLY = "loopback_only"
    VERIFIED = "verified"


class FrameKind(str, Enum):
    """Type d'une frame de session WebSocket."""
    HANDSHAKE = "handshake"
    RESPONSE = "response"
    ERROR = "error"
    OPAQUE = "opaque"


@dataclass
class ProcessInfo:
    """Instantané d'un processus (pour les diagnostics)."""
    id: str
    command: str
    status: ProcessStatus

    def to_dict(self) -> Dict[str, Any]:
        """Convertit l'instantané en dictionnaire."""
        return {
            "id": self.id,
            "command": self.command,
            "status": self.status.value,
        }


@dataclass
class ProcessLogs:
    """Sorties capturées d'un processus."""
    stdout: str = ""
    stderr: str = ""

    def tail(self, limit: int) -> "ProcessLogs":
        """Retourne les `limit` derniers caractères de chaque flux."""
        return ProcessLogs(
            stdout=(self.stdout or "")[-limit:] if limit > 0 else "",
            stderr=(self.stderr or "")[-limit:] if limit > 0 else "",
        )

    def to_dict(self) -> Dict[str, str]:
        return {"stdout": self.stdout, "stderr": self.stderr}


@dataclass
class ProbeResult:
    """Résultat détaillé d'une sonde de connectivité."""
    reachability: Reachability
    status_code: Optional[int] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.reachability == Reachability.VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reachability": self.reachability.value,
            "status_code": self.status_code,
            "detail": self.detail,
        }


@dataclass
class SessionFrame:
    """
    Frame d'une session persistante après analyse.

    `raw` conserve les données reçues telles quelles (str ou bytes) pour
    un forward octet pour octet des frames non modifiées.
    """
    kind: FrameKind
    raw: Union[str, bytes]
    payload: Optional[Dict[str, Any]] = field(default=None)

    @property
    def error_message(self) -> Optional[str]:
        if self.kind != FrameKind.ERROR or self.payload is None:
            return None
        return self.payload["error"]["message"]
