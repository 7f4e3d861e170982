"""
Registre des sessions WebSocket relayées.
"""
import time
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..features.relay.duplex import DuplexRelay


class RelaySessionRegistry:
    """Suit les sessions relayées actives (diagnostics /api/status)."""

    def __init__(self):
        self.active_sessions: Dict[str, "DuplexRelay"] = {}
        self._started_at: Dict[str, float] = {}
        self._paths: Dict[str, str] = {}
        self.total_sessions = 0

    def register(self, relay: "DuplexRelay", path: str = "/"):
        """Enregistre une session qui démarre."""
        self.active_sessions[relay.session_id] = relay
        self._started_at[relay.session_id] = time.monotonic()
        self._paths[relay.session_id] = path
        self.total_sessions += 1

    def unregister(self, relay: "DuplexRelay"):
        """Retire une session terminée."""
        self.active_sessions.pop(relay.session_id, None)
        self._started_at.pop(relay.session_id, None)
        self._paths.pop(relay.session_id, None)

    async def run(self, relay: "DuplexRelay", path: str = "/"):
        """
        Exécute une session relayée en la gardant enregistrée pendant sa durée de vie.

        Args:
            relay: Session à exécuter
            path: Chemin demandé par le client (diagnostics)
        """
        self.register(relay, path)
        try:
            await relay.run()
        finally:
            self.unregister(relay)

    def get_session_count(self) -> int:
        """Retourne le nombre de sessions actives."""
        return len(self.active_sessions)

    def is_active(self, session_id: str) -> bool:
        """Vérifie si une session est active."""
        return session_id in self.active_sessions

    def describe(self) -> List[Dict[str, Any]]:
        """Instantané sérialisable des sessions actives."""
        now = time.monotonic()
        return [
            {
                "session_id": session_id,
                "path": self._paths.get(session_id, "/"),
                "age_s": round(now - self._started_at.get(session_id, now), 1),
                "frames_to_gateway": relay.frames_to_backend,
                "frames_to_client": relay.frames_to_client,
                "handshake_rewritten": relay.handshake_rewritten,
            }
            for session_id, relay in self.active_sessions.items()
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.get_session_count(),
            "total": self.total_sessions,
            "sessions": self.describe(),
        }


def create_session_registry(registry: Optional[RelaySessionRegistry] = None) -> RelaySessionRegistry:
    """
    Crée le registre des sessions relayées.

    Returns:
        Instance de RelaySessionRegistry
    """
    return registry or RelaySessionRegistry()
