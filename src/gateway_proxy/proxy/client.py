"""
Client réseau "overlay" vers le gateway (HTTPX + websockets).

Pourquoi un chemin distinct du loopback:
- Le trafic réel des clients atteint le gateway via l'interface overlay du sandbox
- Un gateway lié à 127.0.0.1 répond au check TCP local mais pas à ce chemin
- Le réseau renvoie alors une 500 synthétique "not listening on <host>"
"""
from typing import Optional, Sequence
import asyncio
import logging
import socket

import httpx
import websockets

from ..core.constants import OVERLAY_UNREACHABLE_STATUS
from ..core.exceptions import RelayError

logger = logging.getLogger(__name__)

SYNTHETIC_HEADER = "x-overlay-synthetic"


def detect_overlay_host() -> str:
    """
    Détecte l'adresse IPv4 principale (hors loopback) de la machine.

    Pourquoi UDP: connect() sur un socket UDP n'émet aucun paquet mais
    force le choix de l'interface de sortie.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect(("10.255.255.255", 1))
            host = sock.getsockname()[0]
        except OSError:
            return "127.0.0.1"
    return host or "127.0.0.1"


class SandboxNetwork:
    """
    Accès au gateway via le réseau overlay.

    Gère:
    - Réécriture de l'URL vers `overlay_host:port`
    - Pool de connexions HTTP partagé
    - 500 synthétique quand rien n'écoute sur l'interface overlay
    - Ouverture de la jambe WebSocket côté gateway
    """

    def __init__(
        self,
        overlay_host: Optional[str] = None,
        timeout: float = 120.0,
        connect_timeout: float = 10.0,
    ):
        self.overlay_host = overlay_host or detect_overlay_host()
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Récupère ou crée le client HTTP avec pool de connexions."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                limits=httpx.Limits(
                    max_keepalive_connections=20,
                    max_connections=50
                ),
                follow_redirects=False,
            )
        return self._client

    async def aclose(self):
        """Ferme le client HTTP de manière propre."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def overlay_url(self, url: httpx.URL, port: int, scheme: str = "http") -> httpx.URL:
        """Conserve path + query, remplace schéma/hôte/port."""
        return url.copy_with(scheme=scheme, host=self.overlay_host, port=port)

    async def container_fetch(
        self,
        request: httpx.Request,
        port: int,
        *,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Envoie `request` au gateway via l'interface overlay.

        Args:
            request: Requête dont seuls méthode, path, query, headers et corps sont conservés
            port: Port du gateway
            stream: Si True, le corps n'est pas lu (l'appelant doit fermer la réponse)
            timeout: Timeout spécifique à cet appel (secondes)

        Returns:
            La réponse du gateway, ou une 500 synthétique si le port n'écoute pas
            sur l'interface overlay.
        """
        client = await self._get_client()
        url = self.overlay_url(request.url, port)
        headers = [(k, v) for k, v in request.headers.multi_items() if k.lower() != "host"]
        forwarded = client.build_request(
            request.method,
            url,
            headers=headers,
            content=request.content,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )

        try:
            return await client.send(forwarded, stream=stream)
        except httpx.ConnectError as e:
            logger.info("[NET] Connexion refusée sur %s:%s (%s)", self.overlay_host, port, e)
            return httpx.Response(
                OVERLAY_UNREACHABLE_STATUS,
                text=f"not listening on {self.overlay_host}:{port}",
                headers={SYNTHETIC_HEADER: "1"},
                request=forwarded,
            )

    async def ws_connect(
        self,
        path_and_query: str,
        port: int,
        subprotocols: Optional[Sequence[str]] = None,
        open_timeout: Optional[float] = None,
    ):
        """
        Ouvre la connexion WebSocket vers le gateway.

        Returns:
            Connexion `websockets` ouverte

        Raises:
            RelayError: handshake refusé, timeout ou erreur réseau
        """
        if not path_and_query.startswith("/"):
            path_and_query = "/" + path_and_query
        url = f"ws://{self.overlay_host}:{port}{path_and_query}"

        try:
            return await websockets.connect(
                url,
                subprotocols=list(subprotocols) if subprotocols else None,
                open_timeout=open_timeout or self.connect_timeout,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise RelayError(
                f"Connexion WebSocket au gateway impossible: {e}",
                path=path_and_query.split("?", 1)[0],
            ) from e


def create_sandbox_network(
    overlay_host: Optional[str] = None,
    timeout: float = 120.0,
    connect_timeout: float = 10.0,
) -> SandboxNetwork:
    """
    Crée le client réseau overlay.

    Args:
        overlay_host: Adresse de l'interface overlay (détectée si None)
        timeout: Timeout global en secondes
        connect_timeout: Timeout de connexion en secondes

    Returns:
        Instance de SandboxNetwork
    """
    return SandboxNetwork(
        overlay_host=overlay_host,
        timeout=timeout,
        connect_timeout=connect_timeout,
    )
