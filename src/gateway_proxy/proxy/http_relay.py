"""
Relais HTTP vers le gateway via le réseau overlay.

- Token du gateway injecté en paramètre de query `token` (remplace celui du client)
- Headers hop-by-hop retirés dans les deux sens
- Corps de réponse streamé tel quel, headers de debug ajoutés
"""
import logging
from typing import List, Optional, Tuple
from urllib.parse import quote

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ..core.constants import HOP_BY_HOP_HEADERS, TOKEN_QUERY_PARAM
from .client import SandboxNetwork

logger = logging.getLogger(__name__)

DEBUG_HEADER_VALUE = "proxy-to-gateway"


def inject_token(url: httpx.URL, token: Optional[str]) -> httpx.URL:
    """Place `token` dans la query (remplace une valeur existante)."""
    if not token:
        return url
    return url.copy_set_param(TOKEN_QUERY_PARAM, token)


def _filter_response_headers(headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """
    Filtre les headers de réponse du gateway (octets bruts, doublons conservés).

    Pourquoi: httpx décompresse automatiquement le corps, mais garde
    les headers content-encoding. Le client essaierait alors de décompresser
    un corps déjà décompressé.
    """
    skip_headers = set(HOP_BY_HOP_HEADERS) | {"content-encoding"}
    filtered = []
    for key, value in headers.raw:
        name = key.lower()
        if name.decode("latin-1") not in skip_headers:
            filtered.append((name, value))
    return filtered


def _encoded_path(request: Request) -> str:
    """Chemin de la requête tel que reçu (percent-encodé, sans query)."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return quote(request.url.path, safe="/%")


class HttpRelay:
    """Relaie une requête entrante FastAPI vers le gateway."""

    def __init__(self, network: SandboxNetwork, port: int, token: Optional[str] = None):
        self._network = network
        self.port = port
        self.token = token

    async def build_request(self, request: Request) -> httpx.Request:
        url = inject_token(httpx.URL(str(request.url)), self.token)
        headers = [
            (key, value)
            for key, value in request.headers.items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        ]
        body = await request.body()
        return httpx.Request(request.method, url, headers=headers, content=body)

    async def relay(self, request: Request) -> StreamingResponse:
        """
        Envoie la requête au gateway et streame sa réponse.

        Returns:
            StreamingResponse (la réponse httpx est fermée en fin de stream)
        """
        logger.info("[HTTP] Relais: %s %s", request.method, request.url.path)

        upstream = await self.build_request(request)
        response = await self._network.container_fetch(upstream, self.port, stream=True)
        logger.info("[HTTP] Statut de réponse: %s", response.status_code)

        streaming = StreamingResponse(
            response.aiter_bytes(),
            status_code=response.status_code,
            background=BackgroundTask(response.aclose),
        )
        # Copie brute: plusieurs Set-Cookie restent des headers distincts
        streaming.raw_headers.extend(_filter_response_headers(response.headers))
        streaming.headers["X-Worker-Debug"] = DEBUG_HEADER_VALUE
        streaming.headers["X-Debug-Path"] = _encoded_path(request)
        return streaming
