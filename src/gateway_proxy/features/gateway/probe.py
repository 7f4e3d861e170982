"""gateway_proxy.features.gateway.probe

Sonde de connectivité du gateway, en deux étapes:

1. Check TCP "port ouvert" (via le handle de processus, chemin loopback)
2. GET HTTP via le réseau overlay, le même chemin que le trafic client réel

Un processus peut passer (1) en étant lié à 127.0.0.1 et échouer (2): il est
alors `loopback_only` et ne sera jamais utilisable sans redémarrage.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from ...core.constants import OVERLAY_UNREACHABLE_STATUS, PROBE_TIMEOUT_S
from ...core.exceptions import PortTimeoutError, ProcessRuntimeError
from ...core.models import ProbeResult, Reachability
from ...proxy.client import SandboxNetwork
from ...services.process_runtime import ProcessHandle

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Détermine si un processus "vivant" sert réellement le trafic overlay."""

    def __init__(self, network: SandboxNetwork, port: int, http_timeout_s: float = PROBE_TIMEOUT_S):
        self._network = network
        self.port = port
        self.http_timeout_s = http_timeout_s

    async def probe(self, process: ProcessHandle, timeout: float) -> ProbeResult:
        """
        Sonde complète: port TCP puis requête overlay.

        Args:
            process: Handle du processus à vérifier
            timeout: Délai max d'ouverture du port (secondes)
        """
        try:
            await process.wait_for_port(self.port, timeout=timeout)
        except (PortTimeoutError, ProcessRuntimeError, asyncio.TimeoutError) as e:
            logger.info("[PROBE] %s: port %s injoignable (%s)", process.id, self.port, e)
            return ProbeResult(Reachability.UNREACHABLE, detail=str(e))

        logger.info("[PROBE] %s: port %s ouvert, vérification via le réseau overlay...", process.id, self.port)
        return await self.check_overlay()

    async def check_overlay(self) -> ProbeResult:
        """
        GET `http://localhost:{port}/` via le réseau overlay.

        Toute réponse HTTP compte comme un succès (y compris 401/403: le gateway
        est "up" même s'il exige sa propre auth), sauf la 500 synthétique.
        Toute autre erreur est traitée comme `loopback_only`: mieux vaut un
        redémarrage qu'un faux "verified".
        """
        request = httpx.Request("GET", f"http://localhost:{self.port}/")
        try:
            response = await self._network.container_fetch(request, self.port, timeout=self.http_timeout_s)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("[PROBE] Requête overlay en échec: %s", e)
            return ProbeResult(Reachability.LOOPBACK_ONLY, detail=str(e))

        logger.info("[PROBE] Statut overlay: %s", response.status_code)
        if response.status_code == OVERLAY_UNREACHABLE_STATUS:
            body = response.text[:200]
            logger.warning("[PROBE] Gateway injoignable via le réseau overlay (500): %s", body)
            return ProbeResult(Reachability.LOOPBACK_ONLY, status_code=response.status_code, detail=body)

        return ProbeResult(Reachability.VERIFIED, status_code=response.status_code)
