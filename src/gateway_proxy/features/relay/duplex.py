"""gateway_proxy.features.relay.duplex

Relais WebSocket bidirectionnel client <-> gateway.

Deux tâches de forwarding indépendantes (une par sens). La première qui se
termine (fermeture ou erreur) propage la fermeture à l'autre jambe; l'autre
tâche dispose alors d'un délai de grâce pour observer la fermeture, puis est
annulée.

Client -> gateway:
- première frame handshake (`req`/`connect`) réécrite si un token est configuré
- toutes les autres frames forwardées octet pour octet

Gateway -> client:
- `error.message` passé dans la table de substitution
- frames non parsables ou sans erreur forwardées telles quelles

Fermetures:
- client fermé -> gateway fermé avec le même code/raison
- gateway fermé -> client fermé avec le même code, raison traduite et tronquée
- erreur d'une jambe -> l'autre fermée en 1011
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

from ...core.constants import CLOSE_ABNORMAL, CLOSE_GRACE_S, CLOSE_REASON_MAX_BYTES
from ...core.models import FrameKind
from .frames import (
    ErrorMessageRewriter,
    parse_frame,
    rewrite_handshake,
    sendable_close_code,
    truncate_reason,
)
from .legs import Leg, LegClosed, LegError

logger = logging.getLogger(__name__)


class DuplexRelay:
    """Une session relayée: deux jambes liées et leurs deux tâches de forwarding."""

    def __init__(
        self,
        client: Leg,
        backend: Leg,
        *,
        token: Optional[str] = None,
        rewriter: Optional[ErrorMessageRewriter] = None,
        reason_max_bytes: int = CLOSE_REASON_MAX_BYTES,
        close_grace_s: float = CLOSE_GRACE_S,
        session_id: Optional[str] = None,
    ):
        self.client = client
        self.backend = backend
        self.token = token
        self.rewriter = rewriter or ErrorMessageRewriter([])
        self.reason_max_bytes = reason_max_bytes
        self.close_grace_s = close_grace_s
        self.session_id = session_id or uuid.uuid4().hex[:8]

        self._handshake_pending = bool(token)
        self.handshake_rewritten = False
        self.frames_to_backend = 0
        self.frames_to_client = 0
        self.close_code: Optional[int] = None
        self.close_reason = ""

    async def run(self) -> None:
        """Relaie jusqu'à la fermeture des deux jambes (ou l'expiration du délai de grâce)."""
        logger.info("[WS] Session %s: relais démarré", self.session_id)
        upstream = asyncio.create_task(self._client_to_backend(), name=f"relay-{self.session_id}-up")
        downstream = asyncio.create_task(self._backend_to_client(), name=f"relay-{self.session_id}-down")
        tasks = {upstream, downstream}

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if pending:
                _, pending = await asyncio.wait(pending, timeout=self.close_grace_s)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for task in tasks:
                task.cancel()
            # Garantit la fermeture des deux jambes même après annulation
            for leg in (self.client, self.backend):
                if not leg.closed:
                    await leg.close(CLOSE_ABNORMAL, "Relay stopped")

        logger.info(
            "[WS] Session %s terminée (code %s, %s frames -> gateway, %s frames -> client)",
            self.session_id, self.close_code, self.frames_to_backend, self.frames_to_client,
        )

    async def _client_to_backend(self) -> None:
        while True:
            try:
                data = await self.client.receive()
            except LegClosed as closed:
                logger.info("[WS] Session %s: client fermé (%s) %s", self.session_id, closed.code, closed.reason)
                self._record_close(closed.code, closed.reason)
                await self.backend.close(sendable_close_code(closed.code), closed.reason)
                return
            except LegError as e:
                logger.error("[WS] Session %s: erreur côté client: %s", self.session_id, e)
                self._record_close(CLOSE_ABNORMAL, "Client error")
                await self.backend.close(CLOSE_ABNORMAL, "Client error")
                return

            data = self._rewrite_outgoing(data)
            try:
                await self.backend.send(data)
            except LegClosed:
                # Le sens gateway -> client observe et propage la fermeture
                return
            except LegError as e:
                logger.error("[WS] Session %s: envoi au gateway en échec: %s", self.session_id, e)
                self._record_close(CLOSE_ABNORMAL, "Gateway error")
                await self.client.close(CLOSE_ABNORMAL, "Gateway error")
                return
            self.frames_to_backend += 1

    async def _backend_to_client(self) -> None:
        while True:
            try:
                data = await self.backend.receive()
            except LegClosed as closed:
                reason = truncate_reason(self.rewriter.rewrite(closed.reason), self.reason_max_bytes)
                logger.info("[WS] Session %s: gateway fermé (%s) %s", self.session_id, closed.code, closed.reason)
                self._record_close(closed.code, reason)
                await self.client.close(sendable_close_code(closed.code), reason)
                return
            except LegError as e:
                logger.error("[WS] Session %s: erreur côté gateway: %s", self.session_id, e)
                self._record_close(CLOSE_ABNORMAL, "Gateway error")
                await self.client.close(CLOSE_ABNORMAL, "Gateway error")
                return

            if isinstance(data, str):
                frame = parse_frame(data)
                if frame.kind == FrameKind.ERROR:
                    logger.info("[WS] Session %s: erreur du gateway: %s", self.session_id, frame.error_message)
                    data = self.rewriter.rewrite_frame(frame) or data

            try:
                await self.client.send(data)
            except LegClosed:
                return
            except LegError as e:
                logger.error("[WS] Session %s: envoi au client en échec: %s", self.session_id, e)
                self._record_close(CLOSE_ABNORMAL, "Client error")
                await self.backend.close(CLOSE_ABNORMAL, "Client error")
                return
            self.frames_to_client += 1

    def _rewrite_outgoing(self, data):
        if not self._handshake_pending or not isinstance(data, str):
            return data
        frame = parse_frame(data)
        if frame.kind != FrameKind.HANDSHAKE:
            return data

        self._handshake_pending = False
        self.handshake_rewritten = True
        logger.info("[WS] Session %s: handshake réécrit (identité retirée, token injecté)", self.session_id)
        return rewrite_handshake(frame, self.token)

    def _record_close(self, code: int, reason: str) -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
