"""
Route WebSocket catch-all: relais de session vers le gateway.
"""
import logging

import httpx
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...core.constants import CLOSE_ABNORMAL
from ...core.exceptions import GatewayStartupError, RelayError
from ...features.relay import (
    BackendLeg,
    ClientLeg,
    DuplexRelay,
    ErrorMessageRewriter,
    truncate_reason,
)
from ...proxy.http_relay import inject_token

router = APIRouter()
logger = logging.getLogger(__name__)


def _public_host(websocket: WebSocket) -> str:
    return websocket.headers.get("host") or websocket.url.hostname or "localhost"


@router.websocket("/{path:path}")
async def relay_websocket(websocket: WebSocket, path: str):
    """
    Relaie une session WebSocket vers le gateway.

    Le token du gateway est injecté dans l'URL de connexion et dans la
    première frame handshake. En cas d'échec (démarrage ou connexion),
    le client est accepté puis fermé en 1011 avec une raison traduite.
    """
    state = websocket.app.state
    settings = state.settings
    rewriter = ErrorMessageRewriter(settings.relay.error_rewrites, host=_public_host(websocket))
    logger.info("[WS] Nouvelle session: %s", websocket.url.path)

    target = inject_token(httpx.URL(str(websocket.url)), settings.relay.token)
    path_and_query = target.raw_path.decode("ascii")

    try:
        await state.supervisor.ensure()
        connection = await state.network.ws_connect(
            path_and_query,
            settings.gateway.port,
            subprotocols=websocket.scope.get("subprotocols") or None,
        )
    except (GatewayStartupError, RelayError) as e:
        logger.error("[WS] Session impossible: %s", e)
        reason = truncate_reason(rewriter.rewrite(e.message), settings.relay.reason_max_bytes)
        await websocket.accept()
        await websocket.close(code=CLOSE_ABNORMAL, reason=reason)
        return

    backend = BackendLeg(connection)
    try:
        await websocket.accept(subprotocol=backend.subprotocol)
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info("[WS] Client parti avant l'acceptation: %s", e)
        await backend.close(CLOSE_ABNORMAL, "Client error")
        return

    relay = DuplexRelay(
        ClientLeg(websocket),
        backend,
        token=settings.relay.token,
        rewriter=rewriter,
        reason_max_bytes=settings.relay.reason_max_bytes,
        close_grace_s=settings.relay.close_grace_s,
    )
    await state.sessions.run(relay, path=websocket.url.path)
