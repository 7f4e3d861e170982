"""
Route catch-all: relais HTTP vers le gateway.

- Navigateur (Accept: text/html) et gateway pas prêt: page de chargement,
  démarrage en arrière-plan
- Sinon: ensure() bloquant puis relais streamé
- Échec de démarrage: 503 avec un indice actionnable
"""
import logging

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse

from ...config.settings import GatewaySettings
from ...core.exceptions import GatewayStartupError
from ...features.gateway.diagnostics import build_failure_hint

router = APIRouter()
logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

LOADING_PAGE_HTML = """<!DOCTYPE html>
<html lang="fr">
<head>
  <meta charset="utf-8">
  <meta http-equiv="refresh" content="5">
  <title>Démarrage du gateway...</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #111; color: #eee;
           display: flex; align-items: center; justify-content: center; height: 100vh; margin: 0; }
    .box { text-align: center; }
    .spinner { width: 40px; height: 40px; margin: 0 auto 16px; border: 4px solid #444;
               border-top-color: #eee; border-radius: 50%; animation: spin 1s linear infinite; }
    @keyframes spin { to { transform: rotate(360deg); } }
  </style>
</head>
<body>
  <div class="box">
    <div class="spinner"></div>
    <p>Démarrage du gateway en cours...</p>
    <p><small>Cette page se recharge automatiquement.</small></p>
  </div>
</body>
</html>
"""


def _accepts_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def startup_failure_response(error: GatewayStartupError, settings: GatewaySettings) -> JSONResponse:
    """503 {error, details, hint} pour un échec de démarrage du gateway."""
    diagnostic = f"{error.message}\n{error.stderr or ''}"
    hint = build_failure_hint(diagnostic, settings.missing_env())
    return JSONResponse(
        content={
            "error": "Le gateway n'a pas pu démarrer",
            "details": error.message,
            "reason": error.code,
            "hint": hint.hint,
            "hint_kind": hint.kind,
        },
        status_code=503,
    )


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_to_gateway(request: Request, path: str):
    """Relaie toute requête non routée vers le gateway."""
    state = request.app.state
    supervisor = state.supervisor
    logger.info("[PROXY] Requête: %s", request.url.path)

    if _accepts_html(request) and not await supervisor.is_ready():
        logger.info("[PROXY] Gateway pas prêt, page de chargement servie")
        supervisor.ensure_in_background()
        return HTMLResponse(content=LOADING_PAGE_HTML)

    try:
        await supervisor.ensure()
    except GatewayStartupError as e:
        logger.error("[PROXY] Démarrage du gateway en échec: %s", e)
        return startup_failure_response(e, state.settings.gateway)

    try:
        return await state.http_relay.relay(request)
    except httpx.HTTPError as e:
        logger.error("[HTTP] Relais en échec pour %s: %s", request.url.path, e)
        return JSONResponse(
            content={"error": "Erreur de relais vers le gateway", "details": str(e)},
            status_code=502,
        )
