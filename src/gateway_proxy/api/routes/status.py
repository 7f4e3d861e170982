"""
Routes API de diagnostic du gateway: statut et redémarrage.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/status")
async def gateway_status(request: Request):
    """
    Statut du gateway: processus, sonde, sessions relayées.

    Démarre le gateway en arrière-plan si aucun ne tourne.
    """
    state = request.app.state
    status = await state.supervisor.status()
    status["relay"] = state.sessions.to_dict()
    return status


@router.api_route("/api/restart", methods=["GET", "POST"])
async def restart_gateway(request: Request):
    """Kill des instances du gateway puis relance en arrière-plan (routes de debug)."""
    state = request.app.state
    if not state.settings.server.debug_routes:
        return JSONResponse(content={"error": "Routes de debug désactivées"}, status_code=404)

    logger.info("[DIAG] Redémarrage du gateway demandé")
    killed = await state.supervisor.restart()
    return {
        "success": True,
        "killed": killed,
        "message": "Gateway en cours de redémarrage",
    }
