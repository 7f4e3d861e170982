"""
Route API pour le health check du proxy.
"""
from fastapi import APIRouter, Request

from ...core.constants import SERVICE_NAME

router = APIRouter()


@router.get("/sandbox-health")
async def sandbox_health(request: Request):
    """Health check du proxy lui-même (ne sonde pas le gateway)."""
    settings = request.app.state.settings
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "gateway_port": settings.gateway.port,
    }
