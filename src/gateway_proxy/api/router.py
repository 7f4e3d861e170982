"""
Router principal de l'API.
"""
from fastapi import APIRouter

from .routes import (
    health,
    status,
    proxy,
    websocket,
)

# Router principal
api_router = APIRouter()

# Routes propres au proxy
api_router.include_router(health.router, prefix="", tags=["health"])
api_router.include_router(status.router, prefix="", tags=["status"])

# Catch-all vers le gateway (toujours en dernier)
api_router.include_router(websocket.router, prefix="", tags=["relay"])
api_router.include_router(proxy.router, prefix="", tags=["relay"])
