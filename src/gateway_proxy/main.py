"""
Gateway Proxy - Application FastAPI Factory.
Supervision du gateway + relais HTTP/WebSocket authentifié.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from .api.router import api_router
from .config.loader import load_config
from .config.settings import Settings
from .features.gateway import create_gateway_supervisor
from .proxy.client import SandboxNetwork, create_sandbox_network
from .proxy.http_relay import HttpRelay
from .services.process_runtime import ProcessRuntime, create_process_runtime
from .services.websocket_manager import create_session_registry

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[ProcessRuntime] = None,
    network: Optional[SandboxNetwork] = None,
) -> FastAPI:
    """
    Factory pour créer l'application FastAPI.

    Args:
        settings: Configuration (chargée depuis config.toml si None)
        runtime: Runtime de processus (local si None)
        network: Accès overlay au gateway (créé si None)

    Returns:
        Instance configurée de FastAPI
    """
    if settings is None:
        settings = Settings.from_config(load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Gestion du cycle de vie de l'application."""
        # Startup
        await _startup(app)
        yield
        # Shutdown
        await _shutdown(app)

    app = FastAPI(
        title="Gateway Proxy",
        description="Superviseur de gateway et relais HTTP/WebSocket authentifié",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Composants partagés, disponibles sans lifespan (tests ASGI)
    app.state.settings = settings
    app.state.runtime = runtime or create_process_runtime()
    app.state.network = network or create_sandbox_network(overlay_host=settings.gateway.overlay_host)
    app.state.supervisor = create_gateway_supervisor(app.state.runtime, app.state.network, settings.gateway)
    app.state.http_relay = HttpRelay(app.state.network, settings.gateway.port, token=settings.relay.token)
    app.state.sessions = create_session_registry()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        logger.info(
            "[REQ] %s %s -> %s (%.0f ms)",
            request.method, request.url.path, response.status_code, (time.monotonic() - started) * 1000,
        )
        return response

    # Inclusion des routes API
    app.include_router(api_router)

    return app


async def _startup(app: FastAPI):
    """Initialisation au démarrage."""
    settings: Settings = app.state.settings
    logger.info("🚀 Démarrage du Gateway Proxy...")
    logger.info("✅ Gateway: %s (port %s)", settings.gateway.command, settings.gateway.port)
    logger.info("✅ Réseau overlay: %s", app.state.network.overlay_host)
    if not settings.relay.token:
        logger.warning("⚠️ Aucun token de gateway configuré: le handshake ne sera pas réécrit")

    missing = settings.gateway.missing_env()
    if missing:
        logger.warning("⚠️ Variables requises par le gateway absentes: %s", ", ".join(missing))

    if settings.gateway.start_on_boot:
        logger.info("🔄 Démarrage du gateway en arrière-plan (start_on_boot)")
        app.state.supervisor.ensure_in_background()


async def _shutdown(app: FastAPI):
    """Arrêt de l'application."""
    logger.info("👋 Arrêt du serveur...")
    settings: Settings = app.state.settings
    runtime = app.state.runtime

    if settings.gateway.stop_on_shutdown and hasattr(runtime, "shutdown"):
        await runtime.shutdown()

    await app.state.network.aclose()
    logger.info("✅ Serveur arrêté proprement")


app = create_app()
