"""
Point d'entrée pour `python -m gateway_proxy`.
"""
import logging
import os

import uvicorn

from .config.loader import CONFIG_PATH_ENV, load_config
from .config.settings import Settings


def main():
    """Fonction principale."""
    import argparse

    parser = argparse.ArgumentParser(description="Gateway Proxy")
    parser.add_argument("--host", default=None, help="Host (défaut: [server].host ou 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port (défaut: [server].port ou 8000)")
    parser.add_argument("--config", default=None, help="Chemin du config.toml")
    parser.add_argument("--log-level", default=None, help="Niveau de log (défaut: [server].log_level ou info)")
    parser.add_argument("--reload", action="store_true", help="Activer le reload auto")

    args = parser.parse_args()

    if args.config:
        # Relu par gateway_proxy.main lors de l'import par uvicorn
        os.environ[CONFIG_PATH_ENV] = args.config

    settings = Settings.from_config(load_config(args.config))
    host = args.host or settings.server.host
    port = args.port or settings.server.port
    log_level = (args.log_level or settings.server.log_level).lower()

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"🚀 Démarrage du Gateway Proxy sur {host}:{port} (gateway: port {settings.gateway.port})")

    uvicorn.run(
        "gateway_proxy.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
