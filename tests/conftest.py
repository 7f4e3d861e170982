"""
Configuration des tests pytest.
"""
import os
import sys

import pytest

# Ajoute src (package) et tests (doubles partagés) au path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from gateway_proxy.config.loader import _clear_config_cache
from gateway_proxy.config.settings import GatewaySettings, RelaySettings, ServerSettings, Settings
from gateway_proxy.core.constants import DEFAULT_ERROR_REWRITES


# Configuration pytest-asyncio
def pytest_configure(config):
    """Configure pytest pour async."""
    config.addinivalue_line(
        "markers", "asyncio: marque un test comme asynchrone"
    )


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Aucun config.toml ni variable d'environnement de l'hôte ne fuit dans les tests."""
    for key in ("GATEWAY_PROXY_CONFIG", "GATEWAY_TOKEN", "GATEWAY_PORT", "GATEWAY_COMMAND",
                "GATEWAY_OVERLAY_HOST", "DEBUG_ROUTES"):
        monkeypatch.delenv(key, raising=False)
    _clear_config_cache()
    yield
    _clear_config_cache()


@pytest.fixture
def gateway_settings():
    """Configuration du gateway avec des timeouts courts."""
    return GatewaySettings(
        command="/usr/local/bin/start-gateway.sh",
        port=18789,
        startup_timeout_s=1.0,
        probe_timeout_s=0.5,
        status_probe_timeout_s=0.5,
        env={"ANTHROPIC_API_KEY": "sk-test"},
    )


@pytest.fixture
def test_settings(gateway_settings):
    """Configuration complète de test (token configuré, routes de debug actives)."""
    return Settings(
        server=ServerSettings(debug_routes=True),
        gateway=gateway_settings,
        relay=RelaySettings(
            token="S",
            close_grace_s=0.5,
            error_rewrites=[dict(entry) for entry in DEFAULT_ERROR_REWRITES],
        ),
    )
