"""
Tests unitaires du client réseau overlay (HTTPX).

Pourquoi: la 500 synthétique est le seul signal permettant de distinguer un
gateway lié au loopback d'un gateway réellement joignable.
"""
import httpx
import pytest

from gateway_proxy.core.exceptions import RelayError
from gateway_proxy.proxy.client import (
    SYNTHETIC_HEADER,
    SandboxNetwork,
    create_sandbox_network,
)


def network_with(handler) -> SandboxNetwork:
    network = SandboxNetwork(overlay_host="10.1.2.3")
    network._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return network


class TestSandboxNetwork:
    """Tests du client overlay."""

    def test_init_values(self):
        network = SandboxNetwork(overlay_host="10.0.0.5", timeout=30.0, connect_timeout=2.0)
        assert network.overlay_host == "10.0.0.5"
        assert network.timeout == 30.0
        assert network.connect_timeout == 2.0

    def test_overlay_url_keeps_path_and_query(self):
        network = SandboxNetwork(overlay_host="10.0.0.5")
        url = network.overlay_url(httpx.URL("https://public.example.com/a/b?x=1"), 18789)
        assert str(url) == "http://10.0.0.5:18789/a/b?x=1"

    @pytest.mark.asyncio
    async def test_container_fetch_rewrites_target(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.content
            return httpx.Response(201, text="created")

        network = network_with(handler)
        request = httpx.Request(
            "POST",
            "https://public.example.com/api/items?token=S",
            headers={"Authorization": "Bearer x", "Host": "public.example.com"},
            content=b'{"a": 1}',
        )

        response = await network.container_fetch(request, 18789)

        assert response.status_code == 201
        assert seen["url"] == "http://10.1.2.3:18789/api/items?token=S"
        assert seen["auth"] == "Bearer x"
        assert seen["body"] == b'{"a": 1}'
        await network.aclose()

    @pytest.mark.asyncio
    async def test_connection_refused_returns_synthetic_500(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        network = network_with(handler)

        response = await network.container_fetch(httpx.Request("GET", "http://localhost:18789/"), 18789)

        assert response.status_code == 500
        assert response.text == "not listening on 10.1.2.3:18789"
        assert response.headers[SYNTHETIC_HEADER] == "1"
        await network.aclose()

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        network = network_with(handler)

        with pytest.raises(httpx.ReadTimeout):
            await network.container_fetch(httpx.Request("GET", "http://localhost:18789/"), 18789)
        await network.aclose()

    @pytest.mark.asyncio
    async def test_ws_connect_failure_raises_relay_error(self):
        # Port 1 sur loopback: connexion refusée immédiatement
        network = SandboxNetwork(overlay_host="127.0.0.1", connect_timeout=2.0)

        with pytest.raises(RelayError) as exc_info:
            await network.ws_connect("/chat?token=S", 1)

        assert exc_info.value.code == "relay_error"

    @pytest.mark.asyncio
    async def test_aclose_idempotent(self):
        network = network_with(lambda request: httpx.Response(200))
        await network.aclose()
        await network.aclose()


class TestCreateSandboxNetwork:
    """Tests de la factory."""

    def test_factory_custom(self):
        network = create_sandbox_network(overlay_host="10.9.9.9", timeout=60.0)
        assert isinstance(network, SandboxNetwork)
        assert network.overlay_host == "10.9.9.9"
        assert network.timeout == 60.0

    def test_factory_detects_host(self):
        network = create_sandbox_network()
        assert network.overlay_host
