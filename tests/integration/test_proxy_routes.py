"""
Tests d'intégration des routes FastAPI: health, diagnostics, relais HTTP et WebSocket.

Le gateway est simulé (FakeRuntime); le relais HTTP passe par le vrai
SandboxNetwork branché sur un httpx.MockTransport.
"""
import asyncio
import dataclasses
import json

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from websockets.frames import Close

from fixtures.fake_sandbox import FakeBackendConnection, FakeNetwork, FakeProcess, FakeRuntime
from gateway_proxy.main import create_app
from gateway_proxy.proxy.client import SandboxNetwork

HANDSHAKE = '{"type":"req","method":"connect","params":{"deviceId":"x","signature":"y","client":"web"}}'


class RecordingGateway:
    """Handler MockTransport: enregistre les requêtes relayées (hors sonde `/`)."""

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path != "/":
            self.requests.append(request)
        return httpx.Response(
            200,
            json={"path": request.url.path},
            headers={"X-Gateway": "1", "Connection": "keep-alive"},
        )


def overlay_network(handler) -> SandboxNetwork:
    network = SandboxNetwork(overlay_host="10.1.2.3")
    network._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return network


@pytest_asyncio.fixture
async def http_env(test_settings):
    """App avec un gateway déjà en marche et un réseau overlay simulé."""
    gateway = RecordingGateway()
    runtime = FakeRuntime([FakeProcess()])
    network = overlay_network(gateway)
    app = create_app(test_settings, runtime=runtime, network=network)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app, runtime, gateway
    await network.aclose()


class TestHealthAndDiagnostics:
    """Routes propres au proxy."""

    @pytest.mark.asyncio
    async def test_sandbox_health(self, http_env):
        client, _, _, gateway = http_env
        response = await client.get("/sandbox-health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "gateway-proxy", "gateway_port": 18789}
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_status_running(self, http_env):
        client, _, runtime, _ = http_env
        response = await client.get("/api/status")
        data = response.json()
        assert data["ok"] is True
        assert data["status"] == "running"
        assert data["process_id"] == runtime.processes[0].id
        assert data["relay"]["active"] == 0

    @pytest.mark.asyncio
    async def test_restart(self, http_env):
        client, app, runtime, _ = http_env
        old = runtime.processes[0]

        response = await client.post("/api/restart")
        await asyncio.gather(*app.state.supervisor._background)

        assert response.status_code == 200
        assert response.json()["killed"] == 1
        assert old.kill_calls == 1
        assert len(runtime.live()) == 1

    @pytest.mark.asyncio
    async def test_restart_disabled_without_debug_routes(self, test_settings):
        settings = dataclasses.replace(
            test_settings, server=dataclasses.replace(test_settings.server, debug_routes=False)
        )
        runtime = FakeRuntime([FakeProcess()])
        app = create_app(settings, runtime=runtime, network=FakeNetwork(runtime))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/restart")

        assert response.status_code == 404
        assert runtime.processes[0].kill_calls == 0


class TestHttpRelay:
    """Route catch-all HTTP."""

    @pytest.mark.asyncio
    async def test_request_relayed_with_token(self, http_env):
        client, _, _, gateway = http_env

        response = await client.post("/api/items?x=1&token=client", content=b'{"a": 1}')

        assert response.status_code == 200
        assert response.json() == {"path": "/api/items"}
        assert response.headers["x-worker-debug"] == "proxy-to-gateway"
        assert response.headers["x-debug-path"] == "/api/items"
        assert response.headers["x-gateway"] == "1"

        upstream = gateway.requests[0]
        assert upstream.method == "POST"
        assert upstream.url.host == "10.1.2.3"
        assert upstream.url.port == 18789
        assert upstream.url.params["token"] == "S"
        assert upstream.url.params["x"] == "1"
        assert upstream.content == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_non_latin1_path_relayed(self, http_env):
        client, _, _, gateway = http_env

        response = await client.get("/docs/%E6%97%A5%E6%9C%AC")

        assert response.status_code == 200
        assert response.json() == {"path": "/docs/日本"}
        assert response.headers["x-debug-path"] == "/docs/%E6%97%A5%E6%9C%AC"
        assert gateway.requests[0].url.raw_path.startswith(b"/docs/%E6%97%A5%E6%9C%AC")

    @pytest.mark.asyncio
    async def test_multiple_cookies_kept_separate(self, test_settings):
        def gateway(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                text="ok",
                headers=[("Set-Cookie", "a=1; Path=/"), ("Set-Cookie", "b=2; Path=/")],
            )

        runtime = FakeRuntime([FakeProcess()])
        network = overlay_network(gateway)
        app = create_app(test_settings, runtime=runtime, network=network)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/login")
        await network.aclose()

        assert response.status_code == 200
        assert response.headers.get_list("set-cookie") == ["a=1; Path=/", "b=2; Path=/"]
        assert response.headers["x-worker-debug"] == "proxy-to-gateway"

    @pytest.mark.asyncio
    async def test_browser_gets_loading_page_when_not_ready(self, test_settings):
        runtime = FakeRuntime()
        app = create_app(test_settings, runtime=runtime, network=FakeNetwork(runtime))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/", headers={"Accept": "text/html,application/xhtml+xml"})
            await asyncio.gather(*app.state.supervisor._background)

        assert response.status_code == 200
        assert "Démarrage du gateway" in response.text
        assert len(runtime.starts) == 1

    @pytest.mark.asyncio
    async def test_api_client_waits_for_startup(self, test_settings):
        runtime = FakeRuntime()
        app = create_app(test_settings, runtime=runtime, network=FakeNetwork(runtime))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/v1/models", headers={"Accept": "application/json"})

        assert response.status_code == 200
        assert response.text == "gateway ok"
        assert len(runtime.starts) == 1

    @pytest.mark.asyncio
    async def test_startup_failure_returns_503_with_hint(self, test_settings):
        runtime = FakeRuntime(launch=lambda: FakeProcess(port_open=False, stderr="FATAL: heap out of memory"))
        app = create_app(test_settings, runtime=runtime, network=FakeNetwork(runtime))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/anything")

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "Le gateway n'a pas pu démarrer"
        assert "heap out of memory" in data["details"]
        assert data["reason"] == "launch_timeout"
        assert data["hint_kind"] == "resource"

    @pytest.mark.asyncio
    async def test_missing_env_hint(self, test_settings):
        gateway = dataclasses.replace(test_settings.gateway, required_env=["DISCORD_BOT_TOKEN"])
        settings = dataclasses.replace(test_settings, gateway=gateway)
        runtime = FakeRuntime(launch=lambda: FakeProcess(overlay=False))
        app = create_app(settings, runtime=runtime, network=FakeNetwork(runtime))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/anything")

        data = response.json()
        assert response.status_code == 503
        assert data["reason"] == "launch_unreachable"
        assert data["hint_kind"] == "configuration"
        assert "DISCORD_BOT_TOKEN" in data["hint"]


class TestWebSocketRelay:
    """Route catch-all WebSocket (TestClient Starlette)."""

    def make_client(self, settings, network_factory=None):
        runtime = FakeRuntime([FakeProcess()])
        network = FakeNetwork(runtime)
        if network_factory is not None:
            network.backend_factory = network_factory
        app = create_app(settings, runtime=runtime, network=network)
        return TestClient(app), network

    def test_handshake_rewritten_and_frames_echoed(self, test_settings):
        client, network = self.make_client(test_settings)

        with client:
            with client.websocket_connect("/chat?session=1") as ws:
                ws.send_text(HANDSHAKE)
                handshake = json.loads(ws.receive_text())
                ws.send_text("ping")
                echoed = ws.receive_text()

        assert handshake == {
            "type": "req",
            "method": "connect",
            "params": {"client": "web", "auth": {"token": "S"}},
        }
        assert echoed == "ping"
        assert network.ws_connects[0]["path"] == "/chat?session=1&token=S"
        assert network.connections[0].close_calls == [(1000, "")]

    def test_gateway_error_and_close_translated(self, test_settings):
        error_frame = '{"type":"res","id":"1","error":{"message":"gateway token missing"}}'
        client, _ = self.make_client(
            test_settings,
            lambda: FakeBackendConnection([error_frame, Close(4008, "pairing required")]),
        )

        with client:
            with client.websocket_connect("/") as ws:
                error = json.loads(ws.receive_text())
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_text()

        assert error["error"]["message"] == (
            "Invalid or missing token. Visit https://testserver?token={REPLACE_WITH_YOUR_TOKEN}"
        )
        assert exc_info.value.code == 4008
        assert exc_info.value.reason == "Pairing required. Visit https://testserver/_admin/"

    def test_startup_failure_closes_client_with_1011(self, test_settings):
        runtime = FakeRuntime(launch=lambda: FakeProcess(port_open=False))
        app = create_app(test_settings, runtime=runtime, network=FakeNetwork(runtime))

        with TestClient(app) as client:
            with client.websocket_connect("/") as ws:
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_text()

        assert exc_info.value.code == 1011
        assert exc_info.value.reason.startswith("Le gateway n'a pas démarré")
        assert len(exc_info.value.reason.encode("utf-8")) <= 123
