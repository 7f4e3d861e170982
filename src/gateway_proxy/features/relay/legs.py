"""
Jambes du relais: adaptateurs communs au-dessus du WebSocket client (Starlette)
et de la connexion gateway (websockets).
"""
import logging
from typing import Optional, Protocol, Union

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]


class LegClosed(Exception):
    """Le pair a fermé la connexion (frame close reçue ou déconnexion)."""

    def __init__(self, code: int, reason: str = ""):
        self.code = code
        self.reason = reason or ""
        super().__init__(f"fermé ({code}) {self.reason}".rstrip())


class LegError(Exception):
    """Erreur de transport sur une jambe."""


class Leg(Protocol):
    name: str

    @property
    def closed(self) -> bool: ...

    async def receive(self) -> Frame: ...

    async def send(self, data: Frame) -> None: ...

    async def close(self, code: int, reason: str = "") -> None: ...


class ClientLeg:
    """Jambe côté client (WebSocket FastAPI déjà acceptée)."""

    name = "client"

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._ws.client_state == WebSocketState.DISCONNECTED

    async def receive(self) -> Frame:
        try:
            message = await self._ws.receive()
        except WebSocketDisconnect as e:
            self._closed = True
            raise LegClosed(e.code, e.reason or "") from e
        except RuntimeError as e:
            self._closed = True
            raise LegError(str(e)) from e

        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise LegClosed(message.get("code", 1005), message.get("reason") or "")

        text = message.get("text")
        if text is not None:
            return text
        return message.get("bytes") or b""

    async def send(self, data: Frame) -> None:
        try:
            if isinstance(data, str):
                await self._ws.send_text(data)
            else:
                await self._ws.send_bytes(data)
        except WebSocketDisconnect as e:
            self._closed = True
            raise LegClosed(e.code, e.reason or "") from e
        except (RuntimeError, OSError) as e:
            raise LegError(str(e)) from e

    async def close(self, code: int, reason: str = "") -> None:
        if self._closed or self._ws.application_state == WebSocketState.DISCONNECTED:
            self._closed = True
            return
        self._closed = True
        try:
            await self._ws.close(code=code, reason=reason or None)
        except (RuntimeError, OSError) as e:
            logger.debug("[WS] Fermeture client déjà effectuée: %s", e)


class BackendLeg:
    """Jambe côté gateway (connexion `websockets` cliente)."""

    name = "gateway"

    def __init__(self, connection):
        self._conn = connection
        self._closed = False

    @property
    def subprotocol(self) -> Optional[str]:
        return getattr(self._conn, "subprotocol", None)

    @property
    def closed(self) -> bool:
        return self._closed

    @staticmethod
    def _closed_from(error: ConnectionClosed) -> LegClosed:
        frame = error.rcvd
        if frame is None:
            return LegClosed(1006, "")
        return LegClosed(frame.code, frame.reason)

    async def receive(self) -> Frame:
        try:
            return await self._conn.recv()
        except ConnectionClosed as e:
            self._closed = True
            raise self._closed_from(e) from e
        except (WebSocketException, OSError) as e:
            self._closed = True
            raise LegError(str(e)) from e

    async def send(self, data: Frame) -> None:
        try:
            await self._conn.send(data)
        except ConnectionClosed as e:
            self._closed = True
            raise self._closed_from(e) from e
        except (WebSocketException, OSError) as e:
            raise LegError(str(e)) from e

    async def close(self, code: int, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._conn.close(code=code, reason=reason)
        except (WebSocketException, OSError) as e:
            logger.debug("[WS] Fermeture gateway en échec: %s", e)
