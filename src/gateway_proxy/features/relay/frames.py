"""
Parsing et réécriture des frames de session (JSON texte).

Chaque frame est classée en variante taguée {handshake, response, error, opaque};
toute ambiguïté de parsing donne `opaque`, forwardé tel quel.
"""
import copy
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from ...core.constants import (
    CLOSE_ABNORMAL,
    CLOSE_NORMAL,
    CLOSE_REASON_ELLIPSIS,
    CLOSE_REASON_MAX_BYTES,
    DEVICE_IDENTITY_FIELDS,
    HANDSHAKE_FRAME_TYPE,
    HANDSHAKE_METHOD,
    RESPONSE_FRAME_TYPE,
)
from ...core.models import FrameKind, SessionFrame

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]


def parse_frame(raw: Frame) -> SessionFrame:
    """Classe une frame brute. Les frames binaires sont toujours opaques."""
    if not isinstance(raw, str):
        return SessionFrame(FrameKind.OPAQUE, raw)

    try:
        payload = json.loads(raw)
    except ValueError:
        return SessionFrame(FrameKind.OPAQUE, raw)

    if not isinstance(payload, dict):
        return SessionFrame(FrameKind.OPAQUE, raw)

    if payload.get("type") == HANDSHAKE_FRAME_TYPE and payload.get("method") == HANDSHAKE_METHOD:
        return SessionFrame(FrameKind.HANDSHAKE, raw, payload)

    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return SessionFrame(FrameKind.ERROR, raw, payload)

    if payload.get("type") == RESPONSE_FRAME_TYPE:
        return SessionFrame(FrameKind.RESPONSE, raw, payload)

    return SessionFrame(FrameKind.OPAQUE, raw, payload)


def rewrite_handshake(frame: SessionFrame, token: str) -> str:
    """
    Retire l'identité d'appareil déclarée par le client et injecte le token du gateway.

    Les champs d'identité déclenchent une validation de signature côté gateway
    qu'un proxy ne peut pas satisfaire.
    """
    payload = copy.deepcopy(frame.payload)
    params = payload.get("params")
    if not isinstance(params, dict):
        params = {}
        payload["params"] = params

    for field in DEVICE_IDENTITY_FIELDS:
        params.pop(field, None)
    params["auth"] = {"token": token}

    return json.dumps(payload)


class ErrorMessageRewriter:
    """
    Table de substitution des messages d'erreur du gateway.

    Chaque entrée: {"match": [sous-chaînes], "message": texte utilisateur}.
    La première entrée dont une sous-chaîne apparaît (insensible à la casse)
    remplace tout le message. `{host}` est remplacé par l'hôte public du client.
    """

    def __init__(self, rewrites: Iterable[Dict[str, Any]], host: str = "localhost"):
        self.rules: List[tuple] = []
        for entry in rewrites:
            patterns = [p.lower() for p in entry.get("match", []) if p]
            message = entry.get("message")
            if patterns and message:
                self.rules.append((patterns, message))
        self.host = host

    def rewrite(self, text: str) -> str:
        """Retourne le texte substitué, ou `text` inchangé si aucune règle ne correspond."""
        if not text:
            return text
        lowered = text.lower()
        for patterns, message in self.rules:
            if any(pattern in lowered for pattern in patterns):
                return message.replace("{host}", self.host)
        return text

    def rewrite_frame(self, frame: SessionFrame) -> Optional[str]:
        """
        Réécrit `error.message` d'une frame d'erreur.

        Returns:
            La frame réencodée si le message a changé, sinon None (frame brute à forwarder)
        """
        if frame.kind != FrameKind.ERROR:
            return None
        original = frame.error_message
        replaced = self.rewrite(original)
        if replaced == original:
            return None

        logger.info("[WS] Message d'erreur réécrit: %r -> %r", original, replaced)
        payload = copy.deepcopy(frame.payload)
        payload["error"]["message"] = replaced
        return json.dumps(payload)


def truncate_reason(reason: str, max_bytes: int = CLOSE_REASON_MAX_BYTES) -> str:
    """Tronque une raison de fermeture à `max_bytes` octets UTF-8 (suffixe "...")."""
    if not reason:
        return ""
    encoded = reason.encode("utf-8")
    if len(encoded) <= max_bytes:
        return reason
    keep = max(max_bytes - len(CLOSE_REASON_ELLIPSIS), 0)
    return encoded[:keep].decode("utf-8", errors="ignore") + CLOSE_REASON_ELLIPSIS


def sendable_close_code(code: Optional[int]) -> int:
    """
    Code de fermeture autorisé dans une frame close.

    1005 (pas de statut) devient 1000; 1006, 1015 et les codes hors plages
    valides deviennent 1011.
    """
    if code is None or code == 1005:
        return CLOSE_NORMAL
    if 1000 <= code <= 1003 or 1007 <= code <= 1014 or 3000 <= code <= 4999:
        return code
    return CLOSE_ABNORMAL
