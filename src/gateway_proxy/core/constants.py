"""
Constantes globales pour Gateway Proxy.
"""

# ============================================================================
# GATEWAY (processus backend)
# ============================================================================
GATEWAY_PORT = 18789
GATEWAY_COMMAND = "/usr/local/bin/start-gateway.sh"

# Le cold start du gateway peut dépasser la minute
STARTUP_TIMEOUT_S = 180.0
PROBE_TIMEOUT_S = 10.0
# Timeout court utilisé par /api/status (diagnostic, pas de kill)
STATUS_PROBE_TIMEOUT_S = 5.0

# Un processus correspond au gateway s'il contient un motif d'inclusion
# et aucun motif d'exclusion (commandes CLI d'administration)
GATEWAY_MATCH_PATTERNS = ["start-gateway.sh", "openclaw gateway"]
GATEWAY_EXCLUDE_PATTERNS = ["openclaw devices", "openclaw --version"]

# Réponse synthétique du réseau overlay quand rien n'écoute sur l'interface
OVERLAY_UNREACHABLE_STATUS = 500

# Taille max des buffers stdout/stderr capturés par processus
PROCESS_LOG_LIMIT = 64 * 1024
LOG_TAIL_CHARS = 1500

# ============================================================================
# RELAIS WEBSOCKET
# ============================================================================
# RFC 6455: la raison d'une close frame est limitée à 123 octets
CLOSE_REASON_MAX_BYTES = 123
CLOSE_REASON_ELLIPSIS = "..."
CLOSE_ABNORMAL = 1011
CLOSE_NORMAL = 1000
CLOSE_GRACE_S = 5.0

# Champs d'identité device retirés du handshake client
DEVICE_IDENTITY_FIELDS = ("deviceId", "devicePublicKey", "signature", "device")

HANDSHAKE_FRAME_TYPE = "req"
HANDSHAKE_METHOD = "connect"
RESPONSE_FRAME_TYPE = "res"

# Table de substitution par défaut (motifs -> message affiché au client).
# `{host}` est remplacé par l'hôte public utilisé par le client.
DEFAULT_ERROR_REWRITES = [
    {
        "match": ["gateway token missing", "gateway token mismatch"],
        "message": "Invalid or missing token. Visit https://{host}?token={REPLACE_WITH_YOUR_TOKEN}",
    },
    {
        "match": ["pairing required"],
        "message": "Pairing required. Visit https://{host}/_admin/",
    },
]

# ============================================================================
# HTTP
# ============================================================================
TOKEN_QUERY_PARAM = "token"

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
}

SERVICE_NAME = "gateway-proxy"
