"""
Exceptions personnalisées pour Gateway Proxy.
"""


class GatewayProxyError(Exception):
    """Exception de base pour toutes les erreurs du proxy."""

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "unknown_error"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"[{self.code}] {self.message} - Détails: {self.details}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(GatewayProxyError):
    """Erreur de configuration (fichier manquant, valeur invalide)."""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(
            message=message,
            code="config_error",
            details={"key": config_key} if config_key else {}
        )


class ProcessRuntimeError(GatewayProxyError):
    """Erreur du runtime de processus (listing, démarrage, kill, logs)."""

    def __init__(self, message: str, operation: str = None, process_id: str = None):
        details = {}
        if operation:
            details["operation"] = operation
        if process_id:
            details["process_id"] = process_id
        super().__init__(
            message=message,
            code="process_runtime_error",
            details=details
        )


class PortTimeoutError(GatewayProxyError):
    """Le port du gateway ne s'est pas ouvert dans le délai imparti."""

    def __init__(self, message: str, port: int = None, timeout_s: float = None):
        super().__init__(
            message=message,
            code="port_timeout",
            details={"port": port, "timeout_s": timeout_s}
        )


class GatewayStartupError(GatewayProxyError):
    """
    Échec fatal de `ensure()` pour la requête courante.

    Codes:
    - start_failed: le runtime a refusé de lancer le processus
    - launch_timeout: le port ne s'est jamais ouvert (stderr en détails)
    - launch_unreachable: port ouvert mais injoignable via le réseau overlay
    """

    def __init__(
        self,
        message: str,
        reason: str = "start_failed",
        stderr: str = None,
        stdout: str = None,
    ):
        details = {}
        if stderr is not None:
            details["stderr"] = stderr
        if stdout is not None:
            details["stdout"] = stdout
        super().__init__(message=message, code=reason, details=details)
        self.stderr = stderr
        self.stdout = stdout

    def __str__(self):
        # Le stderr est déjà dans le message, on évite de le doubler
        return f"[{self.code}] {self.message}"


class RelayError(GatewayProxyError):
    """Impossible d'ouvrir la session WebSocket côté gateway."""

    def __init__(self, message: str, path: str = None):
        super().__init__(
            message=message,
            code="relay_error",
            details={"path": path} if path else {}
        )
