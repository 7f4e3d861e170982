"""
Diagnostics d'échec du gateway: extraits de logs et indices actionnables.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence

from ...core.constants import LOG_TAIL_CHARS
from ...core.models import ProcessInfo, ProcessStatus

# Problèmes de ressources (mémoire)
RESOURCE_PATTERNS = [
    re.compile(r"heap out of memory", re.IGNORECASE),
    re.compile(r"out of memory", re.IGNORECASE),
    re.compile(r"\bOOM\b"),
    re.compile(r"\bMemoryError\b"),
    re.compile(r"cannot allocate memory", re.IGNORECASE),
]

# Problèmes de configuration (credentials absents ou refusés)
CONFIGURATION_PATTERNS = [
    re.compile(r"api[_ -]?key", re.IGNORECASE),
    re.compile(r"\bnot set\b", re.IGNORECASE),
    re.compile(r"missing (?:required )?(?:env|environment|credential|token|secret)", re.IGNORECASE),
    re.compile(r"invalid (?:api )?(?:key|token|credential)", re.IGNORECASE),
]


@dataclass(frozen=True)
class FailureHint:
    """Indice associé à un échec de démarrage."""
    kind: str  # "configuration", "resource", "generic"
    hint: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "hint": self.hint}


def tail(text: str, limit: int = LOG_TAIL_CHARS) -> str:
    """Derniers `limit` caractères de `text` (chaîne vide si None)."""
    if not text:
        return ""
    return text[-limit:] if limit > 0 else ""


def _matches(patterns: Iterable[re.Pattern], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def build_failure_hint(message: str, missing_env: Sequence[str] = ()) -> FailureHint:
    """
    Classe un échec de démarrage à partir du texte de diagnostic.

    Priorité: variables requises manquantes > mémoire > motifs de configuration > générique.
    """
    if missing_env:
        return FailureHint(
            kind="configuration",
            hint=(
                f"{', '.join(missing_env)} non défini(s). "
                "Ajoutez-les à [gateway.env] dans config.toml ou à l'environnement du proxy."
            ),
        )

    text = message or ""
    if _matches(RESOURCE_PATTERNS, text):
        return FailureHint(
            kind="resource",
            hint="Le gateway a manqué de mémoire. Réessayez ou vérifiez une fuite mémoire.",
        )
    if _matches(CONFIGURATION_PATTERNS, text):
        return FailureHint(
            kind="configuration",
            hint="Le gateway signale un credential absent ou refusé. Vérifiez [gateway.env] dans config.toml.",
        )
    return FailureHint(
        kind="generic",
        hint="Consultez les logs du proxy (stderr du gateway inclus) ou GET /api/status.",
    )


def describe_processes(processes: Iterable[Any]) -> List[Dict[str, Any]]:
    """Liste sérialisable (id, command, status) des processus du runtime."""
    return [
        ProcessInfo(id=proc.id, command=proc.command, status=ProcessStatus(proc.status)).to_dict()
        for proc in processes
    ]
