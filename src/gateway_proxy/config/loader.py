"""src.gateway_proxy.config.loader

Chargement de la configuration TOML.

Note d'architecture:
- Le package `config/` est consommé par les couches Services et Features.
- Il ne doit donc pas dépendre de `features/*` afin d'éviter les imports circulaires.
- Les secrets restent dans l'environnement: le TOML les référence via `${VAR}`.
"""
import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.constants import DEFAULT_ERROR_REWRITES
from ..core.exceptions import ConfigurationError

CONFIG_PATH_ENV = "GATEWAY_PROXY_CONFIG"

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

# Cache global de configuration
_config_cache: Optional[Dict[str, Any]] = None


def _expand_env_vars(obj: Any) -> Any:
    """
    Récursivement étend les variables d'environnement ${VAR} dans la config.

    Les variables absentes de l'environnement sont laissées telles quelles.
    """
    if isinstance(obj, str):
        def replace_env_var(match):
            return os.environ.get(match.group(1), match.group(0))
        return _ENV_VAR_PATTERN.sub(replace_env_var, obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def is_unset_value(value: Any) -> bool:
    """True si la valeur est vide ou contient encore un placeholder ${VAR}."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip() or bool(_ENV_VAR_PATTERN.search(value))
    return False


def _clear_config_cache():
    """Vide le cache de configuration."""
    global _config_cache
    _config_cache = None


def _default_config_path() -> str:
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return env_path
    # Structure: project/src/gateway_proxy/config/loader.py
    current_file = os.path.abspath(__file__)
    project_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(current_file))))
    return os.path.join(project_dir, "config.toml")


def load_config(config_path: str = None) -> Dict[str, Any]:
    """
    Charge la configuration depuis config.toml.

    Args:
        config_path: Chemin vers le fichier config (optionnel)

    Returns:
        Dictionnaire de configuration (vide si le fichier par défaut est absent)

    Raises:
        ConfigurationError: Si un chemin explicite n'existe pas ou si le TOML est invalide
    """
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    explicit = config_path is not None or bool(os.environ.get(CONFIG_PATH_ENV))
    if config_path is None:
        config_path = _default_config_path()

    path = Path(config_path)
    if not path.exists():
        if explicit:
            raise ConfigurationError(
                message=f"Fichier de configuration non trouvé: {config_path}",
                config_key="config_path"
            )
        _config_cache = {}
        return _config_cache

    try:
        with open(path, "rb") as f:
            raw_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            message=f"Configuration TOML invalide ({config_path}): {e}",
            config_key="config_path"
        ) from e

    _config_cache = _expand_env_vars(raw_config)
    return _config_cache


def reload_config(config_path: str = None) -> Dict[str, Any]:
    """
    Recharge la configuration depuis le fichier.

    Returns:
        Nouvelle configuration chargée
    """
    _clear_config_cache()
    return load_config(config_path)


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    obj = config.get(name)
    return obj if isinstance(obj, dict) else {}


def clamp_int(value: object, *, default: int, min_value: int, max_value: int) -> int:
    """Convertit en int borné, `default` si le type est invalide."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        v = value
    elif isinstance(value, float):
        v = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        v = int(value.strip())
    else:
        return default
    return max(min_value, min(max_value, v))


def clamp_float(value: object, *, default: float, min_value: float, max_value: float) -> float:
    """Convertit en float borné, `default` si le type est invalide."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        v = float(value)
    elif isinstance(value, str):
        try:
            v = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    return max(min_value, min(max_value, v))


def as_bool(value: object, *, default: bool) -> bool:
    """Interprète un booléen TOML ou une chaîne d'environnement ("true", "1", ...)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def as_str_list(value: object, *, default: List[str]) -> List[str]:
    """Liste de chaînes non vides, `default` si absente ou invalide."""
    if not isinstance(value, list):
        return list(default)
    return [item for item in value if isinstance(item, str) and item.strip()]


def get_backend_env(config: Dict[str, Any]) -> Dict[str, str]:
    """
    Extrait la table `[gateway.env]` transmise telle quelle au processus gateway.

    Les valeurs vides ou dont le placeholder ${VAR} n'a pas été résolu
    sont ignorées: le gateway les voit comme non définies.
    """
    env_obj = _section(_section(config, "gateway"), "env")
    env: Dict[str, str] = {}
    for key, value in env_obj.items():
        if not isinstance(key, str) or is_unset_value(value):
            continue
        if isinstance(value, bool):
            env[key] = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            env[key] = str(value)
    return env


def get_error_rewrites(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Charge la table `[[relay.error_rewrites]]`.

    Chaque entrée: `match` (liste de sous-chaînes) et `message` (gabarit `{host}`).
    Les entrées invalides sont ignorées; table absente -> table par défaut.
    """
    rewrites_obj = _section(config, "relay").get("error_rewrites")
    if not isinstance(rewrites_obj, list):
        return [dict(entry) for entry in DEFAULT_ERROR_REWRITES]

    rewrites: List[Dict[str, Any]] = []
    for entry in rewrites_obj:
        if not isinstance(entry, dict):
            continue
        match = entry.get("match")
        if isinstance(match, str):
            match = [match]
        patterns = as_str_list(match, default=[])
        message = entry.get("message")
        if not patterns or not isinstance(message, str):
            continue
        rewrites.append({"match": patterns, "message": message})
    return rewrites
