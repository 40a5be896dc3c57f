"""Configuration loading for the AeroFresh API.

Settings come from a YAML file (path in ``AEROFRESH_CONFIG``) with a few
environment overrides. Every key has a default so a missing file is fine.
"""
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/example_config.yaml"
DEFAULT_DATABASE_URL = "sqlite:///aerofresh.db"


def _load_config(path: str) -> Any:
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window quota applied per client."""
    requests_per_minute: int = 60
    window_ms: int = 60000


@dataclass(frozen=True)
class CacheConfig:
    """In-memory GET response cache settings."""
    enabled: bool = True
    ttl_ms: int = 300000
    max_size: int = 1000


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, value: Any, typ: Any) -> Any:
    if typ is bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(f"config key {name!r}: expected a boolean, got {value!r}")
        return bool(value)
    if typ is int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"config key {name!r}: expected an integer, got {value!r}") from None
    return value


def _partial(cls, overrides: Optional[Dict[str, Any]]):
    # Unknown keys are ignored so older config files keep working
    types = {f.name: f.type for f in fields(cls)}
    values = {k: _coerce(k, v, types[k]) for k, v in (overrides or {}).items() if k in types}
    return cls(**values)


def rate_limit_config(cfg: Dict[str, Any]) -> RateLimitConfig:
    return _partial(RateLimitConfig, cfg.get("rate_limit"))


def cache_config(cfg: Dict[str, Any]) -> CacheConfig:
    return _partial(CacheConfig, cfg.get("cache"))


def database_url(cfg: Dict[str, Any]) -> str:
    return os.environ.get("AEROFRESH_DATABASE_URL") or cfg.get("database_url") or DEFAULT_DATABASE_URL


def api_keys(cfg: Dict[str, Any]) -> List[str]:
    return [str(k) for k in (cfg.get("api_keys") or []) if k]


def cors_origins(cfg: Dict[str, Any]) -> List[str]:
    return list(cfg.get("cors_origins") or ["*"])


CONFIG_PATH = os.environ.get("AEROFRESH_CONFIG", DEFAULT_CONFIG_PATH)
CFG = _load_config(CONFIG_PATH)


__all__ = [
    "CFG",
    "CacheConfig",
    "RateLimitConfig",
    "api_keys",
    "cache_config",
    "cors_origins",
    "database_url",
    "rate_limit_config",
]
