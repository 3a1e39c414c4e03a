"""
Runtime settings, read from the environment with keyword overrides.

  CLIENTOPS_DEBUG           enable debug tracing ("1", "true", "yes", "on")
  CLIENTOPS_STORAGE_PATH    file backing the durable key-value store
  CLIENTOPS_FRAME_INTERVAL  seconds between animation frames (default 1/60)
  CLIENTOPS_HTTP_TIMEOUT    fetch timeout in seconds (default: none)
  CLIENTOPS_HTTP_RETRIES    fetch retries on transport errors (default 0)
"""
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

_TRUTHY = ("1", "true", "yes", "on")


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_float(env: Mapping[str, str], name: str, default: Optional[float]) -> Optional[float]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class RuntimeConfig:
    debug: bool = False
    storage_path: Optional[str] = None
    frame_interval: float = 1 / 60
    http_timeout: Optional[float] = None
    http_retries: int = 0
    http_backoff: float = 0.2

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> 'RuntimeConfig':
        env = os.environ if env is None else env
        retries = _env_float(env, "CLIENTOPS_HTTP_RETRIES", 0)
        cfg = cls(
            debug=_env_bool(env, "CLIENTOPS_DEBUG", False),
            storage_path=env.get("CLIENTOPS_STORAGE_PATH") or None,
            frame_interval=_env_float(env, "CLIENTOPS_FRAME_INTERVAL", 1 / 60),
            http_timeout=_env_float(env, "CLIENTOPS_HTTP_TIMEOUT", None),
            http_retries=int(retries or 0),
        )
        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"Unknown config option: {key}")
            setattr(cfg, key, value)
        return cfg
