from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace, asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from shared.log import get_logger

logger = get_logger(__name__)


DEFAULT_SERVER_URL = "ws://localhost:3000"
DEFAULT_SENDER_ID = "iOSUser"
DEFAULT_PING_INTERVAL = 30.0

# env var -> (field, converter)
_ENV_OVERRIDES = {
    "WSCHAT_SERVER": ("server_url", str),
    "WSCHAT_SENDER": ("sender_id", str),
    "WSCHAT_PING_INTERVAL": ("ping_interval", float),
    "WSCHAT_OPEN_TIMEOUT": ("open_timeout", float),
    "WSCHAT_CLOSE_TIMEOUT": ("close_timeout", float),
    "WSCHAT_LOG_LEVEL": ("log_level", str),
}


class ConfigError(ValueError):
    """Raised when the client configuration is unusable."""
    pass


@dataclass(frozen=True)
class ClientConfig:
    server_url: str = DEFAULT_SERVER_URL
    sender_id: str = DEFAULT_SENDER_ID
    ping_interval: float = DEFAULT_PING_INTERVAL
    open_timeout: float = 10.0
    close_timeout: float = 10.0
    log_level: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.server_url, str) or not self.server_url.startswith(("ws://", "wss://")):
            raise ConfigError(f"server_url must be a ws:// or wss:// URL, got {self.server_url!r}")
        if not isinstance(self.sender_id, str) or not self.sender_id:
            raise ConfigError("sender_id must be a non-empty string")
        for name in ("ping_interval", "open_timeout", "close_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number, got {value!r}")

    def with_overrides(self, **overrides: Any) -> 'ClientConfig':
        """Return a copy with every non-None override applied"""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def default_config_path() -> Path:
    return Path(os.getenv("WSCHAT_CONFIG", "~/.wschat/config.yaml")).expanduser()


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.info("No config file at %s; using defaults", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error reading {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(ClientConfig)}
    values = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r in %s", key, path)
            continue
        values[key] = value
    return values


def _read_env(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for var, (name, convert) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            values[name] = convert(raw)
        except ValueError as e:
            raise ConfigError(f"{var}={raw!r} is invalid: {e}") from e
    return values


def load_config(
    path: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ClientConfig:
    """
    Build the effective configuration: defaults, then the YAML file,
    then WSCHAT_* environment variables.
    """
    config_path = Path(path).expanduser() if path is not None else default_config_path()
    values = _read_yaml(config_path)
    values.update(_read_env(os.environ if env is None else env))
    try:
        return ClientConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e
