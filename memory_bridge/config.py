"""
Configuration for Memory Bridge.

A config file is plain JSON, written by `memory-bridge init`:

    {
      "storage": "sqlite",
      "path": "~/.memory-bridge/memory.db",
      "agentId": "default",
      "version": "1.0.0"
    }

Remote storage adds "url", "password" and optionally "timeout" and "prefix".
Resolution order (later wins): built-in defaults, config file, environment
variables (MEMORY_BRIDGE_STORAGE, MEMORY_BRIDGE_PATH, MEMORY_BRIDGE_AGENT_ID,
MEMORY_BRIDGE_URL, MEMORY_BRIDGE_PASSWORD).
"""

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .backends import (
    BACKEND_ALIASES,
    DEFAULT_MEMORY_DIR,
    DEFAULT_REDIS_URL,
    DEFAULT_TIMEOUT,
    StorageBackend,
    get_backend,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0.0"
CONFIG_FILENAME = "config.json"
DEFAULT_AGENT_ID = "default"
HOME_ENV = "MEMORY_BRIDGE_HOME"

# file key -> attribute name
FILE_KEYS = {
    "storage": "storage",
    "path": "path",
    "agentId": "agent_id",
    "version": "version",
    "url": "url",
    "password": "password",
    "timeout": "timeout",
    "prefix": "prefix",
}

ENV_KEYS = {
    "MEMORY_BRIDGE_STORAGE": "storage",
    "MEMORY_BRIDGE_PATH": "path",
    "MEMORY_BRIDGE_AGENT_ID": "agent_id",
    "MEMORY_BRIDGE_URL": "url",
    "MEMORY_BRIDGE_PASSWORD": "password",
}


# (attribute, may be None)
_TEXT_FIELDS = (
    ("storage", False),
    ("version", False),
    ("prefix", False),
    ("path", True),
    ("url", True),
    ("password", True),
)


def get_memory_home(env: Optional[Mapping[str, str]] = None) -> Path:
    """Directory holding config.json and embedded storage files."""
    env = os.environ if env is None else env
    if env.get(HOME_ENV):
        return Path(env[HOME_ENV]).expanduser()
    return DEFAULT_MEMORY_DIR


@dataclass(frozen=True)
class MemoryConfig:
    """Which backend to use, how to reach it, and the default agent identity."""
    storage: str = "sqlite"
    path: Optional[str] = None
    agent_id: str = DEFAULT_AGENT_ID
    version: str = CONFIG_VERSION
    url: Optional[str] = None
    password: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    prefix: str = "memory_bridge:"

    def __post_init__(self):
        for name, optional in _TEXT_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) and not (optional and value is None):
                raise ConfigError(f"{name} must be a string, got {value!r}")
        if self.storage not in BACKEND_ALIASES:
            raise ConfigError(
                f"Unknown storage '{self.storage}'. Use one of: {', '.join(sorted(BACKEND_ALIASES))}"
            )
        if not isinstance(self.agent_id, str) or not self.agent_id.strip():
            raise ConfigError("agentId must be a non-empty string")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise ConfigError(f"timeout must be a positive number, got {self.timeout!r}")

    @property
    def backend_kind(self) -> str:
        """Canonical backend name: "sqlite", "json" or "redis"."""
        return BACKEND_ALIASES[self.storage]

    @property
    def is_remote(self) -> bool:
        return self.backend_kind == "redis"

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryConfig":
        unknown = set(data) - set(FILE_KEYS)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        values = {FILE_KEYS[k]: v for k, v in data.items() if k in FILE_KEYS and v is not None}
        config = cls(**values)
        if config.version.split(".")[0] != CONFIG_VERSION.split(".")[0]:
            logger.warning(f"Config version {config.version} differs from supported {CONFIG_VERSION}")
        return config

    def to_dict(self) -> dict:
        data = {key: getattr(self, attr) for key, attr in FILE_KEYS.items()}
        if not self.is_remote:
            for key in ("url", "password", "prefix"):
                data.pop(key)
        return data

    def with_env(self, env: Optional[Mapping[str, str]] = None) -> "MemoryConfig":
        """Return a copy with MEMORY_BRIDGE_* environment overrides applied."""
        env = os.environ if env is None else env
        overrides = {attr: env[name] for name, attr in ENV_KEYS.items() if env.get(name)}
        return replace(self, **overrides) if overrides else self

    @classmethod
    def load(cls, path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> "MemoryConfig":
        """
        Load configuration from a JSON file, then apply environment overrides.

        A missing file yields the defaults. Unreadable or malformed files raise
        ConfigError.
        """
        path = Path(path).expanduser() if path else get_memory_home(env) / CONFIG_FILENAME

        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot read config {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config {path} must contain a JSON object")
            config = cls.from_dict(data)
            logger.debug(f"Loaded config from {path}")
        else:
            config = cls()

        return config.with_env(env)

    def save(self, path: Path) -> None:
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    def resolved_path(self, env: Optional[Mapping[str, str]] = None) -> Path:
        """File used by the embedded backends."""
        if self.path:
            return Path(self.path).expanduser()
        filename = "memories.json" if self.backend_kind == "json" else "memory.db"
        return get_memory_home(env) / filename

    def backend_kwargs(self) -> dict:
        """Constructor arguments for the configured backend."""
        if self.backend_kind == "redis":
            return {
                "url": self.url or DEFAULT_REDIS_URL,
                "password": self.password,
                "prefix": self.prefix,
                "timeout": self.timeout,
            }
        if self.backend_kind == "json":
            return {"path": self.resolved_path()}
        return {"path": self.resolved_path(), "timeout": self.timeout}

    def create_backend(self) -> StorageBackend:
        return get_backend(self.storage, **self.backend_kwargs())
