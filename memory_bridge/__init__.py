"""
Memory Bridge
Persistent, queryable memory for conversational agents.

Supports three storage backends:
- SQLiteBackend (default): Single-file embedded storage, zero configuration
- JSONBackend: Human-readable flat-file storage
- RedisBackend: Remote storage shared across processes (needs a Redis server)

Usage:
    from memory_bridge import MemoryStore

    # Default embedded backend
    store = MemoryStore()

    # From ~/.memory-bridge/config.json and MEMORY_BRIDGE_* variables
    store = MemoryStore.from_config(MemoryConfig.load())
"""

from .backends import (
    Memory,
    RankedMemory,
    StorageBackend,
    SQLiteBackend,
    JSONBackend,
    RedisBackend,
    get_backend,
    DEFAULT_MEMORY_DIR,
    SCHEMA_VERSION,
)

from .config import (
    MemoryConfig,
    DEFAULT_AGENT_ID,
)

from .errors import (
    MemoryBridgeError,
    ValidationError,
    EmptyContentError,
    ConfigError,
    BackendError,
    BackendUnavailableError,
    BackendTimeoutError,
    AuthenticationError,
    NotFoundError,
)

from .importance import score_importance
from .keywords import extract_keywords

from .memory import (
    MemoryStore,
    SessionContext,
    get_store,
    reset_store,
    remember,
    recall,
    MAX_CONTENT_LENGTH,
)

__all__ = [
    # Core
    "Memory",
    "RankedMemory",
    "MemoryStore",
    "SessionContext",
    "MemoryConfig",
    "get_store",
    "reset_store",
    "remember",
    "recall",
    "extract_keywords",
    "score_importance",
    # Backends
    "StorageBackend",
    "SQLiteBackend",
    "JSONBackend",
    "RedisBackend",
    "get_backend",
    # Errors
    "MemoryBridgeError",
    "ValidationError",
    "EmptyContentError",
    "ConfigError",
    "BackendError",
    "BackendUnavailableError",
    "BackendTimeoutError",
    "AuthenticationError",
    "NotFoundError",
    # Constants
    "DEFAULT_AGENT_ID",
    "DEFAULT_MEMORY_DIR",
    "MAX_CONTENT_LENGTH",
    "SCHEMA_VERSION",
]
