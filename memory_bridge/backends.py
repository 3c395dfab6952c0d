#!/usr/bin/env python3
"""
Storage Backends for Memory Bridge

Provides pluggable storage implementations:
- SQLiteBackend: Single-file embedded database (default, zero configuration)
- JSONBackend: Human-readable flat-file storage (embedded alternative)
- RedisBackend: Remote networked store shared across processes and machines

Every backend answers the same two reads the engine relies on: memories of one
agent created after a point in time, and memories of one agent created inside
a time range. Ranking happens in the engine, never in the backend.

Usage:
    from memory_bridge.backends import SQLiteBackend, RedisBackend

    # Embedded storage (default)
    backend = SQLiteBackend(Path("~/.memory-bridge/memory.db"))

    # Shared storage (requires a reachable Redis server)
    backend = RedisBackend("redis://localhost:6379/0", password="...")
"""

import fcntl
import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol, runtime_checkable

import redis

from .errors import (
    AuthenticationError,
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Default storage locations
DEFAULT_MEMORY_DIR = Path.home() / ".memory-bridge"
DEFAULT_DB_FILE = DEFAULT_MEMORY_DIR / "memory.db"
DEFAULT_JSON_FILE = DEFAULT_MEMORY_DIR / "memories.json"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_TIMEOUT = 5.0

# Schema version for storage format compatibility
SCHEMA_VERSION = "1.0"


def format_timestamp(moment: datetime) -> str:
    """
    Render a datetime as the fixed-width UTC string stored in `created_at`.

    Naive datetimes are taken to be UTC. The fixed width keeps lexicographic
    order equal to chronological order, which the SQLite and JSON backends
    use for range filtering.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True)
class Memory:
    """Single memory unit - shared across all backends. Never mutated."""
    id: str
    content: str
    content_type: str
    importance: int
    agent_id: str
    created_at: str
    source: Optional[str] = None
    keywords: tuple[str, ...] = ()

    @property
    def created_date(self) -> str:
        """Calendar day (UTC, YYYY-MM-DD) the memory was created on."""
        return self.created_at[:10]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["keywords"] = list(self.keywords)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Memory":
        # Unknown keys are ignored so newer records still load
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["keywords"] = tuple(values.get("keywords") or ())
        return cls(**values)


@dataclass(frozen=True)
class RankedMemory(Memory):
    """A Memory returned by a query, with its relevance in [0, 1]."""
    relevance: float = 0.0

    @classmethod
    def from_memory(cls, memory: Memory, relevance: float) -> "RankedMemory":
        values = {f.name: getattr(memory, f.name) for f in fields(Memory)}
        return cls(relevance=relevance, **values)


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for memory storage backends."""

    def insert(self, memory: Memory) -> str:
        """Durably write one memory. Returns its id."""
        ...

    def select_by_filter(self, agent_id: str, since: datetime, min_importance: int = 0) -> list[Memory]:
        """Memories of an agent created at or after `since` with importance >= min_importance."""
        ...

    def select_by_time_range(self, agent_id: str, start: datetime, end: datetime) -> list[Memory]:
        """Memories of an agent created in [start, end)."""
        ...

    def close(self) -> None:
        """Release connections and file handles."""
        ...


class SQLiteBackend:
    """
    Embedded SQLite storage backend.

    Features:
    - Single database file, no server
    - Thread-local connections, writes serialized and transactional
    - Lock waits bounded by `timeout` seconds
    - Index on (agent_id, created_at) for the engine's filtered reads

    Storage: ~/.memory-bridge/memory.db
    """

    def __init__(self, path: Path = DEFAULT_DB_FILE, timeout: float = DEFAULT_TIMEOUT):
        self.path = Path(path).expanduser()
        self.timeout = timeout
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailableError(f"Cannot create memory directory {self.path.parent}: {e}") from e

        self._init_db()
        logger.info(f"SQLiteBackend initialized at {self.path}")

    @property
    def _conn(self) -> sqlite3.Connection:
        """Thread-local connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            with self._sqlite_errors("open"):
                conn = sqlite3.connect(str(self.path), timeout=self.timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _sqlite_errors(self, action: str):
        """Translate sqlite3 exceptions into backend errors."""
        try:
            yield
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise BackendTimeoutError(f"Timed out waiting to {action} {self.path}: {e}") from e
            raise BackendUnavailableError(f"Cannot {action} {self.path}: {e}") from e
        except sqlite3.Error as e:
            raise BackendError(f"Failed to {action} {self.path}: {e}") from e

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._sqlite_errors("initialize"):
            self._conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS memories (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    content TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    importance INTEGER NOT NULL,
                    agent_id TEXT NOT NULL,
                    source TEXT,
                    keywords TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_memories_agent_created
                ON memories(agent_id, created_at);

                INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', '{SCHEMA_VERSION}');
            """)

    @property
    def schema_version(self) -> Optional[str]:
        with self._sqlite_errors("read"):
            row = self._conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        return row["value"] if row else None

    @staticmethod
    def _row_to_memory(row: sqlite3.Row) -> Memory:
        return Memory(
            id=row["id"],
            content=row["content"],
            content_type=row["content_type"],
            importance=row["importance"],
            agent_id=row["agent_id"],
            created_at=row["created_at"],
            source=row["source"],
            keywords=tuple(json.loads(row["keywords"])),
        )

    def insert(self, memory: Memory) -> str:
        with self._write_lock, self._sqlite_errors("write"):
            conn = self._conn
            with conn:
                conn.execute(
                    """INSERT INTO memories
                       (id, content, content_type, importance, agent_id, source, keywords, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        memory.id,
                        memory.content,
                        memory.content_type,
                        memory.importance,
                        memory.agent_id,
                        memory.source,
                        json.dumps(list(memory.keywords)),
                        memory.created_at,
                    ),
                )
        logger.debug(f"Stored memory {memory.id} for agent {memory.agent_id}")
        return memory.id

    def select_by_filter(self, agent_id: str, since: datetime, min_importance: int = 0) -> list[Memory]:
        with self._sqlite_errors("read"):
            rows = self._conn.execute(
                """SELECT * FROM memories
                   WHERE agent_id = ? AND created_at >= ? AND importance >= ?
                   ORDER BY seq ASC""",
                (agent_id, format_timestamp(since), min_importance),
            ).fetchall()
        return [self._row_to_memory(row) for row in rows]

    def select_by_time_range(self, agent_id: str, start: datetime, end: datetime) -> list[Memory]:
        with self._sqlite_errors("read"):
            rows = self._conn.execute(
                """SELECT * FROM memories
                   WHERE agent_id = ? AND created_at >= ? AND created_at < ?
                   ORDER BY seq ASC""",
                (agent_id, format_timestamp(start), format_timestamp(end)),
            ).fetchall()
        return [self._row_to_memory(row) for row in rows]

    def close(self) -> None:
        """Close every connection opened by this backend."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()


class JSONBackend:
    """
    Simple JSON file storage backend.

    Features:
    - Zero dependencies, human-readable storage format
    - Process-safe with a sibling lock file (fcntl.flock)
    - Atomic writes via temp file + rename
    - Schema versioned; files in any other shape raise BackendError

    Storage: ~/.memory-bridge/memories.json

    Storage Format (v1.0):
        {
            "schema_version": "1.0",
            "memories": [...]
        }
    """

    def __init__(self, path: Path = DEFAULT_JSON_FILE):
        self.path = Path(path).expanduser()
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._write_lock = threading.Lock()
        self._ensure_storage()

    def _ensure_storage(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_path.touch(exist_ok=True)
            with self._locked(exclusive=True):
                if not self.path.exists():
                    self._write([])
        except OSError as e:
            raise BackendUnavailableError(f"Cannot create memory file {self.path}: {e}") from e

    @contextmanager
    def _locked(self, exclusive: bool):
        with open(self.lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self) -> list[dict]:
        """Read raw memory records. Caller holds the lock."""
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            raise BackendError(f"Memory file {self.path} is corrupt: {e}") from e
        except OSError as e:
            raise BackendUnavailableError(f"Cannot read memory file {self.path}: {e}") from e

        # Handle versioned format (v1.0+)
        if isinstance(data, dict) and "schema_version" in data:
            logger.debug(f"Loading memories with schema version {data['schema_version']}")
            return list(data.get("memories", []))

        raise BackendError(f"Unknown memory file format in {self.path}")

    def _write(self, records: list[dict]) -> None:
        """Atomically replace the memory file. Caller holds the exclusive lock."""
        data = {"schema_version": SCHEMA_VERSION, "memories": records}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def _load(self) -> list[Memory]:
        with self._locked(exclusive=False):
            records = self._read()
        try:
            return [Memory.from_dict(r) for r in records]
        except (TypeError, AttributeError) as e:
            raise BackendError(f"Memory file {self.path} holds records in an unknown shape: {e}") from e

    def insert(self, memory: Memory) -> str:
        with self._write_lock:
            try:
                with self._locked(exclusive=True):
                    records = self._read()
                    records.append(memory.to_dict())
                    self._write(records)
            except OSError as e:
                raise BackendUnavailableError(f"Cannot write memory file {self.path}: {e}") from e
        logger.debug(f"Stored memory {memory.id} for agent {memory.agent_id}")
        return memory.id

    def select_by_filter(self, agent_id: str, since: datetime, min_importance: int = 0) -> list[Memory]:
        since_str = format_timestamp(since)
        return [
            m for m in self._load()
            if m.agent_id == agent_id and m.created_at >= since_str and m.importance >= min_importance
        ]

    def select_by_time_range(self, agent_id: str, start: datetime, end: datetime) -> list[Memory]:
        start_str, end_str = format_timestamp(start), format_timestamp(end)
        return [
            m for m in self._load()
            if m.agent_id == agent_id and start_str <= m.created_at < end_str
        ]

    def close(self) -> None:
        """Nothing is held open between calls."""


def _redact_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if "@" in rest:
        rest = "***@" + rest.split("@", 1)[1]
    return f"{scheme}{sep}{rest}"


class RedisBackend:
    """
    Remote storage backend using Redis.

    Requires a reachable Redis server; use for memories shared between
    processes or machines.

    Key layout (prefix defaults to "memory_bridge:"):
    - {prefix}memory:{id}        JSON-encoded memory
    - {prefix}agent:{agent_id}   sorted set, score = creation epoch seconds,
                                 member = "{seq:012d}:{id}" so equal scores
                                 keep insertion order
    - {prefix}seq                insertion counter
    - {prefix}schema_version
    """

    def __init__(
        self,
        url: str = DEFAULT_REDIS_URL,
        password: Optional[str] = None,
        prefix: str = "memory_bridge:",
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url
        self.prefix = prefix

        if client is None:
            options = {
                "socket_timeout": timeout,
                "socket_connect_timeout": timeout,
                "decode_responses": True,
            }
            if password is not None:
                options["password"] = password
            try:
                client = redis.Redis.from_url(url, **options)
            except ValueError as e:
                raise ValidationError(f"Invalid Redis URL {_redact_url(url)}: {e}") from e
        self.client = client

        with self._redis_errors("connect to"):
            self.client.ping()
            self.client.setnx(f"{prefix}schema_version", SCHEMA_VERSION)
        logger.info(f"RedisBackend connected to {_redact_url(url)}")

    @contextmanager
    def _redis_errors(self, action: str):
        """Translate redis exceptions into backend errors."""
        target = _redact_url(self.url)
        try:
            yield
        except redis.exceptions.AuthenticationError as e:
            raise AuthenticationError(f"Redis at {target} rejected credentials: {e}") from e
        except redis.exceptions.TimeoutError as e:
            raise BackendTimeoutError(f"Timed out trying to {action} Redis at {target}: {e}") from e
        except redis.exceptions.ConnectionError as e:
            raise BackendUnavailableError(f"Cannot {action} Redis at {target}: {e}") from e
        except redis.exceptions.RedisError as e:
            raise BackendError(f"Redis error while trying to {action} {target}: {e}") from e

    def _memory_key(self, memory_id: str) -> str:
        return f"{self.prefix}memory:{memory_id}"

    def _agent_key(self, agent_id: str) -> str:
        return f"{self.prefix}agent:{agent_id}"

    def insert(self, memory: Memory) -> str:
        score = parse_timestamp(memory.created_at).timestamp()
        with self._redis_errors("write to"):
            seq = int(self.client.incr(f"{self.prefix}seq"))
            pipe = self.client.pipeline(transaction=True)
            pipe.set(self._memory_key(memory.id), json.dumps(memory.to_dict()))
            pipe.zadd(self._agent_key(memory.agent_id), {f"{seq:012d}:{memory.id}": score})
            pipe.execute()
        logger.debug(f"Stored memory {memory.id} for agent {memory.agent_id}")
        return memory.id

    def _fetch(self, members: Iterable) -> list[Memory]:
        ids = []
        for member in members:
            decoded = member.decode() if isinstance(member, bytes) else member
            ids.append(decoded.split(":", 1)[1])
        if not ids:
            return []
        with self._redis_errors("read from"):
            values = self.client.mget([self._memory_key(i) for i in ids])
        # A missing value means the record was removed by administration
        return [Memory.from_dict(json.loads(v)) for v in values if v is not None]

    def select_by_filter(self, agent_id: str, since: datetime, min_importance: int = 0) -> list[Memory]:
        since_str = format_timestamp(since)
        with self._redis_errors("read from"):
            members = self.client.zrangebyscore(self._agent_key(agent_id), parse_timestamp(since_str).timestamp(), "+inf")
        return [
            m for m in self._fetch(members)
            if m.created_at >= since_str and m.importance >= min_importance
        ]

    def select_by_time_range(self, agent_id: str, start: datetime, end: datetime) -> list[Memory]:
        start_str, end_str = format_timestamp(start), format_timestamp(end)
        with self._redis_errors("read from"):
            members = self.client.zrangebyscore(
                self._agent_key(agent_id),
                parse_timestamp(start_str).timestamp(),
                parse_timestamp(end_str).timestamp(),
            )
        return [m for m in self._fetch(members) if start_str <= m.created_at < end_str]

    def close(self) -> None:
        self.client.close()


BACKEND_ALIASES = {
    "sqlite": "sqlite",
    "embedded": "sqlite",
    "json": "json",
    "redis": "redis",
    "remote": "redis",
}


def get_backend(backend_type: str = "sqlite", **kwargs) -> StorageBackend:
    """
    Resolve `backend_type` through BACKEND_ALIASES and construct that backend.

    "embedded" names the SQLite file store and "remote" names Redis; `kwargs`
    go to the chosen constructor unchanged. Names outside the alias table
    raise ValidationError.
    """
    kind = BACKEND_ALIASES.get(backend_type) if isinstance(backend_type, str) else None
    if kind == "sqlite":
        return SQLiteBackend(**kwargs)
    elif kind == "json":
        return JSONBackend(**kwargs)
    elif kind == "redis":
        return RedisBackend(**kwargs)
    raise ValidationError(
        f"Unknown backend type: {backend_type}. Use 'sqlite', 'json' or 'redis'."
    )
