"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from memory_bridge.backends import JSONBackend, RedisBackend, SQLiteBackend
from memory_bridge.memory import MemoryStore, reset_store

START = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable replacement for the engine clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakePipeline:
    def __init__(self, client):
        self._client = client
        self._ops = []

    def set(self, key, value):
        self._ops.append(("set", key, value))
        return self

    def zadd(self, key, mapping):
        self._ops.append(("zadd", key, mapping))
        return self

    def execute(self):
        for op, key, value in self._ops:
            getattr(self._client, op)(key, value)
        self._ops = []


class FakeRedis:
    """In-memory stand-in for the subset of redis.Redis used by RedisBackend."""

    def __init__(self):
        self.strings = {}
        self.zsets = {}
        self.closed = False

    def ping(self):
        return True

    def setnx(self, key, value):
        if key in self.strings:
            return False
        self.strings[key] = value
        return True

    def set(self, key, value):
        self.strings[key] = value

    def get(self, key):
        return self.strings.get(key)

    def incr(self, key):
        self.strings[key] = str(int(self.strings.get(key, 0)) + 1)
        return int(self.strings[key])

    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)

    def zrangebyscore(self, key, minimum, maximum):
        upper = float("inf") if maximum == "+inf" else float(maximum)
        members = self.zsets.get(key, {})
        return [
            member for member, score in sorted(members.items(), key=lambda item: (item[1], item[0]))
            if float(minimum) <= score <= upper
        ]

    def mget(self, keys):
        return [self.strings.get(k) for k in keys]

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def close(self):
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(params=["sqlite", "json", "redis"])
def backend(request, tmp_path: Path):
    """Every backend implementation, one at a time."""
    if request.param == "sqlite":
        instance = SQLiteBackend(tmp_path / "memory.db")
    elif request.param == "json":
        instance = JSONBackend(tmp_path / "memories.json")
    else:
        instance = RedisBackend(client=FakeRedis())
    yield instance
    instance.close()


@pytest.fixture
def store(backend, clock) -> MemoryStore:
    """A MemoryStore over each backend with a fixed clock."""
    return MemoryStore(backend, agent_id="tester", clock=clock)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch):
    """Keep config and storage lookups out of the real home directory."""
    monkeypatch.setenv("MEMORY_BRIDGE_HOME", str(tmp_path / "home"))
    for name in ("STORAGE", "PATH", "AGENT_ID", "URL", "PASSWORD"):
        monkeypatch.delenv(f"MEMORY_BRIDGE_{name}", raising=False)
    yield
    reset_store()
