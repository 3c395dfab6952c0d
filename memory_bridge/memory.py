#!/usr/bin/env python3
"""
Memory Bridge engine
Persistent, queryable memory for conversational agents.

An agent stores short pieces of content with a type, an importance and an
owning agent id, and later recalls the most relevant ones by free-text query,
time window and importance threshold. Retrieval is keyword based: the same
content always produces the same keywords and the same ranking.

Usage:
    store = MemoryStore()                     # embedded SQLite at ~/.memory-bridge
    store = MemoryStore("json", path=...)     # flat-file alternative
    store = MemoryStore.from_config(MemoryConfig.load())

    store.store("User prefers dark mode", content_type="preference")
    store.query("dark mode", limit=3)
    store.timeline(7)
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence, Union

from .backends import (
    Memory,
    RankedMemory,
    StorageBackend,
    format_timestamp,
    get_backend,
)
from .config import DEFAULT_AGENT_ID, MemoryConfig
from .errors import EmptyContentError, ValidationError
from .importance import MAX_IMPORTANCE, score_conversation, score_importance
from .keywords import extract_keywords, normalize_content_type

__all__ = [
    "Memory",
    "RankedMemory",
    "MemoryStore",
    "SessionContext",
    "get_store",
    "remember",
    "recall",
]

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5000
DEFAULT_LIMIT = 5
DEFAULT_DAYS = 30

# relevance = KEYWORD_WEIGHT * overlap + IMPORTANCE_WEIGHT * importance / 10
KEYWORD_WEIGHT = 0.8
IMPORTANCE_WEIGHT = 0.2
EXACT_MATCH = 1.0
PARTIAL_MATCH = 0.5

AUTO_STORE_THRESHOLD = 6
AUTO_INSIGHT_THRESHOLD = 8
DECISION_WORDS = ("decide", "build", "create")
DECISION_IMPORTANCE = 9


def normalize_content(content: str) -> str:
    """Trim, cap at MAX_CONTENT_LENGTH and trim again. Empty results are rejected."""
    if not isinstance(content, str):
        raise ValidationError(f"content must be a string, got {type(content).__name__}")
    normalized = content.strip()[:MAX_CONTENT_LENGTH].strip()
    if not normalized:
        raise EmptyContentError("content is empty after trimming")
    return normalized


def _coerce_int(name: str, value, minimum: int, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be an integer, got {value!r}") from e
    if number < minimum or (maximum is not None and number > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValidationError(f"{name} must be {bounds}, got {number}")
    return number


def keyword_overlap(query_keywords: Sequence[str], memory_keywords: Sequence[str]) -> float:
    """
    Fraction of query keywords found in a memory's keywords.

    An exact keyword counts 1.0; a keyword that only contains, or is contained
    in, one of the memory's keywords counts 0.5.
    """
    if not query_keywords:
        return 0.0
    exact = set(memory_keywords)
    total = 0.0
    for term in query_keywords:
        if term in exact:
            total += EXACT_MATCH
        elif any(term in kw or kw in term for kw in memory_keywords):
            total += PARTIAL_MATCH
    return total / len(query_keywords)


def relevance_score(query_keywords: Sequence[str], memory: Memory) -> float:
    """Relevance in [0, 1]; importance can lift a memory by at most 0.2."""
    overlap = keyword_overlap(query_keywords, memory.keywords)
    score = KEYWORD_WEIGHT * overlap + IMPORTANCE_WEIGHT * memory.importance / MAX_IMPORTANCE
    return round(min(1.0, max(0.0, score)), 4)


@dataclass
class SessionContext:
    """What an agent should know when a new session starts."""
    recent: list[RankedMemory] = field(default_factory=list)
    preferences: list[RankedMemory] = field(default_factory=list)
    goals: list[RankedMemory] = field(default_factory=list)

    @property
    def has_context(self) -> bool:
        return bool(self.recent or self.preferences)

    def format(self) -> str:
        """Render as markdown sections for prompt injection."""
        sections = []
        if self.recent:
            text = "\n".join(f"- [{m.created_date}] {m.content}" for m in self.recent)
            sections.append(f"## Recent Work\n{text}")
        if self.preferences:
            text = "\n".join(f"- {m.content}" for m in self.preferences)
            sections.append(f"## Preferences\n{text}")
        if self.goals:
            text = "\n".join(f"- {m.content} (importance {m.importance})" for m in self.goals)
            sections.append(f"## Goals\n{text}")
        return "\n\n".join(sections)

    def to_dict(self) -> dict:
        return {
            "recent": [m.to_dict() for m in self.recent],
            "preferences": [m.to_dict() for m in self.preferences],
            "goals": [m.to_dict() for m in self.goals],
            "has_context": self.has_context,
        }


class MemoryStore:
    """
    Store, query and browse an agent's memories.

    Args:
        backend: Backend name ("sqlite", "json", "redis") or a StorageBackend
        agent_id: Agent used when an operation does not name one
        clock: Returns the current time; defaults to UTC now
        **backend_options: Passed to the backend constructor when `backend` is a name

    The store holds no memories itself, only the backend handle, so one
    instance can serve concurrent callers.
    """

    def __init__(
        self,
        backend: Union[str, StorageBackend] = "sqlite",
        agent_id: str = DEFAULT_AGENT_ID,
        clock: Optional[Callable[[], datetime]] = None,
        **backend_options,
    ):
        if isinstance(backend, str):
            self._backend = get_backend(backend, **backend_options)
        else:
            self._backend = backend
        self.agent_id = agent_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config: MemoryConfig, **kwargs) -> "MemoryStore":
        return cls(config.create_backend(), agent_id=config.agent_id, **kwargs)

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def _now(self) -> datetime:
        return self._clock()

    def _generate_id(self, content: str, timestamp: str) -> str:
        return hashlib.sha256(f"{content}{timestamp}{uuid.uuid4().hex}".encode()).hexdigest()[:12]

    def _agent(self, agent_id: Optional[str]) -> str:
        if agent_id is None:
            return self.agent_id
        if not isinstance(agent_id, str) or not agent_id.strip():
            raise ValidationError("agent_id must be a non-empty string")
        return agent_id

    # === STORE ===

    def store_memory(
        self,
        content: str,
        content_type: Optional[str] = None,
        importance: Optional[int] = None,
        source: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> Memory:
        """Build, persist and return a Memory. See store()."""
        text = normalize_content(content)
        tag = normalize_content_type(content_type)
        created_at = format_timestamp(self._now())

        memory = Memory(
            id=self._generate_id(text, created_at),
            content=text,
            content_type=tag,
            importance=score_importance(text, tag, importance),
            agent_id=self._agent(agent_id),
            created_at=created_at,
            source=source,
            keywords=tuple(extract_keywords(text, tag)),
        )
        self._backend.insert(memory)
        logger.debug(f"Stored {memory.content_type} memory {memory.id} (importance {memory.importance})")
        return memory

    def store(
        self,
        content: str,
        content_type: Optional[str] = None,
        importance: Optional[int] = None,
        source: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> str:
        """
        Store a memory and return its id.

        Example: store.store("User prefers dark mode", content_type="preference")

        Raises:
            EmptyContentError: content is blank after trimming
            ValidationError: content is not text or importance is not a number
            BackendError: the write failed; nothing was stored
        """
        return self.store_memory(content, content_type, importance, source, agent_id).id

    # === RETRIEVAL ===

    def query(
        self,
        query_text: str,
        limit: int = DEFAULT_LIMIT,
        days: int = DEFAULT_DAYS,
        min_importance: int = 0,
        agent_id: Optional[str] = None,
    ) -> list[RankedMemory]:
        """
        Return the memories most relevant to `query_text`, best first.

        Candidates are the agent's memories from the last `days` days with
        importance >= min_importance. Every candidate is ranked, matching or
        not; ties go to the most recent memory.
        """
        limit = _coerce_int("limit", limit, 1)
        days = _coerce_int("days", days, 1)
        min_importance = _coerce_int("min_importance", min_importance, 0, MAX_IMPORTANCE)
        agent = self._agent(agent_id)
        query_keywords = extract_keywords(query_text)

        since = self._now() - timedelta(days=days)
        candidates = self._backend.select_by_filter(agent, since, min_importance)
        if not candidates:
            return []

        scored = [
            (relevance_score(query_keywords, memory), memory.created_at, index, memory)
            for index, memory in enumerate(candidates)
        ]
        scored.sort(key=lambda item: item[:3], reverse=True)

        logger.debug(f"Query {query_keywords} ranked {len(candidates)} candidates for agent {agent}")
        return [RankedMemory.from_memory(memory, relevance) for relevance, _, _, memory in scored[:limit]]

    def timeline(self, days: int, agent_id: Optional[str] = None) -> dict[str, list[Memory]]:
        """
        Group the last `days` days of memories by UTC calendar day.

        Days are ordered most recent first and so are the memories within a
        day. Days without memories are left out.
        """
        days = _coerce_int("days", days, 1)
        agent = self._agent(agent_id)

        now = self._now()
        memories = self._backend.select_by_time_range(
            agent, now - timedelta(days=days), now + timedelta(microseconds=1)
        )
        ordered = sorted(enumerate(memories), key=lambda item: (item[1].created_at, item[0]), reverse=True)

        grouped: dict[str, list[Memory]] = {}
        for _, memory in ordered:
            grouped.setdefault(memory.created_date, []).append(memory)
        return grouped

    # === CONTEXT ENGINEERING ===

    def session_context(self, agent_id: Optional[str] = None) -> SessionContext:
        """Recent work, preferences and high-importance goals for a new session."""
        return SessionContext(
            recent=self.query("recent work", limit=3, days=7, agent_id=agent_id),
            preferences=self.query("preference", limit=5, agent_id=agent_id),
            goals=self.query("goal", min_importance=8, limit=3, agent_id=agent_id),
        )

    def auto_store(
        self,
        user_message: str,
        agent_response: Optional[str] = None,
        agent_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> list[str]:
        """
        Store a chat message if it looks worth remembering.

        Messages scoring >= 6 are stored (as "insight" from 8 up, otherwise
        "conversation"). Messages that talk about deciding, building or
        creating also produce a "Decision:" memory of importance 9.
        The agent response is accepted for call-site symmetry; only the user
        message is scored.
        """
        importance = score_conversation(user_message)
        if importance < AUTO_STORE_THRESHOLD:
            return []

        stored = [
            self.store(
                user_message,
                content_type="insight" if importance >= AUTO_INSIGHT_THRESHOLD else "conversation",
                importance=importance,
                source=source,
                agent_id=agent_id,
            )
        ]

        if any(word in user_message for word in DECISION_WORDS):
            stored.append(self.store(
                f"Decision: {user_message}",
                content_type="decision",
                importance=DECISION_IMPORTANCE,
                source=source,
                agent_id=agent_id,
            ))

        return stored

    # === UTILITY ===

    def close(self) -> None:
        self._backend.close()

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# Convenience functions
_store: Optional[MemoryStore] = None


def get_store(config: Optional[MemoryConfig] = None) -> MemoryStore:
    """
    Get or create the process-wide MemoryStore.

    Passing a config replaces the current store.
    """
    global _store
    if _store is None or config is not None:
        if _store is not None:
            _store.close()
        _store = MemoryStore.from_config(config or MemoryConfig.load())
    return _store


def reset_store() -> None:
    """Close and forget the process-wide store (for tests or reconfiguration)."""
    global _store
    if _store is not None:
        _store.close()
        _store = None


def remember(content: str, **options) -> str:
    """Store a memory in the process-wide store. Options as for MemoryStore.store()."""
    return get_store().store(content, **options)


def recall(query: str, **options) -> list[RankedMemory]:
    return get_store().query(query, **options)
