"""
Importance heuristics.

The scores bias ranking and auto-storage decisions; they are not a measure
of true importance.
"""

from typing import Optional

from .errors import ValidationError
from .keywords import normalize_content_type

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10
BASE_IMPORTANCE = 5

# (length threshold, bonus); total length bonus is capped
LENGTH_TIERS = ((200, 1), (1000, 1))
MAX_LENGTH_BONUS = 2

TYPE_BONUS = {
    "insight": 2,
    "error": 1,
    "goal": 2,
}

SENSITIVE_TERMS = (
    "security",
    "password",
    "passphrase",
    "api key",
    "apikey",
    "secret",
    "credential",
    "private key",
    "access token",
)
SENSITIVE_BONUS = 3

HIGH_VALUE_WORDS = ("decide", "build", "create", "launch", "important", "critical", "goal", "prefer")
CONVERSATION_SENSITIVE_TERMS = ("security", "password", "api key")


def clamp_importance(value) -> int:
    """Coerce to int and clamp to [1, 10]."""
    if isinstance(value, bool):
        raise ValidationError("importance must be a number, not a boolean")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"importance must be a number, got {value!r}") from e
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, number))


def score_importance(content: str, content_type: Optional[str] = None, importance=None) -> int:
    """
    Resolve the importance of a memory.

    An explicit importance always wins (clamped). Otherwise start at 5 and add:
    +1 over 200 chars, +1 more over 1000 chars, +2 insight, +1 error, +2 goal,
    +3 when any SENSITIVE_TERMS appear.
    """
    if importance is not None:
        return clamp_importance(importance)

    score = BASE_IMPORTANCE

    length_bonus = sum(bonus for threshold, bonus in LENGTH_TIERS if len(content) > threshold)
    score += min(MAX_LENGTH_BONUS, length_bonus)

    score += TYPE_BONUS.get(normalize_content_type(content_type), 0)

    lowered = content.lower()
    if any(term in lowered for term in SENSITIVE_TERMS):
        score += SENSITIVE_BONUS

    return clamp_importance(score)


def score_conversation(user_message: str) -> int:
    """Score a raw chat message for auto-storage (see MemoryStore.auto_store)."""
    score = BASE_IMPORTANCE

    if len(user_message) > 100:
        score += 1
    if len(user_message) > 300:
        score += 1

    lowered = user_message.lower()
    matches = sum(1 for word in HIGH_VALUE_WORDS if word in lowered)
    score += min(3, matches)

    if any(term in lowered for term in CONVERSATION_SENSITIVE_TERMS):
        score += 3

    return min(MAX_IMPORTANCE, score)
