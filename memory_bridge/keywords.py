"""
Keyword extraction for memories and queries.

Keywords are computed once when a memory is written and stored alongside it;
queries run through the same extractor so both sides compare like with like.
"""

import re
from typing import Optional

from .errors import ValidationError

MIN_KEYWORD_LENGTH = 3

DEFAULT_CONTENT_TYPE = "conversation"

_TOKEN_SPLIT = re.compile(r"[\W_]+")

STOP_WORDS = frozenset({
    "about", "above", "after", "again", "against", "all", "also", "and", "any",
    "are", "aren", "because", "been", "before", "being", "below", "between",
    "both", "but", "can", "cannot", "could", "did", "didn", "does", "doesn",
    "doing", "don", "down", "during", "each", "else", "even", "ever", "few",
    "for", "from", "further", "get", "got", "had", "has", "hasn", "have",
    "having", "her", "here", "hers", "herself", "him", "himself", "his", "how",
    "into", "isn", "its", "itself", "just", "let", "like", "more", "most",
    "much", "must", "myself", "nor", "not", "now", "off", "once", "one",
    "only", "other", "our", "ours", "ourselves", "out", "over", "own", "same",
    "she", "should", "since", "some", "still", "such", "than", "that", "the",
    "their", "theirs", "them", "themselves", "then", "there", "these", "they",
    "this", "those", "through", "too", "under", "until", "very", "was",
    "wasn", "way", "were", "weren", "what", "when", "where", "which", "while",
    "who", "whom", "why", "will", "with", "won", "would", "yes", "yet", "you",
    "your", "yours", "yourself", "yourselves",
})


def normalize_content_type(content_type: Optional[str]) -> str:
    """Lowercase and strip a content type, falling back to "conversation"."""
    if content_type is None:
        return DEFAULT_CONTENT_TYPE
    if not isinstance(content_type, str):
        raise ValidationError(f"content type must be a string, got {type(content_type).__name__}")
    return content_type.strip().lower() or DEFAULT_CONTENT_TYPE


def extract_keywords(content: str, content_type: Optional[str] = None) -> list[str]:
    """
    Extract significant terms from content.

    Terms are lowercased, split on anything that is not a letter or digit,
    and filtered against STOP_WORDS, MIN_KEYWORD_LENGTH and pure numbers.
    Order of first appearance is kept. A content type other than
    "conversation" is appended as a synthetic keyword so that typed memories
    can be found by their type name.

    Example:
        extract_keywords("User prefers dark mode", "preference")
        # ['user', 'prefers', 'dark', 'mode', 'preference']
    """
    if not isinstance(content, str):
        raise ValidationError(f"content must be a string, got {type(content).__name__}")

    keywords: list[str] = []
    seen = set()
    for token in _TOKEN_SPLIT.split(content.lower()):
        if len(token) < MIN_KEYWORD_LENGTH or token.isdigit():
            continue
        if token in STOP_WORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)

    if content_type is not None:
        tag = normalize_content_type(content_type)
        if tag != DEFAULT_CONTENT_TYPE and tag not in seen:
            keywords.append(tag)

    return keywords
