"""
Token-level helpers shared by the template engine, enhancer, scorer and
deduplicator.
"""

import re

STOPWORDS = frozenset({"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for"})

MIN_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 1000

_WHITESPACE = re.compile(r"\s+")
# Sentence punctuation at the end of a token. "site:.com" is left alone.
_TRAILING_PUNCTUATION = re.compile(r"[,.!?;:]+(?=\s|$)")


def tokenize(text: str) -> list[str]:
    """Lowercase whitespace tokens."""
    return [t for t in _WHITESPACE.split(text.lower().strip()) if t]


def jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the two texts' token sets."""
    set_a, set_b = set(tokenize(a)), set(tokenize(b))
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def normalize_query(text: str) -> str:
    """Collapse whitespace, strip sentence punctuation, lowercase."""
    text = _TRAILING_PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip().lower()


def validate_query(text: str) -> list[str]:
    """
    Check a candidate query.

    Returns:
        List of error messages; empty when the query is valid.
    """
    if not text or not text.strip():
        return ["Query cannot be empty"]

    errors = []
    stripped = text.strip()
    if len(stripped) < MIN_QUERY_LENGTH:
        errors.append(f"Query is too short (minimum {MIN_QUERY_LENGTH} characters)")
    if len(stripped) > MAX_QUERY_LENGTH:
        errors.append(f"Query is too long (maximum {MAX_QUERY_LENGTH} characters)")
    if "{" in stripped or "}" in stripped:
        errors.append("Query contains unresolved placeholders")
    meaningful = [t for t in tokenize(stripped) if t not in STOPWORDS]
    if len(meaningful) < 2:
        errors.append("Query has too few meaningful words")
    return errors
