"""Text normalization and lexical similarity helpers.

Pure functions shared by deduplication, novelty scoring and the
consistency checks. Everything here is deterministic.
"""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^a-z0-9\s:]")
_BULLET_PREFIX_RE = re.compile(r"^-\s*")
_GOAL_RE = re.compile(r"\bgoal\s*:\s*([^\n.]+)", re.IGNORECASE)

MIN_TOKEN_LENGTH = 3


def normalize_text(text: str) -> str:
    """Lowercase, collapse whitespace and keep only ``[a-z0-9 :]``."""
    collapsed = _WHITESPACE_RE.sub(" ", text.lower())
    return _DISALLOWED_RE.sub("", collapsed).strip()


def tokenize(text: str) -> list[str]:
    """Split normalized text on spaces, dropping tokens of length <= 2."""
    return [
        tok for tok in normalize_text(text).split(" ") if len(tok) >= MIN_TOKEN_LENGTH
    ]


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set Jaccard similarity. Two token-less texts count as identical."""
    tokens_a = set(tokenize(a))
    tokens_b = set(tokenize(b))
    if not tokens_a and not tokens_b:
        return 1.0
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def word_count(text: str) -> int:
    return len(text.split())


def normalize_bullet(text: str) -> str:
    """Normalize a change bullet, ignoring a leading ``-``."""
    return normalize_text(_BULLET_PREFIX_RE.sub("", text.strip()))


def parse_goal(text: str) -> str | None:
    """Return the text after the first ``goal:`` marker, up to a newline or period."""
    match = _GOAL_RE.search(text)
    if not match:
        return None
    goal = match.group(1).strip()
    return goal or None


def parse_prefixed_lines(text: str, prefix: str) -> list[str]:
    """Return the remainder of every line starting with *prefix* (case-insensitive)."""
    prefix_lower = prefix.lower()
    values: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.lower().startswith(prefix_lower):
            continue
        value = stripped[len(prefix) :].strip()
        if value:
            values.append(value)
    return values


def dedupe_preserving_order(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))
