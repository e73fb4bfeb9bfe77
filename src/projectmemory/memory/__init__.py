"""Memory domain: event, scope and digest storage."""

from __future__ import annotations

import hashlib

from projectmemory.memory.in_memory import InMemoryStore
from projectmemory.memory.protocols import DigestStore
from projectmemory.memory.protocols import EventStore
from projectmemory.memory.protocols import MemoryStore
from projectmemory.memory.protocols import ScopeStore
from projectmemory.memory.store import RedisStore
from projectmemory.models.events import EventSource
from projectmemory.models.events import EventType
from projectmemory.models.events import MemoryEvent

__all__ = [
    "DigestStore",
    "EventStore",
    "InMemoryStore",
    "MemoryStore",
    "RedisStore",
    "ScopeStore",
    "content_hash",
    "create_memory_event",
]


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def create_memory_event(
    content: str,
    *,
    scope_id: str,
    user_id: str,
    type: EventType = EventType.stream,
    source: EventSource = EventSource.api,
    key: str | None = None,
) -> MemoryEvent:
    """Factory for a MemoryEvent with the document invariants applied.

    Documents must name a slot ``key`` and carry a sha256 of their
    content. Stream events never keep a key.
    """
    if type == EventType.document:
        if not key:
            raise ValueError("document events require a key")
        return MemoryEvent(
            scope_id=scope_id,
            user_id=user_id,
            type=type,
            source=source,
            key=key,
            content=content,
            content_hash=content_hash(content),
        )
    return MemoryEvent(
        scope_id=scope_id,
        user_id=user_id,
        type=type,
        source=source,
        content=content,
    )
