"""Process-local store for tests, dry runs and ablations."""

from __future__ import annotations

import asyncio
from datetime import datetime

from projectmemory.models.digest import Digest
from projectmemory.models.events import EventType
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope


class InMemoryStore:
    """Implements the scope, event and digest store contracts in memory."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._scopes: dict[str, ProjectScope] = {}
        self._events: dict[str, list[MemoryEvent]] = {}
        self._digests: dict[str, list[Digest]] = {}

    # -- scopes --

    async def create_scope(self, scope: ProjectScope) -> ProjectScope:
        async with self._lock:
            self._scopes[scope.id] = scope
        return scope

    async def get_scope(self, scope_id: str, user_id: str) -> ProjectScope | None:
        scope = self._scopes.get(scope_id)
        if scope is None or scope.user_id != user_id:
            return None
        return scope

    async def list_scopes(self, user_id: str) -> list[ProjectScope]:
        scopes = [s for s in self._scopes.values() if s.user_id == user_id]
        scopes.sort(key=lambda s: s.created_at, reverse=True)
        return scopes

    # -- events --

    async def append_event(self, event: MemoryEvent) -> MemoryEvent:
        async with self._lock:
            self._events.setdefault(event.scope_id, []).append(event)
        return event

    async def upsert_document(self, event: MemoryEvent) -> MemoryEvent:
        async with self._lock:
            events = self._events.setdefault(event.scope_id, [])
            for index, existing in enumerate(events):
                if existing.type == EventType.document and existing.key == event.key:
                    updated = existing.model_copy(
                        update={
                            "content": event.content,
                            "content_hash": event.content_hash,
                            "created_at": event.created_at,
                        }
                    )
                    events[index] = updated
                    return updated
            events.append(event)
        return event

    async def list_by_lookback(
        self, scope_id: str, since: datetime, limit: int
    ) -> list[MemoryEvent]:
        events = [e for e in self._events.get(scope_id, []) if e.created_at >= since]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[:limit]

    async def list_latest_events(self, scope_id: str, limit: int) -> list[MemoryEvent]:
        events = sorted(
            self._events.get(scope_id, []), key=lambda e: e.created_at, reverse=True
        )
        return events[:limit]

    async def list_range(
        self,
        scope_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MemoryEvent]:
        events = [
            e
            for e in self._events.get(scope_id, [])
            if (start is None or e.created_at >= start)
            and (end is None or e.created_at <= end)
        ]
        events.sort(key=lambda e: e.created_at)
        return events

    # -- digests --

    async def append_digest(self, digest: Digest) -> Digest:
        async with self._lock:
            self._digests.setdefault(digest.scope_id, []).append(digest)
        return digest

    async def find_latest(self, scope_id: str) -> Digest | None:
        latest = await self.list_recent(scope_id, limit=1)
        return latest[0] if latest else None

    async def list_recent(self, scope_id: str, limit: int = 20) -> list[Digest]:
        # stable sort over the reversed history: ties go to the latest append
        digests = sorted(
            reversed(self._digests.get(scope_id, [])),
            key=lambda d: d.created_at,
            reverse=True,
        )
        return digests[:limit]
