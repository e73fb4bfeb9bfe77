"""Redis-backed scope, event and digest store.

Records are stored as JSON strings keyed by ``projectmemory:{kind}:{id}``.
Per-scope sorted sets ``projectmemory:events:{scope}`` and
``projectmemory:digests:{scope}`` order events and digests by creation
time (score = unix timestamp). ``projectmemory:doc:{scope}:{key}`` points
at the live document for a key and ``projectmemory:scopes:{user}`` lists a
user's scopes. Digests are append-only; their sorted-set members carry a
zero-padded per-scope append sequence (``{seq}:{id}``) so that digests
sharing a timestamp come back most recently appended first.
"""

from __future__ import annotations

import logging
from datetime import datetime

from redis.asyncio import Redis  # type: ignore[import-untyped]

from projectmemory.models.digest import Digest
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "projectmemory"
_SCOPE_KEY = f"{_PREFIX}:scope"
_SCOPES_BY_USER_KEY = f"{_PREFIX}:scopes"
_EVENT_KEY = f"{_PREFIX}:event"
_EVENTS_BY_SCOPE_KEY = f"{_PREFIX}:events"
_DOC_KEY = f"{_PREFIX}:doc"
_DIGEST_KEY = f"{_PREFIX}:digest"
_DIGESTS_BY_SCOPE_KEY = f"{_PREFIX}:digests"
_DIGEST_SEQ_KEY = f"{_PREFIX}:digest_seq"

_CLEAR_BATCH_SIZE = 100
_SEQ_WIDTH = 12


def _decode(raw: bytes | str) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


def _score(value: datetime) -> float:
    return value.timestamp()


class RedisStore:
    """Implements the scope, event and digest store contracts on Redis."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def close(self) -> None:
        await self._redis.aclose()

    # -- scopes --

    async def create_scope(self, scope: ProjectScope) -> ProjectScope:
        pipe = self._redis.pipeline()
        pipe.set(f"{_SCOPE_KEY}:{scope.id}", scope.model_dump_json())
        pipe.zadd(
            f"{_SCOPES_BY_USER_KEY}:{scope.user_id}",
            {scope.id: _score(scope.created_at)},
        )
        await pipe.execute()
        return scope

    async def get_scope(self, scope_id: str, user_id: str) -> ProjectScope | None:
        data = await self._redis.get(f"{_SCOPE_KEY}:{scope_id}")
        if data is None:
            return None
        scope = ProjectScope.model_validate_json(data)
        return scope if scope.user_id == user_id else None

    async def list_scopes(self, user_id: str) -> list[ProjectScope]:
        ids = await self._redis.zrevrange(f"{_SCOPES_BY_USER_KEY}:{user_id}", 0, -1)
        if not ids:
            return []
        raw_results = await self._redis.mget(
            [f"{_SCOPE_KEY}:{_decode(raw_id)}" for raw_id in ids]
        )
        return [
            ProjectScope.model_validate_json(raw)
            for raw in raw_results
            if raw is not None
        ]

    # -- events --

    async def append_event(self, event: MemoryEvent) -> MemoryEvent:
        pipe = self._redis.pipeline()
        pipe.set(f"{_EVENT_KEY}:{event.id}", event.model_dump_json())
        pipe.zadd(
            f"{_EVENTS_BY_SCOPE_KEY}:{event.scope_id}",
            {event.id: _score(event.created_at)},
        )
        await pipe.execute()
        return event

    async def upsert_document(self, event: MemoryEvent) -> MemoryEvent:
        """Replace the live document for ``(scope_id, key)``.

        An existing slot keeps its id; content, hash and creation time are
        taken from *event* so the update counts as recent.
        """
        doc_key = f"{_DOC_KEY}:{event.scope_id}:{event.key}"
        existing_id = await self._redis.get(doc_key)
        stored = event
        if existing_id is not None:
            stored = event.model_copy(update={"id": _decode(existing_id)})

        pipe = self._redis.pipeline()
        pipe.set(doc_key, stored.id)
        pipe.set(f"{_EVENT_KEY}:{stored.id}", stored.model_dump_json())
        pipe.zadd(
            f"{_EVENTS_BY_SCOPE_KEY}:{stored.scope_id}",
            {stored.id: _score(stored.created_at)},
        )
        await pipe.execute()
        return stored

    async def list_by_lookback(
        self, scope_id: str, since: datetime, limit: int
    ) -> list[MemoryEvent]:
        ids = await self._redis.zrevrangebyscore(
            f"{_EVENTS_BY_SCOPE_KEY}:{scope_id}",
            "+inf",
            _score(since),
            start=0,
            num=limit,
        )
        return await self._load_events(ids)

    async def list_latest_events(self, scope_id: str, limit: int) -> list[MemoryEvent]:
        ids = await self._redis.zrevrange(
            f"{_EVENTS_BY_SCOPE_KEY}:{scope_id}", 0, limit - 1
        )
        return await self._load_events(ids)

    async def list_range(
        self,
        scope_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MemoryEvent]:
        ids = await self._redis.zrangebyscore(
            f"{_EVENTS_BY_SCOPE_KEY}:{scope_id}",
            "-inf" if start is None else _score(start),
            "+inf" if end is None else _score(end),
        )
        return await self._load_events(ids)

    async def _load_events(self, ids: list) -> list[MemoryEvent]:
        if not ids:
            return []
        keys = [f"{_EVENT_KEY}:{_decode(raw_id)}" for raw_id in ids]
        raw_results = await self._redis.mget(keys)
        events: list[MemoryEvent] = []
        for key, raw in zip(keys, raw_results):
            if raw is None:
                logger.warning("Event index points at missing record %s", key)
                continue
            events.append(MemoryEvent.model_validate_json(raw))
        return events

    # -- digests --

    async def append_digest(self, digest: Digest) -> Digest:
        seq = await self._redis.incr(f"{_DIGEST_SEQ_KEY}:{digest.scope_id}")
        pipe = self._redis.pipeline()
        pipe.set(f"{_DIGEST_KEY}:{digest.id}", digest.model_dump_json())
        pipe.zadd(
            f"{_DIGESTS_BY_SCOPE_KEY}:{digest.scope_id}",
            {f"{seq:0{_SEQ_WIDTH}d}:{digest.id}": _score(digest.created_at)},
        )
        await pipe.execute()
        return digest

    async def find_latest(self, scope_id: str) -> Digest | None:
        latest = await self.list_recent(scope_id, limit=1)
        return latest[0] if latest else None

    async def list_recent(self, scope_id: str, limit: int = 20) -> list[Digest]:
        members = await self._redis.zrevrange(
            f"{_DIGESTS_BY_SCOPE_KEY}:{scope_id}", 0, limit - 1
        )
        if not members:
            return []
        ids = [_decode(member).split(":", 1)[1] for member in members]
        raw_results = await self._redis.mget([f"{_DIGEST_KEY}:{i}" for i in ids])
        return [Digest.model_validate_json(raw) for raw in raw_results if raw is not None]

    # -- maintenance --

    async def clear(self) -> None:
        """Remove every ``projectmemory:*`` key, in batches."""
        batch: list = []
        async for key in self._redis.scan_iter(match=f"{_PREFIX}:*"):
            batch.append(key)
            if len(batch) >= _CLEAR_BATCH_SIZE:
                await self._redis.delete(*batch)
                batch.clear()
        if batch:
            await self._redis.delete(*batch)
