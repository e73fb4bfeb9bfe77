"""Digest service: scope-level digest runs, ingestion, rebuilds and retrieval.

Binds the stateless pipeline to a store. Incremental runs read a bounded
window of recent events; rebuilds replay history oldest first in fixed
size chunks, each chunk's digest becoming the next chunk's prior.
Retrieval and answers read the newest events and the latest digest.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from datetime import UTC
from enum import Enum

from projectmemory.config import DigestWindowConfig
from projectmemory.config import LLMConfig
from projectmemory.config import RebuildConfig
from projectmemory.config import RetrievalConfig
from projectmemory.engine.generation import LLMAdapter
from projectmemory.engine.pipeline import DigestControlPipeline
from projectmemory.engine.retrieval import MemoryAnswerer
from projectmemory.engine.retrieval import RetrievalEngine
from projectmemory.engine.retrieval import RetrievalResult
from projectmemory.engine.schemas import PipelineResult
from projectmemory.memory import create_memory_event
from projectmemory.memory.protocols import MemoryStore
from projectmemory.models.digest import Digest
from projectmemory.models.events import EventSource
from projectmemory.models.events import EventType
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope
from projectmemory.models.events import ProjectStage

logger = logging.getLogger(__name__)


class ScopeNotFoundError(LookupError):
    """The scope does not exist or belongs to another user."""

    def __init__(self, scope_id: str) -> None:
        self.scope_id = scope_id
        super().__init__(f"scope_not_found:{scope_id}")


class AnswerUnavailableError(RuntimeError):
    """No language model is configured for memory-backed answers."""

    def __init__(self) -> None:
        super().__init__("llm_disabled")


class RebuildStrategy(str, Enum):
    full = "full"
    since_last_good = "since_last_good"


@dataclass
class RebuildResult:
    """Summary of one rebuild chain."""

    rebuild_group_id: str
    digests: list[Digest] = field(default_factory=list)
    chunks_total: int = 0
    chunks_processed: int = 0
    cancelled: bool = False


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so they compare with stored timestamps."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _chunked(events: list[MemoryEvent], size: int) -> list[list[MemoryEvent]]:
    size = max(size, 1)
    return [events[i : i + size] for i in range(0, len(events), size)]


def _to_digest(
    scope_id: str, result: PipelineResult, rebuild_group_id: str | None = None
) -> Digest:
    return Digest(
        scope_id=scope_id,
        summary=result.digest.summary,
        changes=list(result.digest.changes),
        next_steps=list(result.digest.next_steps),
        rebuild_group_id=rebuild_group_id,
    )


class DigestService:
    """Runs the digest-control pipeline against stored scope history."""

    def __init__(
        self,
        store: MemoryStore,
        pipeline: DigestControlPipeline,
        *,
        window: DigestWindowConfig | None = None,
        rebuild: RebuildConfig | None = None,
        retrieval: RetrievalConfig | None = None,
        answer_llm: LLMAdapter | None = None,
        llm_config: LLMConfig | None = None,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._window = window or DigestWindowConfig()
        self._rebuild = rebuild or RebuildConfig()
        self._retrieval_config = retrieval or RetrievalConfig()
        self._retrieval = RetrievalEngine(store, self._retrieval_config)
        self._answerer: MemoryAnswerer | None = None
        if answer_llm is not None:
            self._answerer = MemoryAnswerer(
                answer_llm,
                self._retrieval,
                config=self._retrieval_config,
                llm_config=llm_config,
            )

    # ------------------------------------------------------------------
    # Scopes and events
    # ------------------------------------------------------------------

    async def create_scope(
        self,
        user_id: str,
        name: str,
        *,
        goal: str | None = None,
        stage: ProjectStage = ProjectStage.idea,
    ) -> ProjectScope:
        scope = ProjectScope(user_id=user_id, name=name, goal=goal, stage=stage)
        return await self._store.create_scope(scope)

    async def get_scope(self, scope_id: str, user_id: str) -> ProjectScope:
        scope = await self._store.get_scope(scope_id, user_id)
        if scope is None:
            raise ScopeNotFoundError(scope_id)
        return scope

    async def list_scopes(self, user_id: str) -> list[ProjectScope]:
        return await self._store.list_scopes(user_id)

    async def ingest_event(
        self,
        scope_id: str,
        user_id: str,
        content: str,
        *,
        type: EventType = EventType.stream,
        source: EventSource = EventSource.api,
        key: str | None = None,
    ) -> MemoryEvent:
        """Append a stream event or upsert a document into its key slot."""
        await self.get_scope(scope_id, user_id)
        event = create_memory_event(
            content,
            scope_id=scope_id,
            user_id=user_id,
            type=type,
            source=source,
            key=key,
        )
        if event.type == EventType.document:
            return await self._store.upsert_document(event)
        return await self._store.append_event(event)

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    async def latest_digest(self, scope_id: str, user_id: str) -> Digest | None:
        await self.get_scope(scope_id, user_id)
        return await self._store.find_latest(scope_id)

    async def list_digests(
        self, scope_id: str, user_id: str, *, limit: int | None = None
    ) -> list[Digest]:
        """Digest history, newest first, capped at the configured page size."""
        await self.get_scope(scope_id, user_id)
        cfg = self._retrieval_config
        limit = min(max(limit or cfg.default_limit, 1), cfg.max_limit)
        return await self._store.list_recent(scope_id, limit)

    async def digest_scope(
        self, scope_id: str, user_id: str, *, now: datetime | None = None
    ) -> Digest:
        """Generate and append a digest from the recent event window.

        Nothing is stored when the pipeline raises.
        """
        scope = await self.get_scope(scope_id, user_id)
        now = _as_utc(now) or datetime.now(UTC)
        since = now - timedelta(days=self._window.max_days_lookback)
        events = await self._store.list_by_lookback(
            scope_id, since, self._window.max_recent_events
        )
        last_digest = await self._store.find_latest(scope_id)

        result = await self._pipeline.run(scope, last_digest, events)
        digest = await self._store.append_digest(_to_digest(scope_id, result))
        logger.info(
            "Digest %s stored for scope %s (events=%d, deltas=%d, attempts=%d)",
            digest.id,
            scope_id,
            len(events),
            len(result.deltas),
            result.attempts,
        )
        return digest

    async def rebuild(
        self,
        scope_id: str,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        strategy: RebuildStrategy = RebuildStrategy.full,
        cancel_event: asyncio.Event | None = None,
    ) -> RebuildResult:
        """Re-derive digests over ``[start, end]`` in sequential chunks.

        ``full`` starts without a prior digest. ``since_last_good`` starts
        from the latest stored digest and only replays events created after
        it. Cancellation is honoured between chunks; digests already
        appended stay in place.
        """
        scope = await self.get_scope(scope_id, user_id)
        strategy = RebuildStrategy(strategy)
        result = RebuildResult(rebuild_group_id=f"rbg_{uuid.uuid4().hex}")

        prior: Digest | None = None
        events = await self._store.list_range(
            scope_id, _as_utc(start), _as_utc(end)
        )
        if strategy == RebuildStrategy.since_last_good:
            prior = await self._store.find_latest(scope_id)
            if prior is not None:
                events = [e for e in events if e.created_at > prior.created_at]

        chunks = _chunked(events, self._rebuild.chunk_size)
        result.chunks_total = len(chunks)
        logger.info(
            "Rebuild %s for scope %s: strategy=%s events=%d chunks=%d",
            result.rebuild_group_id,
            scope_id,
            strategy.value,
            len(events),
            len(chunks),
        )

        for chunk in chunks:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(
                    "Rebuild %s cancelled after %d/%d chunks",
                    result.rebuild_group_id,
                    result.chunks_processed,
                    result.chunks_total,
                )
                break
            run = await self._pipeline.run(scope, prior, chunk)
            prior = await self._store.append_digest(
                _to_digest(scope_id, run, result.rebuild_group_id)
            )
            result.digests.append(prior)
            result.chunks_processed += 1

        return result

    # ------------------------------------------------------------------
    # Retrieval and answers
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        scope_id: str,
        user_id: str,
        *,
        query: str | None = None,
        limit: int | None = None,
    ) -> RetrievalResult:
        await self.get_scope(scope_id, user_id)
        if limit is not None:
            limit = min(max(limit, 1), self._retrieval_config.max_limit)
        return await self._retrieval.retrieve(scope_id, query=query, limit=limit)

    async def answer(self, scope_id: str, user_id: str, question: str) -> str:
        """Answer *question* from the scope's digest and matching events."""
        if self._answerer is None:
            raise AnswerUnavailableError()
        await self.get_scope(scope_id, user_id)
        return await self._answerer.answer(scope_id, question)
