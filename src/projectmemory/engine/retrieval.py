"""Query-ranked retrieval over recent scope events, and memory-backed answers.

Retrieval reads a bounded pool of the newest events and, when a query is
given, ranks them by concept-aware lexical overlap blended with recency.
Answers are generated from the latest digest plus the retrieved events.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from dataclasses import field
from time import perf_counter
from typing import Protocol

from projectmemory.config import LLMConfig
from projectmemory.config import RetrievalConfig
from projectmemory.engine.generation import LLMAdapter
from projectmemory.engine.prompt_builder import AnswerPrompts
from projectmemory.engine.prompt_builder import build_answer_messages
from projectmemory.memory.protocols import DigestStore
from projectmemory.memory.protocols import EventStore
from projectmemory.models.digest import Digest
from projectmemory.models.events import MemoryEvent
from projectmemory.observability import record_latency

_WORD_RE = re.compile(r"[a-z0-9]+")
_MIN_TOKEN_LENGTH = 3

PHRASE_BOOST = 0.15
QUERY_WEIGHT = 0.8
RECENCY_WEIGHT = 0.2

# A query mentioning any alias also matches the concept name and every
# token of its aliases.
QUERY_ALIASES: dict[str, tuple[str, ...]] = {
    "decision": ("decide", "decision", "agreed", "we will", "chose"),
    "constraint": ("constraint", "blocked", "blocker", "limitation", "must", "cannot"),
    "todo": ("todo", "next step", "action item", "follow up", "pending"),
    "status": ("status", "progress", "done", "shipped", "completed"),
}


def _tokens(text: str) -> list[str]:
    return [t for t in _WORD_RE.findall(text.lower()) if len(t) >= _MIN_TOKEN_LENGTH]


def expand_query(query: str) -> set[str]:
    """Query tokens plus the concepts (and alias tokens) the query mentions."""
    tokens = set(_tokens(query))
    lowered = query.lower()
    for concept, aliases in QUERY_ALIASES.items():
        if not any(alias in lowered for alias in aliases):
            continue
        tokens.add(concept)
        for alias in aliases:
            tokens.update(_tokens(alias))
    return tokens


class QueryScorer(Protocol):
    """Scores how well an event's content answers a query, in ``[0, 1]``."""

    def score(self, query: str, content: str) -> float: ...


@dataclass(frozen=True)
class ConceptOverlapScorer:
    """Token overlap against the expanded query, plus a substring boost."""

    phrase_boost: float = PHRASE_BOOST

    def score(self, query: str, content: str) -> float:
        query_tokens = expand_query(query)
        if not query_tokens:
            return 0.0
        overlap = sum(1 for t in _tokens(content) if t in query_tokens)
        lowered = content.lower()
        boost = (
            self.phrase_boost if any(t in lowered for t in query_tokens) else 0.0
        )
        return min(1.0, overlap / len(query_tokens) + boost)


def rank_events(
    query: str,
    events: list[MemoryEvent],
    limit: int,
    *,
    scorer: QueryScorer | None = None,
) -> list[MemoryEvent]:
    """Order *events* by ``0.8 * query score + 0.2 * recency``, newest on ties.

    Recency is the event's position in the pool's time span, so the newest
    candidate scores 1 and the oldest 0.
    """
    if not events:
        return []
    scorer = scorer or ConceptOverlapScorer()
    newest = max(e.created_at for e in events)
    oldest = min(e.created_at for e in events)
    span = max((newest - oldest).total_seconds(), 0.001)

    def combined(event: MemoryEvent) -> float:
        recency = (event.created_at - oldest).total_seconds() / span
        return (
            scorer.score(query, event.content) * QUERY_WEIGHT
            + recency * RECENCY_WEIGHT
        )

    ranked = sorted(
        events,
        key=lambda e: (combined(e), e.created_at.timestamp()),
        reverse=True,
    )
    return ranked[:limit]


@dataclass
class RetrievalResult:
    """Latest digest and the events chosen for a query."""

    digest: Digest | None
    events: list[MemoryEvent] = field(default_factory=list)


class RetrievalStore(EventStore, DigestStore, Protocol):
    """The slice of the store retrieval reads from."""


class RetrievalEngine:
    """Ranks a scope's recent events against an optional query."""

    def __init__(
        self,
        store: RetrievalStore,
        config: RetrievalConfig | None = None,
        *,
        scorer: QueryScorer | None = None,
    ) -> None:
        self._store = store
        self._config = config or RetrievalConfig()
        self._scorer = scorer or ConceptOverlapScorer()

    def candidate_pool_size(self, limit: int) -> int:
        cfg = self._config
        return min(
            max(limit * cfg.candidate_multiplier, cfg.min_candidates),
            cfg.max_candidates,
        )

    async def retrieve(
        self, scope_id: str, *, query: str | None = None, limit: int | None = None
    ) -> RetrievalResult:
        """Return the latest digest and up to *limit* events.

        Without a query the newest events are returned as they are.
        """
        start = perf_counter()
        limit = limit or self._config.default_limit
        digest = await self._store.find_latest(scope_id)
        pool = await self._store.list_latest_events(
            scope_id, self.candidate_pool_size(limit)
        )
        if query and query.strip():
            events = rank_events(query, pool, limit, scorer=self._scorer)
        else:
            events = pool[:limit]

        record_latency(
            operation="retrieval_engine.retrieve",
            duration_ms=(perf_counter() - start) * 1000,
            ok=True,
        )
        return RetrievalResult(digest=digest, events=events)


class MemoryAnswerer:
    """Answers questions strictly from retrieved memory."""

    def __init__(
        self,
        llm: LLMAdapter,
        retrieval: RetrievalEngine,
        *,
        config: RetrievalConfig | None = None,
        llm_config: LLMConfig | None = None,
        prompts: AnswerPrompts | None = None,
    ) -> None:
        self._llm = llm
        self._retrieval = retrieval
        self._config = config or RetrievalConfig()
        self._llm_config = llm_config or LLMConfig()
        self._prompts = prompts or AnswerPrompts()

    async def answer(self, scope_id: str, question: str) -> str:
        """Retrieve context for *question* and return the model's answer.

        Raises ``LLMError`` when the provider call fails.
        """
        retrieved = await self._retrieval.retrieve(
            scope_id, query=question, limit=self._config.answer_event_limit
        )
        messages = build_answer_messages(
            question=question,
            digest=retrieved.digest,
            events=retrieved.events,
            prompts=self._prompts,
        )
        raw = await self._llm.chat(
            messages,
            temperature=self._llm_config.temperature,
            max_tokens=self._llm_config.max_tokens,
            timeout_seconds=self._llm_config.timeout_seconds,
        )
        return raw.strip()
