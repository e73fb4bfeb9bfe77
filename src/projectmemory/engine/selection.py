"""Budgeted event selection feeding the digest generator.

Sorts recent events newest first, removes near duplicates within a
``(type, key)`` group, keeps the latest document per key and fills the
stream budget by a blend of importance, recency and keyword signals.
Documents are listed first so they survive truncation to the total budget.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from datetime import UTC

from projectmemory.config import DigestControlConfig
from projectmemory.engine.classifier import EventClassifier
from projectmemory.engine.classifier import HeuristicClassifier
from projectmemory.engine.schemas import SelectedEvent
from projectmemory.engine.schemas import SelectionResult
from projectmemory.engine.text import jaccard_similarity
from projectmemory.models.digest import Digest
from projectmemory.models.events import EventType
from projectmemory.models.events import MemoryEvent

IMPORTANCE_WEIGHT = 0.7
RECENCY_WEIGHT = 0.3
SELECTION_KEYWORD_BOOST = 0.1
_SELECTION_KEYWORDS_RE = re.compile(
    r"\b(decide|decision|we will|constraint|blocked|todo|next|risk|goal)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class EventBudget:
    total: int = 40
    docs: int = 10
    stream: int = 30

    @classmethod
    def from_config(cls, config: DigestControlConfig) -> EventBudget:
        return cls(
            total=config.event_budget_total,
            docs=config.event_budget_docs,
            stream=config.event_budget_stream,
        )


def _same_group(a: MemoryEvent, b: MemoryEvent) -> bool:
    return a.type == b.type and (a.key or "") == (b.key or "")


def _timestamp(event: MemoryEvent) -> float:
    return event.created_at.timestamp()


def _dedupe_consecutive(
    events: list[MemoryEvent], threshold: float, rationale: list[str]
) -> list[MemoryEvent]:
    kept: list[MemoryEvent] = []
    prev: MemoryEvent | None = None
    for event in events:
        if (
            prev is not None
            and _same_group(prev, event)
            and jaccard_similarity(prev.content, event.content) >= threshold
        ):
            rationale.append(f"dedup:{event.id}")
            continue
        kept.append(event)
        prev = event
    return kept


def _dedupe_near(
    events: list[MemoryEvent], threshold: float, rationale: list[str]
) -> list[MemoryEvent]:
    kept: list[MemoryEvent] = []
    for event in events:
        if any(
            _same_group(existing, event)
            and jaccard_similarity(existing.content, event.content) >= threshold
            for existing in kept
        ):
            rationale.append(f"dedup_near:{event.id}")
            continue
        kept.append(event)
    return kept


def _latest_documents_by_key(events: list[MemoryEvent]) -> list[MemoryEvent]:
    # events arrive newest first, so the first hit per key is the live one
    latest: dict[str, MemoryEvent] = {}
    for event in events:
        if event.type != EventType.document or not event.key:
            continue
        latest.setdefault(event.key, event)
    return list(latest.values())


def select_events_for_digest(
    recent_events: list[MemoryEvent],
    *,
    last_digest: Digest | None = None,
    budget: EventBudget | None = None,
    dedup_threshold: float = 0.92,
    classifier: EventClassifier | None = None,
) -> SelectionResult:
    """Pick the subset of *recent_events* the digest is generated from."""
    budget = budget or EventBudget()
    classifier = classifier or HeuristicClassifier()
    rationale: list[str] = []

    ordered = sorted(recent_events, key=_timestamp, reverse=True)
    deduped = _dedupe_consecutive(ordered, dedup_threshold, rationale)
    deduped = _dedupe_near(deduped, dedup_threshold, rationale)

    docs = sorted(_latest_documents_by_key(deduped), key=_timestamp, reverse=True)
    docs = docs[: max(budget.docs, 0)]
    doc_ids = {doc.id for doc in docs}

    newest = _timestamp(deduped[0]) if deduped else datetime.now(UTC).timestamp()
    oldest = _timestamp(deduped[-1]) if deduped else newest
    time_range = max(1.0, newest - oldest)

    scored: list[tuple[float, SelectedEvent]] = []
    for event in deduped:
        if event.id in doc_ids or event.type != EventType.stream:
            continue
        features = classifier.features_for(event)
        recency = (_timestamp(event) - oldest) / time_range
        boost = (
            SELECTION_KEYWORD_BOOST
            if _SELECTION_KEYWORDS_RE.search(event.content)
            else 0.0
        )
        score = (
            features.importance_score * IMPORTANCE_WEIGHT
            + recency * RECENCY_WEIGHT
            + boost
        )
        scored.append((score, SelectedEvent(event=event, features=features)))
    # stable sort keeps newest-first order among equal scores
    scored.sort(key=lambda pair: pair[0], reverse=True)
    stream_picks = [entry for _, entry in scored[: max(budget.stream, 0)]]

    doc_picks = [
        SelectedEvent(event=doc, features=classifier.features_for(doc)) for doc in docs
    ]
    selected = (doc_picks + stream_picks)[: max(budget.total, 0)]

    rationale.append(f"selected_docs:{len(doc_picks)}")
    rationale.append(f"selected_stream:{max(0, len(selected) - len(doc_picks))}")
    if last_digest is not None:
        rationale.append("included_last_digest")

    return SelectionResult(
        selected_events=selected,
        documents=docs,
        include_last_digest=last_digest is not None,
        rationale=rationale,
    )
