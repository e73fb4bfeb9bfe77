"""Novelty-based delta detection against the previous digest."""

from __future__ import annotations

from projectmemory.engine.schemas import DeltaCandidate
from projectmemory.engine.schemas import DeltaReason
from projectmemory.engine.schemas import SelectedEvent
from projectmemory.engine.schemas import STABLE_FACT_KINDS
from projectmemory.engine.text import jaccard_similarity


def novelty_against_digest(content: str, last_digest_text: str) -> float:
    return max(0.0, 1.0 - jaccard_similarity(content, last_digest_text))


def detect_deltas(
    selected_events: list[SelectedEvent],
    *,
    last_digest_text: str | None = None,
    novelty_threshold: float = 0.15,
) -> list[DeltaCandidate]:
    """Return the selected events that should influence protected state.

    Decisions and constraints are always kept regardless of novelty since
    they define protected state; everything else must clear
    *novelty_threshold*. Each event's ``novelty_score`` is updated in place.
    """
    digest_text = last_digest_text or ""
    deltas: list[DeltaCandidate] = []
    for selected in selected_events:
        features = selected.features
        features.novelty_score = novelty_against_digest(
            selected.event.content, digest_text
        )
        stable = features.kind in STABLE_FACT_KINDS
        if not stable and features.novelty_score < novelty_threshold:
            continue
        deltas.append(
            DeltaCandidate(
                event_id=selected.event.id,
                reason=(
                    DeltaReason.stable_fact_signal if stable else DeltaReason.novel_event
                ),
                features=features,
                event=selected.event,
            )
        )
    return deltas
