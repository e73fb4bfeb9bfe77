"""Event classification: heuristic rule table plus optional LLM pass.

The heuristic is an ordered table of ``(kind, pattern)`` rules; the first
match wins. An ``LLMEventClassifier`` may afterwards overwrite kind and
importance for a batch of selected events. Its failures are never fatal:
the heuristic values simply stand.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Protocol

from pydantic import BaseModel
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import ValidationError

from projectmemory.config import LLMConfig
from projectmemory.engine.generation import LLMAdapter
from projectmemory.engine.generation import LLMError
from projectmemory.engine.parsing import extract_json
from projectmemory.engine.parsing import JSONExtractionError
from projectmemory.engine.prompt_builder import build_classify_messages
from projectmemory.engine.prompt_builder import DigestPrompts
from projectmemory.engine.schemas import ChatMessage
from projectmemory.engine.schemas import EventFeatures
from projectmemory.engine.schemas import EventKind
from projectmemory.engine.schemas import SelectedEvent
from projectmemory.models.events import MemoryEvent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

_NOISE_FILLERS = frozenset({"ok", "thanks", "noted", "lol"})
_NOISE_MIN_LENGTH = 8


def _regex(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern)
    return lambda text: compiled.search(text) is not None


def _is_question(text: str) -> bool:
    return "?" in text or re.search(r"\bquestion\b", text) is not None


def _is_noise(text: str) -> bool:
    return len(text) < _NOISE_MIN_LENGTH or text.strip() in _NOISE_FILLERS


# Ordered: first match wins. Matchers receive lowercased content.
KIND_RULES: tuple[tuple[EventKind, Callable[[str], bool]], ...] = (
    (EventKind.decision, _regex(r"\b(decide|decision|we will|agreed|approved)\b")),
    (
        EventKind.constraint,
        _regex(r"\b(constraint|blocked|limitation|cannot|must not)\b"),
    ),
    (EventKind.todo, _regex(r"\b(todo|next step|action item|follow up|follow-up)\b")),
    (EventKind.question, _is_question),
    (
        EventKind.status,
        _regex(r"\b(progress|status|done|shipped|completed|finished)\b"),
    ),
    (EventKind.noise, _is_noise),
)

BASE_IMPORTANCE: dict[EventKind, float] = {
    EventKind.decision: 0.85,
    EventKind.constraint: 0.80,
    EventKind.todo: 0.70,
    EventKind.status: 0.55,
    EventKind.question: 0.50,
    EventKind.note: 0.45,
    EventKind.noise: 0.05,
}

IMPORTANCE_KEYWORD_BOOST = 0.15
_IMPORTANCE_KEYWORDS_RE = re.compile(
    r"\b(decide|decision|constraint|blocked|todo|next)\b", re.IGNORECASE
)


def classify_kind(content: str) -> EventKind:
    """Return the first kind whose rule matches *content*; ``note`` otherwise."""
    text = content.lower()
    for kind, matches in KIND_RULES:
        if matches(text):
            return kind
    return EventKind.note


def importance_for_kind(kind: EventKind, content: str) -> float:
    boost = IMPORTANCE_KEYWORD_BOOST if _IMPORTANCE_KEYWORDS_RE.search(content) else 0.0
    return min(1.0, BASE_IMPORTANCE[kind] + boost)


class EventClassifier(Protocol):
    """Anything that can derive features for a single event."""

    def features_for(self, event: MemoryEvent) -> EventFeatures: ...


class HeuristicClassifier:
    """Rule-table classifier used for every selected event."""

    def features_for(self, event: MemoryEvent) -> EventFeatures:
        kind = classify_kind(event.content)
        return EventFeatures(
            kind=kind,
            importance_score=importance_for_kind(kind, event.content),
            doc_key=event.key,
        )


# ---------------------------------------------------------------------------
# LLM reclassification
# ---------------------------------------------------------------------------


class ClassifiedEvent(BaseModel):
    id: str
    kind: EventKind
    importance_score: float = Field(alias="importanceScore", ge=0.0, le=1.0)


_CLASSIFIED_LIST = TypeAdapter(list[ClassifiedEvent])


class LLMEventClassifier:
    """Overwrites heuristic features with the model's judgement when valid."""

    def __init__(
        self,
        llm: LLMAdapter,
        llm_config: LLMConfig | None = None,
        *,
        prompts: DigestPrompts | None = None,
    ) -> None:
        self._llm = llm
        self._llm_config = llm_config or LLMConfig()
        self._prompts = prompts or DigestPrompts()

    async def reclassify(self, selected: list[SelectedEvent]) -> int:
        """Update features in place; return how many events were reclassified."""
        if not selected:
            return 0

        messages: list[ChatMessage] = build_classify_messages(selected, self._prompts)
        try:
            raw = await self._llm.chat(
                messages,
                temperature=self._llm_config.temperature,
                max_tokens=self._llm_config.max_tokens,
                timeout_seconds=self._llm_config.timeout_seconds,
            )
        except LLMError as exc:
            logger.warning("LLM classifier call failed, keeping heuristics: %s", exc)
            return 0

        try:
            items = _CLASSIFIED_LIST.validate_python(extract_json(raw))
        except (JSONExtractionError, ValidationError) as exc:
            logger.warning("Discarding invalid LLM classification: %s", exc)
            return 0

        by_id = {item.id: item for item in items}
        updated = 0
        for entry in selected:
            found = by_id.get(entry.event.id)
            if found is None:
                continue
            entry.features.kind = found.kind
            entry.features.importance_score = found.importance_score
            updated += 1
        return updated
