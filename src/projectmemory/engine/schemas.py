"""Intermediate records passed between digest pipeline stages.

These are derived per run and never persisted, so they are plain
dataclasses rather than pydantic models.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from enum import Enum

from projectmemory.models.digest import DigestOutput
from projectmemory.models.digest import DigestState
from projectmemory.models.events import MemoryEvent


@dataclass(frozen=True)
class ChatMessage:
    """One role-tagged message sent to the text-generation adapter."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class EventKind(str, Enum):
    decision = "decision"
    constraint = "constraint"
    todo = "todo"
    note = "note"
    status = "status"
    question = "question"
    noise = "noise"


STABLE_FACT_KINDS = frozenset({EventKind.decision, EventKind.constraint})


class DeltaReason(str, Enum):
    stable_fact_signal = "stable_fact_signal"
    novel_event = "novel_event"


@dataclass
class EventFeatures:
    """Classification and scoring attached to one event for one run."""

    kind: EventKind
    importance_score: float
    novelty_score: float = 0.0
    doc_key: str | None = None


@dataclass
class SelectedEvent:
    event: MemoryEvent
    features: EventFeatures


@dataclass
class SelectionResult:
    """Output of the selector.

    ``rationale`` is diagnostics only and never drives control flow.
    """

    selected_events: list[SelectedEvent] = field(default_factory=list)
    documents: list[MemoryEvent] = field(default_factory=list)
    include_last_digest: bool = False
    rationale: list[str] = field(default_factory=list)


@dataclass
class DeltaCandidate:
    """A selected event judged informative enough to influence state."""

    event_id: str
    reason: DeltaReason
    features: EventFeatures
    event: MemoryEvent


@dataclass
class ConsistencyReport:
    ok: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Everything one pipeline run produced, for persistence and diagnostics."""

    digest: DigestOutput
    state: DigestState
    selection: SelectionResult
    deltas: list[DeltaCandidate]
    metrics: dict[str, float] = field(default_factory=dict)
    attempts: int = 1
