"""Protected state derivation and merge.

The protected state is the slow-moving belief set (goal, constraints,
decisions, todos) that generated digests are checked against. It is only
ever changed by explicit signals: ``goal:`` / ``constraint:`` / ``todo:``
markers in documents and classified delta events. Generated text never
feeds back into it directly.
"""

from __future__ import annotations

import re

from projectmemory.engine.schemas import DeltaCandidate
from projectmemory.engine.schemas import EventKind
from projectmemory.engine.text import dedupe_preserving_order
from projectmemory.engine.text import parse_goal
from projectmemory.engine.text import parse_prefixed_lines
from projectmemory.models.digest import Digest
from projectmemory.models.digest import DigestState
from projectmemory.models.digest import StableFacts
from projectmemory.models.events import MemoryEvent

CONSTRAINT_MIN_IMPORTANCE = 0.75
WORKING_NOTES_CAP = 10

_BULLET_PREFIX_RE = re.compile(r"^-\s*")
_DIGEST_DECISION_RE = re.compile(r"\b(decide|decision|we will|agreed)\b", re.IGNORECASE)
_DIGEST_CONSTRAINT_RE = re.compile(r"\b(constraint|blocked|limitation)\b", re.IGNORECASE)
_REVOKE_RE = re.compile(r"\b(revoke|undo|cancel decision)\b")
_RISK_RE = re.compile(r"\b(risk|blocked|blocker)\b")


def derive_state_from_digest(digest: Digest | None) -> DigestState | None:
    """Recover protected state from a persisted digest, or ``None``."""
    if digest is None:
        return None
    bullets = [_BULLET_PREFIX_RE.sub("", line).strip() for line in digest.changes]
    return DigestState(
        stable_facts=StableFacts(
            goal=parse_goal(digest.summary),
            decisions=dedupe_preserving_order(
                [b for b in bullets if _DIGEST_DECISION_RE.search(b)]
            ),
            constraints=dedupe_preserving_order(
                [b for b in bullets if _DIGEST_CONSTRAINT_RE.search(b)]
            ),
        ),
        todos=dedupe_preserving_order(digest.next_steps),
    )


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def _append_capped(items: list[str], value: str) -> list[str]:
    return [*items, value][-WORKING_NOTES_CAP:]


def protected_state_merge(
    prev_state: DigestState | None,
    deltas: list[DeltaCandidate],
    documents: list[MemoryEvent],
) -> DigestState:
    """Merge documents then deltas into a copy of *prev_state*."""
    state = prev_state.model_copy(deep=True) if prev_state else DigestState()
    facts = state.stable_facts
    notes = state.working_notes

    doc_text = "\n".join(doc.content for doc in documents)
    doc_goal = parse_goal(doc_text)
    if doc_goal:
        facts.goal = doc_goal
    for constraint in parse_prefixed_lines(doc_text, "constraint:"):
        _append_unique(facts.constraints, constraint)
    for todo in parse_prefixed_lines(doc_text, "todo:"):
        _append_unique(state.todos, todo)

    for delta in deltas:
        text = delta.event.content.strip()
        lowered = text.lower()
        kind = delta.features.kind

        if kind == EventKind.decision:
            if _REVOKE_RE.search(lowered):
                if facts.decisions:
                    last = facts.decisions[-1]
                    facts.decisions = [d for d in facts.decisions if d != last]
            else:
                _append_unique(facts.decisions, text)
            decision_goal = parse_goal(text)
            if decision_goal:
                facts.goal = decision_goal

        if kind == EventKind.constraint:
            if delta.features.importance_score >= CONSTRAINT_MIN_IMPORTANCE:
                _append_unique(facts.constraints, text)

        if kind == EventKind.todo:
            _append_unique(state.todos, text)

        if kind == EventKind.question:
            notes.open_questions = _append_capped(notes.open_questions, text)

        if _RISK_RE.search(lowered):
            notes.risks = _append_capped(notes.risks, text)

    facts.decisions = dedupe_preserving_order(facts.decisions)
    facts.constraints = dedupe_preserving_order(facts.constraints)
    state.todos = dedupe_preserving_order(state.todos)
    return state
