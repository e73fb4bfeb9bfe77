"""Tests for budgeted event selection."""

from __future__ import annotations

from projectmemory.config import DigestControlConfig
from projectmemory.engine.schemas import EventKind
from projectmemory.engine.selection import EventBudget
from projectmemory.engine.selection import select_events_for_digest
from projectmemory.models import Digest
from projectmemory.models import EventType


class TestEventBudget:
    def test_defaults(self):
        assert EventBudget() == EventBudget(total=40, docs=10, stream=30)

    def test_from_config(self):
        cfg = DigestControlConfig(
            event_budget_total=5, event_budget_docs=2, event_budget_stream=3
        )
        assert EventBudget.from_config(cfg) == EventBudget(total=5, docs=2, stream=3)


class TestDeduplication:
    def test_near_identical_stream_events_keep_one(self, make_event):
        newer = make_event("We decide to ship API v1", minutes=1)
        older = make_event("We decide to ship API v1!", minutes=0)

        result = select_events_for_digest(
            [older, newer], budget=EventBudget(total=3, docs=1, stream=2)
        )

        ids = [s.event.id for s in result.selected_events]
        assert ids == [newer.id]
        assert f"dedup:{older.id}" in result.rationale

    def test_non_adjacent_duplicates_are_removed(self, make_event):
        first = make_event("Deploy to staging is done today", minutes=3)
        other = make_event("We decide to use postgres", minutes=2)
        repeat = make_event("deploy to staging is DONE today", minutes=1)

        result = select_events_for_digest([first, other, repeat])

        ids = {s.event.id for s in result.selected_events}
        assert ids == {first.id, other.id}
        assert f"dedup_near:{repeat.id}" in result.rationale

    def test_same_text_in_different_groups_is_kept(self, make_event):
        stream = make_event("goal: ship alpha", minutes=1)
        doc = make_event("goal: ship alpha", minutes=0, type=EventType.document, key="goal")

        result = select_events_for_digest([stream, doc])

        assert {s.event.id for s in result.selected_events} == {stream.id, doc.id}


class TestDocuments:
    def test_only_newest_document_per_key(self, make_event):
        old = make_event("plan: build the api", minutes=0, type=EventType.document, key="note:plan")
        new = make_event("plan: launch the beta", minutes=10, type=EventType.document, key="note:plan")

        result = select_events_for_digest(
            [old, new], budget=EventBudget(total=3, docs=1, stream=2)
        )

        assert [d.id for d in result.documents] == [new.id]
        assert [s.event.id for s in result.selected_events] == [new.id]

    def test_documents_survive_total_truncation(self, make_event):
        docs = [
            make_event(f"document body {name}", minutes=i, type=EventType.document, key=name)
            for i, name in enumerate(["goal", "note:plan"])
        ]
        stream = [
            make_event(f"stream update number {word}", minutes=10 + i)
            for i, word in enumerate(["alpha", "bravo", "charlie"])
        ]

        result = select_events_for_digest(
            stream + docs, budget=EventBudget(total=3, docs=2, stream=3)
        )

        assert len(result.selected_events) == 3
        assert [s.event.type for s in result.selected_events[:2]] == [
            EventType.document,
            EventType.document,
        ]
        assert result.rationale[-2:] == ["selected_docs:2", "selected_stream:1"]

    def test_keyless_document_is_not_selected(self, make_event):
        doc = make_event("loose document", type=EventType.document)
        result = select_events_for_digest([doc])
        assert result.selected_events == []
        assert result.documents == []


class TestScoring:
    def test_importance_beats_recency(self, make_event):
        decision = make_event("We decide to use postgres", minutes=0)
        note = make_event("Met the design team for lunch", minutes=10)

        result = select_events_for_digest(
            [decision, note], budget=EventBudget(total=5, docs=1, stream=1)
        )

        assert [s.event.id for s in result.selected_events] == [decision.id]
        assert result.selected_events[0].features.kind == EventKind.decision

    def test_stream_budget_caps_selection(self, make_event):
        events = [
            make_event(f"independent observation {word}", minutes=i)
            for i, word in enumerate(["alpha", "bravo", "charlie", "delta"])
        ]
        result = select_events_for_digest(
            events, budget=EventBudget(total=10, docs=1, stream=2)
        )
        assert len(result.selected_events) == 2


class TestSelectionEdges:
    def test_empty_input(self):
        result = select_events_for_digest([])
        assert result.selected_events == []
        assert result.documents == []
        assert result.include_last_digest is False
        assert result.rationale == ["selected_docs:0", "selected_stream:0"]

    def test_last_digest_is_flagged(self, make_event, scope):
        digest = Digest(scope_id=scope.id, summary="s", next_steps=["Write docs"])
        result = select_events_for_digest(
            [make_event("We decide to ship")], last_digest=digest
        )
        assert result.include_last_digest is True
        assert "included_last_digest" in result.rationale

    def test_zero_budget_selects_nothing(self, make_event):
        result = select_events_for_digest(
            [make_event("We decide to ship")],
            budget=EventBudget(total=0, docs=0, stream=0),
        )
        assert result.selected_events == []
