"""Tests for query-ranked retrieval and memory-backed answers.

All pure unit tests, no containers. The LLM is mocked via RecordingLLMAdapter.
"""

from __future__ import annotations

import pytest

from projectmemory.config import RetrievalConfig
from projectmemory.engine.generation import LLMError
from projectmemory.engine.prompt_builder import ANSWER_SYSTEM_PROMPT
from projectmemory.engine.prompt_builder import AnswerPrompts
from projectmemory.engine.retrieval import ConceptOverlapScorer
from projectmemory.engine.retrieval import expand_query
from projectmemory.engine.retrieval import MemoryAnswerer
from projectmemory.engine.retrieval import rank_events
from projectmemory.engine.retrieval import RetrievalEngine
from projectmemory.memory import InMemoryStore
from projectmemory.models import Digest


class RecordingLLMAdapter:
    """Returns a canned answer (or raises it) and records the messages."""

    def __init__(self, response: str | Exception = "Postgres was chosen.") -> None:
        self.calls: list[list] = []
        self._response = response

    async def chat(self, messages, **kwargs) -> str:
        self.calls.append(messages)
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


@pytest.fixture()
def history(make_event):
    return [
        make_event("We decide to use postgres", minutes=0, id="evt_decision"),
        make_event("Met the design team", minutes=10, id="evt_meeting"),
        make_event("Lunch order placed", minutes=20, id="evt_lunch"),
    ]


@pytest.fixture()
async def store(scope, history):
    store = InMemoryStore()
    await store.create_scope(scope)
    for event in history:
        await store.append_event(event)
    return store


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestExpandQuery:
    def test_alias_pulls_in_concept_and_alias_tokens(self):
        tokens = expand_query("what did we decide")

        assert tokens == {
            "what",
            "did",
            "decide",
            "decision",
            "agreed",
            "will",
            "chose",
        }

    def test_plain_query_keeps_its_own_tokens(self):
        assert expand_query("postgres migration") == {"postgres", "migration"}


class TestConceptOverlapScorer:
    def test_overlap_plus_phrase_boost(self):
        # status concept expands to 5 tokens; "done" overlaps once
        score = ConceptOverlapScorer().score("status", "Deploy is done")
        assert score == pytest.approx(1 / 5 + 0.15)

    def test_score_is_capped(self):
        score = ConceptOverlapScorer().score(
            "done", "done done done done done shipped"
        )
        assert score == 1.0

    def test_token_less_query_scores_zero(self):
        assert ConceptOverlapScorer().score("ok", "Deploy is done") == 0.0


class TestRankEvents:
    def test_query_match_outranks_recency(self, history):
        newest_first = list(reversed(history))

        ranked = rank_events("what did we decide", newest_first, 3)

        assert [e.id for e in ranked] == ["evt_decision", "evt_lunch", "evt_meeting"]

    def test_without_matches_newest_wins(self, history):
        ranked = rank_events("kubernetes", history, 2)
        assert [e.id for e in ranked] == ["evt_lunch", "evt_meeting"]

    def test_empty_pool(self):
        assert rank_events("anything", [], 5) == []


# ---------------------------------------------------------------------------
# Retrieval engine
# ---------------------------------------------------------------------------


class TestRetrievalEngine:
    @pytest.mark.parametrize(
        ("limit", "expected"),
        [(5, 40), (20, 80), (60, 200)],
    )
    def test_candidate_pool_is_bounded(self, limit, expected):
        engine = RetrievalEngine(InMemoryStore())
        assert engine.candidate_pool_size(limit) == expected

    async def test_without_query_returns_newest_events(self, store, scope):
        result = await RetrievalEngine(store).retrieve(scope.id, limit=2)

        assert result.digest is None
        assert [e.id for e in result.events] == ["evt_lunch", "evt_meeting"]

    async def test_query_ranks_and_attaches_latest_digest(self, store, scope):
        digest = await store.append_digest(
            Digest(scope_id=scope.id, summary="Picked a database")
        )

        result = await RetrievalEngine(store).retrieve(
            scope.id, query="what did we decide", limit=1
        )

        assert result.digest == digest
        assert [e.id for e in result.events] == ["evt_decision"]

    async def test_default_limit_comes_from_config(self, store, scope):
        engine = RetrievalEngine(store, RetrievalConfig(default_limit=1))
        result = await engine.retrieve(scope.id, query="   ")
        assert [e.id for e in result.events] == ["evt_lunch"]


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


class TestMemoryAnswerer:
    async def test_prompt_carries_question_digest_and_events(
        self, store, scope, history
    ):
        llm = RecordingLLMAdapter("  Postgres was chosen.  ")
        answerer = MemoryAnswerer(llm, RetrievalEngine(store))

        answer = await answerer.answer(scope.id, "what did we decide")

        assert answer == "Postgres was chosen."
        system, user = llm.calls[0]
        assert system.content == ANSWER_SYSTEM_PROMPT
        assert user.content.startswith("Question:\nwhat did we decide\n")
        assert "Retrieved digest:\n(none)" in user.content
        decision = history[0]
        assert (
            f"- {decision.created_at.isoformat()}: We decide to use postgres"
            in user.content
        )

    async def test_empty_scope_uses_placeholders(self, scope):
        store = InMemoryStore()
        llm = RecordingLLMAdapter()
        prompts = AnswerPrompts(user_template="{{digest}}|{{events}}")

        await MemoryAnswerer(llm, RetrievalEngine(store), prompts=prompts).answer(
            scope.id, "anything?"
        )

        assert llm.calls[0][1].content == "(none)|(no events)"

    async def test_answer_uses_configured_event_limit(self, store, scope, make_event):
        for i in range(5):
            await store.append_event(
                make_event(f"extra note {i}", minutes=30 + i)
            )
        llm = RecordingLLMAdapter()
        config = RetrievalConfig(answer_event_limit=2)

        await MemoryAnswerer(llm, RetrievalEngine(store), config=config).answer(
            scope.id, "notes"
        )

        assert llm.calls[0][1].content.count("\n- ") == 2

    async def test_llm_error_propagates(self, store, scope):
        answerer = MemoryAnswerer(
            RecordingLLMAdapter(LLMError("provider down")), RetrievalEngine(store)
        )

        with pytest.raises(LLMError):
            await answerer.answer(scope.id, "what did we decide")


def test_identical_timestamps_rank_without_error(make_event):
    events = [make_event("same time one"), make_event("same time two")]
    assert len(rank_events("time", events, 5)) == 2
