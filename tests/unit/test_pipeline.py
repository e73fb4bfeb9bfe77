"""Tests for the digest-control pipeline orchestrator."""

from __future__ import annotations

import json
import logging

import pytest

from projectmemory.config import DigestControlConfig
from projectmemory.engine.generation import DigestConsistencyError
from projectmemory.engine.llm_adapters import NoopLLMAdapter
from projectmemory.engine.pipeline import DigestControlPipeline
from projectmemory.engine.prompt_builder import DigestPrompts
from projectmemory.engine.schemas import DeltaReason
from projectmemory.engine.schemas import EventKind
from projectmemory.models import Digest
from projectmemory.models import EventType
from projectmemory.observability import latency_metrics_snapshot
from projectmemory.observability import reset_latency_metrics

VALID_DIGEST = json.dumps(
    {
        "summary": "Design review held; API v1 on staging.",
        "changes": ["Held the design review"],
        "nextSteps": ["Write the launch checklist for beta users"],
    }
)


class ScriptedLLMAdapter:
    """Returns queued responses in order and records user prompts."""

    def __init__(self, *responses: str) -> None:
        self.prompts: list[str] = []
        self._responses = list(responses)

    async def chat(self, messages, **kwargs) -> str:
        self.prompts.append(messages[-1].content)
        return self._responses.pop(0)


@pytest.fixture()
def events(make_event):
    return [
        make_event("goal: ship alpha", minutes=0, type=EventType.document, key="goal"),
        make_event("Met with the design team today", minutes=5, id="evt_note"),
        make_event("Deploy to staging is done", minutes=10, id="evt_status"),
    ]


class TestDigestControlPipeline:
    def setup_method(self):
        reset_latency_metrics()

    def teardown_method(self):
        reset_latency_metrics()

    async def test_runs_every_stage(self, scope, events):
        llm = ScriptedLLMAdapter(VALID_DIGEST)

        result = await DigestControlPipeline(llm).run(scope, None, events)

        assert result.digest.summary == "Design review held; API v1 on staging."
        assert result.attempts == 1
        assert result.state.stable_facts.goal == "ship alpha"
        assert {d.event_id for d in result.deltas} >= {"evt_note", "evt_status"}
        assert set(result.metrics) == {
            "selection_ms",
            "delta_ms",
            "merge_ms",
            "generation_ms",
        }
        assert "Met with the design team today" in llm.prompts[0]

    async def test_stage_latencies_are_recorded(self, scope, events):
        await DigestControlPipeline(NoopLLMAdapter()).run(scope, None, events)

        metrics = latency_metrics_snapshot()
        for stage in ("selection", "delta", "merge", "generation"):
            assert metrics[f"digest.{stage}"]["count"] == 1
        assert "digest.classification" not in metrics

    async def test_llm_classifier_overrides_heuristics(self, scope, events):
        classification = json.dumps(
            [{"id": "evt_note", "kind": "decision", "importanceScore": 0.9}]
        )
        llm = ScriptedLLMAdapter(classification, VALID_DIGEST)
        config = DigestControlConfig(use_llm_classifier=True)

        result = await DigestControlPipeline(llm, config).run(scope, None, events)

        assert "classification_ms" in result.metrics
        note = next(d for d in result.deltas if d.event_id == "evt_note")
        assert note.features.kind == EventKind.decision
        assert note.reason == DeltaReason.stable_fact_signal
        assert result.state.stable_facts.decisions == ["Met with the design team today"]

    async def test_classifier_failure_is_not_fatal(self, scope, events):
        llm = ScriptedLLMAdapter("garbage", VALID_DIGEST)
        config = DigestControlConfig(use_llm_classifier=True)

        result = await DigestControlPipeline(llm, config).run(scope, None, events)

        assert result.digest.summary == "Design review held; API v1 on staging."
        assert result.state.stable_facts.decisions == []

    async def test_custom_classify_prompts_reach_the_classifier(self, scope, events):
        llm = ScriptedLLMAdapter("[]", VALID_DIGEST)
        config = DigestControlConfig(use_llm_classifier=True)
        prompts = DigestPrompts(classify_user_template="Label these:\n{{events}}")

        await DigestControlPipeline(llm, config, prompts=prompts).run(
            scope, None, events
        )

        assert llm.prompts[0].startswith("Label these:\n")
        assert "evt_note: Met with the design team today" in llm.prompts[0]

    async def test_prior_digest_lowers_novelty(self, scope, make_event):
        last = Digest(
            scope_id=scope.id,
            summary="daily status update",
            changes=[],
            next_steps=["Write the launch checklist for beta users"],
        )
        status = make_event("daily status update")
        config = DigestControlConfig(novelty_threshold=0.9)

        result = await DigestControlPipeline(NoopLLMAdapter(), config).run(
            scope, last, [status]
        )

        assert result.deltas == []
        assert result.selection.include_last_digest is True

    async def test_retry_then_accept(self, scope, events):
        llm = ScriptedLLMAdapter("not json", VALID_DIGEST)

        result = await DigestControlPipeline(llm).run(scope, None, events)

        assert result.attempts == 2

    async def test_exhaustion_is_fatal(self, scope, events):
        llm = ScriptedLLMAdapter("not json")
        config = DigestControlConfig(max_retries=0)

        with pytest.raises(DigestConsistencyError, match="invalid_json_output"):
            await DigestControlPipeline(llm, config).run(scope, None, events)

        assert latency_metrics_snapshot()["digest.generation"]["error_count"] == 1

    async def test_debug_logs_rationale(self, scope, events, caplog):
        config = DigestControlConfig(debug=True)

        with caplog.at_level(logging.INFO, logger="projectmemory.engine.pipeline"):
            await DigestControlPipeline(NoopLLMAdapter(), config).run(
                scope, None, events
            )

        assert "selected_docs:1" in caplog.text
