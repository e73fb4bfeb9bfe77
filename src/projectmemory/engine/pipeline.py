"""Digest-control pipeline orchestrator.

Sequences selection, optional LLM classification, delta detection,
protected state merge and generation, timing each stage. The pipeline
coordinates existing components and keeps no state between runs: the
caller passes in all the history it needs.
"""

from __future__ import annotations

import logging

from projectmemory.config import ConsistencyConfig
from projectmemory.config import DigestControlConfig
from projectmemory.config import LLMConfig
from projectmemory.engine.classifier import LLMEventClassifier
from projectmemory.engine.deltas import detect_deltas
from projectmemory.engine.generation import DigestGenerator
from projectmemory.engine.generation import LLMAdapter
from projectmemory.engine.prompt_builder import DigestPrompts
from projectmemory.engine.schemas import PipelineResult
from projectmemory.engine.selection import EventBudget
from projectmemory.engine.selection import select_events_for_digest
from projectmemory.engine.state import derive_state_from_digest
from projectmemory.engine.state import protected_state_merge
from projectmemory.models.digest import Digest
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope
from projectmemory.observability import timed_stage

logger = logging.getLogger(__name__)


class DigestControlPipeline:
    """Turns ``(scope, last digest, recent events)`` into a validated digest."""

    def __init__(
        self,
        llm: LLMAdapter,
        config: DigestControlConfig | None = None,
        *,
        llm_config: LLMConfig | None = None,
        consistency_config: ConsistencyConfig | None = None,
        prompts: DigestPrompts | None = None,
    ) -> None:
        self._config = config or DigestControlConfig()
        self._llm_config = llm_config or LLMConfig()
        self._classifier = LLMEventClassifier(
            llm, self._llm_config, prompts=prompts
        )
        self._generator = DigestGenerator(
            llm,
            max_retries=self._config.max_retries,
            llm_config=self._llm_config,
            consistency_config=consistency_config,
            prompts=prompts,
        )

    @property
    def config(self) -> DigestControlConfig:
        return self._config

    async def run(
        self,
        scope: ProjectScope,
        last_digest: Digest | None,
        recent_events: list[MemoryEvent],
    ) -> PipelineResult:
        """Run every stage once; raises if generation cannot be accepted."""
        cfg = self._config
        metrics: dict[str, float] = {}

        with timed_stage(metrics, "selection"):
            selection = select_events_for_digest(
                recent_events,
                last_digest=last_digest,
                budget=EventBudget.from_config(cfg),
                dedup_threshold=cfg.dedup_threshold,
            )

        if cfg.use_llm_classifier:
            with timed_stage(metrics, "classification"):
                await self._classifier.reclassify(selection.selected_events)

        with timed_stage(metrics, "delta"):
            deltas = detect_deltas(
                selection.selected_events,
                last_digest_text=(
                    last_digest.as_novelty_text() if last_digest else None
                ),
                novelty_threshold=cfg.novelty_threshold,
            )

        with timed_stage(metrics, "merge"):
            state = protected_state_merge(
                derive_state_from_digest(last_digest),
                deltas,
                selection.documents,
            )

        if cfg.debug:
            logger.info(
                "digest scope=%s rationale=%s deltas=%s",
                scope.id,
                selection.rationale,
                [d.event_id for d in deltas],
            )

        with timed_stage(metrics, "generation"):
            generated = await self._generator.generate(
                scope=scope,
                last_digest=last_digest,
                protected_state=state,
                deltas=deltas,
                documents=selection.documents,
            )

        return PipelineResult(
            digest=generated.output,
            state=state,
            selection=selection,
            deltas=deltas,
            metrics=metrics,
            attempts=len(generated.attempts),
        )
