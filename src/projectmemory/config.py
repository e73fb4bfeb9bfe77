"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem. Values are
passed explicitly into the pipeline and service at construction time so
concurrent runs with different settings never share mutable state.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class LLMConfig:
    """LLM provider settings used by the digest generator and classifier."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout_seconds: float = 20.0
    # Transport-level retries, distinct from digest consistency retries
    max_attempts: int = 3
    backoff_seconds: float = 0.3


@dataclass(frozen=True)
class DigestControlConfig:
    """Budgets and thresholds for one digest-control pipeline run."""

    event_budget_total: int = 40
    event_budget_docs: int = 10
    event_budget_stream: int = 30
    novelty_threshold: float = 0.15
    max_retries: int = 1
    use_llm_classifier: bool = False
    debug: bool = False
    dedup_threshold: float = 0.92


@dataclass(frozen=True)
class ConsistencyConfig:
    """Limits enforced on generated digests."""

    summary_max_words: int = 120
    max_changes: int = 3
    min_next_steps: int = 1
    max_next_steps: int = 3
    constraint_key_tokens: int = 3
    min_step_tokens: int = 4


@dataclass(frozen=True)
class DigestWindowConfig:
    """How much history an incremental digest run reads."""

    max_recent_events: int = 50
    max_days_lookback: int = 14


@dataclass(frozen=True)
class RebuildConfig:
    """Settings for bulk re-derivation over historical events."""

    chunk_size: int = 80


def _env_bool(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def digest_config_from_env(
    environ: Mapping[str, str] | None = None,
) -> DigestControlConfig:
    """Build a ``DigestControlConfig`` from ``DIGEST_*`` variables."""
    env = os.environ if environ is None else environ
    defaults = DigestControlConfig()
    return DigestControlConfig(
        event_budget_total=int(
            env.get("DIGEST_EVENT_BUDGET_TOTAL", defaults.event_budget_total)
        ),
        event_budget_docs=int(
            env.get("DIGEST_EVENT_BUDGET_DOCS", defaults.event_budget_docs)
        ),
        event_budget_stream=int(
            env.get("DIGEST_EVENT_BUDGET_STREAM", defaults.event_budget_stream)
        ),
        novelty_threshold=float(
            env.get("DIGEST_NOVELTY_THRESHOLD", defaults.novelty_threshold)
        ),
        max_retries=int(env.get("DIGEST_MAX_RETRIES", defaults.max_retries)),
        use_llm_classifier=_env_bool(env.get("DIGEST_USE_LLM_CLASSIFIER")),
        debug=_env_bool(env.get("DIGEST_DEBUG")),
    )


def window_config_from_env(
    environ: Mapping[str, str] | None = None,
) -> DigestWindowConfig:
    """Build a ``DigestWindowConfig`` from ``DIGEST_MAX_*`` variables."""
    env = os.environ if environ is None else environ
    defaults = DigestWindowConfig()
    return DigestWindowConfig(
        max_recent_events=int(
            env.get("DIGEST_MAX_RECENT_EVENTS", defaults.max_recent_events)
        ),
        max_days_lookback=int(
            env.get("DIGEST_MAX_DAYS_LOOKBACK", defaults.max_days_lookback)
        ),
    )


def llm_config_from_env(environ: Mapping[str, str] | None = None) -> LLMConfig:
    """Build an ``LLMConfig`` from ``OPENAI_*`` / ``LLM_PROVIDER`` variables."""
    env = os.environ if environ is None else environ
    defaults = LLMConfig()
    return LLMConfig(
        provider=env.get("LLM_PROVIDER", defaults.provider),
        model=env.get("OPENAI_MODEL", defaults.model),
        api_key=env.get("OPENAI_API_KEY") or None,
        base_url=env.get("OPENAI_BASE_URL", defaults.base_url),
    )


@dataclass(frozen=True)
class RetrievalConfig:
    """Limits for query-ranked retrieval, answers and digest history pages."""

    default_limit: int = 20
    max_limit: int = 100
    answer_event_limit: int = 25
    min_candidates: int = 40
    max_candidates: int = 200
    candidate_multiplier: int = 4
