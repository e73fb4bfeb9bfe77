"""Consistency checks for generated digests.

Validates a candidate output against shape and length limits, the
protected state (goal and constraints) and the previous digest. The goal
and constraint checks are lexical heuristics: they can over- and
under-trigger on paraphrase, and their limits are configurable.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from projectmemory.config import ConsistencyConfig
from projectmemory.engine.schemas import ConsistencyReport
from projectmemory.engine.text import normalize_bullet
from projectmemory.engine.text import normalize_text
from projectmemory.engine.text import parse_goal
from projectmemory.engine.text import tokenize
from projectmemory.engine.text import word_count
from projectmemory.models.digest import Digest
from projectmemory.models.digest import DigestOutput
from projectmemory.models.digest import DigestState

INVALID_OUTPUT_SCHEMA = "invalid_output_schema"
SUMMARY_TOO_LONG = "summary_too_long"
TOO_MANY_CHANGES = "too_many_changes"
INVALID_NEXT_STEPS_COUNT = "invalid_next_steps_count"
GOAL_CONTRADICTION = "goal_contradiction"
CONSTRAINT_CONTRADICTION = "constraint_contradiction"
CHANGES_REPEATED = "changes_repeated_from_previous_digest"
VAGUE_NEXT_STEP = "vague_next_step"
WEAK_NEXT_STEP = "weak_next_step"

_REMOVAL_RE = re.compile(r"\b(remove|drop|lift|no longer|ignore)\b")
_ACTIONABLE_RE = re.compile(
    r"^(add|build|create|define|deliver|document|fix|measure|review|ship|test|"
    r"update|write|implement|refactor)\b",
    re.IGNORECASE,
)
_VAGUE_RE = re.compile(r"^(clarify|improve|consider|optimize|iterate)\b", re.IGNORECASE)


def _coerce_output(output: DigestOutput | Mapping[str, Any]) -> DigestOutput | None:
    if isinstance(output, DigestOutput):
        return output
    try:
        return DigestOutput.model_validate(output)
    except ValidationError:
        return None


def consistency_check(
    output: DigestOutput | Mapping[str, Any],
    *,
    protected_state: DigestState,
    previous_digest: Digest | None = None,
    config: ConsistencyConfig | None = None,
) -> ConsistencyReport:
    """Run every rule and collect error and warning codes."""
    cfg = config or ConsistencyConfig()
    errors: list[str] = []
    warnings: list[str] = []

    candidate = _coerce_output(output)
    if candidate is None:
        return ConsistencyReport(ok=False, errors=[INVALID_OUTPUT_SCHEMA])

    if word_count(candidate.summary) > cfg.summary_max_words:
        errors.append(SUMMARY_TOO_LONG)
    if len(candidate.changes) > cfg.max_changes:
        errors.append(TOO_MANY_CHANGES)
    if not cfg.min_next_steps <= len(candidate.next_steps) <= cfg.max_next_steps:
        errors.append(INVALID_NEXT_STEPS_COUNT)

    stable_goal = protected_state.stable_facts.goal
    mentioned_goal = parse_goal(candidate.summary)
    if (
        stable_goal
        and mentioned_goal
        and normalize_text(stable_goal) != normalize_text(mentioned_goal)
    ):
        errors.append(GOAL_CONTRADICTION)

    summary_lower = candidate.summary.lower()
    if _REMOVAL_RE.search(summary_lower):
        for constraint in protected_state.stable_facts.constraints:
            key_tokens = tokenize(constraint)[: cfg.constraint_key_tokens]
            if key_tokens and all(tok in summary_lower for tok in key_tokens):
                errors.append(CONSTRAINT_CONTRADICTION)
                break

    if previous_digest is not None:
        previous = {normalize_bullet(c) for c in previous_digest.changes} - {""}
        current = {normalize_bullet(c) for c in candidate.changes} - {""}
        if previous & current:
            errors.append(CHANGES_REPEATED)

    for step in candidate.next_steps:
        normalized = step.strip()
        short = len(tokenize(normalized)) < cfg.min_step_tokens
        if short and _VAGUE_RE.search(normalized):
            errors.append(VAGUE_NEXT_STEP)
            continue
        if short and not _ACTIONABLE_RE.search(normalized):
            warnings.append(WEAK_NEXT_STEP)

    return ConsistencyReport(ok=not errors, errors=errors, warnings=warnings)
