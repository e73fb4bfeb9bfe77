"""Generate-validate-retry loop for digest output.

Each attempt renders the prompt, calls the text-generation adapter,
extracts JSON from the raw reply and runs the consistency checker. The
loop is an explicit attempt counter carrying a fix instruction between
attempts; every attempt is recorded so callers and tests can inspect why
earlier ones were rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Protocol
from typing import runtime_checkable

from pydantic import ValidationError

from projectmemory.config import ConsistencyConfig
from projectmemory.config import LLMConfig
from projectmemory.engine.consistency import consistency_check
from projectmemory.engine.parsing import extract_json
from projectmemory.engine.parsing import JSONExtractionError
from projectmemory.engine.prompt_builder import build_digest_user_prompt
from projectmemory.engine.prompt_builder import build_fix_instruction
from projectmemory.engine.prompt_builder import DigestPrompts
from projectmemory.engine.schemas import ChatMessage
from projectmemory.engine.schemas import DeltaCandidate
from projectmemory.models.digest import Digest
from projectmemory.models.digest import DigestOutput
from projectmemory.models.digest import DigestState
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# LLM abstraction
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMAdapter(Protocol):
    """Protocol for text-generation providers.

    Implementations apply their own timeout and transport retries before
    raising ``LLMError``. Tests use scripted mock adapters.
    """

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout_seconds: float = 20.0,
    ) -> str: ...


class LLMError(Exception):
    """Raised by LLM adapters when a call fails after transport retries."""


INVALID_JSON_OUTPUT = "invalid_json_output"


class DigestConsistencyError(RuntimeError):
    """No attempt produced an acceptable digest within the retry budget."""

    def __init__(self, errors: list[str], attempts: list[GenerationAttempt]) -> None:
        self.errors = list(errors)
        self.attempts = list(attempts)
        super().__init__(f"digest_consistency_failed:{'|'.join(self.errors)}")


# ---------------------------------------------------------------------------
# Attempt state machine
# ---------------------------------------------------------------------------


class AttemptOutcome(str, Enum):
    accepted = "accepted"
    retry = "retry"
    exhausted = "exhausted"


@dataclass
class GenerationAttempt:
    number: int
    raw: str
    outcome: AttemptOutcome
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    output: DigestOutput
    attempts: list[GenerationAttempt]


class DigestGenerator:
    """Drives attempts between the model and the consistency checker."""

    def __init__(
        self,
        llm: LLMAdapter,
        *,
        max_retries: int = 1,
        llm_config: LLMConfig | None = None,
        consistency_config: ConsistencyConfig | None = None,
        prompts: DigestPrompts | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._llm = llm
        self._max_retries = max_retries
        self._llm_config = llm_config or LLMConfig()
        self._consistency_config = consistency_config or ConsistencyConfig()
        self._prompts = prompts or DigestPrompts()

    async def generate(
        self,
        *,
        scope: ProjectScope,
        last_digest: Digest | None,
        protected_state: DigestState,
        deltas: list[DeltaCandidate],
        documents: list[MemoryEvent],
    ) -> GenerationResult:
        """Return the first accepted output or raise ``DigestConsistencyError``.

        ``LLMError`` from the adapter propagates unchanged: transport
        failures are not retried here.
        """
        user_prompt = build_digest_user_prompt(
            scope=scope,
            last_digest=last_digest,
            protected_state=protected_state,
            deltas=deltas,
            documents=documents,
            template=self._prompts.user_template,
        )
        max_attempts = self._max_retries + 1
        attempts: list[GenerationAttempt] = []
        fix_instruction = ""
        last_errors: list[str] = []

        for number in range(1, max_attempts + 1):
            raw = await self._llm.chat(
                [
                    ChatMessage(role="system", content=self._prompts.system),
                    ChatMessage(role="user", content=f"{user_prompt}\n{fix_instruction}"),
                ],
                temperature=self._llm_config.temperature,
                max_tokens=self._llm_config.max_tokens,
                timeout_seconds=self._llm_config.timeout_seconds,
            )
            final = number == max_attempts
            rejected = AttemptOutcome.exhausted if final else AttemptOutcome.retry

            candidate = self._parse(raw)
            if candidate is None:
                last_errors = [INVALID_JSON_OUTPUT]
                attempts.append(GenerationAttempt(number, raw, rejected, last_errors))
                fix_instruction = build_fix_instruction(last_errors, json_failure=True)
                logger.info("digest attempt %d rejected: %s", number, INVALID_JSON_OUTPUT)
                continue

            output = candidate.normalized(self._consistency_config.max_changes)
            report = consistency_check(
                output,
                protected_state=protected_state,
                previous_digest=last_digest,
                config=self._consistency_config,
            )
            if report.ok:
                attempts.append(
                    GenerationAttempt(
                        number,
                        raw,
                        AttemptOutcome.accepted,
                        warnings=report.warnings,
                    )
                )
                return GenerationResult(output=output, attempts=attempts)

            last_errors = report.errors
            attempts.append(
                GenerationAttempt(number, raw, rejected, report.errors, report.warnings)
            )
            fix_instruction = build_fix_instruction(report.errors, json_failure=False)
            logger.info(
                "digest attempt %d rejected: %s", number, ", ".join(report.errors)
            )

        raise DigestConsistencyError(last_errors, attempts)

    @staticmethod
    def _parse(raw: str) -> DigestOutput | None:
        try:
            return DigestOutput.model_validate(extract_json(raw))
        except (JSONExtractionError, ValidationError):
            return None
