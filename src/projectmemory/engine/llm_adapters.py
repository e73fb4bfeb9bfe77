"""Concrete LLM adapters and factory helpers."""

from __future__ import annotations

import asyncio
import json
import logging
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from projectmemory.config import LLMConfig
from projectmemory.engine.generation import LLMAdapter
from projectmemory.engine.generation import LLMError
from projectmemory.engine.schemas import ChatMessage

logger = logging.getLogger(__name__)

NOOP_DIGEST_RESPONSE = json.dumps(
    {
        "summary": "No model configured; digest generated by the noop adapter.",
        "changes": [],
        "nextSteps": ["Review the latest project events and documents"],
    }
)


class NoopLLMAdapter(LLMAdapter):
    """Deterministic adapter returning a schema-valid digest payload."""

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout_seconds: float = 20.0,
    ) -> str:
        del messages, temperature, max_tokens, timeout_seconds
        return NOOP_DIGEST_RESPONSE


class OpenAICompatibleLLMAdapter(LLMAdapter):
    """OpenAI-compatible chat-completions adapter with transport retries."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        max_attempts: int = 3,
        backoff_seconds: float = 0.3,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout_seconds: float = 20.0,
    ) -> str:
        last_error: LLMError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await asyncio.to_thread(
                    self._chat_sync,
                    messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout_seconds=timeout_seconds,
                )
            except LLMError as exc:
                last_error = exc
                logger.warning(
                    "LLM call failed (attempt %d/%d): %s",
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff_seconds * attempt)
        raise last_error or LLMError("LLM call failed")

    def _chat_sync(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        payload = {
            "model": self._model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        request = Request(
            url=f"{self._base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"provider HTTP {exc.code}: {detail[:200]}") from exc
        except URLError as exc:
            raise LLMError(f"provider network error: {exc.reason}") from exc
        except OSError as exc:
            raise LLMError(f"provider IO error: {exc}") from exc

        try:
            data = json.loads(raw)
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise LLMError(
                "provider response missing choices[0].message.content"
            ) from exc

        if isinstance(content, str) and content:
            return content
        raise LLMError("provider response content must be a non-empty string")


def build_llm_adapter(config: LLMConfig) -> LLMAdapter:
    """Create a concrete adapter from ``LLMConfig``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("llm_config.api_key is required when provider='openai'")
        return OpenAICompatibleLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
        )
    if provider == "noop":
        return NoopLLMAdapter()
    raise ValueError(
        f"Unsupported llm_config.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )
