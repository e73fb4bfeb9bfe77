"""Unit tests for concrete LLM adapters and provider factory."""

from __future__ import annotations

import json

import pytest

from projectmemory.config import LLMConfig
from projectmemory.engine.llm_adapters import build_llm_adapter
from projectmemory.engine.llm_adapters import NoopLLMAdapter
from projectmemory.engine.llm_adapters import OpenAICompatibleLLMAdapter
from projectmemory.engine.generation import LLMError
from projectmemory.engine.schemas import ChatMessage
from projectmemory.models import DigestOutput

MESSAGES = [
    ChatMessage(role="system", content="sys"),
    ChatMessage(role="user", content="hello"),
]


class TestBuildLLMAdapter:
    def test_openai_provider_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="api_key is required"):
            build_llm_adapter(LLMConfig(provider="openai", api_key=None))

    def test_openai_provider_with_key(self) -> None:
        adapter = build_llm_adapter(LLMConfig(provider="openai", api_key="k"))
        assert isinstance(adapter, OpenAICompatibleLLMAdapter)

    def test_noop_provider_is_supported(self) -> None:
        adapter = build_llm_adapter(LLMConfig(provider="noop"))
        assert isinstance(adapter, NoopLLMAdapter)

    def test_unsupported_provider_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unsupported llm_config.provider"):
            build_llm_adapter(LLMConfig(provider="anthropic"))


class TestNoopLLMAdapter:
    async def test_noop_returns_schema_valid_digest_json(self) -> None:
        raw = await NoopLLMAdapter().chat(MESSAGES)
        output = DigestOutput.model_validate(json.loads(raw))
        assert output.changes == []
        assert len(output.next_steps) == 1


class TestOpenAICompatibleAdapter:
    async def test_chat_uses_sync_path_via_thread(self, monkeypatch) -> None:
        adapter = OpenAICompatibleLLMAdapter(model="gpt-4o-mini", api_key="test")

        def _fake_sync(
            messages, *, temperature: float, max_tokens: int, timeout_seconds: float
        ) -> str:
            assert [m.to_dict() for m in messages] == [
                {"role": "system", "content": "sys"},
                {"role": "user", "content": "hello"},
            ]
            assert temperature == 0.3
            assert max_tokens == 77
            assert timeout_seconds == 11.0
            return '{"ok": true}'

        monkeypatch.setattr(adapter, "_chat_sync", _fake_sync)

        result = await adapter.chat(
            MESSAGES,
            temperature=0.3,
            max_tokens=77,
            timeout_seconds=11.0,
        )
        assert result == '{"ok": true}'

    async def test_transport_errors_are_retried(self, monkeypatch) -> None:
        adapter = OpenAICompatibleLLMAdapter(
            model="gpt-4o-mini", api_key="test", max_attempts=3, backoff_seconds=0
        )
        calls = {"n": 0}

        def _flaky(messages, **kwargs) -> str:
            calls["n"] += 1
            if calls["n"] < 3:
                raise LLMError("provider network error: reset")
            return "done"

        monkeypatch.setattr(adapter, "_chat_sync", _flaky)

        assert await adapter.chat(MESSAGES) == "done"
        assert calls["n"] == 3

    async def test_gives_up_after_max_attempts(self, monkeypatch) -> None:
        adapter = OpenAICompatibleLLMAdapter(
            model="gpt-4o-mini", api_key="test", max_attempts=2, backoff_seconds=0
        )
        calls = {"n": 0}

        def _down(messages, **kwargs) -> str:
            calls["n"] += 1
            raise LLMError(f"provider HTTP 503: attempt {calls['n']}")

        monkeypatch.setattr(adapter, "_chat_sync", _down)

        with pytest.raises(LLMError, match="attempt 2"):
            await adapter.chat(MESSAGES)
        assert calls["n"] == 2

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            OpenAICompatibleLLMAdapter(model="m", api_key="k", max_attempts=0)
