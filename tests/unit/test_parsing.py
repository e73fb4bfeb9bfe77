"""Tests for tolerant JSON extraction from model output."""

from __future__ import annotations

import pytest

from projectmemory.engine.parsing import extract_json
from projectmemory.engine.parsing import JSONExtractionError


class TestExtractJSON:
    def test_plain_object(self):
        assert extract_json('{"summary": "ok"}') == {"summary": "ok"}

    def test_code_fence_is_stripped(self):
        raw = '```json\n{"summary": "fenced"}\n```'
        assert extract_json(raw) == {"summary": "fenced"}

    def test_surrounding_prose(self):
        raw = 'Here is the digest:\n{"summary": "s", "changes": []}\nThanks!'
        assert extract_json(raw) == {"summary": "s", "changes": []}

    def test_array_payload(self):
        assert extract_json('result: [{"id": "evt_1"}]') == [{"id": "evt_1"}]

    def test_skips_brace_that_does_not_decode(self):
        raw = 'use {braces} carefully {"summary": "second"}'
        assert extract_json(raw) == {"summary": "second"}

    @pytest.mark.parametrize("raw", ["", "no json here", "{broken: json"])
    def test_raises_when_nothing_decodes(self, raw):
        with pytest.raises(JSONExtractionError):
            extract_json(raw)
