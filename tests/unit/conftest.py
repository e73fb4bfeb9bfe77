"""Unit test fixtures: event builders and an in-process MCP client."""

from __future__ import annotations

from datetime import datetime
from datetime import timedelta
from datetime import UTC

import pytest
from fastmcp import Client

from projectmemory.models import EventType
from projectmemory.models import MemoryEvent
from projectmemory.models import ProjectScope

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture()
def scope() -> ProjectScope:
    return ProjectScope(id="scope_test", user_id="user_1", name="Launch site")


@pytest.fixture()
def make_event(scope):
    """Build events for ``scope`` at ``BASE_TIME + minutes``."""

    def _make(
        content: str,
        *,
        minutes: int = 0,
        type: EventType = EventType.stream,
        key: str | None = None,
        id: str | None = None,
    ) -> MemoryEvent:
        data = {
            "scope_id": scope.id,
            "user_id": scope.user_id,
            "type": type,
            "key": key,
            "content": content,
            "created_at": BASE_TIME + timedelta(minutes=minutes),
        }
        if id is not None:
            data["id"] = id
        return MemoryEvent(**data)

    return _make


@pytest.fixture()
async def mcp_client():
    """Yield a FastMCP Client wired to an in-memory, noop-LLM server."""
    from projectmemory.config import LLMConfig
    from projectmemory.server import configure
    from projectmemory.server import mcp
    from projectmemory.server import shutdown

    await configure(llm_config=LLMConfig(provider="noop"))

    async with Client(mcp) as client:
        yield client

    await shutdown()
