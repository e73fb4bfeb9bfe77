"""Storage contracts the digest service depends on.

The core never edits past digests and never queries beyond what these
methods return; concurrency control on writes is the store's concern.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from projectmemory.models.digest import Digest
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope


class ScopeStore(Protocol):
    async def create_scope(self, scope: ProjectScope) -> ProjectScope: ...

    async def get_scope(self, scope_id: str, user_id: str) -> ProjectScope | None:
        """Return the scope if it exists and belongs to *user_id*."""

    async def list_scopes(self, user_id: str) -> list[ProjectScope]:
        """Scopes owned by *user_id*, newest first."""


class EventStore(Protocol):
    async def append_event(self, event: MemoryEvent) -> MemoryEvent: ...

    async def upsert_document(self, event: MemoryEvent) -> MemoryEvent:
        """Store *event* as the live value of its ``(scope_id, key)`` slot."""

    async def list_by_lookback(
        self, scope_id: str, since: datetime, limit: int
    ) -> list[MemoryEvent]:
        """Events created at or after *since*, newest first, at most *limit*."""

    async def list_latest_events(self, scope_id: str, limit: int) -> list[MemoryEvent]:
        """The *limit* most recently created events, newest first."""

    async def list_range(
        self,
        scope_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MemoryEvent]:
        """Events created within ``[start, end]``, oldest first."""


class DigestStore(Protocol):
    async def append_digest(self, digest: Digest) -> Digest: ...

    async def find_latest(self, scope_id: str) -> Digest | None: ...

    async def list_recent(self, scope_id: str, limit: int = 20) -> list[Digest]:
        """Digests newest first; ties go to the most recently appended."""


class MemoryStore(ScopeStore, EventStore, DigestStore, Protocol):
    """A single backend providing all three collaborators."""
