"""Memory event and project scope models.

These are the shapes upstream adapters (CLI, bot, HTTP) translate their
payloads into. The digest pipeline only ever reads them.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import UTC
from enum import Enum

from pydantic import BaseModel
from pydantic import Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Whether an event is part of the stream or a keyed document slot."""

    stream = "stream"
    document = "document"


class EventSource(str, Enum):
    """Channel an event arrived through."""

    telegram = "telegram"
    cli = "cli"
    api = "api"
    sdk = "sdk"


class ProjectStage(str, Enum):
    idea = "idea"
    build = "build"
    test = "test"
    launch = "launch"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class MemoryEvent(BaseModel):
    """A single raw note or document captured for a project scope.

    Documents carry a ``key`` naming a logical slot (``goal``,
    ``note:plan``...). Only the latest document per key is live.
    """

    id: str = Field(
        default_factory=lambda: f"evt_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as evt_{uuid4_hex}.",
    )
    scope_id: str = Field(description="Owning project scope.")
    user_id: str = Field(description="User who captured the event.")
    type: EventType = Field(
        default=EventType.stream,
        description="stream for append-only notes, document for keyed slots.",
    )
    source: EventSource = Field(
        default=EventSource.api,
        description="Channel the event arrived through.",
    )
    key: str | None = Field(
        default=None,
        description="Document slot name; ignored for stream events.",
    )
    content: str = Field(description="Raw textual content.")
    content_hash: str | None = Field(
        default=None,
        description="sha256 of the content, set on document upserts.",
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        description="Creation time; defines recency ordering.",
    )


class ProjectScope(BaseModel):
    """A project whose events are digested together."""

    id: str = Field(default_factory=lambda: f"scope_{uuid.uuid4().hex}")
    user_id: str
    name: str
    goal: str | None = None
    stage: ProjectStage = ProjectStage.idea
    created_at: datetime = Field(default_factory=_utcnow)
