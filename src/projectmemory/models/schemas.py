"""Pydantic models for the MCP interface.

Input models validate tool arguments; output models shape responses.
FastMCP serializes Pydantic models automatically.
"""

from __future__ import annotations

from datetime import datetime
from datetime import UTC

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from projectmemory.models.digest import Digest
from projectmemory.models.events import EventSource
from projectmemory.models.events import EventType
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope
from projectmemory.models.events import ProjectStage

# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class CreateScopeInput(BaseModel):
    """Input for create_scope tool."""

    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1, description="Human readable project name.")
    goal: str | None = None
    stage: ProjectStage = ProjectStage.idea


class SendEventInput(BaseModel):
    """Input for send_event tool."""

    scope_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    content: str = Field(min_length=1, description="Raw note or document text.")
    type: EventType = EventType.stream
    source: EventSource = EventSource.api
    key: str | None = Field(
        default=None,
        description="Document slot name; required when type is document.",
    )


class RebuildInput(BaseModel):
    """Input for rebuild_digests tool."""

    model_config = ConfigDict(populate_by_name=True)

    scope_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    start: datetime | None = Field(default=None, alias="from")
    end: datetime | None = Field(default=None, alias="to")
    strategy: str = Field(
        default="full",
        pattern="^(full|since_last_good)$",
    )

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class ListDigestsInput(BaseModel):
    """Input for list_digests tool."""

    scope_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    limit: int = Field(default=20, ge=1, le=100)


class RetrieveInput(BaseModel):
    """Input for retrieve_memory tool."""

    scope_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    query: str | None = Field(
        default=None,
        description="Optional text to rank events against; newest first if empty.",
    )
    limit: int = Field(default=20, ge=1, le=100)


class AnswerInput(BaseModel):
    """Input for answer_question tool."""

    scope_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    question: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    """Common status envelope."""

    status: str = Field(default="ok", description="ok, rejected or error.")
    error_code: str | None = None
    message: str | None = None


class CreateScopeResult(ToolResult):
    scope_id: str = ""


class SendEventResult(ToolResult):
    event_id: str = ""
    content_hash: str | None = None


class DigestResult(ToolResult):
    digest: Digest | None = None


class RebuildDigestsResult(ToolResult):
    rebuild_group_id: str = ""
    digest_ids: list[str] = Field(default_factory=list)
    chunks_total: int = 0
    chunks_processed: int = 0
    cancelled: bool = False


class ScopeListResult(ToolResult):
    scopes: list[ProjectScope] = Field(default_factory=list)


class DigestListResult(ToolResult):
    digests: list[Digest] = Field(default_factory=list)


class RetrieveMemoryResult(ToolResult):
    digest: Digest | None = None
    events: list[MemoryEvent] = Field(default_factory=list)


class AnswerResult(ToolResult):
    answer: str = ""
