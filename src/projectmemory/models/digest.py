"""Digest records, model output contract and protected state."""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import UTC

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class Digest(BaseModel):
    """A persisted digest. History per scope is append-only."""

    id: str = Field(
        default_factory=lambda: f"dig_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as dig_{uuid4_hex}.",
    )
    scope_id: str = Field(description="Owning project scope.")
    summary: str = Field(description="Short prose summary of the project.")
    changes: list[str] = Field(
        default_factory=list,
        description="Ordered change bullets, without leading dashes.",
    )
    next_steps: list[str] = Field(
        default_factory=list,
        description="One to three concrete next steps.",
    )
    rebuild_group_id: str | None = Field(
        default=None,
        description="Set on digests produced by a bulk rebuild pass.",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def as_prompt_text(self) -> str:
        """Labelled rendering used inside generation prompts."""
        changes = "\n".join(f"- {c}" for c in self.changes)
        return (
            f"Summary: {self.summary}\n"
            f"Changes: {changes}\n"
            f"Next steps: {', '.join(self.next_steps)}"
        )

    def as_novelty_text(self) -> str:
        """Flat text novelty is measured against."""
        return "\n".join(
            [self.summary, "\n".join(self.changes), " ".join(self.next_steps)]
        )


class DigestOutput(BaseModel):
    """What the generator must return.

    Field types are strict so that numbers or objects in place of strings
    fail validation instead of being coerced.
    """

    model_config = ConfigDict(populate_by_name=True, strict=True)

    summary: str
    changes: list[str]
    next_steps: list[str] = Field(alias="nextSteps")

    def normalized(self, limit: int = 3) -> DigestOutput:
        """Trim text, drop empty entries and cap list lengths."""
        return DigestOutput(
            summary=self.summary.strip(),
            changes=[c.strip() for c in self.changes if c.strip()][:limit],
            next_steps=[n.strip() for n in self.next_steps if n.strip()][:limit],
        )


# ---------------------------------------------------------------------------
# Protected state
# ---------------------------------------------------------------------------


class StableFacts(BaseModel):
    goal: str | None = None
    constraints: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)


class WorkingNotes(BaseModel):
    open_questions: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    context: str | None = None


class DigestState(BaseModel):
    """Accumulated belief state carried across digest runs.

    ``stable_facts.goal`` only changes through an explicit ``goal:`` marker
    in a document or decision, never through generated text.
    """

    stable_facts: StableFacts = Field(default_factory=StableFacts)
    working_notes: WorkingNotes = Field(default_factory=WorkingNotes)
    todos: list[str] = Field(default_factory=list)
