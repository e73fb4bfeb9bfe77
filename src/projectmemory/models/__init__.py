"""Models domain: events, scopes, digests and protected state."""

from projectmemory.models.digest import Digest
from projectmemory.models.digest import DigestOutput
from projectmemory.models.digest import DigestState
from projectmemory.models.digest import StableFacts
from projectmemory.models.digest import WorkingNotes
from projectmemory.models.events import EventSource
from projectmemory.models.events import EventType
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope
from projectmemory.models.events import ProjectStage

__all__ = [
    "Digest",
    "DigestOutput",
    "DigestState",
    "EventSource",
    "EventType",
    "MemoryEvent",
    "ProjectScope",
    "ProjectStage",
    "StableFacts",
    "WorkingNotes",
]
