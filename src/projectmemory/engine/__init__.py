"""Engine domain: digest-control pipeline stages."""

from projectmemory.engine.classifier import HeuristicClassifier
from projectmemory.engine.classifier import LLMEventClassifier
from projectmemory.engine.consistency import consistency_check
from projectmemory.engine.deltas import detect_deltas
from projectmemory.engine.generation import DigestConsistencyError
from projectmemory.engine.generation import DigestGenerator
from projectmemory.engine.generation import LLMAdapter
from projectmemory.engine.generation import LLMError
from projectmemory.engine.llm_adapters import build_llm_adapter
from projectmemory.engine.llm_adapters import NoopLLMAdapter
from projectmemory.engine.llm_adapters import OpenAICompatibleLLMAdapter
from projectmemory.engine.pipeline import DigestControlPipeline
from projectmemory.engine.retrieval import MemoryAnswerer
from projectmemory.engine.retrieval import rank_events
from projectmemory.engine.retrieval import RetrievalEngine
from projectmemory.engine.retrieval import RetrievalResult
from projectmemory.engine.schemas import ChatMessage
from projectmemory.engine.schemas import DeltaCandidate
from projectmemory.engine.schemas import EventKind
from projectmemory.engine.schemas import PipelineResult
from projectmemory.engine.schemas import SelectionResult
from projectmemory.engine.selection import EventBudget
from projectmemory.engine.selection import select_events_for_digest
from projectmemory.engine.state import derive_state_from_digest
from projectmemory.engine.state import protected_state_merge

__all__ = [
    "ChatMessage",
    "DeltaCandidate",
    "DigestConsistencyError",
    "DigestControlPipeline",
    "DigestGenerator",
    "EventBudget",
    "EventKind",
    "HeuristicClassifier",
    "LLMAdapter",
    "LLMError",
    "LLMEventClassifier",
    "MemoryAnswerer",
    "NoopLLMAdapter",
    "OpenAICompatibleLLMAdapter",
    "PipelineResult",
    "RetrievalEngine",
    "RetrievalResult",
    "SelectionResult",
    "build_llm_adapter",
    "consistency_check",
    "derive_state_from_digest",
    "detect_deltas",
    "protected_state_merge",
    "rank_events",
    "select_events_for_digest",
]
