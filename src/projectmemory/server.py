"""ProjectMemory: FastMCP server exposing scope, event, digest and retrieval tools.

Tools delegate to ``DigestService``. Call ``configure()`` before using the
server; without a ``redis_url`` an in-process store is used.
"""

from __future__ import annotations

import asyncio
import logging
import os
from time import perf_counter

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import ValidationError
from redis.asyncio import Redis  # type: ignore[import-untyped]

from projectmemory.config import ConsistencyConfig
from projectmemory.config import digest_config_from_env
from projectmemory.config import DigestControlConfig
from projectmemory.config import DigestWindowConfig
from projectmemory.config import llm_config_from_env
from projectmemory.config import LLMConfig
from projectmemory.config import RebuildConfig
from projectmemory.config import RetrievalConfig
from projectmemory.config import window_config_from_env
from projectmemory.engine import build_llm_adapter
from projectmemory.engine import DigestConsistencyError
from projectmemory.engine import DigestControlPipeline
from projectmemory.engine import LLMAdapter
from projectmemory.engine import LLMError
from projectmemory.engine import NoopLLMAdapter
from projectmemory.memory import InMemoryStore
from projectmemory.memory import MemoryStore
from projectmemory.memory import RedisStore
from projectmemory.models.events import EventType
from projectmemory.models.schemas import AnswerInput
from projectmemory.models.schemas import AnswerResult
from projectmemory.models.schemas import CreateScopeInput
from projectmemory.models.schemas import CreateScopeResult
from projectmemory.models.schemas import DigestListResult
from projectmemory.models.schemas import DigestResult
from projectmemory.models.schemas import ListDigestsInput
from projectmemory.models.schemas import RebuildDigestsResult
from projectmemory.models.schemas import RebuildInput
from projectmemory.models.schemas import RetrieveInput
from projectmemory.models.schemas import RetrieveMemoryResult
from projectmemory.models.schemas import ScopeListResult
from projectmemory.models.schemas import SendEventInput
from projectmemory.models.schemas import SendEventResult
from projectmemory.observability import latency_metrics_snapshot
from projectmemory.observability import record_latency
from projectmemory.service import AnswerUnavailableError
from projectmemory.service import DigestService
from projectmemory.service import RebuildStrategy
from projectmemory.service import ScopeNotFoundError

logger = logging.getLogger(__name__)

mcp = FastMCP("ProjectMemory")

# ---------------------------------------------------------------------------
# Service instance (set via configure())
# ---------------------------------------------------------------------------

_store: MemoryStore | None = None
_service: DigestService | None = None


async def configure(
    redis_url: str | None = None,
    *,
    store: MemoryStore | None = None,
    llm_config: LLMConfig | None = None,
    llm_adapter: LLMAdapter | None = None,
    digest_config: DigestControlConfig | None = None,
    consistency_config: ConsistencyConfig | None = None,
    window_config: DigestWindowConfig | None = None,
    rebuild_config: RebuildConfig | None = None,
    retrieval_config: RetrievalConfig | None = None,
) -> None:
    """Initialize the store, LLM adapter and digest service.

    Must be called before the MCP tools can function. Memory-backed answers
    are only enabled when the adapter is not the noop one.
    """
    global _store, _service
    await shutdown()

    if store is not None:
        _store = store
    elif redis_url is not None:
        _store = RedisStore(Redis.from_url(redis_url))
    else:
        _store = InMemoryStore()

    llm_cfg = llm_config or LLMConfig()
    adapter = llm_adapter or build_llm_adapter(llm_cfg)
    pipeline = DigestControlPipeline(
        adapter,
        digest_config,
        llm_config=llm_cfg,
        consistency_config=consistency_config,
    )
    _service = DigestService(
        _store,
        pipeline,
        window=window_config,
        rebuild=rebuild_config,
        retrieval=retrieval_config,
        answer_llm=None if isinstance(adapter, NoopLLMAdapter) else adapter,
        llm_config=llm_cfg,
    )


async def shutdown() -> None:
    """Close backend clients and release server resources."""
    global _store, _service
    if isinstance(_store, RedisStore):
        try:
            await _store.close()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            pass
    _store = None
    _service = None


def _get_service() -> DigestService:
    """Return the digest service or raise."""
    if _service is None:
        raise RuntimeError("Digest service not configured. Call configure() first.")
    return _service


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


def _scope_not_found(exc: ScopeNotFoundError) -> dict[str, str]:
    return {
        "status": "error",
        "error_code": "scope_not_found",
        "message": f"Scope {exc.scope_id} not found for this user.",
    }


def _generation_failed(exc: Exception) -> dict[str, str]:
    if isinstance(exc, DigestConsistencyError):
        return {
            "status": "error",
            "error_code": "digest_consistency_failed",
            "message": str(exc),
        }
    return {"status": "error", "error_code": "llm_error", "message": str(exc)}


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def create_scope(
    user_id: str,
    name: str,
    goal: str | None = None,
    stage: str = "idea",
) -> CreateScopeResult:
    """Create a project scope that events are digested within.

    Args:
        user_id: Owner of the scope.
        name: Human readable project name.
        goal: Optional initial goal.
        stage: One of idea, build, test, launch.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = CreateScopeInput.model_validate(
                {"user_id": user_id, "name": name, "goal": goal, "stage": stage}
            )
        except ValidationError as exc:
            return CreateScopeResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        scope = await service.create_scope(
            validated.user_id,
            validated.name,
            goal=validated.goal,
            stage=validated.stage,
        )
        ok = True
        return CreateScopeResult(scope_id=scope.id)
    finally:
        record_latency(
            operation="mcp.create_scope",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def send_event(
    scope_id: str,
    user_id: str,
    content: str,
    type: str = "stream",
    source: str = "api",
    key: str | None = None,
) -> SendEventResult:
    """Record a stream note or upsert a keyed document.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
        content: Raw text of the note or document.
        type: stream (append-only) or document (keyed slot).
        source: Channel the event arrived through.
        key: Document slot name, required for documents.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = SendEventInput.model_validate(
                {
                    "scope_id": scope_id,
                    "user_id": user_id,
                    "content": content,
                    "type": type,
                    "source": source,
                    "key": key,
                }
            )
        except ValidationError as exc:
            return SendEventResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        if validated.type == EventType.document and not validated.key:
            return SendEventResult(
                status="rejected",
                error_code="missing_document_key",
                message="Document events require a key.",
            )

        try:
            event = await service.ingest_event(
                validated.scope_id,
                validated.user_id,
                validated.content,
                type=validated.type,
                source=validated.source,
                key=validated.key,
            )
        except ScopeNotFoundError as exc:
            return SendEventResult(**_scope_not_found(exc))

        ok = True
        return SendEventResult(event_id=event.id, content_hash=event.content_hash)
    finally:
        record_latency(
            operation="mcp.send_event",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def run_digest(scope_id: str, user_id: str) -> DigestResult:
    """Generate and store a new digest from recent scope activity.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            digest = await service.digest_scope(scope_id, user_id)
        except ScopeNotFoundError as exc:
            return DigestResult(**_scope_not_found(exc))
        except (DigestConsistencyError, LLMError) as exc:
            logger.warning("Digest run failed for scope %s: %s", scope_id, exc)
            return DigestResult(**_generation_failed(exc))

        ok = True
        return DigestResult(digest=digest)
    finally:
        record_latency(
            operation="mcp.run_digest",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_digest(scope_id: str, user_id: str) -> DigestResult:
    """Return the latest stored digest for a scope.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            digest = await service.latest_digest(scope_id, user_id)
        except ScopeNotFoundError as exc:
            return DigestResult(**_scope_not_found(exc))

        ok = True
        if digest is None:
            return DigestResult(
                status="empty", message="No digest generated for this scope yet."
            )
        return DigestResult(digest=digest)
    finally:
        record_latency(
            operation="mcp.get_digest",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def rebuild_digests(
    scope_id: str,
    user_id: str,
    start: str | None = None,
    end: str | None = None,
    strategy: str = "full",
) -> RebuildDigestsResult:
    """Re-derive digests over historical events in sequential chunks.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
        start: Optional ISO-8601 lower bound on event creation time.
        end: Optional ISO-8601 upper bound on event creation time.
        strategy: full (from scratch) or since_last_good.
    """
    started = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = RebuildInput.model_validate(
                {
                    "scope_id": scope_id,
                    "user_id": user_id,
                    "start": start,
                    "end": end,
                    "strategy": strategy,
                }
            )
        except ValidationError as exc:
            return RebuildDigestsResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            result = await service.rebuild(
                validated.scope_id,
                validated.user_id,
                start=validated.start,
                end=validated.end,
                strategy=RebuildStrategy(validated.strategy),
            )
        except ScopeNotFoundError as exc:
            return RebuildDigestsResult(**_scope_not_found(exc))
        except (DigestConsistencyError, LLMError) as exc:
            logger.warning("Rebuild failed for scope %s: %s", scope_id, exc)
            return RebuildDigestsResult(**_generation_failed(exc))

        ok = True
        return RebuildDigestsResult(
            rebuild_group_id=result.rebuild_group_id,
            digest_ids=[d.id for d in result.digests],
            chunks_total=result.chunks_total,
            chunks_processed=result.chunks_processed,
            cancelled=result.cancelled,
        )
    finally:
        record_latency(
            operation="mcp.rebuild_digests",
            duration_ms=(perf_counter() - started) * 1000,
            ok=ok,
        )


# ---------------------------------------------------------------------------
# History and retrieval
# ---------------------------------------------------------------------------


@mcp.tool
async def list_scopes(user_id: str) -> ScopeListResult:
    """List the caller's project scopes, newest first.

    Args:
        user_id: Owner of the scopes.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        if not user_id:
            return ScopeListResult(
                status="rejected",
                error_code="validation_error",
                message="user_id is required.",
            )
        scopes = await service.list_scopes(user_id)
        ok = True
        return ScopeListResult(scopes=scopes)
    finally:
        record_latency(
            operation="mcp.list_scopes",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def list_digests(
    scope_id: str, user_id: str, limit: int = 20
) -> DigestListResult:
    """Return digest history for a scope, newest first.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
        limit: Page size, 1 to 100.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = ListDigestsInput.model_validate(
                {"scope_id": scope_id, "user_id": user_id, "limit": limit}
            )
        except ValidationError as exc:
            return DigestListResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            digests = await service.list_digests(
                validated.scope_id, validated.user_id, limit=validated.limit
            )
        except ScopeNotFoundError as exc:
            return DigestListResult(**_scope_not_found(exc))

        ok = True
        return DigestListResult(digests=digests)
    finally:
        record_latency(
            operation="mcp.list_digests",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def retrieve_memory(
    scope_id: str,
    user_id: str,
    query: str | None = None,
    limit: int = 20,
) -> RetrieveMemoryResult:
    """Return the latest digest and the events most relevant to a query.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
        query: Optional text to rank events against.
        limit: Maximum number of events, 1 to 100.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = RetrieveInput.model_validate(
                {
                    "scope_id": scope_id,
                    "user_id": user_id,
                    "query": query,
                    "limit": limit,
                }
            )
        except ValidationError as exc:
            return RetrieveMemoryResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            result = await service.retrieve(
                validated.scope_id,
                validated.user_id,
                query=validated.query,
                limit=validated.limit,
            )
        except ScopeNotFoundError as exc:
            return RetrieveMemoryResult(**_scope_not_found(exc))

        ok = True
        return RetrieveMemoryResult(digest=result.digest, events=result.events)
    finally:
        record_latency(
            operation="mcp.retrieve_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def answer_question(
    scope_id: str, user_id: str, question: str
) -> AnswerResult:
    """Answer a question strictly from the scope's stored memory.

    Args:
        scope_id: Target project scope.
        user_id: Owner of the scope.
        question: What to answer.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = AnswerInput.model_validate(
                {"scope_id": scope_id, "user_id": user_id, "question": question}
            )
        except ValidationError as exc:
            return AnswerResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            answer = await service.answer(
                validated.scope_id, validated.user_id, validated.question
            )
        except AnswerUnavailableError:
            return AnswerResult(
                status="rejected",
                error_code="llm_disabled",
                message="No language model is configured for answers.",
            )
        except ScopeNotFoundError as exc:
            return AnswerResult(**_scope_not_found(exc))
        except LLMError as exc:
            logger.warning("Answer failed for scope %s: %s", scope_id, exc)
            return AnswerResult(**_generation_failed(exc))

        ok = True
        return AnswerResult(answer=answer)
    finally:
        record_latency(
            operation="mcp.answer_question",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def latency_metrics() -> dict[str, dict[str, float | int]]:
    """Return in-process latency aggregates per operation."""
    return latency_metrics_snapshot()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Load ``.env``, configure from the environment and serve over stdio."""
    load_dotenv(override=False)
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    asyncio.run(
        configure(
            os.environ.get("REDIS_URL") or None,
            llm_config=llm_config_from_env(),
            digest_config=digest_config_from_env(),
            window_config=window_config_from_env(),
        )
    )
    mcp.run()


if __name__ == "__main__":
    main()
