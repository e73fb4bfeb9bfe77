"""Run the digest pipeline over a fixture under a matrix of configurations.

Usage:
    uv run python scripts/run_ablations.py \
      --events fixtures/events.json \
      --output reports/digest-ablations.json

The fixture is either a JSON list of events or an object with ``events``
and optional ``scope`` / ``last_digest`` entries. Every configuration runs
against the noop adapter, so reports only compare selection and delta
behaviour, not model quality.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from dataclasses import replace
from pathlib import Path

from projectmemory.config import DigestControlConfig
from projectmemory.config import digest_config_from_env
from projectmemory.engine import DigestConsistencyError
from projectmemory.engine import DigestControlPipeline
from projectmemory.engine import NoopLLMAdapter
from projectmemory.models import Digest
from projectmemory.models import MemoryEvent
from projectmemory.models import ProjectScope

BASELINE = digest_config_from_env()

# Variants override the environment-derived baseline.
ABLATIONS: dict[str, DigestControlConfig] = {
    "baseline": BASELINE,
    "no_classifier": replace(BASELINE, use_llm_classifier=False),
    "high_novelty": replace(BASELINE, novelty_threshold=0.5),
    "low_novelty": replace(BASELINE, novelty_threshold=0.0),
    "small_budget": replace(
        BASELINE, event_budget_total=10, event_budget_docs=3, event_budget_stream=7
    ),
    "large_budget": replace(
        BASELINE, event_budget_total=80, event_budget_docs=20, event_budget_stream=60
    ),
}


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument("--events", required=True)
    parser.add_argument("--output", default="reports/digest-ablations.json")
    return parser.parse_args()


def _load_fixture(
    path: Path,
) -> tuple[ProjectScope, Digest | None, list[MemoryEvent]]:
    with path.open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    if isinstance(raw, list):
        raw = {"events": raw}

    scope_data = raw.get("scope") or {}
    scope = ProjectScope(
        id=scope_data.get("id", "scope_ablation"),
        user_id=scope_data.get("user_id", "ablation"),
        name=scope_data.get("name", "ablation"),
        goal=scope_data.get("goal"),
    )
    events = [
        MemoryEvent.model_validate(
            {"scope_id": scope.id, "user_id": scope.user_id, **event}
        )
        for event in raw.get("events", [])
    ]
    last_digest = None
    if raw.get("last_digest"):
        last_digest = Digest.model_validate(
            {"scope_id": scope.id, **raw["last_digest"]}
        )
    return scope, last_digest, events


async def _run_one(
    name: str,
    config: DigestControlConfig,
    scope: ProjectScope,
    last_digest: Digest | None,
    events: list[MemoryEvent],
) -> dict:
    pipeline = DigestControlPipeline(NoopLLMAdapter(), config)
    row: dict = {"name": name, "config": asdict(config)}
    try:
        result = await pipeline.run(scope, last_digest, events)
    except DigestConsistencyError as exc:
        row.update({"ok": False, "errors": exc.errors})
        return row

    row.update(
        {
            "ok": True,
            "selected_docs": len(result.selection.documents),
            "selected_events": len(result.selection.selected_events),
            "deltas": len(result.deltas),
            "delta_kinds": sorted({d.features.kind.value for d in result.deltas}),
            "attempts": result.attempts,
            "metrics": result.metrics,
        }
    )
    return row


async def run_ablations(
    scope: ProjectScope,
    last_digest: Digest | None,
    events: list[MemoryEvent],
    ablations: dict[str, DigestControlConfig] | None = None,
) -> list[dict]:
    """Run each configuration concurrently; rows keep matrix order."""
    matrix = ablations or ABLATIONS
    return list(
        await asyncio.gather(
            *(
                _run_one(name, config, scope, last_digest, events)
                for name, config in matrix.items()
            )
        )
    )


async def _main() -> int:
    args = _parse_args()
    events_path = Path(args.events)
    output_path = Path(args.output)

    scope, last_digest, events = _load_fixture(events_path)
    rows = await run_ablations(scope, last_digest, events)

    report = {
        "input_events": str(events_path),
        "event_count": len(events),
        "runs": rows,
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as handle:
        json.dump(report, handle, indent=2, sort_keys=True, ensure_ascii=True)
        handle.write("\n")

    print(json.dumps(report, indent=2, sort_keys=True, ensure_ascii=True))
    return 0 if all(row["ok"] for row in rows) else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
