"""Prompt construction for digest generation, event classification and answers.

Templates use ``{{name}}`` placeholders. Separate module because the
prompts evolve independently of the control logic that consumes them.
"""

from __future__ import annotations

from dataclasses import dataclass

from projectmemory.engine.schemas import ChatMessage
from projectmemory.engine.schemas import DeltaCandidate
from projectmemory.engine.schemas import SelectedEvent
from projectmemory.models.digest import Digest
from projectmemory.models.digest import DigestState
from projectmemory.models.events import MemoryEvent
from projectmemory.models.events import ProjectScope

DIGEST_SYSTEM_PROMPT = """\
You are a long-term memory engine. Create a concise and faithful digest.
Rules:
- Output JSON only.
- summary must be <= 120 words.
- changes must be <= 3 bullets.
- nextSteps must be 1-3 concrete actionable tasks.
- Do not invent facts not present in the provided evidence."""

DIGEST_USER_PROMPT = """\
Context:
Scope: {{scopeName}}
Goal: {{scopeGoal}}
Stage: {{scopeStage}}

Previous digest:
{{lastDigest}}

Protected state:
{{protectedState}}

Delta candidates:
{{deltaCandidates}}

Latest documents:
{{documents}}

Return JSON: {"summary": string, "changes": string[], "nextSteps": string[]}"""

CLASSIFY_SYSTEM_PROMPT = """\
Classify memory events for digest selection.
Return strict JSON array where each item has:
{id:string, kind:'decision'|'constraint'|'todo'|'note'|'status'|'question'|'noise', importanceScore:number}"""

CLASSIFY_USER_PROMPT = """\
Events:
{{events}}

Classify each event by semantic kind and importance score (0..1)."""

ANSWER_SYSTEM_PROMPT = """\
You are a memory-backed assistant. Answer strictly using retrieved memory. \
If memory is insufficient, say so explicitly."""

ANSWER_USER_PROMPT = """\
Question:
{{question}}

Retrieved digest:
{{digest}}

Retrieved events:
{{events}}

Answer in plain text."""

NONE_PLACEHOLDER = "(none)"
NO_EVENTS_PLACEHOLDER = "(no events)"


@dataclass(frozen=True)
class DigestPrompts:
    """System and user templates for the generation stage."""

    system: str = DIGEST_SYSTEM_PROMPT
    user_template: str = DIGEST_USER_PROMPT
    classify_system: str = CLASSIFY_SYSTEM_PROMPT
    classify_user_template: str = CLASSIFY_USER_PROMPT


@dataclass(frozen=True)
class AnswerPrompts:
    """System and user templates for memory-backed answers."""

    system: str = ANSWER_SYSTEM_PROMPT
    user_template: str = ANSWER_USER_PROMPT


def render_template(template: str, data: dict[str, str]) -> str:
    output = template
    for key, value in data.items():
        output = output.replace("{{" + key + "}}", value)
    return output


def format_protected_state(state: DigestState) -> str:
    return state.model_dump_json(indent=2)


def format_delta_candidates(candidates: list[DeltaCandidate]) -> str:
    return "\n".join(
        f"- [{c.features.kind.value}] {c.event.content}" for c in candidates
    )


def format_documents(documents: list[MemoryEvent]) -> str:
    return "\n".join(f"- {doc.key or doc.id}: {doc.content}" for doc in documents)


def build_digest_user_prompt(
    *,
    scope: ProjectScope,
    last_digest: Digest | None,
    protected_state: DigestState,
    deltas: list[DeltaCandidate],
    documents: list[MemoryEvent],
    template: str = DIGEST_USER_PROMPT,
) -> str:
    return render_template(
        template,
        {
            "scopeName": scope.name,
            "scopeGoal": scope.goal or NONE_PLACEHOLDER,
            "scopeStage": scope.stage.value,
            "lastDigest": (
                last_digest.as_prompt_text() if last_digest else NONE_PLACEHOLDER
            ),
            "protectedState": format_protected_state(protected_state),
            "deltaCandidates": format_delta_candidates(deltas) or NONE_PLACEHOLDER,
            "documents": format_documents(documents) or NONE_PLACEHOLDER,
        },
    )


def build_fix_instruction(errors: list[str], *, json_failure: bool) -> str:
    """Instruction appended to the next attempt after a rejected one."""
    joined = ", ".join(errors)
    if json_failure:
        return f"Fix output. Previous errors: {joined}. Return strict JSON only."
    return (
        f"Fix output. Previous errors: {joined}. "
        "Ensure summary<=120 words, changes<=3, nextSteps actionable."
    )


def build_classify_messages(
    selected: list[SelectedEvent],
    prompts: DigestPrompts | None = None,
) -> list[ChatMessage]:
    prompts = prompts or DigestPrompts()
    events_text = "\n".join(f"{s.event.id}: {s.event.content}" for s in selected)
    return [
        ChatMessage(role="system", content=prompts.classify_system),
        ChatMessage(
            role="user",
            content=render_template(prompts.classify_user_template, {"events": events_text}),
        ),
    ]


def format_retrieved_events(events: list[MemoryEvent]) -> str:
    return "\n".join(f"- {e.created_at.isoformat()}: {e.content}" for e in events)


def build_answer_messages(
    *,
    question: str,
    digest: Digest | None,
    events: list[MemoryEvent],
    prompts: AnswerPrompts | None = None,
) -> list[ChatMessage]:
    prompts = prompts or AnswerPrompts()
    user = render_template(
        prompts.user_template,
        {
            "question": question,
            "digest": digest.summary if digest else NONE_PLACEHOLDER,
            "events": format_retrieved_events(events) or NO_EVENTS_PLACEHOLDER,
        },
    )
    return [
        ChatMessage(role="system", content=prompts.system),
        ChatMessage(role="user", content=user),
    ]
