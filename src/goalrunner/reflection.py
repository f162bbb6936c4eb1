"""Scope reflection: a per-goal contract fencing edits to an agreed area."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Optional, Sequence

from .models.llm_client import GenerateRequest
from .parsing.json_text import extract_json_object, try_parse_loose_json
from .structured import StructuredEdit, coerce_edit, normalize_repo_path
from .telemetry import emit_event

__all__ = [
    "ScopeReflection",
    "ScopeViolation",
    "build_scope_reflection_prompt",
    "derive_reflection_path_prefixes",
    "format_scope_reflection_context",
    "is_test_file_path",
    "is_test_fix_prompt",
    "normalize_reflection_list",
    "parse_scope_reflection_response",
    "validate_edits_against_reflection",
]

MAX_REFLECTION_ENTRIES = 12

TEST_AREA_PREFIXES = ("frontend/src/__tests__/", "backend/tests/", "tests/")

_TEST_FILE_RE = re.compile(r"\.(test|spec)\.[jt]sx?$")
_TEST_FIX_PROMPT_RE = re.compile(r"fix\s+failing\s+test|failing\s+test|test\s+failure")
_FILE_SUFFIX_RE = re.compile(r"\.[A-Za-z0-9]+$")

ViolationType = Literal["tests-not-needed", "forbidden-area"]


@dataclass(slots=True)
class ScopeReflection:
    """Model-produced contract describing the smallest acceptable change."""

    reasoning: str = ""
    must_change: list[str] = field(default_factory=list)
    must_avoid: list[str] = field(default_factory=list)
    must_have: list[str] = field(default_factory=list)
    tests_needed: bool = True
    required_asset_paths: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ScopeViolation:
    """First edit found outside the scope contract."""

    type: ViolationType
    path: str
    message: str
    rule: Optional[str] = None


def normalize_reflection_list(value: Any) -> list[str]:
    """Keep up to twelve non-empty, trimmed string entries."""
    if not isinstance(value, list):
        return []
    entries = [entry.strip() for entry in value if isinstance(entry, str)]
    return [entry for entry in entries if entry][:MAX_REFLECTION_ENTRIES]


def _looks_like_path(entry: str) -> bool:
    if not entry or any(ch.isspace() for ch in entry):
        return False
    normalized = normalize_repo_path(entry)
    if not normalized:
        return False
    return "/" in normalized or bool(_FILE_SUFFIX_RE.search(normalized))


def derive_reflection_path_prefixes(entries: Iterable[str]) -> list[str]:
    """Map ``must_avoid`` entries to repo path prefixes.

    Path-like entries are used literally (with a trailing ``/``). Free-text
    entries that mention the backend, frontend or tests map to the canonical
    directories for those areas.
    """
    prefixes: list[str] = []

    def _add(prefix: str) -> None:
        if prefix not in prefixes:
            prefixes.append(prefix)

    for entry in entries:
        if not isinstance(entry, str):
            continue
        if _looks_like_path(entry):
            normalized = normalize_repo_path(entry)
            _add(normalized if normalized.endswith("/") else f"{normalized}/")
            continue

        lowered = entry.lower()
        if "backend" in lowered:
            _add("backend/")
        if "frontend" in lowered:
            _add("frontend/")
        if "test" in lowered:
            for prefix in TEST_AREA_PREFIXES:
                _add(prefix)
    return prefixes


def is_test_file_path(path: str | None) -> bool:
    if not path:
        return False
    return "__tests__/" in path or bool(_TEST_FILE_RE.search(path))


def is_test_fix_prompt(prompt: Any) -> bool:
    """Return True for prompts asking to repair failing tests."""
    if not isinstance(prompt, str):
        return False
    return bool(_TEST_FIX_PROMPT_RE.search(prompt.lower()))


def build_scope_reflection_prompt(*, project_info: str, goal_prompt: str) -> GenerateRequest:
    """Build the request asking the model for the goal's scope contract."""
    context_parts: list[str] = []
    project_text = project_info.strip() if isinstance(project_info, str) else ""
    goal_text = goal_prompt.strip() if isinstance(goal_prompt, str) else ""
    if project_text:
        context_parts.append(f"Project context:\n{project_text}")
    if goal_text:
        context_parts.append(f"User goal:\n{goal_text}")
    context = "\n\n".join(context_parts) or "User goal provided above."

    return GenerateRequest(
        messages=[
            {
                "role": "system",
                "content": (
                    "You are a careful planning assistant. Think step-by-step about what the user actually requested. "
                    "Return ONLY valid JSON with keys: reasoning (string), mustChange (array of repo paths or areas that must change), "
                    "mustAvoid (array of paths/areas that should remain untouched), mustHave (array of required behaviors or UI outcomes), "
                    "testsNeeded (boolean), and optionally requiredAssetPaths (array of asset paths the change depends on). "
                    "Mention only work that is strictly required to satisfy the request. Leave arrays empty when uncertain."
                ),
            },
            {
                "role": "user",
                "content": (
                    f"{context}\n\nDescribe the smallest set of changes that satisfy the goal "
                    "and list areas that should remain untouched."
                ),
            },
        ],
        max_tokens=600,
        temperature=0,
        purpose="goal-scope-reflection",
    )


def parse_scope_reflection_response(text: Any) -> ScopeReflection:
    """Parse the scope reflection reply; falls back to defaults on any problem."""
    raw = text if isinstance(text, str) else ""
    json_text = extract_json_object(raw) or raw
    if not json_text:
        return ScopeReflection()

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError:
        parsed = try_parse_loose_json(json_text)

    if not isinstance(parsed, dict):
        emit_event("scope_reflection.parse.default", preview=raw[:200])
        return ScopeReflection()

    reasoning = parsed.get("reasoning")
    tests_needed = parsed.get("testsNeeded")
    return ScopeReflection(
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
        must_change=normalize_reflection_list(parsed.get("mustChange")),
        must_avoid=normalize_reflection_list(parsed.get("mustAvoid")),
        must_have=normalize_reflection_list(parsed.get("mustHave")),
        tests_needed=tests_needed if isinstance(tests_needed, bool) else True,
        required_asset_paths=normalize_reflection_list(parsed.get("requiredAssetPaths")),
    )


def format_scope_reflection_context(reflection: ScopeReflection | None) -> str:
    """Render the reflection as a prompt block."""
    if reflection is None:
        return ""

    def _join(values: Sequence[str]) -> str:
        return ", ".join(values) if values else "None noted"

    lines: list[str] = []
    if reflection.reasoning.strip():
        lines.append(f"Summary: {reflection.reasoning.strip()}")
    lines.append(f"Must change: {_join(reflection.must_change)}")
    lines.append(f"Avoid changing: {_join(reflection.must_avoid)}")
    lines.append(f"Must have: {_join(reflection.must_have)}")
    if reflection.required_asset_paths:
        lines.append(f"Required assets: {_join(reflection.required_asset_paths)}")
    lines.append(f"Tests required: {'No' if reflection.tests_needed is False else 'Yes'}")
    return "\n\nScope reflection:\n" + "\n".join(lines)


def _within_prefix(path: str, prefix: str) -> bool:
    return path.startswith(prefix) or path == prefix.rstrip("/")


def validate_edits_against_reflection(
    edits: Sequence[Any] | None,
    reflection: ScopeReflection | None,
) -> ScopeViolation | None:
    """Return the first edit that violates ``reflection``, if any.

    The tests-needed rule is checked before the avoid prefixes, so a test file
    inside an avoided area reports ``tests-not-needed``. An avoided path also
    matches the file of exactly that name.
    """
    if reflection is None or not edits:
        return None

    avoid_prefixes = derive_reflection_path_prefixes(reflection.must_avoid)

    for raw_edit in edits:
        edit: StructuredEdit = coerce_edit(raw_edit)
        normalized = edit.normalized_path
        if not normalized:
            continue

        if reflection.tests_needed is False and is_test_file_path(normalized):
            return ScopeViolation(
                type="tests-not-needed",
                path=normalized,
                message="Scope reasoning determined new or updated tests are unnecessary for this goal.",
            )

        violating = next((prefix for prefix in avoid_prefixes if _within_prefix(normalized, prefix)), None)
        if violating:
            return ScopeViolation(
                type="forbidden-area",
                path=normalized,
                rule=violating,
                message=f"Edit to {normalized} conflicts with scope guidance to avoid {violating}.",
            )
    return None
