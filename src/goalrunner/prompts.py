"""Prompt templates and helpers shared across the edit stages."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Sequence

from .attempts import RetryContext
from .models.llm_client import GenerateRequest
from .reflection import ScopeReflection, format_scope_reflection_context
from .structured import ReplacementPair

EDIT_SCHEMA_INSTRUCTION = (
    "You are an automated code editor. Return ONLY valid JSON. Output format: {\"edits\":[...]} where each edit is one of: "
    "{\"type\":\"modify\",\"path\":\"...\",\"replacements\":[{\"search\":\"<exact unique snippet>\",\"replace\":\"<replacement>\"}]}, "
    "{\"type\":\"upsert\",\"path\":\"...\",\"content\":\"<full file content>\"}, "
    "{\"type\":\"delete\",\"path\":\"...\",\"recursive\":false}. "
    "Prefer type=\"modify\" with replacements. Each search MUST match exactly once. Use repo-relative POSIX paths. "
    "For styling requests, scope changes to the explicitly requested element/component/selector. "
    "Do NOT change global selectors (body, html, :root, *, or app-wide wrappers) unless the request explicitly asks "
    "for page-wide/app-wide/global styling."
)

STRICT_JSON_WARNING = (
    "Previous response was not valid JSON. Reply again using ONLY a single JSON object that matches the required schema. "
)

TEST_RUNNER_GUIDANCE = (
    "Use Vitest (vi) APIs and @testing-library for React tests. Do not use Jest globals or jest.*."
)

_STAGE_FOCUS = {
    "tests": (
        "Focus only on adding/updating tests first (TDD). Do not implement the feature beyond minimal scaffolding "
        "needed for tests to compile. Do not stub or remove required functionality just to satisfy tests."
    ),
    "implementation": (
        "Now implement the feature so the tests pass. Keep edits minimal and localized. Do not weaken or remove "
        "required functionality to make tests pass."
    ),
}

REPAIR_CONTENT_LIMIT = 8000
EDITS_MAX_TOKENS = 4000
REPAIR_MAX_TOKENS = 1200
REWRITE_MAX_TOKENS = 2000


def stage_label(stage: str) -> str:
    return "tests" if stage == "tests" else "implementation"


def _format_uncovered_lines(entries: Any) -> list[str]:
    summary: list[str] = []
    if not isinstance(entries, list):
        return summary
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        workspace = entry.get("workspace") if isinstance(entry.get("workspace"), str) else ""
        file_name = entry.get("file") if isinstance(entry.get("file"), str) else ""
        normalized = "/".join(part.strip() for part in (workspace, file_name) if part.strip())
        if not normalized:
            continue
        lines: list[int] = []
        for value in entry.get("lines") or []:
            try:
                lines.append(int(value))
            except (TypeError, ValueError):
                continue
        if lines:
            preview = ", ".join(str(line) for line in lines[:8])
            suffix = ", ..." if len(lines) > 8 else ""
            summary.append(f"{normalized} ({preview}{suffix})")
        else:
            summary.append(normalized)
        if len(summary) >= 4:
            break
    return summary


def format_test_failure_job(job: Any, index: int) -> str:
    """Render one test job of a failure context."""
    if not isinstance(job, Mapping):
        return ""

    label = job.get("label") or job.get("type") or job.get("kind") or f"Job {index + 1}"
    details: list[str] = []

    if job.get("status"):
        details.append(f"Status: {job['status']}")
    if job.get("duration"):
        details.append(f"Duration: {job['duration']}")
    if job.get("command"):
        args = job.get("args")
        arg_text = f" {' '.join(str(arg) for arg in args)}" if isinstance(args, list) and args else ""
        details.append(f"Command: {job['command']}{arg_text}".strip())
    if job.get("cwd"):
        details.append(f"CWD: {job['cwd']}")
    failures = job.get("testFailures")
    if isinstance(failures, list) and failures:
        details.append("Failing tests:\n- " + "\n- ".join(str(item) for item in failures))
    if job.get("error"):
        details.append(f"Error: {job['error']}")
    if job.get("coverage"):
        try:
            details.append(f"Coverage summary: {json.dumps(job['coverage'])}")
        except (TypeError, ValueError):
            pass
    uncovered = _format_uncovered_lines(job.get("uncoveredLines"))
    if uncovered:
        details.append(f"Uncovered lines: {'; '.join(uncovered)}")
    if job.get("failureReport"):
        details.append(f"Failure report:\n{job['failureReport']}")
    logs = job.get("recentLogs")
    if isinstance(logs, list) and logs:
        details.append("Recent logs:\n" + "\n".join(str(line) for line in logs))

    job_type = f" ({job['type']})" if job.get("type") else ""
    body = "\n" + "\n".join(details) if details else ""
    return f"Job: {label}{job_type}{body}".strip()


def format_test_failure_context(context: Optional[Mapping[str, Any]]) -> str:
    """Render the failing test jobs attached to a goal."""
    if not isinstance(context, Mapping):
        return ""
    jobs = context.get("jobs")
    if not isinstance(jobs, list) or not jobs:
        return ""
    sections = [section for section in (format_test_failure_job(job, i) for i, job in enumerate(jobs)) if section]
    if not sections:
        return ""
    return "\n\nTest failure context:\n\n" + "\n\n".join(sections)


def render_retry_notice(retry_context: Optional[RetryContext]) -> str:
    """Turn the previous failure into corrective instructions."""
    if retry_context is None:
        return ""

    notices: list[str] = []
    if retry_context.message or retry_context.path or retry_context.search_snippet:
        reason = retry_context.message or "the replacement snippet did not match the current file."
        notice = (
            f"Previous attempt failed while editing {retry_context.path or 'the target file'} because {reason} "
            "Provide replacements that exactly match the latest file contents. If you are unsure, output the entire "
            "updated file using type=\"upsert\"."
        )
        snippet = (retry_context.search_snippet or "").strip()
        if snippet:
            notice += f" Problematic search snippet: {retry_context.search_snippet[:200]}"
        notices.append(notice)

        lowered = (retry_context.message or "").lower()
        if "ambiguous" in lowered:
            notices.append(
                "The previous search snippet matched multiple locations. Use a longer, unique snippet with surrounding "
                "lines or return a full-file upsert."
            )
        elif "not found" in lowered:
            notices.append(
                "The previous search snippet did not match the file. Copy an exact, current snippet from the file "
                "content or return a full-file upsert."
            )

    if retry_context.scope_warning and retry_context.scope_warning.strip():
        notices.append(f"Scope reminder: {retry_context.scope_warning.strip()}")
    if retry_context.suggested_paths:
        notices.append(f"Existing paths with similar names: {', '.join(retry_context.suggested_paths)}")

    return "\n\n" + "\n\n".join(notices) if notices else ""


def build_edits_prompt(
    *,
    project_info: str,
    file_tree_context: str,
    goal_prompt: str,
    stage: str,
    attempt: int = 1,
    retry_context: Optional[RetryContext] = None,
    test_failure_context: Optional[Mapping[str, Any]] = None,
    scope_reflection: Optional[ScopeReflection] = None,
    max_tokens: int = EDITS_MAX_TOKENS,
    temperature: float = 0.0,
) -> GenerateRequest:
    """Build the request that asks the model for a stage's edits."""
    label = stage_label(stage)
    user_content = (
        f"{project_info}{file_tree_context}\n\nTask: {goal_prompt}\n\n"
        f"Stage: {label}. {_STAGE_FOCUS[label]} "
        "Honor layout/placement constraints in the task (e.g., top of page, full-width)."
    )
    if label == "tests":
        user_content += (
            f"\n\n{TEST_RUNNER_GUIDANCE} If you are unsure about precise replacements in test files, "
            "prefer returning a full-file upsert."
        )
    user_content += format_scope_reflection_context(scope_reflection)
    user_content += format_test_failure_context(test_failure_context)
    user_content += "\n\nReturn edits JSON only."
    user_content += render_retry_notice(retry_context)

    strict = STRICT_JSON_WARNING if attempt > 1 else ""
    return GenerateRequest(
        messages=[
            {"role": "system", "content": f"{strict}{EDIT_SCHEMA_INSTRUCTION}"},
            {"role": "user", "content": user_content},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
        purpose=f"goal-edits:{label}",
    )


def _limit_content(content: str) -> str:
    if len(content) > REPAIR_CONTENT_LIMIT:
        return f"{content[:REPAIR_CONTENT_LIMIT]}\n\n/* ...truncated... */"
    return content


def _repair_preamble(goal_prompt: str, stage: str) -> str:
    label = stage_label(stage)
    text = f"Goal (stage: {label}): {str(goal_prompt)[:400]}\n\n"
    if label == "tests":
        text += f"{TEST_RUNNER_GUIDANCE}\n\n"
    return text


def build_modify_repair_prompt(
    *,
    goal_prompt: str,
    stage: str,
    file_path: str,
    file_content: str,
    failed_replacements: Sequence[ReplacementPair] | None,
    error_message: str,
    attempt: int = 1,
) -> GenerateRequest:
    """Ask for corrected ``modify`` replacements against the current file."""
    if attempt >= 2:
        system = (
            "Return ONLY valid JSON. Do not use code fences. Do not include explanations. Output must start with { and end with }. "
            "Schema: {\"edits\":[{\"type\":\"modify\",\"path\":\"<exact filePath>\",\"replacements\":[{\"search\":\"<matches exactly once>\",\"replace\":\"...\"}]}]}. "
            "The search MUST match exactly once in the provided file content."
        )
    else:
        system = (
            "You are an automated code editor. Return ONLY valid JSON. Output format: {\"edits\":[...]} using only type=\"modify\". "
            "Each replacement.search MUST match exactly once in the provided file content (no 0 matches, no multiple matches). "
            "Use a longer, more specific snippet with surrounding lines if needed."
        )

    preview = [pair.to_dict() for pair in list(failed_replacements or [])[:3]]
    user = (
        _repair_preamble(goal_prompt, stage)
        + f"File path: {file_path}\n"
        + f"Previous modify edit failed with: {error_message}\n\n"
        + f"Failed replacements (for reference):\n{json.dumps(preview, indent=2)}\n\n"
        + f"File content (read-only):\n\n{_limit_content(file_content)}\n\n"
        + "Return JSON edits only."
    )
    return GenerateRequest(
        messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
        max_tokens=REPAIR_MAX_TOKENS,
        temperature=0,
        purpose=f"goal-edits-repair:{stage_label(stage)}",
    )


def build_rewrite_file_prompt(
    *,
    goal_prompt: str,
    stage: str,
    file_path: str,
    file_content: str,
    error_message: str,
    attempt: int = 1,
) -> GenerateRequest:
    """Ask for the complete updated file as a single ``upsert``."""
    if attempt >= 2:
        system = (
            "Return ONLY valid JSON. Schema: {\"edits\":[{\"type\":\"upsert\",\"path\":\"<exact filePath>\",\"content\":\"...\"}]}. "
            "The content MUST be the full file after applying the requested change. Do not omit context or use ellipses."
        )
    else:
        system = (
            "You are an automated code editor. Return ONLY valid JSON describing the entire updated file as a single upsert edit. "
            "The edit path must exactly match the provided file path, and the content must include the full file after applying the goal."
        )

    user = (
        _repair_preamble(goal_prompt, stage)
        + f"File path: {file_path}\n"
        + f"Previous edit failed with: {error_message}\n\n"
        + f"File content (read-only):\n\n{_limit_content(file_content)}\n\n"
        + "Return JSON edits only."
    )
    return GenerateRequest(
        messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
        max_tokens=REWRITE_MAX_TOKENS,
        temperature=0,
        purpose=f"goal-edits-rewrite:{stage_label(stage)}",
    )


__all__ = [
    "EDIT_SCHEMA_INSTRUCTION",
    "STRICT_JSON_WARNING",
    "TEST_RUNNER_GUIDANCE",
    "build_edits_prompt",
    "build_modify_repair_prompt",
    "build_rewrite_file_prompt",
    "format_test_failure_context",
    "format_test_failure_job",
    "render_retry_notice",
    "stage_label",
]
