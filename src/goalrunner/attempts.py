"""Attempt budgets and the retry context carried between stage attempts."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from .errors import FileOpError, ReplacementError
from .reflection import ScopeViolation

__all__ = [
    "DEFAULT_ATTEMPT_SEQUENCE",
    "RetryContext",
    "build_empty_edits_retry_context",
    "build_file_op_retry_context",
    "build_replacement_retry_context",
    "build_scope_retry_context",
    "resolve_attempt_sequence",
]

DEFAULT_ATTEMPT_SEQUENCE: tuple[int, ...] = (1, 2)

_MAX_SUGGESTED_PATHS = 5


@dataclass(slots=True)
class RetryContext:
    """Hints from a failed attempt used to narrow the next prompt."""

    message: Optional[str] = None
    path: Optional[str] = None
    scope_warning: Optional[str] = None
    suggested_paths: list[str] = field(default_factory=list)
    search_snippet: Optional[str] = None


def _coerce_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def resolve_attempt_sequence(value: Any) -> tuple[int, ...]:
    """Normalise a configured retry budget into an ascending attempt sequence.

    A sequence is filtered to positive integers, de-duplicated and sorted. A
    single positive integer becomes a one-element sequence. Anything else,
    including a sequence with no usable entries, yields ``(1, 2)``.
    """
    if isinstance(value, (list, tuple, set, frozenset)):
        attempts = {_coerce_positive_int(item) for item in value} - {None}
        return tuple(sorted(attempts)) if attempts else DEFAULT_ATTEMPT_SEQUENCE

    single = _coerce_positive_int(value)
    if single is not None:
        return (single,)
    return DEFAULT_ATTEMPT_SEQUENCE


def build_replacement_retry_context(error: BaseException) -> RetryContext:
    """Carry the path and snippet of a failed replacement into the next attempt."""
    details = error.details if isinstance(error, ReplacementError) else {}
    message = details.get("message") or str(error) or "Replacement search text not found"
    return RetryContext(
        message=message,
        path=details.get("path"),
        search_snippet=details.get("search_snippet"),
    )


def build_scope_retry_context(violation: ScopeViolation) -> RetryContext:
    return RetryContext(
        message=violation.message,
        path=violation.path or None,
        scope_warning=violation.message,
    )


def build_empty_edits_retry_context(stage: str, previous: Optional[RetryContext]) -> RetryContext:
    """Ask explicitly for at least one edit, keeping earlier path/scope hints."""
    if stage == "tests":
        message = (
            "Previous attempt returned zero edits. Provide at least one edit that adds or updates "
            "the required test files."
        )
    else:
        message = (
            "Previous attempt returned zero edits. Provide the exact modifications needed to "
            "complete the feature request."
        )
    return RetryContext(
        message=message,
        path=previous.path if previous else None,
        scope_warning=previous.scope_warning if previous else None,
    )


def suggest_similar_paths(path: str, known_paths: Iterable[str], *, limit: int = _MAX_SUGGESTED_PATHS) -> list[str]:
    """Return known paths whose names resemble ``path``."""
    candidates: Sequence[str] = sorted(set(known_paths))
    if not path or not candidates:
        return []
    matches = difflib.get_close_matches(path, candidates, n=limit, cutoff=0.5)
    basename = path.rsplit("/", 1)[-1]
    for candidate in candidates:
        if len(matches) >= limit:
            break
        if candidate not in matches and candidate.rsplit("/", 1)[-1] == basename:
            matches.append(candidate)
    return matches


def build_file_op_retry_context(error: FileOpError, known_paths: Iterable[str]) -> RetryContext:
    """Point the next attempt at existing paths close to the one that failed."""
    status = f" (HTTP {error.status})" if error.status is not None else ""
    return RetryContext(
        message=f"{error}{status}. Use an existing directory or a valid repo-relative path.",
        path=error.path,
        suggested_paths=suggest_similar_paths(error.path, known_paths),
    )
