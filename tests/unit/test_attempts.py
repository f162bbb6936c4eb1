from __future__ import annotations

import pytest

from goalrunner.attempts import (
    DEFAULT_ATTEMPT_SEQUENCE,
    RetryContext,
    build_empty_edits_retry_context,
    build_file_op_retry_context,
    build_replacement_retry_context,
    build_scope_retry_context,
    resolve_attempt_sequence,
)
from goalrunner.errors import FileOpError, ReplacementNotFoundError
from goalrunner.reflection import ScopeViolation


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, (1, 2)),
        ([], (1, 2)),
        ([3, 1, 3, "2"], (1, 2, 3)),
        ([0, -1, "x"], (1, 2)),
        (4, (4,)),
        ("3", (3,)),
        (True, (1, 2)),
        ("many", (1, 2)),
    ],
)
def test_resolve_attempt_sequence(value: object, expected: tuple[int, ...]) -> None:
    assert resolve_attempt_sequence(value) == expected


def test_default_sequence_is_two_attempts() -> None:
    assert DEFAULT_ATTEMPT_SEQUENCE == (1, 2)


def test_replacement_retry_context_uses_error_details() -> None:
    error = ReplacementNotFoundError(details={"path": "src/a.js", "search_snippet": "const x"})
    context = build_replacement_retry_context(error)

    assert context.path == "src/a.js"
    assert context.search_snippet == "const x"
    assert context.message == "Replacement search text not found"


def test_scope_retry_context_carries_warning() -> None:
    violation = ScopeViolation(type="forbidden-area", path="backend/a.js", message="Stay out", rule="backend/")
    context = build_scope_retry_context(violation)
    assert context.scope_warning == "Stay out"
    assert context.path == "backend/a.js"


def test_empty_edits_retry_keeps_previous_hints() -> None:
    previous = RetryContext(message="old", path="src/a.js", scope_warning="careful")
    context = build_empty_edits_retry_context("tests", previous)

    assert "zero edits" in context.message
    assert "test files" in context.message
    assert context.path == "src/a.js"
    assert context.scope_warning == "careful"


def test_file_op_retry_suggests_similar_paths() -> None:
    error = FileOpError("frontend/src/component/Header.jsx", status=404, operation="create")
    context = build_file_op_retry_context(
        error,
        {"frontend/src/components/Header.jsx", "backend/server.js"},
    )

    assert context.path == "frontend/src/component/Header.jsx"
    assert "HTTP 404" in context.message
    assert context.suggested_paths == ["frontend/src/components/Header.jsx"]
