"""Attempt loop shared by the tests and implementation stages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from ..attempts import (
    RetryContext,
    build_empty_edits_retry_context,
    build_file_op_retry_context,
    build_replacement_retry_context,
    build_scope_retry_context,
    resolve_attempt_sequence,
)
from ..context import RepoContext
from ..control import RunControl
from ..errors import (
    EditParseError,
    EmptyEditsError,
    FileOpError,
    ReplacementError,
    ScopeViolationError,
    is_replacement_resolution_error,
)
from ..models.llm_client import GenerateRequest
from ..parsing.edits import parse_edits, parse_text_from_llm_response
from ..prompts import build_edits_prompt, stage_label
from ..reflection import ScopeReflection, validate_edits_against_reflection
from ..telemetry import emit_event
from ..tools.apply_edits import EditApplier, FileAppliedCallback, OverviewCallback
from .base import write_stage_log

LOGGER = logging.getLogger(__name__)

Generate = Callable[[GenerateRequest], Any]

__all__ = ["StageResult", "StageRunner"]


@dataclass(slots=True)
class StageResult:
    """Outcome of one edit stage."""

    stage: str
    succeeded: bool = False
    edits_received: int = 0
    edits_applied: int = 0
    attempts_used: int = 0
    no_changes_required: bool = False


class StageRunner:
    """Request, validate and apply edits for a stage within an attempt budget."""

    def __init__(
        self,
        *,
        generate: Generate,
        applier: EditApplier,
        control: Optional[RunControl] = None,
        logs_root: Optional[Path] = None,
        max_tokens: int = 4000,
        temperature: float = 0.0,
    ) -> None:
        self._generate = generate
        self._applier = applier
        self._control = control
        self._logs_root = logs_root
        self._max_tokens = max_tokens
        self._temperature = temperature

    def _checkpoint(self) -> None:
        if self._control is not None:
            self._control.checkpoint()

    def run(
        self,
        *,
        goal_id: str,
        goal_prompt: str,
        stage: str,
        repo: RepoContext,
        project_info: str = "",
        attempts: Any = None,
        scope_reflection: Optional[ScopeReflection] = None,
        test_failure_context: Optional[Mapping[str, Any]] = None,
        allow_empty: bool = False,
        on_file_applied: Optional[FileAppliedCallback] = None,
        sync_branch_overview: Optional[OverviewCallback] = None,
    ) -> StageResult:
        """Run the attempt loop for ``stage``.

        Recoverable errors (unparsable JSON, unresolved replacements, scope
        violations, empty edit lists and file-op failures) feed a retry
        context into the next attempt. On the last attempt they propagate.
        An implementation stage whose last attempt returns no edits while the
        scope reflection lists nothing that must change concludes that no
        change is required.
        """
        label = stage_label(stage)
        sequence: Sequence[int] = resolve_attempt_sequence(attempts)
        last_attempt = sequence[-1]
        must_change = scope_reflection.must_change if scope_reflection else []
        result = StageResult(stage=label)
        retry: Optional[RetryContext] = None

        for attempt in sequence:
            result.attempts_used += 1
            self._checkpoint()
            request = build_edits_prompt(
                project_info=project_info,
                file_tree_context=repo.prompt_context,
                goal_prompt=goal_prompt,
                stage=label,
                attempt=attempt,
                retry_context=retry,
                test_failure_context=test_failure_context,
                scope_reflection=scope_reflection,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
            response = self._generate(request)
            edits_count: Optional[int] = None
            failure: BaseException | None = None

            try:
                edits = parse_edits(response)
                edits_count = len(edits)
                result.edits_received += len(edits)
                emit_event(
                    f"process_goal.{label}.parsed_edits",
                    attempt=attempt,
                    count=len(edits),
                    sample=[{"type": edit.type, "path": edit.path} for edit in edits[:5]],
                )

                if not edits:
                    emit_event(
                        f"process_goal.{label}.empty_edits",
                        attempt=attempt,
                        preview=parse_text_from_llm_response(response)[:500],
                    )
                    concluded = label == "implementation" and attempt == last_attempt and not must_change
                    if allow_empty or concluded:
                        result.succeeded = True
                        result.no_changes_required = label == "implementation"
                        retry = None
                        break
                    raise EmptyEditsError(label)

                violation = validate_edits_against_reflection(edits, scope_reflection)
                if violation is not None:
                    raise ScopeViolationError(violation)

                summary = self._applier.apply_edits(
                    repo.project_id,
                    edits,
                    known_paths=repo.known_paths,
                    goal_prompt=goal_prompt,
                    stage=label,
                    on_file_applied=on_file_applied,
                    sync_branch_overview=sync_branch_overview,
                    checkpoint=self._checkpoint,
                )
                result.edits_applied += summary.applied
                emit_event(
                    f"process_goal.{label}.apply_summary",
                    attempt=attempt,
                    applied=summary.applied,
                    skipped=summary.skipped,
                )
                result.succeeded = True
                retry = None
                break
            except EditParseError as error:
                failure = error
                LOGGER.warning("Failed to parse %s edits on attempt %s: %s", label, attempt, error)
                emit_event(f"process_goal.{label}.parse_error", attempt=attempt, message=str(error))
                if attempt == last_attempt:
                    raise
            except ReplacementError as error:
                failure = error
                if not is_replacement_resolution_error(error) or attempt >= last_attempt:
                    raise
                retry = build_replacement_retry_context(error)
                emit_event(
                    f"process_goal.{label}.replacement_retry",
                    attempt=attempt,
                    path=retry.path,
                    message=retry.message,
                )
                repo.refresh()
            except ScopeViolationError as error:
                failure = error
                emit_event(
                    f"process_goal.{label}.scope_violation",
                    attempt=attempt,
                    message=str(error),
                    rule=error.violation.rule,
                    path=error.violation.path,
                )
                if attempt == last_attempt:
                    raise
                retry = build_scope_retry_context(error.violation)
            except EmptyEditsError as error:
                failure = error
                emit_event(f"process_goal.{label}.empty_edits_error", attempt=attempt, message=str(error))
                if attempt == last_attempt:
                    raise
                retry = build_empty_edits_retry_context(label, retry)
            except FileOpError as error:
                failure = error
                emit_event(
                    f"process_goal.{label}.file_op_error",
                    attempt=attempt,
                    path=error.path,
                    status=error.status,
                )
                if attempt == last_attempt:
                    raise
                retry = build_file_op_retry_context(error, repo.known_paths)
            finally:
                write_stage_log(
                    self._logs_root,
                    stage=label,
                    goal_id=goal_id,
                    attempt=attempt,
                    request=request,
                    raw=response,
                    edits_count=edits_count,
                    error=failure,
                )

        return result
