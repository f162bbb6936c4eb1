"""Model-assisted recovery for modify edits whose search text did not resolve."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from ..errors import CollaboratorError, EditParseError
from ..models.llm_client import GenerateRequest, LLMClientError
from ..parsing.edits import parse_edits
from ..prompts import build_modify_repair_prompt, build_rewrite_file_prompt
from ..structured import StructuredEdit, coerce_edit, normalize_repo_path
from ..telemetry import emit_event

LOGGER = logging.getLogger(__name__)

Generate = Callable[[GenerateRequest], Any]
Checkpoint = Callable[[], None]

REPAIR_ROUNDS: tuple[int, ...] = (1, 2)

__all__ = ["Checkpoint", "RepairLadder", "paths_are_equivalent", "pick_repair_edit_for_path"]


def paths_are_equivalent(left: Any, right: Any) -> bool:
    """Return True when two paths are equal or one is a suffix of the other."""
    a = normalize_repo_path(left)
    b = normalize_repo_path(right)
    if a == b:
        return True
    return a.endswith(f"/{b}") or b.endswith(f"/{a}")


def _retarget(edit: StructuredEdit, path: str) -> StructuredEdit:
    return StructuredEdit(
        type=edit.type,
        path=path,
        replacements=edit.replacements,
        content=edit.content,
        recursive=edit.recursive,
    )


def pick_repair_edit_for_path(edits: Sequence[Any], file_path: str) -> Optional[StructuredEdit]:
    """Choose the repair candidate that targets ``file_path``.

    Modify edits win over upserts. Within a kind an exact path wins, then a
    single suffix-equivalent edit. Failing both, a lone valid edit of either
    kind is accepted. Non-exact picks are retargeted to ``file_path``.
    """
    if not edits:
        return None

    target = normalize_repo_path(file_path)
    candidates = [coerce_edit(edit) for edit in edits]
    modifies = [e for e in candidates if e.type == "modify" and e.replacements is not None and e.normalized_path]
    upserts = [e for e in candidates if e.type == "upsert" and isinstance(e.content, str) and e.normalized_path]

    for group in (modifies, upserts):
        equivalent = [e for e in group if paths_are_equivalent(e.normalized_path, target)]
        exact = next((e for e in equivalent if e.normalized_path == target), None)
        if exact is not None:
            return exact
        if len(equivalent) == 1:
            return _retarget(equivalent[0], target)

    valid = modifies + upserts
    if len(valid) == 1:
        return _retarget(valid[0], target)
    return None


class RepairLadder:
    """Ask the model for a targeted fix, then for a full rewrite of a file."""

    def __init__(self, generate: Generate) -> None:
        self._generate = generate

    def _request_edits(self, request: GenerateRequest) -> list[StructuredEdit]:
        return parse_edits(self._generate(request))

    def repair_modify_edit(
        self,
        *,
        goal_prompt: str,
        stage: str,
        file_path: str,
        original_content: str,
        failed_edit: StructuredEdit,
        error: BaseException,
        checkpoint: Optional[Checkpoint] = None,
    ) -> Optional[StructuredEdit]:
        """Request corrected replacements; returns ``None`` when no candidate emerges."""
        emit_event("apply_edits.repair.start", path=file_path, stage=stage, message=str(error))

        for attempt in REPAIR_ROUNDS:
            if checkpoint is not None:
                checkpoint()
            request = build_modify_repair_prompt(
                goal_prompt=goal_prompt,
                stage=stage,
                file_path=file_path,
                file_content=original_content,
                failed_replacements=failed_edit.replacements,
                error_message=str(error),
                attempt=attempt,
            )
            try:
                edits = self._request_edits(request)
            except EditParseError as parse_error:
                emit_event(
                    "apply_edits.repair.error",
                    path=file_path,
                    attempt=attempt,
                    message=str(parse_error),
                    kind="parse",
                )
                continue
            except (LLMClientError, CollaboratorError) as request_error:
                emit_event(
                    "apply_edits.repair.error",
                    path=file_path,
                    attempt=attempt,
                    message=str(request_error),
                    status=getattr(request_error, "status", None),
                    kind="other",
                )
                return None

            candidate = pick_repair_edit_for_path(edits, file_path)
            emit_event(
                "apply_edits.repair.response",
                path=file_path,
                attempt=attempt,
                edits_count=len(edits),
                has_candidate=candidate is not None,
                candidate_type=candidate.type if candidate else None,
                sample=[{"type": e.type, "path": e.path} for e in edits[:2]],
            )
            if candidate is not None:
                return candidate
        return None

    def rewrite_file(
        self,
        *,
        goal_prompt: str,
        stage: str,
        file_path: str,
        original_content: str,
        error_message: str,
        checkpoint: Optional[Checkpoint] = None,
    ) -> Optional[StructuredEdit]:
        """Request the whole updated file.

        For the tests stage a modify candidate is passed over on the first
        round so the model gets one more chance to produce a full upsert.
        """
        emit_event("apply_edits.rewrite.start", path=file_path, stage=stage, message=error_message)
        prefer_upsert = stage == "tests"

        for attempt in REPAIR_ROUNDS:
            if checkpoint is not None:
                checkpoint()
            request = build_rewrite_file_prompt(
                goal_prompt=goal_prompt,
                stage=stage,
                file_path=file_path,
                file_content=original_content,
                error_message=error_message,
                attempt=attempt,
            )
            try:
                edits = self._request_edits(request)
            except EditParseError as parse_error:
                emit_event(
                    "apply_edits.rewrite.error",
                    path=file_path,
                    attempt=attempt,
                    message=str(parse_error),
                    kind="parse",
                )
                continue
            except (LLMClientError, CollaboratorError) as request_error:
                emit_event(
                    "apply_edits.rewrite.error",
                    path=file_path,
                    attempt=attempt,
                    message=str(request_error),
                    status=getattr(request_error, "status", None),
                    kind="other",
                )
                return None

            candidate = pick_repair_edit_for_path(edits, file_path)
            emit_event(
                "apply_edits.rewrite.response",
                path=file_path,
                attempt=attempt,
                edits_count=len(edits),
                has_candidate=candidate is not None,
                candidate_type=candidate.type if candidate else None,
            )
            if candidate is None:
                continue
            if candidate.type == "upsert" and isinstance(candidate.content, str):
                return candidate
            if candidate.type == "modify" and candidate.replacements is not None:
                if prefer_upsert and attempt < REPAIR_ROUNDS[-1]:
                    continue
                return candidate
        return None
