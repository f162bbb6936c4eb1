"""Apply structured edits to a project through the file collaborator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableSet, Optional, Sequence

from ..errors import FileNotFoundInProjectError, ReplacementError, is_replacement_resolution_error
from ..project_api import ProjectFiles
from ..structured import StructuredEdit, coerce_edit
from ..telemetry import emit_event
from .repair import Checkpoint, RepairLadder
from .replacements import apply_replacements

LOGGER = logging.getLogger(__name__)

FileAppliedCallback = Callable[[str, Mapping[str, Any]], Any]
OverviewCallback = Callable[[str, Any], Any]

_SNIPPET_LIMIT = 160

__all__ = ["ApplySummary", "Checkpoint", "EditApplier"]


@dataclass(slots=True)
class ApplySummary:
    applied: int = 0
    skipped: int = 0


def _replacement_preview(edit: StructuredEdit) -> list[dict[str, Optional[str]]]:
    preview: list[dict[str, Optional[str]]] = []
    for pair in (edit.replacements or [])[:2]:
        search = pair.search[:_SNIPPET_LIMIT] if isinstance(pair.search, str) else None
        preview.append({"search_preview": search})
    return preview


class EditApplier:
    """Apply edits in order, staging every written path on the working branch."""

    def __init__(self, files: ProjectFiles, ladder: Optional[RepairLadder] = None) -> None:
        self._files = files
        self._ladder = ladder

    def apply_edits(
        self,
        project_id: str,
        edits: Sequence[Any] | None,
        *,
        known_paths: Optional[MutableSet[str]] = None,
        goal_prompt: Optional[str] = None,
        stage: str = "implementation",
        on_file_applied: Optional[FileAppliedCallback] = None,
        sync_branch_overview: Optional[OverviewCallback] = None,
        source: str = "ai",
        checkpoint: Optional[Checkpoint] = None,
    ) -> ApplySummary:
        """Apply ``edits`` and return how many were applied or skipped.

        Edits without a usable path, upserts without string content and
        modifications that leave the file unchanged are skipped. The first
        failure aborts the batch; edits already applied stay applied.
        ``checkpoint`` runs before each edit and before each repair round; a
        cancelled run stops between write-and-stage pairs.
        """
        summary = ApplySummary()
        if not project_id or not edits:
            return summary

        for raw_edit in edits:
            if checkpoint is not None:
                checkpoint()
            edit = coerce_edit(raw_edit)
            path = edit.normalized_path
            if not path:
                summary.skipped += 1
                LOGGER.debug("Skipping edit with missing or invalid path (type=%s)", edit.type)
                continue

            if edit.type == "modify":
                original = self._files.read_file(project_id, path)
                if original is None:
                    raise FileNotFoundInProjectError(path)
                updated = self._resolve_modify(
                    edit, path, original, goal_prompt=goal_prompt, stage=stage, checkpoint=checkpoint
                )
                if updated == original:
                    summary.skipped += 1
                    LOGGER.debug("Skipping no-op modify for %s", path)
                    continue
                self._files.write_file(project_id, path, updated, known_paths=known_paths)
                self._stage(project_id, path, source, sync_branch_overview)
                if on_file_applied is not None:
                    on_file_applied(path, {"type": "modify"})
                summary.applied += 1
                continue

            if edit.type == "delete":
                self._files.delete_path(project_id, path, recursive=edit.recursive)
                self._stage(project_id, path, source, sync_branch_overview)
                if on_file_applied is not None:
                    on_file_applied(path, {"type": "delete"})
                summary.applied += 1
                continue

            if not isinstance(edit.content, str):
                summary.skipped += 1
                LOGGER.debug("Skipping upsert for %s without string content", path)
                continue
            self._files.write_file(project_id, path, edit.content, known_paths=known_paths)
            self._stage(project_id, path, source, sync_branch_overview)
            if on_file_applied is not None:
                on_file_applied(path, {"type": "upsert"})
            summary.applied += 1

        return summary

    def _stage(
        self,
        project_id: str,
        path: str,
        source: str,
        sync_branch_overview: Optional[OverviewCallback],
    ) -> None:
        payload = self._files.stage_file(project_id, path, source=source)
        if sync_branch_overview is not None and isinstance(payload, Mapping) and payload.get("overview"):
            sync_branch_overview(project_id, payload["overview"])

    def _resolve_modify(
        self,
        edit: StructuredEdit,
        path: str,
        original: str,
        *,
        goal_prompt: Optional[str],
        stage: str,
        checkpoint: Optional[Checkpoint] = None,
    ) -> str:
        try:
            return apply_replacements(original, edit.replacements)
        except ReplacementError as error:
            preview = _replacement_preview(edit)
            error.details.update(
                {
                    "path": path,
                    "stage": stage,
                    "message": str(error),
                    "search_snippet": preview[0]["search_preview"] if preview else None,
                }
            )
            emit_event("apply_edits.modify.replacement_error", path=path, message=str(error), preview=preview)

            ladder = self._ladder
            if ladder is None or not is_replacement_resolution_error(error):
                raise
            if not isinstance(goal_prompt, str) or not goal_prompt.strip():
                raise
            return self._repair(
                ladder, edit, path, original, error, goal_prompt=goal_prompt, stage=stage, checkpoint=checkpoint
            )

    def _repair(
        self,
        ladder: RepairLadder,
        edit: StructuredEdit,
        path: str,
        original: str,
        error: ReplacementError,
        *,
        goal_prompt: str,
        stage: str,
        checkpoint: Optional[Checkpoint] = None,
    ) -> str:
        repaired = ladder.repair_modify_edit(
            goal_prompt=goal_prompt,
            stage=stage,
            file_path=path,
            original_content=original,
            failed_edit=edit,
            error=error,
            checkpoint=checkpoint,
        )
        if repaired is not None and repaired.type == "modify" and repaired.replacements is not None:
            try:
                updated = apply_replacements(original, repaired.replacements)
            except ReplacementError as repair_error:
                emit_event("apply_edits.repair.apply_error", path=path, message=str(repair_error))
                raise error from repair_error
            edit.replacements = repaired.replacements
            return updated
        if repaired is not None and repaired.type == "upsert" and isinstance(repaired.content, str):
            return repaired.content

        rewrite = ladder.rewrite_file(
            goal_prompt=goal_prompt,
            stage=stage,
            file_path=path,
            original_content=original,
            error_message=str(error) or "Unknown replacement failure",
            checkpoint=checkpoint,
        )
        if rewrite is not None and rewrite.type == "upsert" and isinstance(rewrite.content, str):
            edit.replacements = None
            return rewrite.content
        if rewrite is not None and rewrite.type == "modify" and rewrite.replacements is not None:
            try:
                updated = apply_replacements(original, rewrite.replacements)
            except ReplacementError as rewrite_error:
                emit_event("apply_edits.rewrite.apply_error", path=path, message=str(rewrite_error))
                raise error from rewrite_error
            edit.replacements = rewrite.replacements
            return updated
        raise error
