"""HTTP collaborators for project files, branch staging and the goal store."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, MutableSet, Optional

from .errors import CollaboratorError, FileOpError, GoalNotFoundError
from .http import JsonHttpClient, quote_path
from .phases import GoalPhase
from .schema import Goal
from .structured import normalize_repo_path

LOGGER = logging.getLogger(__name__)

__all__ = ["GoalStore", "ProjectFiles", "flatten_file_tree"]


def flatten_file_tree(nodes: Any, acc: Optional[List[str]] = None) -> List[str]:
    """Flatten nested file-tree nodes into repo-relative paths."""
    paths = [] if acc is None else acc
    if not isinstance(nodes, list):
        return paths

    for node in nodes:
        if not isinstance(node, Mapping):
            continue
        raw_path = node.get("path") or node.get("filePath") or node.get("name") or ""
        node_path = normalize_repo_path(raw_path)
        if node_path:
            paths.append(node_path)
        children = node.get("children")
        if isinstance(children, list) and children:
            flatten_file_tree(children, paths)
    return paths


class ProjectFiles:
    """File storage and branch staging operations for one backend."""

    def __init__(self, http: JsonHttpClient) -> None:
        self._http = http

    def _project_path(self, project_id: str, suffix: str) -> str:
        return f"projects/{quote_path(str(project_id))}/{suffix}"

    def read_file(self, project_id: str, file_path: str) -> Optional[str]:
        """Return the file content, or ``None`` when the file does not exist."""
        try:
            body = self._http.get(self._project_path(project_id, f"files/{quote_path(file_path)}"))
        except CollaboratorError as error:
            if error.status == 404:
                return None
            raise
        if isinstance(body, Mapping) and isinstance(body.get("content"), str):
            return body["content"]
        return ""

    def list_file_paths(self, project_id: str) -> List[str]:
        """Return the sorted, de-duplicated paths of the project file tree."""
        body = self._http.get(self._project_path(project_id, "files"))
        nodes = body.get("files") if isinstance(body, Mapping) else body
        return sorted(set(flatten_file_tree(nodes)))

    def create_file(self, project_id: str, file_path: str, content: str) -> Any:
        return self._http.post(
            self._project_path(project_id, "files-ops/create-file"),
            {"filePath": file_path, "content": content},
        )

    def update_file(self, project_id: str, file_path: str, content: str) -> Any:
        return self._http.put(
            self._project_path(project_id, f"files/{quote_path(file_path)}"),
            {"content": content},
        )

    def write_file(
        self,
        project_id: str,
        file_path: str,
        content: str,
        *,
        known_paths: Optional[MutableSet[str]] = None,
    ) -> Any:
        """Create or update ``file_path``.

        Unknown paths are created first (409 falls back to an update), known
        paths are updated first (404 falls back to a create). ``known_paths``
        is updated with every path written so later edits in the same batch
        route correctly.
        """
        use_known = known_paths is not None and len(known_paths) > 0

        if use_known and file_path not in known_paths:
            try:
                result = self.create_file(project_id, file_path, content)
            except CollaboratorError as error:
                if error.status != 409:
                    raise
            else:
                known_paths.add(file_path)
                return result

        try:
            result = self.update_file(project_id, file_path, content)
        except CollaboratorError as error:
            if error.status != 404:
                raise
        else:
            if use_known:
                known_paths.add(file_path)
            return result

        try:
            result = self.create_file(project_id, file_path, content)
        except CollaboratorError as error:
            if error.status in (400, 404):
                raise FileOpError(file_path, status=error.status, operation="create") from error
            raise
        if use_known:
            known_paths.add(file_path)
        return result

    def delete_path(self, project_id: str, target_path: str, *, recursive: bool = False) -> Any:
        return self._http.post(
            self._project_path(project_id, "files-ops/delete"),
            {"targetPath": target_path, "recursive": bool(recursive), "confirm": True},
        )

    def stage_file(self, project_id: str, file_path: str, *, source: str = "ai") -> Any:
        """Stage ``file_path`` on the working branch and return the response body."""
        return self._http.post(
            self._project_path(project_id, "branches/stage"),
            {"filePath": file_path, "source": source},
        )


class GoalStore:
    """Goal persistence collaborator."""

    def __init__(self, http: JsonHttpClient) -> None:
        self._http = http

    def advance_phase(
        self,
        goal_id: str,
        phase: GoalPhase | str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Move ``goal_id`` to ``phase``; raises ``GoalNotFoundError`` on 404."""
        phase_value = phase.value if isinstance(phase, GoalPhase) else str(phase)
        body: dict[str, Any] = {"phase": phase_value}
        if metadata:
            body["metadata"] = dict(metadata)
        try:
            return self._http.post(f"goals/{quote_path(str(goal_id))}/phase", body)
        except CollaboratorError as error:
            if error.status == 404:
                raise GoalNotFoundError(
                    f"Goal not found: {goal_id}",
                    status=404,
                    payload=error.payload,
                    details={"goal_id": goal_id, "phase": phase_value},
                ) from error
            raise

    def list_goals(self, project_id: str, *, include_archived: bool = False) -> List[Goal]:
        params: dict[str, Any] = {"projectId": project_id}
        if include_archived:
            params["includeArchived"] = 1
        body = self._http.get("goals", params=params)
        entries = body.get("goals") if isinstance(body, Mapping) else body
        return _coerce_goals(entries)


def _coerce_goals(entries: Any) -> List[Goal]:
    if not isinstance(entries, list):
        return []
    goals: List[Goal] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        try:
            goals.append(Goal.model_validate(entry))
        except ValueError as error:
            LOGGER.warning("Ignoring malformed goal payload: %s", error)
    return goals
