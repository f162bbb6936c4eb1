"""Repository snapshot context injected into edit prompts."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional

from .errors import CollaboratorError
from .project_api import ProjectFiles
from .structured import normalize_repo_path
from .telemetry import emit_event

LOGGER = logging.getLogger(__name__)

__all__ = [
    "RepoContext",
    "build_relevant_files_context",
    "extract_paths_from_test_failure_context",
    "normalize_mention_path",
]

DEFAULT_MAX_TREE_PATHS = 400

LARGE_FILE_CHAR_LIMIT = 30000
LARGE_FILE_HEAD_CHARS = 8000
LARGE_FILE_TAIL_CHARS = 4000

_FAILURE_CONTEXT_PATH_RE = re.compile(
    r"(frontend|backend|src|tests|app|server|lib|config)/[A-Za-z0-9._/\-]+", re.IGNORECASE
)
_PROMPT_PATH_RE = re.compile(r"(frontend/[A-Za-z0-9._/\-]+|src/[A-Za-z0-9._/\-]+)", re.IGNORECASE)
_NAV_RE = re.compile(r"\b(navbar|navigation bar|nav bar)\b", re.IGNORECASE)
_STYLE_RE = re.compile(r"\b(css|style|styling|stylesheet|theme)\b", re.IGNORECASE)
_ROUTING_RE = re.compile(r"\b(route|router|routing)\b", re.IGNORECASE)
_MAIN_ENTRY_RE = re.compile(r"^frontend/src/main\.(js|jsx|ts|tsx)$")
_APP_ENTRY_RE = re.compile(r"^frontend/src/App\.(js|jsx|ts|tsx)$")
_NAV_COMPONENT_RE = re.compile(r"NavBar\.(jsx|tsx|js|ts)$")
_NAV_STYLE_RE = re.compile(r"NavBar\.(module\.)?css$")
_ROUTING_FILE_RE = re.compile(r"(/router/|/routes/|router\.|routes\.).*\.(js|jsx|ts|tsx)$")

_ENTRY_POINT_CANDIDATES = (
    "frontend/package.json",
    "frontend/src/main.jsx",
    "frontend/src/main.tsx",
    "frontend/src/App.jsx",
    "frontend/src/App.tsx",
    "frontend/src/index.css",
    "frontend/src/App.css",
)


def normalize_mention_path(mention: Any) -> Optional[str]:
    """Anchor a mentioned path under ``frontend/`` unless it names a workspace."""
    normalized = normalize_repo_path(mention)
    if not normalized:
        return None
    if not normalized.startswith(("frontend/", "backend/")):
        normalized = f"frontend/{normalized}"
    return normalized


def extract_paths_from_test_failure_context(context: Optional[Mapping[str, Any]]) -> List[str]:
    """Collect file paths referenced by failing test ids and recent log lines."""
    if not isinstance(context, Mapping) or not isinstance(context.get("jobs"), list):
        return []

    collected: List[str] = []

    def _add(value: Optional[str]) -> None:
        if value and value not in collected:
            collected.append(value)

    for job in context["jobs"]:
        if not isinstance(job, Mapping):
            continue
        for failure_id in job.get("testFailures") or []:
            if not isinstance(failure_id, str):
                continue
            prefix = failure_id.split(">")[0].strip()
            if prefix:
                _add(normalize_mention_path(prefix))
        for line in job.get("recentLogs") or []:
            if not isinstance(line, str) or not line:
                continue
            for match in _FAILURE_CONTEXT_PATH_RE.finditer(line):
                _add(normalize_mention_path(match.group(0)))
    return collected


def _limit_large_file(text: str) -> str:
    if len(text) <= LARGE_FILE_CHAR_LIMIT:
        return text
    head = text[:LARGE_FILE_HEAD_CHARS]
    tail = text[-LARGE_FILE_TAIL_CHARS:]
    omitted = len(text) - (len(head) + len(tail))
    return f"{head}\n\n/* ...{omitted} chars omitted... */\n\n{tail}"


def _candidate_paths(goal_prompt: str, tree_paths: List[str], failure_paths: List[str]) -> List[str]:
    lower = goal_prompt.lower()
    mentions_nav = bool(_NAV_RE.search(goal_prompt)) or "nav" in lower
    candidates: List[str] = list(_ENTRY_POINT_CANDIDATES)

    if tree_paths:
        existing = set(tree_paths)
        for pattern in (_MAIN_ENTRY_RE, _APP_ENTRY_RE):
            match = next((path for path in tree_paths if pattern.search(path)), None)
            if match:
                candidates.append(match)
        for stylesheet in ("frontend/src/index.css", "frontend/src/App.css"):
            if stylesheet in existing:
                candidates.append(stylesheet)
        if mentions_nav:
            candidates.extend([path for path in tree_paths if _NAV_COMPONENT_RE.search(path)][:4])
            candidates.extend([path for path in tree_paths if _NAV_STYLE_RE.search(path)][:4])
        if _ROUTING_RE.search(goal_prompt):
            candidates.extend([path for path in tree_paths if _ROUTING_FILE_RE.search(path)][:6])

    for match in _PROMPT_PATH_RE.finditer(goal_prompt):
        mention = re.sub(r"[^A-Za-z0-9._/\-]+$", "", re.sub(r"^[^A-Za-z0-9]+", "", match.group(0)))
        normalized = normalize_mention_path(mention)
        if normalized:
            candidates.append(normalized)

    if mentions_nav:
        candidates.extend(
            [
                "frontend/src/components/NavBar.jsx",
                "frontend/src/components/NavBar.tsx",
                "frontend/src/components/NavBar.module.css",
            ]
        )
    if _STYLE_RE.search(goal_prompt):
        candidates.extend(
            [
                "frontend/src/components/NavBar.module.css",
                "frontend/src/components/NavBar.css",
                "frontend/src/styles.css",
            ]
        )
    candidates.extend(failure_paths)
    return list(dict.fromkeys(candidates))


def build_relevant_files_context(
    files: ProjectFiles,
    project_id: str,
    *,
    goal_prompt: Any,
    tree_paths: Iterable[str],
    test_failure_context: Optional[Mapping[str, Any]] = None,
) -> str:
    """Return read-only contents of the files most likely touched by the goal.

    Candidates outside the known tree are ignored, except for paths named by
    the failure context, which are listed even when unreadable or empty.
    """
    if not project_id:
        return ""

    normalized_tree = [path for path in (normalize_repo_path(p) for p in tree_paths) if path]
    existing = set(normalized_tree)
    failure_paths = extract_paths_from_test_failure_context(test_failure_context)
    allow_missing = set(failure_paths)
    prompt_text = goal_prompt if isinstance(goal_prompt, str) else ""

    sections: List[str] = []
    for candidate in _candidate_paths(prompt_text, normalized_tree, failure_paths):
        path = normalize_repo_path(candidate)
        if existing and path not in existing and path not in allow_missing:
            continue
        try:
            content = files.read_file(project_id, path)
        except CollaboratorError as error:
            LOGGER.debug("Unable to read %s for prompt context: %s", path, error)
            continue

        if content is None:
            if path in allow_missing:
                sections.append(f"--- {path} ---\n/* referenced in failure context but file content could not be loaded */")
            continue
        trimmed = content.strip()
        if not trimmed:
            if path in allow_missing:
                sections.append(f"--- {path} ---\n/* referenced in failure context but file is empty */")
            continue
        sections.append(f"--- {path} ---\n{_limit_large_file(trimmed)}")

    if not sections:
        return ""
    return "\n\nRelevant file contents (read-only context):\n\n" + "\n\n".join(sections)


class RepoContext:
    """Cached file tree, relevant-file snapshot and known paths for one goal."""

    def __init__(
        self,
        files: ProjectFiles,
        project_id: str,
        *,
        goal_prompt: str = "",
        test_failure_context: Optional[Mapping[str, Any]] = None,
        max_tree_paths: int = DEFAULT_MAX_TREE_PATHS,
    ) -> None:
        self._files = files
        self.project_id = project_id
        self.goal_prompt = goal_prompt
        self.test_failure_context = test_failure_context
        self.max_tree_paths = max_tree_paths
        self.known_paths: set[str] = set()
        self.tree_context = ""
        self.relevant_files_context = ""

    @property
    def prompt_context(self) -> str:
        return f"{self.tree_context}{self.relevant_files_context}"

    def refresh(self) -> None:
        """Fetch a fresh tree snapshot and rebuild the prompt context.

        A tree fetch failure keeps the previous tree text; known paths only
        ever grow so create-vs-update routing stays stable within a goal.
        """
        if not self.project_id:
            self.tree_context = ""
            self.relevant_files_context = ""
            return

        tree_paths: List[str] = []
        try:
            tree_paths = self._files.list_file_paths(self.project_id)
        except CollaboratorError as error:
            LOGGER.warning("Failed to fetch project file tree: %s", error)
            emit_event("process_goal.file_tree.error", message=str(error), status=error.status)
        else:
            limited = tree_paths[: self.max_tree_paths]
            self.tree_context = (
                f"\n\nRepo file tree (top {len(limited)} paths):\n\n" + "\n".join(limited) if limited else ""
            )
            emit_event("process_goal.file_tree", total_paths=len(tree_paths), included_paths=len(limited))

        self.relevant_files_context = build_relevant_files_context(
            self._files,
            self.project_id,
            goal_prompt=self.goal_prompt,
            tree_paths=tree_paths,
            test_failure_context=self.test_failure_context,
        )
        self.known_paths.update(path for path in tree_paths if path)
