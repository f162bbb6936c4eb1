from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, MutableSet, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from goalrunner.config import EngineConfig  # noqa: E402
from goalrunner.errors import GoalNotFoundError  # noqa: E402
from goalrunner.models.llm_client import GenerateRequest  # noqa: E402
from goalrunner.phases import GoalPhase  # noqa: E402
from goalrunner.schema import Goal  # noqa: E402


class InMemoryProjectFiles:
    """Project file collaborator backed by a dictionary."""

    def __init__(self, files: Optional[Mapping[str, str]] = None) -> None:
        self.files: Dict[str, str] = dict(files or {})
        self.writes: List[str] = []
        self.staged: List[str] = []
        self.deleted: List[str] = []
        self.reads: List[str] = []
        self.overview: Any = None

    def read_file(self, project_id: str, file_path: str) -> Optional[str]:
        self.reads.append(file_path)
        return self.files.get(file_path)

    def list_file_paths(self, project_id: str) -> List[str]:
        return sorted(self.files)

    def write_file(
        self,
        project_id: str,
        file_path: str,
        content: str,
        *,
        known_paths: Optional[MutableSet[str]] = None,
    ) -> Any:
        self.files[file_path] = content
        self.writes.append(file_path)
        if known_paths is not None:
            known_paths.add(file_path)
        return {"success": True}

    def delete_path(self, project_id: str, target_path: str, *, recursive: bool = False) -> Any:
        self.deleted.append(target_path)
        for path in list(self.files):
            if path == target_path or (recursive and path.startswith(f"{target_path}/")):
                del self.files[path]
        return {"success": True}

    def stage_file(self, project_id: str, file_path: str, *, source: str = "ai") -> Any:
        self.staged.append(file_path)
        if self.overview is not None:
            return {"success": True, "overview": self.overview}
        return {"success": True}


class FakeGoalStore:
    """Goal store that records phase advances."""

    def __init__(self, goals: Sequence[Goal] = ()) -> None:
        self.goals: List[Goal] = list(goals)
        self.advances: List[tuple[str, str]] = []
        self.missing: set[str] = set()

    def advance_phase(self, goal_id: str, phase: Any, metadata: Any = None) -> Any:
        value = phase.value if isinstance(phase, GoalPhase) else str(phase)
        if goal_id in self.missing:
            raise GoalNotFoundError(f"Goal not found: {goal_id}", status=404)
        self.advances.append((goal_id, value))
        return {"id": goal_id, "phase": value}

    def list_goals(self, project_id: str, *, include_archived: bool = False) -> List[Goal]:
        return list(self.goals)

    def phases_for(self, goal_id: str) -> List[str]:
        return [phase for advanced_id, phase in self.advances if advanced_id == goal_id]


@dataclass
class ScriptedLLM:
    """Callable model stand-in returning scripted responses in order."""

    responses: List[Any] = field(default_factory=list)
    requests: List[GenerateRequest] = field(default_factory=list)

    def __call__(self, request: GenerateRequest) -> Any:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected model call for purpose {request.purpose!r}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(request)
        return response

    def purposes(self) -> List[Optional[str]]:
        return [request.purpose for request in self.requests]


def edits_response(*edits: Mapping[str, Any]) -> str:
    """Serialise edits into the wire format returned by the model."""
    return json.dumps({"edits": list(edits)})


@pytest.fixture()
def project_files() -> InMemoryProjectFiles:
    return InMemoryProjectFiles()


@pytest.fixture()
def goal_store() -> FakeGoalStore:
    return FakeGoalStore()


@pytest.fixture()
def make_config() -> Callable[..., EngineConfig]:
    """Build an ``EngineConfig`` with scope reflection disabled unless requested."""

    def _factory(**pipeline: Any) -> EngineConfig:
        settings: Dict[str, Any] = {"enable_scope_reflection": False}
        settings.update(pipeline)
        return EngineConfig.model_validate({"pipeline": settings})

    return _factory
