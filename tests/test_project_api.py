from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from goalrunner.errors import CollaboratorError, FileOpError, GoalNotFoundError
from goalrunner.http import HttpRequest, HttpResponse, JsonHttpClient
from goalrunner.phases import GoalPhase
from goalrunner.project_api import GoalStore, ProjectFiles, flatten_file_tree

BASE = "http://backend.test/api"


class FakeTransport:
    """Route ``(method, path)`` pairs to canned responses and record every request."""

    def __init__(self, routes: Dict[Tuple[str, str], HttpResponse]) -> None:
        self.routes = routes
        self.requests: List[HttpRequest] = []

    def __call__(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        path = request.url[len(BASE) + 1 :].split("?")[0]
        return self.routes.get((request.method, path), HttpResponse(status=500, body={"error": "unrouted"}))

    def calls(self) -> List[str]:
        return [f"{request.method} {request.url[len(BASE) + 1 :]}" for request in self.requests]


def _files(routes: Dict[Tuple[str, str], HttpResponse]) -> tuple[ProjectFiles, FakeTransport]:
    transport = FakeTransport(routes)
    return ProjectFiles(JsonHttpClient(BASE, transport=transport)), transport


def test_flatten_file_tree_walks_children() -> None:
    nodes = [
        {"path": "frontend", "children": [{"path": "frontend/src/App.jsx"}, {"filePath": "\\frontend\\main.jsx"}]},
        {"name": "README.md"},
        "junk",
    ]
    assert flatten_file_tree(nodes) == ["frontend", "frontend/src/App.jsx", "frontend/main.jsx", "README.md"]


def test_list_file_paths_sorts_and_deduplicates() -> None:
    files, _ = _files(
        {
            ("GET", "projects/p1/files"): HttpResponse(
                status=200,
                body={"files": [{"path": "b.js"}, {"path": "a.js"}, {"path": "b.js"}]},
            )
        }
    )
    assert files.list_file_paths("p1") == ["a.js", "b.js"]


def test_read_file_returns_none_for_missing_file() -> None:
    files, transport = _files({("GET", "projects/p1/files/src/a%20b.js"): HttpResponse(status=404)})

    assert files.read_file("p1", "src/a b.js") is None
    assert transport.calls() == ["GET projects/p1/files/src/a%20b.js"]


def test_read_file_returns_content() -> None:
    files, _ = _files({("GET", "projects/p1/files/src/a.js"): HttpResponse(status=200, body={"content": "x"})})
    assert files.read_file("p1", "src/a.js") == "x"


def test_read_file_propagates_server_errors() -> None:
    files, _ = _files({("GET", "projects/p1/files/src/a.js"): HttpResponse(status=500, body={"error": "disk"})})
    with pytest.raises(CollaboratorError) as excinfo:
        files.read_file("p1", "src/a.js")
    assert excinfo.value.status == 500


def test_unknown_path_is_created_and_tracked() -> None:
    files, transport = _files(
        {("POST", "projects/p1/files-ops/create-file"): HttpResponse(status=200, body={"success": True})}
    )
    known = {"src/a.js"}

    files.write_file("p1", "src/new.js", "content", known_paths=known)

    assert transport.calls() == ["POST projects/p1/files-ops/create-file"]
    assert transport.requests[0].body == {"filePath": "src/new.js", "content": "content"}
    assert known == {"src/a.js", "src/new.js"}


def test_create_conflict_falls_back_to_update() -> None:
    files, transport = _files(
        {
            ("POST", "projects/p1/files-ops/create-file"): HttpResponse(status=409),
            ("PUT", "projects/p1/files/src/new.js"): HttpResponse(status=200, body={"success": True}),
        }
    )
    known = {"src/a.js"}

    files.write_file("p1", "src/new.js", "content", known_paths=known)

    assert transport.calls() == ["POST projects/p1/files-ops/create-file", "PUT projects/p1/files/src/new.js"]
    assert "src/new.js" in known


def test_update_of_missing_file_falls_back_to_create() -> None:
    files, transport = _files(
        {
            ("PUT", "projects/p1/files/src/a.js"): HttpResponse(status=404),
            ("POST", "projects/p1/files-ops/create-file"): HttpResponse(status=200, body={}),
        }
    )

    files.write_file("p1", "src/a.js", "content")

    assert transport.calls() == ["PUT projects/p1/files/src/a.js", "POST projects/p1/files-ops/create-file"]


def test_rejected_create_raises_file_op_error() -> None:
    files, _ = _files(
        {
            ("PUT", "projects/p1/files/bad%20path.js"): HttpResponse(status=404),
            ("POST", "projects/p1/files-ops/create-file"): HttpResponse(status=400, body={"error": "invalid path"}),
        }
    )

    with pytest.raises(FileOpError) as excinfo:
        files.write_file("p1", "bad path.js", "content")

    assert excinfo.value.path == "bad path.js"
    assert excinfo.value.status == 400
    assert excinfo.value.operation == "create"


def test_delete_and_stage_payloads() -> None:
    files, transport = _files(
        {
            ("POST", "projects/p1/files-ops/delete"): HttpResponse(status=200, body={}),
            ("POST", "projects/p1/branches/stage"): HttpResponse(status=200, body={"overview": {"branch": "ai"}}),
        }
    )

    files.delete_path("p1", "old", recursive=True)
    staged = files.stage_file("p1", "src/a.js")

    assert transport.requests[0].body == {"targetPath": "old", "recursive": True, "confirm": True}
    assert transport.requests[1].body == {"filePath": "src/a.js", "source": "ai"}
    assert staged == {"overview": {"branch": "ai"}}


def test_advance_phase_posts_phase_value() -> None:
    transport = FakeTransport({("POST", "goals/7/phase"): HttpResponse(status=200, body={"id": 7})})
    store = GoalStore(JsonHttpClient(BASE, transport=transport))

    store.advance_phase("7", GoalPhase.IMPLEMENTING, {"note": "x"})

    assert transport.requests[0].body == {"phase": "implementing", "metadata": {"note": "x"}}


def test_advance_phase_for_deleted_goal_raises_not_found() -> None:
    transport = FakeTransport({("POST", "goals/7/phase"): HttpResponse(status=404, body={"error": "Goal not found"})})
    store = GoalStore(JsonHttpClient(BASE, transport=transport))

    with pytest.raises(GoalNotFoundError) as excinfo:
        store.advance_phase("7", "testing")
    assert excinfo.value.status == 404


def test_list_goals_validates_entries() -> None:
    body: Any = {
        "goals": [
            {"id": 1, "prompt": "Add footer", "phase": "testing", "projectId": 3},
            {"id": 2, "prompt": "child", "parentId": 1, "phase": "bogus"},
            {"prompt": "no id"},
        ]
    }
    transport = FakeTransport({("GET", "goals"): HttpResponse(status=200, body=body)})
    store = GoalStore(JsonHttpClient(BASE, transport=transport))

    goals = store.list_goals("3", include_archived=True)

    assert [goal.id for goal in goals] == ["1", "2"]
    assert goals[0].phase is GoalPhase.TESTING
    assert goals[1].phase is GoalPhase.PLANNING
    assert goals[1].parent_id == "1"
    assert transport.requests[0].url == f"{BASE}/goals?projectId=3&includeArchived=1"
