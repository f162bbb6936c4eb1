from __future__ import annotations

import pytest

from conftest import ScriptedLLM, edits_response
from goalrunner.control import RunControl
from goalrunner.errors import GoalCancelledError, ReplacementNotFoundError
from goalrunner.models.llm_client import LLMTransportError
from goalrunner.structured import StructuredEdit
from goalrunner.tools.repair import RepairLadder, paths_are_equivalent, pick_repair_edit_for_path

MODIFY = {"type": "modify", "replacements": [{"search": "a", "replace": "b"}]}
UPSERT = {"type": "upsert", "content": "full file"}


def _failed_edit() -> StructuredEdit:
    return StructuredEdit(type="modify", path="src/a.js", replacements=[])


def test_paths_are_equivalent_by_suffix() -> None:
    assert paths_are_equivalent("frontend/src/a.js", "src/a.js")
    assert paths_are_equivalent("/src/a.js", "src/a.js")
    assert not paths_are_equivalent("src/ba.js", "a.js")


def test_pick_prefers_modify_over_upsert() -> None:
    edits = [{**UPSERT, "path": "src/a.js"}, {**MODIFY, "path": "src/a.js"}]
    picked = pick_repair_edit_for_path(edits, "src/a.js")
    assert picked is not None
    assert picked.type == "modify"


def test_pick_retargets_single_suffix_match() -> None:
    picked = pick_repair_edit_for_path([{**MODIFY, "path": "a.js"}, {**UPSERT, "path": "other.js"}], "src/a.js")
    assert picked is not None
    assert picked.path == "src/a.js"
    assert picked.type == "modify"


def test_pick_rejects_ambiguous_suffix_matches() -> None:
    edits = [{**MODIFY, "path": "a.js"}, {**MODIFY, "path": "x/src/a.js"}]
    assert pick_repair_edit_for_path(edits, "src/a.js") is None


def test_pick_accepts_lone_valid_edit_for_other_path() -> None:
    picked = pick_repair_edit_for_path([{**UPSERT, "path": "elsewhere.js"}, {"type": "delete", "path": "x"}], "src/a.js")
    assert picked is not None
    assert (picked.type, picked.path) == ("upsert", "src/a.js")


def test_pick_without_candidates() -> None:
    assert pick_repair_edit_for_path([], "src/a.js") is None
    assert pick_repair_edit_for_path([{"type": "modify", "path": "src/a.js"}], "src/a.js") is None


def test_repair_retries_after_parse_error() -> None:
    llm = ScriptedLLM(
        [
            '{"edits": [{"type": "modify" "path": "src/a.js"}]}',
            edits_response({**MODIFY, "path": "src/a.js"}),
        ]
    )
    picked = RepairLadder(llm).repair_modify_edit(
        goal_prompt="Change a",
        stage="implementation",
        file_path="src/a.js",
        original_content="a",
        failed_edit=_failed_edit(),
        error=ReplacementNotFoundError(),
    )
    assert picked is not None
    assert len(llm.requests) == 2
    assert "Replacement search text not found" in llm.requests[0].messages[1]["content"]


def test_repair_gives_up_on_transport_error() -> None:
    llm = ScriptedLLM([LLMTransportError("down", status=503)])
    picked = RepairLadder(llm).repair_modify_edit(
        goal_prompt="Change a",
        stage="implementation",
        file_path="src/a.js",
        original_content="a",
        failed_edit=_failed_edit(),
        error=ReplacementNotFoundError(),
    )
    assert picked is None
    assert len(llm.requests) == 1


def test_tests_stage_rewrite_passes_over_first_modify() -> None:
    llm = ScriptedLLM(
        [
            edits_response({**MODIFY, "path": "src/a.test.js"}),
            edits_response({**UPSERT, "path": "src/a.test.js"}),
        ]
    )
    picked = RepairLadder(llm).rewrite_file(
        goal_prompt="Update test",
        stage="tests",
        file_path="src/a.test.js",
        original_content="old",
        error_message="not found",
    )
    assert picked is not None
    assert picked.type == "upsert"
    assert picked.content == "full file"


def test_implementation_rewrite_accepts_modify() -> None:
    llm = ScriptedLLM([edits_response({**MODIFY, "path": "src/a.js"})])
    picked = RepairLadder(llm).rewrite_file(
        goal_prompt="Change a",
        stage="implementation",
        file_path="src/a.js",
        original_content="a",
        error_message="not found",
    )
    assert picked is not None
    assert picked.type == "modify"


def test_rewrite_prompt_truncates_large_files() -> None:
    llm = ScriptedLLM(['{"edits": []}', '{"edits": []}'])
    RepairLadder(llm).rewrite_file(
        goal_prompt="Change a",
        stage="implementation",
        file_path="src/a.js",
        original_content="x" * 9000,
        error_message="not found",
    )
    assert "/* ...truncated... */" in llm.requests[0].messages[1]["content"]
    assert llm.purposes() == ["goal-edits-rewrite:implementation"] * 2


def test_repair_rounds_stop_once_cancelled() -> None:
    control = RunControl()
    llm = ScriptedLLM(['{"edits": [{"type": "modify" "path": "src/a.js"}]}'])

    def _checkpoint() -> None:
        if llm.requests:
            control.cancel()
        control.checkpoint()

    with pytest.raises(GoalCancelledError):
        RepairLadder(llm).repair_modify_edit(
            goal_prompt="Change a",
            stage="implementation",
            file_path="src/a.js",
            original_content="a",
            failed_edit=_failed_edit(),
            error=ReplacementNotFoundError(),
            checkpoint=_checkpoint,
        )
    assert len(llm.requests) == 1


def test_rewrite_checks_before_first_round() -> None:
    llm = ScriptedLLM()
    control = RunControl()
    control.cancel()

    with pytest.raises(GoalCancelledError):
        RepairLadder(llm).rewrite_file(
            goal_prompt="Change a",
            stage="implementation",
            file_path="src/a.js",
            original_content="a",
            error_message="not found",
            checkpoint=control.checkpoint,
        )
    assert llm.requests == []
