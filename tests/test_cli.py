from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import pytest
import yaml
from typer.testing import CliRunner

from conftest import FakeGoalStore, InMemoryProjectFiles, ScriptedLLM, edits_response
from goalrunner import cli
from goalrunner.cli import app
from goalrunner.config import EngineConfig
from goalrunner.models.llm_client import LLMRetryError
from goalrunner.orchestrator import GoalPhaseController
from goalrunner.schema import Goal


def test_init_writes_default_config(tmp_path) -> None:
    config_path = tmp_path / "goalrunner.yaml"

    runner = CliRunner()
    result = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "Wrote configuration" in result.output
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["pipeline"]["enable_scope_reflection"] is True


def test_init_refuses_to_overwrite_without_force(tmp_path) -> None:
    config_path = tmp_path / "goalrunner.yaml"
    config_path.write_text("api: {}\n", encoding="utf-8")

    runner = CliRunner()
    result = runner.invoke(app, ["init", "--config", str(config_path)])
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert config_path.read_text(encoding="utf-8") == "api: {}\n"

    forced = runner.invoke(app, ["init", "--config", str(config_path), "--force"])
    assert forced.exit_code == 0, forced.output
    assert "llm" in yaml.safe_load(config_path.read_text(encoding="utf-8"))


def test_parse_edits_prints_recovered_edits(tmp_path) -> None:
    response_path = tmp_path / "response.txt"
    response_path.write_text(
        "Here you go:\n```json\n{edits: [{'type': 'upsert', 'path': 'src/a.js', 'content': 'x',}]}\n```\n",
        encoding="utf-8",
    )

    runner = CliRunner()
    result = runner.invoke(app, ["parse-edits", str(response_path)], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"edits": [{"type": "upsert", "path": "src/a.js", "content": "x"}]}


def test_parse_edits_reports_unrecoverable_json(tmp_path) -> None:
    response_path = tmp_path / "response.txt"
    response_path.write_text('{"edits": [{"type": "upsert" "path": "a.js"}]}', encoding="utf-8")

    runner = CliRunner()
    result = runner.invoke(app, ["parse-edits", str(response_path)])

    assert result.exit_code == 1
    assert "Unable to parse edits" in result.output


def _write_run_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "goalrunner.yaml"
    config_path.write_text("pipeline:\n  enable_scope_reflection: false\n", encoding="utf-8")
    return config_path


def _patch_controller(
    monkeypatch: pytest.MonkeyPatch,
    files: InMemoryProjectFiles,
    store: FakeGoalStore,
    llm: ScriptedLLM,
) -> None:
    def _from_config(config: EngineConfig, **kwargs: Any) -> GoalPhaseController:
        return GoalPhaseController(
            files=files,
            goals=store,
            generate=llm,
            config=config,
            callbacks=kwargs.get("callbacks"),
        )

    monkeypatch.setattr(cli.GoalPhaseController, "from_config", _from_config)


def test_run_processes_goals_with_failure_context(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    files = InMemoryProjectFiles({"frontend/src/App.jsx": "old"})
    store = FakeGoalStore([Goal(id="g1", prompt="Add a footer")])
    llm = ScriptedLLM(
        [
            edits_response({"type": "upsert", "path": "frontend/src/App.test.jsx", "content": "test"}),
            edits_response({"type": "upsert", "path": "frontend/src/App.jsx", "content": "new"}),
        ]
    )
    _patch_controller(monkeypatch, files, store, llm)
    failure_path = tmp_path / "failures.json"
    failure_path.write_text(
        json.dumps({"jobs": [{"label": "unit", "testFailures": ["src/App.test.jsx > renders footer"]}]}),
        encoding="utf-8",
    )

    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "run",
            "p1",
            "--config",
            str(_write_run_config(tmp_path)),
            "--project-name",
            "Demo",
            "--failure-context",
            str(failure_path),
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Processed 1 goal(s)." in result.output
    assert files.files["frontend/src/App.jsx"] == "new"
    assert store.phases_for("g1")[-1] == "ready"
    tests_prompt = llm.requests[0].messages[1]["content"]
    assert tests_prompt.startswith("Project: Demo")
    assert "Test failure context:" in tests_prompt


def test_run_exits_with_error_when_a_goal_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    files = InMemoryProjectFiles({"frontend/src/App.jsx": "old"})
    store = FakeGoalStore([Goal(id="g1", prompt="Add a footer")])
    llm = ScriptedLLM([LLMRetryError("Failed to obtain a model response after 3 attempt(s)")])
    _patch_controller(monkeypatch, files, store, llm)

    runner = CliRunner()
    result = runner.invoke(app, ["run", "p1", "--config", str(_write_run_config(tmp_path))])

    assert result.exit_code == 1
    assert "Processed 0 goal(s)." in result.output
    assert files.writes == []


def test_run_without_goals_reports_nothing_to_do(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_controller(monkeypatch, InMemoryProjectFiles(), FakeGoalStore(), ScriptedLLM())

    runner = CliRunner()
    result = runner.invoke(app, ["run", "p1", "--config", str(_write_run_config(tmp_path))])

    assert result.exit_code == 0, result.output
    assert "No goals to process." in result.output


def _patch_files(monkeypatch: pytest.MonkeyPatch, files: InMemoryProjectFiles) -> None:
    monkeypatch.setattr(cli, "ProjectFiles", lambda _http: files)


def test_apply_writes_edits_payload(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    files = InMemoryProjectFiles({"src/a.js": "const x = 1;\n"})
    _patch_files(monkeypatch, files)
    edits_path = tmp_path / "edits.json"
    edits_path.write_text(
        json.dumps(
            {
                "edits": [
                    {"type": "modify", "path": "src/a.js", "replacements": [{"search": "1", "replace": "2"}]},
                    {"type": "upsert", "path": "", "content": "skipped"},
                ]
            }
        ),
        encoding="utf-8",
    )

    runner = CliRunner()
    result = runner.invoke(
        app,
        ["apply", "p1", str(edits_path), "--config", str(tmp_path / "missing.yaml")],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Applied 1 edit(s), skipped 1." in result.output
    assert files.files["src/a.js"] == "const x = 2;\n"
    assert files.staged == ["src/a.js"]


def test_apply_accepts_bare_list_and_reports_failures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    files = InMemoryProjectFiles()
    _patch_files(monkeypatch, files)
    edits: List[Any] = [{"type": "modify", "path": "src/missing.js", "replacements": [{"search": "a", "replace": "b"}]}]
    edits_path = tmp_path / "edits.json"
    edits_path.write_text(json.dumps(edits), encoding="utf-8")

    runner = CliRunner()
    result = runner.invoke(app, ["apply", "p1", str(edits_path), "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Failed to apply edits" in result.output
    assert files.writes == []


def test_apply_rejects_payload_without_edits_list(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    files = InMemoryProjectFiles()
    _patch_files(monkeypatch, files)
    edits_path = tmp_path / "edits.json"
    edits_path.write_text(json.dumps({"edits": "nope"}), encoding="utf-8")

    runner = CliRunner()
    result = runner.invoke(app, ["apply", "p1", str(edits_path), "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "must hold a list" in result.output
