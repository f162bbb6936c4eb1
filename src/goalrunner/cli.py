"""CLI commands for running goals against a project backend."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from .config import (
    ConfigError,
    DEFAULT_CONFIG_NAME,
    EngineConfig,
    default_config_data,
    load_config,
    write_config,
)
from .errors import EditParseError, GoalRunnerError
from .http import JsonHttpClient
from .orchestrator import GoalCallbacks, GoalOptions, GoalPhaseController, build_goal_tree
from .parsing.edits import parse_edits
from .project_api import ProjectFiles
from .schema import Project
from .tools.apply_edits import EditApplier

APP_HELP = "Goal runner CLI entry point."

app = typer.Typer(help=APP_HELP)


def _load(config: str) -> EngineConfig:
    config_path = Path(config)
    try:
        return load_config(config_path if config_path.exists() else None)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(levelname)s %(name)s: %(message)s")


def _read_json_file(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        typer.echo(f"Failed to read {path}: {error}")
        raise typer.Exit(code=1) from error


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the goal runner configuration file.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, default_config_data())
    typer.echo(f"Wrote configuration to {config_path}")


@app.command()
def run(
    project_id: str = typer.Argument(..., help="Identifier of the project whose goals should run."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the goal runner configuration file.",
    ),
    project_name: str = typer.Option("", "--project-name", help="Project name shown to the model."),
    framework: Optional[str] = typer.Option(None, "--framework", help="Project framework shown to the model."),
    language: Optional[str] = typer.Option(None, "--language", help="Project language shown to the model."),
    project_path: Optional[str] = typer.Option(None, "--project-path", help="Project path shown to the model."),
    include_parents: Optional[bool] = typer.Option(
        None,
        "--include-parents/--children-only",
        help="Also process parent goals after their children.",
    ),
    failure_context: Optional[Path] = typer.Option(
        None,
        "--failure-context",
        help="JSON file with failing test jobs to include in prompts.",
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level for pipeline output."),
) -> None:
    """Process the pending goals of a project."""
    _configure_logging(log_level)
    engine_config = _load(config)

    callbacks = GoalCallbacks(
        on_message=lambda text, variant: typer.echo(text, err=variant == "error"),
        on_goal_count=lambda count: typer.echo(f"Goals: {count}"),
    )
    controller = GoalPhaseController.from_config(engine_config, callbacks=callbacks)
    project = Project(
        id=project_id,
        name=project_name,
        framework=framework,
        language=language,
        path=project_path,
    )
    options = GoalOptions(
        process_parent_goals=include_parents,
        test_failure_context=_read_json_file(failure_context) if failure_context else None,
    )

    try:
        goals = controller.goals.list_goals(project_id)
    except GoalRunnerError as error:
        typer.echo(f"Failed to fetch goals: {error}")
        raise typer.Exit(code=1) from error

    roots = build_goal_tree(goals)
    if not roots:
        typer.echo("No goals to process.")
        return

    result = controller.process_goals(roots, project_id, project_info=project.describe(), options=options)
    typer.echo(f"Processed {result.processed} goal(s).")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("parse-edits")
def parse_edits_command(
    response_path: Path = typer.Argument(..., help="File holding a saved model response."),
) -> None:
    """Print the edits recovered from a saved model response."""
    try:
        text = response_path.read_text(encoding="utf-8")
    except OSError as error:
        typer.echo(f"Failed to read {response_path}: {error}")
        raise typer.Exit(code=1) from error

    try:
        edits = parse_edits(text)
    except EditParseError as error:
        typer.echo(f"Unable to parse edits: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(json.dumps({"edits": [edit.to_dict() for edit in edits]}, indent=2))


@app.command()
def apply(
    project_id: str = typer.Argument(..., help="Identifier of the target project."),
    edits_path: Path = typer.Argument(..., help="JSON file with an edits payload."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the goal runner configuration file.",
    ),
) -> None:
    """Apply an edits JSON file to a project without model repair."""
    engine_config = _load(config)
    payload = _read_json_file(edits_path)
    entries = payload.get("edits") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        typer.echo("Edits file must hold a list or an object with an 'edits' list.")
        raise typer.Exit(code=1)

    files = ProjectFiles(JsonHttpClient(engine_config.api.base_url, timeout=engine_config.api.timeout))
    applier = EditApplier(files)
    try:
        summary = applier.apply_edits(project_id, entries)
    except GoalRunnerError as error:
        typer.echo(f"Failed to apply edits: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Applied {summary.applied} edit(s), skipped {summary.skipped}.")


if __name__ == "__main__":
    app()
