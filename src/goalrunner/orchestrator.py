"""Goal phase controller driving goals from planning to ready."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Literal, Mapping, Optional, Sequence

from .config import EngineConfig
from .context import RepoContext
from .control import RunControl
from .errors import (
    CollaboratorError,
    GoalCancelledError,
    GoalNotFoundError,
    GoalRunnerError,
)
from .http import JsonHttpClient
from .models.http_llm import HttpLLMClient
from .models.llm_client import GenerateRequest, LLMClientError
from .phases import PHASE_SEQUENCE, GoalPhase
from .phases.stage import StageResult, StageRunner
from .project_api import GoalStore, ProjectFiles
from .reflection import (
    ScopeReflection,
    build_scope_reflection_prompt,
    is_test_fix_prompt,
    parse_scope_reflection_response,
)
from .schema import Goal
from .telemetry import emit_event, preview
from .tools.apply_edits import EditApplier
from .tools.repair import RepairLadder

LOGGER = logging.getLogger(__name__)

Generate = Callable[[GenerateRequest], Any]
InstructionOnlyKind = Literal["branch-only", "stage-only", "verification-only"]
OutcomeStatus = Literal["completed", "skipped", "failed", "cancelled"]

INSTRUCTION_ONLY_PHASES = tuple(PHASE_SEQUENCE[1:])

NO_EDITS_APPLIED_MESSAGE = (
    "No repo edits were applied for this goal. The LLM likely returned no usable edits "
    "(or edits were skipped). Check the goalrunner.telemetry log for details."
)

_VERIFICATION_COMMAND_RE = re.compile(r"(\bnpm\b|\byarn\b|\bpnpm\b)\s+run\s+\btest\b", re.IGNORECASE)
_VERIFICATION_VERB_RE = re.compile(r"^(run|re-?run|execute|verify|check)\b", re.IGNORECASE)
_VERIFICATION_TARGET_RE = re.compile(
    r"(\bunit\s+tests\b|\bintegration\s+tests\b|\btests\b|\bvitest\b|\bcoverage\b)", re.IGNORECASE
)

__all__ = [
    "GoalCallbacks",
    "GoalOptions",
    "GoalOutcome",
    "GoalPhaseController",
    "GoalTreeResult",
    "build_goal_tree",
    "classify_instruction_only_goal",
    "describe_instruction_only_outcome",
    "is_coverage_remediation_goal",
]


def _is_programmatic_verification_step(text: str) -> bool:
    if _VERIFICATION_COMMAND_RE.search(text):
        return True
    if not _VERIFICATION_VERB_RE.search(text):
        return False
    return bool(_VERIFICATION_TARGET_RE.search(text))


def classify_instruction_only_goal(prompt: Any) -> Optional[InstructionOnlyKind]:
    """Return the instruction-only kind of ``prompt``, or ``None`` when edits are needed."""
    if not isinstance(prompt, str):
        return None
    normalized = prompt.strip().lower()
    if not normalized:
        return None
    if "create a branch" in normalized or "create new branch" in normalized:
        return "branch-only"
    if normalized.startswith("stage ") or "stage the updated" in normalized:
        return "stage-only"
    if _is_programmatic_verification_step(normalized):
        return "verification-only"
    return None


def describe_instruction_only_outcome(kind: Optional[str]) -> str:
    if kind == "branch-only":
        return "Branch setup handled automatically"
    if kind == "stage-only":
        return "Files are already staged after edits"
    if kind == "verification-only":
        return "Verification runs automatically after edits"
    return "No edits required"


def is_coverage_remediation_goal(goal: Goal) -> bool:
    """Return True for goals whose metadata scopes them to coverage work only."""
    metadata = goal.metadata or {}
    scope = metadata.get("scope")
    if isinstance(scope, str) and scope.strip().lower() == "coverage":
        return True
    return metadata.get("coverageOnly") is True


@dataclass(slots=True)
class GoalCallbacks:
    """Optional hooks through which the controller reports progress."""

    on_message: Optional[Callable[[str, str], Any]] = None
    on_goal_count: Optional[Callable[[int], Any]] = None
    request_editor_focus: Optional[Callable[[str, str], Any]] = None
    sync_branch_overview: Optional[Callable[[str, Any], Any]] = None

    def message(self, text: str, variant: str = "status") -> None:
        if self.on_message is not None:
            self.on_message(text, variant)


@dataclass(slots=True)
class GoalOptions:
    """Per-run overrides layered over the pipeline configuration."""

    tests_attempts: Any = None
    implementation_attempts: Any = None
    test_failure_context: Optional[Mapping[str, Any]] = None
    enable_scope_reflection: Optional[bool] = None
    allow_empty_stage: Optional[bool] = None
    force_implementation: Optional[bool] = None
    process_parent_goals: Optional[bool] = None


@dataclass(slots=True)
class GoalOutcome:
    """Result of processing one goal."""

    goal_id: str
    status: OutcomeStatus
    success: bool
    skipped_reason: Optional[str] = None
    error: Optional[str] = None
    edits_received: int = 0
    edits_applied: int = 0
    tests_attempt_succeeded: bool = False
    no_changes_required: bool = False


@dataclass(slots=True)
class GoalTreeResult:
    success: bool
    processed: int
    outcomes: List[GoalOutcome] = field(default_factory=list)


class GoalPhaseController:
    """Drive goals through testing and implementation against the backend."""

    def __init__(
        self,
        *,
        files: ProjectFiles,
        goals: GoalStore,
        generate: Generate,
        config: Optional[EngineConfig] = None,
        control: Optional[RunControl] = None,
        callbacks: Optional[GoalCallbacks] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.files = files
        self.goals = goals
        self.control = control or RunControl(poll_interval=self.config.pipeline.pause_poll_interval)
        self.callbacks = callbacks or GoalCallbacks()
        self._generate = generate
        self._applier = EditApplier(files, RepairLadder(generate))
        self._stages = StageRunner(
            generate=generate,
            applier=self._applier,
            control=self.control,
            logs_root=self.config.paths.logs,
            max_tokens=self.config.llm.max_tokens,
            temperature=self.config.llm.temperature,
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        control: Optional[RunControl] = None,
        callbacks: Optional[GoalCallbacks] = None,
    ) -> "GoalPhaseController":
        """Build a controller wired to the HTTP collaborators named in ``config``."""
        http = JsonHttpClient(config.api.base_url, timeout=config.api.timeout)
        llm = HttpLLMClient(
            base_url=config.api.base_url,
            timeout=config.llm.timeout,
            max_attempts=config.llm.max_attempts,
        )
        return cls(
            files=ProjectFiles(http),
            goals=GoalStore(http),
            generate=llm,
            config=config,
            control=control,
            callbacks=callbacks,
        )

    def _resolve(self, override: Optional[bool], default: bool) -> bool:
        return default if override is None else bool(override)

    def _advance(self, goal: Goal, phases: Iterable[GoalPhase]) -> None:
        for phase in phases:
            self.goals.advance_phase(goal.id, phase)
            goal.phase = phase
            emit_event("process_goal.phase", goal_id=goal.id, phase=phase)

    def _report_goal_count(self, project_id: Optional[str]) -> None:
        if not project_id or self.callbacks.on_goal_count is None:
            return
        self.callbacks.on_goal_count(len(self.goals.list_goals(project_id)))

    def _reflect(
        self,
        goal: Goal,
        project_info: str,
        test_failure_context: Optional[Mapping[str, Any]],
    ) -> Optional[ScopeReflection]:
        request = build_scope_reflection_prompt(project_info=project_info, goal_prompt=goal.prompt)
        try:
            reflection = parse_scope_reflection_response(self._generate(request))
        except (LLMClientError, CollaboratorError) as error:
            LOGGER.warning("Scope reflection failed for goal %s: %s", goal.id, error)
            emit_event("process_goal.scope_reflection.error", goal_id=goal.id, message=str(error))
            return None
        if test_failure_context or is_test_fix_prompt(goal.prompt):
            reflection.tests_needed = True
        emit_event(
            "process_goal.scope_reflection",
            goal_id=goal.id,
            tests_needed=reflection.tests_needed,
            must_change=reflection.must_change,
            must_avoid=reflection.must_avoid,
        )
        return reflection

    def _focus_callback(self, project_id: str) -> Optional[Callable[[str, Mapping[str, Any]], None]]:
        focus = self.callbacks.request_editor_focus
        if focus is None:
            return None
        last_focused = {"path": ""}

        def _on_file_applied(path: str, _info: Mapping[str, Any]) -> None:
            if not path or path == last_focused["path"]:
                return
            last_focused["path"] = path
            focus(project_id, path)

        return _on_file_applied

    def _complete_instruction_only(
        self,
        goal: Goal,
        project_id: Optional[str],
        kind: InstructionOnlyKind,
    ) -> GoalOutcome:
        emit_event("process_goal.instruction_only.skip", goal_id=goal.id, type=kind, prompt=preview(goal.prompt))
        self._advance(goal, INSTRUCTION_ONLY_PHASES)
        self._report_goal_count(project_id)
        note = describe_instruction_only_outcome(kind)
        self.callbacks.message(f"Completed ({note}): {goal.prompt}")
        return GoalOutcome(goal_id=goal.id, status="completed", success=True, skipped_reason=kind)

    def process_goal(
        self,
        goal: Goal,
        project_id: Optional[str],
        *,
        project_info: str = "",
        options: Optional[GoalOptions] = None,
    ) -> GoalOutcome:
        """Run ``goal`` through its phases and return the outcome.

        A goal deleted concurrently (phase advance answered 404) is reported
        as skipped. Cancellation yields a cancelled outcome. Every other
        pipeline error marks the goal failed.
        """
        opts = options or GoalOptions()
        pipeline = self.config.pipeline
        emit_event("process_goal.start", project_id=project_id, goal_id=goal.id, prompt=preview(goal.prompt, 240))

        try:
            self.control.checkpoint()
            kind = classify_instruction_only_goal(goal.prompt)
            if kind is not None:
                return self._complete_instruction_only(goal, project_id, kind)
            return self._run_stages(goal, project_id, project_info=project_info, options=opts)
        except GoalNotFoundError as error:
            emit_event("process_goal.goal_not_found", goal_id=goal.id, message=str(error))
            return GoalOutcome(
                goal_id=goal.id,
                status="skipped",
                success=True,
                skipped_reason="goal-not-found",
            )
        except GoalCancelledError:
            emit_event("process_goal.cancelled", goal_id=goal.id, phase=goal.phase)
            return GoalOutcome(goal_id=goal.id, status="cancelled", success=False, error="cancelled")
        except (GoalRunnerError, LLMClientError) as error:
            message = _describe_error(error)
            emit_event(
                "process_goal.error",
                project_id=project_id,
                goal_id=goal.id,
                message=message,
                status=getattr(error, "status", None),
                allow_empty_stage=pipeline.allow_empty_stage,
            )
            self.callbacks.message(f"Error processing goal: {message}", "error")
            self._mark_failed(goal)
            return GoalOutcome(goal_id=goal.id, status="failed", success=False, error=message)

    def _run_stages(
        self,
        goal: Goal,
        project_id: Optional[str],
        *,
        project_info: str,
        options: GoalOptions,
    ) -> GoalOutcome:
        pipeline = self.config.pipeline
        attempts = self.config.attempts
        failure_context = options.test_failure_context
        allow_empty = self._resolve(options.allow_empty_stage, pipeline.allow_empty_stage)

        reflection: Optional[ScopeReflection] = None
        if self._resolve(options.enable_scope_reflection, pipeline.enable_scope_reflection):
            reflection = self._reflect(goal, project_info, failure_context)
        tests_enabled = reflection is None or reflection.tests_needed is not False

        self._advance(goal, [GoalPhase.TESTING])
        self._report_goal_count(project_id)

        repo = RepoContext(
            self.files,
            project_id or "",
            goal_prompt=goal.prompt,
            test_failure_context=failure_context,
            max_tree_paths=pipeline.max_tree_paths,
        )
        repo.refresh()
        stage_kwargs: dict[str, Any] = {
            "goal_id": goal.id,
            "goal_prompt": goal.prompt,
            "repo": repo,
            "project_info": project_info,
            "scope_reflection": reflection,
            "test_failure_context": failure_context,
            "allow_empty": allow_empty,
            "on_file_applied": self._focus_callback(project_id or ""),
            "sync_branch_overview": self.callbacks.sync_branch_overview,
        }

        tests_result = StageResult(stage="tests", succeeded=not tests_enabled)
        if tests_enabled:
            tests_result = self._stages.run(
                stage="tests",
                attempts=options.tests_attempts if options.tests_attempts is not None else attempts.tests,
                **stage_kwargs,
            )
        else:
            emit_event("process_goal.tests.skipped", goal_id=goal.id, reason="scope-reflection")

        repo.refresh()
        self._advance(goal, [GoalPhase.IMPLEMENTING])

        impl_result = StageResult(stage="implementation")
        force = self._resolve(options.force_implementation, pipeline.force_implementation)
        if is_coverage_remediation_goal(goal) and not force:
            emit_event("process_goal.implementation.skipped", goal_id=goal.id, reason="coverage-remediation")
        else:
            impl_result = self._stages.run(
                stage="implementation",
                attempts=(
                    options.implementation_attempts
                    if options.implementation_attempts is not None
                    else attempts.implementation
                ),
                **stage_kwargs,
            )
            if impl_result.no_changes_required:
                self.callbacks.message(f"No code changes required for: {goal.prompt}")

        received = tests_result.edits_received + impl_result.edits_received
        applied = tests_result.edits_applied + impl_result.edits_applied
        emit_event("process_goal.edits.totals", goal_id=goal.id, total_received=received, total_applied=applied)

        if project_id and applied == 0 and not impl_result.no_changes_required:
            raise GoalRunnerError(NO_EDITS_APPLIED_MESSAGE, details={"goal_id": goal.id})

        self._advance(goal, [GoalPhase.VERIFYING, GoalPhase.READY])
        self._report_goal_count(project_id)
        self.callbacks.message(f"Completed: {goal.prompt}")
        return GoalOutcome(
            goal_id=goal.id,
            status="completed",
            success=True,
            edits_received=received,
            edits_applied=applied,
            tests_attempt_succeeded=tests_result.succeeded,
            no_changes_required=impl_result.no_changes_required,
        )

    def _mark_failed(self, goal: Goal) -> None:
        try:
            self.goals.advance_phase(goal.id, GoalPhase.FAILED)
        except (GoalRunnerError, LLMClientError) as error:
            LOGGER.warning("Unable to mark goal %s as failed: %s", goal.id, error)
            return
        goal.phase = GoalPhase.FAILED

    def process_goals(
        self,
        goals: Sequence[Goal],
        project_id: Optional[str],
        *,
        project_info: str = "",
        options: Optional[GoalOptions] = None,
    ) -> GoalTreeResult:
        """Process a goal tree depth-first, children before their parent.

        Parents with children are only processed themselves when
        ``process_parent_goals`` is enabled. Processing stops at the first
        goal that does not succeed.
        """
        opts = options or GoalOptions()
        include_parents = self._resolve(opts.process_parent_goals, self.config.pipeline.process_parent_goals)
        result = GoalTreeResult(success=True, processed=0)
        self._process_tree(list(goals), project_id, project_info, opts, include_parents, result)
        return result

    def _process_tree(
        self,
        goals: List[Goal],
        project_id: Optional[str],
        project_info: str,
        options: GoalOptions,
        include_parents: bool,
        result: GoalTreeResult,
    ) -> bool:
        for goal in goals:
            if goal.children:
                if not self._process_tree(goal.children, project_id, project_info, options, include_parents, result):
                    return False
                if not include_parents:
                    continue
            if goal.is_terminal:
                continue

            outcome = self.process_goal(goal, project_id, project_info=project_info, options=options)
            result.outcomes.append(outcome)
            if not outcome.success:
                result.success = False
                return False
            result.processed += 1
        return True


def build_goal_tree(goals: Sequence[Goal]) -> List[Goal]:
    """Nest a flat goal listing under parents and return the root goals.

    Goals whose parent is not part of the listing are treated as roots.
    Listings that already carry nested children are returned unchanged.
    """
    if any(goal.children for goal in goals):
        return [goal for goal in goals if not goal.parent_id]

    by_id = {goal.id: goal for goal in goals}
    roots: List[Goal] = []
    for goal in goals:
        parent = by_id.get(goal.parent_id) if goal.parent_id else None
        if parent is None or parent is goal:
            roots.append(goal)
        else:
            parent.children.append(goal)
    return roots


def _describe_error(error: BaseException) -> str:
    if isinstance(error, CollaboratorError) and error.server_message:
        return error.server_message
    return str(error) or "Unknown error"
