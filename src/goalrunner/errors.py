"""Error taxonomy shared by the goal execution pipeline."""

from __future__ import annotations

from typing import Any, Mapping


class GoalRunnerError(RuntimeError):
    """Base error raised by the goal runner with structured details."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})

    @property
    def message(self) -> str:
        return str(self)


class EditParseError(GoalRunnerError):
    """Raised when a model response holds JSON that cannot be recovered."""


class ReplacementError(GoalRunnerError):
    """Raised when a search/replace pair cannot be applied to file content."""


class ReplacementNotFoundError(ReplacementError):
    """Raised when a search snippet does not occur in the target text."""

    def __init__(self, message: str = "Replacement search text not found", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ReplacementAmbiguousError(ReplacementError):
    """Raised when a search snippet occurs more than once in the target text."""

    def __init__(self, message: str = "Replacement search text is ambiguous", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InvalidReplacementError(ReplacementError):
    """Raised for replacement entries that are not string pairs."""

    def __init__(self, message: str = "Invalid replacement entry", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ScopeViolationError(GoalRunnerError):
    """Raised when proposed edits leave the agreed scope."""

    def __init__(self, violation: Any) -> None:
        message = getattr(violation, "message", "") or "Proposed edits exceeded the requested scope."
        super().__init__(message)
        self.violation = violation


class EmptyEditsError(GoalRunnerError):
    """Raised when a stage produced no edits although at least one was required."""

    def __init__(self, stage: str) -> None:
        stage_label = "tests" if stage == "tests" else "implementation"
        super().__init__(
            f"LLM returned no edits for the {stage_label} stage.",
            details={"stage": stage_label},
        )
        self.stage = stage_label


class CollaboratorError(GoalRunnerError):
    """Raised when a backend collaborator answers with an error status."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        payload: Any = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status = status
        self.payload = payload

    @property
    def server_message(self) -> str | None:
        """Return the ``error`` field of a JSON error body when present."""
        if isinstance(self.payload, Mapping):
            value = self.payload.get("error")
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


class FileOpError(CollaboratorError):
    """Raised when a create/update file operation fails for a specific path."""

    def __init__(self, path: str, *, status: int | None, operation: str) -> None:
        message = f"Failed to {operation} file: {path}"
        super().__init__(
            message,
            status=status,
            details={"path": path, "status": status, "operation": operation},
        )
        self.path = path
        self.operation = operation


class FileNotFoundInProjectError(GoalRunnerError):
    """Raised when a modify edit targets a file that does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__("File not found", details={"path": path})
        self.path = path


class GoalNotFoundError(CollaboratorError):
    """Raised when the goal store no longer knows the goal being advanced."""


class GoalCancelledError(GoalRunnerError):
    """Raised at a checkpoint once the run has been cancelled."""

    def __init__(self, message: str = "Goal processing cancelled") -> None:
        super().__init__(message)


def is_replacement_resolution_error(error: BaseException | None) -> bool:
    """Return True for errors the repair ladder is allowed to recover from."""
    return isinstance(error, (ReplacementNotFoundError, ReplacementAmbiguousError))


__all__ = [
    "CollaboratorError",
    "EditParseError",
    "EmptyEditsError",
    "FileNotFoundInProjectError",
    "FileOpError",
    "GoalCancelledError",
    "GoalNotFoundError",
    "GoalRunnerError",
    "InvalidReplacementError",
    "ReplacementAmbiguousError",
    "ReplacementError",
    "ReplacementNotFoundError",
    "ScopeViolationError",
    "is_replacement_resolution_error",
]
