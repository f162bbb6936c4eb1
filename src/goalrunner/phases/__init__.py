"""Goal phase enumerations and execution ordering."""

from __future__ import annotations

from enum import Enum


class GoalPhase(str, Enum):
    """Lifecycle phases reported by the goal store."""

    PLANNING = "planning"
    TESTING = "testing"
    IMPLEMENTING = "implementing"
    VERIFYING = "verifying"
    READY = "ready"
    FAILED = "failed"


PHASE_SEQUENCE = [
    GoalPhase.PLANNING,
    GoalPhase.TESTING,
    GoalPhase.IMPLEMENTING,
    GoalPhase.VERIFYING,
    GoalPhase.READY,
]

TERMINAL_PHASES = frozenset({GoalPhase.READY, GoalPhase.FAILED})


__all__ = ["GoalPhase", "PHASE_SEQUENCE", "TERMINAL_PHASES"]
