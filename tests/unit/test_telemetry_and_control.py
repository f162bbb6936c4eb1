from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List

import pytest

from goalrunner.control import RunControl
from goalrunner.errors import GoalCancelledError
from goalrunner.phases import GoalPhase
from goalrunner.phases.base import _slug
from goalrunner.telemetry import emit_event, preview


def test_emit_event_logs_single_json_line(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="goalrunner.telemetry"):
        emit_event("process_goal.phase", goal_id="g1", phase=GoalPhase.TESTING, path=Path("src/a.js"), tags={"a"})

    assert len(caplog.records) == 1
    payload = json.loads(caplog.records[0].getMessage())
    assert payload["event"] == "process_goal.phase"
    assert payload["phase"] == "testing"
    assert payload["path"] == "src/a.js"
    assert payload["tags"] == ["a"]
    assert "timestamp" in payload


def test_preview_truncates_and_ignores_non_text() -> None:
    assert preview("x" * 300) == "x" * 200
    assert preview("abc", 2) == "ab"
    assert preview(None) == ""


def test_slug_truncates_long_identifiers() -> None:
    slug = _slug("x" * 200)
    assert len(slug) <= 80
    assert slug.startswith("x")
    assert _slug("::", fallback="goal") == "goal"


def test_checkpoint_waits_while_paused() -> None:
    sleeps: List[float] = []

    def _sleep(delay: float) -> None:
        sleeps.append(delay)
        if len(sleeps) == 3:
            control.resume()

    control = RunControl(poll_interval=0.1, sleep=_sleep)
    control.pause()
    assert control.paused is True

    control.checkpoint()

    assert sleeps == [0.1, 0.1, 0.1]
    assert control.paused is False


def test_checkpoint_raises_once_cancelled_even_when_paused() -> None:
    control = RunControl(sleep=lambda _delay: None)
    control.pause()
    control.cancel()

    with pytest.raises(GoalCancelledError, match="cancelled"):
        control.checkpoint()
    assert control.cancelled is True
