"""Cooperative pause and cancel signals consulted between network calls."""

from __future__ import annotations

import threading
import time
from typing import Callable

from .errors import GoalCancelledError

__all__ = ["DEFAULT_POLL_INTERVAL", "RunControl"]

DEFAULT_POLL_INTERVAL = 0.5


class RunControl:
    """Thread-safe pause/cancel flags for an in-flight goal run."""

    def __init__(
        self,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._paused = threading.Event()
        self._cancelled = threading.Event()

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def pause(self) -> None:
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    def cancel(self) -> None:
        self._cancelled.set()

    def checkpoint(self) -> None:
        """Block while paused; raise ``GoalCancelledError`` once cancelled."""
        while True:
            if self._cancelled.is_set():
                raise GoalCancelledError()
            if not self._paused.is_set():
                return
            self._sleep(self.poll_interval)
