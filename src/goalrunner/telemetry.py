"""Structured telemetry events emitted while goals are processed."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

TELEMETRY_LOGGER = logging.getLogger("goalrunner.telemetry")


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return _serialise_event_value(value.value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _serialise_event_value(asdict(value))
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event as a single JSON line."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)


def preview(value: Any, limit: int = 200) -> str:
    """Return a short text preview suitable for telemetry fields."""
    if not isinstance(value, str):
        return ""
    return value[:limit]


__all__ = ["TELEMETRY_LOGGER", "emit_event", "preview"]
