"""Structured per-attempt logs for the edit stages."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from ..models.llm_client import GenerateRequest

__all__ = ["load_stage_log", "write_stage_log"]


def write_stage_log(
    logs_root: Optional[Path],
    *,
    stage: str,
    goal_id: str,
    attempt: int,
    request: GenerateRequest,
    raw: Any = None,
    edits_count: Optional[int] = None,
    error: BaseException | None = None,
) -> Optional[Path]:
    """Persist one model exchange of a stage attempt for later debugging."""
    if logs_root is None:
        return None
    stages_root = Path(logs_root) / "stages"
    try:
        stages_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None

    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "stage": stage,
        "goal_id": goal_id,
        "attempt": attempt,
        "purpose": request.purpose,
        "request": _json_safe(request.to_payload()),
        "raw": _json_safe(raw),
    }
    if edits_count is not None:
        entry["edits_count"] = edits_count
    if error is not None:
        entry["error"] = str(error)
        entry["error_type"] = type(error).__name__

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    parts = ["stage", _slug(stage, fallback="stage"), _slug(str(goal_id), fallback="goal"), f"attempt-{attempt}", timestamp]
    log_path = stages_root / ("__".join(parts) + ".json")
    try:
        with log_path.open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError:
        return None
    return log_path


def load_stage_log(path: Path | str) -> Mapping[str, Any]:
    """Load a stage log written by ``write_stage_log``."""
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        try:
            return _json_safe(value.model_dump())
        except TypeError:
            pass
    if isinstance(value, Mapping):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def _slug(value: str, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"
