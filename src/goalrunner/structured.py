"""Typed payloads that describe structured edits emitted by the model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence

EditType = Literal["modify", "upsert", "delete"]


@dataclass(slots=True)
class ReplacementPair:
    """Search/replace instruction applied to the current file text."""

    search: str | None
    replace: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"search": self.search, "replace": self.replace}


@dataclass(slots=True)
class StructuredEdit:
    """Single file mutation emitted by an edit stage."""

    type: EditType
    path: str
    replacements: list[ReplacementPair] | None = None
    content: str | None = None
    recursive: bool = False

    @property
    def normalized_path(self) -> str:
        return normalize_repo_path(self.path)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "path": self.path}
        if self.type == "modify":
            payload["replacements"] = [pair.to_dict() for pair in self.replacements or []]
        elif self.type == "upsert":
            payload["content"] = self.content
        else:
            payload["recursive"] = self.recursive
        return payload


def normalize_repo_path(value: Any) -> str:
    """Return a repo-relative POSIX path, or ``""`` for unusable values."""
    if not isinstance(value, str):
        return ""
    return value.replace("\\", "/").lstrip("/")


def coerce_replacements(value: Any) -> list[ReplacementPair] | None:
    """Convert raw replacement entries into ``ReplacementPair`` records."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        value = [value]
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return None
    pairs: list[ReplacementPair] = []
    for entry in value:
        if isinstance(entry, ReplacementPair):
            pairs.append(entry)
            continue
        if not isinstance(entry, Mapping):
            pairs.append(ReplacementPair(search=None, replace=None))
            continue
        search = entry.get("search")
        replace = entry.get("replace")
        pairs.append(
            ReplacementPair(
                search=search if isinstance(search, str) else None,
                replace=replace if isinstance(replace, str) else None,
            )
        )
    return pairs


def coerce_edit(raw: Any) -> StructuredEdit:
    """Build a ``StructuredEdit`` from a loosely shaped model payload.

    Entries that are not mappings become edits with an empty path so the
    applier can count them as skipped. Unknown edit types are treated as
    upserts, mirroring how the wire format defaults to full-file writes.
    """
    if isinstance(raw, StructuredEdit):
        return raw
    if not isinstance(raw, Mapping):
        return StructuredEdit(type="upsert", path="")

    raw_type = raw.get("type")
    edit_type = raw_type.strip().lower() if isinstance(raw_type, str) else ""
    path = raw.get("path")
    path_text = path if isinstance(path, str) else ""

    if edit_type == "modify":
        return StructuredEdit(
            type="modify",
            path=path_text,
            replacements=coerce_replacements(raw.get("replacements")),
        )
    if edit_type == "delete":
        return StructuredEdit(type="delete", path=path_text, recursive=raw.get("recursive") is True)

    content = raw.get("content")
    return StructuredEdit(
        type="upsert",
        path=path_text,
        content=content if isinstance(content, str) else None,
    )


__all__ = [
    "EditType",
    "ReplacementPair",
    "StructuredEdit",
    "coerce_edit",
    "coerce_replacements",
    "normalize_repo_path",
]
