"""Search/replace resolution against live file contents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..errors import InvalidReplacementError, ReplacementAmbiguousError, ReplacementNotFoundError
from ..structured import ReplacementPair

__all__ = ["apply_replacements", "find_unique_index", "strip_whitespace_with_map"]


@dataclass(slots=True)
class _StrippedText:
    """Whitespace-free projection of a text with offsets into the original."""

    stripped: str
    offsets: list[int]


@dataclass(slots=True)
class _Match:
    index: int
    ambiguous: bool


def strip_whitespace_with_map(text: str) -> _StrippedText:
    """Drop whitespace from ``text`` while remembering original offsets."""
    chars: list[str] = []
    offsets: list[int] = []
    for index, ch in enumerate(text):
        if not ch.isspace():
            chars.append(ch)
            offsets.append(index)
    return _StrippedText(stripped="".join(chars), offsets=offsets)


def find_unique_index(haystack: str, needle: str) -> _Match:
    """Locate ``needle`` and flag whether a second occurrence exists."""
    first = haystack.find(needle)
    if first < 0:
        return _Match(index=-1, ambiguous=False)
    second = haystack.find(needle, first + 1)
    return _Match(index=first, ambiguous=second >= 0)


def _pair_values(entry: Any) -> tuple[Any, Any]:
    if isinstance(entry, ReplacementPair):
        return entry.search, entry.replace
    if isinstance(entry, Mapping):
        return entry.get("search"), entry.get("replace")
    return None, None


def apply_replacements(original: str, replacements: Sequence[Any] | None) -> str:
    """Apply ``replacements`` in order and return the updated text.

    Each search must occur exactly once, either verbatim or after all
    whitespace is ignored on both sides. A whitespace-insensitive match
    replaces only the original span it covers, so formatting outside the
    match is preserved.
    """
    if not replacements:
        return original

    updated = original
    for entry in replacements:
        search, replace = _pair_values(entry)
        if not isinstance(search, str) or not isinstance(replace, str):
            raise InvalidReplacementError()

        exact = find_unique_index(updated, search)
        if exact.index >= 0:
            if exact.ambiguous:
                raise ReplacementAmbiguousError()
            updated = updated[: exact.index] + replace + updated[exact.index + len(search) :]
            continue

        haystack = strip_whitespace_with_map(updated)
        needle = strip_whitespace_with_map(search)
        if not needle.stripped:
            raise ReplacementNotFoundError()

        loose = find_unique_index(haystack.stripped, needle.stripped)
        if loose.index < 0:
            raise ReplacementNotFoundError()
        if loose.ambiguous:
            raise ReplacementAmbiguousError()

        start = haystack.offsets[loose.index]
        end = haystack.offsets[loose.index + len(needle.stripped) - 1] + 1
        updated = updated[:start] + replace + updated[end:]

    return updated
