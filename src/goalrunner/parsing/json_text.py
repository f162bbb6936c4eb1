"""Helpers that recover JSON payloads from noisy language-model output.

Every scanner here tracks string-literal state explicitly (``in_string``,
``escape``, ``string_char``) so braces, brackets, comment markers and quotes
that appear inside string values never affect the structure detection.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable

__all__ = [
    "extract_json_array",
    "extract_json_array_from_index",
    "extract_json_object",
    "extract_json_object_from_index",
    "extract_json_object_with_key",
    "normalize_json_like_text",
    "try_parse_loose_json",
]

_UNICODE_ESCAPE_RE = re.compile(r"\\u([0-9a-fA-F]{4})")
_DOUBLE_BRACE_START_RE = re.compile(r"^\{\s*\{")
_DOUBLE_BRACE_END_RE = re.compile(r"\}\s*\}$")
_KEY_START_RE = re.compile(r"[A-Za-z_$]")
_KEY_CHAR_RE = re.compile(r"[A-Za-z0-9_$]")

_QUOTE_TRANSLATION = str.maketrans(
    {
        0x00A0: " ",
        0xFEFF: "",
        0x201C: '"',
        0x201D: '"',
        0x201E: '"',
        0x201F: '"',
        0x2033: '"',
        0x2018: "'",
        0x2019: "'",
        0x201A: "'",
        0x201B: "'",
        0x2032: "'",
    }
)

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}

_UNPARSED = object()


def _escape_control_chars_in_strings(text: str) -> str:
    """Escape raw newlines and tabs that appear inside string literals."""
    result: list[str] = []
    in_string = False
    string_char = ""
    escape = False

    for ch in text:
        if in_string:
            if escape:
                result.append(ch)
                escape = False
                continue
            if ch == "\\":
                result.append(ch)
                escape = True
                continue
            if ch == string_char:
                in_string = False
                string_char = ""
                result.append(ch)
                continue
            result.append(_CONTROL_ESCAPES.get(ch, ch))
            continue

        if ch in ('"', "'"):
            in_string = True
            string_char = ch
        result.append(ch)

    return "".join(result)


def normalize_json_like_text(value: Any) -> str:
    """Canonicalise model output so it can be scanned and parsed as JSON."""
    if not isinstance(value, str):
        return ""
    decoded = _UNICODE_ESCAPE_RE.sub(lambda match: chr(int(match.group(1), 16)), value)
    unified = decoded.translate(_QUOTE_TRANSLATION)
    return _escape_control_chars_in_strings(unified)


def _skip_comment(text: str, index: int) -> int | None:
    """Return the index of the last character of a comment starting at ``index``.

    Returns ``-1`` when no comment starts at ``index`` and ``None`` when the
    comment never terminates.
    """
    if text.startswith("//", index):
        newline = text.find("\n", index + 2)
        return None if newline == -1 else newline
    if text.startswith("/*", index):
        end = text.find("*/", index + 2)
        return None if end == -1 else end + 1
    return -1


def _extract_balanced(text: Any, start: int, opener: str, closer: str) -> str | None:
    if not isinstance(text, str) or start < 0:
        return None

    depth = 0
    in_string = False
    string_char = '"'
    escape = False
    index = start
    length = len(text)

    while index < length:
        ch = text[index]

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == string_char:
                in_string = False
            index += 1
            continue

        if ch == "/":
            comment_end = _skip_comment(text, index)
            if comment_end is None:
                return None
            if comment_end >= 0:
                index = comment_end + 1
                continue

        if ch in ('"', "'"):
            in_string = True
            string_char = ch
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
        index += 1

    return None


def extract_json_object_from_index(text: Any, start: int) -> str | None:
    """Return the balanced ``{...}`` span that starts at ``start``."""
    return _extract_balanced(text, start, "{", "}")


def extract_json_array_from_index(text: Any, start: int) -> str | None:
    """Return the balanced ``[...]`` span that starts at ``start``."""
    return _extract_balanced(text, start, "[", "]")


def extract_json_object_with_key(value: Any, key_name: str) -> str | None:
    """Return the first balanced object that declares ``key_name``."""
    if not isinstance(value, str) or not key_name:
        return None

    text = normalize_json_like_text(value)
    key_pattern = re.compile(rf"[\"']?{re.escape(key_name)}[\"']?\s*:")

    index = text.find("{")
    while index >= 0:
        candidate = extract_json_object_from_index(text, index)
        if candidate and key_pattern.search(candidate):
            return candidate
        index = text.find("{", index + 1)
    return None


def extract_json_object(value: Any) -> str | None:
    """Return the first balanced JSON object embedded in ``value``."""
    if not isinstance(value, str):
        return None
    text = normalize_json_like_text(value)
    start = text.find("{")
    if start < 0:
        return None
    return extract_json_object_from_index(text, start)


def extract_json_array(value: Any) -> str | None:
    """Return the first balanced JSON array embedded in ``value``."""
    if not isinstance(value, str):
        return None
    text = normalize_json_like_text(value)
    start = text.find("[")
    if start < 0:
        return None
    return extract_json_array_from_index(text, start)


def _collapse_double_braces(text: str) -> str:
    while _DOUBLE_BRACE_START_RE.match(text) and _DOUBLE_BRACE_END_RE.search(text):
        text = text[1:-1].strip()
    return text


def _remove_comments_outside_strings(text: str) -> str:
    output: list[str] = []
    in_string = False
    escape = False
    string_char = '"'
    index = 0
    length = len(text)

    while index < length:
        ch = text[index]

        if in_string:
            output.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == string_char:
                in_string = False
            index += 1
            continue

        if ch in ('"', "'"):
            in_string = True
            string_char = ch
            output.append(ch)
            index += 1
            continue

        if text.startswith("//", index):
            newline = text.find("\n", index + 2)
            if newline == -1:
                break
            output.append("\n")
            index = newline + 1
            continue

        if text.startswith("/*", index):
            end = text.find("*/", index + 2)
            if end == -1:
                break
            index = end + 2
            continue

        output.append(ch)
        index += 1

    return "".join(output)


def _convert_single_quoted_strings(text: str) -> str:
    """Rewrite ``'...'`` literals as JSON strings, leaving ``"..."`` untouched."""
    output: list[str] = []
    string_char = ""
    escape = False
    index = 0
    length = len(text)

    while index < length:
        ch = text[index]

        if string_char == '"':
            output.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                string_char = ""
            index += 1
            continue

        if string_char == "'":
            if ch == "\\" and index + 1 < length:
                following = text[index + 1]
                output.append("'" if following == "'" else ch + following)
                index += 2
                continue
            if ch == '"':
                output.append('\\"')
            elif ch == "'":
                output.append('"')
                string_char = ""
            else:
                output.append(ch)
            index += 1
            continue

        if ch == '"':
            string_char = '"'
            output.append(ch)
        elif ch == "'":
            string_char = "'"
            output.append('"')
        else:
            output.append(ch)
        index += 1

    return "".join(output)


def _quote_unquoted_keys(text: str) -> str:
    output: list[str] = []
    in_string = False
    escape = False
    index = 0
    length = len(text)

    while index < length:
        ch = text[index]

        if in_string:
            output.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            index += 1
            continue

        if ch == '"':
            in_string = True
            output.append(ch)
            index += 1
            continue

        if ch not in "{,":
            output.append(ch)
            index += 1
            continue

        output.append(ch)
        lookahead = index + 1
        while lookahead < length and text[lookahead].isspace():
            output.append(text[lookahead])
            lookahead += 1

        if lookahead < length and _KEY_START_RE.match(text[lookahead]):
            key_end = lookahead + 1
            while key_end < length and _KEY_CHAR_RE.match(text[key_end]):
                key_end += 1
            colon = key_end
            while colon < length and text[colon].isspace():
                colon += 1
            if colon < length and text[colon] == ":":
                output.append(f'"{text[lookahead:key_end]}"')
                output.append(text[key_end:colon])
                output.append(":")
                index = colon + 1
                continue

        index = lookahead

    return "".join(output)


def _remove_trailing_commas(text: str) -> str:
    output: list[str] = []
    in_string = False
    escape = False
    length = len(text)

    for index, ch in enumerate(text):
        if in_string:
            output.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            output.append(ch)
            continue

        if ch == ",":
            lookahead = index + 1
            while lookahead < length and text[lookahead].isspace():
                lookahead += 1
            if lookahead < length and text[lookahead] in "}]":
                continue

        output.append(ch)

    return "".join(output)


_REPAIR_PASSES: tuple[Callable[[str], str], ...] = (
    _collapse_double_braces,
    _remove_comments_outside_strings,
    _convert_single_quoted_strings,
    _quote_unquoted_keys,
    _remove_trailing_commas,
)


def _strict_parse(text: str) -> Any:
    try:
        return json.loads(text, strict=False)
    except json.JSONDecodeError:
        return _UNPARSED


def try_parse_loose_json(value: Any) -> Any:
    """Best-effort parse of almost-JSON text; returns ``None`` when hopeless."""
    if isinstance(value, (list, dict)):
        return value
    if not isinstance(value, str):
        return None

    text = normalize_json_like_text(value).strip()
    if not text:
        return None

    parsed = _strict_parse(text)
    if parsed is not _UNPARSED:
        return parsed

    for transform in _REPAIR_PASSES:
        text = transform(text)
        parsed = _strict_parse(text)
        if parsed is not _UNPARSED:
            return parsed
    return None
