"""Turn language-model responses into structured edit lists."""

from __future__ import annotations

import json
from typing import Any, Mapping

from ..errors import EditParseError
from ..structured import StructuredEdit, coerce_edit
from .json_text import (
    extract_json_array,
    extract_json_object,
    extract_json_object_with_key,
    try_parse_loose_json,
)

__all__ = ["parse_edits", "parse_raw_edits", "parse_text_from_llm_response"]


def parse_text_from_llm_response(response: Any) -> str:
    """Return the text body of a ``/llm/generate`` envelope."""
    if isinstance(response, str):
        return response
    if not isinstance(response, Mapping):
        return ""
    for key in ("response", "content"):
        value = response.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _edits_from_payload(payload: Any) -> list[Any] | None:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping) and isinstance(payload.get("edits"), list):
        return list(payload["edits"])
    return None


def parse_raw_edits(response_text: str) -> list[Any]:
    """Return the raw edit entries declared by ``response_text``.

    Returns ``[]`` when the response holds no recognisable JSON. Raises
    ``EditParseError`` when JSON was located but neither strict nor loose
    parsing could recover it.
    """
    text = response_text if isinstance(response_text, str) else ""
    json_text = (
        extract_json_object_with_key(text, "edits")
        or extract_json_array(text)
        or extract_json_object(text)
    )

    if not json_text:
        return _edits_from_payload(try_parse_loose_json(text)) or []

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as error:
        loose = try_parse_loose_json(json_text)
        if loose is None:
            loose = try_parse_loose_json(text)
        edits = _edits_from_payload(loose)
        if edits is not None:
            return edits
        raise EditParseError(
            f"Model returned invalid edits JSON: {error.msg} (line {error.lineno}, column {error.colno})",
            details={"snippet": json_text[:200]},
        ) from error

    return _edits_from_payload(parsed) or []


def parse_edits(response: str | Mapping[str, Any]) -> list[StructuredEdit]:
    """Parse a model response (text or envelope) into ``StructuredEdit`` records."""
    text = parse_text_from_llm_response(response)
    return [coerce_edit(entry) for entry in parse_raw_edits(text)]
