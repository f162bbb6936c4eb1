"""JSON recovery and edit parsing for model responses."""

from .edits import parse_edits, parse_raw_edits, parse_text_from_llm_response
from .json_text import (
    extract_json_array,
    extract_json_array_from_index,
    extract_json_object,
    extract_json_object_from_index,
    extract_json_object_with_key,
    normalize_json_like_text,
    try_parse_loose_json,
)

__all__ = [
    "extract_json_array",
    "extract_json_array_from_index",
    "extract_json_object",
    "extract_json_object_from_index",
    "extract_json_object_with_key",
    "normalize_json_like_text",
    "parse_edits",
    "parse_raw_edits",
    "parse_text_from_llm_response",
    "try_parse_loose_json",
]
