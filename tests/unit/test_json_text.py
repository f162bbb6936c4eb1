from __future__ import annotations

import json

from goalrunner.parsing.json_text import (
    extract_json_array,
    extract_json_object,
    extract_json_object_with_key,
    normalize_json_like_text,
    try_parse_loose_json,
)


def test_normalize_translates_curly_quotes_and_unicode_escapes() -> None:
    text = "“edits”: \\u005b\\u005d"
    assert normalize_json_like_text(text) == '"edits": []'


def test_normalize_escapes_raw_newlines_inside_strings_only() -> None:
    text = '{\n"content": "line one\nline two"\n}'
    normalized = normalize_json_like_text(text)

    assert normalized == '{\n"content": "line one\\nline two"\n}'
    assert json.loads(normalized) == {"content": "line one\nline two"}


def test_extract_object_ignores_braces_inside_strings() -> None:
    text = 'Sure! Here you go: {"edits": [{"content": "function f() { return \\"}\\"; }"}]} trailing prose'
    extracted = extract_json_object(text)

    assert extracted is not None
    assert json.loads(extracted)["edits"][0]["content"] == 'function f() { return "}"; }'


def test_extract_object_skips_comments_between_tokens() -> None:
    text = '{"a": 1, // note with a } brace\n "b": 2}'
    assert extract_json_object(text) == text


def test_extract_object_fails_on_unterminated_comment() -> None:
    assert extract_json_object('{"a": 1 /* never closed }') is None


def test_extract_object_returns_none_when_unbalanced() -> None:
    assert extract_json_object('{"edits": [') is None
    assert extract_json_object("no json here") is None


def test_extract_object_with_key_picks_the_matching_object() -> None:
    text = 'first {"note": "x"} then {"edits": []}'
    assert extract_json_object_with_key(text, "edits") == '{"edits": []}'


def test_extract_array_returns_first_balanced_array() -> None:
    text = 'prefix [{"type": "delete", "path": "a.js"}] suffix [1]'
    assert json.loads(extract_json_array(text)) == [{"type": "delete", "path": "a.js"}]


def test_loose_json_repairs_bare_keys_and_trailing_commas() -> None:
    repaired = try_parse_loose_json('{edits:[{path:"a.js",}],}')
    assert repaired == {"edits": [{"path": "a.js"}]}


def test_loose_json_is_stable_on_its_own_output() -> None:
    first = try_parse_loose_json('{edits:[{path:"a.js",}],}')
    second = try_parse_loose_json(json.dumps(first))
    assert second == first


def test_loose_json_converts_single_quoted_strings() -> None:
    repaired = try_parse_loose_json("{'type': 'upsert', 'content': 'say \"hi\"'}")
    assert repaired == {"type": "upsert", "content": 'say "hi"'}


def test_loose_json_keeps_apostrophes_inside_double_quoted_strings() -> None:
    repaired = try_parse_loose_json('{"content": "don\'t stop",}')
    assert repaired == {"content": "don't stop"}


def test_loose_json_collapses_double_wrapped_braces() -> None:
    assert try_parse_loose_json('{{"edits": []}}') == {"edits": []}


def test_loose_json_strips_comments_outside_strings() -> None:
    text = '{\n  // explanation\n  "path": "src/a.js", /* inline */ "keep": "// not a comment"\n}'
    assert try_parse_loose_json(text) == {"path": "src/a.js", "keep": "// not a comment"}


def test_loose_json_gives_up_without_raising() -> None:
    assert try_parse_loose_json("definitely not json") is None
    assert try_parse_loose_json("") is None
    assert try_parse_loose_json(None) is None


def test_loose_json_passes_through_parsed_values() -> None:
    payload = {"edits": []}
    assert try_parse_loose_json(payload) is payload
