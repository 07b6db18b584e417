import pytest

from prompt_debugger.entities import Malformed, Ok
from prompt_debugger.errors import ParseError
from prompt_debugger.response_extractor import extract_json, parse_json_object, parse_step_output


def test_extract_json_fenced_block_with_language_tag() -> None:
    assert extract_json('```json\n{"a":1}\n```') == '{"a":1}'


def test_extract_json_fenced_block_without_language_tag() -> None:
    raw = 'Here you go:\n```\n{"a": [1, 2]}\n```\nAnything else?'

    assert extract_json(raw) == '{"a": [1, 2]}'


def test_extract_json_falls_back_to_brace_span() -> None:
    raw = 'Sure! {"valid": true, "nested": {"x": 1}} Hope this helps.'

    assert extract_json(raw) == '{"valid": true, "nested": {"x": 1}}'


def test_extract_json_strips_stray_backticks() -> None:
    assert extract_json('`{"a":1}`') == '{"a":1}'


def test_extract_json_without_braces_returns_input() -> None:
    raw = "I could not analyse this conversation."

    assert extract_json(raw) == raw


def test_parse_json_object_repairs_truncated_output() -> None:
    data = parse_json_object('{"a": 1, "b": [1, 2')

    assert data == {"a": 1, "b": [1, 2]}


def test_parse_json_object_rejects_non_objects() -> None:
    with pytest.raises(ParseError):
        parse_json_object("[1, 2, 3]")


def test_parse_json_object_rejects_empty_text() -> None:
    with pytest.raises(ParseError):
        parse_json_object("   ")


def test_parse_step_output_returns_malformed_for_prose() -> None:
    parsed = parse_step_output("Sorry, I cannot do that.")

    assert isinstance(parsed, Malformed)
    assert parsed.raw_text == "Sorry, I cannot do that."
    assert parsed.to_dict()["error"] is True


def test_parse_step_output_returns_ok_for_fenced_json() -> None:
    parsed = parse_step_output('```json\n{"valid": false, "confidence": 0.2}\n```')

    assert isinstance(parsed, Ok)
    assert parsed.value == {"valid": False, "confidence": 0.2}
