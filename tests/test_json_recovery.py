"""Tests for decoding JSON arrays out of free-form model output."""
from __future__ import annotations

from inbox_agent.llm.json_recovery import (
    METHOD_FAILED,
    METHOD_LINES,
    METHOD_STRICT,
    decode_object_array,
    decode_string_array,
    extract_json_array,
)


class TestStrictStage:
    def test_array_wrapped_in_prose(self):
        text = 'Here are the facts I found:\n["User works at Acme", "User prefers short replies"]\nHope this helps!'
        result = decode_string_array(text)
        assert result.method == METHOD_STRICT
        assert result.items == ["User works at Acme", "User prefers short replies"]

    def test_array_inside_code_fence(self):
        text = '```json\n["User drinks tea"]\n```'
        assert decode_string_array(text).items == ["User drinks tea"]

    def test_non_string_and_blank_items_dropped(self):
        result = decode_string_array('["a fact", "", 5, null, "  other  "]')
        assert result.items == ["a fact", "other"]

    def test_empty_array_is_a_success(self):
        result = decode_string_array("[]")
        assert result.ok
        assert result.items == []

    def test_extract_returns_none_for_objects(self):
        assert extract_json_array('"just a string"') is None
        assert extract_json_array("") is None


class TestLineStage:
    def test_bulleted_lines(self):
        text = "- User works at Acme\n- User prefers short replies"
        result = decode_string_array(text)
        assert result.method == METHOD_LINES
        assert result.items == ["User works at Acme", "User prefers short replies"]

    def test_numbered_lines(self):
        text = "1. Prefers mornings\n2) Lives in Austin"
        assert decode_string_array(text).items == ["Prefers mornings", "Lives in Austin"]

    def test_too_many_lines_fails(self):
        text = "\n".join(f"- Fact number {chr(97 + i)} about the user" for i in range(11))
        assert decode_string_array(text).method == METHOD_FAILED

    def test_broken_json_fails(self):
        result = decode_string_array("[not json")
        assert result.method == METHOD_FAILED
        assert not result.ok
        assert result.items == []

    def test_empty_output_fails(self):
        assert decode_string_array("").method == METHOD_FAILED


class TestObjectArrays:
    def test_non_objects_dropped(self):
        result = decode_object_array('Sure! [{"title": "Pay invoice"}, "x", 3]')
        assert result.method == METHOD_STRICT
        assert result.items == [{"title": "Pay invoice"}]

    def test_no_line_recovery_for_objects(self):
        assert decode_object_array("- Pay invoice\n- Call Dad").method == METHOD_FAILED
