"""Tests for tiered LLM response parsing."""

import pytest

from memory_kg.errors import ResponseParseError
from memory_kg.utils.parsing import (
    ParseResult,
    as_bool,
    extract_field_values,
    parse_json_array,
    strip_code_fences,
)


class TestStripCodeFences:
    """Test code fence removal."""

    def test_json_fence(self):
        assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"

    def test_bare_fence(self):
        assert strip_code_fences("```\n[]\n```") == "[]"

    def test_no_fence(self):
        assert strip_code_fences("  [1]  ") == "[1]"


class TestParseJsonArray:
    """Test the JSON and bracket tiers."""

    def test_plain_array(self):
        result = parse_json_array('[{"name": "Alice"}]')
        assert result.ok
        assert result.strategy == "json"
        assert result.items == [{"name": "Alice"}]

    def test_fenced_array(self):
        result = parse_json_array('```json\n[{"name": "Alice"}]\n```')
        assert result.ok
        assert result.items == [{"name": "Alice"}]

    def test_single_key_wrapper(self):
        result = parse_json_array('{"entities": [{"name": "Alice"}]}')
        assert result.ok
        assert result.items == [{"name": "Alice"}]

    def test_array_inside_prose(self):
        result = parse_json_array('Here are the results:\n[{"name": "Acme"}]\nHope this helps!')
        assert result.ok
        assert result.strategy == "bracket"
        assert result.items == [{"name": "Acme"}]

    def test_object_is_not_array(self):
        result = parse_json_array('{"name": "Alice", "summary": "x"}')
        assert not result.ok
        assert "Expected a JSON array" in result.error

    def test_garbage(self):
        result = parse_json_array("I could not find any entities.")
        assert not result.ok
        assert result.error.startswith("JSON parse error")

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty(self, text):
        result = parse_json_array(text)
        assert not result.ok
        assert result.error == "Empty response"


class TestParseResult:
    """Test ParseResult helpers."""

    def test_unwrap_success(self):
        assert ParseResult.success([1], "json").unwrap() == [1]

    def test_unwrap_failure_raises(self):
        with pytest.raises(ResponseParseError, match="broken"):
            ParseResult.failure("broken").unwrap()


class TestExtractFieldValues:
    """Test the permissive field fallback."""

    def test_quoted_values(self):
        text = '{"name": "Alice", "summary": "x"}, {"name": "Acme Corp"'
        assert extract_field_values(text, "name") == ["Alice", "Acme Corp"]

    def test_bare_values(self):
        text = "name: Alice\nname: Bob, the builder"
        assert extract_field_values(text, "name") == ["Alice", "Bob"]

    def test_no_values(self):
        assert extract_field_values("nothing here", "name") == []


class TestAsBool:
    """Test flag interpretation."""

    @pytest.mark.parametrize("value", [True, 1, "true", "True", " yes ", "1"])
    def test_truthy(self, value):
        assert as_bool(value) is True

    @pytest.mark.parametrize("value", [False, None, 0, 2, "false", "no", "maybe"])
    def test_falsy(self, value):
        assert as_bool(value) is False
