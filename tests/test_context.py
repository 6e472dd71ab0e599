"""Tests for shared prompt context helpers."""

import asyncio

from conftest import make_state
from memory_kg.ingestion.context import (
    build_content_section,
    error_block,
    is_cancelled,
    json_retry_handler,
    numbered_indices,
)


class TestBuildContentSection:
    """Test the tagged content section."""

    def test_full_layout(self):
        state = make_state(
            "Alice works at Acme.",
            title="Team",
            url="https://example.com/team",
            previous_messages="Earlier chat",
        )
        section = build_content_section(state, "Extract carefully")

        assert section.startswith("<METADATA>\nTitle: Team\nSource: https://example.com/team\n</METADATA>")
        assert section.index("<METADATA>") < section.index("<CONTEXT>") < section.index("<CONTENT>")
        assert "<CONTEXT>\nEarlier chat\n</CONTEXT>" in section
        assert "<CONTENT>\nTitle: Team\n\nContent:\nAlice works at Acme.\n</CONTENT>" in section
        assert section.endswith("<INSTRUCTION>\nExtract carefully\n</INSTRUCTION>")

    def test_empty_blocks_omitted(self):
        state = make_state("body", title="", previous_messages="   ")
        section = build_content_section(state)
        assert section == "<CONTENT>\nTitle: \n\nContent:\nbody\n</CONTENT>"

    def test_url_without_title(self):
        state = make_state("body", title="", url="https://example.com")
        section = build_content_section(state)
        assert section.startswith("<METADATA>\nSource: https://example.com\n</METADATA>")


class TestErrorBlock:
    """Test the retry error block."""

    def test_no_context(self):
        assert error_block(None, "hint") == ""
        assert error_block("", "hint") == ""

    def test_with_context(self):
        assert error_block("bad JSON", "fix it") == "\n\n<ERROR_CONTEXT>\nbad JSON\nfix it\n</ERROR_CONTEXT>"


class TestJsonRetryHandler:
    """Test the map_refine error handler."""

    def test_parse_errors_get_json_hint(self):
        handler = json_retry_handler("stage", "Return a JSON array.")
        message = handler(ValueError("JSON parse error: Expecting value"), 1, "chunk")
        assert message == "JSON parsing failed: JSON parse error: Expecting value. Return a JSON array."

    def test_other_errors_name_the_attempt(self):
        handler = json_retry_handler("stage", "Return a JSON array.")
        message = handler(RuntimeError("timeout"), 2, "chunk")
        assert message == "Processing failed on attempt 2: timeout. Please retry with correct format."


class TestIsCancelled:
    """Test cancellation checks."""

    def test_states(self):
        event = asyncio.Event()
        assert not is_cancelled(None)
        assert not is_cancelled(event)
        event.set()
        assert is_cancelled(event)


class TestNumberedIndices:
    """Test numbered listing alignment."""

    def test_indices_present(self):
        chunk = "1. Fact: a\n2. Fact: b\n3. Fact: c"
        assert numbered_indices(chunk, "Fact", 3) == [0, 1, 2]

    def test_partial_listing(self):
        chunk = "ignored\n4. Fact: d\n5. Fact: e"
        assert numbered_indices(chunk, "Fact", 5) == [3, 4]

    def test_out_of_range_and_duplicates_dropped(self):
        chunk = "2. Fact: b\n2. Fact: b again\n9. Fact: z"
        assert numbered_indices(chunk, "Fact", 3) == [1]

    def test_no_listing_lines(self):
        assert numbered_indices("<CONTENT>page text</CONTENT>", "Fact", 3) == []

    def test_label_must_match(self):
        assert numbered_indices("1. Entity: Alice", "Fact", 3) == []
