"""
Tests for tracker text decoding/encoding and response extraction.
"""

import json
import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from scenetracker.utils.tracker_codec import (
    OutputFormat,
    TrackerDecodeError,
    decode_tracker,
    encode_tracker,
    extract_tracker_block,
    parse_tracker_response,
)


class TestDecode:
    """YAML/JSON tracker text -> tree."""

    def test_yaml_mapping(self):
        text = "Location: Garden\nTopics:\n  - rain\n  - tea\n"
        assert decode_tracker(text) == {"Location": "Garden", "Topics": ["rain", "tea"]}

    def test_json_is_accepted(self):
        assert decode_tracker('{"Location": "Garden", "Topics": []}') == {"Location": "Garden", "Topics": []}

    def test_empty_input(self):
        assert decode_tracker(None) == {}
        assert decode_tracker("") == {}
        assert decode_tracker("   \n") == {}
        assert decode_tracker("~") == {}

    def test_bytes_input(self):
        assert decode_tracker("Weather: Sunny".encode("utf-8")) == {"Weather": "Sunny"}

    def test_invalid_utf8_bytes_raise(self):
        with pytest.raises(TrackerDecodeError):
            decode_tracker(b"Location: Caf\xe9\n")

    def test_timestamps_stay_strings(self):
        tree = decode_tracker("TimeAnchor: 2024-10-16T09:15:30Z\nDate: 2024-10-16\n")
        assert tree == {"TimeAnchor": "2024-10-16T09:15:30Z", "Date": "2024-10-16"}

    def test_clock_values_stay_strings(self):
        tree = decode_tracker("Time: 18:45\nSeconds: 1:02:03\nCount: 3\nRatio: 0.5\n")
        assert tree == {"Time": "18:45", "Seconds": "1:02:03", "Count": 3, "Ratio": 0.5}

    def test_fenced_block_is_unwrapped(self):
        text = "```yaml\nLocation: Garden\n```"
        assert decode_tracker(text) == {"Location": "Garden"}

    def test_unclosed_fence(self):
        assert decode_tracker("```yaml\nLocation: Garden\n") == {"Location": "Garden"}

    def test_invalid_text_raises(self):
        with pytest.raises(TrackerDecodeError):
            decode_tracker("Location: [unclosed")

    def test_non_text_raises(self):
        with pytest.raises(TrackerDecodeError):
            decode_tracker(42)

    def test_scalar_document_is_returned_as_is(self):
        assert decode_tracker("just a sentence") == "just a sentence"


class TestEncode:
    """Tree -> tracker text."""

    def test_yaml_keeps_order_and_unicode(self):
        text = encode_tracker({"Time": "08:00", "Location": "Café", "Topics": ["a"]})
        assert text.index("Time") < text.index("Location") < text.index("Topics")
        assert "Location: Café\n" in text

    def test_yaml_round_trip(self):
        tree = {"Time": "18:45", "TimeAnchor": "2024-10-16T09:15:30Z", "Characters": {"Emma": {"Hair": "Red"}}}
        assert decode_tracker(encode_tracker(tree)) == tree

    def test_empty_tree_is_empty_text(self):
        assert encode_tracker({}) == ""
        assert encode_tracker(None) == ""

    def test_json(self):
        tree = {"Location": "Garden"}
        text = encode_tracker(tree, OutputFormat.JSON)
        assert json.loads(text) == tree
        assert text == '{\n  "Location": "Garden"\n}'

    def test_format_accepts_plain_string(self):
        assert encode_tracker({"a": 1}, "json") == '{\n  "a": 1\n}'


class TestExtract:
    """Locating the tracker inside a model response."""

    def test_tracker_tags(self):
        text = "Sure!\n<tracker>\nLocation: Garden\n</tracker>\nAnything else?"
        assert extract_tracker_block(text) == "Location: Garden"

    def test_tracker_tags_case_insensitive(self):
        assert extract_tracker_block("<TRACKER>Weather: Rain</Tracker>") == "Weather: Rain"

    def test_first_tracker_block_wins(self):
        text = "<tracker>A: 1</tracker> <tracker>A: 2</tracker>"
        assert extract_tracker_block(text) == "A: 1"

    def test_last_fence_is_used_without_tags(self):
        text = "Old:\n```yaml\nA: 1\n```\nNew:\n```yaml\nA: 2\n```\n"
        assert extract_tracker_block(text) == "A: 2"

    def test_nothing_found(self):
        assert extract_tracker_block("no tracker here") is None
        assert extract_tracker_block("") is None


class TestParseResponse:
    """Full response parsing with failure logging."""

    def test_tagged_response(self):
        text = "<tracker>\nLocation: Garden\nTopics: [rain]\n</tracker>"
        assert parse_tracker_response(text) == {"Location": "Garden", "Topics": ["rain"]}

    def test_bare_yaml_response(self):
        assert parse_tracker_response("Location: Garden") == {"Location": "Garden"}

    def test_empty_response(self):
        assert parse_tracker_response("") is None
        assert parse_tracker_response(None) is None

    def test_invalid_yaml(self):
        assert parse_tracker_response("<tracker>Location: [unclosed</tracker>") is None

    def test_not_a_mapping(self):
        assert parse_tracker_response("I could not update the tracker.") is None
        assert parse_tracker_response("<tracker>- a\n- b</tracker>") is None
