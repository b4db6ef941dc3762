"""
Tests for TimeAnchor parsing and the derived TimeAnalysis payload.
"""

import os
import sys
from datetime import datetime, timezone

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from scenetracker.utils.time_analysis import (
    NOTE_PARSED,
    NOTE_REGRESSED,
    build_time_analysis,
    parse_iso,
    resolve_internal_time,
    sanitize_anchor,
)


NOW = datetime(2024, 10, 20, 12, 0, 0, tzinfo=timezone.utc)
ANCHOR = "2024-10-16T09:15:30Z"


class TestSanitize:
    """Anchor text cleanup."""

    def test_quotes_and_whitespace(self):
        assert sanitize_anchor('  "2024-10-16T09:15:30Z" ') == ANCHOR
        assert sanitize_anchor("'2024-10-16T09:15:30Z'") == ANCHOR

    def test_empty_values(self):
        assert sanitize_anchor("") is None
        assert sanitize_anchor('""') is None
        assert sanitize_anchor(None) is None
        assert sanitize_anchor(20241016) is None

    def test_naive_timestamps_are_utc(self):
        assert parse_iso("2024-10-16T09:15:30") == datetime(2024, 10, 16, 9, 15, 30, tzinfo=timezone.utc)
        assert parse_iso("next tuesday") is None


class TestBuildTimeAnalysis:
    """Timeline values derived from one anchor."""

    def test_first_anchor(self):
        analysis = build_time_analysis(ANCHOR, now=NOW)
        assert analysis == {
            "AnchorRaw": ANCHOR,
            "IsoTimestamp": "2024-10-16T09:15:30.000Z",
            "EpochMillis": "1729070130000",
            "ElapsedSeconds": "",
            "ElapsedDays": "",
            "TimelineNote": NOTE_PARSED,
            "ParsedAt": "2024-10-20T12:00:00.000Z",
        }

    def test_offset_is_converted_to_utc(self):
        analysis = build_time_analysis("2024-10-16T11:15:30+02:00", now=NOW)
        assert analysis["IsoTimestamp"] == "2024-10-16T09:15:30.000Z"

    def test_elapsed_since_previous(self):
        previous = {"IsoTimestamp": "2024-10-16T09:00:00.000Z"}
        analysis = build_time_analysis(ANCHOR, previous, now=NOW)
        assert analysis["ElapsedSeconds"] == "930"
        assert analysis["ElapsedDays"] == "0.010764"
        assert analysis["TimelineNote"] == NOTE_PARSED

    def test_regression_resets_elapsed(self):
        previous = {"IsoTimestamp": "2024-10-17T00:00:00.000Z"}
        analysis = build_time_analysis(ANCHOR, previous, now=NOW)
        assert analysis["ElapsedSeconds"] == "0"
        assert analysis["ElapsedDays"] == "0.000000"
        assert analysis["TimelineNote"] == NOTE_REGRESSED

    def test_invalid_anchor(self):
        analysis = build_time_analysis("yesterday evening", now=NOW)
        assert analysis["AnchorRaw"] == "yesterday evening"
        assert analysis["IsoTimestamp"] == ""
        assert analysis["EpochMillis"] == ""
        assert analysis["TimelineNote"] == "Invalid ISO-8601 timestamp: yesterday evening"

    def test_missing_anchor_reuses_previous(self):
        previous = {"IsoTimestamp": "2024-10-16T09:00:00.000Z", "TimelineNote": NOTE_PARSED}
        assert build_time_analysis(None, previous) is previous
        assert build_time_analysis("  ", previous) is previous

    def test_missing_anchor_without_previous(self):
        assert build_time_analysis(None) is None


class TestResolveInternalTime:
    """Attaching TimeAnchor/TimeAnalysis to a message's internal payload."""

    def test_anchor_from_internal_payload(self):
        internal, anchor = resolve_internal_time({"TimeAnchor": ANCHOR}, {}, None)
        assert anchor == ANCHOR
        assert internal["TimeAnchor"] == ANCHOR
        assert internal["TimeAnalysis"]["IsoTimestamp"] == "2024-10-16T09:15:30.000Z"

    def test_anchor_from_raw_tracker(self):
        internal, anchor = resolve_internal_time(None, {"TimeAnchor": ANCHOR}, None)
        assert anchor == ANCHOR
        assert internal["TimeAnchor"] == ANCHOR
        assert "TimeAnalysis" in internal

    def test_elapsed_uses_previous_analysis(self):
        previous = {
            "TimeAnchor": "2024-10-16T09:00:00Z",
            "TimeAnalysis": {"IsoTimestamp": "2024-10-16T09:00:00.000Z"},
        }
        internal, _ = resolve_internal_time({"TimeAnchor": ANCHOR}, {}, previous)
        assert internal["TimeAnalysis"]["ElapsedSeconds"] == "930"

    def test_previous_anchor_is_reused(self):
        previous = {
            "TimeAnchor": ANCHOR,
            "TimeAnalysis": {"IsoTimestamp": "2024-10-16T09:15:30.000Z"},
        }
        internal, anchor = resolve_internal_time({}, {"Location": "Garden"}, previous)
        assert anchor == ANCHOR
        assert internal["TimeAnalysis"]["ElapsedSeconds"] == "0"

    def test_previous_analysis_is_carried_forward(self):
        analysis = {"IsoTimestamp": "2024-10-16T09:15:30.000Z"}
        internal, anchor = resolve_internal_time({}, {}, {"TimeAnalysis": analysis})
        assert anchor is None
        assert internal == {"TimeAnalysis": analysis}

    def test_nothing_to_resolve(self):
        internal, anchor = resolve_internal_time(None, "not a tracker", None)
        assert internal == {}
        assert anchor is None

    def test_other_internal_values_are_kept(self):
        internal, _ = resolve_internal_time({"Secret": "spy"}, {}, None)
        assert internal == {"Secret": "spy"}
