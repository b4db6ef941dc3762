"""
Tests for story lifecycle event collection.
"""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from scenetracker.utils.story_events import StoryEvent, collect_story_events, log_story_events


class TestCollectStoryEvents:
    """Reading births, growth and deaths out of a tracker."""

    def test_events_in_group_order(self):
        tracker = {"StoryEvents": {
            "DeathEvents": {"Old Tom": {"DeathCauseDescription": " Fever "}},
            "BirthEvents": {"Lily": {"NewBornDescription": "A healthy girl"}},
            "GrowthEvents": {"Sam": {"GrowthDescription": "Turned eighteen"}},
        }}
        assert collect_story_events(tracker) == [
            StoryEvent("birth", "Lily", "A healthy girl"),
            StoryEvent("growth", "Sam", "Turned eighteen"),
            StoryEvent("death", "Old Tom", "Fever"),
        ]

    def test_none_and_blank_names_are_skipped(self):
        tracker = {"StoryEvents": {"BirthEvents": {"None": {"NewBornDescription": ""}, " ": {}, "Ann": {}}}}
        assert collect_story_events(tracker) == [StoryEvent("birth", "Ann", "")]

    def test_missing_or_malformed_sections(self):
        assert collect_story_events(None) == []
        assert collect_story_events({}) == []
        assert collect_story_events({"StoryEvents": "None"}) == []
        assert collect_story_events({"StoryEvents": {"BirthEvents": "None"}}) == []

    def test_non_string_description(self):
        tracker = {"StoryEvents": {"DeathEvents": {"Rex": {"DeathCauseDescription": 3}}}}
        assert collect_story_events(tracker) == [StoryEvent("death", "Rex", "")]

    def test_log_returns_events(self):
        tracker = {"StoryEvents": {"GrowthEvents": {"Sam": {"GrowthDescription": "Grew up"}}}}
        assert log_story_events(tracker) == [StoryEvent("growth", "Sam", "Grew up")]
