"""
Story lifecycle events (births, growth, deaths) recorded in a tracker.
"""
import logging
from typing import Any, List, NamedTuple

logger = logging.getLogger(__name__)

STORY_EVENTS_KEY = "StoryEvents"

# event group -> (kind, description field)
_EVENT_GROUPS = (
    ("BirthEvents", "birth", "NewBornDescription"),
    ("GrowthEvents", "growth", "GrowthDescription"),
    ("DeathEvents", "death", "DeathCauseDescription"),
)


class StoryEvent(NamedTuple):
    kind: str
    name: str
    description: str


def collect_story_events(tracker: Any) -> List[StoryEvent]:
    """Events found under ``StoryEvents``; ``none`` and blank names are skipped."""
    if not isinstance(tracker, dict):
        return []
    story_events = tracker.get(STORY_EVENTS_KEY)
    if not isinstance(story_events, dict):
        return []

    events = []
    for group, kind, description_key in _EVENT_GROUPS:
        entries = story_events.get(group)
        if not isinstance(entries, dict):
            continue
        for name, payload in entries.items():
            normalized = name.strip() if isinstance(name, str) else ""
            if not normalized or normalized.lower() == "none":
                continue
            description = ""
            if isinstance(payload, dict) and isinstance(payload.get(description_key), str):
                description = payload[description_key].strip()
            events.append(StoryEvent(kind, normalized, description))
    return events


def log_story_events(tracker: Any) -> List[StoryEvent]:
    events = collect_story_events(tracker)
    for event in events:
        logger.info(
            "Story %s event detected: %s",
            event.kind,
            event.name,
            extra={"event_type": f"story_{event.kind}", "metadata": {"description": event.description or None}},
        )
    return events
