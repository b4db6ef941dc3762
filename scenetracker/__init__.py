"""SceneTracker: schema-driven scene state for roleplay chats."""

__version__ = "0.1.0"
