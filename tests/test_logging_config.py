"""
Tests for the JSON log formatter and the chat-scoped adapter.
"""

import json
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from scenetracker.utils.logging_config import ChatAdapter, JSONFormatter, get_logger


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def capture(adapter_factory, call):
    logger = logging.getLogger("scenetracker.tests.adapter")
    handler = _ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        call(adapter_factory(logger))
    finally:
        logger.removeHandler(handler)
    return handler.records[0]


class TestJSONFormatter:
    """One JSON object per record."""

    def make_record(self, **extra):
        record = logging.LogRecord("scenetracker.test", logging.INFO, __file__, 1, "saved %s", ("x",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self.make_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "scenetracker.test"
        assert entry["message"] == "saved x"
        assert "ts" in entry
        assert "chat_id" not in entry
        assert "message_ref" not in entry

    def test_extra_fields(self):
        record = self.make_record(chat_id="c1", message_index=3, event_type="tracker_saved",
                                  metadata={"has_internal": True})
        entry = json.loads(JSONFormatter().format(record))
        assert entry["chat_id"] == "c1"
        assert entry["message_index"] == 3
        assert entry["event_type"] == "tracker_saved"
        assert entry["metadata"] == {"has_internal": True}

    def test_message_ref(self):
        entry = json.loads(JSONFormatter().format(self.make_record(chat_id="c1", message_index=0)))
        assert entry["message_ref"] == "c1#0"

        entry = json.loads(JSONFormatter().format(self.make_record(chat_id="c1")))
        assert "message_ref" not in entry


class TestLoggers:
    """Namespace and chat adapter."""

    def test_get_logger_namespace(self):
        assert get_logger("store").name == "scenetracker.store"
        assert get_logger("scenetracker.engine").name == "scenetracker.engine"

    def test_chat_adapter_injects_chat_id(self):
        record = capture(lambda logger: ChatAdapter(logger, "chat-9"),
                         lambda log: log.info("hello", extra={"message_index": 2}))
        assert record.chat_id == "chat-9"
        assert record.message_index == 2

    def test_bound_message_index(self):
        record = capture(lambda logger: ChatAdapter(logger, "chat-9", message_index=7),
                         lambda log: log.info("hello", extra={"event_type": "tracker_saved"}))
        assert record.chat_id == "chat-9"
        assert record.message_index == 7
        assert record.event_type == "tracker_saved"

    def test_call_level_message_index_wins(self):
        record = capture(lambda logger: ChatAdapter(logger, "chat-9", message_index=7),
                         lambda log: log.info("hello", extra={"message_index": 8, "chat_id": "other"}))
        assert record.message_index == 8
        assert record.chat_id == "chat-9"
