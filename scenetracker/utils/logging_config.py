"""
Structured JSON logging configuration for SceneTracker.

All log records under the ``scenetracker`` namespace are emitted as single-line
JSON objects to stderr and, when ``log_file`` is configured, to that file.

Usage::

    from scenetracker.utils.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("tracker saved", extra={"chat_id": cid, "message_index": 5})

For code paths scoped to one chat, or to one message of a chat::

    from scenetracker.utils.logging_config import get_logger, ChatAdapter

    raw = get_logger("scenetracker.store")
    logger = ChatAdapter(raw, chat_id="abc-123", message_index=12)
    logger.info("tracker generated")        # includes chat_id and message_index
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional

from scenetracker.config import get_settings


# Record attributes copied into every JSON entry when set
TRACKER_RECORD_FIELDS = ("chat_id", "message_index", "event_type", "metadata")


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object.

    A record logged for a specific message also gets a ``message_ref`` of the
    form ``<chat_id>#<message_index>`` so one tracker's history can be
    grepped across entries.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in TRACKER_RECORD_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if "chat_id" in entry and "message_index" in entry:
            entry["message_ref"] = f"{entry['chat_id']}#{entry['message_index']}"

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ---------------------------------------------------------------------------
# ChatAdapter: attaches chat_id (and optionally message_index) to every call
# ---------------------------------------------------------------------------

class ChatAdapter(logging.LoggerAdapter):
    """Logger adapter that injects ``chat_id`` into every record.

    A ``message_index`` bound here is a default only; a call that passes its
    own ``message_index`` in ``extra`` keeps it.
    """

    def __init__(self, logger: logging.Logger, chat_id: str, message_index: Optional[int] = None):
        bound: dict[str, Any] = {"chat_id": chat_id}
        if message_index is not None:
            bound["message_index"] = message_index
        super().__init__(logger, bound)

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra["chat_id"] = self.extra["chat_id"]
        for key, value in self.extra.items():
            extra.setdefault(key, value)
        return msg, kwargs


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_CONFIGURED = False


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None) -> None:
    """Configure the root ``scenetracker`` logger with JSON handlers.

    Defaults come from :func:`scenetracker.config.get_settings`. Safe to call
    multiple times; only the first call has effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    settings = get_settings()
    log_file = log_file or settings.log_file
    level = (level or settings.log_level).upper()

    root = logging.getLogger("scenetracker")
    root.setLevel(level)
    root.propagate = False

    formatter = JSONFormatter()

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    sh.setLevel(logging.WARNING)
    root.addHandler(sh)


def get_logger(name: str = "scenetracker") -> logging.Logger:
    """Return a child logger under the ``scenetracker`` namespace.

    Automatically calls :func:`setup_logging` on first use.
    """
    setup_logging()
    if name.startswith("scenetracker"):
        return logging.getLogger(name)
    return logging.getLogger(f"scenetracker.{name}")
